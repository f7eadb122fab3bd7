"""
Farm Production Estimation
==========================

Statistical comparison of two estimators for farm-size-resolved crop
production: Pareto interpolation of production totals and Multilevel
Regression with Poststratification (MRP).

Main Components:
- data_simulation: Simulate, validate and load country x crop x farm-size panels
- pareto_fitting: Pareto tail fitting by maximum likelihood with KS goodness of fit
- mrp: Country partition, hierarchical fit, posterior prediction, poststratification
- cross_validation: Seeded k-fold evaluation of the MRP model
- analysis_pipeline: End-to-end comparison, report and export
- visualizations: Diagnostic figures

Example Usage:
    from farm_production import AnalysisConfig, run_full_analysis

    result = run_full_analysis(AnalysisConfig(seed=123))
    print(result.pareto.summary())
    print(result.cv.summary())

Author: Farm Production Research Team
Version: 1.0.0
Date: 2026
"""

__version__ = '1.0.0'
__author__ = 'Farm Production Research Team'

from .errors import (
    EstimationError,
    InsufficientDataError,
    ModelFitError,
    InvalidParameterError
)

from .config import AnalysisConfig

from .data_simulation import (
    DataValidationResult,
    simulate_production_data,
    check_production_data,
    validate_production_data,
    aggregate_production,
    crop_totals,
    save_production_data,
    load_production_data
)

from .pareto_fitting import (
    ParetoFitResult,
    fit_pareto,
    fit_pareto_to_production,
    pareto_by_group,
    pareto_alpha_mle,
    ks_statistic,
    sample_pareto,
    tail_mass_share
)

from .mrp import (
    ObservationStatus,
    CountryPartition,
    PoststratificationFrame,
    MrpFitResult,
    MrpPipelineResult,
    partition_countries,
    build_training_data,
    build_poststrat_frame,
    fit_mrp,
    predict_mrp,
    predict_log_mean,
    poststratify,
    poststrat_diagnostics,
    shrinkage_summary,
    run_mrp_pipeline
)

from .cross_validation import (
    FoldResult,
    CrossValidationResult,
    assign_folds,
    cross_validate_mrp
)

from .analysis_pipeline import (
    AnalysisResult,
    run_full_analysis,
    compare_with_truth,
    create_comparison_report,
    export_results
)

__all__ = [
    # Errors
    'EstimationError',
    'InsufficientDataError',
    'ModelFitError',
    'InvalidParameterError',

    # Configuration
    'AnalysisConfig',

    # Data
    'DataValidationResult',
    'simulate_production_data',
    'check_production_data',
    'validate_production_data',
    'aggregate_production',
    'crop_totals',
    'save_production_data',
    'load_production_data',

    # Pareto
    'ParetoFitResult',
    'fit_pareto',
    'fit_pareto_to_production',
    'pareto_by_group',
    'pareto_alpha_mle',
    'ks_statistic',
    'sample_pareto',
    'tail_mass_share',

    # MRP
    'ObservationStatus',
    'CountryPartition',
    'PoststratificationFrame',
    'MrpFitResult',
    'MrpPipelineResult',
    'partition_countries',
    'build_training_data',
    'build_poststrat_frame',
    'fit_mrp',
    'predict_mrp',
    'predict_log_mean',
    'poststratify',
    'poststrat_diagnostics',
    'shrinkage_summary',
    'run_mrp_pipeline',

    # Cross-validation
    'FoldResult',
    'CrossValidationResult',
    'assign_folds',
    'cross_validate_mrp',

    # Pipeline
    'AnalysisResult',
    'run_full_analysis',
    'compare_with_truth',
    'create_comparison_report',
    'export_results',
]
