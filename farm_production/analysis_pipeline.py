"""
Pareto vs MRP Comparison Pipeline
=================================

Runs both estimators on one production panel and collects their outputs
into a single tagged result:

1. Load or simulate the production panel
2. Fit a Pareto tail to the aggregated production totals
3. Partition countries and cross-validate the MRP model on Observed countries
4. Fit the final MRP model and poststratify the PartialOnly countries
5. Report, export tables, and (optionally) draw figures

Each estimator's failure is recorded on the result rather than stopping the
other estimator; the result status is "error" when any stage failed.

Author: Farm Production Research Team
Date: 2026
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Dict, Optional, Union
from dataclasses import dataclass, field
import json
import logging

from .config import AnalysisConfig, CELL_KEYS
from .cross_validation import CrossValidationResult, cross_validate_mrp
from .data_simulation import (
    aggregate_production,
    simulate_production_data,
    validate_production_data,
)
from .errors import EstimationError
from .mrp import (
    CountryPartition,
    MrpPipelineResult,
    build_training_data,
    partition_countries,
    run_mrp_pipeline,
)
from .pareto_fitting import ParetoFitResult, fit_pareto, pareto_by_group

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass(eq=False)
class AnalysisResult:
    """
    Tagged outcome of one comparison run.

    Each estimator part holds either its result or the message of the
    EstimationError that stopped it; status is 'ok' only when every part
    succeeded.
    """
    config: AnalysisConfig
    data: pd.DataFrame
    pareto_totals: np.ndarray
    partition: Optional[CountryPartition] = None
    pareto: Optional[ParetoFitResult] = None
    pareto_error: Optional[str] = None
    pareto_by_size: Optional[pd.DataFrame] = None
    cv: Optional[CrossValidationResult] = None
    cv_error: Optional[str] = None
    mrp: Optional[MrpPipelineResult] = None
    mrp_error: Optional[str] = None
    truth_comparison: Optional[pd.DataFrame] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return 'ok' if not self.errors else 'error'

    def summary(self) -> Dict:
        """Plain-dict summary of both estimators"""
        out = {
            'status': self.status,
            'n_records': int(len(self.data)),
            'config': {k: v for k, v in self.config.to_dict().items() if k != 'variance_scale'},
            'pareto': self.pareto.to_dict() if self.pareto is not None else {'error': self.pareto_error},
            'cross_validation': self.cv.summary() if self.cv is not None else {'error': self.cv_error},
        }
        if self.mrp is not None:
            out['mrp'] = {
                'n_observed': len(self.mrp.partition.observed),
                'n_partial_only': len(self.mrp.partition.partial_only),
                'sigma2': self.mrp.fit.sigma2,
                'tau2': dict(self.mrp.fit.tau2),
                'median_crop_total_abs_pct_error': self.mrp.median_abs_pct_error,
                'n_warnings': len(self.mrp.fit.warnings),
            }
        else:
            out['mrp'] = {'error': self.mrp_error}
        return out


def compare_with_truth(estimates: pd.DataFrame, df: pd.DataFrame) -> pd.DataFrame:
    """
    Compare imputed farm-size shares with the true shares.

    Only meaningful when the panel still contains the PartialOnly countries'
    farm-size-resolved production, as simulated data does.
    """
    keys = ['country_id', 'crop', 'farm_size']
    truth = df[keys + ['production']].copy()
    for key in ('crop', 'farm_size'):
        truth[key] = truth[key].astype(str)
    truth['true_share'] = truth['production'] / truth.groupby(['country_id', 'crop'])['production'].transform('sum')

    est = estimates[keys + ['predicted_share', 'calibrated_production']].copy()
    for key in ('crop', 'farm_size'):
        est[key] = est[key].astype(str)
    merged = est.merge(truth, on=keys, how='inner')
    merged['share_error'] = merged['predicted_share'] - merged['true_share']

    return (
        merged.groupby('farm_size', sort=False)
        .agg(
            true_share=('true_share', 'mean'),
            predicted_share=('predicted_share', 'mean'),
            mean_abs_share_error=('share_error', lambda s: float(np.mean(np.abs(s)))),
        )
        .reset_index()
    )


def run_full_analysis(
    config: Optional[AnalysisConfig] = None,
    data: Optional[pd.DataFrame] = None,
) -> AnalysisResult:
    """
    Run the complete comparison from data to estimates.

    Parameters
    ----------
    config : AnalysisConfig, optional
        Run parameters (defaults: 50 countries, 8 crops, 7 farm sizes, seed 123)
    data : pd.DataFrame, optional
        Production panel; simulated from config when omitted

    Returns
    -------
    AnalysisResult
    """
    config = (config or AnalysisConfig()).validate()

    logger.info("=" * 80)
    logger.info("PARETO vs MRP COMPARISON PIPELINE")
    logger.info("=" * 80)

    # Step 1: Data
    logger.info("\nStep 1: Preparing production data...")
    if data is None:
        data = simulate_production_data(
            n_countries=config.n_countries,
            n_crops=config.n_crops,
            farm_sizes=config.farm_sizes,
            regions=config.regions,
            noise_sd=config.noise_sd,
            seed=config.seed,
        )
    validate_production_data(data)

    totals = aggregate_production(data, CELL_KEYS)['production'].values
    result = AnalysisResult(config=config, data=data, pareto_totals=totals)

    # Step 2: Pareto
    logger.info("\nStep 2: Fitting Pareto tail...")
    try:
        result.pareto = fit_pareto(totals, floor=config.pareto_floor, xmin=config.pareto_xmin)
    except EstimationError as e:
        logger.error(f"Pareto estimation failed: {e}")
        result.pareto_error = str(e)
        result.errors['pareto'] = str(e)
    result.pareto_by_size = pareto_by_group(
        data, 'farm_size', floor=config.pareto_floor, xmin=config.pareto_xmin
    )

    # Step 3: Cross-validation on Observed countries
    logger.info("\nStep 3: Cross-validating MRP...")
    try:
        result.partition = partition_countries(data, config.observed_fraction, seed=config.seed)
        observed = build_training_data(data, result.partition)
        result.cv = cross_validate_mrp(
            observed.drop(columns='log_production'),
            k_folds=config.k_folds,
            seed=config.seed,
            config=config,
            n_jobs=config.n_jobs,
        )
    except EstimationError as e:
        logger.error(f"Cross-validation failed: {e}")
        result.cv_error = str(e)
        result.errors['cross_validation'] = str(e)

    # Step 4: Final fit and poststratification
    logger.info("\nStep 4: Fitting final MRP model and poststratifying...")
    try:
        result.mrp = run_mrp_pipeline(data, config, partition=result.partition)
        if len(result.mrp.estimates):
            result.truth_comparison = compare_with_truth(result.mrp.estimates, data)
    except EstimationError as e:
        logger.error(f"MRP poststratification failed: {e}")
        result.mrp_error = str(e)
        result.errors['mrp'] = str(e)

    logger.info("\n" + "=" * 80)
    logger.info(f"ANALYSIS COMPLETE (status={result.status})")
    logger.info("=" * 80)
    return result


def create_comparison_report(result: AnalysisResult, output_path: Union[str, Path]):
    """
    Create a text report of both estimators.

    Parameters
    ----------
    result : AnalysisResult
        Output of run_full_analysis
    output_path : str or Path
        Path to output text file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    config = result.config

    with open(output_path, 'w') as f:
        f.write("=" * 80 + "\n")
        f.write("FARM-SIZE PRODUCTION: PARETO INTERPOLATION vs MRP\n")
        f.write("=" * 80 + "\n\n")

        f.write(f"Status: {result.status}\n")
        f.write(f"Records: {len(result.data):,} "
                f"({result.data['country_id'].nunique()} countries, "
                f"{result.data['crop'].nunique()} crops, "
                f"{result.data['farm_size'].nunique()} farm sizes)\n")
        f.write(f"Seed: {config.seed}, observed fraction: {config.observed_fraction}, "
                f"folds: {config.k_folds}\n\n")

        f.write("PARETO FIT:\n")
        if result.pareto is not None:
            f.write(result.pareto.summary() + "\n")
            if result.pareto.has_finite_mean:
                f.write(f"  Implied mean of the tail: {result.pareto.mean():,.0f}\n")
        else:
            f.write(f"  FAILED: {result.pareto_error}\n")
        f.write("\n")

        if result.pareto_by_size is not None and len(result.pareto_by_size):
            f.write("Pareto fit by farm-size class:\n")
            for _, row in result.pareto_by_size.iterrows():
                if not isinstance(row['error'], str):
                    f.write(f"  {row['farm_size']:>8}: alpha={row['alpha']:.3f}, "
                            f"KS={row['ks_statistic']:.4f} ({row['quality']})\n")
                else:
                    f.write(f"  {row['farm_size']:>8}: {row['error']}\n")
            f.write("\n")

        f.write("MRP CROSS-VALIDATION:\n")
        if result.cv is not None:
            cv = result.cv
            f.write(f"  RMSE: {cv.rmse:,.0f} (sd {cv.rmse_sd:,.0f}, {cv.rmse_pct_of_mean:.1f}% of mean)\n")
            f.write(f"  MAE:  {cv.mae:,.0f} (sd {cv.mae_sd:,.0f}, {cv.mae_pct_of_mean:.1f}% of mean)\n")
            f.write(f"  Target mean: {cv.target_mean:,.0f}\n")
            for _, row in cv.fold_table().iterrows():
                f.write(f"    fold {int(row['fold'])}: RMSE={row['rmse']:,.0f}, MAE={row['mae']:,.0f}, "
                        f"test rows={int(row['n_test'])}\n")
            if cv.warnings:
                f.write(f"  Fitting warnings ({len(cv.warnings)}):\n")
                for w in cv.warnings[:10]:
                    f.write(f"    - {w}\n")
        else:
            f.write(f"  FAILED: {result.cv_error}\n")
        f.write("\n")

        f.write("MRP POSTSTRATIFICATION:\n")
        if result.mrp is not None:
            mrp = result.mrp
            f.write(f"  Observed countries: {len(mrp.partition.observed)}, "
                    f"PartialOnly countries: {len(mrp.partition.partial_only)}\n")
            f.write("  " + mrp.fit.summary().replace("\n", "\n  ") + "\n")
            f.write(f"  Cells imputed: {len(mrp.estimates):,}\n")
            f.write(f"  Median crop-total error: {mrp.median_abs_pct_error:.1f}%\n")
            if result.truth_comparison is not None:
                f.write("  Farm-size shares (mean true vs imputed):\n")
                for _, row in result.truth_comparison.iterrows():
                    f.write(f"    {row['farm_size']:>8}: true={row['true_share']:.3f}, "
                            f"imputed={row['predicted_share']:.3f}, "
                            f"|error|={row['mean_abs_share_error']:.3f}\n")
        else:
            f.write(f"  FAILED: {result.mrp_error}\n")

    logger.info(f"Created comparison report: {output_path}")


def export_results(result: AnalysisResult, output_dir: Union[str, Path]) -> Dict[str, Path]:
    """Write the summary JSON and result tables to output_dir"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = {}

    path = output_dir / 'summary.json'
    with open(path, 'w') as f:
        json.dump(result.summary(), f, indent=2, default=str)
    written['summary'] = path

    tables = {
        'production_data': result.data,
        'pareto_by_farm_size': result.pareto_by_size,
    }
    if result.cv is not None:
        tables['cv_folds'] = result.cv.fold_table()
        tables['cv_predictions'] = result.cv.predictions()
    if result.mrp is not None:
        tables['country_partition'] = result.mrp.partition.to_frame()
        tables['poststrat_estimates'] = result.mrp.estimates
        tables['poststrat_diagnostics'] = result.mrp.diagnostics
        tables['group_effects'] = result.mrp.fit.group_table
    if result.truth_comparison is not None:
        tables['share_comparison'] = result.truth_comparison

    for name, table in tables.items():
        if table is None:
            continue
        path = output_dir / f'{name}.csv'
        table.to_csv(path, index=False)
        written[name] = path

    logger.info(f"Exported {len(written)} result files to: {output_dir}")
    return written
