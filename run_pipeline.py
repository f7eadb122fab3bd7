#!/usr/bin/env python3
"""
Farm Production Estimation - Full Comparison Pipeline
=====================================================

Runs the Pareto vs MRP comparison from data to report and figures.
Execute from the repository root:

    python run_pipeline.py                          # Simulated 50 x 8 x 7 panel, seed 123
    python run_pipeline.py --seed 7 --k-folds 10    # Different seed and fold count
    python run_pipeline.py --input data/panel.csv   # Use a production table from disk
    python run_pipeline.py --n-jobs 4 --no-plots    # Parallel folds, tables only

Steps:
    1.  Simulate (or load) and validate the production panel
    2.  Pareto tail fit to production totals
    3.  k-fold cross-validation of the MRP model on Observed countries
    4.  Final MRP fit and poststratification of PartialOnly countries
    5.  Report, result tables and figures

Exit status is 1 when any estimator failed.

Author: Farm Production Research Team
Date: 2026
"""

import sys
import argparse
import logging
import time
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

from farm_production.config import (
    FARM_SIZES,
    K_FOLDS,
    N_COUNTRIES,
    N_CROPS,
    N_DRAWS,
    OBSERVED_FRACTION,
    OUTPUTS_DIR,
    PARETO_FLOOR,
    RANDOM_SEED,
    REGIONS,
    AnalysisConfig,
)
from farm_production.data_simulation import load_production_data
from farm_production.errors import EstimationError
from farm_production.analysis_pipeline import (
    create_comparison_report,
    export_results,
    run_full_analysis,
)

logger = logging.getLogger("farm_production")


def _label_list(value):
    labels = [v.strip() for v in value.split(",") if v.strip()]
    if not labels:
        raise argparse.ArgumentTypeError("expected a comma-separated list of labels")
    return tuple(labels)


def build_parser():
    parser = argparse.ArgumentParser(
        description="Compare Pareto interpolation with MRP for farm-size production estimates."
    )
    parser.add_argument(
        "--n-countries", type=int, default=N_COUNTRIES,
        help=f"Countries to simulate (default: {N_COUNTRIES})."
    )
    parser.add_argument(
        "--n-crops", type=int, default=N_CROPS,
        help=f"Crops to simulate (default: {N_CROPS})."
    )
    parser.add_argument(
        "--farm-sizes", type=_label_list, default=FARM_SIZES,
        help="Comma-separated farm-size classes, smallest first."
    )
    parser.add_argument(
        "--regions", type=_label_list, default=REGIONS,
        help="Comma-separated region labels."
    )
    parser.add_argument(
        "--observed-fraction", type=float, default=OBSERVED_FRACTION,
        help=f"Share of countries with farm-size detail (default: {OBSERVED_FRACTION})."
    )
    parser.add_argument(
        "--k-folds", type=int, default=K_FOLDS,
        help=f"Cross-validation folds (default: {K_FOLDS})."
    )
    parser.add_argument(
        "--seed", type=int, default=RANDOM_SEED,
        help=f"Random seed for simulation, partition and folds (default: {RANDOM_SEED})."
    )
    parser.add_argument(
        "--n-draws", type=int, default=N_DRAWS,
        help=f"Posterior-predictive draws per cell (default: {N_DRAWS})."
    )
    parser.add_argument(
        "--n-jobs", type=int, default=1,
        help="Worker processes for cross-validation folds (default: 1)."
    )
    parser.add_argument(
        "--pareto-floor", type=float, default=PARETO_FLOOR,
        help="Ignore totals below this value when fitting the Pareto tail."
    )
    parser.add_argument(
        "--pareto-xmin", type=float, default=None,
        help="Fixed Pareto xmin; scanned by KS distance when omitted."
    )
    parser.add_argument(
        "--input", type=Path, default=None,
        help="CSV production table to use instead of simulated data."
    )
    parser.add_argument(
        "--output-dir", type=Path, default=OUTPUTS_DIR,
        help=f"Directory for report, tables and figures (default: {OUTPUTS_DIR})."
    )
    parser.add_argument(
        "--no-plots", action="store_true",
        help="Skip figure generation."
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Log at DEBUG level."
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)

    t0 = time.time()
    try:
        config = AnalysisConfig(
            n_countries=args.n_countries,
            n_crops=args.n_crops,
            farm_sizes=args.farm_sizes,
            regions=args.regions,
            observed_fraction=args.observed_fraction,
            k_folds=args.k_folds,
            seed=args.seed,
            n_draws=args.n_draws,
            n_jobs=args.n_jobs,
            pareto_floor=args.pareto_floor,
            pareto_xmin=args.pareto_xmin,
        ).validate()
        data = load_production_data(args.input) if args.input is not None else None
        result = run_full_analysis(config, data=data)
    except (EstimationError, FileNotFoundError) as e:
        print(f"\n  ✗ FAILED: {e}")
        return 1

    output_dir = Path(args.output_dir)
    create_comparison_report(result, output_dir / "reports" / "comparison_report.txt")
    export_results(result, output_dir / "data")
    if not args.no_plots:
        from farm_production.visualizations import create_all_figures
        create_all_figures(result, output_dir / "figures")

    elapsed = time.time() - t0
    print(f"\n{'─' * 70}")
    if result.pareto is not None:
        print(f"  Pareto: alpha={result.pareto.alpha:.3f}, xmin={result.pareto.xmin:,.0f}, "
              f"KS={result.pareto.ks_statistic:.4f}")
    if result.cv is not None:
        print(f"  MRP CV: RMSE={result.cv.rmse_pct_of_mean:.1f}% of mean, "
              f"MAE={result.cv.mae_pct_of_mean:.1f}% of mean")
    for stage, message in result.errors.items():
        print(f"  ✗ {stage}: {message}")
    print(f"  Outputs: {output_dir}")
    print(f"{'─' * 70}")

    if result.status != "ok":
        print(f"\n  ✗ Finished with errors ({elapsed:.1f}s)")
        return 1
    print(f"\n  ✓ Done ({elapsed:.1f}s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
