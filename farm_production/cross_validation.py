"""
K-Fold Cross-Validation of the MRP Pipeline
===========================================

Rows of the Observed-country data are split into k seeded folds. Each fold
refits the hierarchical model from scratch on the other k-1 folds, predicts
the held-out rows by posterior-predictive simulation, and scores the
predictions in natural (un-logged) production units.

Aggregate metrics:
- rmse, mae: mean across folds
- rmse_sd, mae_sd: sample standard deviation across folds (ddof=1)
- rmse_pct_of_mean, mae_pct_of_mean: 100 * metric / mean production

Folds share nothing except the read-only fold assignment, so they can run
in separate worker processes (n_jobs > 1) without changing the result.

Author: Farm Production Research Team
Date: 2026
"""

import pandas as pd
import numpy as np
from sklearn.model_selection import KFold
from sklearn.metrics import mean_absolute_error, mean_squared_error
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass
import logging

from .config import AnalysisConfig, K_FOLDS
from .data_simulation import validate_production_data
from .errors import InvalidParameterError
from .mrp import fit_mrp, predict_mrp

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FoldResult:
    """Metrics and predictions for one held-out fold"""
    fold: int
    n_train: int
    n_test: int
    rmse: float
    mae: float
    predictions: pd.DataFrame
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True, eq=False)
class CrossValidationResult:
    """Aggregate k-fold metrics, in production units unless marked pct"""
    k_folds: int
    seed: int
    folds: Tuple[FoldResult, ...]
    fold_assignment: np.ndarray
    target_mean: float
    rmse: float
    mae: float
    rmse_sd: float
    mae_sd: float
    rmse_pct_of_mean: float
    mae_pct_of_mean: float

    def summary(self) -> Dict[str, float]:
        return {
            'rmse': self.rmse,
            'mae': self.mae,
            'rmse_sd': self.rmse_sd,
            'mae_sd': self.mae_sd,
            'rmse_pct_of_mean': self.rmse_pct_of_mean,
            'mae_pct_of_mean': self.mae_pct_of_mean,
        }

    def fold_table(self) -> pd.DataFrame:
        return pd.DataFrame([
            {'fold': f.fold, 'n_train': f.n_train, 'n_test': f.n_test,
             'rmse': f.rmse, 'mae': f.mae, 'n_warnings': len(f.warnings)}
            for f in self.folds
        ])

    def predictions(self) -> pd.DataFrame:
        """Held-out predictions of every fold, in original row order"""
        return pd.concat([f.predictions for f in self.folds]).sort_values('row', ignore_index=True)

    @property
    def warnings(self) -> List[str]:
        return [f"fold {f.fold}: {w}" for f in self.folds for w in f.warnings]


def assign_folds(n_rows: int, k_folds: int = K_FOLDS, seed: int = 123) -> np.ndarray:
    """Fold index of every row; the same seed always gives the same assignment"""
    if k_folds < 2:
        raise InvalidParameterError(f"k_folds must be >= 2, got {k_folds}")
    if k_folds > n_rows:
        raise InvalidParameterError(f"k_folds={k_folds} exceeds the number of rows ({n_rows})")
    assignment = np.empty(n_rows, dtype=int)
    splitter = KFold(n_splits=k_folds, shuffle=True, random_state=seed)
    for fold, (_, test_idx) in enumerate(splitter.split(np.arange(n_rows))):
        assignment[test_idx] = fold
    return assignment


def evaluate_fold(
    fold: int,
    train: pd.DataFrame,
    test: pd.DataFrame,
    config: AnalysisConfig,
    seed: int,
    n_draws: int,
) -> FoldResult:
    """
    Fit on one training partition and score the held-out rows.

    Module-level so it can be shipped to worker processes.
    """
    fit = fit_mrp(train, config, seed=seed)
    pred = predict_mrp(fit, test, n_draws=n_draws, seed=seed)

    observed = test['production'].astype(float).values
    predicted = pred['predicted_production'].values
    rmse = float(np.sqrt(mean_squared_error(observed, predicted)))
    mae = float(mean_absolute_error(observed, predicted))

    predictions = pd.DataFrame({
        'row': test.index.values,
        'fold': fold,
        'country_id': test['country_id'].values,
        'crop': test['crop'].astype(str).values,
        'farm_size': test['farm_size'].astype(str).values,
        'observed': observed,
        'predicted': predicted,
        'lower': pred['lower'].values,
        'upper': pred['upper'].values,
    })
    logger.info(
        f"  Fold {fold}: train={len(train):,}, test={len(test):,}, "
        f"RMSE={rmse:,.0f}, MAE={mae:,.0f}"
    )
    return FoldResult(
        fold=fold,
        n_train=len(train),
        n_test=len(test),
        rmse=rmse,
        mae=mae,
        predictions=predictions,
        warnings=fit.warnings,
    )


def cross_validate_mrp(
    data: pd.DataFrame,
    k_folds: int = K_FOLDS,
    seed: int = 123,
    config: Optional[AnalysisConfig] = None,
    n_draws: Optional[int] = None,
    n_jobs: int = 1,
) -> CrossValidationResult:
    """
    k-fold cross-validation of the MRP model on Observed-country data.

    Parameters
    ----------
    data : pd.DataFrame
        Farm-size-resolved production rows; not modified
    k_folds : int
        Number of folds (>= 2)
    seed : int
        Seeds the fold assignment; fold i fits and predicts with seed + i
    config : AnalysisConfig, optional
        Fitting options (reml, max_iter, variance_scale)
    n_draws : int, optional
        Posterior-predictive draws per held-out row (default config.n_draws)
    n_jobs : int
        Worker processes for fold fitting; 1 runs folds sequentially

    Returns
    -------
    CrossValidationResult
    """
    config = config or AnalysisConfig()
    n_draws = config.n_draws if n_draws is None else n_draws
    if n_jobs < 1:
        raise InvalidParameterError(f"n_jobs must be >= 1, got {n_jobs}")
    validate_production_data(data)

    frame = data.reset_index(drop=True)
    assignment = assign_folds(len(frame), k_folds, seed)

    logger.info("=" * 80)
    logger.info(f"{k_folds}-FOLD CROSS-VALIDATION ({len(frame):,} rows, seed={seed})")
    logger.info("=" * 80)

    tasks = []
    for fold in range(k_folds):
        held_out = assignment == fold
        tasks.append((
            fold,
            frame[~held_out].copy(),
            frame[held_out].copy(),
            config,
            seed + fold,
            n_draws,
        ))

    if n_jobs == 1:
        folds = [evaluate_fold(*task) for task in tasks]
    else:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            futures = [executor.submit(evaluate_fold, *task) for task in tasks]
            folds = [future.result() for future in futures]

    rmse_values = np.array([f.rmse for f in folds])
    mae_values = np.array([f.mae for f in folds])
    target_mean = float(frame['production'].mean())

    result = CrossValidationResult(
        k_folds=k_folds,
        seed=seed,
        folds=tuple(folds),
        fold_assignment=assignment,
        target_mean=target_mean,
        rmse=float(rmse_values.mean()),
        mae=float(mae_values.mean()),
        rmse_sd=float(rmse_values.std(ddof=1)),
        mae_sd=float(mae_values.std(ddof=1)),
        rmse_pct_of_mean=float(100.0 * rmse_values.mean() / target_mean),
        mae_pct_of_mean=float(100.0 * mae_values.mean() / target_mean),
    )

    logger.info(
        f"Cross-validation: RMSE={result.rmse:,.0f} ({result.rmse_pct_of_mean:.1f}% of mean), "
        f"MAE={result.mae:,.0f} ({result.mae_pct_of_mean:.1f}% of mean)"
    )
    if result.warnings:
        logger.warning(f"{len(result.warnings)} non-fatal fitting warnings collected across folds")
    return result
