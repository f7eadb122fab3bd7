"""
Multilevel Regression with Poststratification (MRP)
===================================================

This module estimates farm-size-resolved production for countries that only
report crop totals, by borrowing strength from countries with complete data.

Pipeline:
A. Partition countries into Observed / PartialOnly (seeded)
B. Training data: farm-size-resolved rows of Observed countries, with
   log_production as the regression target
C. Poststratification frame: crop x farm_size grid of every PartialOnly
   country, with covariates but no production
D. Hierarchical fit: log_production on fixed effects (farm_size, crop,
   region, development_index) plus partially pooled effects for country,
   farm_size x region and crop x farm_size
E. Posterior-predictive draws for any target rows; the mean of the log
   draws per cell is exponentiated back to natural units

Model structure:
- Variance components are estimated by REML with statsmodels MixedLM, using
  a single all-ones group so the three grouping factors are crossed
- Given the variance components, fixed effects and group effects solve
  Henderson's mixed model equations

      [X'X   X'Z          ] [b]   [X'y]
      [Z'X   Z'Z + s2 D^-1] [u] = [Z'y]

  with D = diag(tau2_g * variance_scale_g). The inverse of the left-hand
  side, times s2, is the joint posterior covariance of (b, u).
- For a level with n observations the group effect is
  u = n / (n + s2 / tau2) * (mean partial residual), so sparse levels are
  shrunk toward zero (the global mean) and well-populated levels keep
  their own mean.

Author: Farm Production Research Team
Date: 2026
"""

import pandas as pd
import numpy as np
import statsmodels.api as sm
from statsmodels.regression.mixed_linear_model import VCSpec
from scipy import linalg
from typing import Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass
from enum import Enum
import logging
import warnings

from .config import (
    AnalysisConfig,
    BOUNDARY_TOL,
    GROUPING_FACTORS,
    FIT_METHODS,
    N_DRAWS,
    OBSERVED_FRACTION,
    PREDICTION_INTERVAL,
    VARIANCE_FLOOR,
)
from .data_simulation import crop_totals, validate_production_data
from .errors import InsufficientDataError, InvalidParameterError, ModelFitError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

FIXED_FACTORS = ('farm_size', 'crop', 'region')


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class ObservationStatus(str, Enum):
    OBSERVED = 'Observed'
    PARTIAL_ONLY = 'PartialOnly'


@dataclass(frozen=True)
class CountryPartition:
    """Observed / PartialOnly assignment for one analysis run"""
    observed: Tuple[int, ...]
    partial_only: Tuple[int, ...]
    observed_fraction: float
    seed: Optional[int]

    def status(self, country_id: int) -> ObservationStatus:
        if country_id in self.observed:
            return ObservationStatus.OBSERVED
        if country_id in self.partial_only:
            return ObservationStatus.PARTIAL_ONLY
        raise KeyError(f"Country {country_id} is not part of this partition")

    def to_frame(self) -> pd.DataFrame:
        rows = [(c, ObservationStatus.OBSERVED.value) for c in self.observed]
        rows += [(c, ObservationStatus.PARTIAL_ONLY.value) for c in self.partial_only]
        return pd.DataFrame(rows, columns=['country_id', 'status']).sort_values('country_id', ignore_index=True)


@dataclass(frozen=True, eq=False)
class PoststratificationFrame:
    """
    Prediction targets for PartialOnly countries.

    cells holds the crop x farm_size grid with covariates and no production;
    crop_totals holds the reported crop totals used for diagnostics and
    calibration.
    """
    cells: pd.DataFrame
    crop_totals: pd.DataFrame

    @property
    def n_countries(self) -> int:
        return int(self.cells['country_id'].nunique()) if len(self.cells) else 0


@dataclass(frozen=True, eq=False)
class MrpFitResult:
    """
    Fitted hierarchical model state.

    fe_params and group_effects are posterior means; posterior_cov is the
    joint covariance of (fixed effects, group effects) in that order.
    """
    fe_params: pd.Series
    group_effects: pd.Series
    posterior_cov: np.ndarray
    tau2: Dict[str, float]
    variance_scale: Dict[str, float]
    sigma2: float
    fixed_levels: Dict[str, Tuple[str, ...]]
    group_table: pd.DataFrame
    warnings: Tuple[str, ...]
    converged: bool
    n_obs: int
    reml: bool
    seed: Optional[int] = None

    @property
    def fixed_effect_cov(self) -> np.ndarray:
        k = len(self.fe_params)
        return self.posterior_cov[:k, :k]

    def prior_variance(self, factor: str) -> float:
        """Variance used for the group effects of one factor"""
        return max(self.tau2[factor], VARIANCE_FLOOR) * self.variance_scale.get(factor, 1.0)

    def pooling_ratio(self, factor: str) -> float:
        """s2 / tau2 for one factor; a level with n rows keeps n / (n + ratio) of its own mean"""
        return self.sigma2 / self.prior_variance(factor)

    def summary(self) -> str:
        lines = [
            f"MRP fit (n={self.n_obs}, {'REML' if self.reml else 'ML'}, "
            f"converged={self.converged})",
            f"  Residual variance: {self.sigma2:.4f}",
        ]
        for factor in GROUPING_FACTORS:
            n_levels = int((self.group_table['factor'] == factor).sum())
            lines.append(
                f"  {factor}: tau2={self.tau2[factor]:.4f}, "
                f"scale={self.variance_scale.get(factor, 1.0):g}, levels={n_levels}"
            )
        if self.warnings:
            lines.append(f"  Warnings: {len(self.warnings)}")
        return "\n".join(lines)


# ============================================================================
# STEP A-C: PARTITION, TRAINING DATA, POSTSTRATIFICATION FRAME
# ============================================================================

def partition_countries(
    df: pd.DataFrame,
    observed_fraction: float = OBSERVED_FRACTION,
    seed: Optional[int] = None,
) -> CountryPartition:
    """
    Assign each country to Observed or PartialOnly.

    round(observed_fraction * n_countries) countries are drawn without
    replacement as Observed.
    """
    if not 0.0 <= observed_fraction <= 1.0:
        raise InvalidParameterError(
            f"observed_fraction must be in [0, 1], got {observed_fraction}"
        )
    countries = np.sort(df['country_id'].unique())
    n_observed = int(np.floor(observed_fraction * len(countries) + 0.5))

    rng = np.random.default_rng(seed)
    chosen = set(rng.choice(countries, size=n_observed, replace=False).tolist())

    partition = CountryPartition(
        observed=tuple(int(c) for c in countries if c in chosen),
        partial_only=tuple(int(c) for c in countries if c not in chosen),
        observed_fraction=observed_fraction,
        seed=seed,
    )
    logger.info(
        f"Partitioned {len(countries)} countries: {len(partition.observed)} Observed, "
        f"{len(partition.partial_only)} PartialOnly (fraction={observed_fraction}, seed={seed})"
    )
    return partition


def build_training_data(df: pd.DataFrame, partition: CountryPartition) -> pd.DataFrame:
    """Farm-size-resolved rows of Observed countries with log_production"""
    train = df[df['country_id'].isin(partition.observed)].copy()
    train['log_production'] = np.log(train['production'].astype(float))
    return train.reset_index(drop=True)


def _levels(series: pd.Series) -> List[str]:
    """Category levels present in a column, in category order when categorical"""
    present = set(series.astype(str).unique())
    if isinstance(series.dtype, pd.CategoricalDtype):
        return [str(c) for c in series.cat.categories if str(c) in present]
    return sorted(present)


def build_poststrat_frame(df: pd.DataFrame, partition: CountryPartition) -> PoststratificationFrame:
    """
    Build the crop x farm_size grid for every PartialOnly country.

    Production is deliberately absent from the cells; only the crop totals
    of those countries are kept.
    """
    partial = df[df['country_id'].isin(partition.partial_only)]
    covariates = (
        partial.groupby('country_id', sort=True)
        [['country_name', 'region', 'development_index']]
        .first()
        .reset_index()
    )

    crops = df['crop'].cat.categories if isinstance(df['crop'].dtype, pd.CategoricalDtype) else sorted(df['crop'].unique())
    sizes = df['farm_size'].cat.categories if isinstance(df['farm_size'].dtype, pd.CategoricalDtype) else sorted(df['farm_size'].unique())
    grid = pd.MultiIndex.from_product(
        [covariates['country_id'], crops, sizes],
        names=['country_id', 'crop', 'farm_size'],
    ).to_frame(index=False)

    cells = grid.merge(covariates, on='country_id', how='left')
    cells['crop'] = pd.Categorical(cells['crop'], categories=list(crops))
    cells['farm_size'] = pd.Categorical(cells['farm_size'], categories=list(sizes), ordered=True)
    cells['region'] = cells['region'].astype(df['region'].dtype)
    cells = cells[['country_id', 'country_name', 'region', 'development_index', 'crop', 'farm_size']]

    totals = crop_totals(partial) if len(partial) else pd.DataFrame(columns=['country_id', 'crop', 'crop_total'])
    logger.info(
        f"Poststratification frame: {len(cells):,} cells for {len(covariates)} PartialOnly countries"
    )
    return PoststratificationFrame(cells=cells, crop_totals=totals)


# ============================================================================
# DESIGN MATRICES
# ============================================================================

def group_labels(frame: pd.DataFrame) -> Dict[str, pd.Series]:
    """Level labels of the three grouping factors"""
    size = frame['farm_size'].astype(str)
    return {
        'country': frame['country_id'].astype(str),
        'size_region': size + '|' + frame['region'].astype(str),
        'crop_size': frame['crop'].astype(str) + '|' + size,
    }


def build_fixed_design(frame: pd.DataFrame, fixed_levels: Dict[str, Sequence[str]]) -> pd.DataFrame:
    """
    Treatment-coded fixed-effect design; the first level of each factor is
    the reference.

    Raises InsufficientDataError when a row carries a level that has no
    training rows.
    """
    columns = {'Intercept': np.ones(len(frame))}
    for factor in FIXED_FACTORS:
        values = frame[factor].astype(str).values
        levels = list(fixed_levels[factor])
        unseen = sorted(set(values) - set(levels))
        if unseen:
            raise InsufficientDataError(
                f"No training rows for {factor} level(s) {unseen}"
            )
        for level in levels[1:]:
            columns[f"{factor}[T.{level}]"] = (values == level).astype(float)
    columns['development_index'] = frame['development_index'].astype(float).values
    return pd.DataFrame(columns, index=frame.index)


def _check_grouping_factors(labels: Dict[str, pd.Series]):
    for factor, values in labels.items():
        counts = values.value_counts()
        if len(counts) < 2:
            raise ModelFitError(
                f"Grouping factor '{factor}' has {len(counts)} distinct level(s); at least 2 are required"
            )
        if (counts == 1).all():
            raise ModelFitError(
                f"Grouping factor '{factor}' has a single observation in every level; "
                f"its variance cannot be separated from the residual"
            )


def _collect_warnings(caught) -> List[str]:
    messages = []
    for w in caught:
        msg = f"{w.category.__name__}: {w.message}"
        if msg not in messages:
            messages.append(msg)
    return messages


# ============================================================================
# STEP D: HIERARCHICAL FIT
# ============================================================================

def fit_mrp(
    train: pd.DataFrame,
    config: Optional[AnalysisConfig] = None,
    seed: Optional[int] = None,
    variance_scale: Optional[Dict[str, float]] = None,
) -> MrpFitResult:
    """
    Fit the hierarchical regression on a training partition.

    This is a pure function of (train, config, seed): the input frame is not
    modified and no state is shared between calls.

    Parameters
    ----------
    train : pd.DataFrame
        Farm-size-resolved rows; log_production is derived from production
        when absent
    config : AnalysisConfig, optional
        Supplies reml, max_iter and variance_scale
    seed : int, optional
        Stored on the result and used as the default prediction seed
    variance_scale : dict, optional
        Overrides config.variance_scale; multiplies each factor's REML
        variance (larger = less pooling)

    Returns
    -------
    MrpFitResult

    Raises
    ------
    InsufficientDataError
        If the training partition is empty
    ModelFitError
        If a grouping factor is degenerate, the target has no variance, the
        fixed design is rank deficient, or the optimiser fails to converge
    """
    config = config or AnalysisConfig()
    scale_map = dict(config.variance_scale)
    if variance_scale is not None:
        scale_map.update(variance_scale)
    for factor, value in scale_map.items():
        if not value > 0:
            raise InvalidParameterError(f"variance_scale['{factor}'] must be > 0, got {value}")

    if len(train) == 0:
        raise InsufficientDataError("Training partition is empty")

    frame = train.reset_index(drop=True)
    if 'log_production' in frame.columns:
        y = frame['log_production'].astype(float).values
    else:
        if (frame['production'] <= 0).any():
            raise InvalidParameterError("production must be > 0 for the log transform")
        y = np.log(frame['production'].astype(float).values)

    if np.var(y) == 0:
        raise ModelFitError("log_production has zero variance")

    labels = group_labels(frame)
    _check_grouping_factors(labels)

    fixed_levels = {factor: tuple(_levels(frame[factor])) for factor in FIXED_FACTORS}
    X = build_fixed_design(frame, fixed_levels)
    if np.linalg.matrix_rank(X.values) < X.shape[1]:
        raise ModelFitError(
            f"Fixed-effect design is rank deficient ({X.shape[1]} columns, "
            f"rank {np.linalg.matrix_rank(X.values)})"
        )

    # One dummy block per grouping factor, levels in sorted order
    z_blocks = {
        factor: pd.get_dummies(labels[factor], dtype=float).sort_index(axis=1)
        for factor in GROUPING_FACTORS
    }

    groups = np.ones(len(frame), dtype=int)
    exog_vc = VCSpec(
        list(GROUPING_FACTORS),
        [[list(z_blocks[f].columns.astype(str))] for f in GROUPING_FACTORS],
        [[z_blocks[f].values] for f in GROUPING_FACTORS],
    )

    logger.info(
        f"Fitting MixedLM on {len(frame):,} rows: {X.shape[1]} fixed effects, "
        + ", ".join(f"{f}={z_blocks[f].shape[1]} levels" for f in GROUPING_FACTORS)
    )

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        try:
            model = sm.MixedLM(y, X, groups=groups, exog_vc=exog_vc)
            result = model.fit(reml=config.reml, method=list(FIT_METHODS), maxiter=config.max_iter)
        except (np.linalg.LinAlgError, ValueError) as e:
            raise ModelFitError(f"MixedLM fitting failed: {e}") from e
    fit_warnings = _collect_warnings(caught)

    converged = bool(getattr(result, 'converged', False))
    if not converged:
        raise ModelFitError(
            "MixedLM optimisation did not converge"
            + (f" ({'; '.join(fit_warnings)})" if fit_warnings else "")
        )

    sigma2 = float(result.scale)
    vcomp = np.asarray(result.vcomp, dtype=float)
    vc_names = list(getattr(model.exog_vc, 'names', GROUPING_FACTORS))
    tau2 = {name: float(v) for name, v in zip(vc_names, vcomp)}
    if not np.isfinite(sigma2) or sigma2 <= 0 or not all(np.isfinite(v) for v in tau2.values()):
        raise ModelFitError(f"Non-finite variance estimates (scale={sigma2}, vcomp={tau2})")

    for factor in GROUPING_FACTORS:
        if tau2[factor] <= max(VARIANCE_FLOOR, BOUNDARY_TOL * sigma2):
            fit_warnings.append(
                f"Variance component '{factor}' estimated at the boundary (tau2={tau2[factor]:.2e}); "
                f"its group effects are pooled completely"
            )

    # Henderson's mixed model equations with the (scaled) variance components
    Z = np.hstack([z_blocks[f].values for f in GROUPING_FACTORS])
    Xv = X.values
    prior_var = np.concatenate([
        np.full(z_blocks[f].shape[1], max(tau2[f], VARIANCE_FLOOR) * scale_map.get(f, 1.0))
        for f in GROUPING_FACTORS
    ])
    k_fe = Xv.shape[1]
    lhs = np.block([
        [Xv.T @ Xv, Xv.T @ Z],
        [Z.T @ Xv, Z.T @ Z + np.diag(sigma2 / prior_var)],
    ])
    rhs = np.concatenate([Xv.T @ y, Z.T @ y])
    try:
        chol = linalg.cho_factor(lhs)
    except linalg.LinAlgError as e:
        raise ModelFitError(f"Mixed model equations are not positive definite: {e}") from e
    theta = linalg.cho_solve(chol, rhs)
    posterior_cov = sigma2 * linalg.cho_solve(chol, np.eye(lhs.shape[0]))

    fe_params = pd.Series(theta[:k_fe], index=X.columns, name='coef')
    effect_index = pd.MultiIndex.from_tuples(
        [(f, str(level)) for f in GROUPING_FACTORS for level in z_blocks[f].columns],
        names=['factor', 'level'],
    )
    u_hat = theta[k_fe:]
    group_effects = pd.Series(u_hat, index=effect_index, name='effect')

    # Partial residuals: everything except the level's own effect
    residual = y - Xv @ theta[:k_fe] - Z @ u_hat
    rows = []
    offset = 0
    for factor in GROUPING_FACTORS:
        block = z_blocks[factor].values
        n_obs = block.sum(axis=0)
        own = block @ u_hat[offset:offset + block.shape[1]]
        partial_sum = block.T @ (residual + own)
        ratio = sigma2 / (max(tau2[factor], VARIANCE_FLOOR) * scale_map.get(factor, 1.0))
        for j, level in enumerate(z_blocks[factor].columns):
            rows.append({
                'factor': factor,
                'level': str(level),
                'n_obs': int(n_obs[j]),
                'effect': float(u_hat[offset + j]),
                'partial_residual_mean': float(partial_sum[j] / n_obs[j]),
                'shrinkage_weight': float(n_obs[j] / (n_obs[j] + ratio)),
            })
        offset += block.shape[1]
    group_table = pd.DataFrame(rows)

    fit = MrpFitResult(
        fe_params=fe_params,
        group_effects=group_effects,
        posterior_cov=posterior_cov,
        tau2=tau2,
        variance_scale={f: float(scale_map.get(f, 1.0)) for f in GROUPING_FACTORS},
        sigma2=sigma2,
        fixed_levels=fixed_levels,
        group_table=group_table,
        warnings=tuple(fit_warnings),
        converged=converged,
        n_obs=len(frame),
        reml=config.reml,
        seed=seed,
    )
    logger.info(
        f"MixedLM converged: sigma2={sigma2:.4f}, "
        + ", ".join(f"tau2[{f}]={tau2[f]:.4f}" for f in GROUPING_FACTORS)
    )
    for message in fit_warnings:
        logger.debug(f"  fit warning: {message}")
    return fit


# ============================================================================
# STEP E: POSTERIOR-PREDICTIVE PREDICTION
# ============================================================================

def predict_mrp(
    fit: MrpFitResult,
    targets: pd.DataFrame,
    n_draws: int = N_DRAWS,
    seed: Optional[int] = None,
    interval: float = PREDICTION_INTERVAL,
) -> pd.DataFrame:
    """
    Posterior-predictive estimates for target rows.

    Each draw combines a joint draw of (fixed effects, group effects), a
    prior draw for group levels unseen in training, and residual noise.
    The estimate per row is exp(mean of its log draws).

    Returns
    -------
    pd.DataFrame
        targets plus log_mean, log_sd, predicted_production, lower, upper
    """
    if n_draws < 1:
        raise InvalidParameterError(f"n_draws must be >= 1, got {n_draws}")
    if not 0 < interval < 1:
        raise InvalidParameterError(f"interval must be in (0, 1), got {interval}")

    frame = targets.reset_index(drop=True)
    out = frame.copy()
    if len(frame) == 0:
        for col in ('log_mean', 'log_sd', 'predicted_production', 'lower', 'upper'):
            out[col] = pd.Series(dtype=float)
        return out

    rng = np.random.default_rng(fit.seed if seed is None else seed)
    X = build_fixed_design(frame, fit.fixed_levels).values
    labels = group_labels(frame)

    # Known group levels map onto posterior columns
    effect_pos = {key: i for i, key in enumerate(fit.group_effects.index)}
    k_fe = len(fit.fe_params)
    Z_known = np.zeros((len(frame), len(effect_pos)))
    unknown: Dict[str, pd.Series] = {}
    for factor in GROUPING_FACTORS:
        values = labels[factor].values
        pos = np.array([effect_pos.get((factor, v), -1) for v in values])
        seen = pos >= 0
        Z_known[np.flatnonzero(seen), pos[seen]] = 1.0
        if not seen.all():
            unknown[factor] = labels[factor][~seen]

    W = np.hstack([X, Z_known])
    mean = np.concatenate([fit.fe_params.values, fit.group_effects.values])
    theta_draws = rng.multivariate_normal(mean, fit.posterior_cov, size=n_draws, method='eigh')
    log_draws = W @ theta_draws.T

    for factor in GROUPING_FACTORS:
        if factor not in unknown:
            continue
        rows = unknown[factor]
        new_levels = sorted(rows.unique())
        sd = np.sqrt(fit.prior_variance(factor))
        level_draws = rng.normal(0.0, 1.0, size=(len(new_levels), n_draws)) * sd
        index = {level: i for i, level in enumerate(new_levels)}
        log_draws[rows.index.values] += level_draws[[index[v] for v in rows.values]]
        logger.debug(f"{factor}: {len(new_levels)} level(s) unseen in training, drawn from the prior")

    log_draws += rng.normal(0.0, 1.0, size=log_draws.shape) * np.sqrt(fit.sigma2)

    tail = (1.0 - interval) / 2.0
    lower, upper = np.quantile(log_draws, [tail, 1.0 - tail], axis=1)
    out['log_mean'] = log_draws.mean(axis=1)
    out['log_sd'] = log_draws.std(axis=1)
    out['predicted_production'] = np.exp(out['log_mean'])
    out['lower'] = np.exp(lower)
    out['upper'] = np.exp(upper)
    return out


def predict_log_mean(fit: MrpFitResult, targets: pd.DataFrame) -> np.ndarray:
    """
    Posterior mean of the linear predictor, without sampling.

    Group levels unseen in training contribute zero.
    """
    frame = targets.reset_index(drop=True)
    X = build_fixed_design(frame, fit.fixed_levels).values
    pred = X @ fit.fe_params.values
    labels = group_labels(frame)
    for factor in GROUPING_FACTORS:
        effects = fit.group_effects.xs(factor, level='factor')
        pred = pred + labels[factor].map(effects).fillna(0.0).values
    return pred


# ============================================================================
# POSTSTRATIFICATION
# ============================================================================

def poststratify(
    fit: MrpFitResult,
    frame: PoststratificationFrame,
    n_draws: int = N_DRAWS,
    seed: Optional[int] = None,
    interval: float = PREDICTION_INTERVAL,
) -> pd.DataFrame:
    """
    Impute farm-size-resolved production for every poststratification cell.

    predicted_share is each cell's share of its country x crop prediction;
    calibrated_production rescales the shares to the reported crop total.
    """
    estimates = predict_mrp(fit, frame.cells, n_draws=n_draws, seed=seed, interval=interval)
    if len(estimates) == 0:
        estimates['predicted_share'] = pd.Series(dtype=float)
        estimates['calibrated_production'] = pd.Series(dtype=float)
        return estimates

    keys = ['country_id', 'crop']
    predicted_total = estimates.groupby(keys, observed=True)['predicted_production'].transform('sum')
    estimates['predicted_share'] = estimates['predicted_production'] / predicted_total

    totals = frame.crop_totals[keys + ['crop_total']].copy()
    totals['crop'] = totals['crop'].astype(str)
    merged_totals = estimates[keys].assign(crop=estimates['crop'].astype(str)).merge(
        totals, on=keys, how='left'
    )['crop_total'].values
    estimates['calibrated_production'] = estimates['predicted_share'] * merged_totals

    logger.info(
        f"Poststratified {len(estimates):,} cells for {estimates['country_id'].nunique()} countries"
    )
    return estimates


def poststrat_diagnostics(estimates: pd.DataFrame, frame: PoststratificationFrame) -> pd.DataFrame:
    """
    Compare predicted crop totals with the reported totals.

    Returns one row per country x crop with predicted_total, crop_total,
    ratio and abs_pct_error.
    """
    keys = ['country_id', 'crop']
    predicted = (
        estimates.assign(crop=estimates['crop'].astype(str))
        .groupby(keys, sort=True)['predicted_production']
        .sum()
        .rename('predicted_total')
        .reset_index()
    )
    totals = frame.crop_totals.assign(crop=frame.crop_totals['crop'].astype(str))
    diag = predicted.merge(totals[keys + ['crop_total']], on=keys, how='inner')
    diag['ratio'] = diag['predicted_total'] / diag['crop_total']
    diag['abs_pct_error'] = 100.0 * (diag['predicted_total'] - diag['crop_total']).abs() / diag['crop_total']
    return diag


def shrinkage_summary(fit: MrpFitResult, factor: str) -> pd.DataFrame:
    """
    Per-level partial pooling for one grouping factor.

    effect equals shrinkage_weight * partial_residual_mean: a level with
    few rows is pulled toward zero (the global mean), a well-populated level
    keeps nearly all of its own mean.
    """
    if factor not in GROUPING_FACTORS:
        raise InvalidParameterError(f"Unknown grouping factor '{factor}'; expected one of {GROUPING_FACTORS}")
    table = fit.group_table[fit.group_table['factor'] == factor]
    return table.drop(columns='factor').sort_values('n_obs', ignore_index=True)


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

@dataclass(frozen=True, eq=False)
class MrpPipelineResult:
    """Outputs of one full MRP run"""
    partition: CountryPartition
    training: pd.DataFrame
    frame: PoststratificationFrame
    fit: MrpFitResult
    estimates: pd.DataFrame
    diagnostics: pd.DataFrame

    @property
    def median_abs_pct_error(self) -> float:
        if len(self.diagnostics) == 0:
            return float('nan')
        return float(self.diagnostics['abs_pct_error'].median())


def run_mrp_pipeline(
    df: pd.DataFrame,
    config: Optional[AnalysisConfig] = None,
    partition: Optional[CountryPartition] = None,
) -> MrpPipelineResult:
    """
    Run steps A-E end to end and poststratify the PartialOnly countries.

    Parameters
    ----------
    df : pd.DataFrame
        Full production panel
    config : AnalysisConfig, optional
        observed_fraction, seed, n_draws and fitting options
    partition : CountryPartition, optional
        Use a fixed partition instead of drawing one
    """
    config = (config or AnalysisConfig()).validate()
    validate_production_data(df)

    logger.info("=" * 80)
    logger.info("MRP PIPELINE")
    logger.info("=" * 80)

    if partition is None:
        partition = partition_countries(df, config.observed_fraction, seed=config.seed)
    training = build_training_data(df, partition)
    frame = build_poststrat_frame(df, partition)
    fit = fit_mrp(training, config, seed=config.seed)
    estimates = poststratify(fit, frame, n_draws=config.n_draws, seed=config.seed)
    diagnostics = poststrat_diagnostics(estimates, frame)

    result = MrpPipelineResult(
        partition=partition,
        training=training,
        frame=frame,
        fit=fit,
        estimates=estimates,
        diagnostics=diagnostics,
    )
    if len(diagnostics):
        logger.info(
            f"Crop-total diagnostics: median absolute error "
            f"{result.median_abs_pct_error:.1f}% over {len(diagnostics)} country x crop totals"
        )
    return result
