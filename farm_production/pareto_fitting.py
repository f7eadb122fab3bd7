"""
Pareto (Power-Law) Fitting for Aggregated Production Totals
===========================================================

This module fits a continuous single-parameter Pareto distribution to
aggregated production totals and scores the fit with a Kolmogorov-Smirnov
statistic.

Method:
1. Totals below the floor are excluded
2. xmin is either fixed by the caller or chosen to minimise the KS distance
   over candidate thresholds (Clauset, Shalizi & Newman 2009), keeping a
   minimum tail size so the statistic is not driven by a handful of points
3. alpha is the maximum-likelihood estimate for the tail above xmin,
   alpha = n / sum(ln(x / xmin))
4. Empirical CDF at rank i of n is i / n; theoretical CDF is
   F(x) = 1 - (xmin / x) ** alpha
5. KS statistic = max |empirical - theoretical| over the sorted tail

Fit quality bands (informational only): KS < 0.05 excellent, < 0.1 good,
otherwise poor.

References:
- Clauset, Shalizi & Newman (2009), Power-law distributions in empirical data
- Newman (2005), Power laws, Pareto distributions and Zipf's law

Author: Farm Production Research Team
Date: 2026
"""

import pandas as pd
import numpy as np
from scipy import stats
from typing import Dict, List, Optional, Sequence, Union
from dataclasses import dataclass, asdict
import logging
import math

from .config import (
    CELL_KEYS,
    KS_EXCELLENT,
    KS_GOOD,
    PARETO_MIN_TAIL,
    PARETO_MIN_TAIL_FRACTION,
    PARETO_MAX_CANDIDATES,
)
from .data_simulation import aggregate_production
from .errors import EstimationError, InsufficientDataError, InvalidParameterError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParetoFitResult:
    """Container for a fitted Pareto tail"""
    alpha: float
    xmin: float
    ks_statistic: float
    n_points: int
    n_total: int
    xmin_method: str
    alpha_stderr: float

    @property
    def quality(self) -> str:
        """Informational KS band"""
        if self.ks_statistic < KS_EXCELLENT:
            return 'excellent'
        if self.ks_statistic < KS_GOOD:
            return 'good'
        return 'poor'

    @property
    def has_finite_mean(self) -> bool:
        return self.alpha > 1

    @property
    def tail_fraction(self) -> float:
        """Share of the floored sample that lies in the fitted tail"""
        return self.n_points / self.n_total if self.n_total else 0.0

    def mean(self) -> float:
        """Mean of the fitted distribution (inf when alpha <= 1)"""
        if not self.has_finite_mean:
            return math.inf
        return self.alpha * self.xmin / (self.alpha - 1)

    def cdf(self, x: Union[float, np.ndarray]) -> np.ndarray:
        return stats.pareto.cdf(x, b=self.alpha, scale=self.xmin)

    def summary(self) -> str:
        """Generate summary string"""
        return (
            f"Pareto (n={self.n_points} of {self.n_total}, xmin {self.xmin_method})\n"
            f"  alpha: {self.alpha:.4f} (se {self.alpha_stderr:.4f})\n"
            f"  xmin: {self.xmin:.4g}\n"
            f"  KS: {self.ks_statistic:.4f} [{self.quality.upper()}]"
        )

    def to_dict(self) -> Dict:
        out = asdict(self)
        out['quality'] = self.quality
        return out


def pareto_alpha_mle(values: np.ndarray, xmin: float) -> float:
    """
    Maximum-likelihood shape for a continuous Pareto tail.

    Every value must be >= xmin.
    """
    log_ratio = np.sum(np.log(values / xmin))
    if log_ratio <= 0:
        raise InsufficientDataError(
            f"All {len(values)} tail values equal xmin={xmin:.4g}; alpha is undefined"
        )
    return len(values) / log_ratio


def ks_statistic(values: np.ndarray, alpha: float, xmin: float) -> float:
    """
    KS distance between the rank-based empirical CDF and the Pareto CDF.

    The empirical CDF at rank i (1-based) of n sorted values is i / n.
    """
    data_sorted = np.sort(values)
    n = len(data_sorted)
    empirical = np.arange(1, n + 1) / n
    theoretical = stats.pareto.cdf(data_sorted, b=alpha, scale=xmin)
    return float(np.clip(np.max(np.abs(empirical - theoretical)), 0.0, 1.0))


def _prepare_values(values, floor: float) -> np.ndarray:
    data = np.asarray(values, dtype=float)
    data = data[np.isfinite(data)]
    if np.any(data <= 0):
        raise InvalidParameterError(
            f"Pareto fitting requires positive totals; found {int(np.sum(data <= 0))} values <= 0"
        )
    if floor < 0:
        raise InvalidParameterError(f"floor must be >= 0, got {floor}")
    return np.sort(data[data >= floor])


def _xmin_candidates(
    data: np.ndarray,
    min_tail: int,
    min_tail_fraction: float,
    max_candidates: int,
) -> np.ndarray:
    """Distinct thresholds whose tail keeps the minimum number of points"""
    n = len(data)
    required = min(n, max(2, min_tail, int(math.ceil(min_tail_fraction * n))))
    unique_vals = np.unique(data)
    # data is sorted, so the tail size at a threshold is n - first index of it
    tail_sizes = n - np.searchsorted(data, unique_vals, side='left')
    candidates = unique_vals[tail_sizes >= required]
    if len(candidates) > max_candidates:
        idx = np.unique(np.linspace(0, len(candidates) - 1, max_candidates).round().astype(int))
        candidates = candidates[idx]
    return candidates


def fit_pareto(
    values,
    floor: float = 0.0,
    xmin: Optional[float] = None,
    min_tail: int = PARETO_MIN_TAIL,
    min_tail_fraction: float = PARETO_MIN_TAIL_FRACTION,
    max_candidates: int = PARETO_MAX_CANDIDATES,
) -> ParetoFitResult:
    """
    Fit a continuous Pareto distribution to positive totals.

    Parameters
    ----------
    values : array-like
        Positive aggregate production totals
    floor : float
        Totals below the floor are excluded before fitting
    xmin : float, optional
        Fixed power-law threshold. When None, xmin is chosen by minimising
        the KS distance over candidate thresholds.
    min_tail : int
        Minimum tail size for a candidate xmin
    min_tail_fraction : float
        Minimum tail size for a candidate xmin, as a fraction of the
        floored sample
    max_candidates : int
        Upper bound on the number of candidate thresholds scanned

    Returns
    -------
    ParetoFitResult

    Raises
    ------
    InsufficientDataError
        If fewer than 2 values remain in the tail, or the tail has no spread
    InvalidParameterError
        If totals are not positive or the floor / xmin is out of range
    """
    data = _prepare_values(values, floor)
    n_total = len(data)

    if xmin is not None:
        if xmin <= 0:
            raise InvalidParameterError(f"xmin must be > 0, got {xmin}")
        tail = data[data >= xmin]
        if len(tail) < 2:
            raise InsufficientDataError(
                f"Pareto fit needs at least 2 values >= xmin={xmin:.4g}, got {len(tail)}"
            )
        alpha = pareto_alpha_mle(tail, xmin)
        ks = ks_statistic(tail, alpha, xmin)
        best = (float(xmin), alpha, ks, tail)
        method = 'fixed'
    else:
        if n_total < 2:
            raise InsufficientDataError(
                f"Pareto fit needs at least 2 values >= floor={floor:.4g}, got {n_total}"
            )
        best = None
        for candidate in _xmin_candidates(data, min_tail, min_tail_fraction, max_candidates):
            tail = data[data >= candidate]
            if len(tail) < 2:
                continue
            log_ratio = np.sum(np.log(tail / candidate))
            if log_ratio <= 0:
                continue
            alpha = len(tail) / log_ratio
            ks = ks_statistic(tail, alpha, candidate)
            # Strict comparison keeps the smaller xmin on ties
            if best is None or ks < best[2]:
                best = (float(candidate), alpha, ks, tail)
        if best is None:
            raise InsufficientDataError(
                f"No xmin candidate leaves a tail with spread ({n_total} values >= floor)"
            )
        method = 'ks_min'

    xmin_fit, alpha, ks, tail = best
    n_points = len(tail)
    result = ParetoFitResult(
        alpha=float(alpha),
        xmin=xmin_fit,
        ks_statistic=float(ks),
        n_points=n_points,
        n_total=n_total,
        xmin_method=method,
        alpha_stderr=float(alpha / math.sqrt(n_points)),
    )
    logger.info(
        f"Pareto fit: alpha={result.alpha:.3f}, xmin={result.xmin:.4g}, "
        f"KS={result.ks_statistic:.4f} ({result.quality}), n={n_points}/{n_total}"
    )
    if not result.has_finite_mean:
        logger.warning(f"Fitted alpha={result.alpha:.3f} <= 1: the fitted distribution has no finite mean")
    return result


def fit_pareto_to_production(
    df: pd.DataFrame,
    keys: Sequence[str] = CELL_KEYS,
    floor: float = 0.0,
    xmin: Optional[float] = None,
    **kwargs,
) -> ParetoFitResult:
    """
    Aggregate production by the given keys and fit a Pareto tail to the totals.

    With the default keys each (country, crop, farm_size) cell is one total.
    """
    totals = aggregate_production(df, keys)['production'].values
    logger.info(f"Fitting Pareto tail to {len(totals):,} totals aggregated by {list(keys)}")
    return fit_pareto(totals, floor=floor, xmin=xmin, **kwargs)


def pareto_by_group(
    df: pd.DataFrame,
    group_col: str = 'farm_size',
    keys: Sequence[str] = CELL_KEYS,
    floor: float = 0.0,
    xmin: Optional[float] = None,
    **kwargs,
) -> pd.DataFrame:
    """
    Fit a Pareto tail separately within each level of group_col.

    Groups that cannot be fitted keep a row with the error message and NaN
    statistics rather than stopping the table.
    """
    totals = aggregate_production(df, keys)
    rows: List[Dict] = []

    for level, group in totals.groupby(group_col, observed=True, sort=True):
        row = {group_col: level, 'n_totals': len(group)}
        try:
            fit = fit_pareto(group['production'].values, floor=floor, xmin=xmin, **kwargs)
        except EstimationError as e:
            logger.debug(f"Pareto fit failed for {group_col}={level}: {e}")
            row.update({
                'alpha': np.nan, 'xmin': np.nan, 'ks_statistic': np.nan,
                'n_points': 0, 'quality': None, 'error': str(e),
            })
        else:
            row.update({
                'alpha': fit.alpha, 'xmin': fit.xmin, 'ks_statistic': fit.ks_statistic,
                'n_points': fit.n_points, 'quality': fit.quality, 'error': None,
            })
        rows.append(row)

    return pd.DataFrame(rows)


def tail_mass_share(fit: ParetoFitResult, threshold: float) -> float:
    """
    Share of total tail production held by totals above threshold.

    For alpha > 1 the Pareto mass above x is (x / xmin) ** (1 - alpha).
    """
    if not fit.has_finite_mean:
        raise InvalidParameterError(f"Tail mass share needs alpha > 1, got {fit.alpha:.3f}")
    if threshold <= fit.xmin:
        return 1.0
    return float((threshold / fit.xmin) ** (1.0 - fit.alpha))


def sample_pareto(alpha: float, xmin: float, n: int, seed: Optional[int] = None) -> np.ndarray:
    """Draw n values from a continuous Pareto(alpha, xmin) by inverse-CDF sampling"""
    if alpha <= 0 or xmin <= 0:
        raise InvalidParameterError(f"alpha and xmin must be > 0, got {alpha}, {xmin}")
    rng = np.random.default_rng(seed)
    u = rng.uniform(0.0, 1.0, size=n)
    return xmin * (1.0 - u) ** (-1.0 / alpha)
