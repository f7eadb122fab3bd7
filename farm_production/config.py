# config.py - Configuration for the farm-size production analysis
# Edit paths and parameters as needed

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import InvalidParameterError

# ── Paths ──────────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
OUTPUTS_DIR = BASE_DIR / "outputs"

# ── Data schema ────────────────────────────────────────────────────────────────
REQUIRED_COLUMNS = [
    "country_id", "country_name", "region", "development_index",
    "crop", "farm_size", "production",
]
CELL_KEYS = ["country_id", "crop", "farm_size"]

# ── Simulation defaults ────────────────────────────────────────────────────────
RANDOM_SEED = 123
N_COUNTRIES = 50
N_CROPS = 8
FARM_SIZES = ("0-1", "1-2", "2-5", "5-10", "10-20", "20-50", "50+")
REGIONS = ("Africa", "Asia", "Europe", "Latin America", "Oceania")

NOISE_SD = 0.3                  # Log-space noise
BASE_PRODUCTION = 1.0e6         # kcal in the smallest farm-size class
SIZE_GROWTH = 0.25              # Log increase per farm-size rank
CROP_SPREAD = 0.5               # Crop log-effects span [-0.5, 0.5]
REGION_SPREAD = 0.25            # Region log-effects span [-0.25, 0.25]
DEV_SLOPE = 0.6                 # Development slope, -0.6 (smallest) .. +0.6 (largest)
CROP_SIZE_SD = 0.0              # Crop x farm-size interaction sd

# ── Pareto parameters ──────────────────────────────────────────────────────────
PARETO_FLOOR = 0.0
PARETO_MIN_TAIL = 10
PARETO_MIN_TAIL_FRACTION = 0.1
PARETO_MAX_CANDIDATES = 200
KS_EXCELLENT = 0.05
KS_GOOD = 0.1

# ── MRP parameters ─────────────────────────────────────────────────────────────
OBSERVED_FRACTION = 0.4
K_FOLDS = 5
N_DRAWS = 1000
PREDICTION_INTERVAL = 0.9
GROUPING_FACTORS = ("country", "size_region", "crop_size")
FIT_METHODS = ("lbfgs", "bfgs", "powell", "nm")
MAX_ITER = 500
VARIANCE_FLOOR = 1e-10
BOUNDARY_TOL = 1e-3             # tau2 below this share of the residual variance is on the boundary

# ── Visualization parameters ──────────────────────────────────────────────────
FIGURE_DPI = 300
FIGURE_FORMAT = ["png"]
FIGSIZE_STANDARD = (10, 8)
FIGSIZE_WIDE = (14, 6)


def _default_variance_scale() -> Dict[str, float]:
    return {name: 1.0 for name in GROUPING_FACTORS}


@dataclass
class AnalysisConfig:
    """
    Parameters for one run of the comparison pipeline.

    variance_scale multiplies the REML variance estimate of each grouping
    factor before the group effects are computed; values above 1 pool less,
    values below 1 pool more.
    """
    n_countries: int = N_COUNTRIES
    n_crops: int = N_CROPS
    farm_sizes: Tuple[str, ...] = FARM_SIZES
    regions: Tuple[str, ...] = REGIONS
    noise_sd: float = NOISE_SD
    observed_fraction: float = OBSERVED_FRACTION
    k_folds: int = K_FOLDS
    seed: int = RANDOM_SEED
    n_draws: int = N_DRAWS
    n_jobs: int = 1
    pareto_floor: float = PARETO_FLOOR
    pareto_xmin: Optional[float] = None
    variance_scale: Dict[str, float] = field(default_factory=_default_variance_scale)
    reml: bool = True
    max_iter: int = MAX_ITER

    def validate(self) -> "AnalysisConfig":
        """Raise InvalidParameterError for out-of-range settings"""
        if self.n_countries < 1:
            raise InvalidParameterError(f"n_countries must be >= 1, got {self.n_countries}")
        if self.n_crops < 1:
            raise InvalidParameterError(f"n_crops must be >= 1, got {self.n_crops}")
        if len(self.farm_sizes) < 1 or len(set(self.farm_sizes)) != len(self.farm_sizes):
            raise InvalidParameterError("farm_sizes must be a non-empty list of distinct labels")
        if len(self.regions) < 1 or len(set(self.regions)) != len(self.regions):
            raise InvalidParameterError("regions must be a non-empty list of distinct labels")
        if self.noise_sd < 0:
            raise InvalidParameterError(f"noise_sd must be >= 0, got {self.noise_sd}")
        if not 0.0 <= self.observed_fraction <= 1.0:
            raise InvalidParameterError(
                f"observed_fraction must be in [0, 1], got {self.observed_fraction}"
            )
        if self.k_folds < 2:
            raise InvalidParameterError(f"k_folds must be >= 2, got {self.k_folds}")
        if self.n_draws < 1:
            raise InvalidParameterError(f"n_draws must be >= 1, got {self.n_draws}")
        if self.n_jobs < 1:
            raise InvalidParameterError(f"n_jobs must be >= 1, got {self.n_jobs}")
        if self.pareto_floor < 0:
            raise InvalidParameterError(f"pareto_floor must be >= 0, got {self.pareto_floor}")
        if self.pareto_xmin is not None and self.pareto_xmin <= 0:
            raise InvalidParameterError(f"pareto_xmin must be > 0, got {self.pareto_xmin}")
        unknown = set(self.variance_scale) - set(GROUPING_FACTORS)
        if unknown:
            raise InvalidParameterError(f"Unknown grouping factors in variance_scale: {sorted(unknown)}")
        for name, scale in self.variance_scale.items():
            if not scale > 0:
                raise InvalidParameterError(f"variance_scale['{name}'] must be > 0, got {scale}")
        return self

    def to_dict(self) -> Dict:
        return asdict(self)
