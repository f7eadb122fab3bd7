"""
Pytest configuration and shared fixtures for farm production tests.

This conftest.py adds the project root to sys.path so that imports of
`farm_production.*` modules work from within the tests/ directory without an
installed package.
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import pytest

# Add project root to sys.path so `from farm_production.xxx import ...` works
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from farm_production.data_simulation import simulate_production_data  # noqa: E402
from farm_production.mrp import CountryPartition  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: full-scenario tests that fit many models")


@pytest.fixture
def root_dir():
    """Return the project root directory as a Path object."""
    return ROOT


@pytest.fixture(scope="session")
def small_panel():
    """20 countries x 4 crops x 4 farm sizes across 2 regions"""
    return simulate_production_data(
        n_countries=20,
        n_crops=4,
        farm_sizes=("0-2", "2-10", "10-50", "50+"),
        regions=("North", "South"),
        seed=11,
    )


@pytest.fixture(scope="session")
def small_partition(small_panel):
    """The first five countries of each region are Observed"""
    region = small_panel.groupby("country_id", observed=True)["region"].first().astype(str)
    observed = sorted(
        int(c) for r in ("North", "South") for c in region[region == r].index[:5]
    )
    countries = sorted(int(c) for c in region.index)
    return CountryPartition(
        observed=tuple(observed),
        partial_only=tuple(c for c in countries if c not in observed),
        observed_fraction=0.5,
        seed=None,
    )
