"""
Tests for production-panel simulation, validation and CSV input/output.

    Run: pytest tests/test_data_simulation.py -v
"""

import numpy as np
import pandas as pd
import pytest

from farm_production.config import FARM_SIZES, REGIONS, REQUIRED_COLUMNS
from farm_production.data_simulation import (
    aggregate_production,
    check_production_data,
    crop_totals,
    load_production_data,
    save_production_data,
    simulate_production_data,
    validate_production_data,
)
from farm_production.errors import EstimationError, InvalidParameterError


# ===================================================================
# test_simulation
# ===================================================================

class TestSimulation:
    """Shape, schema and determinism of simulated panels."""

    def test_full_grid(self):
        """Default panel has one row per country x crop x farm size."""
        df = simulate_production_data(n_countries=10, n_crops=3, seed=1)
        assert len(df) == 10 * 3 * len(FARM_SIZES)
        assert df.groupby(["country_id", "crop", "farm_size"], observed=True).size().max() == 1

    def test_required_columns(self):
        df = simulate_production_data(n_countries=5, n_crops=2, seed=1)
        for col in REQUIRED_COLUMNS:
            assert col in df.columns, f"Missing column '{col}'"

    def test_production_positive(self):
        df = simulate_production_data(n_countries=10, n_crops=4, seed=2)
        assert (df["production"] > 0).all()

    def test_development_index_in_unit_interval(self):
        df = simulate_production_data(n_countries=30, n_crops=2, seed=3)
        assert df["development_index"].between(0, 1).all()

    def test_country_covariates_constant(self):
        """Region and development index are drawn once per country."""
        df = simulate_production_data(n_countries=12, n_crops=3, seed=4)
        per_country = df.groupby("country_id").agg(
            n_region=("region", "nunique"), n_dev=("development_index", "nunique")
        )
        assert (per_country["n_region"] == 1).all()
        assert (per_country["n_dev"] == 1).all()

    def test_regions_balanced(self):
        df = simulate_production_data(n_countries=50, n_crops=1, seed=5)
        counts = df.groupby("region", observed=True)["country_id"].nunique()
        assert set(counts.index.astype(str)) == set(REGIONS)
        assert counts.max() - counts.min() <= 1

    def test_farm_size_ordered(self):
        df = simulate_production_data(n_countries=3, n_crops=2, seed=6)
        assert df["farm_size"].cat.ordered
        assert list(df["farm_size"].cat.categories) == list(FARM_SIZES)

    def test_same_seed_identical(self):
        """Same seed and parameters give an identical table."""
        a = simulate_production_data(n_countries=8, n_crops=3, seed=123)
        b = simulate_production_data(n_countries=8, n_crops=3, seed=123)
        pd.testing.assert_frame_equal(a, b)

    def test_different_seed_differs(self):
        a = simulate_production_data(n_countries=8, n_crops=3, seed=1)
        b = simulate_production_data(n_countries=8, n_crops=3, seed=2)
        assert not np.allclose(a["production"].values, b["production"].values)

    def test_zero_noise_follows_size_gradient(self):
        """Without noise, production grows with farm-size rank at mid development."""
        df = simulate_production_data(n_countries=4, n_crops=2, noise_sd=0.0, seed=7)
        means = df.groupby("farm_size", observed=True)["production"].mean().values
        assert np.all(np.diff(np.log(means)) > 0)

    @pytest.mark.parametrize("kwargs", [
        {"n_countries": 0},
        {"n_crops": 0},
        {"farm_sizes": ()},
        {"regions": ("A", "A")},
        {"noise_sd": -0.1},
        {"base_production": 0.0},
    ])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(InvalidParameterError):
            simulate_production_data(**kwargs)


# ===================================================================
# test_validation
# ===================================================================

class TestValidation:
    """Schema checks on production tables."""

    def test_valid_panel(self, small_panel):
        result = check_production_data(small_panel)
        assert result.is_valid
        assert result.errors == []
        assert result.metadata["n_countries"] == 20

    def test_missing_column(self, small_panel):
        result = check_production_data(small_panel.drop(columns="production"))
        assert not result.is_valid
        assert "Missing required columns" in result.errors[0]

    def test_non_positive_production(self, small_panel):
        df = small_panel.copy()
        df.loc[0, "production"] = 0.0
        with pytest.raises(InvalidParameterError, match="non-positive"):
            validate_production_data(df)

    def test_duplicate_cells(self, small_panel):
        df = pd.concat([small_panel, small_panel.iloc[[0]]], ignore_index=True)
        result = check_production_data(df)
        assert not result.is_valid
        assert any("multiple rows" in e for e in result.errors)

    def test_development_index_out_of_range(self, small_panel):
        df = small_panel.copy()
        df.loc[3, "development_index"] = 1.5
        result = check_production_data(df)
        assert any("development_index" in e for e in result.errors)

    def test_incomplete_grid_is_warning(self, small_panel):
        result = check_production_data(small_panel.iloc[1:])
        assert result.is_valid
        assert any("incomplete" in w for w in result.warnings)

    def test_validation_error_is_estimation_error(self, small_panel):
        with pytest.raises(EstimationError):
            validate_production_data(small_panel.drop(columns="region"))


# ===================================================================
# test_aggregation_and_io
# ===================================================================

class TestAggregationAndIO:
    """Totals and CSV round trip."""

    def test_crop_totals_sum_over_sizes(self, small_panel):
        totals = crop_totals(small_panel)
        assert len(totals) == 20 * 4
        assert np.isclose(totals["crop_total"].sum(), small_panel["production"].sum())

    def test_aggregate_by_country(self, small_panel):
        totals = aggregate_production(small_panel, ["country_id"])
        assert len(totals) == 20
        assert list(totals.columns) == ["country_id", "production"]

    def test_csv_round_trip(self, small_panel, tmp_path):
        path = tmp_path / "panel.csv"
        save_production_data(small_panel, path)
        loaded = load_production_data(path)
        assert len(loaded) == len(small_panel)
        assert list(loaded["farm_size"].cat.categories) == ["0-2", "2-10", "10-50", "50+"]
        np.testing.assert_allclose(loaded["production"].values, small_panel["production"].values)

    def test_load_default_size_order(self, tmp_path):
        df = simulate_production_data(n_countries=3, n_crops=2, seed=9)
        path = tmp_path / "panel.csv"
        save_production_data(df.iloc[::-1], path)
        loaded = load_production_data(path)
        assert list(loaded["farm_size"].cat.categories) == list(FARM_SIZES)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_production_data(tmp_path / "missing.csv")
