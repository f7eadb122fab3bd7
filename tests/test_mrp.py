"""
Tests for the MRP pipeline: country partition, poststratification frame,
hierarchical fit, partial pooling and posterior-predictive estimates.

    Run: pytest tests/test_mrp.py -v
"""

import numpy as np
import pandas as pd
import pytest

from farm_production.config import AnalysisConfig, GROUPING_FACTORS
from farm_production.data_simulation import simulate_production_data
from farm_production.errors import (
    InsufficientDataError,
    InvalidParameterError,
    ModelFitError,
)
from farm_production.mrp import (
    CountryPartition,
    ObservationStatus,
    build_poststrat_frame,
    build_training_data,
    fit_mrp,
    partition_countries,
    poststratify,
    predict_log_mean,
    predict_mrp,
    run_mrp_pipeline,
    shrinkage_summary,
)

SIZES = ("0-2", "2-10", "10-50", "50+")


@pytest.fixture(scope="module")
def training(small_panel, small_partition):
    return build_training_data(small_panel, small_partition)


@pytest.fixture(scope="module")
def fitted(training):
    return fit_mrp(training, AnalysisConfig(n_draws=200), seed=5)


@pytest.fixture(scope="module")
def sparse_fit():
    """
    Strong crop x farm-size interaction, with one crop x size group cut down
    to a single training row.
    """
    df = simulate_production_data(
        n_countries=30, n_crops=4, farm_sizes=SIZES,
        regions=("North", "South"), crop_size_sd=0.8, seed=21,
    )
    region = df.groupby("country_id")["region"].first().astype(str)
    observed = sorted(int(c) for r in ("North", "South") for c in region[region == r].index[:8])
    partition = CountryPartition(
        observed=tuple(observed),
        partial_only=tuple(int(c) for c in region.index if int(c) not in observed),
        observed_fraction=16 / 30,
        seed=None,
    )
    train = build_training_data(df, partition)
    rare = (train["crop"].astype(str) == "crop_00") & (train["farm_size"].astype(str) == "0-2")
    keep = ~rare | (train.index == train.index[rare][0])
    return fit_mrp(train[keep], AnalysisConfig(), seed=1)


# ===================================================================
# test_partition
# ===================================================================

class TestPartition:
    """Seeded Observed / PartialOnly assignment."""

    def test_observed_count(self, small_panel):
        partition = partition_countries(small_panel, 0.4, seed=1)
        assert len(partition.observed) == 8
        assert len(partition.partial_only) == 12
        assert set(partition.observed).isdisjoint(partition.partial_only)

    def test_same_seed_same_partition(self, small_panel):
        a = partition_countries(small_panel, 0.4, seed=3)
        b = partition_countries(small_panel, 0.4, seed=3)
        assert a == b

    def test_fraction_bounds(self, small_panel):
        assert partition_countries(small_panel, 0.0, seed=1).observed == ()
        assert partition_countries(small_panel, 1.0, seed=1).partial_only == ()

    @pytest.mark.parametrize("fraction", [-0.1, 1.5])
    def test_invalid_fraction(self, small_panel, fraction):
        with pytest.raises(InvalidParameterError):
            partition_countries(small_panel, fraction, seed=1)

    def test_status(self, small_partition):
        assert small_partition.status(small_partition.observed[0]) == ObservationStatus.OBSERVED
        assert small_partition.status(small_partition.partial_only[0]) == ObservationStatus.PARTIAL_ONLY
        with pytest.raises(KeyError):
            small_partition.status(999)

    def test_to_frame(self, small_partition):
        frame = small_partition.to_frame()
        assert len(frame) == 20
        assert (frame["status"] == "Observed").sum() == 10


# ===================================================================
# test_frames
# ===================================================================

class TestFrames:
    """Training data and poststratification frame."""

    def test_training_only_observed(self, training, small_partition):
        assert set(training["country_id"]) == set(small_partition.observed)
        np.testing.assert_allclose(training["log_production"], np.log(training["production"]))

    def test_poststrat_grid(self, small_panel, small_partition):
        frame = build_poststrat_frame(small_panel, small_partition)
        assert len(frame.cells) == 10 * 4 * 4
        assert frame.n_countries == 10
        assert "production" not in frame.cells.columns
        assert set(frame.cells["country_id"]) == set(small_partition.partial_only)

    def test_poststrat_crop_totals(self, small_panel, small_partition):
        frame = build_poststrat_frame(small_panel, small_partition)
        assert len(frame.crop_totals) == 10 * 4
        expected = small_panel[small_panel["country_id"].isin(small_partition.partial_only)]["production"].sum()
        assert np.isclose(frame.crop_totals["crop_total"].sum(), expected)


# ===================================================================
# test_fit
# ===================================================================

class TestFit:
    """Hierarchical fit on Observed-country rows."""

    def test_converged(self, fitted, training):
        assert fitted.converged
        assert fitted.n_obs == len(training)
        assert fitted.sigma2 > 0

    def test_variance_components(self, fitted):
        assert set(fitted.tau2) == set(GROUPING_FACTORS)
        assert all(v >= 0 for v in fitted.tau2.values())

    def test_group_effect_levels(self, fitted):
        counts = fitted.group_table.groupby("factor").size()
        assert counts["country"] == 10
        assert counts["size_region"] == 4 * 2
        assert counts["crop_size"] == 4 * 4

    def test_size_gradient_in_fixed_effects(self, fitted):
        """Larger farm-size classes produce more than the reference class."""
        assert fitted.fe_params["farm_size[T.50+]"] > fitted.fe_params["farm_size[T.2-10]"] > 0

    def test_posterior_cov_shape(self, fitted):
        n = len(fitted.fe_params) + len(fitted.group_effects)
        assert fitted.posterior_cov.shape == (n, n)
        np.testing.assert_allclose(fitted.posterior_cov, fitted.posterior_cov.T, atol=1e-10)
        assert np.all(np.diag(fitted.fixed_effect_cov) > 0)

    def test_input_not_modified(self, training):
        before = training.copy()
        fit_mrp(training, AnalysisConfig(), seed=1)
        pd.testing.assert_frame_equal(training, before)

    def test_boundary_variance_collected_as_warning(self, training):
        """A grouping factor with no between-level spread is reported, not fatal."""
        rng = np.random.default_rng(8)
        frame = training.copy()
        noise = pd.Series(rng.normal(0.0, 0.3, size=len(frame)), index=frame.index)
        cell = [frame["crop"].astype(str), frame["farm_size"].astype(str)]
        noise = noise - noise.groupby(cell).transform("mean")
        frame["log_production"] = (
            13.0
            + 0.25 * frame["farm_size"].cat.codes.astype(float)
            + 0.1 * frame["crop"].cat.codes.astype(float)
            + noise
        )
        frame["production"] = np.exp(frame["log_production"])

        fit = fit_mrp(frame, AnalysisConfig(), seed=1)
        assert fit.converged
        assert any("crop_size" in w and "boundary" in w for w in fit.warnings)
        assert fit.tau2["crop_size"] <= 1e-3 * fit.sigma2

    def test_no_deprecated_format_warning(self, fitted):
        assert not any("deprecated" in w.lower() for w in fitted.warnings)

    def test_summary_mentions_factors(self, fitted):
        text = fitted.summary()
        for factor in GROUPING_FACTORS:
            assert factor in text


# ===================================================================
# test_partial_pooling
# ===================================================================

class TestPartialPooling:
    """Sparse groups are shrunk toward the global mean, dense groups are not."""

    def test_effect_is_weighted_partial_mean(self, sparse_fit):
        table = shrinkage_summary(sparse_fit, "crop_size")
        np.testing.assert_allclose(
            table["effect"], table["shrinkage_weight"] * table["partial_residual_mean"],
            rtol=1e-6, atol=1e-8,
        )

    def test_rare_group_shrunk(self, sparse_fit):
        table = shrinkage_summary(sparse_fit, "crop_size").set_index("level")
        rare = table.loc["crop_00|0-2"]
        assert rare["n_obs"] == 1
        ratio = rare["effect"] / rare["partial_residual_mean"]
        assert 0 < ratio < 1

    def test_large_group_keeps_own_mean(self, sparse_fit):
        table = shrinkage_summary(sparse_fit, "crop_size").set_index("level")
        large = table.loc["crop_03|50+"]
        assert large["n_obs"] == 16
        assert large["shrinkage_weight"] > 0.9
        assert table.loc["crop_00|0-2", "shrinkage_weight"] < large["shrinkage_weight"]

    def test_variance_scale_controls_pooling(self, training):
        tight = fit_mrp(training, AnalysisConfig(), variance_scale={"crop_size": 0.01})
        loose = fit_mrp(training, AnalysisConfig(), variance_scale={"crop_size": 100.0})
        tight_w = shrinkage_summary(tight, "crop_size")["shrinkage_weight"]
        loose_w = shrinkage_summary(loose, "crop_size")["shrinkage_weight"]
        assert (tight_w.values < loose_w.values).all()

    @pytest.mark.slow
    def test_group_with_hundreds_of_rows(self):
        """A crop x size level with 120 rows keeps almost all of its own mean."""
        df = simulate_production_data(
            n_countries=120, n_crops=3, farm_sizes=("small", "medium", "large"),
            regions=("North", "South"), crop_size_sd=0.8, seed=31,
        )
        countries = tuple(sorted(int(c) for c in df["country_id"].unique()))
        everyone = CountryPartition(
            observed=countries, partial_only=(), observed_fraction=1.0, seed=None
        )
        train = build_training_data(df, everyone)
        rare = (train["crop"].astype(str) == "crop_00") & (train["farm_size"].astype(str) == "small")
        keep = ~rare | (train.index == train.index[rare][0])
        fit = fit_mrp(train[keep], AnalysisConfig(), seed=2)

        table = shrinkage_summary(fit, "crop_size").set_index("level")
        large = table.loc["crop_02|large"]
        assert large["n_obs"] == 120
        assert large["shrinkage_weight"] > 0.99
        assert large["effect"] == pytest.approx(large["partial_residual_mean"], rel=0.01, abs=1e-3)

        rare_row = table.loc["crop_00|small"]
        assert rare_row["n_obs"] == 1
        assert rare_row["shrinkage_weight"] < large["shrinkage_weight"]
        assert 0 < rare_row["effect"] / rare_row["partial_residual_mean"] < 1

    def test_unknown_factor(self, fitted):
        with pytest.raises(InvalidParameterError):
            shrinkage_summary(fitted, "farm_size")


# ===================================================================
# test_fit_errors
# ===================================================================

class TestFitErrors:
    """Degenerate training partitions."""

    def test_empty_training(self, training):
        with pytest.raises(InsufficientDataError):
            fit_mrp(training.iloc[:0])

    def test_single_country(self, training):
        one = training[training["country_id"] == training["country_id"].iloc[0]]
        with pytest.raises(ModelFitError):
            fit_mrp(one)

    def test_single_cell_per_country(self, training):
        """One crop and one farm size leaves every grouping level degenerate."""
        cell = training[
            (training["crop"].astype(str) == "crop_00") & (training["farm_size"].astype(str) == "0-2")
        ]
        with pytest.raises(ModelFitError):
            fit_mrp(cell)

    def test_constant_production(self, training):
        flat = training.drop(columns="log_production").assign(production=5.0)
        with pytest.raises(ModelFitError, match="zero variance"):
            fit_mrp(flat)

    def test_invalid_variance_scale(self, training):
        with pytest.raises(InvalidParameterError):
            fit_mrp(training, variance_scale={"country": 0.0})


# ===================================================================
# test_prediction
# ===================================================================

class TestPrediction:
    """Posterior-predictive estimates for target rows."""

    def test_predictions_positive(self, fitted, small_panel, small_partition):
        frame = build_poststrat_frame(small_panel, small_partition)
        pred = predict_mrp(fitted, frame.cells, n_draws=200, seed=2)
        assert len(pred) == len(frame.cells)
        assert (pred["predicted_production"] > 0).all()
        assert (pred["lower"] <= pred["predicted_production"]).all()
        assert (pred["predicted_production"] <= pred["upper"]).all()

    def test_same_seed_same_prediction(self, fitted, training):
        a = predict_mrp(fitted, training.head(20), n_draws=100, seed=9)
        b = predict_mrp(fitted, training.head(20), n_draws=100, seed=9)
        pd.testing.assert_frame_equal(a, b)

    def test_log_mean_matches_point_prediction(self, fitted, training):
        pred = predict_mrp(fitted, training, n_draws=4000, seed=3)
        point = predict_log_mean(fitted, training)
        np.testing.assert_allclose(pred["log_mean"].values, point, atol=0.1)

    def test_unseen_fixed_level(self, fitted, training):
        target = training.head(1).copy()
        target["crop"] = "crop_99"
        with pytest.raises(InsufficientDataError):
            predict_mrp(fitted, target, n_draws=10)

    def test_empty_targets(self, fitted, training):
        pred = predict_mrp(fitted, training.iloc[:0], n_draws=10)
        assert len(pred) == 0
        assert "predicted_production" in pred.columns

    def test_invalid_draws(self, fitted, training):
        with pytest.raises(InvalidParameterError):
            predict_mrp(fitted, training.head(1), n_draws=0)


# ===================================================================
# test_poststratification
# ===================================================================

class TestPoststratification:
    """Shares and calibration of PartialOnly estimates."""

    def test_shares_sum_to_one(self, fitted, small_panel, small_partition):
        frame = build_poststrat_frame(small_panel, small_partition)
        estimates = poststratify(fitted, frame, n_draws=200, seed=4)
        shares = estimates.groupby(["country_id", "crop"], observed=True)["predicted_share"].sum()
        np.testing.assert_allclose(shares.values, 1.0)

    def test_calibrated_matches_crop_totals(self, fitted, small_panel, small_partition):
        frame = build_poststrat_frame(small_panel, small_partition)
        estimates = poststratify(fitted, frame, n_draws=200, seed=4)
        assert np.isclose(
            estimates["calibrated_production"].sum(), frame.crop_totals["crop_total"].sum()
        )

    def test_pipeline(self, small_panel, small_partition):
        result = run_mrp_pipeline(small_panel, AnalysisConfig(n_draws=200), partition=small_partition)
        assert result.partition == small_partition
        assert len(result.estimates) == 10 * 4 * 4
        assert len(result.diagnostics) == 10 * 4
        assert (result.diagnostics["ratio"] > 0).all()
        assert result.median_abs_pct_error >= 0
