"""Unit tests for survival_walkthrough.models module.

Tests Kaplan-Meier estimation and the Cox, Aalen and random survival forest
wrappers on the veteran lung cancer data.
"""
import pytest
import numpy as np
from survival_walkthrough.data import (
    load_data,
    prepare_data,
    lifelines_frame,
    forest_features,
)
from survival_walkthrough.harmonize import (
    KaplanMeierResult,
    RegressionSurvivalResult,
    EnsembleMatrixResult,
    to_series,
)
from survival_walkthrough import metrics
from survival_walkthrough.models import (
    fit_kaplan_meier,
    fit_kaplan_meier_by_group,
    CoxPHWrapper,
    AalenAdditiveWrapper,
    RSFWrapper,
)


@pytest.fixture(scope="module")
def prepared():
    return prepare_data(load_data())


@pytest.fixture(scope="module")
def design(prepared):
    return lifelines_frame(prepared)


@pytest.fixture(scope="module")
def fitted_cox(design):
    return CoxPHWrapper().fit(design)


@pytest.fixture(scope="module")
def fitted_rsf(prepared):
    X, y = forest_features(prepared)
    return RSFWrapper(n_estimators=50, random_state=0).fit(X, y), X, y


class TestKaplanMeier:
    """Tests for fit_kaplan_meier and fit_kaplan_meier_by_group."""

    def test_known_values(self):
        """Test product-limit values on a hand-computed example."""
        km = fit_kaplan_meier(
            event=[True, True, False, True, False],
            time=[1.0, 2.0, 3.0, 4.0, 5.0],
        )

        assert isinstance(km, KaplanMeierResult)
        np.testing.assert_array_equal(km.time, [1.0, 2.0, 3.0, 4.0, 5.0])
        np.testing.assert_allclose(km.survival, [0.8, 0.6, 0.6, 0.3, 0.3])

    def test_confidence_band_brackets_estimate(self):
        """Test lower <= estimate <= upper at every time."""
        km = fit_kaplan_meier(
            event=[True, True, False, True, False],
            time=[1.0, 2.0, 3.0, 4.0, 5.0],
        )

        assert np.all(km.conf_lower <= km.survival + 1e-12)
        assert np.all(km.survival <= km.conf_upper + 1e-12)

    def test_empty_input(self):
        """Test no observations give an empty curve."""
        km = fit_kaplan_meier(event=[], time=[])

        assert len(km.time) == 0
        assert len(to_series(km, "KM")) == 0

    def test_veteran_overall(self, prepared):
        """Test the overall curve is non-increasing and starts below 1."""
        km = fit_kaplan_meier(prepared["status"], prepared["time"])

        assert np.all(np.diff(km.survival) <= 0)
        assert km.survival[0] < 1.0
        assert 0 < km.median_survival() < 200

    def test_by_group_follows_levels(self, prepared):
        """Test one curve per treatment level in categorical order."""
        curves = fit_kaplan_meier_by_group(prepared, "trt")

        assert list(curves) == ["standard", "test"]
        assert all(len(km.time) > 0 for km in curves.values())

    def test_by_group_skips_empty_levels(self, prepared):
        """Test unobserved categorical levels are skipped."""
        subset = prepared[prepared["trt"] == "standard"]

        curves = fit_kaplan_meier_by_group(subset, "trt")

        assert list(curves) == ["standard"]


class TestCoxPHWrapper:
    """Tests for the lifelines Cox wrapper."""

    def test_concordance(self, fitted_cox):
        """Test training concordance is in the expected range."""
        assert 0.65 < fitted_cox.score() < 0.8

    def test_summary(self, fitted_cox):
        """Test coefficient table covers the dummy-encoded covariates."""
        summary = fitted_cox.summary()

        assert {"karno", "trt_test", "celltype_large"} <= set(summary.index)
        # Better performance status lowers the hazard
        assert summary.loc["karno", "exp(coef)"] < 1.0

    def test_survival_result(self, fitted_cox, design):
        """Test mean-covariate curve is a valid non-increasing survival curve."""
        result = fitted_cox.survival_result(design)

        assert isinstance(result, RegressionSurvivalResult)
        assert len(result.time) == len(result.survival)
        assert np.all((result.survival >= 0) & (result.survival <= 1))
        assert np.all(np.diff(result.survival) <= 1e-12)

    def test_predict_survival_function_shape(self, fitted_cox, design):
        """Test per-subject predictions have shape (n_samples, n_times)."""
        surv = fitted_cox.predict_survival_function(design, [30.0, 90.0, 180.0])

        assert surv.shape == (len(design), 3)

    def test_predict_risk(self, fitted_cox, design):
        """Test one positive partial hazard per subject."""
        risk = fitted_cox.predict_risk(design)

        assert risk.shape == (len(design),)
        assert np.all(risk > 0)

    def test_too_few_rows(self, design):
        """Test fitting on a single row raises ValueError."""
        with pytest.raises(ValueError, match="at least 2 samples"):
            CoxPHWrapper().fit(design.head(1))

    def test_non_finite_covariates(self, design):
        """Test missing covariates are rejected before fitting."""
        bad = design.copy()
        bad.loc[0, "karno"] = np.nan

        with pytest.raises(ValueError, match="Non-finite"):
            CoxPHWrapper().fit(bad)


class TestAalenAdditiveWrapper:
    """Tests for the lifelines Aalen additive wrapper."""

    @pytest.fixture(scope="class")
    def fitted(self, design):
        return AalenAdditiveWrapper().fit(design)

    def test_cumulative_coefficients(self, fitted):
        """Test one cumulative coefficient column per covariate over time."""
        coefs = fitted.cumulative_coefficients()

        assert {"karno", "trt_test"} <= set(coefs.columns)
        assert coefs.index.is_monotonic_increasing

    def test_survival_result(self, fitted, design):
        """Test mean-covariate curve has matching lengths."""
        result = fitted.survival_result(design)

        assert isinstance(result, RegressionSurvivalResult)
        assert len(result.time) == len(result.survival)
        assert len(to_series(result, "Aalen")) == len(result.time)

    def test_score(self, fitted):
        """Test concordance is a probability."""
        assert 0.0 <= fitted.score() <= 1.0


class TestRSFWrapper:
    """Tests for the random survival forest wrapper."""

    def test_survival_result_matrix(self, fitted_rsf):
        """Test matrix has one row per subject and one column per event time."""
        rsf, X, _ = fitted_rsf

        result = rsf.survival_result(X)

        assert isinstance(result, EnsembleMatrixResult)
        assert result.matrix.shape == (len(X), len(rsf.forest.unique_times_))
        assert len(to_series(result, "RF")) == len(rsf.forest.unique_times_)

    def test_prediction_error(self, fitted_rsf):
        """Test prediction error is 1 - out-of-bag concordance."""
        rsf, X, _ = fitted_rsf

        assert rsf.prediction_error == pytest.approx(1.0 - rsf.oob_cindex)
        assert rsf.prediction_error == metrics.prediction_error(rsf.oob_cindex)
        assert rsf.survival_result(X).prediction_error == pytest.approx(rsf.prediction_error)
        assert 0.5 < rsf.oob_cindex < 0.85

    def test_predict_survival_function(self, fitted_rsf):
        """Test step functions evaluated on a grid."""
        rsf, X, _ = fitted_rsf

        surv = rsf.predict_survival_function(X.head(5), [30.0, 90.0, 180.0])

        assert surv.shape == (5, 3)
        assert np.all(np.diff(surv, axis=1) <= 1e-12)

    def test_predict_risk(self, fitted_rsf):
        """Test one risk score per subject."""
        rsf, X, _ = fitted_rsf

        assert rsf.predict_risk(X).shape == (len(X),)

    def test_variable_importance(self, fitted_rsf):
        """Test importance covers every input variable, sorted descending."""
        rsf, X, y = fitted_rsf

        importance = rsf.variable_importance(X, y, n_repeats=2)

        assert set(importance.index) == set(X.columns)
        assert list(importance.columns) == ["importance_mean", "importance_std"]
        assert importance["importance_mean"].is_monotonic_decreasing

    def test_unfitted_forest(self):
        """Test accessing the forest before fit raises ValueError."""
        with pytest.raises(ValueError, match="not fitted"):
            RSFWrapper().forest
