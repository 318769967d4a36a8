"""Unit tests for survival_walkthrough.harmonize module.

Tests the model output adapter, ensemble averager and series merger.
"""
import pytest
import numpy as np
import pandas as pd
from survival_walkthrough.harmonize import (
    KaplanMeierResult,
    RegressionSurvivalResult,
    EnsembleMatrixResult,
    SurvivalSeries,
    ShapeMismatchError,
    EmptyInputError,
    NonFiniteValueError,
    HarmonizeError,
    UnknownPolicyError,
    average_ensemble,
    check_nan_policy,
    to_series,
    merge_series,
    slice_series,
    harmonize,
    TABLE_COLUMNS,
)


class TestToSeries:
    """Tests for the model output adapter."""

    def test_kaplan_meier_example(self):
        """Test the documented KM example point by point."""
        km = KaplanMeierResult(time=[1, 5, 10], survival=[1.0, 0.8, 0.6])

        series = to_series(km, "KM")

        assert series.points() == [(1.0, 1.0, "KM"), (5.0, 0.8, "KM"), (10.0, 0.6, "KM")]

    def test_regression_result_identity(self):
        """Test output matches the input pairs exactly."""
        time = np.array([3.0, 8.0, 15.0, 40.0])
        surv = np.array([0.97, 0.91, 0.72, 0.33])

        series = to_series(RegressionSurvivalResult(time=time, survival=surv), "Cox")

        assert len(series) == len(time)
        np.testing.assert_array_equal(series.time, time)
        np.testing.assert_array_equal(series.survival, surv)
        assert series.label == "Cox"

    def test_length_mismatch_raises(self):
        """Test time length 3 vs survival length 2 raises ShapeMismatchError."""
        km = KaplanMeierResult(time=[1, 5, 10], survival=[1.0, 0.8])

        with pytest.raises(ShapeMismatchError):
            to_series(km, "KM")

    def test_empty_result_gives_empty_series(self):
        """Test zero observations yields an empty series, not an error."""
        series = to_series(KaplanMeierResult(time=[], survival=[]), "KM")

        assert len(series) == 0
        assert series.points() == []

    def test_ensemble_is_averaged(self):
        """Test matrix results are averaged column-wise."""
        result = EnsembleMatrixResult(
            time=[2.0, 7.0],
            matrix=np.array([[1.0, 0.5], [0.0, 0.5]]),
            prediction_error=0.31,
        )

        series = to_series(result, "RF")

        np.testing.assert_allclose(series.survival, [0.5, 0.5])
        np.testing.assert_array_equal(series.time, [2.0, 7.0])

    def test_ensemble_column_mismatch_raises(self):
        """Test matrix columns must match the number of event times."""
        result = EnsembleMatrixResult(time=[1.0, 2.0, 3.0], matrix=np.ones((4, 2)))

        with pytest.raises(ShapeMismatchError):
            to_series(result, "RF")

    def test_ensemble_zero_rows_raises(self):
        """Test empty ensemble matrix raises EmptyInputError."""
        result = EnsembleMatrixResult(time=[1.0, 2.0], matrix=np.empty((0, 2)))

        with pytest.raises(EmptyInputError):
            to_series(result, "RF")

    def test_ensemble_without_subjects_is_empty(self):
        """Test an ensemble with no subjects at all raises EmptyInputError."""
        result = EnsembleMatrixResult(time=[], matrix=[])

        with pytest.raises(EmptyInputError):
            to_series(result, "RF")

    def test_unknown_type_raises(self):
        """Test unsupported result types are rejected."""
        with pytest.raises(TypeError):
            to_series({"time": [1], "survival": [1.0]}, "KM")

    def test_non_monotone_series_is_kept(self):
        """Test non-monotone input is passed through unchanged."""
        result = RegressionSurvivalResult(time=[1, 2, 3], survival=[0.9, 0.95, 0.8])

        series = to_series(result, "Aalen")

        assert not series.is_monotone()
        np.testing.assert_array_equal(series.survival, [0.9, 0.95, 0.8])


class TestAverageEnsemble:
    """Tests for the ensemble averager."""

    def test_example(self):
        """Test documented example."""
        np.testing.assert_allclose(average_ensemble([[1.0, 0.5], [0.0, 0.5]]), [0.5, 0.5])

    def test_output_length_and_bounds(self):
        """Test one value per column, bounded by column min and max."""
        rng = np.random.default_rng(0)
        matrix = rng.uniform(0, 1, size=(25, 9))

        means = average_ensemble(matrix)

        assert means.shape == (9,)
        assert np.all(means >= matrix.min(axis=0))
        assert np.all(means <= matrix.max(axis=0))

    def test_zero_rows_raises(self):
        """Test zero-row matrix raises EmptyInputError."""
        with pytest.raises(EmptyInputError):
            average_ensemble(np.empty((0, 3)))

    def test_not_two_dimensional_raises(self):
        """Test 1-D input is rejected."""
        with pytest.raises(ShapeMismatchError):
            average_ensemble([0.5, 0.4])

    def test_propagate_nan(self):
        """Test default policy propagates NaN to the affected column only."""
        means = average_ensemble([[1.0, np.nan], [0.5, 0.5]])

        assert means[0] == pytest.approx(0.75)
        assert np.isnan(means[1])

    def test_raise_on_nan(self):
        """Test raise policy rejects missing values."""
        with pytest.raises(NonFiniteValueError):
            average_ensemble([[1.0, np.nan], [0.5, 0.5]], nan_policy="raise")

    def test_raise_policy_without_nan(self):
        """Test raise policy behaves like a plain mean on clean data."""
        np.testing.assert_allclose(
            average_ensemble([[1.0, 0.4], [0.5, 0.2]], nan_policy="raise"), [0.75, 0.3]
        )

    def test_omit_nan(self):
        """Test omit policy averages the remaining rows."""
        means = average_ensemble(
            [[1.0, np.nan, np.nan], [0.5, 0.4, np.nan]], nan_policy="omit"
        )

        assert means[0] == pytest.approx(0.75)
        assert means[1] == pytest.approx(0.4)
        assert np.isnan(means[2])

    def test_unknown_policy(self):
        """Test unknown policies raise UnknownPolicyError, a HarmonizeError."""
        with pytest.raises(UnknownPolicyError, match="skip"):
            average_ensemble([[1.0]], nan_policy="skip")

    def test_unknown_policy_checked_before_shape(self):
        """Test the policy is rejected even when the matrix is empty."""
        with pytest.raises(UnknownPolicyError):
            average_ensemble([], nan_policy="skip")

    def test_harmonize_rejects_unknown_policy_without_ensemble(self):
        """Test harmonize checks the policy even when no matrix is averaged."""
        km = KaplanMeierResult(time=[1, 5], survival=[0.9, 0.7])

        with pytest.raises(UnknownPolicyError):
            harmonize([(km, "KM")], nan_policy="skip")

    def test_check_nan_policy(self):
        """Test known policies pass through unchanged."""
        for policy in ("propagate", "raise", "omit"):
            assert check_nan_policy(policy) == policy

    def test_errors_are_value_errors(self):
        """Test the error taxonomy is catchable as ValueError."""
        assert issubclass(ShapeMismatchError, HarmonizeError)
        assert issubclass(EmptyInputError, ValueError)
        assert issubclass(UnknownPolicyError, HarmonizeError)


class TestMergeSeries:
    """Tests for the series tagger/merger."""

    @pytest.fixture
    def km_and_cox(self):
        km = SurvivalSeries(time=[1.0, 5.0], survival=[0.9, 0.7], label="KM")
        cox = SurvivalSeries(time=[1.0, 4.0, 9.0], survival=[0.95, 0.8, 0.6], label="Cox")
        return km, cox

    def test_row_count_and_order(self, km_and_cox):
        """Test KM (2 points) + Cox (3 points) gives 5 rows, KM first."""
        km, cox = km_and_cox

        table = merge_series([(km, "KM"), (cox, "Cox")])

        assert list(table.columns) == TABLE_COLUMNS
        assert len(table) == 5
        assert table["model"].astype(str).tolist() == ["KM", "KM", "Cox", "Cox", "Cox"]
        assert list(table["model"].cat.categories) == ["KM", "Cox"]

    def test_shared_times_are_not_deduplicated(self, km_and_cox):
        """Test identical times across models coexist as separate rows."""
        km, cox = km_and_cox

        table = merge_series([(km, "KM"), (cox, "Cox")])

        assert (table["time"] == 1.0).sum() == 2

    def test_slice_recovers_series(self, km_and_cox):
        """Test slicing by label returns the original series."""
        km, cox = km_and_cox

        table = merge_series([(km, "KM"), (cox, "Cox")])

        for original in (km, cox):
            recovered = slice_series(table, original.label)
            np.testing.assert_array_equal(recovered.time, original.time)
            np.testing.assert_array_equal(recovered.survival, original.survival)

    def test_pair_label_overrides_series_label(self, km_and_cox):
        """Test the pair label replaces the label already on the series."""
        km, _ = km_and_cox

        table = merge_series([(km, "Kaplan-Meier")])

        assert set(table["model"].astype(str)) == {"Kaplan-Meier"}

    def test_caller_order_is_preserved(self, km_and_cox):
        """Test reversed input order reverses table order."""
        km, cox = km_and_cox

        table = merge_series([(cox, "Cox"), (km, "KM")])

        assert table["model"].iloc[0] == "Cox"
        assert list(table["model"].cat.categories) == ["Cox", "KM"]

    def test_empty_pairs_raise(self):
        """Test merging nothing raises EmptyInputError."""
        with pytest.raises(EmptyInputError):
            merge_series([])

    def test_harmonize_end_to_end(self):
        """Test adapting and merging the three result variants."""
        results = [
            (KaplanMeierResult(time=[1, 5], survival=[0.9, 0.7]), "KM"),
            (RegressionSurvivalResult(time=[1, 5, 9], survival=[0.95, 0.8, 0.6]), "Cox"),
            (EnsembleMatrixResult(time=[2, 6], matrix=[[0.9, 0.6], [0.7, 0.4]]), "RF"),
        ]

        table = harmonize(results)

        assert len(table) == 7
        rf = slice_series(table, "RF")
        np.testing.assert_allclose(rf.survival, [0.8, 0.5])


class TestSurvivalSeries:
    """Tests for the SurvivalSeries value type."""

    def test_arrays_are_read_only(self):
        """Test series data cannot be mutated after construction."""
        series = SurvivalSeries(time=[1.0, 2.0], survival=[0.9, 0.8], label="KM")

        with pytest.raises(ValueError):
            series.survival[0] = 0.1

    def test_source_array_is_copied(self):
        """Test mutating the input array does not change the series."""
        surv = np.array([0.9, 0.8])
        series = SurvivalSeries(time=[1.0, 2.0], survival=surv, label="KM")

        surv[0] = 0.0

        assert series.survival[0] == 0.9

    def test_median_survival(self):
        """Test median read off a Kaplan-Meier curve."""
        km = KaplanMeierResult(time=[1, 2, 3, 4], survival=[0.75, 0.5, 0.25, 0.25])

        assert km.median_survival() == 2.0
        assert KaplanMeierResult(time=[1], survival=[0.9]).median_survival() == float("inf")
