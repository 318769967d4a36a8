"""Harmonize heterogeneous survival model outputs into one comparison table.

Each fitted model hands back its survival estimate in a different shape:

- Kaplan-Meier: parallel time / survival-probability sequences
- Cox regression: a survival curve at mean covariates, same shape as KM
- Random survival forest: a subject x time matrix over the unique event times

This module turns each of them into a ``SurvivalSeries`` and stacks the
series into a long-format table (``time``, ``survival_probability``,
``model``) that a plotting routine can consume directly.

Example:
    >>> km = KaplanMeierResult(time=[1, 5, 10], survival=[1.0, 0.8, 0.6])
    >>> cox = RegressionSurvivalResult(time=[1, 5, 10], survival=[0.9, 0.7, 0.5])
    >>> table = merge_series([(to_series(km, "KM"), "KM"), (to_series(cox, "Cox"), "Cox")])
    >>> table.shape
    (6, 3)
"""
from __future__ import annotations
import logging
import warnings
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Tuple, Union
import numpy as np
import pandas as pd

logger = logging.getLogger("survival_walkthrough.harmonize")

NanPolicy = Literal["propagate", "raise", "omit"]
NAN_POLICIES = ("propagate", "raise", "omit")

TIME_COL = "time"
SURV_COL = "survival_probability"
MODEL_COL = "model"
TABLE_COLUMNS = [TIME_COL, SURV_COL, MODEL_COL]


class HarmonizeError(ValueError):
    """Base class for errors raised while harmonizing model outputs."""


class ShapeMismatchError(HarmonizeError):
    """Parallel sequences (or matrix columns and times) differ in length."""


class EmptyInputError(HarmonizeError):
    """Input has no rows where at least one is required."""


class NonFiniteValueError(HarmonizeError):
    """Missing values found while ``nan_policy='raise'``."""


class UnknownPolicyError(HarmonizeError):
    """``nan_policy`` is not one of NAN_POLICIES."""


def check_nan_policy(nan_policy: str) -> str:
    """Return nan_policy unchanged, raising UnknownPolicyError if it is not known."""
    if nan_policy not in NAN_POLICIES:
        raise UnknownPolicyError(
            f"Unknown nan_policy: {nan_policy!r}. Use one of {', '.join(NAN_POLICIES)}"
        )
    return nan_policy


def _as_1d(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise ShapeMismatchError(f"{name} must be one-dimensional, got shape {arr.shape}")
    return arr


@dataclass(frozen=True)
class KaplanMeierResult:
    """Stepwise survival function from a Kaplan-Meier fit.

    Attributes:
        time: Unique event/censoring times in increasing order
        survival: Estimated survival probability at each time
        conf_lower: Optional lower confidence band
        conf_upper: Optional upper confidence band
    """
    time: Sequence[float]
    survival: Sequence[float]
    conf_lower: Optional[Sequence[float]] = None
    conf_upper: Optional[Sequence[float]] = None

    def median_survival(self) -> float:
        """Smallest time at which survival drops to 0.5 or below (inf if never)."""
        time = np.asarray(self.time, dtype=float)
        surv = np.asarray(self.survival, dtype=float)
        below = np.flatnonzero(surv <= 0.5)
        if below.size == 0:
            return float("inf")
        return float(time[below[0]])


@dataclass(frozen=True)
class RegressionSurvivalResult:
    """Survival curve derived from a fitted hazard regression model."""
    time: Sequence[float]
    survival: Sequence[float]


@dataclass(frozen=True)
class EnsembleMatrixResult:
    """Per-subject survival probabilities from an ensemble model.

    Attributes:
        time: Unique ordered event times (one per matrix column)
        matrix: Survival probabilities with shape (n_subjects, n_times)
        prediction_error: Scalar error metric reported by the ensemble,
            carried along untouched
    """
    time: Sequence[float]
    matrix: np.ndarray
    prediction_error: Optional[float] = None


SurvivalResult = Union[KaplanMeierResult, RegressionSurvivalResult, EnsembleMatrixResult]


@dataclass(frozen=True)
class SurvivalSeries:
    """Immutable (time, survival probability) sequence for one model."""
    time: np.ndarray
    survival: np.ndarray
    label: str

    def __post_init__(self):
        time = _as_1d(self.time, "time").copy()
        survival = _as_1d(self.survival, "survival").copy()
        if time.shape != survival.shape:
            raise ShapeMismatchError(
                f"{self.label}: time has {time.size} points but survival has {survival.size}"
            )
        time.setflags(write=False)
        survival.setflags(write=False)
        object.__setattr__(self, "time", time)
        object.__setattr__(self, "survival", survival)

    def __len__(self) -> int:
        return int(self.time.size)

    def is_monotone(self) -> bool:
        """True when times strictly increase and survival never increases."""
        if len(self) < 2:
            return True
        finite = np.isfinite(self.survival)
        surv = self.survival[finite]
        return bool(np.all(np.diff(self.time) > 0) and np.all(np.diff(surv) <= 0))

    def points(self) -> List[Tuple[float, float, str]]:
        """Return the series as a list of (time, survival_probability, label) tuples."""
        return [(float(t), float(s), self.label) for t, s in zip(self.time, self.survival)]

    def with_label(self, label: str) -> "SurvivalSeries":
        return SurvivalSeries(time=self.time, survival=self.survival, label=label)


def average_ensemble(matrix, nan_policy: NanPolicy = "propagate") -> np.ndarray:
    """Average per-subject survival curves into one curve.

    Args:
        matrix: Array-like with shape (n_subjects, n_times). Rows are subjects,
            columns are the ordered unique event times.
        nan_policy: What to do with missing values:
            - "propagate": a NaN anywhere in a column makes that column's mean NaN
            - "raise": raise NonFiniteValueError if any NaN is present
            - "omit": skip NaNs and average over the remaining rows

    Returns:
        Array with shape (n_times,) holding the column means

    Raises:
        EmptyInputError: If the matrix has zero rows (an empty sequence counts
            as a matrix with no subjects)
        ShapeMismatchError: If the input is not two-dimensional
        NonFiniteValueError: If nan_policy="raise" and NaNs are present
        UnknownPolicyError: If nan_policy is unknown
        ValueError: If entries are not numeric

    Example:
        >>> average_ensemble([[1.0, 0.5], [0.0, 0.5]])
        array([0.5, 0.5])
    """
    check_nan_policy(nan_policy)
    arr = np.asarray(matrix, dtype=float)
    if arr.ndim == 1 and arr.size == 0:
        # no subjects at all
        arr = arr.reshape(0, 0)
    if arr.ndim != 2:
        raise ShapeMismatchError(f"Expected a 2-D survival matrix, got shape {arr.shape}")
    if arr.shape[0] == 0:
        raise EmptyInputError("Cannot average a survival matrix with zero rows")

    if nan_policy == "propagate":
        return arr.mean(axis=0)

    has_nan = np.isnan(arr)
    if nan_policy == "raise":
        if has_nan.any():
            bad_cols = np.flatnonzero(has_nan.any(axis=0))
            raise NonFiniteValueError(
                f"Survival matrix contains missing values in {bad_cols.size} column(s), "
                f"first at column {bad_cols[0]}"
            )
        return arr.mean(axis=0)

    # omit
    if has_nan.any():
        logger.debug(f"Omitting {int(has_nan.sum())} missing value(s) while averaging")
    with warnings.catch_warnings():
        # all-NaN columns stay NaN
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return np.nanmean(arr, axis=0)


def to_series(
    result: SurvivalResult,
    label: str,
    nan_policy: NanPolicy = "propagate",
) -> SurvivalSeries:
    """Convert a model's native survival result into a SurvivalSeries.

    Args:
        result: One of KaplanMeierResult, RegressionSurvivalResult, EnsembleMatrixResult
        label: Model label stamped on the series
        nan_policy: Missing-value policy used when averaging an ensemble matrix

    Returns:
        SurvivalSeries with one point per input time

    Raises:
        ShapeMismatchError: If time and survival lengths differ, or the matrix
            column count does not match the number of times
        EmptyInputError: If an ensemble matrix has zero rows
        TypeError: If result is not a known survival result type
    """
    if isinstance(result, (KaplanMeierResult, RegressionSurvivalResult)):
        time = _as_1d(result.time, "time")
        survival = _as_1d(result.survival, "survival")
        if time.size != survival.size:
            raise ShapeMismatchError(
                f"{label}: {time.size} times but {survival.size} survival probabilities"
            )
    elif isinstance(result, EnsembleMatrixResult):
        time = _as_1d(result.time, "time")
        matrix = np.asarray(result.matrix, dtype=float)
        if matrix.ndim == 2 and matrix.shape[1] != time.size:
            raise ShapeMismatchError(
                f"{label}: matrix has {matrix.shape[1]} columns but {time.size} event times"
            )
        survival = average_ensemble(matrix, nan_policy=nan_policy)
    else:
        raise TypeError(f"Unsupported survival result type: {type(result).__name__}")

    series = SurvivalSeries(time=time, survival=survival, label=label)
    if len(series) == 0:
        logger.warning(f"{label}: model produced no observations, series is empty")
    elif not series.is_monotone():
        logger.warning(f"{label}: series is not a non-increasing step function of time")
    return series


def merge_series(pairs: Sequence[Tuple[SurvivalSeries, str]]) -> pd.DataFrame:
    """Stamp each series with its label and stack them into one long table.

    Args:
        pairs: Ordered (series, label) pairs. The pair label replaces whatever
            label the series already carries. Order drives legend order.

    Returns:
        DataFrame with columns time, survival_probability, model. The model
        column is an ordered categorical following the input order.

    Raises:
        EmptyInputError: If no pairs are given

    Example:
        >>> table = merge_series([(km_series, "KM"), (cox_series, "Cox")])
        >>> list(table["model"].cat.categories)
        ['KM', 'Cox']
    """
    if len(pairs) == 0:
        raise EmptyInputError("At least one survival series is required to build a comparison table")

    frames = []
    for series, label in pairs:
        frames.append(pd.DataFrame({
            TIME_COL: series.time,
            SURV_COL: series.survival,
            MODEL_COL: label,
        }))

    table = pd.concat(frames, ignore_index=True)
    order = list(dict.fromkeys(label for _, label in pairs))
    table[MODEL_COL] = pd.Categorical(table[MODEL_COL], categories=order, ordered=True)
    logger.info(f"Comparison table built: {len(table)} rows across models {order}")
    return table[TABLE_COLUMNS]


def slice_series(table: pd.DataFrame, label: str) -> SurvivalSeries:
    """Recover one model's series from a comparison table."""
    part = table[table[MODEL_COL] == label]
    return SurvivalSeries(
        time=part[TIME_COL].to_numpy(dtype=float),
        survival=part[SURV_COL].to_numpy(dtype=float),
        label=label,
    )


def harmonize(
    results: Sequence[Tuple[SurvivalResult, str]],
    nan_policy: NanPolicy = "propagate",
) -> pd.DataFrame:
    """Adapt each (result, label) pair and merge them into a comparison table."""
    check_nan_policy(nan_policy)
    pairs = [(to_series(result, label, nan_policy=nan_policy), label) for result, label in results]
    return merge_series(pairs)
