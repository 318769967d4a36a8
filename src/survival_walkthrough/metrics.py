from __future__ import annotations
import numpy as np
from sksurv.metrics import (
    concordance_index_censored,
    integrated_brier_score,
)


def compute_cindex(y, risk_scores) -> float:
    """Calculate Harrell's concordance index.

    Measures how well the risk scores order pairs of patients by their
    observed survival times, accounting for right censoring.

    Args:
        y: Structured array with dtype=[('event', bool), ('time', float)]
        risk_scores: Array of shape (n_samples,) with predicted risk scores.
            Higher values indicate higher risk (shorter survival)

    Returns:
        Concordance index between 0 and 1 (0.5 = random ordering)

    Example:
        >>> cindex = compute_cindex(y, cox.predict_risk(design))
        >>> print(f"C-index: {cindex:.3f}")
        C-index: 0.736
    """
    result = concordance_index_censored(y["event"], y["time"], np.asarray(risk_scores, dtype=float))
    return float(result[0])


def prediction_error(cindex: float) -> float:
    """Convert a concordance index into the forest's prediction error (1 - C)."""
    return float(1.0 - cindex)


def compute_ibs(times: np.ndarray, y_train, y_test, surv_pred: np.ndarray) -> float:
    """Calculate Integrated Brier Score for survival function predictions.

    Args:
        times: Time points at which predictions were evaluated, shape (n_times,)
        y_train: Structured array used to estimate the censoring distribution
        y_test: Structured array of evaluated subjects
        surv_pred: Predicted survival probabilities with shape (n_test, n_times)

    Returns:
        Integrated Brier score (lower is better, typically between 0 and 0.25)
    """
    ibs = integrated_brier_score(y_train, y_test, surv_pred, times)
    return float(ibs)
