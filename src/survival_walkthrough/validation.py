from __future__ import annotations
from typing import Dict, List
import numpy as np
import pandas as pd
from lifelines.statistics import multivariate_logrank_test, proportional_hazard_test

from survival_walkthrough.data import TIME_COL, EVENT_COL
from survival_walkthrough.metrics import compute_cindex, compute_ibs
from survival_walkthrough.utils import default_time_grid


def logrank_by_group(df: pd.DataFrame, group_col: str) -> Dict[str, float]:
    """Log-rank test for equality of survival curves across levels of group_col.

    Args:
        df: Prepared DataFrame with time, status and group_col
        group_col: Grouping column (e.g. "trt", "age_group")

    Returns:
        Dictionary with group, n_groups, test_statistic and p_value

    Raises:
        ValueError: If group_col has fewer than two observed levels

    Example:
        >>> logrank_by_group(df, "trt")["p_value"]
        0.928
    """
    groups = df[group_col].astype(str)
    n_groups = groups.nunique()
    if n_groups < 2:
        raise ValueError(f"Log-rank test needs at least two groups in '{group_col}', got {n_groups}")

    result = multivariate_logrank_test(df[TIME_COL], groups, df[EVENT_COL])
    return {
        "group": group_col,
        "n_groups": int(n_groups),
        "test_statistic": float(result.test_statistic),
        "p_value": float(result.p_value),
    }


def ph_assumption_flags(cox, frame: pd.DataFrame) -> pd.DataFrame:
    """Check proportional hazards assumption using Schoenfeld residuals.

    Low p-values flag covariates whose effect appears to change over time;
    those are exactly the effects the Aalen additive model lets vary.

    Args:
        cox: Fitted CoxPHWrapper
        frame: The frame the Cox model was fitted on

    Returns:
        DataFrame with a 'schoenfeld_p' column per covariate, sorted by p-value
        (most problematic first)

    Example:
        >>> flags = ph_assumption_flags(cox, frame)
        >>> flags[flags["schoenfeld_p"] < 0.05].index.tolist()
        ['karno', 'celltype_large']
    """
    results = proportional_hazard_test(cox.model, frame, time_transform="rank")
    out = (
        results.summary[["p"]]
        .rename(columns={"p": "schoenfeld_p"})
        .sort_values("schoenfeld_p")
    )
    return out


def evaluate_models(
    models: List[tuple],
    y,
    n_times: int = 50,
    compute_brier: bool = True,
) -> pd.DataFrame:
    """Score fitted models on the data they were fitted on.

    Args:
        models: List of (name, wrapper, features) tuples, where features is
            whatever the wrapper's predict methods take (lifelines frame for
            Cox, feature DataFrame for the forest)
        y: Structured array with dtype=[('event', bool), ('time', float)]
        n_times: Number of grid points for the integrated Brier score
        compute_brier: Whether to compute the integrated Brier score

    Returns:
        DataFrame with one row per model: model, cindex and (optionally) ibs
    """
    times = default_time_grid(y, n=n_times, y_test=y)
    rows = []
    for name, wrapper, features in models:
        row = {
            "model": name,
            "cindex": compute_cindex(y, wrapper.predict_risk(features)),
        }
        if compute_brier:
            surv = wrapper.predict_survival_function(features, times)
            row["ibs"] = compute_ibs(times, y, y, surv)
        else:
            row["ibs"] = np.nan
        rows.append(row)
    return pd.DataFrame(rows)
