"""Plots for the survival walkthrough.

All figures are written to disk with the headless Agg backend and closed
immediately; each function returns the path it wrote.
"""
from __future__ import annotations
import math
import os
from typing import Dict, Optional

import matplotlib

matplotlib.use("Agg")  # headless
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

from survival_walkthrough.harmonize import (  # noqa: E402
    KaplanMeierResult,
    EmptyInputError,
    TIME_COL,
    SURV_COL,
    MODEL_COL,
)

SURVIVAL_YLABEL = r"est. probability of survival $\hat{S}(t)$"


def _save(out_path: str) -> str:
    directory = os.path.dirname(out_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    plt.tight_layout()
    plt.savefig(out_path, dpi=150)
    plt.close()
    return out_path


def plot_km_curves(
    curves: Dict[str, KaplanMeierResult],
    out_path: str,
    title: str = "Kaplan-Meier estimate",
    legend_title: Optional[str] = None,
    show_ci: bool = True,
) -> str:
    """Step plot of one or more Kaplan-Meier curves with confidence bands."""
    plt.figure(figsize=(8, 5))
    for label, km in curves.items():
        time = np.asarray(km.time, dtype=float)
        surv = np.asarray(km.survival, dtype=float)
        if time.size == 0:
            continue
        plt.step(time, surv, where="post", label=label)
        if show_ci and km.conf_lower is not None and km.conf_upper is not None:
            plt.fill_between(time, km.conf_lower, km.conf_upper, alpha=0.25, step="post")
    plt.ylim(0, 1)
    plt.xlabel("time (days)")
    plt.ylabel(SURVIVAL_YLABEL)
    plt.title(title)
    if len(curves) > 1 or legend_title:
        plt.legend(title=legend_title, loc="best")
    return _save(out_path)


def plot_aalen_coefficients(
    cumulative_coefficients: pd.DataFrame,
    out_path: str,
    title: str = "Aalen additive model: cumulative coefficients",
) -> str:
    """Grid of step plots, one panel per cumulative regression coefficient."""
    columns = list(cumulative_coefficients.columns)
    n_cols = 3
    n_rows = max(1, math.ceil(len(columns) / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(4 * n_cols, 3 * n_rows), squeeze=False)
    times = cumulative_coefficients.index.to_numpy(dtype=float)
    for ax, col in zip(axes.flat, columns):
        ax.step(times, cumulative_coefficients[col].to_numpy(dtype=float), where="post")
        ax.axhline(0.0, linestyle="--", color="grey", linewidth=0.8)
        ax.set_title(str(col))
        ax.set_xlabel("time (days)")
    for ax in list(axes.flat)[len(columns):]:
        ax.set_visible(False)
    fig.suptitle(title)
    return _save(out_path)


def plot_variable_importance(
    importance: pd.DataFrame,
    out_path: str,
    title: str = "Random survival forest: permutation importance",
) -> str:
    """Horizontal bar chart of importance_mean with importance_std error bars."""
    ordered = importance.sort_values("importance_mean")
    plt.figure(figsize=(7, 4))
    plt.barh(
        [str(i) for i in ordered.index],
        ordered["importance_mean"],
        xerr=ordered.get("importance_std"),
    )
    plt.xlabel("Mean decrease in concordance")
    plt.title(title)
    return _save(out_path)


def plot_comparison(
    table: pd.DataFrame,
    out_path: str,
    title: str = "Survival curves by model",
) -> str:
    """Overlay one step line per model from a comparison table.

    Lines are drawn in the order of the model column's categories (or first
    appearance for non-categorical tables), so the legend follows the order
    the table was merged in.

    Raises:
        EmptyInputError: If the table has no rows
    """
    if table.empty:
        raise EmptyInputError("Comparison table is empty, nothing to plot")

    if isinstance(table[MODEL_COL].dtype, pd.CategoricalDtype):
        labels = list(table[MODEL_COL].cat.categories)
    else:
        labels = list(dict.fromkeys(table[MODEL_COL]))

    plt.figure(figsize=(8, 5))
    for label in labels:
        part = table[table[MODEL_COL] == label]
        if part.empty:
            continue
        plt.step(part[TIME_COL], part[SURV_COL], where="post", label=str(label))
    plt.ylim(0, 1)
    plt.xlabel("time (days)")
    plt.ylabel(SURVIVAL_YLABEL)
    plt.title(title)
    plt.legend(title="model", loc="best")
    return _save(out_path)
