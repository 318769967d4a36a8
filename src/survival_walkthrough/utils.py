from __future__ import annotations
import os
import datetime as dt
import numpy as np
import pandas as pd
from typing import Literal

# Run type for distinguishing sample vs production runs
RunType = Literal["sample", "production"]


def ensure_dir(path: str):
    """Create directory if it doesn't exist.

    Args:
        path: Directory path to create

    Example:
        >>> ensure_dir("data/outputs/sample/plots")
    """
    os.makedirs(path, exist_ok=True)


def default_time_grid(y_struct, n: int = 50, y_test=None) -> np.ndarray:
    """Generate time grid for evaluating survival functions.

    Creates evenly spaced points between the 5th and 95th percentiles of the
    observed times, constrained to the test set's follow-up range if provided.

    Args:
        y_struct: Structured array with dtype=[('event', bool), ('time', float)]
        n: Number of time points to generate. Defaults to 50
        y_test: Optional structured array whose observed range bounds the grid.
            Integrated Brier score requires every time point to lie strictly
            inside the test follow-up.

    Returns:
        Array of time points with shape (n,)

    Example:
        >>> times = default_time_grid(y, n=50, y_test=y)
        >>> print(f"Time range: {times[0]:.1f} to {times[-1]:.1f}")
        Time range: 7.1 to 391.5
    """
    t_min = float(np.percentile(y_struct["time"], 5))
    t_max = float(np.percentile(y_struct["time"], 95))

    if y_test is not None:
        test_min = float(y_test["time"].min())
        test_max = float(y_test["time"].max())

        # scikit-survival uses an exclusive upper bound
        t_min = max(t_min, test_min + 0.1)
        t_max = min(t_max, test_max - 0.1)

        if t_min >= t_max:
            t_min = test_min + 0.1
            t_max = test_max - 0.1

    return np.linspace(t_min, t_max, n)


def save_table(df: pd.DataFrame, outdir: str, filename: str, index: bool = False) -> str:
    """Save a DataFrame as CSV inside outdir, creating the directory.

    Args:
        df: Table to write
        outdir: Output directory path
        filename: CSV file name
        index: Whether to write the index (True for coefficient summaries)

    Returns:
        Full path to the saved CSV file

    Example:
        >>> path = save_table(metrics_df, "data/outputs/sample/artifacts", "model_metrics.csv")
    """
    ensure_dir(outdir)
    path = os.path.join(outdir, filename)
    df.to_csv(path, index=index)
    return path


def versioned_name(base: str, run_type: RunType = None) -> str:
    """Generate timestamped name in format "[runtype_]base_YYYYMMDD_HHMMSS".

    Example:
        >>> versioned_name("rsf", run_type="sample")
        'sample_rsf_20250123_143052'
    """
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    if run_type:
        return f"{run_type}_{base}_{ts}"
    return f"{base}_{ts}"


def get_output_paths(run_type: RunType = "sample", base: str = "data/outputs") -> dict:
    """Get standardized output directory paths for a given run type.

    Args:
        run_type: Type of run - "sample" or "production"
        base: Root output directory

    Returns:
        Dictionary with keys base_dir, artifacts, plots, models, logs, mlruns.
        All directories are created if missing.

    Example:
        >>> paths = get_output_paths("sample")
        >>> print(paths["plots"])
        data/outputs/sample/plots
    """
    base_dir = os.path.join(base, run_type)

    paths = {
        "base_dir": base_dir,
        "artifacts": os.path.join(base_dir, "artifacts"),
        "plots": os.path.join(base_dir, "plots"),
        "models": os.path.join(base_dir, "models"),
        "logs": os.path.join(base_dir, "logs"),
        "mlruns": os.path.join(base_dir, "mlruns"),
    }

    for path in paths.values():
        ensure_dir(path)

    return paths
