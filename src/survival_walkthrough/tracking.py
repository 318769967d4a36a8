"""MLflow tracking with graceful degradation.

Tracking is optional for the walkthrough: every helper here returns False (or None)
and logs a warning instead of raising when MLflow is unavailable, so the
CSV and plot outputs are always produced.
"""
from __future__ import annotations
import os
from pathlib import Path
import logging
from typing import Dict, Any, Optional
import mlflow
import mlflow.exceptions

EXPERIMENT_NAME = "survival_walkthrough"


def _local_store(directory: str) -> tuple[str, str]:
    """Database tracking URI and artifact root for a local mlruns directory."""
    directory = Path(directory).absolute()
    directory.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{(directory / 'mlflow.db').as_posix()}", (directory / "artifacts").as_uri()


def start_run(
    run_name: str,
    tracking_uri: Optional[str] = None,
    tags: Dict[str, str] | None = None,
    logger: Optional[logging.Logger] = None,
):
    """Start an MLflow run under the survival_walkthrough experiment.

    A local directory is turned into a SQLite tracking database
    (``<dir>/mlflow.db``) with artifacts stored in ``<dir>/artifacts``.

    Args:
        run_name: Name identifier for this run
        tracking_uri: Optional local mlruns directory
        tags: Optional key-value tags attached to the run
        logger: Logger receiving the warning when MLflow cannot start

    Returns:
        Active MLflow run (usable as a context manager), or None if the
        tracking store could not be opened

    Example:
        >>> run = start_run("walkthrough_sample", tracking_uri="data/outputs/sample/mlruns")
        >>> with run:
        ...     safe_log_metrics({"cox_cindex": 0.736})
    """
    try:
        artifact_location = None
        if tracking_uri is not None:
            store_uri, artifact_location = _local_store(tracking_uri)
            mlflow.set_tracking_uri(store_uri)
        if mlflow.get_experiment_by_name(EXPERIMENT_NAME) is None:
            mlflow.create_experiment(EXPERIMENT_NAME, artifact_location=artifact_location)
        mlflow.set_experiment(EXPERIMENT_NAME)
        return mlflow.start_run(run_name=run_name, tags=tags)
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow tracking disabled, could not start run: {e}")
        return None
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error starting MLflow run, tracking disabled: {e}")
        return None


def safe_log_metrics(
    metrics: Dict[str, float],
    step: Optional[int] = None,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log metrics to MLflow, returning False instead of raising on failure."""
    try:
        mlflow.log_metrics(metrics, step=step)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow metrics logging failed: {e}")
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow metrics logging: {e}")
        return False


def safe_log_params(
    params: Dict[str, Any],
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log parameters to MLflow, stringifying values MLflow rejects."""
    try:
        for k, v in params.items():
            try:
                mlflow.log_param(k, v)
            except mlflow.exceptions.MlflowException:
                mlflow.log_param(k, str(v))
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow params logging failed: {e}")
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow params logging: {e}")
        return False


def safe_log_artifact(
    path: str,
    logger: Optional[logging.Logger] = None
) -> bool:
    """Log a file artifact to MLflow; missing files are skipped with a warning."""
    if not os.path.exists(path):
        if logger:
            logger.warning(f"Artifact not found, skipping: {path}")
        return False

    try:
        mlflow.log_artifact(path)
        return True
    except mlflow.exceptions.MlflowException as e:
        if logger:
            logger.warning(f"MLflow artifact logging failed for {path}: {e}")
        return False
    except Exception as e:
        if logger:
            logger.error(f"Unexpected error in MLflow artifact logging for {path}: {e}")
        return False
