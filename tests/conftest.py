"""Pytest configuration and shared fixtures for survival walkthrough tests.

Provides the bundled veteran data (raw and prepared), a small R-coded frame,
and structured survival arrays.
"""
import pytest
import pandas as pd
import numpy as np
from pathlib import Path

from survival_walkthrough.data import load_data, prepare_data


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def veteran_raw():
    """Bundled veteran lung cancer data with canonical column names."""
    return load_data()


@pytest.fixture
def veteran(veteran_raw):
    """Veteran data with relabeled factors and age group."""
    return prepare_data(veteran_raw)


@pytest.fixture
def r_coded_frame():
    """Small frame using the R survival package's numeric codes."""
    return pd.DataFrame({
        "trt": [1, 1, 2, 2, 1, 2],
        "celltype": ["squamous", "smallcell", "adeno", "large", "adeno", "squamous"],
        "time": [72.0, 411.0, 228.0, 126.0, 118.0, 10.0],
        "status": [1, 1, 1, 1, 0, 1],
        "karno": [60, 70, 60, 60, 70, 20],
        "diagtime": [7, 5, 3, 9, 11, 5],
        "age": [69, 64, 38, 63, 65, 49],
        "prior": [0, 10, 0, 10, 10, 0],
    })


@pytest.fixture
def sample_structured_y():
    """Create small structured survival array for testing.

    Returns:
        np.ndarray: Structured array with dtype=[('event', bool), ('time', float)]
    """
    return np.array(
        [(True, 12.5), (False, 24.0), (True, 6.0), (False, 18.0), (True, 30.0)],
        dtype=[("event", bool), ("time", float)]
    )


@pytest.fixture(autouse=True)
def cleanup_mlflow_runs():
    """Reset the MLflow tracking URI after each test."""
    import mlflow
    yield
    mlflow.set_tracking_uri(None)
