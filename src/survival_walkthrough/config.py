"""Configuration for the survival walkthrough.

Groups every tunable setting of the walkthrough into dataclasses:
- ModelHyperparameters: Cox / Aalen penalties and random survival forest settings
- DataConfig: column names, covariates and factor relabeling options
- AnalysisConfig: comparison order, missing-value policy, outputs and tracking
- WalkthroughConfig: master configuration, serializable to/from JSON
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import os
import json


# ============================================================================
# Model Hyperparameters Configuration
# ============================================================================

@dataclass
class ModelHyperparameters:
    """Hyperparameters for the fitted survival models.

    Attributes:
        cox_penalizer: L2 penalty for lifelines CoxPHFitter (0 = unpenalized)
        aalen_coef_penalizer: Ridge penalty for AalenAdditiveFitter coefficients
        rsf_n_estimators: Number of trees in the random survival forest
        rsf_min_samples_split: Minimum samples required to split a node
        rsf_min_samples_leaf: Minimum samples required in a leaf
        rsf_max_features: Features considered per split ("sqrt", int, or None for all)
        rsf_n_jobs: Parallel jobs for forest fitting and prediction
        random_state: Seed for the forest and permutation importance
        importance_n_repeats: Permutation rounds per variable for importance
    """
    cox_penalizer: float = 0.0
    """L2 penalty for the Cox model.

    The walkthrough reports unpenalized coefficients by default, matching a
    textbook coxph fit. Raise it if the fit fails to converge.
    """

    aalen_coef_penalizer: float = 1.0
    """Ridge penalty for Aalen additive coefficients.

    Late in follow-up only a handful of subjects remain at risk and the
    least-squares step becomes near-singular; a small penalty keeps the
    cumulative coefficients finite.
    """

    rsf_n_estimators: int = 100
    """Number of trees in the random survival forest.

    - Sample runs: 100 (fast)
    - Production runs: 500
    """

    rsf_min_samples_split: int = 10
    rsf_min_samples_leaf: int = 3
    rsf_max_features: Optional[str] = "sqrt"
    rsf_n_jobs: int = 1
    random_state: int = 42

    importance_n_repeats: int = 5
    """Permutation rounds per variable when computing forest importance."""

    @classmethod
    def for_environment(cls, run_type: str) -> "ModelHyperparameters":
        """Create hyperparameters for a specific run type.

        Args:
            run_type: One of "sample", "production"

        Returns:
            ModelHyperparameters instance with appropriate defaults

        Example:
            >>> ModelHyperparameters.for_environment("production").rsf_n_estimators
            500
        """
        if run_type == "production":
            return cls(
                rsf_n_estimators=500,
                rsf_n_jobs=-1,
                importance_n_repeats=20,
            )
        return cls()


# ============================================================================
# Data Configuration
# ============================================================================

@dataclass
class DataConfig:
    """Configuration for data loading and covariate selection.

    Attributes:
        time_column: Column containing survival time (days)
        event_column: Column containing event indicator (1 = death observed)
        numeric_covariates: Continuous covariates used by every regression model
        categorical_covariates: Factor covariates (dummy or one-hot encoded)
        age_cutoff: Age threshold splitting patients into LT/OV groups
        group_columns: Columns for which per-group Kaplan-Meier curves are drawn
    """
    time_column: str = "time"
    event_column: str = "status"

    numeric_covariates: tuple[str, ...] = ("karno", "diagtime", "age")
    categorical_covariates: tuple[str, ...] = ("trt", "celltype", "prior")

    age_cutoff: int = 60
    """Patients younger than this fall into the LT group, the rest into OV."""

    group_columns: tuple[str, ...] = ("trt", "age_group")
    """Columns stratifying the Kaplan-Meier curves and log-rank tests."""

    @property
    def covariates(self) -> list[str]:
        return list(self.categorical_covariates) + list(self.numeric_covariates)


# ============================================================================
# Analysis Configuration
# ============================================================================

@dataclass
class AnalysisConfig:
    """Configuration for comparison, evaluation and outputs.

    Attributes:
        comparison_order: Models in the comparison table, in legend order
        model_labels: Display label per model key
        nan_policy: Missing-value policy when averaging forest curves
        time_grid_points: Time points used for integrated Brier score
        compute_brier_score: Whether to compute IBS for Cox and forest
        compute_importance: Whether to compute forest permutation importance
        check_ph_assumption: Whether to run the Schoenfeld residual test
        save_models: Persist fitted models with joblib
        track_with_mlflow: Log params/metrics/artifacts to MLflow
        output_dir: Root directory for artifacts, plots, models and logs
    """
    comparison_order: tuple[str, ...] = ("km", "cox", "rsf")
    model_labels: Dict[str, str] = field(
        default_factory=lambda: {"km": "KM", "cox": "Cox", "rsf": "RF"}
    )

    nan_policy: str = "propagate"
    """Missing-value policy for forest averaging.

    Valid options: "propagate", "raise", "omit"
    """

    time_grid_points: int = 50
    compute_brier_score: bool = True
    compute_importance: bool = True
    check_ph_assumption: bool = True
    save_models: bool = True
    track_with_mlflow: bool = False
    output_dir: str = "data/outputs"

    def label_for(self, key: str) -> str:
        return self.model_labels.get(key, key)


# ============================================================================
# Master Configuration
# ============================================================================

@dataclass
class WalkthroughConfig:
    """Master configuration for the survival walkthrough.

    Example:
        >>> config = WalkthroughConfig.for_run_type("production")
        >>> config.hyperparameters.rsf_n_estimators
        500
        >>> config.save("configs/production.json")
        >>> loaded = WalkthroughConfig.load("configs/production.json")
    """
    hyperparameters: ModelHyperparameters = field(default_factory=ModelHyperparameters)
    data: DataConfig = field(default_factory=DataConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    run_type: str = "sample"
    """Type of run: 'sample' or 'production'."""

    description: str = ""

    @classmethod
    def for_run_type(cls, run_type: str) -> "WalkthroughConfig":
        """Create configuration for a run type ("sample" or "production")."""
        if run_type not in ("sample", "production"):
            raise ValueError(f"Unknown run_type: {run_type!r}. Use 'sample' or 'production'")
        return cls(
            hyperparameters=ModelHyperparameters.for_environment(run_type),
            run_type=run_type,
        )

    def to_dict(self) -> dict:
        """Convert configuration to a plain dictionary."""
        def _dataclass_to_dict(obj):
            if hasattr(obj, '__dataclass_fields__'):
                return {
                    k: _dataclass_to_dict(v)
                    for k, v in obj.__dict__.items()
                }
            elif isinstance(obj, tuple):
                return list(obj)
            else:
                return obj

        return _dataclass_to_dict(self)

    def save(self, path: str) -> None:
        """Save configuration to a JSON file."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "WalkthroughConfig":
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If path does not exist
        """
        with open(path) as f:
            data = json.load(f)

        data_cfg = {
            k: tuple(v) if isinstance(v, list) else v
            for k, v in data['data'].items()
        }
        analysis_cfg = {
            k: tuple(v) if isinstance(v, list) else v
            for k, v in data['analysis'].items()
        }
        return cls(
            hyperparameters=ModelHyperparameters(**data['hyperparameters']),
            data=DataConfig(**data_cfg),
            analysis=AnalysisConfig(**analysis_cfg),
            run_type=data['run_type'],
            description=data.get('description', '')
        )
