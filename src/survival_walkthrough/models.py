from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import numpy as np
import pandas as pd

from sksurv.nonparametric import kaplan_meier_estimator
from sksurv.ensemble import RandomSurvivalForest
from sklearn.inspection import permutation_importance
from sklearn.pipeline import Pipeline
from lifelines import CoxPHFitter, AalenAdditiveFitter

from survival_walkthrough.data import (
    TIME_COL,
    EVENT_COL,
    NUM_COLS,
    CAT_COLS,
    make_preprocessor,
    make_pipeline,
)
from survival_walkthrough.harmonize import (
    KaplanMeierResult,
    RegressionSurvivalResult,
    EnsembleMatrixResult,
)
from survival_walkthrough import metrics
from survival_walkthrough.timing import log_execution_time


def fit_kaplan_meier(event, time) -> KaplanMeierResult:
    """Estimate a Kaplan-Meier survival curve with log-log confidence band.

    Args:
        event: Boolean-like array, True where death was observed
        time: Survival or censoring times

    Returns:
        KaplanMeierResult at the unique observed times. No observations
        yield an empty result.

    Example:
        >>> km = fit_kaplan_meier(y["event"], y["time"])
        >>> km.median_survival()
        80.0
    """
    event = np.asarray(event, dtype=bool)
    time = np.asarray(time, dtype=float)
    if time.size == 0:
        return KaplanMeierResult(time=np.array([]), survival=np.array([]))

    km_time, km_surv, conf_int = kaplan_meier_estimator(event, time, conf_type="log-log")
    return KaplanMeierResult(
        time=km_time,
        survival=km_surv,
        conf_lower=conf_int[0],
        conf_upper=conf_int[1],
    )


def fit_kaplan_meier_by_group(df: pd.DataFrame, group_col: str) -> Dict[str, KaplanMeierResult]:
    """Estimate one Kaplan-Meier curve per level of group_col.

    Levels follow the categorical order when group_col is categorical,
    otherwise sorted order. Empty levels are skipped.
    """
    groups = df[group_col]
    if isinstance(groups.dtype, pd.CategoricalDtype):
        levels = list(groups.cat.categories)
    else:
        levels = sorted(groups.dropna().unique())

    curves = {}
    for level in levels:
        mask = (groups == level).to_numpy()
        if not mask.any():
            continue
        curves[str(level)] = fit_kaplan_meier(
            df.loc[mask, EVENT_COL].to_numpy(), df.loc[mask, TIME_COL].to_numpy()
        )
    return curves


class BaseSurvivalModel:
    """Base class for regression model wrappers with a unified interface.

    Attributes:
        name: String identifier for the model type
    """

    name: str = "base"

    def fit(self, *args):
        raise NotImplementedError

    def survival_result(self, *args):
        """Return the model's survival estimate in its native result shape."""
        raise NotImplementedError

    def score(self, *args) -> float:
        """Concordance index of the fitted model."""
        raise NotImplementedError


def _covariate_columns(frame: pd.DataFrame) -> List[str]:
    return [c for c in frame.columns if c not in (TIME_COL, EVENT_COL)]


@dataclass
class CoxPHWrapper(BaseSurvivalModel):
    """Wrapper for the lifelines Cox proportional hazards model.

    Fits on the dummy-encoded frame produced by ``lifelines_frame`` and
    exposes the coefficient table, the survival curve at mean covariates and
    per-subject survival on a time grid.

    Attributes:
        name: Model identifier, defaults to "cox_ph"
        penalizer: L2 penalty passed to CoxPHFitter
        model: Underlying CoxPHFitter instance

    Example:
        >>> cox = CoxPHWrapper().fit(lifelines_frame(df))
        >>> cox.summary()[["exp(coef)", "p"]]
    """
    name: str = "cox_ph"
    penalizer: float = 0.0
    model: CoxPHFitter = None
    covariate_columns_: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.model is None:
            self.model = CoxPHFitter(penalizer=self.penalizer)

    def fit(self, frame: pd.DataFrame):
        """Fit Cox PH model.

        Args:
            frame: Dummy-encoded covariates plus time and status columns

        Returns:
            self: Fitted model instance

        Raises:
            ValueError: If frame has fewer than 2 rows or non-finite covariates
        """
        if len(frame) < 2:
            raise ValueError(f"{self.name}: Need at least 2 samples to fit")
        self.covariate_columns_ = _covariate_columns(frame)
        if not np.isfinite(frame[self.covariate_columns_].to_numpy(dtype=float)).all():
            raise ValueError(f"{self.name}: Non-finite values detected in covariates before fitting")

        self.model.fit(frame, duration_col=TIME_COL, event_col=EVENT_COL)
        return self

    def summary(self) -> pd.DataFrame:
        """Coefficient table (coef, exp(coef), se, z, p, confidence bounds)."""
        return self.model.summary

    def mean_covariates(self, frame: pd.DataFrame) -> pd.DataFrame:
        return frame[self.covariate_columns_].mean().to_frame().T

    def survival_result(self, frame: pd.DataFrame) -> RegressionSurvivalResult:
        """Survival curve for a patient with mean covariate values.

        Evaluated at every time in the fitted model's baseline timeline.
        """
        sf = self.model.predict_survival_function(self.mean_covariates(frame))
        return RegressionSurvivalResult(
            time=sf.index.to_numpy(dtype=float),
            survival=sf.iloc[:, 0].to_numpy(dtype=float),
        )

    def predict_risk(self, frame: pd.DataFrame) -> np.ndarray:
        """Partial hazards, higher means higher risk."""
        return np.asarray(self.model.predict_partial_hazard(frame[self.covariate_columns_]), dtype=float)

    def predict_survival_function(self, frame: pd.DataFrame, times: Iterable[float]) -> np.ndarray:
        """Per-subject survival probabilities with shape (n_samples, n_times)."""
        times = np.asarray(list(times), dtype=float)
        sf = self.model.predict_survival_function(frame[self.covariate_columns_], times=times)
        return sf.to_numpy(dtype=float).T

    def score(self, frame: pd.DataFrame = None) -> float:
        """Concordance index on the training data (or on frame if given)."""
        if frame is None:
            return float(self.model.concordance_index_)
        return float(self.model.score(frame, scoring_method="concordance_index"))


@dataclass
class AalenAdditiveWrapper(BaseSurvivalModel):
    """Wrapper for the lifelines Aalen additive hazards model.

    The Aalen model lets covariate effects vary over time; its cumulative
    regression coefficients are the main output of interest.

    Attributes:
        name: Model identifier, defaults to "aalen"
        coef_penalizer: Ridge penalty on the per-time least-squares step
        model: Underlying AalenAdditiveFitter instance
    """
    name: str = "aalen"
    coef_penalizer: float = 1.0
    model: AalenAdditiveFitter = None
    covariate_columns_: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.model is None:
            self.model = AalenAdditiveFitter(coef_penalizer=self.coef_penalizer, fit_intercept=True)

    def fit(self, frame: pd.DataFrame):
        """Fit the Aalen additive model on a dummy-encoded frame."""
        if len(frame) < 2:
            raise ValueError(f"{self.name}: Need at least 2 samples to fit")
        self.covariate_columns_ = _covariate_columns(frame)
        self.model.fit(frame, duration_col=TIME_COL, event_col=EVENT_COL)
        return self

    def cumulative_coefficients(self) -> pd.DataFrame:
        """Cumulative regression coefficients indexed by time (one column per covariate)."""
        return self.model.cumulative_hazards_

    def survival_result(self, frame: pd.DataFrame) -> RegressionSurvivalResult:
        """Survival curve at mean covariates.

        The additive model does not constrain this curve to be monotone.
        """
        mean_row = frame[self.covariate_columns_].mean().to_frame().T
        sf = self.model.predict_survival_function(mean_row)
        return RegressionSurvivalResult(
            time=sf.index.to_numpy(dtype=float),
            survival=sf.iloc[:, 0].to_numpy(dtype=float),
        )

    def score(self, *args) -> float:
        return float(self.model.concordance_index_)


@dataclass
class RSFWrapper(BaseSurvivalModel):
    """Wrapper for the scikit-survival random survival forest.

    The forest sits at the end of a preprocessing pipeline (one-hot encoding
    of factors, scaling of numerics). Out-of-bag concordance is tracked so
    the forest's prediction error can be reported without a hold-out set.

    Attributes:
        name: Model identifier, defaults to "rsf"
        n_estimators: Number of trees in the forest
        min_samples_split: Minimum samples required to split a node
        min_samples_leaf: Minimum samples required in a leaf
        max_features: Features considered per split
        n_jobs: Parallel jobs for fitting and prediction
        random_state: Seed for bootstrap samples and splits
        numeric: Numeric feature columns
        categorical: Categorical feature columns
        pipeline: Fitted sklearn Pipeline (set by fit)

    Note:
        Survival curves are step functions over the forest's unique training
        event times.
    """
    name: str = "rsf"
    n_estimators: int = 100
    min_samples_split: int = 10
    min_samples_leaf: int = 3
    max_features: Optional[str] = "sqrt"
    n_jobs: int = 1
    random_state: int = 42
    numeric: List[str] = field(default_factory=lambda: list(NUM_COLS))
    categorical: List[str] = field(default_factory=lambda: list(CAT_COLS))
    pipeline: Pipeline = None

    def _build_pipeline(self) -> Pipeline:
        forest = RandomSurvivalForest(
            n_estimators=self.n_estimators,
            min_samples_split=self.min_samples_split,
            min_samples_leaf=self.min_samples_leaf,
            max_features=self.max_features,
            oob_score=True,
            n_jobs=self.n_jobs,
            random_state=self.random_state,
        )
        pre = make_preprocessor(numeric=self.numeric, categorical=self.categorical)
        return make_pipeline(pre, forest)

    def fit(self, X: pd.DataFrame, y):
        """Fit the preprocessing pipeline and forest.

        Args:
            X: Feature DataFrame (see forest_features)
            y: Structured array with dtype=[('event', bool), ('time', float)]

        Returns:
            self: Fitted model instance
        """
        self.pipeline = self._build_pipeline()
        self.pipeline.fit(X, y)
        return self

    @property
    def forest(self) -> RandomSurvivalForest:
        if self.pipeline is None:
            raise ValueError(f"{self.name}: model is not fitted")
        return self.pipeline.named_steps["model"]

    @property
    def oob_cindex(self) -> float:
        return float(self.forest.oob_score_)

    @property
    def prediction_error(self) -> float:
        """Out-of-bag prediction error, 1 - OOB concordance."""
        return metrics.prediction_error(self.oob_cindex)

    def _transform(self, X: pd.DataFrame) -> np.ndarray:
        return self.pipeline[:-1].transform(X)

    def survival_result(self, X: pd.DataFrame) -> EnsembleMatrixResult:
        """Per-subject survival matrix over the forest's unique event times."""
        matrix = self.forest.predict_survival_function(self._transform(X), return_array=True)
        return EnsembleMatrixResult(
            time=np.asarray(self.forest.unique_times_, dtype=float),
            matrix=matrix,
            prediction_error=self.prediction_error,
        )

    def predict_risk(self, X: pd.DataFrame) -> np.ndarray:
        return np.asarray(self.pipeline.predict(X), dtype=float)

    def predict_survival_function(self, X: pd.DataFrame, times: Iterable[float]) -> np.ndarray:
        """Per-subject survival probabilities with shape (n_samples, n_times)."""
        sfns = self.forest.predict_survival_function(self._transform(X))
        times = np.asarray(list(times), dtype=float)
        return np.vstack([f(times) for f in sfns])

    @log_execution_time()
    def variable_importance(
        self, X: pd.DataFrame, y, n_repeats: int = 5
    ) -> pd.DataFrame:
        """Permutation importance of each input variable.

        Each original column is shuffled in turn and the drop in concordance
        is recorded.

        Returns:
            DataFrame indexed by variable with importance_mean and
            importance_std, sorted by importance_mean descending
        """
        result = permutation_importance(
            self.pipeline, X, y,
            n_repeats=n_repeats,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )
        return pd.DataFrame(
            {
                "importance_mean": result.importances_mean,
                "importance_std": result.importances_std,
            },
            index=pd.Index(X.columns, name="variable"),
        ).sort_values("importance_mean", ascending=False)

    def score(self, X: pd.DataFrame = None, y=None) -> float:
        """Out-of-bag concordance, or apparent concordance on (X, y) if given."""
        if X is None:
            return self.oob_cindex
        return float(self.pipeline.score(X, y))
