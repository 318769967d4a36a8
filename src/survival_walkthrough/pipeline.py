from __future__ import annotations
import os
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import joblib
import numpy as np
import pandas as pd

from survival_walkthrough.config import WalkthroughConfig
from survival_walkthrough.data import (
    EVENT_COL,
    TIME_COL,
    load_data,
    prepare_data,
    lifelines_frame,
    forest_features,
    to_structured_y,
)
from survival_walkthrough.harmonize import (
    KaplanMeierResult,
    SurvivalResult,
    check_nan_policy,
    harmonize,
)
from survival_walkthrough.models import (
    AalenAdditiveWrapper,
    CoxPHWrapper,
    RSFWrapper,
    fit_kaplan_meier,
    fit_kaplan_meier_by_group,
)
from survival_walkthrough.validation import evaluate_models, logrank_by_group, ph_assumption_flags
from survival_walkthrough.plotting import (
    plot_aalen_coefficients,
    plot_comparison,
    plot_km_curves,
    plot_variable_importance,
)
from survival_walkthrough.utils import get_output_paths, save_table, versioned_name
from survival_walkthrough.tracking import (
    start_run,
    safe_log_artifact,
    safe_log_metrics,
    safe_log_params,
)
from survival_walkthrough.logging_config import log_performance, ProgressLogger, capture_warnings
from survival_walkthrough.timing import Timer, log_execution_time

N_STEPS = 6


@dataclass
class WalkthroughResult:
    """Everything the walkthrough produced, plus where it was written.

    Attributes:
        data: Prepared dataset (relabeled factors, age group)
        km_curves: Kaplan-Meier curves keyed by grouping ("overall", "trt", ...)
            then by group level
        logrank: One log-rank test row per grouping column
        cox_summary: Cox coefficient table
        ph_flags: Schoenfeld residual p-values (None when the check is disabled)
        aalen_coefficients: Cumulative Aalen regression coefficients over time
        importance: Forest permutation importance (None when disabled)
        rsf_prediction_error: Forest out-of-bag prediction error (1 - C)
        metrics: Concordance / integrated Brier score per model
        comparison: Long-format comparison table (time, survival_probability, model)
        outputs: Artifact name -> file path for everything written to disk
    """
    data: pd.DataFrame
    km_curves: Dict[str, Dict[str, KaplanMeierResult]]
    logrank: pd.DataFrame
    cox_summary: pd.DataFrame
    ph_flags: Optional[pd.DataFrame]
    aalen_coefficients: pd.DataFrame
    importance: Optional[pd.DataFrame]
    rsf_prediction_error: float
    metrics: pd.DataFrame
    comparison: pd.DataFrame
    outputs: Dict[str, str] = field(default_factory=dict)


def kaplan_meier_step(
    df: pd.DataFrame, group_columns
) -> Tuple[Dict[str, Dict[str, KaplanMeierResult]], pd.DataFrame]:
    """Overall and per-group Kaplan-Meier curves with log-rank tests."""
    curves = {"overall": {"all patients": fit_kaplan_meier(df[EVENT_COL], df[TIME_COL])}}
    tests = []
    for col in group_columns:
        curves[col] = fit_kaplan_meier_by_group(df, col)
        tests.append(logrank_by_group(df, col))
    return curves, pd.DataFrame(tests)


def cox_step(frame: pd.DataFrame, config: WalkthroughConfig) -> Tuple[CoxPHWrapper, Optional[pd.DataFrame]]:
    """Fit the Cox model and optionally test proportional hazards."""
    cox = CoxPHWrapper(penalizer=config.hyperparameters.cox_penalizer).fit(frame)
    ph_flags = ph_assumption_flags(cox, frame) if config.analysis.check_ph_assumption else None
    return cox, ph_flags


def aalen_step(frame: pd.DataFrame, config: WalkthroughConfig) -> AalenAdditiveWrapper:
    return AalenAdditiveWrapper(coef_penalizer=config.hyperparameters.aalen_coef_penalizer).fit(frame)


def forest_step(
    X: pd.DataFrame, y, config: WalkthroughConfig
) -> Tuple[RSFWrapper, Optional[pd.DataFrame]]:
    """Fit the random survival forest and optionally its permutation importance."""
    hp = config.hyperparameters
    rsf = RSFWrapper(
        n_estimators=hp.rsf_n_estimators,
        min_samples_split=hp.rsf_min_samples_split,
        min_samples_leaf=hp.rsf_min_samples_leaf,
        max_features=hp.rsf_max_features,
        n_jobs=hp.rsf_n_jobs,
        random_state=hp.random_state,
        numeric=list(config.data.numeric_covariates),
        categorical=list(config.data.categorical_covariates),
    ).fit(X, y)
    importance = None
    if config.analysis.compute_importance:
        importance = rsf.variable_importance(X, y, n_repeats=hp.importance_n_repeats)
    return rsf, importance


def comparison_step(
    results: Dict[str, SurvivalResult], config: WalkthroughConfig
) -> pd.DataFrame:
    """Harmonize the selected model results in the configured order."""
    unknown = [key for key in config.analysis.comparison_order if key not in results]
    if unknown:
        raise ValueError(
            f"Unknown models in comparison_order: {unknown}. Available: {sorted(results)}"
        )
    ordered = [
        (results[key], config.analysis.label_for(key))
        for key in config.analysis.comparison_order
    ]
    return harmonize(ordered, nan_policy=config.analysis.nan_policy)


@log_execution_time()
def run_walkthrough(
    input_file: Optional[str] = None,
    config: Optional[WalkthroughConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> WalkthroughResult:
    """Run the full survival walkthrough.

    Steps:
    1. Load the veteran data, relabel factors, add age groups
    2. Kaplan-Meier curves (overall, by treatment, by age group) + log-rank tests
    3. Cox proportional hazards fit + Schoenfeld residual check
    4. Aalen additive regression fit
    5. Random survival forest fit + permutation importance
    6. Model evaluation, comparison table and plots

    Args:
        input_file: CSV or pickle with the veteran columns. None uses the copy
            bundled with scikit-survival.
        config: Walkthrough configuration. Defaults to the "sample" run type.
        logger: Logger to use (defaults to "survival_walkthrough.pipeline")

    Returns:
        WalkthroughResult with every table, curve and output path

    Side Effects:
        - Writes CSV tables to {output_dir}/{run_type}/artifacts/
        - Writes PNG plots to {output_dir}/{run_type}/plots/
        - Writes joblib models to {output_dir}/{run_type}/models/ (if save_models)
        - Logs to MLflow (if track_with_mlflow and the store opens; otherwise
          a warning is logged and the run continues untracked)

    Raises:
        UnknownPolicyError: If config.analysis.nan_policy is not a known policy,
            before any data is loaded

    Example:
        >>> result = run_walkthrough(config=WalkthroughConfig.for_run_type("sample"))
        >>> result.comparison.groupby("model", observed=True).size()
    """
    if logger is None:
        logger = logging.getLogger("survival_walkthrough.pipeline")
    if config is None:
        config = WalkthroughConfig.for_run_type("sample")

    check_nan_policy(config.analysis.nan_policy)

    run_type = config.run_type
    paths = get_output_paths(run_type, base=config.analysis.output_dir)
    outputs: Dict[str, str] = {}
    progress = ProgressLogger(logger, total=N_STEPS, desc="Walkthrough")

    run = None
    if config.analysis.track_with_mlflow:
        run = start_run(
            f"survival_walkthrough_{run_type}", tracking_uri=paths["mlruns"], logger=logger
        )
    tracking_active = run is not None

    with run if tracking_active else nullcontext():
        if tracking_active:
            safe_log_params({
                "run_type": run_type,
                "input_file": input_file or "sksurv:veterans_lung_cancer",
                "rsf_n_estimators": config.hyperparameters.rsf_n_estimators,
                "nan_policy": config.analysis.nan_policy,
                "comparison_order": ",".join(config.analysis.comparison_order),
            }, logger=logger)

        # 1. Data
        with Timer(logger, "Data loading", source=input_file or "bundled"):
            df = prepare_data(load_data(input_file), age_cutoff=config.data.age_cutoff)
        covariates = config.data.covariates
        frame = lifelines_frame(df, covariates=covariates)
        X, y = forest_features(
            df,
            numeric=list(config.data.numeric_covariates),
            categorical=list(config.data.categorical_covariates),
        )
        logger.info(
            f"Prepared {len(df):,} patients, {int(df[EVENT_COL].sum()):,} deaths, "
            f"{frame.shape[1] - 2} design columns"
        )
        progress.update(1, metrics={"step": "data"})

        # 2. Kaplan-Meier
        group_columns = list(config.data.group_columns)
        with Timer(logger, "Kaplan-Meier estimation"):
            km_curves, logrank = kaplan_meier_step(df, group_columns)
        overall = km_curves["overall"]["all patients"]
        log_performance(logger, "Kaplan-Meier fitted", median_survival=overall.median_survival())
        outputs["km_overall"] = save_table(
            pd.DataFrame({
                "time": overall.time,
                "survival_probability": overall.survival,
                "conf_lower": overall.conf_lower,
                "conf_upper": overall.conf_upper,
            }),
            paths["artifacts"], "km_overall.csv",
        )
        outputs["logrank"] = save_table(logrank, paths["artifacts"], "logrank_tests.csv")
        outputs["km_overall_plot"] = plot_km_curves(
            km_curves["overall"], os.path.join(paths["plots"], "km_overall.png")
        )
        for col in group_columns:
            outputs[f"km_{col}_plot"] = plot_km_curves(
                km_curves[col],
                os.path.join(paths["plots"], f"km_by_{col}.png"),
                title=f"Kaplan-Meier estimate by {col}",
                legend_title=col,
            )
        progress.update(1, metrics={"step": "kaplan_meier"})

        # 3. Cox
        cox_logger = logging.getLogger("survival_walkthrough.models.cox_ph")
        with Timer(cox_logger, "Cox proportional hazards fit"):
            with capture_warnings(cox_logger):
                cox, ph_flags = cox_step(frame, config)
        log_performance(cox_logger, "Cox fitted", cindex=round(cox.score(), 4))
        outputs["cox_summary"] = save_table(cox.summary(), paths["artifacts"], "cox_summary.csv", index=True)
        if ph_flags is not None:
            outputs["ph_flags"] = save_table(ph_flags, paths["artifacts"], "ph_flags.csv", index=True)
            violations = ph_flags.index[ph_flags["schoenfeld_p"] < 0.05].tolist()
            if violations:
                cox_logger.warning(f"Proportional hazards doubtful for: {violations}")
        progress.update(1, metrics={"step": "cox"})

        # 4. Aalen
        aalen_logger = logging.getLogger("survival_walkthrough.models.aalen")
        with Timer(aalen_logger, "Aalen additive fit"):
            with capture_warnings(aalen_logger):
                aalen = aalen_step(frame, config)
        aalen_coefficients = aalen.cumulative_coefficients()
        log_performance(aalen_logger, "Aalen fitted", cindex=round(aalen.score(), 4))
        outputs["aalen_coefficients"] = save_table(
            aalen_coefficients, paths["artifacts"], "aalen_cumulative_coefficients.csv", index=True
        )
        outputs["aalen_plot"] = plot_aalen_coefficients(
            aalen_coefficients, os.path.join(paths["plots"], "aalen_coefficients.png")
        )
        progress.update(1, metrics={"step": "aalen"})

        # 5. Random survival forest
        rsf_logger = logging.getLogger("survival_walkthrough.models.rsf")
        with Timer(
            rsf_logger, "Random survival forest fit",
            n_estimators=config.hyperparameters.rsf_n_estimators,
        ):
            with capture_warnings(rsf_logger):
                rsf, importance = forest_step(X, y, config)
        log_performance(
            rsf_logger, "Forest fitted",
            oob_cindex=round(rsf.oob_cindex, 4),
            prediction_error=round(rsf.prediction_error, 4),
        )
        if importance is not None:
            outputs["rsf_importance"] = save_table(
                importance, paths["artifacts"], "rsf_importance.csv", index=True
            )
            outputs["rsf_importance_plot"] = plot_variable_importance(
                importance, os.path.join(paths["plots"], "rsf_importance.png")
            )
        progress.update(1, metrics={"step": "random_survival_forest"})

        # 6. Evaluation and comparison
        with Timer(logger, "Model evaluation"):
            metrics = evaluate_models(
                [("cox_ph", cox, frame), ("rsf", rsf, X)],
                to_structured_y(df),
                n_times=config.analysis.time_grid_points,
                compute_brier=config.analysis.compute_brier_score,
            )
        metrics["oob_prediction_error"] = [np.nan, rsf.prediction_error]
        outputs["metrics"] = save_table(metrics, paths["artifacts"], "model_metrics.csv")

        results: Dict[str, SurvivalResult] = {
            "km": overall,
            "cox": cox.survival_result(frame),
            "aalen": aalen.survival_result(frame),
            "rsf": rsf.survival_result(X),
        }
        comparison = comparison_step(results, config)
        outputs["comparison"] = save_table(comparison, paths["artifacts"], "comparison_table.csv")
        outputs["comparison_plot"] = plot_comparison(
            comparison, os.path.join(paths["plots"], "model_comparison.png")
        )
        progress.update(1, metrics={"step": "comparison"})

        if config.analysis.save_models:
            for name, model in (("cox_ph", cox), ("aalen", aalen), ("rsf", rsf)):
                model_path = os.path.join(paths["models"], f"{versioned_name(name, run_type)}.joblib")
                joblib.dump(model, model_path)
                outputs[f"model_{name}"] = model_path
                logger.info(f"Model saved to: {model_path}")

        if tracking_active:
            summary_metrics = {
                "cox_cindex": cox.score(),
                "aalen_cindex": aalen.score(),
                "rsf_oob_cindex": rsf.oob_cindex,
                "rsf_prediction_error": rsf.prediction_error,
            }
            for _, row in metrics.iterrows():
                summary_metrics[f"{row['model']}_apparent_cindex"] = float(row["cindex"])
                if not np.isnan(row["ibs"]):
                    summary_metrics[f"{row['model']}_ibs"] = float(row["ibs"])
            safe_log_metrics(summary_metrics, logger=logger)
            for path in outputs.values():
                safe_log_artifact(path, logger=logger)

    logger.info(f"[{run_type.upper()}] Walkthrough complete, outputs in {paths['base_dir']}")

    return WalkthroughResult(
        data=df,
        km_curves=km_curves,
        logrank=logrank,
        cox_summary=cox.summary(),
        ph_flags=ph_flags,
        aalen_coefficients=aalen_coefficients,
        importance=importance,
        rsf_prediction_error=rsf.prediction_error,
        metrics=metrics,
        comparison=comparison,
        outputs=outputs,
    )
