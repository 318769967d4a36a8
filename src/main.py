"""Main entry point for the survival walkthrough.

Loads the veteran lung cancer data, fits Kaplan-Meier, Cox, Aalen and random
survival forest models, and writes tables and comparison plots.

Can be used as CLI or imported as a function.
"""
from survival_walkthrough.pipeline import run_walkthrough
from survival_walkthrough.config import WalkthroughConfig
from survival_walkthrough.harmonize import HarmonizeError
from survival_walkthrough.logging_config import setup_logging
from survival_walkthrough.utils import RunType
import os
import argparse
import logging
from typing import Optional


def run_pipeline(
    input_file: Optional[str] = None,
    run_type: RunType = "sample",
    config_file: Optional[str] = None,
    output_dir: Optional[str] = None,
    nan_policy: Optional[str] = None,
    track: bool = False,
    log_level: int = logging.INFO,
) -> int:
    """Run the survival walkthrough.

    Args:
        input_file: CSV or pickle with veteran columns. None uses the bundled data.
        run_type: "sample" (small forest) or "production" (500 trees)
        config_file: Optional JSON configuration saved with WalkthroughConfig.save;
            overrides run_type
        output_dir: Optional root directory for outputs
        nan_policy: Optional override of the forest averaging missing-value policy
        track: Log the run to MLflow
        log_level: Console log level

    Returns:
        Exit code (0 for success, 1 for failure)

    Example:
        >>> from main import run_pipeline
        >>> run_pipeline(run_type="sample")
        0
    """
    if config_file is not None:
        config = WalkthroughConfig.load(config_file)
    else:
        config = WalkthroughConfig.for_run_type(run_type)
    if output_dir is not None:
        config.analysis.output_dir = output_dir
    if nan_policy is not None:
        config.analysis.nan_policy = nan_policy
    if track:
        config.analysis.track_with_mlflow = True

    log_dir = os.path.join(config.analysis.output_dir, config.run_type, "logs")
    logger = setup_logging(log_dir=log_dir, log_level=log_level)

    if input_file is not None and not os.path.exists(input_file):
        logger.error(f"Input file not found: {input_file}")
        return 1

    logger.info("=" * 70)
    logger.info(f"SURVIVAL WALKTHROUGH - {config.run_type.upper()} RUN")
    logger.info(f"Input:      {input_file or 'bundled veteran lung cancer data'}")
    logger.info(f"Models:     {', '.join(config.analysis.comparison_order)}")
    logger.info(f"NaN policy: {config.analysis.nan_policy}")
    logger.info("=" * 70)

    try:
        result = run_walkthrough(input_file=input_file, config=config)
    except HarmonizeError as e:
        logger.error(f"Could not build comparison table: {e}")
        return 1

    logger.info(f"Comparison plot: {result.outputs['comparison_plot']}")
    logger.info(f"Forest prediction error: {result.rsf_prediction_error:.4f}")
    return 0


def main():
    """Main execution function with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Survival walkthrough - Kaplan-Meier, Cox, Aalen and random survival forest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Bundled veteran data, fast settings
  python src/main.py

  # Own CSV (R veteran coding accepted), 500-tree forest
  python src/main.py --input data/inputs/veteran.csv --run-type production

  # Skip missing values when averaging forest curves
  python src/main.py --nan-policy omit
        """
    )
    parser.add_argument("--input", type=str, default=None,
                        help="Path to CSV or pickle input. Default: bundled veteran data")
    parser.add_argument("--run-type", type=str, choices=["sample", "production"], default="sample",
                        help="Run type. Default: sample")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON configuration file (overrides --run-type)")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Root output directory. Default: data/outputs")
    parser.add_argument("--nan-policy", type=str, choices=["propagate", "raise", "omit"], default=None,
                        help="Missing-value policy when averaging forest survival curves")
    parser.add_argument("--track", action="store_true", help="Log the run to MLflow")
    parser.add_argument("--verbose", action="store_true", help="Show DEBUG messages on the console")

    args = parser.parse_args()

    return run_pipeline(
        input_file=args.input,
        run_type=args.run_type,
        config_file=args.config,
        output_dir=args.output_dir,
        nan_policy=args.nan_policy,
        track=args.track,
        log_level=logging.DEBUG if args.verbose else logging.INFO,
    )


if __name__ == "__main__":
    exit(main())
