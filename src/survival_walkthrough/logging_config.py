"""Centralized logging configuration for the survival walkthrough.

Sets up:
- console output plus main, performance and warnings log files
- performance entries (timings, concordance, prediction error) via log_performance
- capture and categorization of library warnings (lifelines, scikit-survival)
- progress messages for the walkthrough steps

Example:
    >>> from survival_walkthrough.logging_config import setup_logging, log_performance
    >>> logger = setup_logging("data/outputs/sample/logs")
    >>> log_performance(logger, "Forest fitted", oob_cindex=0.71, prediction_error=0.29)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from typing import Optional
from contextlib import contextmanager

ROOT_LOGGER = "survival_walkthrough"


class PerformanceFilter(logging.Filter):
    """Pass only records tagged with the 'is_performance' attribute."""

    def filter(self, record):
        return getattr(record, 'is_performance', False)


class WarningErrorFilter(logging.Filter):
    """Pass only WARNING level and above."""

    def filter(self, record):
        return record.levelno >= logging.WARNING


def setup_logging(
    log_dir: str = "data/outputs/sample/logs",
    log_level: int = logging.INFO,
    console_output: bool = True
) -> logging.Logger:
    """Configure the survival_walkthrough logger hierarchy.

    Creates in log_dir:
    - main_{timestamp}.log: all messages
    - performance_{timestamp}.log: performance entries only
    - warnings_{timestamp}.log: warnings and errors only

    Args:
        log_dir: Directory for the log files (created if missing)
        log_level: Minimum level shown on the console
        console_output: Whether to log to stdout

    Returns:
        Configured "survival_walkthrough" logger
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handlers

    # Avoid duplicate handlers on repeated setup
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    performance_formatter = logging.Formatter(
        fmt='%(asctime)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(fmt='%(levelname)-8s | %(message)s')

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

    main_handler = logging.FileHandler(log_dir / f"main_{timestamp}.log", mode='w', encoding='utf-8')
    main_handler.setLevel(logging.DEBUG)
    main_handler.setFormatter(detailed_formatter)
    logger.addHandler(main_handler)

    perf_handler = logging.FileHandler(log_dir / f"performance_{timestamp}.log", mode='w', encoding='utf-8')
    perf_handler.setLevel(logging.INFO)
    perf_handler.setFormatter(performance_formatter)
    perf_handler.addFilter(PerformanceFilter())
    logger.addHandler(perf_handler)

    warning_handler = logging.FileHandler(log_dir / f"warnings_{timestamp}.log", mode='w', encoding='utf-8')
    warning_handler.setLevel(logging.WARNING)
    warning_handler.setFormatter(detailed_formatter)
    warning_handler.addFilter(WarningErrorFilter())
    logger.addHandler(warning_handler)

    logger.info(f"Log directory: {log_dir.absolute()}")
    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a performance entry with key=value context.

    Example:
        >>> log_performance(logger, "Cox fitted", duration_sec=0.4, cindex=0.736)
        # "Cox fitted | duration_sec=0.4 | cindex=0.736"
    """
    extra = {'is_performance': True}
    extra.update(kwargs)

    if kwargs:
        metrics_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
        full_message = f"{message} | {metrics_str}"
    else:
        full_message = message

    logger.info(full_message, extra=extra)


class WarningLogger:
    """Categorizes captured library warnings and keeps per-category counts.

    Categories:
    - convergence: optimizer did not converge (Cox Newton-Raphson, etc.)
    - numerical: overflow, division by zero, invalid values
    - statistical: singular matrices, variance problems, PH test notes
    - data: missing values, unknown categories
    - other: anything else
    """

    WARNING_CATEGORIES = {
        'convergence': ['ConvergenceWarning', 'converge', 'step size'],
        'numerical': ['overflow', 'underflow', 'invalid value', 'divide by zero'],
        'statistical': ['singular', 'variance', 'Hessian', 'collinear'],
        'data': ['missing values', 'unknown categories', 'NaN'],
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.WARNING_CATEGORIES}
        self.warning_counts['other'] = 0

    def categorize_warning(self, message: str) -> str:
        message_lower = message.lower()
        for category, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return category
        return 'other'

    def log_warning(self, message: str, category: Optional[str] = None):
        if category is None:
            category = self.categorize_warning(message)

        self.warning_counts[category] += 1
        self.logger.warning(f"[{category.upper()}] {message}")

    def summary(self) -> dict:
        """Return {category: count} for categories that saw warnings."""
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Route Python warnings raised inside the block to the logger.

    Yields:
        WarningLogger instance with per-category counts

    Example:
        >>> with capture_warnings(logger) as warning_logger:
        ...     aalen.fit(frame)
        >>> warning_logger.summary()
        {'statistical': 2}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        warning_logger.log_warning(f"{category.__name__}: {message}")

    old_showwarning = warnings.showwarning
    warnings.showwarning = warning_handler

    try:
        yield warning_logger
    finally:
        warnings.showwarning = old_showwarning

        summary = warning_logger.summary()
        if summary:
            summary_str = ", ".join(f"{k}={v}" for k, v in summary.items())
            logger.info(f"Warning summary: {summary_str}")


class ProgressLogger:
    """Logs progress through a fixed number of steps.

    Example:
        >>> progress = ProgressLogger(logger, total=6, desc="Walkthrough")
        >>> progress.update(1, metrics={'step': 'kaplan_meier'})
        # "Walkthrough: 1/6 (16.7%) | step=kaplan_meier"
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: int,
        desc: str,
        log_interval: int = 1
    ):
        self.logger = logger
        self.total = total
        self.desc = desc
        self.log_interval = log_interval
        self.current = 0

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        self.current += n

        if self.current % self.log_interval == 0 or self.current == self.total:
            pct = (self.current / self.total) * 100
            msg = f"{self.desc}: {self.current}/{self.total} ({pct:.1f}%)"

            if metrics:
                metrics_str = ", ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                                        for k, v in metrics.items())
                msg += f" | {metrics_str}"

            self.logger.info(msg)
