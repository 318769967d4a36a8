"""Timing utilities for the walkthrough's performance log.

Both helpers write a ``Completed: ...`` entry through ``log_performance``
with the duration plus any extra context (tree count, number of patients)
given by the caller.

Example:
    >>> from survival_walkthrough.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def fit_forest(X, y):
    ...     return RSFWrapper().fit(X, y)
    ...
    >>> with Timer(logger, "Random survival forest fit", n_estimators=500):
    ...     rsf.fit(X, y)
"""
import time
import functools
import logging
from typing import Callable, Optional

from survival_walkthrough.logging_config import log_performance


def _seconds_since(start: float) -> float:
    return time.perf_counter() - start


def _log_failure(logger: logging.Logger, what: str, seconds: float, exc: BaseException):
    logger.error(f"{what} failed after {seconds:.2f}s: {exc}", exc_info=True)


def log_execution_time(logger: Optional[logging.Logger] = None, **context):
    """Decorator logging how long each call of the wrapped function takes.

    Args:
        logger: Logger instance (uses the function's module logger if None)
        **context: Extra key=value pairs appended to the performance entry

    Failures are logged at ERROR with the traceback and re-raised.
    """
    def decorator(func: Callable) -> Callable:
        func_logger = logger or logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            func_logger.info(f"Starting: {func.__name__}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_failure(func_logger, func.__name__, _seconds_since(start), e)
                raise
            log_performance(
                func_logger,
                f"Completed: {func.__name__}",
                duration_sec=round(_seconds_since(start), 2),
                **context,
            )
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager timing one walkthrough step.

    Args:
        logger: Logger instance
        description: Step being timed
        **context: Extra key=value pairs for the performance entry

    Example:
        >>> with Timer(logger, "Data loading", source="bundled") as timer:
        ...     df = load_data()
        >>> timer.duration
        0.04
    """

    def __init__(self, logger: logging.Logger, description: str, **context):
        self.logger = logger
        self.description = description
        self.context = context
        self.duration = None
        self._start = None

    def __enter__(self):
        self._start = time.perf_counter()
        self.logger.info(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = _seconds_since(self._start)
        if exc_type is not None:
            _log_failure(self.logger, self.description, self.duration, exc_val)
            return False

        log_performance(
            self.logger,
            f"Completed: {self.description}",
            duration_sec=round(self.duration, 2),
            **self.context,
        )
        return False
