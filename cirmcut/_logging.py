"""Logging configuration for cirmcut.

The package logs through one logger, ``cirmcut``, at WARNING by default so an
editor stepping the solver once per frame stays quiet. Newton-Raphson
non-convergence is the main thing reported at that level.

Performance logging switches to DEBUG and flushes each line as it is
written, which is what profiled solver steps and linear solves log at:

    from cirmcut._logging import enable_performance_logging

    enable_performance_logging(with_perf_counter=True)
    # [1234.567890] solver_step: 0.812 ms
"""

import logging
import sys
import time

logger = logging.getLogger("cirmcut")

# Default: WARNING level only (quiet operation)
logger.setLevel(logging.WARNING)


class FlushingHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


class PerfCounterFormatter(logging.Formatter):
    """Prefix each line with ``time.perf_counter()`` to line it up with JAX traces."""

    def format(self, record):
        return f"[{time.perf_counter():.6f}] {super().format(record)}"


def _make_handler(handler: logging.Handler, level: int, with_perf_counter: bool = False):
    handler.setLevel(level)
    formatter_cls = PerfCounterFormatter if with_perf_counter else logging.Formatter
    handler.setFormatter(formatter_cls("%(message)s"))
    return handler


_handler = _make_handler(logging.StreamHandler(sys.stdout), logging.WARNING)
if not logger.handlers:
    logger.addHandler(_handler)


def enable_performance_logging(with_perf_counter: bool = False) -> None:
    """Log at DEBUG level and flush every line.

    Replaces the package's stdout handler; handlers added by the application
    are left alone.

    Args:
        with_perf_counter: If True, prepend time.perf_counter() timestamps.
    """
    global _handler
    logger.setLevel(logging.DEBUG)
    logger.removeHandler(_handler)
    _handler = _make_handler(FlushingHandler(sys.stdout), logging.DEBUG, with_perf_counter)
    logger.addHandler(_handler)


def set_log_level(level: int):
    """Set the logging level.

    Args:
        level: logging.DEBUG, logging.INFO, logging.WARNING, etc.
    """
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
