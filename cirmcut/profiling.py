"""Profiling utilities for cirmcut.

Provides a context manager for the expensive parts of a solver
step (stamping and the linear solves), with optional JAX/XLA traces.

Usage:
    from cirmcut.profiling import profile_section, enable_profiling

    enable_profiling(timing=True)
    with profile_section("linear_solve"):
        x = solve(A, b, 1e-9)

Environment Variables:
    CIRMCUT_PROFILE_JAX: Enable JAX/XLA trace capture (1 or true)
    CIRMCUT_PROFILE_TIMING: Log wall time of each profiled section (1 or true)
    CIRMCUT_PROFILE_DIR: Directory for trace output (default: /tmp/cirmcut-traces)

JAX traces can be viewed in Perfetto (https://ui.perfetto.dev/) or TensorBoard.
"""

import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

import jax

from cirmcut._logging import enable_performance_logging, logger


def _env_bool(name: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(name, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


@dataclass(frozen=True)
class ProfileConfig:
    """Configuration for profiling (immutable for thread safety).

    Attributes:
        jax: Capture JAX/XLA traces for each profiled section
        timing: Log the wall time of each profiled section at DEBUG level
        trace_dir: Directory for trace output
    """

    jax: bool = field(default_factory=lambda: _env_bool("CIRMCUT_PROFILE_JAX"))
    timing: bool = field(default_factory=lambda: _env_bool("CIRMCUT_PROFILE_TIMING"))
    trace_dir: str = field(
        default_factory=lambda: os.environ.get("CIRMCUT_PROFILE_DIR", "/tmp/cirmcut-traces")
    )

    @property
    def enabled(self) -> bool:
        """Return True if any profiling is enabled."""
        return self.jax or self.timing


_config_lock = threading.Lock()
_global_config: ProfileConfig = ProfileConfig()


def get_config() -> ProfileConfig:
    """Get the global profiling configuration (thread-safe)."""
    with _config_lock:
        return _global_config


def set_config(config: ProfileConfig) -> None:
    """Set the global profiling configuration (thread-safe)."""
    global _global_config
    with _config_lock:
        _global_config = config


def enable_profiling(
    jax: bool = False, timing: bool = True, trace_dir: Optional[str] = None
) -> None:
    """Enable profiling globally (thread-safe).

    Section timings are logged at DEBUG, so enabling timing also turns on
    performance logging, with perf_counter prefixes when traces are captured.

    Args:
        jax: Capture JAX/XLA traces
        timing: Log section wall times
        trace_dir: Directory for trace output
    """
    global _global_config
    with _config_lock:
        _global_config = replace(
            _global_config,
            jax=jax,
            timing=timing,
            trace_dir=trace_dir if trace_dir else _global_config.trace_dir,
        )
    if timing:
        enable_performance_logging(with_perf_counter=jax)


def disable_profiling() -> None:
    """Disable all profiling globally (thread-safe)."""
    global _global_config
    with _config_lock:
        _global_config = replace(_global_config, jax=False, timing=False)


@contextmanager
def profile_section(name: str, config: Optional[ProfileConfig] = None):
    """Context manager for profiling a code section.

    Args:
        name: Name for the profiled section (used in log lines and trace paths)
        config: Profiling configuration (uses global config if None)

    Example:
        with profile_section("stamp"):
            matrix, params = stamp(dt, mapping, topology, x, x_prev)
    """
    cfg = config or get_config()

    if not cfg.enabled:
        yield
        return

    trace_path = Path(cfg.trace_dir) / name
    jax_trace = None
    start = time.perf_counter()

    try:
        if cfg.jax:
            trace_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Starting JAX trace: {trace_path}")
            jax_trace = jax.profiler.trace(str(trace_path))
            jax_trace.__enter__()

        yield

    finally:
        if jax_trace is not None:
            jax_trace.__exit__(None, None, None)
            logger.info(f"JAX trace saved to: {trace_path}")
        if cfg.timing:
            logger.debug(f"{name}: {(time.perf_counter() - start) * 1e3:.3f} ms")
