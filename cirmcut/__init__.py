"""cirmcut: time-domain circuit simulator core"""

import jax

from cirmcut._logging import logger

__version__ = "0.1.0"


def _backend_supports_x64() -> bool:
    """Check if the current JAX backend supports 64-bit floats.

    Note:
        - Metal (Apple Silicon) and TPU do not support float64 natively
        - CPU and CUDA support float64
    """
    backend = jax.default_backend().lower()
    if backend in ("metal", "tpu", "iree_metal"):
        return False
    for d in jax.devices():
        if "metal" in getattr(d, "platform", "").lower():
            return False
    return True


def configure_precision(force_x64: bool | None = None) -> bool:
    """Configure JAX precision based on backend capabilities.

    Device laws are evaluated with JAX and then assembled into float64 scipy
    matrices, so 64-bit mode is needed for results to match the linear
    solves bit for bit.

    Args:
        force_x64: If True, force x64 even on unsupported backends (may fail).
                   If False, force x32. If None (default), auto-detect.

    Returns:
        True if x64 is enabled, False otherwise.

    This function is called automatically on import.
    """
    if force_x64 is not None:
        enable_x64 = force_x64
    else:
        enable_x64 = _backend_supports_x64()

    if enable_x64:
        logger.debug("Using 64-bit float precision")
    else:
        logger.warning("Using 32-bit float precision; diode laws lose accuracy")

    jax.config.update("jax_enable_x64", enable_x64)
    return enable_x64


def get_precision_info() -> dict:
    """Get information about the current precision configuration."""
    return {
        "x64_enabled": jax.config.jax_enable_x64,
        "backend": jax.default_backend(),
        "backend_supports_x64": _backend_supports_x64(),
    }


# Auto-configure precision on import
_x64_enabled = configure_precision()


def get_float_dtype():
    """Get the appropriate float dtype based on x64 configuration.

    Returns:
        jnp.float64 if x64 is enabled, jnp.float32 otherwise.
    """
    import jax.numpy as jnp

    return jnp.float64 if jax.config.jax_enable_x64 else jnp.float32


# Imported after precision is configured so device laws trace in float64
from cirmcut.analysis import (  # noqa: E402
    ConvergenceError,
    LinearSolver,
    LinearSolverError,
    Mapping,
    SingularMatrixError,
    Solver,
    SolverConfig,
    SolverMode,
    StepResult,
    solve,
    stamp,
)
from cirmcut.topology import (  # noqa: E402
    Battery,
    Capacitor,
    CurrentSource,
    Diode,
    Inductor,
    NTransistor,
    PTransistor,
    Resistor,
    SimOutputs,
    Switch,
    Topology,
    Wire,
)

__all__ = [
    "__version__",
    "configure_precision",
    "get_float_dtype",
    "get_precision_info",
    # Topology
    "Topology",
    "SimOutputs",
    "Wire",
    "Resistor",
    "Inductor",
    "Capacitor",
    "Diode",
    "Battery",
    "Switch",
    "CurrentSource",
    "NTransistor",
    "PTransistor",
    # Solving
    "Mapping",
    "Solver",
    "SolverConfig",
    "SolverMode",
    "StepResult",
    "LinearSolver",
    "solve",
    "stamp",
    # Errors
    "LinearSolverError",
    "SingularMatrixError",
    "ConvergenceError",
]
