"""Diode companion model for cirmcut

The Shockley law ``I = Is * (exp(V / (n*Vt)) - 1)`` is replaced, for one
Newton step, by its first-order Taylor expansion about the previous iterate
``v0``::

    I - (Is / nVt) * ex * V = Is * (ex - 1 - v0 * ex / nVt),   ex = exp(v0 / nVt)

At a fixed point (``V == v0``) this reduces to the exact Shockley law. The
constant is written with this sign, the negation of the older
``Is * (1 - ex + v0 * ex / nVt)`` form, which does not reproduce the diode
current at a fixed point.

Iterates above ``DIODE_EXPONENT_LIMIT * nVt`` are linearized at that voltage
instead, in the manner of a limited exponential: the tangent line continues
past the limit, so a large supply never overflows ``exp`` and Newton walks
the junction back down. Operating points below the limit are unaffected.

The functions are JIT-compiled and accept scalars or arrays, so the stamping
engine evaluates every diode junction of a window in one call.
"""

import jax
import jax.numpy as jnp
from jax import Array
from jaxtyping import Float

from cirmcut.config import (
    DIODE_EMISSION_COEFFICIENT,
    DIODE_EXPONENT_LIMIT,
    DIODE_SATURATION_CURRENT,
    THERMAL_VOLTAGE,
)
from cirmcut.devices.base import DeviceLaw

NVT = DIODE_EMISSION_COEFFICIENT * THERMAL_VOLTAGE

# Junction voltage above which the law is linearized at the limit
V_LIMIT = DIODE_EXPONENT_LIMIT * NVT


@jax.jit
def diode_law(v0: Float[Array, "..."]) -> DeviceLaw:
    """Linearized diode law about the last-iteration voltage drop ``v0``.

    Args:
        v0: Voltage drop (anode minus cathode) at the previous Newton iterate

    Returns:
        DeviceLaw with unit current coefficient, conductance term
        ``-(Is/nVt) * exp(v/nVt)`` on the voltage drop, and Taylor constant,
        where ``v = min(v0, V_LIMIT)``
    """
    v = jnp.minimum(jnp.asarray(v0), V_LIMIT)
    ex = jnp.exp(v / NVT)
    return DeviceLaw(
        current=jnp.ones_like(ex),
        voltage_drop=-(DIODE_SATURATION_CURRENT / NVT) * ex,
        rhs=DIODE_SATURATION_CURRENT * (ex - 1.0 - v * ex / NVT),
        history=jnp.zeros_like(ex),
    )


def diode_current(v: Float[Array, "..."]) -> Array:
    """Exact Shockley current for a junction voltage ``v``."""
    return DIODE_SATURATION_CURRENT * (jnp.exp(jnp.asarray(v) / NVT) - 1.0)
