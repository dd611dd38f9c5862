"""Bipolar transistor model for cirmcut

Simplified Ebers-Moll companion model: the transistor is two diode legs
sharing the base terminal,

    leg ab: I_ab = D(p * V_ab) + ar * I_bc
    leg bc: I_bc = D(-p * V_bc) + af * I_ab

where ``D`` is the diode law, ``p`` is +1 for NPN and -1 for PNP, and the
injection terms use the currents of the previous Newton iterate. This is not
a full SPICE Gummel-Poon model; ``beta`` does not enter.
"""

from typing import Tuple

import jax
from jax import Array
from jaxtyping import Float

from cirmcut.config import BJT_FORWARD_ALPHA, BJT_REVERSE_ALPHA
from cirmcut.devices.base import DeviceLaw
from cirmcut.devices.diode import diode_law


@jax.jit
def transistor_laws(
    v_ab: Float[Array, "..."],
    v_bc: Float[Array, "..."],
    i_ab: Float[Array, "..."],
    i_bc: Float[Array, "..."],
    polarity: Float[Array, "..."],
) -> Tuple[DeviceLaw, DeviceLaw]:
    """Linearized laws of both legs at the previous iterate.

    Args:
        v_ab: Leg ``ab`` voltage drop (``V_b - V_a``)
        v_bc: Leg ``bc`` voltage drop (``V_c - V_b``)
        i_ab: Leg ``ab`` current
        i_bc: Leg ``bc`` current
        polarity: +1.0 for NPN, -1.0 for PNP

    Returns:
        (law_ab, law_bc), each with coefficients on its own leg's current
        and voltage drop
    """
    ab = diode_law(polarity * v_ab)
    bc = diode_law(-polarity * v_bc)

    law_ab = DeviceLaw(
        current=ab.current,
        voltage_drop=polarity * ab.voltage_drop,
        rhs=ab.rhs + BJT_REVERSE_ALPHA * i_bc,
        history=ab.history,
    )
    law_bc = DeviceLaw(
        current=bc.current,
        voltage_drop=-polarity * bc.voltage_drop,
        rhs=bc.rhs + BJT_FORWARD_ALPHA * i_ab,
        history=bc.history,
    )
    return law_ab, law_bc
