"""Linear device laws for cirmcut

Resistors, switches, batteries, current sources, and the backward-Euler
companion laws of capacitors and inductors. All are plain-float functions;
their coefficients do not depend on the Newton iterate.
"""

import math
from typing import Iterable

from cirmcut.devices.base import DeviceLaw


def resistor_law(resistance: float) -> DeviceLaw:
    """Ohm's law: ``V_drop - R * I = 0``"""
    return DeviceLaw(current=-resistance, voltage_drop=1.0, rhs=0.0)


def switch_law(is_open: bool) -> DeviceLaw:
    """Open: ``I = 0``. Closed: ``V_drop = 0``."""
    if is_open:
        return DeviceLaw(current=1.0, voltage_drop=0.0, rhs=0.0)
    return DeviceLaw(current=0.0, voltage_drop=1.0, rhs=0.0)


def battery_law(voltage: float) -> DeviceLaw:
    """Ideal voltage source: ``-V_drop = V``"""
    return DeviceLaw(current=0.0, voltage_drop=-1.0, rhs=voltage)


def current_source_law(current: float) -> DeviceLaw:
    """Ideal current source: ``I = I0``"""
    return DeviceLaw(current=1.0, voltage_drop=0.0, rhs=current)


def capacitor_law(capacitance: float, dt: float, v_prev: float = 0.0) -> DeviceLaw:
    """Backward-Euler capacitor: ``-dt * I + C * V_drop = C * V_prev``

    Args:
        capacitance: Capacitance in Farads
        dt: Timestep
        v_prev: Voltage drop at the previous time step

    Returns:
        DeviceLaw with ``history = C`` (applied to the previous voltage drop)
    """
    return DeviceLaw(
        current=-dt,
        voltage_drop=capacitance,
        rhs=capacitance * v_prev,
        history=capacitance,
    )


def inductor_law(
    inductance: float,
    dt: float,
    i_prev: float = 0.0,
    coupled: Iterable[float] = (),
) -> DeviceLaw:
    """Backward-Euler inductor: ``-L * I + dt * V_drop = -L * I_prev``

    When the inductor shares a core with others, ``sqrt(L_other)`` of every
    partner is subtracted from the voltage-drop coefficient; the matching
    ``sqrt(L)`` terms on the partners' voltage-drop columns come from
    :func:`mutual_coefficient`. Unit coupling coefficient.

    Args:
        inductance: Inductance in Henries
        dt: Timestep
        i_prev: Branch current at the previous time step
        coupled: Inductances of the other inductors on the same core

    Returns:
        DeviceLaw with ``history = -L`` (applied to the previous current)
    """
    voltage_coeff = dt
    for other in coupled:
        voltage_coeff -= math.sqrt(other)
    return DeviceLaw(
        current=-inductance,
        voltage_drop=voltage_coeff,
        rhs=-inductance * i_prev,
        history=-inductance,
    )


def mutual_coefficient(inductance: float) -> float:
    """Coefficient an inductor places on each core partner's voltage drop."""
    return math.sqrt(inductance)
