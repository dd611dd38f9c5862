"""Device models for cirmcut

Pure functions returning the linear(ized) branch law of each component kind.
"""

from cirmcut.devices.base import DeviceLaw
from cirmcut.devices.bjt import transistor_laws
from cirmcut.devices.diode import diode_current, diode_law
from cirmcut.devices.passive import (
    battery_law,
    capacitor_law,
    current_source_law,
    inductor_law,
    mutual_coefficient,
    resistor_law,
    switch_law,
)

__all__ = [
    "DeviceLaw",
    # Linear devices
    "resistor_law",
    "switch_law",
    "battery_law",
    "current_source_law",
    "capacitor_law",
    "inductor_law",
    "mutual_coefficient",
    # Nonlinear devices
    "diode_law",
    "diode_current",
    "transistor_laws",
]
