"""Default physical constants for cirmcut device models.

This module centralizes the fixed constants used by the diode and transistor
companion models. They are module-level names rather than per-instance
parameters.
"""

# Boltzmann constant expressed in eV/K, so k*T is directly a voltage
BOLTZMANN_EV = 8.617e-5

# Junction temperature in Kelvin (22C)
DIODE_TEMPERATURE_K = 273.15 + 22.0

THERMAL_VOLTAGE = BOLTZMANN_EV * DIODE_TEMPERATURE_K

DIODE_SATURATION_CURRENT = 171.4352819281e-9  # A
DIODE_EMISSION_COEFFICIENT = 2.0

# Ebers-Moll injection ratios for the two-leg transistor model
BJT_FORWARD_ALPHA = 0.98
BJT_REVERSE_ALPHA = 0.1

# Largest exponent v/nVt at which the diode law is linearized; iterates beyond
# it are linearized at this point instead (about 2 V for the default diode)
DIODE_EXPONENT_LIMIT = 40.0
