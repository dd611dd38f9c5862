"""Base device interface for cirmcut

Every component kind contributes exactly one equation per branch to the
component-law block of the MNA system. Device models are pure functions that
return that equation as a :class:`DeviceLaw`; the stamping engine decides
where the coefficients land.
"""

from typing import NamedTuple, Union

from jax import Array

# Scalars for linear devices, arrays for batched nonlinear evaluation
Coefficient = Union[float, Array]


class DeviceLaw(NamedTuple):
    """One linear(ized) branch equation::

        current * I + voltage_drop * V_drop = rhs

    Attributes:
        current: Coefficient on the branch current
        voltage_drop: Coefficient on the branch voltage drop
        rhs: Right-hand side constant
        history: For energy-storage devices, the factor ``rhs`` applies to the
            previous time step's value (voltage drop for a capacitor, current
            for an inductor). Zero for memoryless devices.

    Example:
        ```python
        # A 1 kOhm resistor: V_drop - 1000 * I = 0
        law = resistor_law(1e3)
        assert law == DeviceLaw(current=-1e3, voltage_drop=1.0, rhs=0.0)
        ```
    """

    current: Coefficient
    voltage_drop: Coefficient
    rhs: Coefficient
    history: Coefficient = 0.0
