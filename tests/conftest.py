"""Pytest configuration for cirmcut tests

Forces the CPU backend before JAX is imported so that 64-bit precision is
always available, and provides the small circuits shared across test modules.
"""

import os

import pytest


def pytest_configure(config):
    """
    Pytest hook that runs before test collection.

    Configures JAX BEFORE any test modules import cirmcut.
    """
    os.environ.setdefault("JAX_PLATFORMS", "cpu")

    # Import cirmcut to auto-configure precision
    import cirmcut  # noqa: F401


# =============================================================================
# Shared circuits
# =============================================================================


@pytest.fixture
def divider():
    """Battery and two resistors on three nodes.

    Node 2 is ground. The battery lifts node 0 to ``V`` above ground, and the
    resistors divide it at node 1.

        node 2 --[V1]--> node 0 --[R1]-- node 1 --[R2]-- node 2
    """
    from cirmcut.topology import Battery, Resistor, Topology

    return Topology(
        num_nodes=3,
        two_terminal=[
            ((2, 0), Battery(5.0)),
            ((0, 1), Resistor(1000.0)),
            ((1, 2), Resistor(1000.0)),
        ],
    )


@pytest.fixture
def rc_circuit():
    """Battery charging a capacitor through a resistor (tau = 10 ms)."""
    from cirmcut.topology import Battery, Capacitor, Resistor, Topology

    return Topology(
        num_nodes=3,
        two_terminal=[
            ((2, 0), Battery(5.0)),
            ((0, 1), Resistor(1000.0)),
            ((1, 2), Capacitor(10e-6)),
        ],
    )


@pytest.fixture
def diode_circuit():
    """5 V battery driving a forward-biased diode through 1 kOhm.

        node 2 --[V1]--> node 0 --[R1]-- node 1 --[D1]>|-- node 2
    """
    from cirmcut.topology import Battery, Diode, Resistor, Topology

    return Topology(
        num_nodes=3,
        two_terminal=[
            ((2, 0), Battery(5.0)),
            ((0, 1), Resistor(1000.0)),
            ((1, 2), Diode()),
        ],
    )


@pytest.fixture
def exact_config():
    """Full Newton steps and a direct solve, for circuits with closed-form answers."""
    from cirmcut.analysis.options import SolverConfig

    return SolverConfig(nr_step_size=1.0, n_timesteps=1, dx_soln_tolerance=0.1)
