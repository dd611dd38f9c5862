"""Index mapping between a topology and its MNA vectors.

The state vector ``x`` and the equation (parameter) vector ``b`` of
``A x = b`` are both laid out as three contiguous blocks:

    state:      [ currents | voltage drops | node voltages ]
    equations:  [ component laws | current laws | voltage laws ]

Each two-terminal component owns one current and one voltage drop; each
three-terminal component owns two of each (legs ``ab`` and ``bc``), appended
after the two-terminal ones. Every non-ground node owns one voltage and one
Kirchhoff current law. Both vectors therefore have the same length and the
matrix is square.
"""

from dataclasses import dataclass
from typing import Optional

from cirmcut.topology import Topology


def _branch_count(topology: Topology) -> int:
    return len(topology.two_terminal) + 2 * len(topology.three_terminal)


@dataclass(frozen=True)
class StateMapping:
    """Layout of the unknown vector ``x``."""

    n_currents: int = 0
    n_voltage_drops: int = 0
    n_voltages: int = 0

    @classmethod
    def from_topology(cls, topology: Topology) -> "StateMapping":
        n_branches = _branch_count(topology)
        return cls(
            n_currents=n_branches,
            n_voltage_drops=n_branches,
            n_voltages=max(topology.num_nodes - 1, 0),
        )

    def currents(self) -> range:
        return range(0, self.n_currents)

    def voltage_drops(self) -> range:
        base = self.currents().stop
        return range(base, base + self.n_voltage_drops)

    def voltages(self) -> range:
        base = self.voltage_drops().stop
        return range(base, base + self.n_voltages)

    def voltage_index(self, node: int) -> Optional[int]:
        """State index of a node voltage, or None for ground."""
        if 0 <= node < self.n_voltages:
            return self.voltages().start + node
        return None

    def total_len(self) -> int:
        return self.n_currents + self.n_voltage_drops + self.n_voltages


@dataclass(frozen=True)
class ParameterMapping:
    """Layout of the equation vector ``b`` (rows of ``A``)."""

    n_components: int = 0
    n_current_laws: int = 0
    n_voltage_laws: int = 0

    @classmethod
    def from_topology(cls, topology: Topology) -> "ParameterMapping":
        n_branches = _branch_count(topology)
        return cls(
            n_components=n_branches,
            n_current_laws=max(topology.num_nodes - 1, 0),
            n_voltage_laws=n_branches,
        )

    def components(self) -> range:
        return range(0, self.n_components)

    def current_laws(self) -> range:
        base = self.components().stop
        return range(base, base + self.n_current_laws)

    def voltage_laws(self) -> range:
        base = self.current_laws().stop
        return range(base, base + self.n_voltage_laws)

    def current_law_index(self, node: int) -> Optional[int]:
        """Row of a node's Kirchhoff current law, or None for ground."""
        if 0 <= node < self.n_current_laws:
            return self.current_laws().start + node
        return None

    def total_len(self) -> int:
        return self.n_components + self.n_current_laws + self.n_voltage_laws


class Mapping:
    """State and parameter layouts for one topology shape.

    Recompute whenever the number of nodes or components changes.

    Example (a battery and two resistors on three nodes):
        >>> mapping = Mapping(divider)
        >>> mapping.state_map.voltages()
        range(6, 8)
    """

    def __init__(self, topology: Topology):
        self.state_map = StateMapping.from_topology(topology)
        self.param_map = ParameterMapping.from_topology(topology)

    @classmethod
    def new(cls, topology: Topology) -> "Mapping":
        return cls(topology)

    @property
    def vector_size(self) -> int:
        size = self.state_map.total_len()
        assert size == self.param_map.total_len(), "state and equation vectors differ in length"
        return size

    def block_offset(self, block: int) -> int:
        """First index of time-step block ``block`` in a windowed vector."""
        return block * self.vector_size

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        return self.state_map == other.state_map and self.param_map == other.param_map

    def __repr__(self) -> str:
        return f"Mapping(state={self.state_map}, params={self.param_map})"
