"""Circuit topology data structures for cirmcut

The topology is the only input the solver needs besides its configuration:
a count of electrical nodes plus lists of two-terminal and three-terminal
components, each wired to node indices assigned by the schematic editor.

Node ``num_nodes - 1`` is the ground reference (fixed at 0 V).
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, Union


# ============================================================================
# Two-terminal components
# ============================================================================


@dataclass(frozen=True)
class Wire:
    """Ideal connection; forces both terminals to the same voltage."""

    name = "Wire"


@dataclass(frozen=True)
class Resistor:
    resistance: float

    name = "Resistor"


@dataclass(frozen=True)
class Inductor:
    """Inductor, optionally wound on a shared core.

    Inductors with the same ``core_id`` form an ideally coupled transformer.
    """

    inductance: float
    core_id: Optional[int] = None

    name = "Inductor"


@dataclass(frozen=True)
class Capacitor:
    capacitance: float

    name = "Capacitor"


@dataclass(frozen=True)
class Diode:
    """Junction diode; anode is the begin terminal, cathode the end terminal."""

    name = "Diode"


@dataclass(frozen=True)
class Battery:
    """Ideal voltage source; the end terminal sits ``voltage`` above the begin terminal."""

    voltage: float

    name = "Battery"


@dataclass(frozen=True)
class Switch:
    is_open: bool

    name = "Switch"


@dataclass(frozen=True)
class CurrentSource:
    """Ideal current source driving ``current`` from the begin to the end terminal."""

    current: float

    name = "Current Source"


TwoTerminalKind = Union[Wire, Resistor, Inductor, Capacitor, Diode, Battery, Switch, CurrentSource]


# ============================================================================
# Three-terminal components
# ============================================================================


@dataclass(frozen=True)
class NTransistor:
    """NPN bipolar transistor, terminals ``(a, b, c)`` with ``b`` the base.

    ``beta`` is kept for the editor; the two-leg model does not use it.
    """

    beta: float

    name = "N-type Transistor (NPN)"
    polarity = 1.0


@dataclass(frozen=True)
class PTransistor:
    """PNP bipolar transistor, terminals ``(a, b, c)`` with ``b`` the base."""

    beta: float

    name = "P-type Transistor (PNP)"
    polarity = -1.0


ThreeTerminalKind = Union[NTransistor, PTransistor]


_KIND_TAGS: Dict[str, Type] = {
    "Wire": Wire,
    "Resistor": Resistor,
    "Inductor": Inductor,
    "Capacitor": Capacitor,
    "Diode": Diode,
    "Battery": Battery,
    "Switch": Switch,
    "CurrentSource": CurrentSource,
    "NTransistor": NTransistor,
    "PTransistor": PTransistor,
}


def kind_to_dict(kind: Union[TwoTerminalKind, ThreeTerminalKind]) -> Dict[str, Any]:
    """Convert a component kind to a tagged plain dict, e.g. ``{"kind": "Resistor", "resistance": 1e3}``."""
    result: Dict[str, Any] = {"kind": type(kind).__name__}
    result.update(asdict(kind))
    return result


def kind_from_dict(data: Dict[str, Any]) -> Union[TwoTerminalKind, ThreeTerminalKind]:
    """Inverse of :func:`kind_to_dict`.

    Raises:
        ValueError: If the tag is unknown
    """
    fields_ = dict(data)
    tag = fields_.pop("kind", None)
    if tag not in _KIND_TAGS:
        raise ValueError(f"Unknown component kind: {tag!r}")
    return _KIND_TAGS[tag](**fields_)


# ============================================================================
# Topology
# ============================================================================


@dataclass
class Topology:
    """Node-indexed description of a circuit.

    Attributes:
        num_nodes: Number of distinct electrical nodes; node ``num_nodes - 1`` is ground
        two_terminal: ``((begin, end), kind)`` pairs
        three_terminal: ``((a, b, c), kind)`` pairs
    """

    num_nodes: int
    two_terminal: List[Tuple[Tuple[int, int], TwoTerminalKind]] = field(default_factory=list)
    three_terminal: List[Tuple[Tuple[int, int, int], ThreeTerminalKind]] = field(
        default_factory=list
    )

    @property
    def ground(self) -> Optional[int]:
        """Index of the ground node, or None for an empty circuit."""
        return self.num_nodes - 1 if self.num_nodes > 0 else None

    @property
    def shape(self) -> Tuple[int, int, int]:
        """(num_nodes, n_two_terminal, n_three_terminal); a solver is valid for one shape."""
        return (self.num_nodes, len(self.two_terminal), len(self.three_terminal))

    @property
    def is_linear(self) -> bool:
        """True when no diode or transistor is present."""
        if self.three_terminal:
            return False
        return not any(isinstance(kind, Diode) for _, kind in self.two_terminal)

    def voltage_sources(self) -> Iterator[Tuple[int, float]]:
        """Yield ``(component_index, voltage)`` for every battery."""
        for idx, (_, kind) in enumerate(self.two_terminal):
            if isinstance(kind, Battery):
                yield idx, kind.voltage

    def validate(self) -> None:
        """Check that every referenced node index lies in ``0..num_nodes``.

        The stamping engine does not check this; callers validate once when
        the topology is built.

        Raises:
            ValueError: If a component references an out-of-range node
        """
        if self.num_nodes < 0:
            raise ValueError(f"num_nodes must be non-negative, got {self.num_nodes}")

        for idx, (nodes, kind) in enumerate(self.two_terminal):
            if len(nodes) != 2:
                raise ValueError(f"Two-terminal component {idx} ({kind.name}) has {len(nodes)} nodes")
            self._check_nodes(nodes, f"Two-terminal component {idx} ({kind.name})")

        for idx, (nodes, kind) in enumerate(self.three_terminal):
            if len(nodes) != 3:
                raise ValueError(f"Three-terminal component {idx} ({kind.name}) has {len(nodes)} nodes")
            self._check_nodes(nodes, f"Three-terminal component {idx} ({kind.name})")

    def _check_nodes(self, nodes, label: str) -> None:
        for node in nodes:
            if not 0 <= node < self.num_nodes:
                raise ValueError(
                    f"{label} references node {node}, but num_nodes is {self.num_nodes}"
                )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict of lists, numbers and tagged kind dicts."""
        return {
            "num_nodes": self.num_nodes,
            "two_terminal": [[list(nodes), kind_to_dict(kind)] for nodes, kind in self.two_terminal],
            "three_terminal": [
                [list(nodes), kind_to_dict(kind)] for nodes, kind in self.three_terminal
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Topology":
        """Build a topology from the output of :meth:`to_dict`."""
        return cls(
            num_nodes=int(data["num_nodes"]),
            two_terminal=[
                ((int(nodes[0]), int(nodes[1])), kind_from_dict(kind))
                for nodes, kind in data.get("two_terminal", [])
            ],
            three_terminal=[
                ((int(nodes[0]), int(nodes[1]), int(nodes[2])), kind_from_dict(kind))
                for nodes, kind in data.get("three_terminal", [])
            ],
        )


@dataclass
class SimOutputs:
    """Voltages and currents for one time slice, in topology order.

    Attributes:
        voltages: One voltage per node, ground (last) included as 0.0
        two_terminal_current: Current through each two-terminal component, begin to end
        three_terminal_current: ``[a, b, c]`` terminal currents of each three-terminal component
    """

    voltages: List[float]
    two_terminal_current: List[float]
    three_terminal_current: List[List[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voltages": list(self.voltages),
            "two_terminal_current": list(self.two_terminal_current),
            "three_terminal_current": [list(c) for c in self.three_terminal_current],
        }
