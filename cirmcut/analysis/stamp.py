"""Stamping engine: assemble the MNA system for one Newton iteration.

For a window of ``n_timesteps`` blocks the system is block-structured: block
``k`` occupies rows and columns ``k*n .. (k+1)*n`` (``n = vector_size``).
Within each block three groups of rows are stamped, in order:

1. Current laws: each branch current enters the Kirchhoff row of its end node
   with ``+1`` and of its begin node with ``-1``.
2. Voltage laws: ``V_drop + V_end - V_begin = 0`` for every branch.
3. Component laws: one :class:`~cirmcut.devices.DeviceLaw` per branch.

Only capacitor and inductor rows couple blocks: block 0 takes its history from
``last_timestep``, block ``k >= 1`` references the voltage drop (capacitor) or
current (inductor) column of block ``k - 1``.

Node indices are not validated here; callers run ``Topology.validate()`` once.
"""

from typing import Dict, List, Optional, Tuple

import jax.numpy as jnp
import numpy as np
import scipy.sparse as sp

from cirmcut.analysis.mapping import Mapping
from cirmcut.devices import (
    DeviceLaw,
    battery_law,
    capacitor_law,
    current_source_law,
    diode_law,
    inductor_law,
    mutual_coefficient,
    resistor_law,
    switch_law,
    transistor_laws,
)
from cirmcut.topology import (
    Battery,
    Capacitor,
    CurrentSource,
    Diode,
    Inductor,
    Resistor,
    Switch,
    Topology,
    Wire,
)


class SparseTriplets:
    """Append-only ``(row, col, value)`` arena, converted once to CSR.

    Duplicate entries are summed on conversion.
    """

    def __init__(self):
        self.rows: List[int] = []
        self.cols: List[int] = []
        self.values: List[float] = []

    def __len__(self) -> int:
        return len(self.values)

    def append(self, row: int, col: int, value: float) -> None:
        self.rows.append(row)
        self.cols.append(col)
        self.values.append(float(value))

    def to_csr(self, shape: Tuple[int, int]) -> sp.csr_matrix:
        return sp.coo_matrix(
            (
                np.asarray(self.values, dtype=np.float64),
                (np.asarray(self.rows, dtype=np.int64), np.asarray(self.cols, dtype=np.int64)),
            ),
            shape=shape,
        ).tocsr()


def build_core_groups(topology: Topology) -> Dict[int, List[Tuple[float, int]]]:
    """Group inductors by core: ``core_id -> [(inductance, component_index), ...]``"""
    cores: Dict[int, List[Tuple[float, int]]] = {}
    for idx, (_, kind) in enumerate(topology.two_terminal):
        if isinstance(kind, Inductor) and kind.core_id is not None:
            cores.setdefault(kind.core_id, []).append((kind.inductance, idx))
    return cores


def _to_numpy(law: DeviceLaw) -> DeviceLaw:
    return DeviceLaw(*(np.asarray(c, dtype=np.float64) for c in law))


def _diode_laws(
    mapping: Mapping, topology: Topology, state: np.ndarray
) -> Tuple[Dict[int, int], Optional[DeviceLaw]]:
    """Evaluate every diode of every block in one call.

    Returns a map from component index to column of the batched law, and the
    law with arrays of shape ``(n_timesteps, n_diodes)``.
    """
    indices = [idx for idx, (_, kind) in enumerate(topology.two_terminal) if isinstance(kind, Diode)]
    if not indices:
        return {}, None
    cols = mapping.state_map.voltage_drops().start + np.asarray(indices)
    law = _to_numpy(diode_law(jnp.asarray(state[:, cols])))
    return {idx: j for j, idx in enumerate(indices)}, law


def _transistor_laws(
    mapping: Mapping, topology: Topology, state: np.ndarray
) -> Optional[Tuple[DeviceLaw, DeviceLaw]]:
    """Evaluate both legs of every transistor of every block in one call."""
    n3 = len(topology.three_terminal)
    if n3 == 0:
        return None
    sm = mapping.state_map
    ab = len(topology.two_terminal) + 2 * np.arange(n3)
    bc = ab + 1
    polarity = np.asarray([kind.polarity for _, kind in topology.three_terminal])
    law_ab, law_bc = transistor_laws(
        jnp.asarray(state[:, sm.voltage_drops().start + ab]),
        jnp.asarray(state[:, sm.voltage_drops().start + bc]),
        jnp.asarray(state[:, sm.currents().start + ab]),
        jnp.asarray(state[:, sm.currents().start + bc]),
        jnp.asarray(np.broadcast_to(polarity, (state.shape[0], n3))),
    )
    return _to_numpy(law_ab), _to_numpy(law_bc)


def _stamp_current_laws(triplets: SparseTriplets, mapping: Mapping, topology: Topology, base: int):
    sm, pm = mapping.state_map, mapping.param_map

    def incidence(node: int, current_col: int, sign: float):
        row = pm.current_law_index(node)
        if row is not None:
            triplets.append(base + row, base + current_col, sign)

    for idx, ((begin, end), _) in enumerate(topology.two_terminal):
        col = sm.currents().start + idx
        incidence(end, col, 1.0)
        incidence(begin, col, -1.0)

    n2 = len(topology.two_terminal)
    for t, ((a, b, c), _) in enumerate(topology.three_terminal):
        i_ab = sm.currents().start + n2 + 2 * t
        i_bc = i_ab + 1
        incidence(a, i_ab, 1.0)
        incidence(b, i_ab, -1.0)
        incidence(b, i_bc, 1.0)
        incidence(c, i_bc, -1.0)


def _stamp_voltage_laws(triplets: SparseTriplets, mapping: Mapping, topology: Topology, base: int):
    sm, pm = mapping.state_map, mapping.param_map

    def node_term(row: int, node: int, sign: float):
        col = sm.voltage_index(node)
        if col is not None:
            triplets.append(base + row, base + col, sign)

    for idx, ((begin, end), _) in enumerate(topology.two_terminal):
        row = pm.voltage_laws().start + idx
        triplets.append(base + row, base + sm.voltage_drops().start + idx, 1.0)
        node_term(row, end, 1.0)
        node_term(row, begin, -1.0)

    n2 = len(topology.two_terminal)
    for t, ((a, b, c), _) in enumerate(topology.three_terminal):
        ab_row = pm.voltage_laws().start + n2 + 2 * t
        bc_row = ab_row + 1
        ab_col = sm.voltage_drops().start + n2 + 2 * t
        triplets.append(base + ab_row, base + ab_col, 1.0)
        triplets.append(base + bc_row, base + ab_col + 1, 1.0)
        node_term(ab_row, a, 1.0)
        node_term(ab_row, b, -1.0)
        node_term(bc_row, b, 1.0)
        node_term(bc_row, c, -1.0)


def _append_law(
    triplets: SparseTriplets,
    params: np.ndarray,
    row: int,
    current_col: int,
    voltage_drop_col: int,
    law: DeviceLaw,
):
    if law.current != 0.0:
        triplets.append(row, current_col, law.current)
    if law.voltage_drop != 0.0:
        triplets.append(row, voltage_drop_col, law.voltage_drop)
    params[row] = law.rhs


def stamp(
    dt: float,
    mapping: Mapping,
    topology: Topology,
    last_iteration,
    last_timestep,
    n_timesteps: int = 1,
) -> Tuple[sp.csr_matrix, np.ndarray]:
    """Build ``A`` and ``b`` of ``A x = b`` for a window of time steps.

    Args:
        dt: Timestep
        mapping: Index mapping for ``topology``
        topology: Circuit to stamp
        last_iteration: Current Newton candidate, length ``vector_size * n_timesteps``
        last_timestep: Converged state of the step before the window, length ``vector_size``
        n_timesteps: Number of time-step blocks in the window

    Returns:
        (matrix, params): square CSR matrix and dense right-hand side
    """
    n = mapping.vector_size
    total = n * n_timesteps
    last_iteration = np.asarray(last_iteration, dtype=np.float64)
    last_timestep = np.asarray(last_timestep, dtype=np.float64)
    if last_iteration.shape != (total,):
        raise ValueError(f"last_iteration has length {last_iteration.shape[0]}, expected {total}")
    if last_timestep.shape != (n,):
        raise ValueError(f"last_timestep has length {last_timestep.shape[0]}, expected {n}")

    triplets = SparseTriplets()
    params = np.zeros(total, dtype=np.float64)

    state = last_iteration.reshape(n_timesteps, n)
    diode_columns, diodes = _diode_laws(mapping, topology, state)
    transistors = _transistor_laws(mapping, topology, state)
    cores = build_core_groups(topology)

    sm, pm = mapping.state_map, mapping.param_map
    n2 = len(topology.two_terminal)

    for block in range(n_timesteps):
        base = mapping.block_offset(block)
        prev_base = mapping.block_offset(block - 1) if block > 0 else None

        _stamp_current_laws(triplets, mapping, topology, base)
        _stamp_voltage_laws(triplets, mapping, topology, base)

        for idx, ((begin, end), kind) in enumerate(topology.two_terminal):
            row = base + pm.components().start + idx
            current = sm.currents().start + idx
            voltage_drop = sm.voltage_drops().start + idx

            if isinstance(kind, Wire):
                end_col = sm.voltage_index(end)
                begin_col = sm.voltage_index(begin)
                if end_col is not None:
                    triplets.append(row, base + end_col, 1.0)
                if begin_col is not None:
                    triplets.append(row, base + begin_col, -1.0)
                continue

            if isinstance(kind, Resistor):
                law = resistor_law(kind.resistance)
            elif isinstance(kind, Switch):
                law = switch_law(kind.is_open)
            elif isinstance(kind, Battery):
                law = battery_law(kind.voltage)
            elif isinstance(kind, CurrentSource):
                law = current_source_law(kind.current)
            elif isinstance(kind, Capacitor):
                if prev_base is None:
                    law = capacitor_law(kind.capacitance, dt, last_timestep[voltage_drop])
                else:
                    law = capacitor_law(kind.capacitance, dt)
                    triplets.append(row, prev_base + voltage_drop, -law.history)
            elif isinstance(kind, Inductor):
                partners = []
                if kind.core_id is not None:
                    partners = [(L, j) for L, j in cores[kind.core_id] if j != idx]
                coupled = [L for L, _ in partners]
                if prev_base is None:
                    law = inductor_law(kind.inductance, dt, last_timestep[current], coupled)
                else:
                    law = inductor_law(kind.inductance, dt, coupled=coupled)
                    triplets.append(row, prev_base + current, -law.history)
                for _, j in partners:
                    triplets.append(
                        row,
                        base + sm.voltage_drops().start + j,
                        mutual_coefficient(kind.inductance),
                    )
            elif isinstance(kind, Diode):
                j = diode_columns[idx]
                law = DeviceLaw(
                    current=diodes.current[block, j],
                    voltage_drop=diodes.voltage_drop[block, j],
                    rhs=diodes.rhs[block, j],
                )
            else:
                raise TypeError(f"Unsupported two-terminal component: {kind!r}")

            _append_law(triplets, params, row, base + current, base + voltage_drop, law)

        if transistors is None:
            continue
        law_ab, law_bc = transistors
        for t in range(len(topology.three_terminal)):
            for leg, law in ((0, law_ab), (1, law_bc)):
                slot = n2 + 2 * t + leg
                _append_law(
                    triplets,
                    params,
                    base + pm.components().start + slot,
                    base + sm.currents().start + slot,
                    base + sm.voltage_drops().start + slot,
                    DeviceLaw(
                        current=law.current[block, t],
                        voltage_drop=law.voltage_drop[block, t],
                        rhs=law.rhs[block, t],
                    ),
                )

    return triplets.to_csr((total, total)), params
