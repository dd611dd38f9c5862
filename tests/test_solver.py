"""Tests for time stepping with Solver.

Covers closed-form linear circuits, RC charging against the backward-Euler
recurrence and the analytic curve, diode rectification in both solver modes,
backend equivalence, windowed stepping, and error propagation.
"""

import logging
import math

import numpy as np
import pytest

from cirmcut.analysis.options import SolverConfig, SolverMode
from cirmcut.analysis.solver import Solver, StepResult
from cirmcut.analysis.sparse import LinearSolver, SingularMatrixError
from cirmcut.config import DIODE_SATURATION_CURRENT
from cirmcut.devices import diode_current
from cirmcut.topology import (
    Battery,
    CurrentSource,
    Diode,
    Inductor,
    NTransistor,
    PTransistor,
    Resistor,
    Switch,
    Topology,
    Wire,
)


def _divider(v, r1, r2):
    return Topology(
        num_nodes=3,
        two_terminal=[
            ((2, 0), Battery(v)),
            ((0, 1), Resistor(r1)),
            ((1, 2), Resistor(r2)),
        ],
    )


def _node_current_sums(topology, outputs):
    """Signed sum of branch currents at every node (into end, out of begin)."""
    sums = np.zeros(topology.num_nodes)
    for ((begin, end), _), current in zip(topology.two_terminal, outputs.two_terminal_current):
        sums[end] += current
        sums[begin] -= current
    return sums


class TestLinearCircuits:
    """Resistive circuits with closed-form solutions."""

    @pytest.mark.parametrize("r1,r2", [(1e3, 1e3), (220.0, 4.7e3), (1e6, 10.0)])
    def test_voltage_divider(self, exact_config, r1, r2):
        topo = _divider(5.0, r1, r2)
        solver = Solver(topo)
        result = solver.step(1e-3, topo, exact_config)

        assert result.converged
        out = solver.state(topo)
        assert out.voltages[0] == pytest.approx(5.0, rel=1e-9)
        assert out.voltages[1] == pytest.approx(5.0 * r2 / (r1 + r2), rel=1e-6)
        assert out.voltages[2] == 0.0
        assert out.two_terminal_current[1] == pytest.approx(5.0 / (r1 + r2), rel=1e-6)

    def test_linear_mode_matches_newton(self, divider, exact_config):
        linear = exact_config.copy()
        linear.mode = SolverMode.LINEAR

        a, b = Solver(divider), Solver(divider)
        a.step(1e-3, divider, exact_config)
        b.step(1e-3, divider, linear)
        np.testing.assert_allclose(a.state(divider).voltages, b.state(divider).voltages, rtol=1e-9)

    def test_kcl_conservation(self, exact_config):
        topo = Topology(
            num_nodes=5,
            two_terminal=[
                ((4, 0), Battery(12.0)),
                ((0, 1), Resistor(100.0)),
                ((0, 2), Resistor(220.0)),
                ((1, 2), Resistor(330.0)),
                ((1, 3), Resistor(470.0)),
                ((2, 3), Resistor(680.0)),
                ((3, 4), Resistor(1000.0)),
                ((4, 2), CurrentSource(5e-3)),
                ((3, 1), Wire()),
            ],
        )
        solver = Solver(topo)
        solver.step(1e-3, topo, exact_config)
        out = solver.state(topo)

        sums = _node_current_sums(topo, out)
        np.testing.assert_allclose(sums[:-1], 0.0, atol=1e-12)
        # Wire forces equal voltages
        assert out.voltages[1] == pytest.approx(out.voltages[3], abs=1e-12)

    def test_current_source_into_resistor(self, exact_config):
        topo = Topology(
            num_nodes=2,
            two_terminal=[((1, 0), CurrentSource(2e-3)), ((0, 1), Resistor(1e3))],
        )
        solver = Solver(topo)
        solver.step(1e-3, topo, exact_config)
        assert solver.state(topo).voltages[0] == pytest.approx(2.0)


class TestSwitch:
    """Switch toggling."""

    @staticmethod
    def _circuit(is_open):
        return Topology(
            num_nodes=4,
            two_terminal=[
                ((3, 0), Battery(5.0)),
                ((0, 1), Resistor(1e3)),
                ((1, 2), Switch(is_open)),
                ((2, 3), Resistor(1e3)),
                ((1, 3), Resistor(2e3)),
            ],
        )

    def test_open_and_closed(self, exact_config):
        closed = self._circuit(False)
        solver = Solver(closed)
        solver.step(1e-3, closed, exact_config)
        out = solver.state(closed)
        assert out.voltages[1] == pytest.approx(2.0)
        assert out.voltages[2] == pytest.approx(2.0)

        opened = self._circuit(True)
        solver.step(1e-3, opened, exact_config)
        out = solver.state(opened)
        assert out.voltages[1] == pytest.approx(5.0 * 2.0 / 3.0)
        assert out.two_terminal_current[2] == pytest.approx(0.0, abs=1e-15)

    def test_toggle_is_idempotent(self, exact_config):
        closed, opened = self._circuit(False), self._circuit(True)
        solver = Solver(closed)
        solver.step(1e-3, closed, exact_config)
        before = solver.state(closed).voltages

        solver.step(1e-3, opened, exact_config)
        solver.step(1e-3, closed, exact_config)
        after = solver.state(closed).voltages

        np.testing.assert_allclose(after, before, rtol=1e-12, atol=1e-12)


class TestCapacitorCharging:
    """RC charging (tau = R*C = 10 ms)."""

    TAU = 1e-2
    DT = 1e-4

    def test_backward_euler_recurrence(self, rc_circuit, exact_config):
        solver = Solver(rc_circuit)
        for _ in range(100):
            solver.step(self.DT, rc_circuit, exact_config)

        v_cap = solver.state(rc_circuit).voltages[1]
        expected = 5.0 * (1.0 - (1.0 + self.DT / self.TAU) ** -100)
        assert v_cap == pytest.approx(expected, rel=1e-6)

    def test_matches_analytic_curve(self, rc_circuit, exact_config):
        solver = Solver(rc_circuit)
        for n in range(1, 301):
            solver.step(self.DT, rc_circuit, exact_config)
            if n % 50 == 0:
                t = n * self.DT
                analytic = 5.0 * (1.0 - math.exp(-t / self.TAU))
                assert solver.state(rc_circuit).voltages[1] == pytest.approx(analytic, rel=0.02)

    def test_charging_current(self, rc_circuit, exact_config):
        solver = Solver(rc_circuit)
        solver.step(self.DT, rc_circuit, exact_config)
        # First step: I = 5 / (R + dt/C)
        assert solver.state(rc_circuit).two_terminal_current[2] == pytest.approx(
            5.0 / (1e3 + self.DT / 10e-6), rel=1e-6
        )

    def test_window_matches_sequential(self, rc_circuit, exact_config):
        sequential = Solver(rc_circuit, n_timesteps=1)
        for _ in range(40):
            sequential.step(self.DT, rc_circuit, exact_config)

        windowed_config = exact_config.copy()
        windowed_config.n_timesteps = 4
        windowed = Solver(rc_circuit, n_timesteps=4)
        for _ in range(10):
            windowed.step(self.DT, rc_circuit, windowed_config)

        assert windowed.state(rc_circuit, time_slice=3).voltages[1] == pytest.approx(
            sequential.state(rc_circuit).voltages[1], rel=1e-9
        )
        # Earlier slices hold earlier times
        slices = [windowed.state(rc_circuit, time_slice=k).voltages[1] for k in range(4)]
        assert slices == sorted(slices)


class TestInductor:
    def test_rl_current_rise(self, exact_config):
        L, R, dt = 1e-2, 10.0, 1e-4
        topo = Topology(
            num_nodes=3,
            two_terminal=[
                ((2, 0), Battery(1.0)),
                ((0, 1), Resistor(R)),
                ((1, 2), Inductor(L)),
            ],
        )
        solver = Solver(topo)
        i = 0.0
        for _ in range(20):
            solver.step(dt, topo, exact_config)
            # Backward Euler: L (i' - i) / dt = 1 - R i'
            i = (1.0 * dt / L + i) / (1.0 + R * dt / L)
        assert solver.state(topo).two_terminal_current[2] == pytest.approx(i, rel=1e-6)


class TestDiode:
    """Diode rectification in Newton-Raphson and linear modes."""

    @staticmethod
    def _settle(topo, config, steps):
        solver = Solver(topo)
        for _ in range(steps):
            solver.step(1e-3, topo, config)
        return solver

    def test_forward_newton(self, diode_circuit, exact_config):
        solver = self._settle(diode_circuit, exact_config, 1)
        assert solver.last_result.converged

        current = solver.state(diode_circuit).two_terminal_current[2]
        assert current == pytest.approx((5.0 - 0.7) / 1000.0, rel=0.05)
        # Diode drop is consistent with the resistor current
        out = solver.state(diode_circuit)
        assert (5.0 - out.voltages[1]) / 1000.0 == pytest.approx(current, rel=1e-6)

    def test_reverse_newton(self, exact_config):
        topo = Topology(
            num_nodes=3,
            two_terminal=[
                ((2, 0), Battery(-5.0)),
                ((0, 1), Resistor(1000.0)),
                ((1, 2), Diode()),
            ],
        )
        solver = self._settle(topo, exact_config, 1)
        current = solver.state(topo).two_terminal_current[2]
        assert abs(current) < 1e-6
        assert current == pytest.approx(-DIODE_SATURATION_CURRENT, rel=1e-3)

    def test_forward_linear_mode(self, diode_circuit, exact_config):
        """Repeated linear steps walk the companion model to the operating point."""
        config = exact_config.copy()
        config.mode = SolverMode.LINEAR
        solver = self._settle(diode_circuit, config, 400)
        current = solver.state(diode_circuit).two_terminal_current[2]
        assert current == pytest.approx((5.0 - 0.7) / 1000.0, rel=0.05)

    def test_reverse_linear_mode(self, exact_config):
        topo = Topology(
            num_nodes=3,
            two_terminal=[
                ((2, 0), Battery(-5.0)),
                ((0, 1), Resistor(1000.0)),
                ((1, 2), Diode()),
            ],
        )
        config = exact_config.copy()
        config.mode = SolverMode.LINEAR
        solver = self._settle(topo, config, 20)
        assert abs(solver.state(topo).two_terminal_current[2]) < 1e-6

    def test_high_voltage_forward_newton(self, exact_config):
        """A 50 V supply first drives the diode iterate far past its knee."""
        topo = Topology(
            num_nodes=3,
            two_terminal=[
                ((2, 0), Battery(50.0)),
                ((0, 1), Resistor(1000.0)),
                ((1, 2), Diode()),
            ],
        )
        solver = self._settle(topo, exact_config, 1)
        assert solver.last_result.converged

        out = solver.state(topo)
        current = out.two_terminal_current[2]
        assert current == pytest.approx(49.36e-3, rel=2e-3)
        assert current == pytest.approx(float(diode_current(out.voltages[1])), rel=5e-3)

    def test_default_damping_converges(self, diode_circuit):
        config = SolverConfig(n_timesteps=1)
        solver = self._settle(diode_circuit, config, 1)
        assert solver.last_result.converged
        current = solver.state(diode_circuit).two_terminal_current[2]
        assert current == pytest.approx((5.0 - 0.7) / 1000.0, rel=0.05)


class TestTransistor:
    """Transistor state extraction and cutoff."""

    @staticmethod
    def _cutoff(kind, v):
        # Base and emitter on ground (node 1); collector node 0 pulled to v
        return Topology(
            num_nodes=2,
            two_terminal=[((1, 0), Battery(v)), ((0, 1), Resistor(1e3))],
            three_terminal=[((1, 1, 0), kind)],
        )

    @pytest.mark.parametrize("kind,v", [(NTransistor(100.0), 5.0), (PTransistor(100.0), -5.0)])
    def test_cutoff(self, exact_config, kind, v):
        topo = self._cutoff(kind, v)
        solver = Solver(topo)
        solver.step(1e-3, topo, exact_config)
        assert solver.last_result.converged

        out = solver.state(topo)
        assert out.voltages[0] == pytest.approx(v)
        a, b, c = out.three_terminal_current[0]
        # Leakage only; an active transistor here would carry milliamps
        assert abs(c) < 1e-5
        assert abs(a) < 1e-5
        assert b == pytest.approx(c - a)

    def test_three_terminal_currents_from_legs(self, exact_config):
        topo = self._cutoff(NTransistor(100.0), 5.0)
        solver = Solver(topo)
        solver.step(1e-3, topo, exact_config)

        sm = solver.mapping.state_map
        i_ab = solver.solution[sm.currents().start + 2]
        i_bc = solver.solution[sm.currents().start + 3]
        assert solver.state(topo).three_terminal_current == [[i_ab, i_bc - i_ab, i_bc]]


class TestBackendEquivalence:
    """LU, BiCG and GMRES agree on a linear circuit."""

    def test_backends_agree(self):
        topo = _divider(3.3, 12.7, 33.1)
        voltages = {}
        for method in LinearSolver:
            config = SolverConfig(
                linear_solver=method, nr_step_size=1.0, n_timesteps=1, dx_soln_tolerance=1e-10
            )
            solver = Solver(topo)
            solver.step(1e-3, topo, config)
            voltages[method] = solver.state(topo).voltages

        for method in (LinearSolver.BICG, LinearSolver.GMRES):
            np.testing.assert_allclose(voltages[method], voltages[LinearSolver.LU], atol=1e-4)
        assert voltages[LinearSolver.LU][1] == pytest.approx(3.3 * 33.1 / (12.7 + 33.1))


class TestSolverLifecycle:
    """Buffer ownership, window resizing and error propagation."""

    def test_new_solver_is_zeroed(self, divider):
        solver = Solver(divider, n_timesteps=3)
        assert solver.solution.shape == (3 * solver.mapping.vector_size,)
        assert not solver.solution.any()
        assert solver.last_result is None

    def test_solution_is_read_only(self, divider):
        solver = Solver(divider)
        with pytest.raises(ValueError):
            solver.solution[0] = 1.0

    def test_reset(self, divider, exact_config):
        solver = Solver(divider)
        solver.step(1e-3, divider, exact_config)
        assert solver.solution.any()
        solver.reset()
        assert not solver.solution.any()
        assert solver.last_result is None

    def test_step_result(self, divider, exact_config):
        solver = Solver(divider)
        result = solver.step(1e-3, divider, exact_config)
        assert isinstance(result, StepResult)
        assert result is solver.last_result
        assert result.iterations >= 1
        assert result.error < exact_config.nr_tolerance

    def test_rejects_invalid_topology(self):
        with pytest.raises(ValueError):
            Solver(Topology(num_nodes=2, two_terminal=[((0, 3), Resistor(1.0))]))

    def test_rejects_changed_shape(self, divider, exact_config):
        solver = Solver(divider)
        bigger = Topology(
            num_nodes=3,
            two_terminal=list(divider.two_terminal) + [((0, 2), Resistor(1.0))],
        )
        with pytest.raises(ValueError, match="does not match"):
            solver.step(1e-3, bigger, exact_config)

    def test_window_resize(self, divider, exact_config):
        solver = Solver(divider, n_timesteps=1)
        solver.step(1e-3, divider, exact_config)
        before = solver.state(divider).voltages

        config = exact_config.copy()
        config.n_timesteps = 3
        solver.step(1e-3, divider, config)
        assert solver.n_timesteps == 3
        assert solver.solution.shape == (3 * solver.mapping.vector_size,)
        for k in range(3):
            np.testing.assert_allclose(solver.state(divider, time_slice=k).voltages, before)

    def test_state_out_of_range(self, divider):
        solver = Solver(divider, n_timesteps=2)
        with pytest.raises(IndexError):
            solver.state(divider, time_slice=2)

    def test_empty_topology(self, exact_config):
        topo = Topology(num_nodes=0)
        solver = Solver(topo)
        result = solver.step(1e-3, topo, exact_config)
        assert result.converged
        assert result.iterations == 0
        assert solver.state(topo).voltages == []

    def test_floating_subcircuit_is_singular(self, exact_config):
        topo = Topology(
            num_nodes=4,
            two_terminal=[
                ((3, 0), Battery(1.0)),
                ((0, 3), Resistor(1.0)),
                ((1, 2), Resistor(1.0)),
            ],
        )
        solver = Solver(topo)
        with pytest.raises(SingularMatrixError):
            solver.step(1e-3, topo, exact_config)

    def test_deterministic(self, diode_circuit):
        config = SolverConfig(nr_step_size=0.5, n_timesteps=2)
        a, b = Solver(diode_circuit, n_timesteps=2), Solver(diode_circuit, n_timesteps=2)
        for _ in range(3):
            a.step(1e-3, diode_circuit, config)
            b.step(1e-3, diode_circuit, config)
        assert np.array_equal(a.solution, b.solution)


class TestNewtonControl:
    """Iteration budget and adaptive damping."""

    def test_non_convergence_is_logged(self, diode_circuit, caplog):
        config = SolverConfig(max_nr_iters=3, n_timesteps=1)
        solver = Solver(diode_circuit)
        with caplog.at_level(logging.WARNING, logger="cirmcut"):
            result = solver.step(1e-3, diode_circuit, config)

        assert not result.converged
        assert result.iterations == 3
        assert "did not converge after 3 iterations" in caplog.text
        assert np.isfinite(solver.solution).all()

    def test_adaptive_step_respects_floor(self):
        config = SolverConfig(
            nr_step_size=1.0,
            adaptive_step_size=True,
            min_step_size=0.25,
            max_nr_iters=2,
            n_timesteps=1,
        )
        topo = self._diode_across_battery()
        result = Solver(topo).step(1e-3, topo, config)
        assert result.step_size == 0.25

    @staticmethod
    def _diode_across_battery():
        # The second iterate linearizes the diode at its limit, so the error jumps
        return Topology(
            num_nodes=2,
            two_terminal=[((1, 0), Battery(5.0)), ((0, 1), Diode())],
        )

    def test_error_increase_halves_step(self, caplog):
        config = SolverConfig(
            nr_step_size=1.0, adaptive_step_size=True, max_nr_iters=2, n_timesteps=1
        )
        topo = self._diode_across_battery()
        solver = Solver(topo)
        with caplog.at_level(logging.DEBUG, logger="cirmcut"):
            result = solver.step(1e-3, topo, config)

        assert not result.converged
        assert result.step_size < config.nr_step_size
        # Halved down to the last value above min_step_size (1e-6)
        assert result.step_size == 0.5**19
        assert "step size halved" in caplog.text
        assert np.isfinite(solver.solution).all()

    def test_adaptive_matches_fixed_step(self, diode_circuit):
        currents = {}
        for adaptive in (False, True):
            config = SolverConfig(
                nr_step_size=1.0, adaptive_step_size=adaptive, n_timesteps=1
            )
            solver = Solver(diode_circuit)
            result = solver.step(1e-3, diode_circuit, config)
            assert result.converged
            currents[adaptive] = solver.state(diode_circuit).two_terminal_current[2]

        assert currents[True] == pytest.approx(currents[False], rel=0.02)
        v_d = 5.0 - 1000.0 * currents[True]
        assert currents[True] == pytest.approx(float(diode_current(v_d)), rel=5e-3)

    def test_fixed_step_size_reported(self, divider):
        config = SolverConfig(nr_step_size=0.5, n_timesteps=1)
        result = Solver(divider).step(1e-3, divider, config)
        assert result.converged
        assert result.step_size == 0.5
