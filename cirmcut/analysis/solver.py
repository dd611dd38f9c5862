"""Time-stepping solver for cirmcut.

A :class:`Solver` owns the solution window for one topology shape: a flat
float64 buffer of ``n_timesteps`` blocks, each laid out by
:class:`~cirmcut.analysis.mapping.Mapping`. Every call to :meth:`Solver.step`
advances the whole window by ``n_timesteps * dt``, using the last block of
the previous window as the converged history.

Newton-Raphson update (per iteration):
    f = b(x) - A(x) x
    A(x) dx = f
    x = x + dx * step_size
    err = sum((dx * nr_step_size)**2)

With adaptive damping, ``step_size`` is halved while the damped error
``sum((dx * step_size)**2)`` exceeds the previous one, and doubles back
towards ``nr_step_size`` after each iteration that needed no halving. An
iteration that was damped never counts as converged.

Non-convergence of the Newton loop is not an error: the last iterate is kept
and a warning is logged. Linear solver failures propagate to the caller.
"""

from typing import NamedTuple, Optional

import numpy as np

from cirmcut._logging import logger
from cirmcut.analysis.mapping import Mapping
from cirmcut.analysis.options import SolverConfig, SolverMode
from cirmcut.analysis.sparse import solve
from cirmcut.analysis.stamp import stamp
from cirmcut.profiling import profile_section
from cirmcut.topology import SimOutputs, Topology


class StepResult(NamedTuple):
    """Diagnostics from one solver step.

    Attributes:
        iterations: Newton iterations performed (1 in linear mode)
        converged: Whether the Newton error fell below ``nr_tolerance``
        error: Final Newton error ``sum((dx * nr_step_size)**2)``
        step_size: Step size in effect at the end (reduced by adaptive damping)
    """

    iterations: int
    converged: bool
    error: float
    step_size: float


class Solver:
    """Solution window and stepping for one topology shape.

    Rebuild the solver whenever the topology gains or loses nodes or
    components; component values may change freely between steps.

    Example:
        solver = Solver(topology, n_timesteps=2)
        config = SolverConfig()
        for _ in range(100):
            solver.step(config.dt, topology, config)
        print(solver.state(topology, time_slice=1).voltages)
    """

    def __init__(self, topology: Topology, n_timesteps: int = 1):
        topology.validate()
        if n_timesteps < 1:
            raise ValueError(f"n_timesteps must be >= 1, got {n_timesteps}")

        self.mapping = Mapping(topology)
        self.n_timesteps = n_timesteps
        self.last_result: Optional[StepResult] = None
        self._shape = topology.shape
        self._soln = np.zeros(self.mapping.vector_size * n_timesteps, dtype=np.float64)

    @property
    def solution(self) -> np.ndarray:
        """Read-only view of the solution window."""
        view = self._soln.view()
        view.flags.writeable = False
        return view

    def reset(self) -> None:
        """Zero the solution window, keeping the topology shape."""
        self._soln[:] = 0.0
        self.last_result = None

    def _check_topology(self, topology: Topology) -> None:
        if topology.shape != self._shape:
            raise ValueError(
                f"Topology shape {topology.shape} does not match solver shape {self._shape}; "
                "build a new Solver"
            )

    def _last_block(self) -> np.ndarray:
        n = self.mapping.vector_size
        return self._soln[(self.n_timesteps - 1) * n :].copy()

    def _resize_window(self, n_timesteps: int) -> None:
        if n_timesteps == self.n_timesteps:
            return
        logger.info(f"Resizing solution window: {self.n_timesteps} -> {n_timesteps} time steps")
        self._soln = np.tile(self._last_block(), n_timesteps)
        self.n_timesteps = n_timesteps

    def _solve(self, matrix, rhs: np.ndarray, config: SolverConfig) -> np.ndarray:
        return solve(
            matrix,
            rhs,
            config.dx_soln_tolerance,
            method=config.linear_solver,
            restart=config.gmres_restart,
            precondition=config.precondition,
        )

    def step(self, dt: float, topology: Topology, config: SolverConfig) -> StepResult:
        """Advance the solution window by one step.

        Args:
            dt: Timestep
            topology: Circuit with the same shape the solver was built for
            config: Solver options; ``config.n_timesteps`` resizes the window

        Returns:
            StepResult with Newton diagnostics

        Raises:
            ValueError: If the topology shape changed
            LinearSolverError: If a linear solve fails
        """
        self._check_topology(topology)
        self._resize_window(config.n_timesteps)

        with profile_section("solver_step"):
            if config.mode is SolverMode.LINEAR:
                result = self._linear_step(dt, topology, config)
            else:
                result = self._newton_step(dt, topology, config)

        logger.debug(
            f"step dt={dt:g}: {result.iterations} iterations, error={result.error:.3e}, "
            f"step_size={result.step_size:g}, converged={result.converged}"
        )
        self.last_result = result
        return result

    def _linear_step(self, dt: float, topology: Topology, config: SolverConfig) -> StepResult:
        prev = self._last_block()
        reference = np.tile(prev, self.n_timesteps)

        matrix, params = stamp(dt, self.mapping, topology, reference, prev, self.n_timesteps)
        if params.size > 0:
            self._soln = self._solve(matrix, params, config)
        return StepResult(iterations=1, converged=True, error=0.0, step_size=1.0)

    def _newton_step(self, dt: float, topology: Topology, config: SolverConfig) -> StepResult:
        step_size = config.nr_step_size
        if self._soln.size == 0:
            return StepResult(iterations=0, converged=True, error=0.0, step_size=step_size)

        prev = self._last_block()
        candidate = np.tile(prev, self.n_timesteps)

        last_err = np.inf
        err = np.inf
        iterations = 0
        converged = False

        for _ in range(config.max_nr_iters):
            matrix, params = stamp(dt, self.mapping, topology, candidate, prev, self.n_timesteps)

            # Residual, overwritten in place by the update
            delta = params - matrix @ candidate
            delta = self._solve(matrix, delta, config)
            iterations += 1

            damped_err = float(np.sum((delta * step_size) ** 2))
            damped = False
            if config.adaptive_step_size:
                while damped_err > last_err and step_size * 0.5 >= config.min_step_size:
                    step_size *= 0.5
                    damped_err = float(np.sum((delta * step_size) ** 2))
                    damped = True
                if damped:
                    logger.debug(f"Newton error increased; step size halved to {step_size:g}")

            candidate += delta * step_size
            last_err = damped_err

            # Convergence is measured at the configured step size
            err = float(np.sum((delta * config.nr_step_size) ** 2))
            if err < config.nr_tolerance and not damped:
                converged = True
                break

            if config.adaptive_step_size and not damped:
                step_size = min(step_size * 2.0, config.nr_step_size)

        if not converged:
            logger.warning(
                f"Newton-Raphson did not converge after {iterations} iterations "
                f"(error {err:.3e}); keeping last iterate"
            )

        self._soln = candidate
        return StepResult(
            iterations=iterations, converged=converged, error=err, step_size=step_size
        )

    def state(self, topology: Topology, time_slice: int = 0) -> SimOutputs:
        """Voltages and currents of one time-step block.

        Args:
            topology: Circuit with the same shape the solver was built for
            time_slice: Block index in ``0..n_timesteps``

        Returns:
            SimOutputs with ground (0.0) appended as the last voltage and
            three-terminal currents as ``[i_ab, i_bc - i_ab, i_bc]``

        Raises:
            IndexError: If ``time_slice`` is outside the window
        """
        self._check_topology(topology)
        if not 0 <= time_slice < self.n_timesteps:
            raise IndexError(
                f"time_slice {time_slice} out of range for window of {self.n_timesteps}"
            )

        n = self.mapping.vector_size
        block = self._soln[time_slice * n : (time_slice + 1) * n]
        sm = self.mapping.state_map

        voltages = block[sm.voltages().start : sm.voltages().stop].tolist()
        if topology.num_nodes > 0:
            voltages.append(0.0)

        currents = block[sm.currents().start : sm.currents().stop]
        n2 = len(topology.two_terminal)
        two_terminal_current = currents[:n2].tolist()

        three_terminal_current = []
        for t in range(len(topology.three_terminal)):
            i_ab = float(currents[n2 + 2 * t])
            i_bc = float(currents[n2 + 2 * t + 1])
            three_terminal_current.append([i_ab, i_bc - i_ab, i_bc])

        return SimOutputs(
            voltages=voltages,
            two_terminal_current=two_terminal_current,
            three_terminal_current=three_terminal_current,
        )
