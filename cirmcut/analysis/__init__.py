"""Solving engine for cirmcut

Index mapping, stamping, sparse linear solvers and the time-stepping
Newton-Raphson controller.
"""

from cirmcut.analysis.mapping import Mapping, ParameterMapping, StateMapping
from cirmcut.analysis.options import SolverConfig, SolverMode
from cirmcut.analysis.solver import Solver, StepResult
from cirmcut.analysis.sparse import (
    ConvergenceError,
    LinearSolver,
    LinearSolverError,
    SingularMatrixError,
    solve,
)
from cirmcut.analysis.stamp import SparseTriplets, build_core_groups, stamp

__all__ = [
    # Mapping
    "Mapping",
    "StateMapping",
    "ParameterMapping",
    # Stamping
    "SparseTriplets",
    "build_core_groups",
    "stamp",
    # Linear solvers
    "LinearSolver",
    "solve",
    "LinearSolverError",
    "SingularMatrixError",
    "ConvergenceError",
    # Stepping
    "SolverConfig",
    "SolverMode",
    "Solver",
    "StepResult",
]
