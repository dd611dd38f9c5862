"""Sparse linear solvers for cirmcut

One interface, ``solve(matrix, rhs, tolerance, method)``, over three
interchangeable strategies from ``scipy.sparse.linalg``:

- ``LinearSolver.LU``: sparse LU factorization (SuperLU). Direct and the most
  robust; ``tolerance`` is the partial-pivoting threshold.
- ``LinearSolver.BICG``: biconjugate gradient. Iterative, handles
  non-symmetric systems; ``tolerance`` is the relative residual target.
- ``LinearSolver.GMRES``: restarted generalized minimal residual. Iterative,
  usually the most stable of the two Krylov methods on circuit matrices.

MNA matrices have structural zeros on the diagonal (battery and wire rows),
on which an unpreconditioned BiCG breaks down at the first iteration. The
iterative methods are therefore preconditioned with an incomplete LU
factorization unless ``precondition=False`` is passed.

NaN/Inf Safety:
    No explicit NaN/Inf checking is done on inputs or outputs. Non-finite
    values from upstream propagate into the returned solution.
"""

from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator, bicg, gmres, spilu, splu

from cirmcut._logging import logger
from cirmcut.profiling import profile_section

RhsLike = Union[np.ndarray, Sequence[float]]


# ============================================================================
# Errors
# ============================================================================


class LinearSolverError(RuntimeError):
    """A linear solve could not produce a solution."""


class SingularMatrixError(LinearSolverError):
    """The assembled matrix has no unique solution (e.g. a floating subcircuit)."""


class ConvergenceError(LinearSolverError):
    """An iterative method exhausted its iteration budget.

    Attributes:
        residual: 2-norm of ``b - A x`` at the last iterate
        iterations: Iteration budget that was exhausted
    """

    def __init__(self, method: str, residual: float, iterations: int):
        self.residual = residual
        self.iterations = iterations
        super().__init__(
            f"{method} did not converge after {iterations} iterations "
            f"(residual norm {residual:.3e})"
        )


# ============================================================================
# Solver selection
# ============================================================================


class LinearSolver(Enum):
    """Available sparse linear solvers."""

    LU = "lu"
    BICG = "bicg"
    GMRES = "gmres"

    @classmethod
    def from_string(cls, name: str) -> "LinearSolver":
        """Parse solver from string (case-insensitive).

        Args:
            name: Solver name ("lu", "bicg", "gmres") or an alias
                ("LUDecomposition", "BiconjugateGradient", "GenMinRes")

        Returns:
            LinearSolver enum value

        Raises:
            ValueError: If the name is not recognized
        """
        name_lower = name.lower().replace("-", "").replace("_", "").replace(" ", "")

        aliases = {
            "lu": cls.LU,
            "ludecomposition": cls.LU,
            "direct": cls.LU,
            "bicg": cls.BICG,
            "biconjugategradient": cls.BICG,
            "gmres": cls.GMRES,
            "genminres": cls.GMRES,
        }

        if name_lower in aliases:
            return aliases[name_lower]

        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown linear solver '{name}'. Valid options: {valid}")

    def solve(self, matrix, rhs: RhsLike, tolerance: float, **kwargs) -> np.ndarray:
        """Shorthand for :func:`solve` with this method."""
        return solve(matrix, rhs, tolerance, method=self, **kwargs)


# ============================================================================
# Solve
# ============================================================================


def solve(
    matrix,
    rhs: RhsLike,
    tolerance: float,
    method: LinearSolver = LinearSolver.LU,
    restart: int = 100,
    maxiter: Optional[int] = None,
    precondition: bool = True,
) -> np.ndarray:
    """Solve the sparse system ``A x = b``.

    Args:
        matrix: Square scipy sparse matrix (any format)
        rhs: Right-hand side; a writable float64 ndarray is overwritten in
            place with the solution
        tolerance: Pivot threshold for LU, relative residual for BiCG/GMRES
        method: Which strategy to use
        restart: GMRES restart length
        maxiter: Iteration budget for BiCG/GMRES (default ``max(100, 10*n)``)
        precondition: Use an incomplete-LU preconditioner for BiCG/GMRES

    Returns:
        Solution vector (the same object as ``rhs`` when solved in place)

    Raises:
        SingularMatrixError: LU found the matrix singular
        ConvergenceError: BiCG/GMRES hit the iteration budget
        LinearSolverError: BiCG/GMRES broke down
    """
    b = np.asarray(rhs, dtype=np.float64)
    n = b.shape[0]
    if matrix.shape != (n, n):
        raise ValueError(f"Matrix shape {matrix.shape} does not match rhs length {n}")

    if n == 0:
        x = np.zeros(0, dtype=np.float64)
    else:
        with profile_section(f"linear_solve_{method.value}"):
            if method is LinearSolver.LU:
                x = _solve_lu(matrix, b, tolerance)
            else:
                x = _solve_krylov(matrix, b, tolerance, method, restart, maxiter, precondition)

    if isinstance(rhs, np.ndarray) and rhs.dtype == np.float64 and rhs.flags.writeable:
        rhs[...] = x
        return rhs
    return x


def _solve_lu(matrix, b: np.ndarray, tolerance: float) -> np.ndarray:
    pivot_thresh = float(np.clip(tolerance, 0.0, 1.0))
    try:
        lu = splu(sp.csc_matrix(matrix, dtype=np.float64), diag_pivot_thresh=pivot_thresh)
    except RuntimeError as e:
        raise SingularMatrixError(f"LU decomposition failed: {e}") from e
    return lu.solve(b)


def _ilu_preconditioner(matrix: sp.csc_matrix) -> Optional[LinearOperator]:
    """Incomplete-LU preconditioner, or None if the factorization fails."""
    try:
        ilu = spilu(matrix)
    except RuntimeError as e:
        logger.debug(f"ILU preconditioner unavailable ({e}); solving unpreconditioned")
        return None
    return LinearOperator(
        matrix.shape,
        matvec=ilu.solve,
        rmatvec=lambda x: ilu.solve(x, "T"),
        dtype=np.float64,
    )


def _solve_krylov(
    matrix,
    b: np.ndarray,
    tolerance: float,
    method: LinearSolver,
    restart: int,
    maxiter: Optional[int],
    precondition: bool,
) -> np.ndarray:
    A = sp.csc_matrix(matrix, dtype=np.float64)
    n = b.shape[0]
    if maxiter is None:
        maxiter = max(100, 10 * n)

    M = _ilu_preconditioner(A) if precondition else None

    if method is LinearSolver.BICG:
        x, info = bicg(A, b, rtol=tolerance, atol=0.0, maxiter=maxiter, M=M)
        name = "BiCG"
    else:
        x, info = gmres(
            A, b, rtol=tolerance, atol=0.0, restart=restart, maxiter=maxiter, M=M
        )
        name = "GMRES"

    if info > 0:
        residual = float(np.linalg.norm(b - A @ x))
        raise ConvergenceError(name, residual, info)
    if info < 0:
        raise LinearSolverError(f"{name} broke down (info={info})")
    return x
