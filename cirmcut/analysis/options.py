"""Solver configuration with validation and dict round-tripping.

This module provides the configuration record the editor hands to
``Solver.step`` on every frame:
- Default values
- Validation on assignment
- Parsing from a plain dict (e.g. a saved editor session)

Example usage:
    config = SolverConfig()
    config.linear_solver = LinearSolver.GMRES
    config.set("mode", "linear")

    # From a saved session
    config.update_from_dict({"nr_step_size": "0.5", "n_timesteps": 4})
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict

from cirmcut._logging import logger
from cirmcut.analysis.sparse import LinearSolver


class SolverMode(Enum):
    """How ``Solver.step`` treats nonlinear devices.

    LINEAR: one stamp and one solve about the previous state. Exact for
        circuits without diodes or transistors.
    NEWTON_RAPHSON: iterate stamp and solve until the update is small.
    """

    LINEAR = "linear"
    NEWTON_RAPHSON = "newton_raphson"

    @classmethod
    def from_string(cls, name: str) -> "SolverMode":
        """Parse mode from string (case-insensitive).

        Args:
            name: "linear", "newton_raphson", "nr", or "NewtonRaphson"

        Raises:
            ValueError: If the name is not recognized
        """
        name_lower = name.lower().replace("-", "").replace("_", "").replace(" ", "")

        aliases = {
            "linear": cls.LINEAR,
            "newtonraphson": cls.NEWTON_RAPHSON,
            "newton": cls.NEWTON_RAPHSON,
            "nr": cls.NEWTON_RAPHSON,
        }

        if name_lower in aliases:
            return aliases[name_lower]

        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown solver mode '{name}'. Valid options: {valid}")


def _parse_bool(value: Any) -> bool:
    """Parse a boolean from various input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


@dataclass
class SolverConfig:
    """Options recognized by ``Solver.step``.

    Options are validated on assignment. Invalid values raise ValueError.
    """

    mode: SolverMode = SolverMode.NEWTON_RAPHSON
    """Linear or Newton-Raphson stepping."""

    linear_solver: LinearSolver = LinearSolver.LU
    """Backend for every linear solve (lu, bicg, gmres)."""

    max_nr_iters: int = 2000
    """Newton iteration budget per step."""

    nr_step_size: float = 0.1
    """Fraction of each Newton update applied. Must be in (0, 1]."""

    nr_tolerance: float = 1e-6
    """Newton stops once the squared scaled update falls below this."""

    dx_soln_tolerance: float = 1e-3
    """Tolerance passed to the linear solve (pivot threshold for LU,
    relative residual for BiCG/GMRES)."""

    adaptive_step_size: bool = False
    """Halve the Newton step whenever the error grows."""

    min_step_size: float = 1e-6
    """Floor for adaptive step halving."""

    gmres_restart: int = 100
    """GMRES restart length."""

    precondition: bool = True
    """Use an incomplete-LU preconditioner for BiCG/GMRES."""

    n_timesteps: int = 2
    """Time-step blocks solved together per step."""

    dt: float = 5e-3
    """Timestep (s)."""

    def __post_init__(self):
        """Validate all options after initialization."""
        self._validate_all()

    def __setattr__(self, name: str, value: Any) -> None:
        """Set attribute with validation."""
        if name == "mode" and not isinstance(value, SolverMode):
            raise ValueError(f"mode must be a SolverMode, got {value!r}")
        if name == "linear_solver" and not isinstance(value, LinearSolver):
            raise ValueError(f"linear_solver must be a LinearSolver, got {value!r}")
        if name == "max_nr_iters" and value < 1:
            raise ValueError(f"max_nr_iters must be >= 1, got {value}")
        if name == "nr_step_size" and not (0 < value <= 1.0):
            raise ValueError(f"nr_step_size must be in (0, 1], got {value}")
        if name == "nr_tolerance" and value <= 0:
            raise ValueError(f"nr_tolerance must be positive, got {value}")
        if name == "dx_soln_tolerance" and value <= 0:
            raise ValueError(f"dx_soln_tolerance must be positive, got {value}")
        if name == "min_step_size" and value <= 0:
            raise ValueError(f"min_step_size must be positive, got {value}")
        if name == "gmres_restart" and value < 1:
            raise ValueError(f"gmres_restart must be >= 1, got {value}")
        if name == "n_timesteps" and value < 1:
            raise ValueError(f"n_timesteps must be >= 1, got {value}")
        if name == "dt" and value <= 0:
            raise ValueError(f"dt must be positive, got {value}")

        object.__setattr__(self, name, value)

    def _validate_all(self):
        """Validate all option values."""
        if not isinstance(self.mode, SolverMode):
            raise ValueError(f"mode must be a SolverMode, got {self.mode!r}")
        if not isinstance(self.linear_solver, LinearSolver):
            raise ValueError(f"linear_solver must be a LinearSolver, got {self.linear_solver!r}")
        if self.max_nr_iters < 1:
            raise ValueError(f"max_nr_iters must be >= 1, got {self.max_nr_iters}")
        if not (0 < self.nr_step_size <= 1.0):
            raise ValueError(f"nr_step_size must be in (0, 1], got {self.nr_step_size}")
        if self.nr_tolerance <= 0:
            raise ValueError(f"nr_tolerance must be positive, got {self.nr_tolerance}")
        if self.dx_soln_tolerance <= 0:
            raise ValueError(f"dx_soln_tolerance must be positive, got {self.dx_soln_tolerance}")
        if self.min_step_size <= 0:
            raise ValueError(f"min_step_size must be positive, got {self.min_step_size}")
        if self.gmres_restart < 1:
            raise ValueError(f"gmres_restart must be >= 1, got {self.gmres_restart}")
        if self.n_timesteps < 1:
            raise ValueError(f"n_timesteps must be >= 1, got {self.n_timesteps}")
        if self.dt <= 0:
            raise ValueError(f"dt must be positive, got {self.dt}")

    def set(self, name: str, value: Any) -> None:
        """Set an option by name with validation.

        Args:
            name: Option name (e.g., 'nr_step_size')
            value: Option value (strings are converted to the field's type)

        Raises:
            ValueError: If option name is unknown or value is invalid
        """
        field_type = None
        for f in fields(self):
            if f.name == name:
                field_type = f.type
                break
        if field_type is None:
            raise ValueError(f"Unknown option: {name}")

        if field_type == float:
            value = float(value)
        elif field_type == int:
            value = int(value)
        elif field_type == bool:
            value = _parse_bool(value)
        elif field_type == SolverMode:
            if isinstance(value, str):
                value = SolverMode.from_string(value)
        elif field_type == LinearSolver:
            if isinstance(value, str):
                value = LinearSolver.from_string(value)

        setattr(self, name, value)
        self._validate_all()

    def get(self, name: str, default: Any = None) -> Any:
        """Get an option value by name, or ``default`` if unknown."""
        value = getattr(self, name, default)
        return default if value is None else value

    def update_from_dict(self, opts: Dict[str, Any]) -> None:
        """Update options from a plain dict.

        Unknown keys are ignored; values that fail to parse or validate are
        logged and skipped.
        """
        known = {f.name for f in fields(self)}
        for opt_name, opt_value in opts.items():
            if opt_name not in known:
                continue
            try:
                self.set(opt_name, opt_value)
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to parse option {opt_name}={opt_value}: {e}")

    @classmethod
    def from_dict(cls, opts: Dict[str, Any]) -> "SolverConfig":
        config = cls()
        config.update_from_dict(opts)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to a dictionary, enums as their string values."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            result[f.name] = value
        return result

    def copy(self) -> "SolverConfig":
        return SolverConfig(**{f.name: getattr(self, f.name) for f in fields(self)})
