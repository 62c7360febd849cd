"""Reports from the nonlinear solver loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class StepReport:
    """Outcome of one nonlinear iteration, see
    :meth:`~resflow.models.physical_model.PhysicalModel.step_function`."""

    iteration: int = 0
    """Nonlinear iteration number, starting at 1."""
    converged: bool = False
    """Whether the iterate was accepted as converged."""
    failure: bool = False
    """Whether the iteration failed, in which case the state was not updated."""
    failure_message: str = ""
    updated: bool = False
    """Whether the state was updated with a Newton increment."""
    residuals: np.ndarray = field(default_factory=lambda: np.zeros(0))
    """Convergence measure of each equation (or of each criterion)."""
    residuals_converged: np.ndarray = field(default_factory=lambda: np.zeros(0, bool))
    residual_names: list[str] = field(default_factory=list)
    linear_solver: dict[str, Any] = field(default_factory=dict)
    """Report of the linear solver."""
    update_state: dict[str, Any] = field(default_factory=dict)
    """Report of the state update."""
    stabilize: dict[str, Any] = field(default_factory=dict)
    """Relaxation and line search information."""


@dataclass
class NonlinearReport:
    """Outcome of a nonlinear solve of one time step."""

    converged: bool = False
    failure: bool = False
    failure_message: str = ""
    step_reports: list[StepReport] = field(default_factory=list)
    """Report of each nonlinear iteration."""
    dt: Optional[float] = None

    @property
    def num_iterations(self) -> int:
        """Number of iterations that updated the state."""
        return sum(r.updated for r in self.step_reports)

    @property
    def residual_history(self) -> np.ndarray:
        """Residual measures per iteration, ``shape=(num_steps, num_residuals)``."""
        if len(self.step_reports) == 0:
            return np.zeros((0, 0))
        return np.vstack([r.residuals for r in self.step_reports])

    def log_summary(self) -> None:
        if self.converged:
            logger.info(
                f"Nonlinear solver converged in {self.num_iterations} iterations"
            )
        else:
            logger.info(f"Nonlinear solver failed: {self.failure_message}")
