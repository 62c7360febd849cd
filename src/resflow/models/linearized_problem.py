"""A linearized system of equations at one nonlinear iteration."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import scipy.sparse as sps

import resflow.ad.functions as af
from resflow.ad.forward_mode import AdArray
from resflow.errors import AssemblyError

logger = logging.getLogger(__name__)


class LinearizedProblem:
    """Residual equations and their Jacobian with respect to the primary variables.

    The problem is created by a model for every nonlinear iteration, and consumed by
    the convergence check and the linear solver.

    Attributes:
        equations: List of residual equations. AdArrays, or plain arrays if the
            problem was assembled in residual-only mode.
        types: Type of each equation: ``"cell"``, ``"perf"`` or ``"well"``.
        equation_names: Name of each equation.
        primary_variables: Names of the primary variables, in the order of the
            Jacobian blocks.
        primary_variable_sizes: Number of unknowns of each primary variable.
        state: The state the equations were evaluated at.
        dt: Time step.
        iteration: Nonlinear iteration number.
        driving_forces: Driving forces of the time step.

    """

    def __init__(
        self,
        equations: Sequence,
        types: Sequence[str],
        equation_names: Sequence[str],
        primary_variables: Sequence[str],
        state,
        dt: float,
        primary_variable_sizes: Optional[Sequence[int]] = None,
        iteration: int = -1,
        driving_forces=None,
    ) -> None:
        if not (len(equations) == len(types) == len(equation_names)):
            raise AssemblyError("Equations, types and names must have equal length")

        self.equations = list(equations)
        self.types = list(types)
        self.equation_names = list(equation_names)
        self.primary_variables = list(primary_variables)
        self.state = state
        self.dt = dt
        self.iteration = iteration
        self.driving_forces = driving_forces

        if primary_variable_sizes is None:
            ad_eqs = [eq for eq in self.equations if isinstance(eq, AdArray)]
            if len(ad_eqs) == 0:
                raise AssemblyError(
                    "Variable sizes must be given for residual-only problems"
                )
            primary_variable_sizes = ad_eqs[0].block_sizes
        self.primary_variable_sizes = [int(n) for n in primary_variable_sizes]
        if len(self.primary_variable_sizes) != len(self.primary_variables):
            raise AssemblyError("One size per primary variable is needed")

    def __repr__(self) -> str:
        s = (
            f"Linearized problem with {self.num_equations} equations and "
            f"{self.num_variables} unknowns.\n"
        )
        s += f"Equations: {self.equation_names}\n"
        s += f"Primary variables: {self.primary_variables}"
        return s

    @property
    def is_residual_only(self) -> bool:
        return not any(isinstance(eq, AdArray) for eq in self.equations)

    @property
    def num_equations(self) -> int:
        """Total number of scalar equations."""
        return int(sum(np.size(af.value(eq)) for eq in self.equations))

    @property
    def num_variables(self) -> int:
        """Total number of scalar unknowns."""
        return int(sum(self.primary_variable_sizes))

    def index_of_equation(self, name: str) -> int:
        if name not in self.equation_names:
            raise AssemblyError(f"Unknown equation {name}")
        return self.equation_names.index(name)

    def index_of_primary_variable(self, name: str) -> int:
        if name not in self.primary_variables:
            raise AssemblyError(f"Unknown primary variable {name}")
        return self.primary_variables.index(name)

    def norm(self, ord=np.inf) -> np.ndarray:
        """Norm of each equation."""
        norms = []
        for eq in self.equations:
            val = af.value(eq)
            norms.append(0.0 if val.size == 0 else np.linalg.norm(val, ord))
        return np.array(norms)

    def residual(self) -> np.ndarray:
        """All residual equations stacked into one vector."""
        if len(self.equations) == 0:
            return np.zeros(0)
        return np.concatenate([np.atleast_1d(af.value(eq)) for eq in self.equations])

    def jacobian(self) -> sps.csr_matrix:
        """Jacobian of the stacked residual. Rows follow the equations, columns the
        primary variables."""
        if self.is_residual_only:
            raise AssemblyError("The Jacobian is not available in residual-only mode")
        rows = []
        for eq in self.equations:
            if not isinstance(eq, AdArray):
                raise AssemblyError("Mixed residual-only and linearized equations")
            if eq.block_sizes != self.primary_variable_sizes:
                raise AssemblyError("Equation blocks do not match primary variables")
            rows.append(eq.full_jac())
        return sps.vstack(rows, format="csr")

    def linear_system(self) -> tuple[sps.csr_matrix, np.ndarray]:
        """The Newton system ``A dx = b`` with ``b = -r``."""
        A = self.jacobian()
        b = -self.residual()
        if A.shape[0] != A.shape[1]:
            raise AssemblyError(
                f"Non-square system with {A.shape[0]} equations and {A.shape[1]} "
                "unknowns"
            )
        return A, b

    def split_increment(self, dx: np.ndarray) -> list[np.ndarray]:
        """Split a stacked increment into one array per primary variable."""
        dx = np.asarray(dx)
        if dx.size != self.num_variables:
            raise AssemblyError(
                f"Increment of size {dx.size} for {self.num_variables} unknowns"
            )
        offsets = np.cumsum([0] + self.primary_variable_sizes)
        return [dx[offsets[i] : offsets[i + 1]] for i in range(len(offsets) - 1)]
