"""
Module for the linear solver used inside the Newton loop. The solver takes a
linearized problem, solves the Newton system ``A dx = -r`` and splits the solution
into one increment per primary variable.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

from resflow.errors import LinearSolverFailure

logger = logging.getLogger(__name__)


class LinearSolver:
    """Sparse linear solver for linearized problems."""

    def __init__(self, params: Optional[dict] = None) -> None:
        """Define linear solver.

        Parameters:
            params (dict): Parameters for the linear solver. Recognized keys are
                ``method`` ("direct", "gmres" or "bicgstab"), ``tolerance`` (relative
                residual reduction of the iterative methods, 1e-8) and
                ``max_iterations`` (iterations of the iterative methods, 200).

        """
        default_params = {
            "method": "direct",
            "tolerance": 1e-8,
            "max_iterations": 200,
        }
        if params is not None:
            default_params.update(params)
        self.params = default_params

        if self.params["method"] not in ("direct", "gmres", "bicgstab"):
            raise ValueError(f"Unknown linear solver {self.params['method']}")

    def solve_linear_problem(self, problem) -> tuple[list[np.ndarray], dict]:
        """Solve the Newton system of a linearized problem.

        Parameters:
            problem: :class:`~resflow.models.linearized_problem.LinearizedProblem`.

        Raises:
            LinearSolverFailure: If the solver fails or returns non-finite values.

        Returns:
            Tuple of the increments, one array per primary variable, and a report.

        """
        A, b = problem.linear_system()
        t_0 = time.time()
        dx, report = self.solve_linear_system(A, b)
        report["solver_time"] = time.time() - t_0
        logger.debug(
            f"Solved linear system of size {b.size} in {report['solver_time']:.2e} "
            "seconds."
        )
        return problem.split_increment(dx), report

    def solve_linear_system(self, A: sps.spmatrix, b: np.ndarray):
        method = self.params["method"]
        report: dict = {"method": method, "size": b.size}
        if b.size == 0:
            return np.zeros(0), report

        if method == "direct":
            try:
                x = np.atleast_1d(spla.spsolve(sps.csc_matrix(A), b))
            except RuntimeError as err:
                raise LinearSolverFailure(f"Direct solver failed: {err}") from err
            report["iterations"] = 1
        else:
            x = self._solve_iterative(A, b, report)

        if not np.all(np.isfinite(x)):
            raise LinearSolverFailure("Linear solver returned non-finite values")
        return x, report

    def _solve_iterative(self, A, b, report: dict) -> np.ndarray:
        A = sps.csc_matrix(A)
        try:
            ilu = spla.spilu(A)
        except RuntimeError as err:
            raise LinearSolverFailure(f"Incomplete LU failed: {err}") from err
        M = spla.LinearOperator(A.shape, ilu.solve)

        num_iterations = 0

        def count(_) -> None:
            nonlocal num_iterations
            num_iterations += 1

        kwargs = {
            "rtol": self.params["tolerance"],
            "maxiter": self.params["max_iterations"],
            "M": M,
            "callback": count,
        }
        if self.params["method"] == "gmres":
            x, info = spla.gmres(A, b, callback_type="pr_norm", **kwargs)
        else:
            x, info = spla.bicgstab(A, b, **kwargs)

        report["iterations"] = num_iterations
        if info != 0:
            raise LinearSolverFailure(
                f"{self.params['method']} did not converge (info = {info})"
            )
        return x
