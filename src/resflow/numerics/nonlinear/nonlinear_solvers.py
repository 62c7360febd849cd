"""Newton solver for one time step.

The solver owns the iteration loop and the strategies that make Newton's method
robust: relaxation of increments when the residuals oscillate, and an Armijo line
search. Assembly, convergence checks and state updates are delegated to the model
through :meth:`~resflow.models.physical_model.PhysicalModel.step_function`.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from resflow.numerics.linear_solvers import LinearSolver
from resflow.numerics.nonlinear.solver_statistics import NonlinearReport

logger = logging.getLogger(__name__)


class NewtonSolver:
    """Newton solver with relaxation and line search."""

    def __init__(
        self,
        params: Optional[dict] = None,
        linear_solver: Optional[LinearSolver] = None,
    ) -> None:
        """Define the nonlinear solver.

        Parameters:
            params (dict): Solver parameters, merged into the defaults:

                - ``max_iterations`` (25) and ``min_iterations`` (1).
                - ``use_line_search`` (False): line search once convergence issues
                  are detected. ``always_use_line_search`` (False): line search in
                  every iteration. ``line_search_max_iterations`` (10),
                  ``line_search_weight`` (0.5, reduction of the step per line search
                  iteration), ``line_search_incline`` (1e-4, sufficient decrease
                  parameter).
                - ``use_relaxation`` (False), ``relaxation_type`` ("dampen" or
                  "sor"), ``relaxation_increment`` (0.1), ``min_relaxation`` (0.5),
                  ``max_relaxation`` (1.0).
                - ``oscillation_tolerance`` (1e-2): relative change of a residual
                  needed to count a reversal as an oscillation.
                - ``verbose`` (False): log convergence tables at INFO level.

            linear_solver: Solver of the Newton systems. Defaults to a direct solver.

        """
        default_params = {
            "max_iterations": 25,
            "min_iterations": 1,
            "use_line_search": False,
            "always_use_line_search": False,
            "line_search_max_iterations": 10,
            "line_search_weight": 0.5,
            "line_search_incline": 1e-4,
            "use_relaxation": False,
            "relaxation_type": "dampen",
            "relaxation_increment": 0.1,
            "min_relaxation": 0.5,
            "max_relaxation": 1.0,
            "oscillation_tolerance": 1e-2,
            "verbose": False,
        }
        if params is not None:
            default_params.update(params)
        self.params = default_params

        if self.params["relaxation_type"] not in ("dampen", "sor"):
            raise ValueError(f"Unknown relaxation {self.params['relaxation_type']}")

        if linear_solver is None:
            linear_solver = LinearSolver()
        self.linear_solver = linear_solver

        self.relaxation: float = 1.0
        """Current relaxation factor."""
        self.convergence_issues: bool = False
        """Set when the residuals oscillate."""
        self._previous_increment: Optional[list] = None

    def solve_timestep(self, model, state0, dt: float, forces=None, state=None):
        """Solve the nonlinear equations of one time step.

        Parameters:
            model: The model, see :class:`~resflow.models.physical_model.PhysicalModel`.
            state0: State at the start of the time step. Not modified.
            dt: Time step.
            forces: Driving forces, passed on to the model.
            state: Initial guess. Defaults to a copy of ``state0``.

        Returns:
            Tuple of the final iterate and a
            :class:`~resflow.numerics.nonlinear.solver_statistics.NonlinearReport`.
            If the solver did not converge, the report is marked as failed and the
            last iterate is returned.

        """
        if state is None:
            state = state0.copy()

        state = model.prepare_timestep(state, state0, dt, forces)

        self.relaxation = 1.0
        self.convergence_issues = False
        self._previous_increment = None

        max_iterations = self.params["max_iterations"]
        report = NonlinearReport(dt=dt)
        for i in range(1, max_iterations + 2):
            state, step_report = model.step_function(
                state, state0, dt, forces, self.linear_solver, self, i
            )
            report.step_reports.append(step_report)

            if step_report.failure:
                report.failure = True
                report.failure_message = step_report.failure_message
                break
            if step_report.converged:
                report.converged = True
                break

            self._check_oscillations(report)

        if report.converged:
            state, _ = model.update_after_convergence(state0, state, dt, forces)
        elif not report.failure:
            report.failure = True
            report.failure_message = f"Did not converge in {max_iterations} iterations"

        report.log_summary()
        return state, report

    def stabilize_newton_increment(self, model, problem, dx: list):
        """Apply the current relaxation to the increments.

        Returns:
            Tuple of the relaxed increments and a report.

        """
        w = self.relaxation
        if w != 1.0:
            if self.params["relaxation_type"] == "dampen":
                dx = [w * d for d in dx]
            elif self._previous_increment is not None:
                dx = [
                    w * d + (1 - w) * d_prev
                    for d, d_prev in zip(dx, self._previous_increment)
                ]
        self._previous_increment = [np.array(d, copy=True) for d in dx]
        return dx, {"relaxation": w}

    def apply_line_search(self, model, state0, state, problem, dx: list, forces):
        """Armijo line search along the Newton direction.

        The objective is half the squared norm of the residual. The step length is
        reduced by ``line_search_weight`` until the sufficient decrease condition
        holds or the iterations are exhausted.

        Returns:
            Tuple of the updated state, the update report of the accepted step and a
            line search report.

        """
        rho = float(self.params["line_search_weight"])
        kappa = float(self.params["line_search_incline"])
        max_iterations = int(self.params["line_search_max_iterations"])

        r0 = problem.residual()
        pot_0 = float(np.dot(r0, r0) / 2)

        weight = 1.0
        success = False
        for i in range(max_iterations):
            new_state, update_report = model.update_state(
                state, problem, [weight * d for d in dx], forces
            )
            new_problem, _ = model.get_equations(
                state0,
                new_state,
                problem.dt,
                forces,
                res_only=True,
                iteration=problem.iteration,
            )
            r = new_problem.residual()
            pot_i = float(np.dot(r, r) / 2)
            if np.isfinite(pot_i) and pot_i <= (1 - 2 * kappa * weight) * pot_0:
                success = True
                break
            if i < max_iterations - 1:
                weight *= rho

        logger.info(f"Armijo line search determined weight: {weight} ({i + 1})")
        return (
            new_state,
            update_report,
            {"weight": weight, "iterations": i + 1, "success": success},
        )

    def _check_oscillations(self, report: NonlinearReport) -> None:
        """Detect oscillating residuals and adjust the relaxation factor.

        A residual oscillates if it decreased in the previous iteration and increased
        in the last one, or the other way around, by more than
        ``oscillation_tolerance`` relative to its value. Only residuals that have not
        converged are considered.

        """
        steps = report.step_reports
        is_oscillating = False
        if len(steps) >= 3:
            history = [s.residuals for s in steps[-3:]]
            if len({h.size for h in history}) == 1:
                old, prev, now = history
                d1 = now - prev
                d2 = prev - old
                tol = self.params["oscillation_tolerance"]
                large = np.abs(d1) > tol * np.abs(prev)
                active = ~np.asarray(steps[-1].residuals_converged, dtype=bool)
                oscillating = (d1 * d2 < 0) & large & active
                is_oscillating = np.sum(oscillating) >= min(2, max(np.sum(active), 1))

        self.convergence_issues = bool(is_oscillating)
        if not self.params["use_relaxation"]:
            return

        if is_oscillating:
            w = max(
                self.relaxation - self.params["relaxation_increment"],
                self.params["min_relaxation"],
            )
        else:
            w = min(
                self.relaxation + self.params["relaxation_increment"],
                self.params["max_relaxation"],
            )
        if w != self.relaxation:
            logger.info(f"Relaxation factor changed from {self.relaxation} to {w}")
        self.relaxation = w
