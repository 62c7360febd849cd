"""Base class of all models: named access to state fields, increments and the
nonlinear step function.

A model knows how to assemble its residual equations for a state, how to check a
linearized problem for convergence and how to update a state with Newton increments.
The nonlinear solver, see :class:`~resflow.numerics.nonlinear.NewtonSolver`, drives
the model through :meth:`PhysicalModel.step_function`.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from resflow.errors import AssemblyError, LinearSolverFailure
from resflow.models.state import State
from resflow.numerics.nonlinear.convergence_check import (
    InfinityNormCriterion,
    NanConvergenceCriterion,
)
from resflow.numerics.nonlinear.solver_statistics import StepReport

logger = logging.getLogger(__name__)


class PhysicalModel:
    """Model without physics.

    Subclasses implement :meth:`get_equations` and :meth:`get_variable_field`, and
    typically refine :meth:`update_state` and :meth:`check_convergence`.

    Attributes:
        params: Model parameters. ``nonlinear_tolerance`` (1e-6) is the tolerance of
            the default convergence check, ``verbose`` (False) turns on convergence
            tables at INFO level.
        step_function_is_linear: If True, one update of the step function solves
            the problem.

    """

    def __init__(self, params: Optional[dict] = None) -> None:
        default_params = {
            "nonlinear_tolerance": 1e-6,
            "verbose": False,
        }
        if params is not None:
            default_params.update(params)
        self.params = default_params
        self.step_function_is_linear: bool = False

    # ---- Equations -------------------------------------------------------------------

    def get_equations(
        self, state0, state, dt, forces=None, res_only=False, iteration=-1
    ):
        """Assemble the residual equations.

        Parameters:
            state0: State at the start of the time step. Not modified.
            state: Current iterate.
            dt: Time step.
            forces: :class:`~resflow.models.driving_forces.DrivingForces`.
            res_only: If True, only residual values are computed.
            iteration: Nonlinear iteration number.

        Returns:
            Tuple of the :class:`~resflow.models.linearized_problem.LinearizedProblem`
            and the state, possibly with diagnostic fields added.

        """
        raise NotImplementedError("Models must implement get_equations")

    def check_convergence(self, problem):
        """Maximum norm of each equation against ``nonlinear_tolerance``.

        Returns:
            Tuple of convergence flags, measured values and names.

        """
        criterion = InfinityNormCriterion(self.params["nonlinear_tolerance"])
        return criterion.check(problem, self)

    # ---- Named access to state fields ------------------------------------------------

    def get_variable_field(self, name: str) -> tuple[str, Optional[int]]:
        """Map a variable name to a state field and a column index.

        The base model knows no variables.

        Raises:
            AssemblyError: If the name is unknown to the model.

        Returns:
            Tuple of field name and column index (None for the whole field).

        """
        raise AssemblyError(f"State variable {name} is not known to this model")

    def get_prop(self, state, name: str) -> np.ndarray:
        fn, index = self.get_variable_field(name)
        if fn not in state:
            raise AssemblyError(f"Field {fn} is missing from the state")
        if index is None:
            return state[fn]
        return state[fn][:, index]

    def get_props(self, state, *names: str) -> list[np.ndarray]:
        return [self.get_prop(state, name) for name in names]

    def set_prop(self, state, name: str, value):
        """Set a named property. Arrays of the state are replaced, not written into,
        so that copies of states never share data."""
        fn, index = self.get_variable_field(name)
        if index is None:
            state[fn] = np.array(value)
        else:
            if fn not in state:
                raise AssemblyError(f"Field {fn} is missing from the state")
            field = np.array(state[fn], dtype=float)
            field[:, index] = value
            state[fn] = field
        return state

    def increment_prop(self, state, name: str, increment):
        return self.set_prop(state, name, self.get_prop(state, name) + increment)

    # ---- Increments ------------------------------------------------------------------

    def get_increment(self, dx, problem, name: str):
        """Increment of a named primary variable, or zero if the problem does not
        have the variable."""
        if name in problem.primary_variables:
            return dx[problem.index_of_primary_variable(name)]
        return 0.0

    def update_state_from_increment(
        self,
        state,
        dx,
        problem,
        name: str,
        relative_max: Optional[float] = None,
        absolute_max: Optional[float] = None,
    ):
        """Update a named property with an optionally limited increment.

        Parameters:
            state: State to update.
            dx: List of increments matching the primary variables of ``problem``,
                or the increment itself.
            problem: The linearized problem the increments were computed from.
            name: Property to update.
            relative_max: Maximal relative change.
            absolute_max: Maximal absolute change.

        Returns:
            Tuple of the state, the new and the previous value.

        """
        if isinstance(dx, (list, tuple)):
            dv = self.get_increment(dx, problem, name)
        else:
            dv = dx

        val0 = self.get_prop(state, name)
        change = 1.0
        if relative_max is not None:
            _, change_rel = self.limit_update_relative(dv, val0, relative_max)
            change = np.minimum(change, change_rel)
        if absolute_max is not None:
            _, change_abs = self.limit_update_absolute(dv, absolute_max)
            change = np.minimum(change, change_abs)

        val = val0 + dv * change
        self.set_prop(state, name, val)
        return state, val, val0

    @staticmethod
    def limit_update_relative(dv, val, max_relative_change):
        """Scale an update so that the relative change is bounded.

        Values that are zero are not limited if their increment is zero, and limited
        to no change otherwise.

        Returns:
            Tuple of the scaled increment and the scaling factor.

        """
        dv = np.asarray(dv, dtype=float)
        val = np.asarray(val, dtype=float)
        if np.isinf(max_relative_change):
            return dv, np.ones(np.broadcast(dv, val).shape)
        with np.errstate(divide="ignore", invalid="ignore"):
            rel = np.abs(dv / val)
        rel = np.where(dv == 0, 0.0, rel)
        rel = np.where(np.isnan(rel), np.inf, rel)
        with np.errstate(divide="ignore"):
            change = np.minimum(max_relative_change / rel, 1.0)
        return dv * change, change

    @staticmethod
    def limit_update_absolute(dv, max_absolute_change):
        dv = np.asarray(dv, dtype=float)
        if np.isinf(max_absolute_change):
            return dv, np.ones(dv.shape)
        with np.errstate(divide="ignore"):
            change = np.minimum(max_absolute_change / np.abs(dv), 1.0)
        return dv * change, change

    def cap_property(self, state, name: str, min_value, max_value=None):
        """Clamp a property to ``[min_value, max_value]``."""
        v = np.maximum(min_value, self.get_prop(state, name))
        if max_value is not None:
            v = np.minimum(v, max_value)
        return self.set_prop(state, name, v)

    # ---- State handling --------------------------------------------------------------

    def update_state(self, state, problem, dx, forces=None):
        """Add the increments of all primary variables the model knows.

        Returns:
            Tuple of the updated state (a copy) and a report.

        """
        state = state.copy()
        for name, dv in zip(problem.primary_variables, dx):
            self.increment_prop(state, name, dv)
        return state, {}

    def update_after_convergence(self, state0, state, dt, forces=None):
        """Hook for quantities that are updated once per time step, such as
        hysteresis variables."""
        return state, {}

    def prepare_timestep(self, state, state0, dt, forces=None):
        """Hook called before the nonlinear loop of a time step."""
        return self.validate_state(state)

    def validate_state(self, state):
        if not isinstance(state, State):
            state = State(state)
        return state

    # ---- Nonlinear step --------------------------------------------------------------

    def step_function(
        self,
        state,
        state0,
        dt,
        forces,
        linear_solver,
        nonlinear_solver,
        iteration: int,
    ):
        """Perform one nonlinear iteration.

        The equations are linearized and checked for convergence. Unless converged
        (after at least ``min_iterations`` iterations) or beyond the iteration budget
        of the nonlinear solver, the Newton system is solved, the increment is
        stabilized and possibly line searched, and the state is updated.

        Parameters:
            state: Current iterate.
            state0: State at the start of the time step.
            dt: Time step.
            forces: Driving forces.
            linear_solver: Solver with a ``solve_linear_problem`` method.
            nonlinear_solver: The :class:`~resflow.numerics.nonlinear.NewtonSolver`
                calling this method.
            iteration: Iteration number, starting at 1.

        Returns:
            Tuple of the new iterate and a
            :class:`~resflow.numerics.nonlinear.solver_statistics.StepReport`.

        """
        only_check = iteration > nonlinear_solver.params["max_iterations"]
        problem, state = self.get_equations(
            state0, state, dt, forces, res_only=only_check, iteration=iteration
        )
        problem.iteration = iteration
        problem.driving_forces = forces

        convergence, values, names = self.check_convergence(problem)
        convergence = np.asarray(convergence, dtype=bool)
        done_min_iterations = iteration > nonlinear_solver.params["min_iterations"]

        report = StepReport(
            iteration=iteration,
            residuals=np.asarray(values, dtype=float),
            residuals_converged=convergence,
            residual_names=list(names),
        )

        if not (np.all(convergence) and done_min_iterations) and not only_check:
            residual = problem.residual()
            if not np.all(np.isfinite(residual)):
                logger.info(f"Iteration {iteration}: non-finite residual")
                report.failure = True
                report.failure_message = "Residual has non-finite values"
                return state, report
            try:
                dx, report.linear_solver = linear_solver.solve_linear_problem(problem)
                status = NanConvergenceCriterion().check(
                    np.concatenate(dx) if len(dx) > 0 else np.zeros(0), residual
                )
                if status.is_diverged():
                    raise LinearSolverFailure(
                        "Linear solver produced non-finite values"
                    )
            except LinearSolverFailure as err:
                logger.info(f"Iteration {iteration}: {err}")
                report.failure = True
                report.failure_message = str(err)
                return state, report

            dx, report.stabilize = nonlinear_solver.stabilize_newton_increment(
                self, problem, dx
            )
            use_line_search = nonlinear_solver.params["always_use_line_search"] or (
                nonlinear_solver.params["use_line_search"]
                and nonlinear_solver.convergence_issues
            )
            if use_line_search:
                state, report.update_state, line_search = (
                    nonlinear_solver.apply_line_search(
                        self, state0, state, problem, dx, forces
                    )
                )
                report.stabilize["line_search"] = line_search
            else:
                state, report.update_state = self.update_state(
                    state, problem, dx, forces
                )
            report.updated = True

        report.converged = bool(
            (np.all(convergence) and done_min_iterations)
            or self.step_function_is_linear
        )

        if self.step_function_is_linear:
            # Refresh derived quantities stored on the state with the updated values.
            _, state = self.get_equations(
                state0, state, dt, forces, res_only=True, iteration=iteration + 1
            )

        verbose = self.params["verbose"] or nonlinear_solver.params["verbose"]
        level = logging.INFO if verbose else logging.DEBUG
        self.print_convergence_report(names, values, convergence, iteration, level)
        return state, report

    @staticmethod
    def print_convergence_report(
        names, values, convergence, iteration, level: int = logging.INFO
    ) -> None:
        if not logger.isEnabledFor(level):
            return
        header = " | ".join(f"{name:>16}" for name in names)
        row = " | ".join(
            f"{v:>14.3e}{' *' if c else '  '}" for v, c in zip(values, convergence)
        )
        logger.log(level, f"{'Iteration':>9} | {header}")
        logger.log(level, f"{iteration:>9} | {row}")
