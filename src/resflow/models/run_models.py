"""Model construction and time stepping.

:func:`create_model` dispatches on :class:`ModelKind`, :func:`run_schedule` advances
a state through a list of time steps with a nonlinear solver, halving time steps that
fail to converge.

"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Sequence, Union

from resflow.errors import ConvergenceFailure
from resflow.models.black_oil import BlackOilModel
from resflow.models.compositional_flow import CompositionalModel
from resflow.models.driving_forces import DrivingForces
from resflow.models.thermal import WaterThermalModel
from resflow.numerics.nonlinear.nonlinear_solvers import NewtonSolver

logger = logging.getLogger(__name__)


class ModelKind(Enum):
    """Model variants."""

    BLACK_OIL = "black_oil"
    COMPOSITIONAL = "compositional"
    WATER_THERMAL = "water_thermal"

    @staticmethod
    def from_str(kind: str) -> ModelKind:
        try:
            return ModelKind(kind.lower())
        except ValueError as err:
            raise ValueError(f"Unknown model kind {kind}") from err


def create_model(kind: Union[ModelKind, str], operators, fluid, **kwargs):
    """Create a model of the given kind.

    Parameters:
        kind: Model kind, as :class:`ModelKind` or its string value.
        operators: Discrete operators.
        fluid: Fluid object matching the model kind.
        **kwargs: Passed on to the model constructor, e.g. ``params``, ``disgas``,
            ``vapoil``, ``extensions`` and ``rock`` for black-oil models, ``water``
            for compositional models, and ``rock`` for thermal models.

    """
    if isinstance(kind, str):
        kind = ModelKind.from_str(kind)

    if kind == ModelKind.BLACK_OIL:
        return BlackOilModel(operators, fluid, **kwargs)
    elif kind == ModelKind.COMPOSITIONAL:
        return CompositionalModel(operators, fluid, **kwargs)
    elif kind == ModelKind.WATER_THERMAL:
        if "rock" not in kwargs:
            raise ValueError("The thermal model requires rock properties")
        return WaterThermalModel(operators, fluid, **kwargs)
    raise ValueError(f"Unknown model kind {kind}")


def run_schedule(
    model,
    state,
    timesteps: Sequence[float],
    forces: Optional[Union[DrivingForces, Sequence[DrivingForces]]] = None,
    solver: Optional[NewtonSolver] = None,
    max_timestep_cuts: int = 6,
):
    """Simulate a sequence of time steps.

    A time step whose nonlinear solve fails is retried as two steps of half the size,
    recursively, up to ``max_timestep_cuts`` times.

    Parameters:
        model: The model.
        state: Initial state. Not modified.
        timesteps: Time step lengths.
        forces: Driving forces, either one for all steps or one per step.
        solver: Nonlinear solver. Defaults to :class:`NewtonSolver` with default
            parameters.
        max_timestep_cuts: Maximal number of halvings of one time step.

    Raises:
        ConvergenceFailure: If a time step fails after the maximal number of cuts.

    Returns:
        Tuple of the states and the nonlinear reports at the end of each time step
        in ``timesteps``. Reports of substeps are collected in lists.

    """
    if solver is None:
        solver = NewtonSolver()
    if forces is None or isinstance(forces, DrivingForces):
        forces = [forces if forces is not None else DrivingForces()] * len(timesteps)
    if len(forces) != len(timesteps):
        raise ValueError("One set of driving forces per time step is needed")

    states, reports = [], []
    current = state.copy()
    time = 0.0
    for step_no, (dt, f) in enumerate(zip(timesteps, forces)):
        logger.info(f"Time step {step_no + 1} of {len(timesteps)}: dt = {dt:.4g}")
        current, step_reports = _solve_with_cuts(
            model, current, dt, f, solver, max_timestep_cuts
        )
        time += dt
        states.append(current)
        reports.append(step_reports)
    logger.info(f"Schedule completed at time {time:.4g}")
    return states, reports


def _solve_with_cuts(model, state0, dt, forces, solver, cuts_left: int):
    state, report = solver.solve_timestep(model, state0, dt, forces)
    if report.converged:
        return state, [report]

    if cuts_left == 0:
        raise ConvergenceFailure(
            f"Time step {dt:.4g} failed after all time step cuts: "
            f"{report.failure_message}"
        )
    logger.info(f"Time step {dt:.4g} failed, cutting time step in half")
    state_mid, reports_1 = _solve_with_cuts(
        model, state0, dt / 2, forces, solver, cuts_left - 1
    )
    state_end, reports_2 = _solve_with_cuts(
        model, state_mid, dt / 2, forces, solver, cuts_left - 1
    )
    return state_end, [report] + reports_1 + reports_2
