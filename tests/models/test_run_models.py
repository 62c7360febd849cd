"""Tests of model creation and of time stepping with time step cuts."""

from __future__ import annotations

import numpy as np
import pytest

import resflow as rf
from resflow.numerics.nonlinear.solver_statistics import NonlinearReport
from tests.common.reservoir_setups import (
    cartesian_operators,
    injector_producer,
    oil_water_model,
    oil_water_state,
    two_component_fluid,
)


class StepSizeLimitedSolver:
    """Solver stub that fails for time steps above a threshold."""

    def __init__(self, max_dt: float) -> None:
        self.max_dt = max_dt
        self.time_steps: list[float] = []

    def solve_timestep(self, model, state0, dt, forces=None, state=None):
        self.time_steps.append(dt)
        report = NonlinearReport(dt=dt)
        if dt <= self.max_dt:
            report.converged = True
            state = state0.copy()
            state["time"] = state0.get("time", 0.0) + dt
        else:
            report.failure = True
            report.failure_message = "Time step too large"
            state = state0
        return state, report


class TestCreateModel:
    def test_black_oil(self):
        _, rock, op = cartesian_operators(3)
        fluid = rf.BlackOilFluid({"phases": "WO"})
        model = rf.create_model(rf.ModelKind.BLACK_OIL, op, fluid, rock=rock)
        assert isinstance(model, rf.BlackOilModel)

    def test_from_string(self):
        _, rock, op = cartesian_operators(3)
        model = rf.create_model("compositional", op, two_component_fluid())
        assert isinstance(model, rf.CompositionalModel)

        model = rf.create_model("WATER_THERMAL", op, rf.ThermalWaterFluid(), rock=rock)
        assert isinstance(model, rf.WaterThermalModel)

    def test_unknown_kind(self):
        _, _, op = cartesian_operators(3)
        with pytest.raises(ValueError):
            rf.create_model("steam", op, rf.ThermalWaterFluid())
        with pytest.raises(ValueError):
            rf.ModelKind.from_str("steam")

    def test_thermal_requires_rock(self):
        _, _, op = cartesian_operators(3)
        with pytest.raises(ValueError):
            rf.create_model(rf.ModelKind.WATER_THERMAL, op, rf.ThermalWaterFluid())


class TestRunSchedule:
    def test_time_step_cuts(self):
        solver = StepSizeLimitedSolver(max_dt=0.3)
        state0 = rf.State(time=0.0)
        states, reports = rf.run_schedule(None, state0, [1.0, 0.2], solver=solver)

        assert len(states) == 2
        assert states[0]["time"] == pytest.approx(1.0)
        assert states[1]["time"] == pytest.approx(1.2)
        # The first step is halved twice, the second one is accepted directly.
        assert solver.time_steps == [1.0, 0.5, 0.25, 0.25, 0.5, 0.25, 0.25, 0.2]
        assert len(reports[0]) == 7
        assert not reports[0][0].converged
        assert [r.dt for r in reports[0] if r.converged] == [0.25] * 4
        assert len(reports[1]) == 1 and reports[1][0].converged
        # The initial state is left untouched.
        assert state0["time"] == 0.0

    def test_failure_after_all_cuts(self):
        solver = StepSizeLimitedSolver(max_dt=0.1)
        with pytest.raises(rf.ConvergenceFailure):
            rf.run_schedule(
                None, rf.State(time=0.0), [1.0], solver=solver, max_timestep_cuts=2
            )
        assert min(solver.time_steps) == pytest.approx(0.25)

    def test_forces_per_step(self):
        model, g, _ = oil_water_model(nx=3)
        with pytest.raises(ValueError):
            rf.run_schedule(
                model,
                oil_water_state(g.num_cells),
                [1.0, 1.0],
                forces=[rf.DrivingForces()],
            )

    @pytest.mark.parametrize(
        "nx", [5, pytest.param(100, marks=pytest.mark.skipped(reason="slow"))]
    )
    def test_water_injection(self, nx):
        model, g, _ = oil_water_model(nx=nx)
        nc = g.num_cells
        forces = rf.DrivingForces(wells=injector_producer(nc))
        state0 = oil_water_state(nc)
        states, reports = rf.run_schedule(
            model, state0, [0.1 * rf.DAY, 0.2 * rf.DAY], forces
        )

        assert len(states) == 2
        assert all(r[-1].converged for r in reports)
        sw = [s["s"][0, 0] for s in states]
        assert state0["s"][0, 0] < sw[0] < sw[1]
        assert np.allclose(states[-1]["s"].sum(axis=1), 1.0)

    def test_newton_failure_raises(self):
        model, g, _ = oil_water_model(nx=3)
        forces = rf.DrivingForces(wells=injector_producer(g.num_cells))
        solver = rf.NewtonSolver({"max_iterations": 0})
        with pytest.raises(rf.ConvergenceFailure):
            rf.run_schedule(
                model,
                oil_water_state(g.num_cells),
                [rf.DAY],
                forces,
                solver=solver,
                max_timestep_cuts=1,
            )
