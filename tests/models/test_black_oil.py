"""Tests of the black-oil model: variable sets, conservation, the phase status
handling with dissolved gas, and the Jacobian against finite differences."""

from __future__ import annotations

import numpy as np
import pytest

import resflow as rf
from tests.common.reservoir_setups import (
    cartesian_operators,
    injector_producer,
    oil_water_model,
    oil_water_state,
    three_phase_model,
)


def _three_phase_state(nc: int, model, sw=0.3, sg=0.2, dp_cell=1 * rf.BAR):
    p = 100 * rf.BAR + dp_cell * np.arange(nc)
    return rf.State(
        pressure=p,
        s=np.tile([sw, 1 - sw - sg, sg], (nc, 1)),
        rs=model.fluid.rsSat(p),
        rv=np.zeros(nc),
        status=np.full(nc, 3),
    )


class TestVariablesAndEquations:
    def test_oil_water_with_wells(self):
        model, g, _ = oil_water_model(nx=5)
        state = oil_water_state(g.num_cells)
        forces = rf.DrivingForces(wells=injector_producer(g.num_cells))
        problem, _ = model.get_equations(state.copy(), state, rf.DAY, forces)

        assert problem.primary_variables == ["pressure", "sw", "qWs", "qOs", "bhp"]
        assert problem.equation_names == [
            "water",
            "oil",
            "waterWells",
            "oilWells",
            "closureWells",
        ]
        assert problem.types == ["cell", "cell", "perf", "perf", "well"]
        A, b = problem.linear_system()
        assert A.shape == (16, 16)
        assert b.size == 16

    @pytest.mark.parametrize("disgas, hydrocarbon", [(True, "x"), (False, "sg")])
    def test_three_phase_variables(self, disgas, hydrocarbon):
        model, _, _ = three_phase_model(nx=4, disgas=disgas)
        assert model.get_primary_variable_names() == ["pressure", "sw", hydrocarbon]

    def test_dissolution_needs_oil_and_gas(self):
        _, _, op = cartesian_operators(3)
        fluid = rf.BlackOilFluid({"phases": "WO"})
        with pytest.raises(ValueError):
            rf.BlackOilModel(op, fluid, disgas=True)

    def test_named_access(self):
        model, g, _ = three_phase_model(nx=3)
        state = _three_phase_state(g.num_cells, model)
        assert np.allclose(model.get_prop(state, "sg"), 0.2)
        assert np.allclose(model.get_prop(state, "rs"), state["rs"])
        assert np.all(model.get_prop(state, "status") == 3)


class TestResidualOnly:
    def test_matches_linearized_residual(self):
        model, g, _ = three_phase_model(nx=4)
        state0 = _three_phase_state(g.num_cells, model)
        state = state0.copy()
        state["pressure"] = state["pressure"] + 0.5 * rf.BAR

        full, _ = model.get_equations(state0, state.copy(), rf.DAY)
        first, _ = model.get_equations(state0, state.copy(), rf.DAY, res_only=True)
        second, _ = model.get_equations(state0, state.copy(), rf.DAY, res_only=True)

        assert first.is_residual_only
        assert np.allclose(first.residual(), full.residual(), rtol=1e-10, atol=1e-14)
        assert np.array_equal(first.residual(), second.residual())

    def test_status_is_not_changed_by_assembly(self):
        model, g, _ = three_phase_model(nx=3)
        state = _three_phase_state(g.num_cells, model)
        state["status"] = np.array([1, 3, 3])
        state["s"][0] = [0.3, 0.7, 0.0]
        for _ in range(2):
            _, state = model.get_equations(state.copy(), state, rf.DAY, res_only=True)
        assert np.array_equal(state["status"], [1, 3, 3])


class TestTimestep:
    def test_saturations_sum_to_one_after_step(self):
        model, g, _ = oil_water_model(nx=5)
        state0 = oil_water_state(g.num_cells)
        forces = rf.DrivingForces(wells=injector_producer(g.num_cells))
        state, report = rf.NewtonSolver().solve_timestep(
            model, state0, 0.1 * rf.DAY, forces
        )

        assert report.converged
        assert np.allclose(state["s"].sum(axis=1), 1.0)
        assert np.all(state["s"] >= 0) and np.all(state["s"] <= 1)
        # The injected water raises the saturation next to the injector.
        assert state["s"][0, 0] > 0.2

    def test_bhp_controlled_well_keeps_target(self):
        model, g, _ = oil_water_model(nx=5)
        state0 = oil_water_state(g.num_cells)
        forces = rf.DrivingForces(wells=injector_producer(g.num_cells))
        state, report = rf.NewtonSolver().solve_timestep(
            model, state0, 0.1 * rf.DAY, forces
        )
        assert report.converged
        producer = state["well_solutions"][1]
        assert producer.bhp == 90 * rf.BAR
        assert producer.qOs < 0
        assert state0.get("well_solutions") is None

    def test_well_rates_balance_accumulation(self):
        params = {"tolerance_wells": 1e-12, "tolerance_mb": 1e-10}
        model, g, _ = oil_water_model(nx=5, params=params)
        state0 = oil_water_state(g.num_cells)
        forces = rf.DrivingForces(wells=injector_producer(g.num_cells))
        dt = 0.1 * rf.DAY
        state, report = rf.NewtonSolver().solve_timestep(model, state0, dt, forces)
        assert report.converged

        pv = model.operators.pv
        fluid = model.fluid

        def in_place(st):
            p, s = st["pressure"], st["s"]
            water = np.sum(pv * fluid.bW(p) * s[:, 0])
            oil = np.sum(pv * fluid.bO(p) * s[:, 1])
            return water, oil

        water0, oil0 = in_place(state0)
        water, oil = in_place(state)
        ws = state["well_solutions"]
        net_water = dt * sum(w.qWs for w in ws)
        net_oil = dt * sum(w.qOs for w in ws)
        assert np.isclose(water - water0, net_water, rtol=1e-3)
        assert np.isclose(oil - oil0, net_oil, rtol=1e-3)

    def test_gas_injection_into_gas_free_oil(self):
        """A rate controlled injector starts at the cell pressure and must still
        inject into cells without free gas."""
        model, g, _ = three_phase_model(nx=6, disgas=False, vapoil=True)
        nc = g.num_cells
        state0 = rf.State(
            pressure=np.full(nc, 100 * rf.BAR), s=np.tile([0.2, 0.8, 0.0], (nc, 1))
        )
        wells = injector_producer(nc, compi=(0.0, 0.0, 1.0), rate=3e-4)
        states, reports = rf.run_schedule(
            model,
            state0,
            [0.2 * rf.DAY] * 3,
            rf.DrivingForces(wells=wells),
            max_timestep_cuts=0,
        )

        assert all(len(r) == 1 and r[0].converged for r in reports)
        state = states[-1]
        assert state["s"][0, 2] > 0
        assert state["well_solutions"][0].qGs == pytest.approx(3e-4)
        assert np.allclose(state["s"].sum(axis=1), 1.0)

    def test_closed_column_under_gravity(self):
        _, _, op = cartesian_operators([1, 1, 5], physdims=[1, 1, 50], gravity=True)
        fluid = rf.BlackOilFluid({"phases": "WO"})
        model = rf.BlackOilModel(op, fluid)
        # Water on top of oil.
        sw = np.array([0.8, 0.8, 0.2, 0.2, 0.2])
        state0 = rf.State(
            pressure=np.full(5, 100 * rf.BAR), s=np.column_stack((sw, 1 - sw))
        )
        state, report = rf.NewtonSolver().solve_timestep(model, state0, rf.DAY)
        assert report.converged

        pv = op.pv

        def surface_volumes(st):
            p, s = st["pressure"], st["s"]
            return (
                np.sum(pv * fluid.bW(p) * s[:, 0]),
                np.sum(pv * fluid.bO(p) * s[:, 1]),
            )

        assert np.allclose(surface_volumes(state), surface_volumes(state0), rtol=1e-6)
        # Close to hydrostatic equilibrium, pressure increases with depth.
        assert np.all(np.diff(state["pressure"]) > 0)


class TestJacobian:
    """Compare the assembled Jacobian with central differences of the residual."""

    STEPS = {
        "pressure": 10.0,
        "sw": 1e-7,
        "qWs": 1e-9,
        "qOs": 1e-9,
        "qGs": 1e-9,
        "bhp": 10.0,
    }

    @staticmethod
    def _state(model, nc: int, status, dp=0.0):
        """Cells with gas only dissolved (status 1), oil only vaporized (status 2)
        or both phases present (status 3)."""
        status = np.asarray(status)
        p = 100 * rf.BAR + rf.BAR * np.arange(nc) + dp
        sw = 0.3
        sg = np.select([status == 1, status == 2], [0.0, 1 - sw], 0.2)
        return rf.State(
            pressure=p,
            s=np.column_stack((np.full(nc, sw), 1 - sw - sg, sg)),
            rs=np.where(status == 1, 0.5, 1.0) * model.fluid.rsSat(p),
            rv=np.where(status == 2, 0.5, 1.0) * model.fluid.rvSat(p),
            status=status,
        )

    def _setup(self, disgas, vapoil, status):
        model, g, _ = three_phase_model(nx=4, disgas=disgas, vapoil=vapoil)
        nc = g.num_cells
        state = self._state(model, nc, status)
        state0 = self._state(model, nc, status, dp=-0.5 * rf.BAR)

        producer = rf.Well(
            cells=[nc - 1],
            WI=1e-14,
            val=state["pressure"][nc - 1] - 5 * rf.BAR,
            type="bhp",
            sign=-1,
            compi=[0.0, 0.0, 1.0],
            name="producer",
        )
        ws = rf.WellSolution.from_well(producer, state["pressure"])
        ws.qWs, ws.qOs, ws.qGs = -1e-7, -1e-6, -1e-5
        state["well_solutions"] = [ws]
        forces = rf.DrivingForces(wells=[producer])
        return model, state0, state, forces

    @staticmethod
    def _perturbed(state, name: str, index: int, h: float):
        new = state.copy()
        if name == "pressure":
            new["pressure"][index] += h
        elif name == "sw":
            new["s"][index, 0] += h
        elif name in ("x", "sg"):
            # The hydrocarbon unknown depends on the phase status of the cell.
            field = {1: "rs", 2: "rv"}.get(int(new["status"][index]))
            if field is None:
                new["s"][index, 2] += h
            else:
                new[field][index] += h
        else:
            ws = new["well_solutions"][index]
            setattr(ws, name, getattr(ws, name) + h)
        return new

    @staticmethod
    def _hydrocarbon_value(state, index: int) -> float:
        field = {1: "rs", 2: "rv"}.get(int(state["status"][index]))
        return state["s"][index, 2] if field is None else state[field][index]

    @pytest.mark.parametrize(
        "disgas, vapoil, status",
        [
            (True, False, [3, 3, 3, 3]),
            (True, False, [1, 1, 3, 3]),
            (False, True, [3, 3, 3, 3]),
            (False, True, [2, 2, 3, 3]),
            (True, True, [1, 2, 3, 1]),
            (False, False, [3, 3, 3, 3]),
        ],
    )
    def test_jacobian_matches_finite_differences(self, disgas, vapoil, status):
        model, state0, state, forces = self._setup(disgas, vapoil, status)
        dt = rf.DAY

        problem, _ = model.get_equations(state0, state.copy(), dt, forces)
        J = problem.jacobian().toarray()
        assert J.shape == (16, 16)

        def residual(st):
            prob, _ = model.get_equations(state0, st, dt, forces, res_only=True)
            return prob.residual()

        col = 0
        for name, size in zip(
            problem.primary_variables, problem.primary_variable_sizes
        ):
            for i in range(size):
                if name in ("x", "sg"):
                    h = 1e-6 * max(abs(self._hydrocarbon_value(state, i)), 1e-3)
                else:
                    h = self.STEPS[name]
                r_plus = residual(self._perturbed(state, name, i, h))
                r_minus = residual(self._perturbed(state, name, i, -h))
                fd = (r_plus - r_minus) / (2 * h)
                atol = 1e-6 * np.max(np.abs(J[:, col]))
                assert np.allclose(J[:, col], fd, rtol=1e-5, atol=atol), (name, i)
                col += 1


class TestPhaseStatus:
    def test_compute_status(self):
        model, _, _ = three_phase_model(nx=3)
        s = np.array([[0.2, 0.8, 0.0], [0.2, 0.5, 0.3], [1.0, 0.0, 0.0]])
        assert np.array_equal(model.compute_status({"s": s}), [1, 3, 3])

        model, _, _ = three_phase_model(nx=3, disgas=False)
        assert np.array_equal(model.compute_status({"s": s}), [3, 3, 3])

        model, _, _ = three_phase_model(nx=3, disgas=False, vapoil=True)
        s = np.array([[0.2, 0.0, 0.8], [0.2, 0.5, 0.3], [0.2, 0.8, 0.0]])
        assert np.array_equal(model.compute_status({"s": s}), [2, 3, 3])

    def test_gas_appears_when_oil_is_oversaturated(self):
        model, _, _ = three_phase_model(nx=2)
        p = np.full(2, 100 * rf.BAR)
        rs_sat = model.fluid.rsSat(p)
        state = rf.State(
            pressure=p,
            s=np.array([[0.3, 0.7, 0.0], [0.3, 0.7, 0.0]]),
            rs=np.array([1.2, 0.5]) * rs_sat,
            rv=np.zeros(2),
            status=np.array([1, 1]),
        )
        state, num_changes = model.flash(state)

        assert num_changes == 1
        assert np.array_equal(state["status"], [3, 1])
        s = state["s"]
        assert s[0, 2] > 0
        assert np.isclose(s[0, 1] + s[0, 2], 0.7)
        assert np.isclose(state["rs"][0], rs_sat[0])
        # The undersaturated cell is unchanged.
        assert np.isclose(state["rs"][1], 0.5 * rs_sat[1])
        assert s[1, 2] == 0

    def test_gas_disappears_into_oil(self):
        model, _, _ = three_phase_model(nx=2)
        p = np.full(2, 100 * rf.BAR)
        rs_sat = model.fluid.rsSat(p)
        state = rf.State(
            pressure=p,
            s=np.array([[0.3, 0.71, -0.01], [0.3, 0.5, 0.2]]),
            rs=rs_sat.copy(),
            rv=np.zeros(2),
            status=np.array([3, 3]),
        )
        state, num_changes = model.flash(state)

        assert num_changes == 1
        assert np.array_equal(state["status"], [1, 3])
        s = state["s"]
        assert s[0, 2] == 0
        assert np.isclose(s[0, 1], 0.7)
        assert state["rs"][0] < rs_sat[0]
        assert np.allclose(s[1], [0.3, 0.5, 0.2])

    def test_newton_step_with_dissolved_gas(self):
        model, g, _ = three_phase_model(nx=4, gravity=False)
        nc = g.num_cells
        state0 = _three_phase_state(nc, model, dp_cell=0.0)
        state0.pop("status")
        forces = rf.DrivingForces(
            wells=injector_producer(nc, compi=(0.0, 0.0, 1.0), rate=1e-5)
        )
        state, report = rf.NewtonSolver().solve_timestep(
            model, state0, 0.1 * rf.DAY, forces
        )
        assert report.converged
        assert np.allclose(state["s"].sum(axis=1), 1.0)
        assert set(np.unique(state["status"])) <= {1, 2, 3}
        assert np.all(state["rs"] <= model.fluid.rsSat(state["pressure"]) + 1e-10)
