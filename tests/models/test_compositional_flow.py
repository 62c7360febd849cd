"""Tests of the compositional model with a two-component hydrocarbon mixture."""

import numpy as np
import pytest

import resflow as rf
from tests.common.reservoir_setups import cartesian_operators, two_component_fluid


def _model(nx=3, water=False, params=None):
    g, rock, op = cartesian_operators(nx)
    model = rf.CompositionalModel(
        op, two_component_fluid(), params, water=water, rock=rock
    )
    return model, g


def _state(pressures_bar, z1=0.5):
    p = np.asarray(pressures_bar, dtype=float) * rf.BAR
    z = np.column_stack((np.full(p.size, z1), np.full(p.size, 1 - z1)))
    return rf.State(pressure=p, components=z)


def _moles(model, state):
    """Total moles of each component."""
    z = state["components"]
    hc = model.hydrocarbon_properties(
        state["pressure"], state["T"], [z[:, i] for i in range(z.shape[1])]
    )
    acc = model.component_accumulation(state["pressure"], 0.0, hc)
    return np.array([np.sum(model.operators.pv * a) for a in acc])


def test_variables_and_equations():
    model, _ = _model()
    state = _state([50.0, 50.0, 50.0])
    problem, state = model.get_equations(state.copy(), state, rf.DAY)
    assert problem.primary_variables == ["pressure", "C1"]
    assert problem.equation_names == ["C1", "C10"]
    # Uniform state at rest.
    assert np.allclose(problem.residual(), 0.0)

    # Saturations and temperature are filled in by the model.
    assert np.allclose(state["T"], 350.0)
    assert np.allclose(state["s"].sum(axis=1), 1.0)
    assert np.all(state["s"][:, 1] > 0)


def test_variables_with_water():
    model, _ = _model(water=True)
    assert model.phases == ["water", "oil", "gas"]
    assert model.get_primary_variable_names() == ["pressure", "sw", "C1"]


def test_missing_mole_fractions():
    model, _ = _model()
    state = rf.State(pressure=np.full(3, 50 * rf.BAR))
    with pytest.raises(rf.AssemblyError):
        model.get_equations(state.copy(), state, rf.DAY)


def test_mole_fractions_of_wrong_shape():
    model, _ = _model()
    state = _state([50.0, 50.0, 50.0])
    state["components"] = np.full((3, 3), 1 / 3)
    with pytest.raises(rf.AssemblyError):
        model.get_equations(state.copy(), state, rf.DAY)


def test_closed_system_conserves_moles():
    model, _ = _model()
    state0 = _state([60.0, 50.0, 40.0])
    state, report = rf.NewtonSolver().solve_timestep(model, state0, 0.1 * rf.DAY)
    assert report.converged

    state0 = model.validate_state(state0.copy())
    assert np.allclose(_moles(model, state), _moles(model, state0), rtol=1e-4)
    # The pressure has equilibrated.
    assert np.ptp(state["pressure"]) < 1 * rf.BAR
    assert np.allclose(state["components"].sum(axis=1), 1.0)


def test_methane_injection():
    model, g = _model(nx=4)
    nc = g.num_cells
    injector = rf.Well(
        cells=[0],
        WI=1e-16,
        val=70 * rf.BAR,
        type="bhp",
        sign=1,
        compi=[0.0, 1.0],
        components=[1.0, 0.0],
        name="inj",
    )
    producer = rf.Well(
        cells=[nc - 1],
        WI=1e-16,
        val=40 * rf.BAR,
        type="bhp",
        sign=-1,
        compi=[0.0, 1.0],
        name="prod",
    )
    state0 = _state(np.full(nc, 50.0))
    forces = rf.DrivingForces(wells=[injector, producer])
    state, report = rf.NewtonSolver().solve_timestep(
        model, state0, 0.01 * rf.DAY, forces
    )
    assert report.converged

    z = state["components"]
    assert z[0, 0] > 0.5
    assert np.all((z >= 0) & (z <= 1))
    ws = state["well_solutions"]
    assert ws[0].bhp == pytest.approx(70 * rf.BAR)
    assert ws[0].qGs > 0
    assert ws[1].qOs + ws[1].qGs < 0


def test_injector_requires_components():
    model, g = _model()
    injector = rf.Well(cells=[0], WI=1e-16, val=1e-6, type="rate", compi=[0.0, 1.0])
    state = _state([50.0, 50.0, 50.0])
    forces = rf.DrivingForces(wells=[injector])
    with pytest.raises(rf.AssemblyError):
        model.get_equations(state.copy(), state, rf.DAY, forces)
