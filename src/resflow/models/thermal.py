"""Single phase water flow with energy transport.

The unknowns are pressure and temperature. Mass is conserved in surface volumes of
water, energy as the internal energy of the water and the rock. Energy is transported
by advection of enthalpy, upstream weighted with the water flux, and by conduction
through the rock.

Both equations are scaled to dimensionless form per cell: the water equation by
``dt / pv``, the energy equation by ``dt / (pv rhoWS cp)``. The model therefore uses
the maximum norm convergence check by default.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import resflow.ad.functions as af
import resflow.utils.common_constants as const
from resflow.errors import AssemblyError
from resflow.models.driving_forces import DrivingForces
from resflow.models.reservoir_model import ReservoirModel

logger = logging.getLogger(__name__)


class WaterThermalModel(ReservoirModel):
    """Water with temperature dependent properties in a heat conducting rock.

    Parameters:
        operators: Discrete operators. Must carry thermal transmissibilities
            ``T_heat``.
        fluid: :class:`~resflow.params.water.ThermalWaterFluid`.
        rock: Rock with density and heat capacity.
        params: Model parameters. In addition to the parameters of
            :class:`~resflow.models.reservoir_model.ReservoirModel`, ``dT_max``
            (inf) limits the temperature change per update.

    """

    def __init__(self, operators, fluid, rock, params: Optional[dict] = None) -> None:
        default_params = {
            "use_cnv": False,
            "dT_max": np.inf,
        }
        if params is not None:
            default_params.update(params)
        super().__init__(operators, fluid, default_params, rock=rock)
        if rock is None:
            raise ValueError("The thermal model requires rock properties")
        if operators.T_heat is None:
            raise ValueError("The thermal model requires thermal transmissibilities")

    @property
    def phases(self) -> list[str]:
        return ["water"]

    def get_primary_variable_names(self, wells: Optional[list] = None) -> list[str]:
        names = ["pressure", "T"]
        if wells:
            names += self.well_model.primary_variable_names()
        return names

    def validate_state(self, state):
        state = super().validate_state(state)
        if "T" not in state:
            raise AssemblyError("State has no temperature")
        T = np.asarray(state["T"], dtype=float).ravel()
        if T.size != self.num_cells:
            raise AssemblyError(
                f"Temperature of size {T.size} for {self.num_cells} cells"
            )
        state["T"] = T
        return state

    def shrinkage_factors(self, state) -> dict:
        return {"water": self.fluid.b(state["pressure"], state["T"])}

    def rock_energy(self, T):
        """Internal energy of the rock per bulk volume, relative to 0 Celsius."""
        rock = self.rock
        return rock.DENSITY * rock.HEAT_CAPACITY * const.KELVIN_to_CELSIUS(T)

    def _accumulation(self, p, T):
        f = self.fluid
        pv = self.operators.pv
        rock_volume = pv * (1 - self.rock.poro) / self.rock.poro
        rho = f.density(p, T)
        mass = pv * f.b(p, T)
        energy = pv * rho * f.internal_energy(p, T) + rock_volume * self.rock_energy(T)
        return mass, energy

    def get_equations(
        self, state0, state, dt, forces=None, res_only=False, iteration=-1
    ):
        if forces is None:
            forces = DrivingForces()
        state = self.validate_state(state)
        wells = forces.wells
        ws = self.well_solutions(state, wells)
        op = self.operators
        f = self.fluid

        names = self.get_primary_variable_names(wells)
        values = [state["pressure"], state["T"]]
        if wells:
            values += self.well_model.get_primary_variables(ws)
        variables = self.seed_variables(values, res_only)
        var = dict(zip(names, variables))
        p, T = var["pressure"], var["T"]

        b = f.b(p, T)
        rho = f.density(p, T)
        mob = 1 / f.viscosity(p, T)
        h = f.enthalpy(p, T)

        v, dp, flags = self.phase_fluxes({"water": p}, {"water": rho}, {"water": mob})
        vW, flag = v["water"], flags["water"]

        mass, energy = self._accumulation(p, T)
        mass0, energy0 = self._accumulation(
            np.asarray(state0["pressure"], dtype=float),
            np.asarray(state0["T"], dtype=float),
        )

        water = (mass - mass0) / dt + op.div(op.face_upstream(flag, b) * vW)
        heat_flux = -op.T_heat * op.grad(T)
        energy_eq = (
            (energy - energy0) / dt
            + op.div(op.face_upstream(flag, rho * h) * vW)
            + op.div(heat_flux)
        )

        if forces.src is not None:
            src = forces.src
            q = self.source_phase_rates(src, {"water": mob})["water"]
            water = self.add_cell_rates(water, src.cells, b[src.cells] * q)
            energy_eq = self.add_cell_rates(
                energy_eq, src.cells, rho[src.cells] * h[src.cells] * q
            )

        well_eqs, well_names, well_types = [], [], []
        if wells:
            well_vars = [var[n] for n in self.well_model.primary_variable_names()]
            cqs, well_eqs, well_names, well_types = (
                self.well_model.get_well_contributions(
                    wells,
                    ws,
                    well_vars,
                    p,
                    {"water": mob},
                    {"water": b},
                    {"water": rho},
                )
            )
            cells = self.well_model.well_cells(wells)
            q_mass = cqs["water"] * f.rhoWS
            T_inj = np.concatenate([np.full(w.num_perforations, w.T) for w in wells])
            h_inj = f.enthalpy(p[cells], T_inj)
            injecting = af.value(q_mass) > 0
            h_perf = af.where(injecting, h_inj, h[cells])
            water = self.add_cell_rates(water, cells, cqs["water"])
            energy_eq = self.add_cell_rates(energy_eq, cells, q_mass * h_perf)

        cp = f.specific_heat_capacity()
        water = water * (dt / op.pv)
        energy_eq = energy_eq * (dt / (op.pv * f.rhoWS * cp))

        self.store_diagnostics(
            state, v, {"water": mob}, {"water": b}, {"water": rho}, flags
        )

        problem = self.make_problem(
            [water, energy_eq] + well_eqs,
            ["cell", "cell"] + well_types,
            ["water", "energy"] + well_names,
            names,
            values,
            state,
            dt,
            forces,
            iteration,
        )
        return problem, state

    def update_state(self, state, problem, dx, forces=None):
        state = state.copy()
        state, _, _ = self.update_state_from_increment(
            state, dx, problem, "pressure", relative_max=self.params["dp_max_rel"]
        )
        state, _, _ = self.update_state_from_increment(
            state, dx, problem, "T", absolute_max=self.params["dT_max"]
        )
        self.update_wells(state, problem, dx, forces)
        return state, {}
