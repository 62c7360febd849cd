"""Compositional flow with a liquid and a vapor hydrocarbon phase and optional water.

The hydrocarbon mixture is described by the overall mole fractions ``z`` of its
components. In every assembly, the mixture is split into liquid (``oil``) and vapor
(``gas``) by a K-value flash, see :class:`~resflow.compositional.fluid.
CompositionalFluid`. The primary variables are pressure, water saturation (with
water) and the mole fractions of all components but the last, which is given by
closure.

The component equations are molar balances,

.. math::

    \\frac{pv (1 - s_w)}{dt} (\\rho_L s_L x_i + \\rho_V s_V y_i)\\Big|_{t_0}^{t}
    + \\nabla \\cdot (\\rho_L x_i v_L + \\rho_V y_i v_V) - q_i = 0,

where ``s_L`` and ``s_V`` are fractions of the hydrocarbon pore space. Phase molar
densities and compositions are upstream weighted. In cells filled with water, the
component equations do not depend on the mole fractions. A regularization term with
zero residual keeps the Jacobian nonsingular there.

Well rates of the hydrocarbon phases are reservoir volume rates, water rates are
surface rates.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import resflow.ad.functions as af
from resflow.errors import AssemblyError
from resflow.models.driving_forces import DrivingForces
from resflow.models.reservoir_model import ReservoirModel
from resflow.wells.well import perforation_to_well_map

logger = logging.getLogger(__name__)


class CompositionalModel(ReservoirModel):
    """Compositional model with K-value phase equilibrium.

    Parameters:
        operators: Discrete operators.
        fluid: :class:`~resflow.compositional.fluid.CompositionalFluid`.
        params: Model parameters, see
            :class:`~resflow.models.reservoir_model.ReservoirModel`. In addition,
            ``temperature`` (350 K) is the reservoir temperature used where the
            state has none.
        water: Include an aqueous phase.
        rock: Rock properties.

    """

    def __init__(
        self,
        operators,
        fluid,
        params: Optional[dict] = None,
        water: bool = False,
        rock=None,
    ) -> None:
        default_params = {
            "use_cnv": False,
            "temperature": 350.0,
        }
        if params is not None:
            default_params.update(params)
        self.has_water = water
        super().__init__(operators, fluid, default_params, rock=rock)

    @property
    def phases(self) -> list[str]:
        return (["water"] if self.has_water else []) + ["oil", "gas"]

    @property
    def component_names(self) -> list[str]:
        return list(self.fluid.names)

    @property
    def num_components(self) -> int:
        return self.fluid.num_components

    # ---- Named access ----------------------------------------------------------------

    def get_variable_field(self, name: str):
        if name.lower() in ("components", "z"):
            return "components", None
        if name in self.component_names:
            return "components", self.component_names.index(name)
        return super().get_variable_field(name)

    def get_primary_variable_names(self, wells: Optional[list] = None) -> list[str]:
        names = ["pressure"]
        if self.has_water:
            names.append("sw")
        names += self.component_names[:-1]
        if wells:
            names += self.well_model.primary_variable_names()
        return names

    # ---- State -----------------------------------------------------------------------

    def validate_state(self, state):
        nc = self.num_cells
        if "components" not in state:
            raise AssemblyError("State has no overall mole fractions")
        z = np.atleast_2d(np.asarray(state["components"], dtype=float))
        if z.shape != (nc, self.num_components):
            raise AssemblyError(
                f"Mole fractions of shape {z.shape}, expected "
                f"{(nc, self.num_components)}"
            )
        state["components"] = z
        if "T" not in state:
            state["T"] = np.full(nc, float(self.params["temperature"]))
        state["T"] = np.asarray(state["T"], dtype=float) * np.ones(nc)
        if "s" not in state and not self.has_water and "pressure" in state:
            p = np.asarray(state["pressure"], dtype=float).ravel()
            sL, sV = self._hydrocarbon_saturations(p, state["T"], z)
            state["s"] = np.column_stack([sL, sV])
        return super().validate_state(state)

    def _hydrocarbon_saturations(self, p, T, z: np.ndarray):
        props = self.hydrocarbon_properties(p, T, [z[:, i] for i in range(z.shape[1])])
        return props["sL"], props["sV"]

    # ---- Properties ------------------------------------------------------------------

    def hydrocarbon_properties(self, p, T, z: list) -> dict:
        """Flash the mixture and evaluate the phase properties.

        Returns:
            dict with phase compositions ``x`` and ``y``, vapor mole fraction ``V``,
            molar densities ``rhoL`` and ``rhoV``, mass densities ``massL`` and
            ``massV``, and hydrocarbon pore space fractions ``sL`` and ``sV``.

        """
        f = self.fluid
        x, y, V, two_phase = f.flash(p, T, z)
        rhoL = f.liquid_molar_density(p)
        rhoV = f.vapor_molar_density(p, T)
        sL, sV = f.saturations(V, rhoL, rhoV)
        return {
            "x": x,
            "y": y,
            "V": V,
            "two_phase": two_phase,
            "rhoL": rhoL,
            "rhoV": rhoV,
            "massL": f.mass_density(rhoL, x),
            "massV": f.mass_density(rhoV, y),
            "sL": sL,
            "sV": sV,
        }

    def component_accumulation(self, p, sw, hc: dict) -> list:
        """Moles of each component per pore volume."""
        acc = []
        for xi, yi in zip(hc["x"], hc["y"]):
            acc.append(
                (1 - sw) * (hc["rhoL"] * hc["sL"] * xi + hc["rhoV"] * hc["sV"] * yi)
            )
        return acc

    def total_molar_density(self, hc: dict) -> np.ndarray:
        return af.value(hc["rhoL"] * hc["sL"] + hc["rhoV"] * hc["sV"])

    def shrinkage_factors(self, state) -> dict:
        p = state["pressure"]
        z = state["components"]
        hc = self.hydrocarbon_properties(
            p, state["T"], [z[:, i] for i in range(z.shape[1])]
        )
        rho_t = self.total_molar_density(hc) * np.ones(self.num_cells)
        b = {name: rho_t for name in self.component_names}
        if self.has_water:
            b["water"] = np.asarray(self.fluid.bW(p)) * np.ones(self.num_cells)
        return b

    # ---- Equations -------------------------------------------------------------------

    def get_equations(
        self, state0, state, dt, forces=None, res_only=False, iteration=-1
    ):
        if forces is None:
            forces = DrivingForces()
        state = self.validate_state(state)
        state0 = self.validate_state(state0.copy())
        wells = forces.wells
        ws = self.well_solutions(state, wells)
        op = self.operators
        f = self.fluid
        nc = self.num_cells
        T = state["T"]

        names = self.get_primary_variable_names(wells)
        z_state = state["components"]
        values = [state["pressure"]]
        if self.has_water:
            values.append(state["s"][:, self.phase_index("water")])
        values += [z_state[:, i] for i in range(self.num_components - 1)]
        if wells:
            values += self.well_model.get_primary_variables(ws)

        variables = self.seed_variables(values, res_only)
        var = dict(zip(names, variables))
        p = var["pressure"]
        sw = var["sw"] if self.has_water else np.zeros(nc)
        z = [var[name] for name in self.component_names[:-1]]
        z_last = 1
        for zi in z:
            z_last = z_last - zi
        z.append(z_last)

        hc = self.hydrocarbon_properties(p, T, z)
        sat = {"oil": (1 - sw) * hc["sL"], "gas": (1 - sw) * hc["sV"]}
        mu = {"oil": f.muL(p), "gas": f.muV(p)}
        rho = {"oil": hc["massL"], "gas": hc["massV"]}
        b = {"oil": 1.0 + 0 * p, "gas": 1.0 + 0 * p}
        if self.has_water:
            sat["water"] = sw
            mu["water"] = f.muW(p)
            b["water"] = f.bW(p)
            rho["water"] = b["water"] * f.rhoWS
        kr = f.relperm.evaluate(sat)
        mob = {ph: kr[ph] / mu[ph] for ph in self.phases}
        pressures = {ph: p for ph in self.phases}

        v, dp, flags = self.phase_fluxes(pressures, rho, mob)

        p0 = state0["pressure"]
        z0 = state0["components"]
        sw0 = state0["s"][:, self.phase_index("water")] if self.has_water else 0.0
        hc0 = self.hydrocarbon_properties(
            p0, state0["T"], [z0[:, i] for i in range(self.num_components)]
        )
        acc = self.component_accumulation(p, sw, hc)
        acc0 = self.component_accumulation(p0, sw0, hc0)
        pv = op.pv

        eqs = []
        for i in range(self.num_components):
            flux = op.face_upstream(flags["oil"], hc["rhoL"] * hc["x"][i]) * v["oil"]
            flux = flux + op.face_upstream(flags["gas"], hc["rhoV"] * hc["y"][i]) * v[
                "gas"
            ]
            eqs.append(pv * (acc[i] - acc0[i]) / dt + op.div(flux))
        if self.has_water:
            bW0 = f.bW(p0)
            water = pv * (b["water"] * sw - bW0 * sw0) / dt + op.div(
                op.face_upstream(flags["water"], b["water"]) * v["water"]
            )

        if forces.src is not None:
            eqs, water = self._add_sources(
                eqs, water if self.has_water else None, forces.src, mob, hc, b
            )

        well_eqs, well_names, well_types = [], [], []
        if wells:
            well_vars = [var[n] for n in self.well_model.primary_variable_names()]
            cqs, well_eqs, well_names, well_types = (
                self.well_model.get_well_contributions(
                    wells, ws, well_vars, p, mob, b, rho
                )
            )
            cells = self.well_model.well_cells(wells)
            q_components = self.perforation_component_rates(wells, cells, cqs, hc)
            for i in range(self.num_components):
                eqs[i] = self.add_cell_rates(eqs[i], cells, q_components[i])
            if self.has_water:
                water = self.add_cell_rates(water, cells, cqs["water"])

        if not self.params["use_cnv"]:
            rho_t = self.total_molar_density(hc)
            scale = dt / (pv * np.mean(rho_t))
            eqs = [eq * scale for eq in eqs]
            if self.has_water:
                water = water * (dt / pv)

        if not res_only:
            eqs = self._regularize(eqs, z)

        self.store_diagnostics(state, v, mob, b, rho, flags)

        eq_list = ([water] if self.has_water else []) + eqs
        eq_names = (["water"] if self.has_water else []) + self.component_names
        eq_types = ["cell"] * len(eq_list)
        problem = self.make_problem(
            eq_list + well_eqs,
            eq_types + well_types,
            eq_names + well_names,
            names,
            values,
            state,
            dt,
            forces,
            iteration,
        )
        return problem, state

    def _regularize(self, eqs: list, z: list) -> list:
        """Add ``eps (z_i - z_i)`` with the second term evaluated on values. The term
        vanishes but gives each mole fraction a diagonal entry in its equation."""
        eps = self.params["stabilization_epsilon"]
        for i, zi in enumerate(z[:-1]):
            eqs[i] = eqs[i] + eps * (zi - af.value(zi))
        return eqs

    def perforation_component_rates(self, wells, cells, cqs: dict, hc: dict) -> list:
        """Molar rates of each component at the perforations.

        Producing perforations carry the phase compositions of the cell. Injecting
        perforations carry the injected mixture ``well.components`` at the molar
        density of the cell fluid.

        """
        perf2well = perforation_to_well_map(wells)
        z_inj = []
        for w in wells:
            if w.components is None:
                z_w = np.zeros(self.num_components)
                if w.is_injector:
                    raise AssemblyError(f"Injector {w.name} has no injected components")
            else:
                z_w = w.components
            if z_w.size != self.num_components:
                raise AssemblyError(
                    f"Well {w.name} injects {z_w.size} components, expected "
                    f"{self.num_components}"
                )
            z_inj.append(z_w)
        z_inj = np.vstack(z_inj)[perf2well]

        qL, qV = cqs["oil"], cqs["gas"]
        injecting = af.value(qL + qV) > 0
        moles_in = qL * hc["rhoL"][cells] + qV * hc["rhoV"][cells]
        rates = []
        for i in range(self.num_components):
            produced = qL * hc["rhoL"][cells] * hc["x"][i][cells] + qV * hc["rhoV"][
                cells
            ] * hc["y"][i][cells]
            rates.append(af.where(injecting, moles_in * z_inj[:, i], produced))
        return rates

    def _add_sources(self, eqs, water, src, mob, hc, b):
        """Cell sources. Injected hydrocarbons have the composition of the cell."""
        q = self.source_phase_rates(src, mob)
        cells = src.cells
        for i in range(self.num_components):
            rate = q["oil"] * hc["rhoL"][cells] * hc["x"][i][cells]
            rate = rate + q["gas"] * hc["rhoV"][cells] * hc["y"][i][cells]
            eqs[i] = self.add_cell_rates(eqs[i], cells, rate)
        if water is not None:
            water = self.add_cell_rates(water, cells, b["water"][cells] * q["water"])
        return eqs, water

    # ---- State update ----------------------------------------------------------------

    def update_state(self, state, problem, dx, forces=None):
        """Update pressure, water saturation and mole fractions.

        Mole fraction increments are chopped jointly per cell so that no fraction,
        including the one given by closure, changes more than ``dz_max``. Fractions
        are clamped to [0, 1] and renormalized, and the saturations follow from a
        flash at the new state.

        """
        state = state.copy()
        report = {}
        state, _, _ = self.update_state_from_increment(
            state, dx, problem, "pressure", relative_max=self.params["dp_max_rel"]
        )
        nc = self.num_cells

        if self.has_water:
            dsw = self.get_increment(dx, problem, "sw") * np.ones(nc)
            _, chop = self.limit_update_absolute(dsw, self.params["ds_max"])
            sw = np.clip(state["s"][:, self.phase_index("water")] + chop * dsw, 0, 1)
        else:
            sw = np.zeros(nc)

        dz = [
            self.get_increment(dx, problem, name) * np.ones(nc)
            for name in self.component_names[:-1]
        ]
        dz.append(-np.sum(dz, axis=0))
        dz = np.column_stack(dz)
        max_dz = np.max(np.abs(dz), axis=1)
        _, chop = self.limit_update_absolute(max_dz, self.params["dz_max"])
        z = np.clip(state["components"] + chop[:, None] * dz, 0.0, 1.0)
        total = np.sum(z, axis=1, keepdims=True)
        total[total == 0] = 1.0
        state["components"] = z / total
        report["composition_chop"] = float(np.min(chop)) if nc > 0 else 1.0

        sL, sV = self._hydrocarbon_saturations(
            state["pressure"], state["T"], state["components"]
        )
        columns = ([sw] if self.has_water else []) + [(1 - sw) * sL, (1 - sw) * sV]
        state["s"] = self.normalize_saturations(np.column_stack(columns))

        self.update_wells(state, problem, dx, forces)
        return state, report
