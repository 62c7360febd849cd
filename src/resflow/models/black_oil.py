"""Black-oil model with up to three phases, dissolved gas and vaporized oil.

With dissolution, the hydrocarbon unknown ``x`` of a cell is interpreted through
the lagged phase status of the cell:

======  =====================  ========  ========  ==================
status  phases present         x         sg        rs, rv
======  =====================  ========  ========  ==================
1       oil, no free gas       rs        0         rv = rvSat
2       gas, no free oil       rv        1 - sw    rs = rsSat
3       oil and gas            sg        x         rs = rsSat, rv = rvSat
======  =====================  ========  ========  ==================

The status is computed before the first iteration of a time step if the state has
none, kept fixed during assembly, and only changed by :meth:`BlackOilModel.
update_state` when a phase appears or disappears.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import resflow.ad.functions as af
from resflow.errors import AssemblyError
from resflow.models.driving_forces import DrivingForces
from resflow.models.reservoir_model import ReservoirModel

logger = logging.getLogger(__name__)


class BlackOilModel(ReservoirModel):
    """Fully implicit black-oil model.

    Parameters:
        operators: Discrete operators.
        fluid: :class:`~resflow.params.fluid.BlackOilFluid`.
        params: Model parameters, see
            :class:`~resflow.models.reservoir_model.ReservoirModel`.
        disgas: Gas may dissolve in oil.
        vapoil: Oil may vaporize into gas.
        extensions: Extensions adding components to the water phase, see
            :mod:`~resflow.models.eor_extensions`.
        rock: Rock properties, needed by extensions with adsorption.

    """

    def __init__(
        self,
        operators,
        fluid,
        params: Optional[dict] = None,
        disgas: bool = False,
        vapoil: bool = False,
        extensions: Optional[list] = None,
        rock=None,
    ) -> None:
        super().__init__(operators, fluid, params, rock=rock)
        if (disgas or vapoil) and not (self.oil and self.gas):
            raise ValueError("Dissolution requires both oil and gas")
        self.disgas = disgas
        self.vapoil = vapoil
        self.extensions = list(extensions) if extensions is not None else []
        for ext in self.extensions:
            ext.validate_model(self)

    @property
    def has_dissolution(self) -> bool:
        return self.disgas or self.vapoil

    # ---- Named access ----------------------------------------------------------------

    def get_variable_field(self, name: str):
        key = name.lower()
        if key in ("rs", "rv", "status"):
            return key, None
        for ext in self.extensions:
            field = ext.get_variable_field(name)
            if field is not None:
                return field
        return super().get_variable_field(name)

    def get_primary_variable_names(self, wells: Optional[list] = None) -> list[str]:
        """Names of the primary variables, in the order of the Jacobian blocks."""
        names = ["pressure"]
        if self.water and (self.oil or self.gas):
            names.append("sw")
        if self.oil and self.gas:
            names.append("x" if self.has_dissolution else "sg")
        for ext in self.extensions:
            names += ext.primary_variable_names()
        if wells:
            names += self.well_model.primary_variable_names()
        return names

    # ---- Phase status ----------------------------------------------------------------

    def compute_status(self, state) -> np.ndarray:
        """Phase status of each cell from saturations.

        Without dissolved gas, gas counts as present in every cell, and without
        vaporized oil, oil does. Cells with water only are treated as having both
        hydrocarbon phases.

        """
        s = state["s"]
        nc = s.shape[0]
        sw = s[:, self.phase_index("water")] if self.water else np.zeros(nc)
        so = s[:, self.phase_index("oil")]
        sg = s[:, self.phase_index("gas")]

        water_only = sw > 1 - np.sqrt(np.finfo(float).eps)
        oil_present = (so > 0) | water_only if self.vapoil else np.ones(nc, bool)
        gas_present = (sg > 0) | water_only if self.disgas else np.ones(nc, bool)
        status = oil_present.astype(int) + 2 * gas_present.astype(int)
        # Neither hydrocarbon phase: solve for gas saturation.
        status[status == 0] = 3
        return status

    @staticmethod
    def status_flags(status: np.ndarray):
        return status == 1, status == 2, status == 3

    # ---- State -----------------------------------------------------------------------

    def validate_state(self, state):
        state = super().validate_state(state)
        nc = self.num_cells
        for name in ("rs", "rv"):
            if name not in state:
                state[name] = np.zeros(nc)
            state[name] = np.asarray(state[name], dtype=float).ravel()
            if state[name].size != nc:
                raise AssemblyError(f"Field {name} has wrong size")
        for ext in self.extensions:
            state = ext.validate_state(self, state)
        return state

    def prepare_timestep(self, state, state0, dt, forces=None):
        state = super().prepare_timestep(state, state0, dt, forces)
        if self.has_dissolution and "status" not in state:
            state["status"] = self.compute_status(state)
        return state

    def _status(self, state) -> np.ndarray:
        if "status" in state:
            return np.asarray(state["status"], dtype=int)
        return self.compute_status(state)

    # ---- Properties ------------------------------------------------------------------

    def saturations_from_variables(self, sw, x, status, rs, rv, p):
        """Phase saturations and dissolution ratios from the primary variables.

        Parameters:
            sw: Water saturation (or None without water).
            x: Hydrocarbon unknown (or None for fewer than two hydrocarbon phases).
            status: Lagged phase status, used with dissolution.
            rs, rv: Current ratios, used where they are not primary variables.
            p: Pressure.

        Returns:
            Tuple of a saturation dict keyed by phase, rs and rv.

        """
        nc = self.num_cells
        if sw is None:
            water_only = self.water and not (self.oil or self.gas)
            sw = np.ones(nc) if water_only else np.zeros(nc)
        sat = {}
        if self.water:
            sat["water"] = sw

        if self.oil and self.gas:
            if self.has_dissolution:
                st1, st2, st3 = self.status_flags(status)
                sg = st2 * (1 - sw) + st3 * x
                rs = af.where(st1, x, self.fluid.rsSat(p)) if self.disgas else rs
                rv = af.where(st2, x, self.fluid.rvSat(p)) if self.vapoil else rv
            else:
                sg = x
            sat["oil"] = 1 - sw - sg
            sat["gas"] = sg
        elif self.oil:
            sat["oil"] = 1 - sw
        elif self.gas:
            sat["gas"] = 1 - sw
        return sat, rs, rv

    def compute_properties(self, p, sat: dict, rs, rv) -> dict:
        """Shrinkage factors, viscosities, densities, phase pressures and relative
        permeabilities."""
        f = self.fluid
        b, mu, rho, pressures = {}, {}, {}, {}
        if self.water:
            b["water"] = f.bW(p)
            mu["water"] = f.muW(p)
            rho["water"] = b["water"] * f.rhoWS
            pressures["water"] = p - f.pcOW(sat["water"]) if self.oil else p
        if self.oil:
            b["oil"] = f.bO(p, rs)
            mu["oil"] = f.muO(p, rs)
            rho["oil"] = b["oil"] * (f.rhoOS + rs * f.rhoGS)
            pressures["oil"] = p
        if self.gas:
            b["gas"] = f.bG(p, rv)
            mu["gas"] = f.muG(p, rv)
            rho["gas"] = b["gas"] * (f.rhoGS + rv * f.rhoOS)
            pressures["gas"] = p + f.pcOG(sat["gas"]) if self.oil else p
        kr = f.relperm.evaluate(sat)
        return {
            "p": p,
            "sat": sat,
            "rs": rs,
            "rv": rv,
            "b": b,
            "mu": mu,
            "rho": rho,
            "pressures": pressures,
            "kr": kr,
            "pv": self.operators.pv * f.pv_multiplier(p),
        }

    def component_accumulation(self, props: dict) -> dict:
        """Surface volumes per pore volume of water, oil and gas."""
        b, sat = props["b"], props["sat"]
        rs, rv = props["rs"], props["rv"]
        acc = {}
        if self.water:
            acc["water"] = b["water"] * sat["water"]
        if self.oil:
            acc["oil"] = b["oil"] * sat["oil"]
            if self.vapoil:
                acc["oil"] = acc["oil"] + rv * b["gas"] * sat["gas"]
        if self.gas:
            acc["gas"] = b["gas"] * sat["gas"]
            if self.disgas:
                acc["gas"] = acc["gas"] + rs * b["oil"] * sat["oil"]
        return acc

    def shrinkage_factors(self, state) -> dict:
        p = state["pressure"]
        b = {}
        if self.water:
            b["water"] = self.fluid.bW(p)
        if self.oil:
            b["oil"] = self.fluid.bO(p, state.get("rs", 0.0))
        if self.gas:
            b["gas"] = self.fluid.bG(p, state.get("rv", 0.0))
        return {ph: np.asarray(v) * np.ones(self.num_cells) for ph, v in b.items()}

    def _old_properties(self, state0) -> dict:
        p0 = np.asarray(state0["pressure"], dtype=float)
        s0 = np.asarray(state0["s"], dtype=float)
        sat0 = {ph: s0[:, k] for k, ph in enumerate(self.phases)}
        nc = self.num_cells
        rs0 = np.asarray(state0.get("rs", np.zeros(nc))) if self.disgas else 0.0
        rv0 = np.asarray(state0.get("rv", np.zeros(nc))) if self.vapoil else 0.0
        return self.compute_properties(p0, sat0, rs0, rv0)

    # ---- Equations -------------------------------------------------------------------

    def get_equations(
        self, state0, state, dt, forces=None, res_only=False, iteration=-1
    ):
        if forces is None:
            forces = DrivingForces()
        state = self.validate_state(state)
        wells = forces.wells
        ws = self.well_solutions(state, wells)
        op = self.operators
        nc = self.num_cells

        p = state["pressure"]
        s = state["s"]
        status = self._status(state) if self.has_dissolution else None
        rs = state["rs"] if self.disgas else 0.0
        rv = state["rv"] if self.vapoil else 0.0

        names = self.get_primary_variable_names(wells)
        values = [p]
        if "sw" in names:
            values.append(s[:, self.phase_index("water")])
        if "x" in names:
            st1, st2, st3 = self.status_flags(status)
            sg_val = s[:, self.phase_index("gas")]
            values.append(st1 * state["rs"] + st2 * state["rv"] + st3 * sg_val)
        elif "sg" in names:
            values.append(s[:, self.phase_index("gas")])
        for ext in self.extensions:
            values += ext.primary_values(state)
        if wells:
            values += self.well_model.get_primary_variables(ws)

        variables = self.seed_variables(values, res_only)
        var = dict(zip(names, variables))

        p = var["pressure"]
        sw = var.get("sw")
        x = var.get("x", var.get("sg"))
        sat, rs, rv = self.saturations_from_variables(sw, x, status, rs, rv, p)

        props = self.compute_properties(p, sat, rs, rv)
        props["mob"] = {
            ph: props["kr"][ph] / props["mu"][ph] for ph in self.phases
        }
        for ext in self.extensions:
            ext.modify_properties(self, props, var, state)

        props0 = self._old_properties(state0)
        for ext in self.extensions:
            ext.modify_old_properties(self, props0, state0)

        v, dp, flags = self.phase_fluxes(
            props["pressures"], props["rho"], props["mob"]
        )
        props["flux"], props["dp"], props["flags"] = v, dp, flags
        b = props["b"]
        bv = {ph: op.face_upstream(flags[ph], b[ph]) * v[ph] for ph in self.phases}

        acc = self.component_accumulation(props)
        acc0 = self.component_accumulation(props0)
        pv, pv0 = props["pv"], props0["pv"]

        eqs = {}
        for ph in self.phases:
            eqs[ph] = (pv * acc[ph] - pv0 * acc0[ph]) / dt
        if self.water:
            eqs["water"] = eqs["water"] + op.div(bv["water"])
        if self.oil:
            oil_flux = bv["oil"]
            if self.vapoil:
                oil_flux = oil_flux + op.face_upstream(flags["gas"], rv) * bv["gas"]
            eqs["oil"] = eqs["oil"] + op.div(oil_flux)
        if self.gas:
            gas_flux = bv["gas"]
            if self.disgas:
                gas_flux = gas_flux + op.face_upstream(flags["oil"], rs) * bv["oil"]
            eqs["gas"] = eqs["gas"] + op.div(gas_flux)

        if forces.src is not None:
            eqs = self._add_sources(eqs, forces.src, props)

        well_eqs, well_names, well_types = [], [], []
        cqs = None
        if wells:
            well_vars = [var[n] for n in self.well_model.primary_variable_names()]
            mob_wells = props["mob"]
            for ext in self.extensions:
                mob_wells = ext.well_mobilities(self, props, wells, mob_wells)
            cqs, well_eqs, well_names, well_types = (
                self.well_model.get_well_contributions(
                    wells,
                    ws,
                    well_vars,
                    p,
                    mob_wells,
                    b,
                    props["rho"],
                    rs=rs if self.disgas else None,
                    rv=rv if self.vapoil else None,
                )
            )
            wc = self.well_model.well_cells(wells)
            for ph in self.phases:
                eqs[ph] = self.add_cell_rates(eqs[ph], wc, cqs[ph])
        props["cqs"] = cqs

        eq_list = [eqs[ph] for ph in self.phases]
        eq_names = list(self.phases)
        eq_types = ["cell"] * len(eq_list)
        for ext in self.extensions:
            e, n, t = ext.get_equations(
                self, props, props0, state0, state, dt, forces, res_only
            )
            eq_list += e
            eq_names += n
            eq_types += t

        eq_list += well_eqs
        eq_names += well_names
        eq_types += well_types

        self.store_diagnostics(state, v, props["mob"], b, props["rho"], flags)

        problem = self.make_problem(
            eq_list, eq_types, eq_names, names, values, state, dt, forces, iteration
        )
        return problem, state

    def _add_sources(self, eqs: dict, src, props: dict) -> dict:
        """Subtract cell sources, converted to surface volumes."""
        q = self.source_phase_rates(src, props["mob"])
        b = props["b"]
        cells = src.cells
        q_s = {ph: b[ph][cells] * q[ph] for ph in self.phases}
        if self.oil and self.gas:
            free_oil, free_gas = q_s["oil"], q_s["gas"]
            if self.disgas:
                q_s["gas"] = free_gas + props["rs"][cells] * free_oil
            if self.vapoil:
                q_s["oil"] = free_oil + props["rv"][cells] * free_gas
        for ph in self.phases:
            eqs[ph] = self.add_cell_rates(eqs[ph], cells, q_s[ph])
        return eqs

    # ---- State update ----------------------------------------------------------------

    def update_state(self, state, problem, dx, forces=None):
        """Update the state with Newton increments.

        The pressure change is limited by ``dp_max_rel``. Saturation increments are
        scaled jointly so that no saturation changes more than ``ds_max``, the
        saturation that is not a primary variable fills the remaining pore space, and
        phase appearance and disappearance is handled by a flash of the ratios.

        """
        state = state.copy()
        report = {}
        state, _, _ = self.update_state_from_increment(
            state, dx, problem, "pressure", relative_max=self.params["dp_max_rel"]
        )

        nc = self.num_cells
        ones = np.ones(nc)
        dsw = self.get_increment(dx, problem, "sw") * ones
        if self.has_dissolution:
            status = self._status(state)
            st1, st2, st3 = self.status_flags(status)
            dxx = self.get_increment(dx, problem, "x") * ones
            dsg = st3 * dxx - st2 * dsw
            drs_max = self.params["drs_max_rel"]
            if self.disgas:
                state, _, _ = self.update_state_from_increment(
                    state, st1 * dxx, problem, "rs", relative_max=drs_max
                )
            if self.vapoil:
                state, _, _ = self.update_state_from_increment(
                    state, st2 * dxx, problem, "rv", relative_max=drs_max
                )
        else:
            dsg = self.get_increment(dx, problem, "sg") * ones

        ds = {}
        if self.water:
            ds["water"] = dsw
        if self.oil and self.gas:
            ds["gas"] = dsg
            ds["oil"] = -(dsw + dsg)
        elif self.oil:
            ds["oil"] = -dsw
        elif self.gas:
            ds["gas"] = -dsw

        if len(self.phases) > 1:
            max_ds = np.max(np.abs(np.column_stack(list(ds.values()))), axis=1)
            with np.errstate(divide="ignore"):
                step = np.minimum(self.params["ds_max"] / max_ds, 1.0)
            s = np.array(state["s"], dtype=float)
            for ph, d in ds.items():
                s[:, self.phase_index(ph)] += step * d
            state["s"] = s
            report["saturation_chop"] = float(np.min(step))

        if self.has_dissolution:
            state, num_changes = self.flash(state)
            report["status_changes"] = num_changes
        state["s"] = self.normalize_saturations(state["s"])

        self.update_wells(state, problem, dx, forces)
        for ext in self.extensions:
            state = ext.update_state(self, state, problem, dx)
        return state, report

    def flash(self, state):
        """Handle appearance and disappearance of free gas and free oil.

        Conversions conserve the surface volumes of the hydrocarbon components:

        * status 1 cells with ``rs > rsSat`` release the excess gas as free gas;
        * status 3 cells with negative gas saturation dissolve the deficit
          (with dissolved gas), lowering ``rs`` below saturation;
        * status 2 cells with ``rv > rvSat`` condense the excess oil;
        * status 3 cells with negative oil saturation vaporize the deficit (with
          vaporized oil).

        Returns:
            Tuple of the state and the number of cells that changed status.

        """
        f = self.fluid
        p = state["pressure"]
        s = np.array(state["s"], dtype=float)
        iw = self.phase_index("water") if self.water else None
        io, ig = self.phase_index("oil"), self.phase_index("gas")
        sw = s[:, iw] if iw is not None else np.zeros(p.size)
        so, sg = s[:, io].copy(), s[:, ig].copy()
        rs = np.array(state["rs"], dtype=float)
        rv = np.array(state["rv"], dtype=float)

        status = self._status(state).copy()
        old_status = status.copy()
        st1, st2, st3 = self.status_flags(status)
        rs_sat = np.asarray(f.rsSat(p)) * np.ones(p.size)
        rv_sat = np.asarray(f.rvSat(p)) * np.ones(p.size)
        bO = np.asarray(f.bO(p, rs_sat)) * np.ones(p.size)
        bG = np.asarray(f.bG(p, rv_sat)) * np.ones(p.size)

        if self.disgas:
            appears = st1 & (rs > rs_sat)
            sg[appears] = so[appears] * (rs[appears] - rs_sat[appears]) * (
                bO[appears] / bG[appears]
            )
            so[appears] -= sg[appears]
            rs[appears] = rs_sat[appears]
            status[appears] = 3

            disappears = st3 & (sg < 0)
            has_oil = disappears & (so > 0)
            rs[has_oil] = rs_sat[has_oil] + sg[has_oil] * bG[has_oil] / (
                bO[has_oil] * so[has_oil]
            )
            so[disappears] += sg[disappears]
            sg[disappears] = 0
            status[disappears] = 1
        else:
            disappears = np.zeros(p.size, dtype=bool)

        if self.vapoil:
            appears = st2 & (rv > rv_sat)
            so[appears] = sg[appears] * (rv[appears] - rv_sat[appears]) * (
                bG[appears] / bO[appears]
            )
            sg[appears] -= so[appears]
            rv[appears] = rv_sat[appears]
            status[appears] = 3

            vanishes = st3 & (so < 0) & ~disappears
            has_gas = vanishes & (sg > 0)
            rv[has_gas] = rv_sat[has_gas] + so[has_gas] * bO[has_gas] / (
                bG[has_gas] * sg[has_gas]
            )
            sg[vanishes] += so[vanishes]
            so[vanishes] = 0
            status[vanishes] = 2

        # Consistency of the ratios and saturations with the status.
        st1, st2, st3 = self.status_flags(status)
        if self.disgas:
            rs = np.where(st1, np.clip(rs, 0, rs_sat), rs_sat)
        if self.vapoil:
            rv = np.where(st2, np.clip(rv, 0, rv_sat), rv_sat)
        sg[st1] = 0
        so[st2] = 0
        sg[st2] = 1 - sw[st2]

        s[:, io], s[:, ig] = so, sg
        state["s"] = s
        state["rs"], state["rv"] = rs, rv
        state["status"] = status

        num_changes = int(np.sum(status != old_status))
        if num_changes > 0:
            logger.debug(f"Phase status changed in {num_changes} cells")
        return state, num_changes

    def update_after_convergence(self, state0, state, dt, forces=None):
        report = {}
        for ext in self.extensions:
            state = ext.update_after_convergence(self, state0, state)
        return state, report
