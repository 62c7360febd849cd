"""Standard well model: perforation inflow, well equations and control equations.

Perforation rates in conserved (surface) units are

.. math::

    q_{\\alpha} = b_{\\alpha} WI \\lambda_{\\alpha} (p_{bh} + \\Delta p_{c} - p),

with the cell mobility for producing perforations and the total mobility times the
injected phase composition for injecting perforations. The well equations state that
the surface rate of each phase equals the sum of its perforation rates, and the
control equation closes the system with either a pressure or a rate target.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import resflow.ad.functions as af
import resflow.utils.common_constants as const
from resflow.errors import AssemblyError
from resflow.wells.well import (
    Well,
    WellSolution,
    perforation_sum_matrix,
    perforation_to_well_map,
)

logger = logging.getLogger(__name__)

RATE_NAMES = {"water": "qWs", "oil": "qOs", "gas": "qGs"}
"""Names of the surface rate variables of each phase."""


class WellModel:
    """Well contributions to a reservoir model.

    Parameters:
        phases: Active phases in canonical order.
        params: ``gravity_acceleration`` used for the hydrostatic pressure drop
            along the well bore.

    """

    def __init__(self, phases: list[str], params: Optional[dict] = None) -> None:
        default_params = {"gravity_acceleration": const.GRAVITY_ACCELERATION}
        if params is not None:
            default_params.update(params)
        self.params = default_params
        self.phases = list(phases)

    def primary_variable_names(self) -> list[str]:
        return [RATE_NAMES[ph] for ph in self.phases] + ["bhp"]

    def get_primary_variables(self, well_solutions: list[WellSolution]) -> list:
        """Current values of the well unknowns, one array per variable name."""
        variables = [
            np.array([getattr(ws, name) for ws in well_solutions], dtype=float)
            for name in self.primary_variable_names()
        ]
        return variables

    @staticmethod
    def well_cells(wells: list[Well]) -> np.ndarray:
        if len(wells) == 0:
            return np.zeros(0, dtype=int)
        return np.concatenate([w.cells for w in wells])

    def _check_compositions(self, wells: list[Well]) -> np.ndarray:
        for w in wells:
            if w.compi.size != len(self.phases):
                raise AssemblyError(
                    f"Well {w.name} has injection composition of size {w.compi.size}"
                    f" for {len(self.phases)} active phases"
                )
        return np.vstack([w.compi for w in wells])

    def connection_pressure_drop(self, wells: list[Well], mob: dict, rho: dict):
        """Hydrostatic pressure difference between the reference depth and each
        perforation.

        The well bore density is the mobility weighted mixture density of the
        perforated cells, averaged over each well, evaluated on values.

        """
        cells = self.well_cells(wells)
        perf2well = perforation_to_well_map(wells)
        P = perforation_sum_matrix(wells)

        mob_val = [af.value(mob[ph])[cells] for ph in self.phases]
        rho_val = [af.value(rho[ph])[cells] for ph in self.phases]
        mob_tot = np.sum(mob_val, axis=0)
        mix = np.sum([m * r for m, r in zip(mob_val, rho_val)], axis=0)
        # Perforations without mobile fluid use the plain phase average.
        no_flow = mob_tot <= 0
        rho_perf = np.where(
            no_flow,
            np.mean(rho_val, axis=0),
            mix / np.where(no_flow, 1.0, mob_tot),
        )
        num_perf = np.array([w.num_perforations for w in wells])
        rho_well = (P @ rho_perf) / num_perf

        dZ = np.concatenate([w.dZ for w in wells])
        return self.params["gravity_acceleration"] * dZ * rho_well[perf2well]

    def compute_well_flux(
        self,
        wells: list[Well],
        p,
        bhp,
        mob: dict,
        b: dict,
        rho: dict,
        rs=None,
        rv=None,
    ) -> tuple[dict, np.ndarray]:
        """Perforation rates in conserved units.

        Parameters:
            wells: Wells.
            p: Cell pressures.
            bhp: Bottom hole pressures, one per well.
            mob: Phase mobilities in cells, keyed by phase name.
            b: Conversion factors from reservoir to conserved units, keyed by phase.
            rho: Phase densities, used for the well bore pressure drop.
            rs, rv: Dissolved gas-oil and vaporized oil-gas ratios in cells. If given,
                dissolved components are added to the surface rates of oil and gas.

        Returns:
            Perforation rates keyed by phase, and the connection pressure drop.

        """
        cells = self.well_cells(wells)
        perf2well = perforation_to_well_map(wells)
        compi = self._check_compositions(wells)

        open_perf = np.concatenate([w.cstatus & w.status for w in wells])
        WI = np.concatenate([w.WI for w in wells]) * open_perf

        cdp = self.connection_pressure_drop(wells, mob, rho)
        drawdown = bhp[perf2well] + cdp - p[cells]
        # Injectors at zero drawdown still carry the injected mixture, so that the
        # bhp derivative points towards injection.
        is_injector = np.array([w.is_injector for w in wells], dtype=bool)
        dd = af.value(drawdown)
        injecting = (dd > 0) | ((dd == 0) & is_injector[perf2well])

        mob_perf = {ph: mob[ph][cells] for ph in self.phases}
        mob_tot = 0
        for ph in self.phases:
            mob_tot = mob_tot + mob_perf[ph]

        q_r = {}
        for k, ph in enumerate(self.phases):
            mob_in = af.where(injecting, mob_tot * compi[perf2well, k], mob_perf[ph])
            q_r[ph] = WI * mob_in * drawdown

        cqs = {ph: b[ph][cells] * q_r[ph] for ph in self.phases}
        if rs is not None and "oil" in cqs and "gas" in cqs:
            free_oil, free_gas = cqs["oil"], cqs["gas"]
            cqs["gas"] = free_gas + rs[cells] * free_oil
            if rv is not None:
                cqs["oil"] = free_oil + rv[cells] * free_gas
        elif rv is not None and "oil" in cqs and "gas" in cqs:
            cqs["oil"] = cqs["oil"] + rv[cells] * cqs["gas"]
        return cqs, cdp

    def well_equations(self, wells: list[Well], q_s: dict, cqs: dict):
        """One equation per active phase and well: surface rate minus the sum of
        perforation rates."""
        P = perforation_sum_matrix(wells)
        eqs, names, types = [], [], []
        for ph in self.phases:
            eqs.append(q_s[ph] - af.matmul(P, cqs[ph]))
            names.append(f"{ph}Wells")
            types.append("perf")
        return eqs, names, types

    def control_equation(self, well_solutions: list[WellSolution], q_s: dict, bhp):
        """Closure equation per well for the control currently in effect.

        Shut wells get the trivial equation ``bhp = bhp``. Their perforations do not
        flow, so the well equations force zero rates.

        """
        ctrl_type = np.array([ws.type for ws in well_solutions])
        val = np.array([ws.val for ws in well_solutions], dtype=float)
        status = np.array([ws.status for ws in well_solutions], dtype=bool)

        def rate(*phases):
            missing = [ph for ph in phases if ph not in q_s]
            if missing:
                raise AssemblyError(f"Rate control on inactive phases {missing}")
            total = 0
            for ph in phases:
                total = total + q_s[ph]
            return total

        expressions = {
            "rate": lambda: rate(*self.phases),
            "orat": lambda: rate("oil"),
            "wrat": lambda: rate("water"),
            "grat": lambda: rate("gas"),
            "lrat": lambda: rate("water", "oil"),
        }

        eq = bhp - val
        for tp, expr in expressions.items():
            is_type = (ctrl_type == tp) & status
            if np.any(is_type):
                eq = af.where(is_type, expr() - val, eq)
        if np.any(~status):
            eq = af.where(status, eq, bhp - af.value(bhp))
        return eq

    def get_well_contributions(
        self,
        wells: list[Well],
        well_solutions: list[WellSolution],
        well_vars: list,
        p,
        mob: dict,
        b: dict,
        rho: dict,
        rs=None,
        rv=None,
    ):
        """Perforation rates and well equations.

        Parameters:
            wells: Wells.
            well_solutions: Well solutions. Perforation rates and connection pressure
                drops are stored on them.
            well_vars: Well unknowns ordered as :meth:`primary_variable_names`.

        Returns:
            Tuple of perforation rates (dict keyed by phase), the list of equations
            (well equations followed by the control equation), their names and
            their types.

        """
        q_s = dict(zip(self.phases, well_vars[:-1]))
        bhp = well_vars[-1]

        cqs, cdp = self.compute_well_flux(wells, p, bhp, mob, b, rho, rs=rs, rv=rv)
        eqs, names, types = self.well_equations(wells, q_s, cqs)
        eqs.append(self.control_equation(well_solutions, q_s, bhp))
        names.append("closureWells")
        types.append("well")

        perf2well = perforation_to_well_map(wells)
        cqs_val = np.column_stack([af.value(cqs[ph]) for ph in self.phases])
        for i, ws in enumerate(well_solutions):
            ws.cqs = cqs_val[perf2well == i]
            ws.cdp = cdp[perf2well == i]
        return cqs, eqs, names, types

    def assign_values_from_control(
        self, well_solutions: list[WellSolution], wells: list[Well]
    ) -> None:
        """Set the controlled well unknowns to their targets.

        Liquid rate controls do not determine the split between water and oil, and
        leave the rates unchanged.

        """
        for ws, w in zip(well_solutions, wells):
            if ws.type == "bhp":
                ws.bhp = ws.val
            elif ws.type == "rate":
                for k, ph in enumerate(self.phases):
                    setattr(ws, RATE_NAMES[ph], ws.val * w.compi[k])
            elif ws.type == "orat":
                ws.qOs = ws.val
            elif ws.type == "wrat":
                ws.qWs = ws.val
            elif ws.type == "grat":
                ws.qGs = ws.val

    def _rate_of_type(self, ws: WellSolution, tp: str) -> float:
        phases = {
            "rate": self.phases,
            "orat": ["oil"],
            "wrat": ["water"],
            "grat": ["gas"],
            "lrat": ["water", "oil"],
        }[tp]
        return sum(getattr(ws, RATE_NAMES[ph]) for ph in phases if ph in self.phases)

    def update_controls(
        self, well_solutions: list[WellSolution], wells: list[Well]
    ) -> int:
        """Switch controls of wells that violate their limits.

        Rate controlled wells switch to pressure control when the bottom hole
        pressure passes the ``bhp`` limit (above it for injectors, below it for
        producers). Pressure controlled wells switch to rate control when a rate
        passes its limit.

        Returns:
            The number of wells that switched control.

        """
        num_switched = 0
        for ws, w in zip(well_solutions, wells):
            if not ws.status or not w.lims:
                continue
            new_control = None
            for tp, lim in w.lims.items():
                if tp == ws.type:
                    continue
                if tp == "bhp":
                    violated = ws.bhp > lim if w.is_injector else ws.bhp < lim
                else:
                    q = self._rate_of_type(ws, tp)
                    violated = q > lim if w.is_injector else q < lim
                if violated:
                    new_control = (tp, lim)
                    break
            if new_control is not None:
                logger.info(
                    f"Well {ws.name}: control switched from {ws.type} to "
                    f"{new_control[0]} with target {new_control[1]}"
                )
                ws.type, ws.val = new_control[0], float(new_control[1])
                num_switched += 1
        return num_switched

    def update_well_solutions(
        self,
        well_solutions: list[WellSolution],
        wells: list[Well],
        increments: dict,
        dp_max_rel: float = np.inf,
    ) -> None:
        """Apply Newton increments to the well unknowns.

        The bottom hole pressure increment is limited to ``dp_max_rel`` times the
        current bottom hole pressure. Rates are not limited. Afterwards, limits are
        checked and the controlled unknowns are set to their targets.

        Parameters:
            well_solutions: Well solutions, updated in place.
            wells: Wells.
            increments: Increments keyed by variable name, one entry per well.
            dp_max_rel: Maximal relative change of the bottom hole pressure.

        """
        for name in self.primary_variable_names():
            dv = np.asarray(increments.get(name, 0.0)) * np.ones(len(well_solutions))
            if name == "bhp" and np.isfinite(dp_max_rel):
                bhp = np.array([ws.bhp for ws in well_solutions])
                max_change = dp_max_rel * np.abs(bhp)
                dv = np.sign(dv) * np.minimum(np.abs(dv), max_change)
            for ws, d in zip(well_solutions, dv):
                setattr(ws, name, getattr(ws, name) + float(d))

        self.update_controls(well_solutions, wells)
        self.assign_values_from_control(well_solutions, wells)
