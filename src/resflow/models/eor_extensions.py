"""Enhanced oil recovery extensions of the black-oil model.

An extension adds one component, carried by the water phase, to a
:class:`~resflow.models.black_oil.BlackOilModel`. It contributes a primary variable
(the concentration in water), modifies the phase properties before the fluxes are
computed, and appends one transport equation after the cell equations of the
black-oil model.

Two extensions are provided:

* :class:`PolymerExtension`: polymer increases the water viscosity (Todd-Longstaff
  mixing) and reduces the water permeability through adsorption.
* :class:`SurfactantExtension`: surfactant lowers the oil-water interfacial tension,
  which moves the relative permeabilities towards straight lines at high capillary
  numbers.

The transport equations are scaled by ``dt / (pv * cmax)``, so they are checked in
the maximum norm against ``tolerance_wells`` by the CNV/MB criterion. Rows of cells
without water have no dependency on the concentration. They are replaced by the
trivial equation ``c / cmax = 0``, or rather its linearization around the current
concentration.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

import resflow.ad.functions as af
import resflow.utils.common_constants as const
from resflow.ad.forward_mode import AdArray
from resflow.errors import AssemblyError
from resflow.wells.well import perforation_to_well_map

logger = logging.getLogger(__name__)


class ModelExtension:
    """Base class of components transported with the water phase.

    Subclasses set :attr:`name` and implement :meth:`modify_properties` and
    :meth:`transport_equation`.

    Parameters:
        params: Extension parameters. Common keys are ``cmax`` (maximal
            concentration, kg / m^3), ``adsorption_max`` (maximal adsorbed mass per
            rock mass, kg / kg) and ``adsorption_coefficient`` (Langmuir constant,
            m^3 / kg). Subclasses add their own keys.

    """

    name: str = ""

    def __init__(self, params: Optional[dict] = None) -> None:
        default_params = {
            "cmax": 1.0,
            "adsorption_max": 0.0,
            "adsorption_coefficient": 1.0,
        }
        default_params.update(self.default_params())
        if params is not None:
            unknown = set(params) - set(default_params)
            if unknown:
                raise ValueError(f"Unknown {self.name} parameters {sorted(unknown)}")
            default_params.update(params)
        self.params = default_params
        if self.params["cmax"] <= 0:
            raise ValueError("Maximal concentration must be positive")

    def default_params(self) -> dict:
        return {}

    @property
    def max_name(self) -> str:
        """Name of the state field with the historical maximum concentration."""
        return f"{self.name}_max"

    @property
    def cmax(self) -> float:
        return float(self.params["cmax"])

    # ---- Model and state -------------------------------------------------------------

    def validate_model(self, model) -> None:
        if not model.water:
            raise ValueError(f"The {self.name} extension requires a water phase")
        if self.params["adsorption_max"] > 0 and model.rock is None:
            raise ValueError(f"Adsorption of {self.name} requires rock properties")

    def primary_variable_names(self) -> list[str]:
        return [self.name]

    def get_variable_field(self, name: str):
        """State field of a variable name, or None if the name is unknown."""
        key = name.lower()
        if key in (self.name, self.max_name):
            return key, None
        return None

    def validate_state(self, model, state):
        nc = model.num_cells
        if self.name not in state:
            state[self.name] = np.zeros(nc)
        c = np.asarray(state[self.name], dtype=float).ravel()
        if c.size != nc:
            raise AssemblyError(f"Field {self.name} of size {c.size} for {nc} cells")
        state[self.name] = c
        if self.max_name not in state:
            state[self.max_name] = np.maximum(c, 0.0)
        state[self.max_name] = np.asarray(state[self.max_name], dtype=float).ravel()
        return state

    def primary_values(self, state) -> list:
        return [state[self.name]]

    # ---- Properties ------------------------------------------------------------------

    def adsorption(self, c):
        """Langmuir isotherm, adsorbed mass per rock mass."""
        k = self.params["adsorption_coefficient"]
        return self.params["adsorption_max"] * k * c / (1 + k * c)

    def irreversible_adsorption(self, c, c_max_history):
        """Adsorption at the largest concentration a cell has seen. Adsorbed mass is
        not released when the concentration decreases."""
        return self.adsorption(af.maximum(c, c_max_history))

    def rock_mass_factor(self, model, pv):
        """Rock mass per unit fluid mass density, ``rhoR * bulk rock volume``."""
        if self.params["adsorption_max"] <= 0:
            return 0.0
        poro = model.rock.poro
        return pv * model.rock.DENSITY * (1 - poro) / poro

    def modify_properties(self, model, props: dict, variables: dict, state) -> None:
        """Modify the properties of the current iterate before fluxes are computed."""
        raise NotImplementedError

    def modify_old_properties(self, model, props0: dict, state0) -> None:
        nc = model.num_cells
        c0 = np.asarray(state0.get(self.name, np.zeros(nc)), dtype=float)
        cm0 = np.asarray(state0.get(self.max_name, np.maximum(c0, 0.0)), dtype=float)
        props0[self.name] = {
            "c": c0,
            "ads": self.irreversible_adsorption(c0, cm0),
        }

    def well_mobilities(self, model, props: dict, wells: list, mob: dict) -> dict:
        """Cell mobilities seen by the wells."""
        return mob

    # ---- Equations -------------------------------------------------------------------

    def perforation_concentration(self, wells: list, c):
        """Concentration of the fluid flowing through each perforation.

        Injectors inject their own concentration, producers produce at the
        concentration of the perforated cell.

        """
        cells = np.concatenate([w.cells for w in wells])
        perf2well = perforation_to_well_map(wells)
        injector = np.array([w.is_injector for w in wells])[perf2well]
        c_inj = np.array([getattr(w, self.name) for w in wells], dtype=float)[
            perf2well
        ]
        return af.where(injector, c_inj, c[cells]), cells

    def transport_equation(self, model, props, props0, dt, wells):
        """Unscaled conservation equation of the component, mass per time."""
        raise NotImplementedError

    def get_equations(
        self, model, props, props0, state0, state, dt, forces, res_only=False
    ):
        """Scaled and stabilized transport equation.

        Returns:
            Tuple of equations, names and types.

        """
        wells = forces.wells if forces is not None else []
        eq = self.transport_equation(model, props, props0, dt, wells)
        eq = eq * (dt / (model.operators.pv * self.cmax))

        c = props[self.name]["c"]
        if not res_only and isinstance(eq, AdArray):
            names = model.get_primary_variable_names(wells)
            eq = self.stabilize(model, eq, c, names.index(self.name))
        return [eq], [self.name], ["cell"]

    def stabilize(self, model, eq: AdArray, c, block: int) -> AdArray:
        """Replace rows without dependency on the concentration.

        A row is degenerate if the magnitude of its diagonal entry is below
        ``stabilization_epsilon`` times the mean magnitude of the diagonal.

        """
        diagonal = np.abs(eq.jac[block].diagonal())
        tol = model.params["stabilization_epsilon"]
        threshold = tol * np.mean(diagonal) if diagonal.size > 0 else 0.0
        if threshold == 0:
            threshold = tol
        bad = diagonal < threshold
        if np.any(bad):
            logger.debug(f"Stabilized {np.sum(bad)} {self.name} equations")
            eq[bad] = c[bad] / self.cmax
        return eq

    # ---- State update ----------------------------------------------------------------

    def update_state(self, model, state, problem, dx):
        """Add the concentration increment and cap to ``[0, cmax]``."""
        if self.name not in problem.primary_variables:
            return state
        state, _, _ = model.update_state_from_increment(state, dx, problem, self.name)
        return model.cap_property(state, self.name, 0.0, self.cmax)

    def update_after_convergence(self, model, state0, state):
        state[self.max_name] = np.maximum(state[self.max_name], state[self.name])
        return state


class PolymerExtension(ModelExtension):
    """Polymer flooding.

    Polymer in water is mixed with the water by the Todd-Longstaff model. With the
    mixing parameter ``omega``, the effective viscosity multipliers of water and
    polymer are

    .. math::

        \\mu_{w,eff} = \\frac{\\mu_m(c)^\\omega}{1 - \\bar c + \\bar c / a}, \\quad
        \\mu_{p,eff} = a \\mu_m(c)^\\omega, \\quad a = \\mu_m(c_{max})^{1 - \\omega},

    with ``cbar = c / cmax``. Adsorbed polymer reduces the water permeability by the
    factor ``Rk = 1 + (rrf - 1) ads / ads_max``. The polymer is excluded from the
    dead pore space fraction ``dps`` of the water.

    Parameters:
        params: In addition to the common keys: ``mixing_parameter`` (1),
            ``viscosity_coefficient`` (5 m^3 / kg, linear viscosity multiplier
            ``1 + coef * c``), ``dead_pore_space`` (0) and
            ``residual_resistance_factor`` (1).

    """

    name = "polymer"

    def default_params(self) -> dict:
        return {
            "cmax": 3.0 * const.KILOGRAM / const.METER**3,
            "mixing_parameter": 1.0,
            "viscosity_coefficient": 5.0,
            "dead_pore_space": 0.0,
            "residual_resistance_factor": 1.0,
            "adsorption_max": 1e-5,
            "adsorption_coefficient": 10.0,
        }

    def viscosity_multiplier(self, c):
        return 1 + self.params["viscosity_coefficient"] * c

    def mixing(self, c):
        """Todd-Longstaff mixing.

        Returns:
            Tuple of the effective water and polymer viscosity multipliers and the
            mixing factor ``a``.

        """
        omega = self.params["mixing_parameter"]
        a = self.viscosity_multiplier(self.cmax) ** (1 - omega)
        cbar = c / self.cmax
        b = 1 / (1 - cbar + cbar / a)
        mult = self.viscosity_multiplier(c) ** omega
        return b * mult, a * mult, a

    def permeability_reduction(self, ads):
        ads_max = self.params["adsorption_max"]
        if ads_max <= 0:
            return 1.0 + 0 * ads
        return 1 + (self.params["residual_resistance_factor"] - 1) * ads / ads_max

    def modify_properties(self, model, props, variables, state) -> None:
        c = variables[self.name]
        mu_w_eff, mu_p_eff, a = self.mixing(c)
        ads = self.irreversible_adsorption(c, state[self.max_name])
        Rk = self.permeability_reduction(ads)

        krW = props["kr"]["water"]
        muW = props["mu"]["water"]
        mobW = krW / (muW * mu_w_eff * Rk)
        props["mob"]["water"] = mobW
        props[self.name] = {
            "c": c,
            "ads": ads,
            "a": a,
            "mob": krW / (muW * mu_p_eff * Rk) * c,
            "mu_w_eff": mu_w_eff,
        }

    def well_mobilities(self, model, props, wells, mob):
        """Injected polymer is fully mixed with the water in the well bore."""
        injector_cells = np.concatenate(
            [w.cells for w in wells if w.is_injector] + [np.zeros(0, dtype=int)]
        )
        if injector_cells.size == 0:
            return mob
        in_injector = np.zeros(model.num_cells, dtype=bool)
        in_injector[injector_cells] = True

        poly = props[self.name]
        mixed = mob["water"] * poly["mu_w_eff"] / self.viscosity_multiplier(poly["c"])
        mob = dict(mob)
        mob["water"] = af.where(in_injector, mixed, mob["water"])
        return mob

    def transport_equation(self, model, props, props0, dt, wells):
        op = model.operators
        poly, poly0 = props[self.name], props0[self.name]
        c, c0 = poly["c"], poly0["c"]
        bW, bW0 = props["b"]["water"], props0["b"]["water"]
        sW, sW0 = props["sat"]["water"], props0["sat"]["water"]
        pv, pv0 = props["pv"], props0["pv"]
        dps = self.params["dead_pore_space"]

        eq = (1 - dps) * (pv * bW * sW * c - pv0 * bW0 * sW0 * c0) / dt
        eq = eq + self.rock_mass_factor(model, pv) * (poly["ads"] - poly0["ads"]) / dt

        flagW = props["flags"]["water"]
        vP = -op.face_upstream(flagW, poly["mob"]) * op.T * props["dp"]["water"]
        eq = eq + op.div(op.face_upstream(flagW, bW) * vP)

        if len(wells) > 0:
            c_perf, cells = self.perforation_concentration(wells, c)
            a = poly["a"]
            cbar = c_perf / self.cmax
            cqP = c_perf * props["cqs"]["water"] / (a + (1 - a) * cbar)
            eq = model.add_cell_rates(eq, cells, cqP)
        return eq


class SurfactantExtension(ModelExtension):
    """Surfactant flooding.

    The capillary number of a cell is estimated from the water potential
    differences over its connections,

    .. math::

        N_c = \\frac{\\overline{T |\\Delta p_w|}}{pv^{2/3} \\sigma(c)},

    with the interfacial tension ``sigma(c) = ift_min + (ift0 - ift_min)
    exp(-c / c_ref)``. Between the bounds on ``log10(Nc)`` the relative
    permeabilities are interpolated linearly between the immiscible curves of the
    fluid and straight lines with the end points ``swcon_sft`` and ``sores_sft``.
    The capillary number is evaluated on values only.

    Parameters:
        params: In addition to the common keys: ``ift0`` (0.03 N / m),
            ``ift_min`` (1e-5 N / m), ``c_ref`` (1 kg / m^3), ``log_nc_bounds``
            ((-5, -2.5)), ``swcon_sft`` (0), ``sores_sft`` (0) and
            ``viscosity_coefficient`` (0.5 m^3 / kg).

    """

    name = "surfactant"

    def default_params(self) -> dict:
        return {
            "cmax": 50.0 * const.KILOGRAM / const.METER**3,
            "ift0": 0.03,
            "ift_min": 1e-5,
            "c_ref": 1.0,
            "log_nc_bounds": (-5.0, -2.5),
            "swcon_sft": 0.0,
            "sores_sft": 0.0,
            "viscosity_coefficient": 0.5,
            "adsorption_max": 1e-5,
            "adsorption_coefficient": 1.0,
        }

    def validate_model(self, model) -> None:
        super().validate_model(model)
        if not model.oil:
            raise ValueError("The surfactant extension requires an oil phase")
        lo, hi = self.params["log_nc_bounds"]
        if not lo < hi:
            raise ValueError("Capillary number bounds must be increasing")

    def interfacial_tension(self, c):
        prm = self.params
        return prm["ift_min"] + (prm["ift0"] - prm["ift_min"]) * np.exp(
            -np.asarray(c) / prm["c_ref"]
        )

    def capillary_number(self, model, props) -> np.ndarray:
        op = model.operators
        pW = af.value(props["pressures"]["water"])
        rhoW = af.value(props["rho"]["water"])
        dp = op.grad(pW) - op.face_average(rhoW) * op.gdz
        face_rate = op.T * np.abs(dp)

        A = abs(op.C).T
        num_connections = A @ np.ones(op.num_faces)
        mean_rate = (A @ face_rate) / np.maximum(num_connections, 1)

        c = af.value(props[self.name]["c"])
        ift = self.interfacial_tension(np.maximum(c, 0.0))
        return mean_rate / (op.pv ** (2 / 3) * ift)

    def miscibility(self, model, props) -> np.ndarray:
        """Interpolation weight between immiscible (0) and miscible (1) curves."""
        lo, hi = self.params["log_nc_bounds"]
        Nc = self.capillary_number(model, props)
        log_nc = np.clip(np.log10(np.maximum(Nc, 1e-20)), -20, 20)
        m = np.clip((log_nc - lo) / (hi - lo), 0.0, 1.0)
        m[af.value(props[self.name]["c"]) <= 0] = 0.0
        return m

    def relative_permeabilities(self, relperm, sW, m):
        """Oil and water relative permeabilities at miscibility ``m``."""
        sWcon, sOres = relperm.sr[0], relperm.sr[1]
        sWcon_sft = self.params["swcon_sft"]
        sOres_sft = self.params["sores_sft"]

        sNcWcon = m * sWcon_sft + (1 - m) * sWcon
        sNcOres = m * sOres_sft + (1 - m) * sOres
        sNcEff = (sW - sNcWcon) / (1 - sNcWcon - sNcOres)

        # Immiscible curves at the saturation with the same normalized value.
        sNoSft = (1 - sWcon - sOres) * sNcEff + sWcon
        krW_immiscible = relperm.krW(sNoSft)
        krO_immiscible = relperm.krOW(1 - sNoSft)

        s_eff = af.minimum(af.maximum(sNcEff, 0.0), 1.0)
        krW_miscible = relperm.kr_max[0] * s_eff
        krO_miscible = relperm.kr_max[1] * (1 - s_eff)

        krW = m * krW_miscible + (1 - m) * krW_immiscible
        krO = m * krO_miscible + (1 - m) * krO_immiscible
        return krW, krO

    def viscosity_multiplier(self, c):
        return 1 + self.params["viscosity_coefficient"] * c

    def modify_properties(self, model, props, variables, state) -> None:
        c = variables[self.name]
        props[self.name] = {"c": c}
        m = self.miscibility(model, props)

        krW, krO = self.relative_permeabilities(
            model.fluid.relperm, props["sat"]["water"], m
        )
        props["kr"]["water"] = krW
        props["kr"]["oil"] = krO
        props["mob"]["water"] = krW / (
            props["mu"]["water"] * self.viscosity_multiplier(c)
        )
        props["mob"]["oil"] = krO / props["mu"]["oil"]
        props[self.name].update(
            {
                "ads": self.irreversible_adsorption(c, state[self.max_name]),
                "miscibility": m,
            }
        )

    def transport_equation(self, model, props, props0, dt, wells):
        op = model.operators
        sft, sft0 = props[self.name], props0[self.name]
        c, c0 = sft["c"], sft0["c"]
        bW, bW0 = props["b"]["water"], props0["b"]["water"]
        sW, sW0 = props["sat"]["water"], props0["sat"]["water"]
        pv, pv0 = props["pv"], props0["pv"]

        eq = (pv * bW * sW * c - pv0 * bW0 * sW0 * c0) / dt
        eq = eq + self.rock_mass_factor(model, pv) * (sft["ads"] - sft0["ads"]) / dt

        flagW = props["flags"]["water"]
        eq = eq + op.div(op.face_upstream(flagW, bW * c) * props["flux"]["water"])

        if len(wells) > 0:
            c_perf, cells = self.perforation_concentration(wells, c)
            eq = model.add_cell_rates(eq, cells, props["cqs"]["water"] * c_perf)
        return eq
