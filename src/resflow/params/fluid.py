""" Analytic black-oil fluid properties and relative permeabilities.

The fluid objects provide the properties needed by the black-oil equations as
functions of pressure (and dissolved gas or vaporized oil). All functions accept
numpy arrays as well as AdArrays, so that the same code serves residual evaluation
and linearization.

Shrinkage factors ``b`` are inverse formation volume factors: one reservoir volume
of a phase corresponds to ``b`` surface volumes.

"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

import resflow.ad.functions as af
import resflow.utils.common_constants as const

PHASE_NAMES = ["water", "oil", "gas"]
"""Canonical ordering of the phases."""


class CoreyRelperm:
    """Corey type relative permeabilities.

    Curves are power laws in normalized saturations. The oil relative permeability
    in three-phase flow combines the oil-water and oil-gas curves by saturation
    weighted interpolation.

    Attributes:
        n: Corey exponents for water, oil and gas.
        sr: Residual saturations for water, oil and gas.
        kr_max: End point relative permeabilities for water, oil and gas.

    """

    def __init__(
        self,
        n=(2.0, 2.0, 2.0),
        sr=(0.0, 0.0, 0.0),
        kr_max=(1.0, 1.0, 1.0),
    ) -> None:
        self.n = np.asarray(n, dtype=float)
        self.sr = np.asarray(sr, dtype=float)
        self.kr_max = np.asarray(kr_max, dtype=float)
        if np.any(self.n < 1):
            raise ValueError("Corey exponents must be at least one")
        if np.any(self.sr < 0) or self.sr.sum() >= 1:
            raise ValueError("Residual saturations must be non-negative, sum below 1")

    def _corey(self, s, sr: float, sr_other: float, n: float, kr_max: float):
        s_norm = (s - sr) / (1 - sr - sr_other)
        s_norm = af.minimum(af.maximum(s_norm, 0.0), 1.0)
        return kr_max * s_norm**n

    def krW(self, sw):
        return self._corey(sw, self.sr[0], self.sr[1], self.n[0], self.kr_max[0])

    def krOW(self, so):
        return self._corey(so, self.sr[1], self.sr[0], self.n[1], self.kr_max[1])

    def krOG(self, so):
        return self._corey(so, self.sr[1], self.sr[2], self.n[1], self.kr_max[1])

    def krG(self, sg):
        return self._corey(sg, self.sr[2], self.sr[1], self.n[2], self.kr_max[2])

    def krO(self, sw, so, sg):
        """Three-phase oil relative permeability.

        The oil-water and oil-gas curves are weighted by the mobile water and gas
        saturations. Where neither is mobile, the oil-water curve is used.

        """
        swc = self.sr[0]
        d = sg + sw - swc
        d_val = af.value(d)
        ok = d_val > 0
        safe_d = af.where(ok, d, 1.0)
        ww = af.where(ok, (sw - swc) / safe_d, 1.0)
        return (1 - ww) * self.krOG(so) + ww * self.krOW(so)

    def evaluate(self, saturations: dict):
        """Relative permeabilities of the phases present in ``saturations``.

        Parameters:
            saturations: Map from phase name to saturation.

        Returns:
            dict: Map from phase name to relative permeability.

        """
        sw = saturations.get("water")
        so = saturations.get("oil")
        sg = saturations.get("gas")

        kr = {}
        if sw is not None:
            kr["water"] = self.krW(sw)
        if sg is not None:
            kr["gas"] = self.krG(sg)
        if so is not None:
            if sw is not None and sg is not None:
                kr["oil"] = self.krO(sw, so, sg)
            elif sg is not None:
                kr["oil"] = self.krOG(so)
            else:
                kr["oil"] = self.krOW(so)
        return kr


class BlackOilFluid:
    """Black-oil fluid with correlation based properties.

    Water and dead oil are slightly compressible. Gas shrinkage is proportional to
    pressure. With dissolved gas, the saturated gas-oil ratio grows linearly with
    pressure, and dissolved gas swells the oil and reduces its viscosity. Vaporized
    oil is treated in the same way on the gas side.

    All parameters are given in SI units. The default values describe a light oil
    at moderate pressure.

    """

    def __init__(self, params: Optional[dict] = None) -> None:
        """Initialization of the black-oil fluid.

        Parameters:
            params: Fluid parameters. Recognized keys, with defaults in parentheses:
                ``phases`` ("WOG", active phases among W, O, G),
                ``rhoWS``, ``rhoOS``, ``rhoGS`` (1000, 800, 1 kg/m^3, surface
                densities), ``muW``, ``muO``, ``muG`` (1, 5, 0.02 cP, viscosities),
                ``cW``, ``cO`` (4e-10, 1e-9 1/Pa, compressibilities), ``cR`` (0,
                rock compressibility), ``reference_pressure`` (100 bar),
                ``bG_ref`` (100, gas shrinkage at reference pressure),
                ``rs_per_pressure`` (1e-6 1/Pa), ``rv_per_pressure`` (1e-10 1/Pa),
                ``bO_rs`` (0.01, oil swelling per unit rs), ``muO_rs`` (0.005,
                oil viscosity reduction per unit rs), ``pcOW``, ``pcOG`` (None,
                capillary pressure functions of water and gas saturation), and
                ``relperm`` (CoreyRelperm()).

        """
        default_params = {
            "phases": "WOG",
            "rhoWS": 1000 * const.KILOGRAM / const.METER**3,
            "rhoOS": 800 * const.KILOGRAM / const.METER**3,
            "rhoGS": 1 * const.KILOGRAM / const.METER**3,
            "muW": 1 * const.CENTIPOISE,
            "muO": 5 * const.CENTIPOISE,
            "muG": 0.02 * const.CENTIPOISE,
            "cW": 4e-10 / const.PASCAL,
            "cO": 1e-9 / const.PASCAL,
            "cR": 0.0,
            "reference_pressure": 100 * const.BAR,
            "bG_ref": 100.0,
            "rs_per_pressure": 1e-6 / const.PASCAL,
            "rv_per_pressure": 1e-10 / const.PASCAL,
            "bO_rs": 0.01,
            "muO_rs": 0.005,
            "pcOW": None,
            "pcOG": None,
            "relperm": None,
        }
        if params is not None:
            unknown = set(params) - set(default_params)
            if unknown:
                raise ValueError(f"Unknown fluid parameters {sorted(unknown)}")
            default_params.update(params)
        self.params = default_params

        phases = self.params["phases"].upper()
        if len(phases) == 0 or any(ph not in "WOG" for ph in phases):
            raise ValueError(f"Invalid phase specification {phases}")
        self.water = "W" in phases
        self.oil = "O" in phases
        self.gas = "G" in phases

        self.rhoWS: float = self.params["rhoWS"]
        self.rhoOS: float = self.params["rhoOS"]
        self.rhoGS: float = self.params["rhoGS"]
        self.relperm: CoreyRelperm = self.params["relperm"] or CoreyRelperm()

        self._pcOW: Optional[Callable] = self.params["pcOW"]
        self._pcOG: Optional[Callable] = self.params["pcOG"]

    @property
    def phases(self) -> list[str]:
        """Active phases, in canonical order."""
        active = [self.water, self.oil, self.gas]
        return [name for name, is_active in zip(PHASE_NAMES, active) if is_active]

    def surface_densities(self) -> dict:
        return {"water": self.rhoWS, "oil": self.rhoOS, "gas": self.rhoGS}

    # Shrinkage factors

    def bW(self, p):
        prm = self.params
        return af.exp(prm["cW"] * (p - prm["reference_pressure"]))

    def bO(self, p, rs=0.0):
        prm = self.params
        return af.exp(prm["cO"] * (p - prm["reference_pressure"])) / (
            1 + prm["bO_rs"] * rs
        )

    def bG(self, p, rv=0.0):
        # Vaporized oil does not affect the gas shrinkage.
        prm = self.params
        return prm["bG_ref"] * p / prm["reference_pressure"]

    # Viscosities

    def muW(self, p):
        return self.params["muW"] + 0 * p

    def muO(self, p, rs=0.0):
        return self.params["muO"] / (1 + self.params["muO_rs"] * rs) + 0 * p

    def muG(self, p, rv=0.0):
        return self.params["muG"] + 0 * p

    # Saturated ratios

    def rsSat(self, p):
        return self.params["rs_per_pressure"] * p

    def rvSat(self, p):
        return self.params["rv_per_pressure"] * p

    # Capillary pressures

    def pcOW(self, sw):
        if self._pcOW is None:
            return 0 * sw
        return self._pcOW(sw)

    def pcOG(self, sg):
        if self._pcOG is None:
            return 0 * sg
        return self._pcOG(sg)

    def pv_multiplier(self, p):
        """Pore volume multiplier from rock compressibility."""
        prm = self.params
        return af.exp(prm["cR"] * (p - prm["reference_pressure"]))
