"""Two-phase (liquid-vapor) mixture with K-value phase equilibrium.

Equilibrium ratios ``K_i = y_i / x_i`` are given by the Wilson correlation. For a
feed ``z`` the vapor fraction ``V`` solves the Rachford-Rice equation

.. math::

    F(V) = \\sum_i z_i (K_i - 1) / (1 + V (K_i - 1)) = 0.

The equation is solved on values only. Derivatives with respect to the primary
variables are recovered from the implicit function theorem: with ``F`` evaluated on
AdArrays at the converged ``V``, the vapor fraction is corrected to
``V - F / F'(V)``, which has the value ``V`` and the derivative ``-dF / F'``.

"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

import resflow.ad.functions as af
import resflow.utils.common_constants as const
from resflow.ad.forward_mode import AdArray
from resflow.params.fluid import CoreyRelperm

logger = logging.getLogger(__name__)


def wilson_k_values(p, T, p_crit, T_crit, omega) -> list:
    """K-values by the Wilson correlation, one array per component."""
    return [
        (pc / p) * np.exp(5.37 * (1 + w) * (1 - tc / T))
        for pc, tc, w in zip(p_crit, T_crit, omega)
    ]


def rachford_rice(z: np.ndarray, K: np.ndarray, num_iterations: int = 60):
    """Solve the Rachford-Rice equation cell-wise by bisection.

    Parameters:
        z: ``shape=(num_cells, num_components)`` feed fractions.
        K: ``shape=(num_cells, num_components)`` K-values.
        num_iterations: Number of bisection steps.

    Returns:
        Tuple of vapor fractions (clamped to [0, 1]) and a boolean array marking
        cells where both phases are present.

    """

    def F(V):
        return np.sum(z * (K - 1) / (1 + V[:, None] * (K - 1)), axis=1)

    n = z.shape[0]
    f0 = F(np.zeros(n))
    f1 = F(np.ones(n))

    liquid = f0 <= 0
    vapor = f1 >= 0
    two_phase = ~liquid & ~vapor

    V = np.where(vapor, 1.0, 0.0)
    if np.any(two_phase):
        lo = np.zeros(n)
        hi = np.ones(n)
        for _ in range(num_iterations):
            mid = 0.5 * (lo + hi)
            positive = F(mid) > 0
            # F is decreasing in V.
            lo = np.where(positive, mid, lo)
            hi = np.where(positive, hi, mid)
        V[two_phase] = 0.5 * (lo + hi)[two_phase]
    return V, two_phase


class CompositionalFluid:
    """Hydrocarbon mixture with a liquid and a vapor phase, and optional water.

    Attributes:
        names: Component names.
        molar_mass: Molar masses, kg / mol.
        relperm: Relative permeability object.

    """

    def __init__(
        self,
        names: Sequence[str],
        p_crit,
        T_crit,
        acentric_factor,
        molar_mass,
        params: Optional[dict] = None,
    ) -> None:
        """
        Parameters:
            names: Component names.
            p_crit: Critical pressures.
            T_crit: Critical temperatures, Kelvin.
            acentric_factor: Acentric factors.
            molar_mass: Molar masses, kg / mol.
            params: Further properties: ``liquid_molar_density`` (8000 mol / m^3 at
                reference pressure), ``cL`` (1e-9 1/Pa, liquid compressibility),
                ``Z`` (1, vapor compressibility factor), ``muL``, ``muV`` (1 and
                0.02 cP), ``rhoWS`` (1000 kg / m^3), ``cW`` (4e-10 1/Pa), ``muW``
                (1 cP), ``reference_pressure`` (100 bar) and ``relperm``.

        """
        default_params = {
            "liquid_molar_density": 8000.0,
            "cL": 1e-9 / const.PASCAL,
            "Z": 1.0,
            "muL": 1 * const.CENTIPOISE,
            "muV": 0.02 * const.CENTIPOISE,
            "rhoWS": 1000 * const.KILOGRAM / const.METER**3,
            "cW": 4e-10 / const.PASCAL,
            "muW": 1 * const.CENTIPOISE,
            "reference_pressure": 100 * const.BAR,
            "relperm": None,
        }
        if params is not None:
            default_params.update(params)
        self.params = default_params

        self.names = list(names)
        ncomp = len(self.names)
        self.p_crit = np.asarray(p_crit, dtype=float)
        self.T_crit = np.asarray(T_crit, dtype=float)
        self.acentric_factor = np.asarray(acentric_factor, dtype=float)
        self.molar_mass = np.asarray(molar_mass, dtype=float)
        for arr in (self.p_crit, self.T_crit, self.acentric_factor, self.molar_mass):
            if arr.size != ncomp:
                raise ValueError("Component properties must be given per component")
        if ncomp < 2:
            raise ValueError("A compositional fluid needs at least two components")

        self.rhoWS: float = self.params["rhoWS"]
        self.relperm: CoreyRelperm = self.params["relperm"] or CoreyRelperm()

    @property
    def num_components(self) -> int:
        return len(self.names)

    def k_values(self, p, T) -> list:
        return wilson_k_values(p, T, self.p_crit, self.T_crit, self.acentric_factor)

    def flash(self, p, T, z: list):
        """Split the feed into liquid and vapor.

        Parameters:
            p: Pressure, array or AdArray.
            T: Temperature, array.
            z: List of overall mole fractions, one entry per component.

        Returns:
            Tuple of liquid mole fractions (list), vapor mole fractions (list), vapor
            mole fraction ``V`` and the boolean two-phase indicator.

        """
        K = self.k_values(p, T)
        K_val = np.column_stack([af.value(k) for k in K])
        z_val = np.column_stack([af.value(zi) for zi in z])

        V_val, two_phase = rachford_rice(z_val, K_val)

        is_ad = any(isinstance(v, AdArray) for v in list(K) + list(z))
        if is_ad:
            # Implicit function correction. F and dF/dV are evaluated at the
            # converged vapor fraction, the latter on values only.
            F = 0
            dF = np.zeros_like(V_val)
            for zi, Ki in zip(z, K):
                denom = 1 + V_val * (af.value(Ki) - 1)
                F = F + zi * (Ki - 1) / (1 + V_val * (Ki - 1))
                dF -= af.value(zi) * (af.value(Ki) - 1) ** 2 / denom**2
            dF[~two_phase] = 1.0
            V = af.where(two_phase, V_val - F / dF, V_val)
        else:
            V = V_val

        x, y = [], []
        for zi, Ki in zip(z, K):
            xi = zi / (1 + V * (Ki - 1))
            x.append(xi)
            y.append(Ki * xi)
        return x, y, V, two_phase

    def liquid_molar_density(self, p):
        prm = self.params
        return prm["liquid_molar_density"] * af.exp(
            prm["cL"] * (p - prm["reference_pressure"])
        )

    def vapor_molar_density(self, p, T):
        return p / (self.params["Z"] * const.GAS_CONSTANT * T)

    def mass_density(self, molar_density, fractions: list):
        """Mass density of a phase from its molar density and composition."""
        mean_molar_mass = 0
        for xi, Mi in zip(fractions, self.molar_mass):
            mean_molar_mass = mean_molar_mass + xi * Mi
        return molar_density * mean_molar_mass

    def saturations(self, V, rhoL, rhoV):
        """Liquid and vapor saturations of the hydrocarbon pore space."""
        vol_L = (1 - V) / rhoL
        vol_V = V / rhoV
        sV = vol_V / (vol_L + vol_V)
        return 1 - sV, sV

    def muL(self, p):
        return self.params["muL"] + 0 * p

    def muV(self, p):
        return self.params["muV"] + 0 * p

    def bW(self, p):
        prm = self.params
        return af.exp(prm["cW"] * (p - prm["reference_pressure"]))

    def muW(self, p):
        return self.params["muW"] + 0 * p
