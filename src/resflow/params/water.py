import resflow.ad.functions as af
import resflow.utils.common_constants as const


class ThermalWaterFluid:
    """Water with temperature and pressure dependent properties.

    Temperatures are given in Kelvin. The correlations are formulated in Celsius and
    converted internally.

    """

    def __init__(
        self,
        compressibility=4e-10 / const.PASCAL,
        reference_pressure=const.ATMOSPHERIC_PRESSURE,
        surface_temperature=const.CELSIUS_to_KELVIN(15 * const.CELSIUS),
        heat_capacity_temperature=None,
    ):
        self.COMPRESSIBILITY = compressibility
        self.reference_pressure = reference_pressure
        self.surface_temperature = surface_temperature
        if heat_capacity_temperature is None:
            self.heat_capacity_temperature = const.CELSIUS_to_KELVIN(20 * const.CELSIUS)
        else:
            self.heat_capacity_temperature = heat_capacity_temperature

        # Surface volumes are measured at reference pressure and surface temperature.
        self.rhoWS = float(self.density(reference_pressure, surface_temperature))

    def thermal_expansion(self, delta_theta):
        return (
            0.0002115
            + 1.32 * 1e-6 * delta_theta
            + 1.09 * 1e-8 * delta_theta**2
        )

    def density(self, p, T):
        theta = const.KELVIN_to_CELSIUS(T)
        theta_0 = 10 * (const.CELSIUS)
        rho_0 = 999.8349 * (const.KILOGRAM / const.METER**3)
        rho = rho_0 / (1.0 + self.thermal_expansion(theta - theta_0))
        return rho * af.exp(self.COMPRESSIBILITY * (p - self.reference_pressure))

    def b(self, p, T):
        """Shrinkage factor, reservoir to surface volumes."""
        return self.density(p, T) / self.rhoWS

    def thermal_conductivity(self, T):
        theta = const.KELVIN_to_CELSIUS(T)
        return (
            0.56
            + 0.002 * theta
            - 1.01 * 1e-5 * theta**2
            + 6.71 * 1e-9 * theta**3
        )

    def specific_heat_capacity(self, T=None):
        # Volumetric heat capacity 4245 kJ / m^3 K, converted to J / kg K
        if T is None:
            T = self.heat_capacity_temperature
        theta = const.KELVIN_to_CELSIUS(T)
        rho = self.density(self.reference_pressure, T)
        return const.KILO * (4245 - 1.841 * theta) / rho

    def viscosity(self, p, T):
        mu_0 = 2.414 * 1e-5 * (const.PASCAL * const.SECOND)
        return mu_0 * 10 ** (247.8 / (T - 140)) + 0 * p

    def internal_energy(self, p, T):
        """Specific internal energy, J / kg, relative to 0 Celsius."""
        cp = self.specific_heat_capacity()
        return cp * const.KELVIN_to_CELSIUS(T) + 0 * p

    def enthalpy(self, p, T):
        """Specific enthalpy, J / kg."""
        return self.internal_energy(p, T) + p / self.density(p, T)

    def hydrostatic_pressure(self, depth, T=None):
        if T is None:
            T = self.surface_temperature
        rho = self.density(self.reference_pressure, T)
        return rho * depth * const.GRAVITY_ACCELERATION + self.reference_pressure
