import numpy as np
import pytest

import resflow as rf
from resflow.ad.forward_mode import initAdArrays


class TestCoreyRelperm:
    def test_endpoints(self):
        kr = rf.CoreyRelperm(n=(2, 3, 2), sr=(0.2, 0.1, 0.0), kr_max=(0.5, 1.0, 0.9))
        assert np.allclose(kr.krW(np.array([0.1, 0.2, 0.9, 1.0])), [0, 0, 0.5, 0.5])
        assert np.allclose(kr.krOW(np.array([0.1, 0.8])), [0.0, 1.0])
        s_norm = (0.55 - 0.2) / 0.7
        assert np.isclose(kr.krW(np.array([0.55]))[0], 0.5 * s_norm**2)

    def test_derivative_of_water_curve(self):
        kr = rf.CoreyRelperm()
        sw = initAdArrays(np.array([0.3, 0.6]))
        k = kr.krW(sw)
        assert np.allclose(k.jac[0].toarray(), np.diag(2 * sw.val))

    def test_three_phase_oil_interpolation(self):
        kr = rf.CoreyRelperm()
        sw, so, sg = np.array([0.3]), np.array([0.5]), np.array([0.2])
        expected = 0.4 * kr.krOG(so) + 0.6 * kr.krOW(so)
        assert np.allclose(kr.krO(sw, so, sg), expected)
        # Without mobile water or gas, the oil-water curve is used.
        assert np.allclose(
            kr.krO(np.zeros(1), np.ones(1), np.zeros(1)), kr.krOW(np.ones(1))
        )

    def test_evaluate_selects_curves(self):
        kr = rf.CoreyRelperm()
        two = kr.evaluate({"water": np.array([0.5]), "oil": np.array([0.5])})
        assert set(two) == {"water", "oil"}
        assert np.allclose(two["oil"], kr.krOW(np.array([0.5])))
        og = kr.evaluate({"oil": np.array([0.5]), "gas": np.array([0.5])})
        assert np.allclose(og["oil"], kr.krOG(np.array([0.5])))

    @pytest.mark.parametrize(
        "kwargs", [{"n": (0.5, 2, 2)}, {"sr": (0.5, 0.5, 0.0)}, {"sr": (-0.1, 0, 0)}]
    )
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            rf.CoreyRelperm(**kwargs)


class TestBlackOilFluid:
    def test_phases(self):
        assert rf.BlackOilFluid().phases == ["water", "oil", "gas"]
        assert rf.BlackOilFluid({"phases": "og"}).phases == ["oil", "gas"]
        with pytest.raises(ValueError):
            rf.BlackOilFluid({"phases": "WX"})
        with pytest.raises(ValueError):
            rf.BlackOilFluid({"viscosity": 1.0})

    def test_reference_values(self):
        fluid = rf.BlackOilFluid()
        p_ref = fluid.params["reference_pressure"]
        assert np.isclose(fluid.bW(p_ref), 1.0)
        assert np.isclose(fluid.bO(p_ref), 1.0)
        assert np.isclose(fluid.bG(p_ref), fluid.params["bG_ref"])
        assert np.isclose(fluid.pv_multiplier(p_ref), 1.0)

    def test_dissolved_gas_swells_oil(self):
        fluid = rf.BlackOilFluid()
        p = np.array([100 * rf.BAR])
        rs = fluid.rsSat(p)
        assert np.all(fluid.bO(p, rs) < fluid.bO(p))
        assert np.all(fluid.muO(p, rs) < fluid.muO(p))
        assert np.all(fluid.rsSat(2 * p) > rs)

    def test_compressibility_derivative(self):
        fluid = rf.BlackOilFluid()
        p = initAdArrays(np.array([150 * rf.BAR]))
        bW = fluid.bW(p)
        assert np.isclose(bW.jac[0].toarray()[0, 0], fluid.params["cW"] * bW.val[0])

    def test_capillary_pressure(self):
        fluid = rf.BlackOilFluid({"pcOW": lambda sw: 1e5 * (1 - sw)})
        assert np.allclose(fluid.pcOW(np.array([0.25])), 0.75e5)
        assert np.allclose(fluid.pcOG(np.array([0.25])), 0.0)


class TestRock:
    def test_scalar_expansion(self):
        rock = rf.Rock(1e-13, 0.2, num_cells=4)
        assert rock.num_cells == 4
        assert np.allclose(rock.perm, 1e-13)

    def test_needs_number_of_cells(self):
        with pytest.raises(ValueError):
            rf.Rock(1e-13, 0.2)

    def test_invalid_porosity(self):
        with pytest.raises(ValueError):
            rf.Rock(1e-13, np.array([0.2, 1.5]))


class TestThermalWater:
    def test_density_decreases_with_temperature(self):
        water = rf.ThermalWaterFluid()
        p = 100 * rf.BAR
        T = rf.CELSIUS_to_KELVIN(np.array([20.0, 60.0, 90.0]))
        rho = water.density(p, T)
        assert np.all(np.diff(rho) < 0)
        assert 950 < rho[-1] < rho[0] < 1010

    def test_surface_shrinkage_is_one(self):
        water = rf.ThermalWaterFluid()
        assert np.isclose(
            water.b(water.reference_pressure, water.surface_temperature), 1.0
        )

    def test_viscosity_decreases_with_temperature(self):
        water = rf.ThermalWaterFluid()
        T = rf.CELSIUS_to_KELVIN(np.array([20.0, 80.0]))
        mu = water.viscosity(1e7, T)
        assert mu[1] < mu[0]
        assert 0.9e-3 < mu[0] < 1.1e-3

    def test_enthalpy_derivative_in_temperature(self):
        water = rf.ThermalWaterFluid()
        T = initAdArrays(np.array([330.0]))
        h = water.enthalpy(1e7, T)
        # The heat capacity dominates the derivative.
        cp = water.specific_heat_capacity()
        assert np.isclose(h.jac[0].toarray()[0, 0], cp, rtol=1e-2)
