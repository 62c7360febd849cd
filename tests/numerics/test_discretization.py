import numpy as np
import pytest

import resflow as rf
from resflow.ad.forward_mode import initAdArrays
from resflow.errors import AssemblyError
from resflow.numerics.discretization import DiscreteOperators
from resflow.numerics.fv.tpfa import tpfa_transmissibility


def _line_operators():
    # Three cells in a row, connections 0-1 and 1-2.
    return DiscreteOperators([[0, 1], [1, 2]], T=[2.0, 3.0], pv=np.ones(3))


class TestTpfa:
    def test_homogeneous_unit_cells(self):
        g = rf.CartesianGrid([3])
        T = tpfa_transmissibility(g, np.full(3, 2.0))
        # Harmonic mean of two half transmissibilities 2 * k / (1 / 2).
        assert np.allclose(T[g.internal_faces()], 2.0)

    def test_harmonic_average(self):
        g = rf.CartesianGrid([2])
        T = tpfa_transmissibility(g, np.array([1.0, 3.0]))
        t1, t2 = 2 * 1.0, 2 * 3.0
        assert np.isclose(T[g.internal_faces()][0], 1 / (1 / t1 + 1 / t2))

    def test_anisotropic_permeability(self):
        g = rf.CartesianGrid([2, 2])
        perm = np.tile([1.0, 4.0], (4, 1))
        T = tpfa_transmissibility(g, perm)
        x_faces = [f for f in g.internal_faces() if g.face_normals[0, f] > 0]
        y_faces = [f for f in g.internal_faces() if g.face_normals[1, f] > 0]
        assert np.allclose(T[x_faces], 1.0)
        assert np.allclose(T[y_faces], 4.0)


class TestDiscreteOperators:
    def test_grad_div_and_average(self):
        op = _line_operators()
        x = np.array([1.0, 4.0, 2.0])
        assert np.allclose(op.grad(x), [3.0, -2.0])
        assert np.allclose(op.face_average(x), [2.5, 3.0])
        # Flux 1 from cell 0 to 1, flux 2 from 1 to 2.
        assert np.allclose(op.div(np.array([1.0, 2.0])), [1.0, 1.0, -2.0])

    def test_div_is_minus_transpose_of_grad(self):
        op = _line_operators()
        G = op.grad(np.eye(3))
        D = op.div(np.eye(2))
        assert np.allclose(D, -G.T)

    def test_upstream(self):
        op = _line_operators()
        x = np.array([10.0, 20.0, 30.0])
        assert np.allclose(op.face_upstream(np.array([True, False]), x), [10.0, 30.0])
        with pytest.raises(AssemblyError):
            op.face_upstream(np.array([True]), x)

    def test_operators_on_ad_arrays(self):
        op = _line_operators()
        p = initAdArrays(np.array([1.0, 4.0, 2.0]))
        dp = op.grad(p)
        assert np.allclose(dp.val, [3.0, -2.0])
        assert np.allclose(dp.jac[0].toarray(), [[-1, 1, 0], [0, -1, 1]])
        up = op.face_upstream(np.array([False, True]), p)
        assert np.allclose(up.jac[0].toarray(), [[0, 1, 0], [0, 1, 0]])

    def test_invalid_neighbors(self):
        with pytest.raises(AssemblyError):
            DiscreteOperators([[0, 3]], T=1.0, pv=np.ones(3))
        with pytest.raises(AssemblyError):
            DiscreteOperators([0, 1], T=1.0, pv=np.ones(2))
        with pytest.raises(AssemblyError):
            DiscreteOperators([[0, 1]], T=[1.0, 2.0], pv=np.ones(2))

    def test_from_grid_with_gravity(self):
        g = rf.CartesianGrid([1, 1, 3], physdims=[1.0, 1.0, 3.0])
        rock = rf.Rock(1.0, 0.25, num_cells=3)
        op = DiscreteOperators.from_grid(g, rock, gravity=True)
        assert op.num_cells == 3 and op.num_faces == 2
        assert np.allclose(op.pv, 0.25)
        assert np.allclose(op.T, 1.0)
        assert np.allclose(op.gdz, rf.GRAVITY_ACCELERATION)
        assert np.allclose(op.depth, [0.5, 1.5, 2.5])
        assert np.allclose(op.T_heat, rock.THERMAL_CONDUCTIVITY)

        op = DiscreteOperators.from_grid(g, rock, gravity=False)
        assert np.allclose(op.gdz, 0.0)
