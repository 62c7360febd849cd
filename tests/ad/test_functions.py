import numpy as np
import pytest
import scipy.sparse as sps

from resflow.ad import functions as af
from resflow.ad.forward_mode import AdArray, initAdArrays


class TestElementaryFunctions:
    def test_exp(self):
        val = np.array([1.0, 2.0, 3.0])
        a = initAdArrays(val)
        b = af.exp(a)
        assert np.allclose(b.val, np.exp(val))
        assert np.allclose(b.jac[0].toarray(), np.diag(np.exp(val)))

    def test_log(self):
        val = np.array([1.0, 2.0, 3.0])
        a = initAdArrays(val)
        b = af.log(a)
        assert np.allclose(b.val, np.log(val))
        assert np.allclose(b.jac[0].toarray(), np.diag(1 / val))

    def test_sqrt(self):
        val = np.array([1.0, 4.0, 9.0])
        b = af.sqrt(initAdArrays(val))
        assert np.allclose(b.val, [1, 2, 3])
        assert np.allclose(b.jac[0].toarray(), np.diag(0.5 / np.sqrt(val)))

    def test_abs_and_sign(self):
        val = np.array([-2.0, 0.5, 3.0])
        a = initAdArrays(val)
        b = af.abs(a)
        assert np.allclose(b.val, np.abs(val))
        assert np.allclose(b.jac[0].toarray(), np.diag([-1.0, 1.0, 1.0]))
        sgn = af.sign(a)
        assert isinstance(sgn, np.ndarray)
        assert np.allclose(sgn, [-1, 1, 1])

    @pytest.mark.parametrize("func", ["exp", "log", "sqrt", "abs", "sign"])
    def test_numpy_fallback(self, func):
        val = np.array([1.0, 2.0, 4.0])
        out = getattr(af, func)(val)
        assert not isinstance(out, AdArray)
        assert np.allclose(out, getattr(np, func)(val))


class TestSelection:
    def test_where_between_variables(self):
        a, b = initAdArrays([np.array([1.0, 5.0]), np.array([3.0, 2.0])])
        c = af.where(np.array([True, False]), a, b)
        assert np.allclose(c.val, [1.0, 2.0])
        assert np.allclose(c.full_jac().toarray(), [[1, 0, 0, 0], [0, 0, 0, 1]])

    def test_where_with_constant(self):
        a = initAdArrays(np.array([1.0, 5.0, 2.0]))
        c = af.where(a > 1.5, 0.0, a)
        assert np.allclose(c.val, [1.0, 0.0, 0.0])
        assert np.allclose(c.jac[0].toarray(), np.diag([1.0, 0.0, 0.0]))

    def test_where_broadcasts_scalar_condition(self):
        a = initAdArrays(np.array([1.0, 2.0]))
        c = af.where(True, a, 0.0)
        assert np.allclose(c.val, a.val)

    def test_maximum_minimum(self):
        a, b = initAdArrays([np.array([1.0, 4.0]), np.array([2.0, 3.0])])
        mx = af.maximum(a, b)
        mn = af.minimum(a, b)
        assert np.allclose(mx.val, [2.0, 4.0])
        assert np.allclose(mn.val, [1.0, 3.0])
        assert np.allclose(mx.full_jac().toarray(), [[0, 0, 1, 0], [0, 1, 0, 0]])
        assert np.allclose(mn.full_jac().toarray(), [[1, 0, 0, 0], [0, 0, 0, 1]])

    def test_maximum_with_scalar(self):
        a = initAdArrays(np.array([-1.0, 2.0]))
        mx = af.maximum(a, 0.0)
        assert np.allclose(mx.val, [0.0, 2.0])
        assert np.allclose(mx.jac[0].toarray(), np.diag([0.0, 1.0]))


def test_matmul_dispatch():
    A = sps.csr_matrix(np.array([[1.0, -1.0, 0.0], [0.0, 1.0, -1.0]]))
    x = initAdArrays(np.array([3.0, 1.0, 2.0]))
    y = af.matmul(A, x)
    assert isinstance(y, AdArray)
    assert np.allclose(y.val, [2.0, -1.0])
    assert np.allclose(y.jac[0].toarray(), A.toarray())
    assert np.allclose(af.matmul(A, x.val), [2.0, -1.0])


def test_value_and_sum():
    x = initAdArrays(np.array([1.0, 2.0]))
    assert np.allclose(af.value(x), [1.0, 2.0])
    assert np.allclose(af.value([1.0, 2.0]), [1.0, 2.0])
    assert np.isclose(af.sum(x).val[0], 3.0)
    assert af.sum(np.array([1.0, 2.0])) == 3.0
