"""Elementary functions acting on AdArrays.

All functions also accept plain numbers and numpy arrays, in which case they fall back
to the corresponding numpy function.

"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sps

from resflow.ad.forward_mode import AdArray

__all__ = [
    "exp",
    "log",
    "sqrt",
    "abs",
    "sign",
    "maximum",
    "minimum",
    "where",
    "sum",
    "matmul",
    "value",
]


def exp(var):
    if isinstance(var, AdArray):
        val = np.exp(var.val)
        der = var.diagvec_mul_jac(val)
        return AdArray(val, der)
    else:
        return np.exp(var)


def log(var):
    if not isinstance(var, AdArray):
        return np.log(var)

    val = np.log(var.val)
    der = var.diagvec_mul_jac(1 / var.val)
    return AdArray(val, der)


def sqrt(var):
    if not isinstance(var, AdArray):
        return np.sqrt(var)
    return var**0.5


def sign(var):
    """Sign of the values. The derivative of the sign function is zero almost
    everywhere, so a plain array is returned also for AdArrays."""
    if not isinstance(var, AdArray):
        return np.sign(var)
    else:
        return np.sign(var.val)


def abs(var):
    if not isinstance(var, AdArray):
        return np.abs(var)
    else:
        val = np.abs(var.val)
        jac = var.diagvec_mul_jac(sign(var))
        return AdArray(val, jac)


def value(var) -> np.ndarray:
    """Strip the derivatives from an AdArray. Other input is returned as an array."""
    if isinstance(var, AdArray):
        return var.val
    return np.asarray(var)


def sum(var):
    if isinstance(var, AdArray):
        return var.sum()
    return np.sum(var)


def matmul(matrix, var):
    """Matrix-vector product ``matrix @ var``.

    Sparse matrices cannot be applied to AdArrays by the ``@`` operator, since scipy
    tries to convert the right operand to an array. This function dispatches to
    :meth:`AdArray.left_multiply` instead.

    """
    if isinstance(var, AdArray):
        return var.left_multiply(matrix)
    return matrix @ var


def where(condition, var1, var2):
    """Elementwise selection, ``var1`` where ``condition`` holds and ``var2``
    elsewhere.

    Either operand may be an AdArray or a constant. Constants get zero derivatives.
    Rows not selected do not contribute to the Jacobian, also if they hold inf or nan.

    """
    if not isinstance(var1, AdArray) and not isinstance(var2, AdArray):
        return np.where(condition, var1, var2)

    template = var1 if isinstance(var1, AdArray) else var2
    cond = np.atleast_1d(np.asarray(condition, dtype=bool))
    n = np.max([cond.size, np.size(value(var1)), np.size(value(var2))])
    cond = np.broadcast_to(cond, (n,))

    a = _broadcast(var1, template, n)
    b = _broadcast(var2, template, n)

    val = np.where(cond, a.val, b.val)
    take_a = sps.diags(cond.astype(float))
    take_b = sps.diags((~cond).astype(float))
    jac = [
        (take_a @ Ja + take_b @ Jb).tocsr()
        for Ja, Jb in zip(a.jac, b.jac)
    ]
    return AdArray(val, jac)


def maximum(var1, var2):
    """Elementwise maximum. At ties the derivative of ``var1`` is used."""
    return where(value(var1) >= value(var2), var1, var2)


def minimum(var1, var2):
    """Elementwise minimum. At ties the derivative of ``var1`` is used."""
    return where(value(var1) <= value(var2), var1, var2)


def _broadcast(var, template: AdArray, n: int) -> AdArray:
    if isinstance(var, AdArray):
        template._check_blocks(var)
        return var._expand(n)
    val = np.broadcast_to(np.asarray(var, dtype=float), (n,)).copy()
    return AdArray(val, [sps.csr_matrix((n, m)) for m in template.block_sizes])
