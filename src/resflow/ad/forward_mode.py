"""Forward mode automatic differentiation.

An :class:`AdArray` holds the value of a vector valued expression together with its
Jacobian with respect to a set of independent variables. The Jacobian is stored as a
list of sparse blocks, one block per group of independent variables, so that the
derivative of a residual with respect to, say, pressure can be read off without
slicing a monolithic matrix. Assembling the full Jacobian of a system is then a
matter of stacking blocks, see :class:`~resflow.models.linearized_problem.
LinearizedProblem`.

Independent variables are created with :func:`initAdArrays`::

    p, s = initAdArrays([np.ones(3), 0.5 * np.ones(3)])
    r = p * s
    r.jac[0]  # derivative of r with respect to p, a 3 x 3 sparse matrix

Comparison operators act on the values only and return boolean arrays. Expressions
such as ``p > p_bubble`` are used to select between branches and carry no derivative
information.

"""

from __future__ import annotations

from typing import Any, Union

import numpy as np
import scipy.sparse as sps

from resflow.errors import ShapeMismatchError

__all__ = ["AdArray", "initAdArrays"]


def initAdArrays(variables):
    """Initialize a set of independent AD variables.

    Parameters:
        variables: A single array, or a list of arrays. Each array constitutes one
            group of independent variables. The values are copied.

    Returns:
        An AdArray if a single array was given, otherwise a list of AdArrays. Variable
        ``i`` has an identity Jacobian block in position ``i`` and zero blocks in all
        other positions.

    """
    if not isinstance(variables, (list, tuple)):
        return initAdArrays([variables])[0]

    values = [np.array(v, dtype=float).ravel() for v in variables]
    num_val = [v.size for v in values]
    ad_arrays = []
    for i, val in enumerate(values):
        n = num_val[i]
        # Zero Jacobian with respect to all other variables, identity for itself.
        jac = [sps.csr_matrix((n, m)) for m in num_val]
        jac[i] = sps.identity(n, format="csr")
        ad_arrays.append(AdArray(val, jac))

    return ad_arrays


def _value(x: Any) -> np.ndarray:
    if isinstance(x, AdArray):
        return x.val
    return np.asarray(x, dtype=float)


def _common_length(n: int, m: int) -> int:
    if n == m or m == 1:
        return n
    if n == 1:
        return m
    raise ShapeMismatchError(f"Cannot combine arrays of length {n} and {m}.")


class AdArray:
    """Value of a vector expression and its block structured Jacobian.

    Attributes:
        val: One-dimensional array of values.
        jac: List of sparse matrices. Block ``k`` has one row per value and one
            column per independent variable in group ``k``.

    AdArrays behave as values: no operation modifies its operands, and item
    assignment rebinds new arrays rather than writing into existing ones.

    """

    # Make numpy hand binary operations with an AdArray on the right-hand side over to
    # the reflected methods below, instead of broadcasting over the AdArray.
    __array_ufunc__ = None

    # Equality compares values only, so AdArrays are not hashable.
    __hash__ = None  # type: ignore[assignment]

    def __init__(self, val, jac) -> None:
        self.val: np.ndarray = np.atleast_1d(np.asarray(val, dtype=float))
        if self.val.ndim != 1:
            raise ShapeMismatchError("AdArray values must be one-dimensional.")

        if sps.issparse(jac) or isinstance(jac, np.ndarray):
            jac = [jac]

        blocks = []
        for J in jac:
            J = sps.csr_matrix(J)
            if J.shape[0] != self.val.size:
                raise ShapeMismatchError(
                    f"Jacobian block with {J.shape[0]} rows does not match "
                    f"{self.val.size} values."
                )
            blocks.append(J)
        self.jac: list[sps.csr_matrix] = blocks

    def __repr__(self) -> str:
        return (
            f"AdArray of size {self.size} with {self.num_blocks} Jacobian blocks "
            f"of sizes {self.block_sizes}"
        )

    def __str__(self) -> str:
        return f"AdArray(val={self.val})"

    @property
    def size(self) -> int:
        return self.val.size

    @property
    def shape(self) -> tuple[int, ...]:
        return self.val.shape

    @property
    def num_blocks(self) -> int:
        return len(self.jac)

    @property
    def block_sizes(self) -> list[int]:
        """Number of columns in each Jacobian block."""
        return [J.shape[1] for J in self.jac]

    def __len__(self) -> int:
        return self.val.size

    # ---- Arithmetic ------------------------------------------------------------------

    def __add__(self, other) -> AdArray:
        a, b = self._prepare(other)
        if isinstance(b, AdArray):
            return AdArray(a.val + b.val, [Ja + Jb for Ja, Jb in zip(a.jac, b.jac)])
        return AdArray(a.val + b, a.jac)

    def __radd__(self, other) -> AdArray:
        return self.__add__(other)

    def __sub__(self, other) -> AdArray:
        a, b = self._prepare(other)
        if isinstance(b, AdArray):
            return AdArray(a.val - b.val, [Ja - Jb for Ja, Jb in zip(a.jac, b.jac)])
        return AdArray(a.val - b, a.jac)

    def __rsub__(self, other) -> AdArray:
        a, b = self._prepare(other)
        return AdArray(b - a.val, [-J for J in a.jac])

    def __mul__(self, other) -> AdArray:
        a, b = self._prepare(other)
        if isinstance(b, AdArray):
            jac_a = a.diagvec_mul_jac(b.val)
            jac_b = b.diagvec_mul_jac(a.val)
            return AdArray(a.val * b.val, [Ja + Jb for Ja, Jb in zip(jac_a, jac_b)])
        return AdArray(a.val * b, a.diagvec_mul_jac(b))

    def __rmul__(self, other) -> AdArray:
        return self.__mul__(other)

    def __truediv__(self, other) -> AdArray:
        a, b = self._prepare(other)
        if isinstance(b, AdArray):
            val = a.val / b.val
            jac_a = a.diagvec_mul_jac(1 / b.val)
            jac_b = b.diagvec_mul_jac(val / b.val)
            return AdArray(val, [Ja - Jb for Ja, Jb in zip(jac_a, jac_b)])
        return AdArray(a.val / b, a.diagvec_mul_jac(1 / b))

    def __rtruediv__(self, other) -> AdArray:
        a, b = self._prepare(other)
        val = b / a.val
        return AdArray(val, a.diagvec_mul_jac(-val / a.val))

    def __pow__(self, other) -> AdArray:
        a, b = self._prepare(other)
        if isinstance(b, AdArray):
            val = a.val**b.val
            jac_a = a.diagvec_mul_jac(b.val * a.val ** (b.val - 1))
            jac_b = b.diagvec_mul_jac(val * np.log(a.val))
            return AdArray(val, [Ja + Jb for Ja, Jb in zip(jac_a, jac_b)])
        return AdArray(a.val**b, a.diagvec_mul_jac(b * a.val ** (b - 1)))

    def __rpow__(self, other) -> AdArray:
        a, b = self._prepare(other)
        val = b**a.val
        return AdArray(val, a.diagvec_mul_jac(val * np.log(b)))

    def __neg__(self) -> AdArray:
        return AdArray(-self.val, [-J for J in self.jac])

    def __pos__(self) -> AdArray:
        return self

    def __abs__(self) -> AdArray:
        return AdArray(np.abs(self.val), self.diagvec_mul_jac(np.sign(self.val)))

    # ---- Comparisons, on values only -------------------------------------------------

    def __lt__(self, other) -> np.ndarray:
        return self.val < _value(other)

    def __le__(self, other) -> np.ndarray:
        return self.val <= _value(other)

    def __gt__(self, other) -> np.ndarray:
        return self.val > _value(other)

    def __ge__(self, other) -> np.ndarray:
        return self.val >= _value(other)

    def __eq__(self, other) -> np.ndarray:  # type: ignore[override]
        return self.val == _value(other)

    def __ne__(self, other) -> np.ndarray:  # type: ignore[override]
        return self.val != _value(other)

    # ---- Indexing --------------------------------------------------------------------

    def __getitem__(self, index) -> AdArray:
        rows = self._rows(index)
        return AdArray(self.val[rows], [J[rows] for J in self.jac])

    def __setitem__(self, index, value) -> None:
        rows = self._rows(index)
        n, k = self.size, rows.size

        val = self.val.copy()
        if isinstance(value, AdArray):
            self._check_blocks(value)
            if value.size == 1 and k > 1:
                value = value._expand(k)
            if value.size != k:
                raise ShapeMismatchError(
                    f"Cannot assign {value.size} values to {k} positions."
                )
            val[rows] = value.val
        else:
            try:
                val[rows] = np.asarray(value, dtype=float)
            except ValueError as err:
                raise ShapeMismatchError(str(err)) from err

        keep = np.ones(n)
        keep[rows] = 0
        jac = [(sps.diags(keep) @ J).tocsr() for J in self.jac]

        if isinstance(value, AdArray):
            # Scatter the assigned rows into place. With repeated indices the last
            # occurrence wins, consistent with numpy assignment of the values.
            target, first_in_reversed = np.unique(rows[::-1], return_index=True)
            source = k - 1 - first_in_reversed
            scatter = sps.csr_matrix(
                (np.ones(target.size), (target, source)), shape=(n, k)
            )
            jac = [(J + scatter @ Jv).tocsr() for J, Jv in zip(jac, value.jac)]

        self.val = val
        self.jac = jac

    # ---- Reductions and linear algebra -----------------------------------------------

    def sum(self) -> AdArray:
        """Sum of all values, as an AdArray of size one."""
        return AdArray(
            np.array([self.val.sum()]),
            [sps.csr_matrix(J.sum(axis=0)) for J in self.jac],
        )

    def norm(self, ord=np.inf) -> float:
        """Norm of the values. The derivative is not computed."""
        if self.size == 0:
            return 0.0
        return float(np.linalg.norm(self.val, ord))

    def left_multiply(self, matrix) -> AdArray:
        """Compute ``matrix @ self``.

        Parameters:
            matrix: Sparse or dense matrix with as many columns as ``self`` has values.

        Returns:
            AdArray with one value per row of ``matrix``.

        """
        if not sps.issparse(matrix):
            matrix = sps.csr_matrix(np.atleast_2d(matrix))
        if matrix.shape[1] != self.size:
            raise ShapeMismatchError(
                f"Matrix with {matrix.shape[1]} columns cannot multiply an AdArray "
                f"of size {self.size}."
            )
        return AdArray(matrix @ self.val, [(matrix @ J).tocsr() for J in self.jac])

    def copy(self) -> AdArray:
        return AdArray(self.val.copy(), [J.copy() for J in self.jac])

    def full_jac(self) -> sps.csr_matrix:
        """The Jacobian with all blocks stacked horizontally."""
        return sps.hstack(self.jac, format="csr")

    def diagvec_mul_jac(self, a) -> list[sps.csr_matrix]:
        """Compute ``diag(a) @ J`` for every Jacobian block ``J``."""
        a = np.asarray(a, dtype=float)
        if a.size == 1:
            return [J * a.item() for J in self.jac]
        A = sps.diags(np.broadcast_to(a, self.val.shape))
        return [(A @ J).tocsr() for J in self.jac]

    def jac_mul_diagvec(self, a) -> list[sps.csr_matrix]:
        """Compute ``J @ diag(a)`` for every Jacobian block ``J``.

        The vector ``a`` must have one entry per column of each block, so this is
        mostly useful for AdArrays with a single block.

        """
        a = np.asarray(a, dtype=float)
        return [(J @ sps.diags(a)).tocsr() for J in self.jac]

    # ---- Helpers ---------------------------------------------------------------------

    def _rows(self, index) -> np.ndarray:
        # Indexing an arange gives numpy semantics for slices, masks and negative
        # indices, and raises IndexError for out of range access.
        return np.atleast_1d(np.arange(self.size)[index])

    def _check_blocks(self, other: AdArray) -> None:
        if self.block_sizes != other.block_sizes:
            raise ShapeMismatchError(
                f"Incompatible Jacobian blocks: {self.block_sizes} and "
                f"{other.block_sizes}."
            )

    def _expand(self, n: int) -> AdArray:
        """Broadcast an AdArray of size one to size n."""
        if self.size == n:
            return self
        if self.size != 1:
            raise ShapeMismatchError(f"Cannot broadcast size {self.size} to {n}.")
        ones = sps.csr_matrix(np.ones((n, 1)))
        return AdArray(np.repeat(self.val, n), [ones @ J for J in self.jac])

    def _prepare(self, other) -> tuple[AdArray, Union[AdArray, np.ndarray]]:
        """Bring self and other to a common length.

        Constants are returned as arrays that broadcast against the values.

        """
        if isinstance(other, AdArray):
            self._check_blocks(other)
            n = _common_length(self.size, other.size)
            return self._expand(n), other._expand(n)

        b = np.asarray(other, dtype=float)
        if b.ndim > 1:
            raise ShapeMismatchError("Cannot combine an AdArray with a 2d array.")
        n = _common_length(self.size, b.size)
        if b.ndim == 1 and b.size == 1:
            b = b.reshape(())
        return self._expand(n), b
