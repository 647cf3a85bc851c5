"""
Matrix-free linear operators and their combinators.

A LinearOperator represents a real linear map A: ℝ^n → ℝ^m. Concrete
operators (dense matrices, diagonals, random sensing matrices, transforms,
the NC buffer) implement apply / apply_adjoint; everything else (columns,
dense materialization) has a generic fallback.

Operators are closed under three combinators:

    compose(A, B, ...)     A·B·...      (inner dimensions must agree)
    block_diag([A1, A2])   diag(A1, A2) (rows and cols are summed)
    scale(A, alpha)        alpha·A

Compositions evaluate lazily: applying A·B to x computes A(B(x)) and never
forms the product matrix. Only to_dense() materializes.
"""

from abc import ABC, abstractmethod

import numpy as np
from scipy.linalg import block_diag as _dense_block_diag

from ..errors import DimensionMismatchError


class LinearOperator(ABC):
    """
    Abstract real linear operator of shape (m, n).

    Parameters
    ----------
    m : int
        Number of rows (length of the output of apply).
    n : int
        Number of columns (length of the input of apply).
    """

    def __init__(self, m, n):
        if m < 0 or n < 0:
            raise ValueError(f"Operator dimensions must be non-negative, got ({m}, {n})")
        self._m = int(m)
        self._n = int(n)

    @property
    def shape(self):
        return (self._m, self._n)

    def rows(self):
        return self._m

    def cols(self):
        return self._n

    @abstractmethod
    def apply(self, x):
        """Return A·x for x of length n."""

    @abstractmethod
    def apply_adjoint(self, y):
        """Return Aᵀ·y for y of length m."""

    def column(self, i):
        """Return column i of A (length m)."""
        self._check_index(i, self._n, 'column')
        e = np.zeros(self._n)
        e[i] = 1.0
        return self.apply(e)

    def column_adjoint(self, i):
        """Return row i of A as a column (length n)."""
        self._check_index(i, self._m, 'row')
        e = np.zeros(self._m)
        e[i] = 1.0
        return self.apply_adjoint(e)

    def to_dense(self):
        """Materialize the operator as an (m, n) ndarray."""
        out = np.zeros((self._m, self._n))
        for i in range(self._n):
            out[:, i] = self.column(i)
        return out

    def to_dense_adjoint(self):
        """Materialize Aᵀ as an (n, m) ndarray."""
        return np.ascontiguousarray(self.to_dense().T)

    def _check_input(self, x, size, name='x'):
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 1 or x.shape[0] != size:
            raise DimensionMismatchError(
                f"{type(self).__name__} of shape {self.shape}: "
                f"{name} must have shape ({size},), got {x.shape}"
            )
        return x

    @staticmethod
    def _check_index(i, bound, what):
        if not 0 <= i < bound:
            raise DimensionMismatchError(f"{what} index {i} out of range [0, {bound})")

    def __matmul__(self, other):
        if isinstance(other, LinearOperator):
            return compose(self, other)
        return self.apply(other)

    def __mul__(self, alpha):
        if isinstance(alpha, LinearOperator):
            return compose(self, alpha)
        return scale(self, alpha)

    __rmul__ = __mul__

    def __repr__(self):
        return f"{type(self).__name__}(shape={self.shape})"


class MatrixOperator(LinearOperator):
    """Operator backed by an explicit dense matrix."""

    def __init__(self, matrix):
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2:
            raise DimensionMismatchError(f"Matrix must be 2-D, got shape {matrix.shape}")
        super().__init__(*matrix.shape)
        self._matrix = matrix

    @property
    def matrix(self):
        return self._matrix

    def apply(self, x):
        x = self._check_input(x, self._n)
        return self._matrix @ x

    def apply_adjoint(self, y):
        y = self._check_input(y, self._m, 'y')
        return self._matrix.T @ y

    def column(self, i):
        self._check_index(i, self._n, 'column')
        return self._matrix[:, i].copy()

    def column_adjoint(self, i):
        self._check_index(i, self._m, 'row')
        return self._matrix[i, :].copy()

    def to_dense(self):
        return self._matrix.copy()


class IdentityOperator(LinearOperator):
    """The n × n identity."""

    def __init__(self, n):
        super().__init__(n, n)

    def apply(self, x):
        return self._check_input(x, self._n).copy()

    def apply_adjoint(self, y):
        return self._check_input(y, self._m, 'y').copy()

    def to_dense(self):
        return np.eye(self._n)


class DiagonalOperator(LinearOperator):
    """
    Square diagonal operator diag(d).

    Used with 0/1 entries as the spatial precoding matrix B, which selects the
    subset of source nodes that contributed to a cluster head's measurement.
    """

    def __init__(self, diag):
        diag = np.asarray(diag, dtype=np.float64).ravel()
        super().__init__(diag.size, diag.size)
        self._diag = diag

    @property
    def diagonal(self):
        return self._diag.copy()

    def set_entry(self, idx, value):
        self._check_index(idx, self._n, 'diagonal')
        self._diag[idx] = float(value)

    def set_diag(self, values):
        values = np.asarray(values, dtype=np.float64).ravel()
        if values.size != self._n:
            raise DimensionMismatchError(
                f"Diagonal needs {self._n} entries, got {values.size}"
            )
        self._diag = values

    def apply(self, x):
        return self._diag * self._check_input(x, self._n)

    def apply_adjoint(self, y):
        return self._diag * self._check_input(y, self._m, 'y')

    def to_dense(self):
        return np.diag(self._diag)


class ProductOperator(LinearOperator):
    """Lazy product left·right."""

    def __init__(self, left, right):
        if left.cols() != right.rows():
            raise DimensionMismatchError(
                f"Cannot compose {left!r} with {right!r}: "
                f"inner dimensions {left.cols()} != {right.rows()}"
            )
        super().__init__(left.rows(), right.cols())
        self.left = left
        self.right = right

    def apply(self, x):
        x = self._check_input(x, self._n)
        return self.left.apply(self.right.apply(x))

    def apply_adjoint(self, y):
        y = self._check_input(y, self._m, 'y')
        return self.right.apply_adjoint(self.left.apply_adjoint(y))

    def column(self, i):
        self._check_index(i, self._n, 'column')
        return self.left.apply(self.right.column(i))

    def column_adjoint(self, i):
        self._check_index(i, self._m, 'row')
        return self.right.apply_adjoint(self.left.column_adjoint(i))

    def to_dense(self):
        return self.left.to_dense() @ self.right.to_dense()


class BlockDiagonalOperator(LinearOperator):
    """
    Lazy block-diagonal stack diag(A_1, ..., A_K).

    apply([x_1; ...; x_K]) = [A_1·x_1; ...; A_K·x_K]
    """

    def __init__(self, blocks):
        blocks = list(blocks)
        if not blocks:
            raise ValueError("Block-diagonal operator needs at least one block")
        self.blocks = blocks
        self._row_offsets = np.concatenate(([0], np.cumsum([b.rows() for b in blocks])))
        self._col_offsets = np.concatenate(([0], np.cumsum([b.cols() for b in blocks])))
        super().__init__(int(self._row_offsets[-1]), int(self._col_offsets[-1]))

    def apply(self, x):
        x = self._check_input(x, self._n)
        parts = [
            block.apply(x[self._col_offsets[k]:self._col_offsets[k + 1]])
            for k, block in enumerate(self.blocks)
        ]
        return np.concatenate(parts) if parts else np.zeros(0)

    def apply_adjoint(self, y):
        y = self._check_input(y, self._m, 'y')
        parts = [
            block.apply_adjoint(y[self._row_offsets[k]:self._row_offsets[k + 1]])
            for k, block in enumerate(self.blocks)
        ]
        return np.concatenate(parts) if parts else np.zeros(0)

    def column(self, i):
        self._check_index(i, self._n, 'column')
        k = int(np.searchsorted(self._col_offsets, i, side='right') - 1)
        out = np.zeros(self._m)
        out[self._row_offsets[k]:self._row_offsets[k + 1]] = \
            self.blocks[k].column(i - self._col_offsets[k])
        return out

    def to_dense(self):
        return _dense_block_diag(*[block.to_dense() for block in self.blocks])


class ScaledOperator(LinearOperator):
    """Lazy scalar multiple alpha·A."""

    def __init__(self, op, alpha):
        super().__init__(op.rows(), op.cols())
        self.op = op
        self.alpha = float(alpha)

    def apply(self, x):
        return self.alpha * self.op.apply(x)

    def apply_adjoint(self, y):
        return self.alpha * self.op.apply_adjoint(y)

    def column(self, i):
        return self.alpha * self.op.column(i)

    def column_adjoint(self, i):
        return self.alpha * self.op.column_adjoint(i)

    def to_dense(self):
        return self.alpha * self.op.to_dense()


def compose(*operators):
    """
    Lazy product of operators, left to right: compose(A, B, C) = A·B·C.

    Raises
    ------
    DimensionMismatchError
        If two neighbouring operators do not conform.
    """
    if not operators:
        raise ValueError("compose() needs at least one operator")
    result = operators[-1]
    for op in reversed(operators[:-1]):
        result = ProductOperator(op, result)
    return result


def block_diag(operators):
    """Lazy block-diagonal stack of the given operators."""
    return BlockDiagonalOperator(operators)


def scale(op, alpha):
    """Lazy scalar multiple alpha·op."""
    if not np.isscalar(alpha):
        raise TypeError(f"Can only scale by a scalar, got {type(alpha).__name__}")
    return ScaledOperator(op, alpha)


def as_operator(A):
    """Wrap an ndarray as a MatrixOperator; pass operators through."""
    if isinstance(A, LinearOperator):
        return A
    return MatrixOperator(A)
