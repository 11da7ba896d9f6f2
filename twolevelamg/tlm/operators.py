"""Assembled linear operators and their matrix graphs.

`MatrixOperator` is the level operator consumed by the transfer policy, the
smoothers, and the preconditioner: a square CSR matrix with matrix-vector
application. `MatrixGraph` is the structural adjacency of such a matrix
(vertices are unknowns, edges are stored off-diagonal entries), used to derive
the sparsity pattern of the Galerkin product.
"""

from __future__ import annotations

from dataclasses import dataclass
from warnings import warn

import numpy as np

from scipy.sparse import csr_array, issparse, SparseEfficiencyWarning

from pyamg.util.utils import asfptype

from .types import IndexArray, SolverCategory, SparseLike


class MatrixOperator:
    """A linear operator backed by an assembled square CSR matrix.

    Parameters
    ----------
    A
        Square sparse matrix/array, or anything `csr_array` accepts. Non-CSR
        input is converted with a `SparseEfficiencyWarning`.

    The operator keeps a reference to the converted matrix. CSR input with
    int32 index arrays and a floating point dtype is never copied; other
    index types are narrowed to the int32 the PyAMG kernels require.
    """

    category = SolverCategory.SEQUENTIAL

    def __init__(self, A) -> None:
        if not issparse(A) or A.format != "csr":
            try:
                A = csr_array(A)
                warn("Implicit conversion of A to CSR", SparseEfficiencyWarning)
            except Exception as e:
                raise TypeError("Argument A must have type csr_array, "
                                "or be convertible to csr_array") from e
        if A.ndim != 2 or A.shape[0] != A.shape[1]:
            raise ValueError(f"expected square matrix, got shape {A.shape}")
        if A.indices.dtype != np.int32 or A.indptr.dtype != np.int32:
            if A.nnz > np.iinfo(np.int32).max:
                raise ValueError(f"matrix with {A.nnz} stored entries exceeds int32 indexing")
            A = csr_array((A.data, A.indices.astype(np.int32), A.indptr.astype(np.int32)),
                          shape=A.shape)
        self._A = asfptype(A)
        self._cast: dict[np.dtype, SparseLike] = {}

    def getmat(self, dtype=None) -> SparseLike:
        """Return the underlying CSR matrix, or a cached copy cast to `dtype`."""
        if dtype is None or np.dtype(dtype) == self._A.dtype:
            return self._A
        dtype = np.dtype(dtype)
        if dtype not in self._cast:
            self._cast[dtype] = self._A.astype(dtype)
        return self._cast[dtype]

    @property
    def shape(self) -> tuple[int, int]:
        return self._A.shape

    @property
    def dtype(self) -> np.dtype:
        return self._A.dtype

    def apply(self, x: np.ndarray) -> np.ndarray:
        """Return A @ x."""
        return self._A @ x

    def apply_scale_add(self, alpha, x: np.ndarray, y: np.ndarray) -> None:
        """Update y in place: y += alpha * A @ x."""
        y += alpha * (self._A @ x)

    def __repr__(self) -> str:
        return f"MatrixOperator(shape={self.shape}, nnz={self._A.nnz}, dtype={self.dtype})"


@dataclass(slots=True, frozen=True)
class MatrixGraph:
    """Structural off-diagonal adjacency of a square sparse matrix.

    The neighbours of vertex i are ``indices[indptr[i]:indptr[i + 1]]``. The
    diagonal is never part of the graph; explicitly stored zeros are.
    """

    indptr: IndexArray
    indices: IndexArray
    n_vertices: int

    @classmethod
    def from_matrix(cls, A) -> "MatrixGraph":
        """Build the graph of the stored off-diagonal entries of A."""
        A = csr_array(A)
        n = A.shape[0]
        rows = np.repeat(np.arange(n, dtype=np.int32), np.diff(A.indptr))
        cols = A.indices
        off = rows != cols
        counts = np.bincount(rows[off], minlength=n)
        indptr = np.zeros(n + 1, dtype=np.int32)
        np.cumsum(counts, out=indptr[1:])
        return cls(indptr=indptr, indices=cols[off].astype(np.int32), n_vertices=n)

    def adjacency(self, *, with_diagonal: bool = False) -> csr_array:
        """Return the graph as a CSR array of ones, optionally with a unit diagonal."""
        n = self.n_vertices
        data = np.ones(self.indices.size, dtype=float)
        G = csr_array((data, self.indices, self.indptr), shape=(n, n))
        if with_diagonal:
            eye = csr_array((np.ones(n), np.arange(n), np.arange(n + 1)), shape=(n, n))
            G = (G + eye).tocsr()
        return G
