"""Galerkin coarse operator and aggregate-based transfer of vectors.

With the piecewise-constant prolongation P implied by an `AggregatesMap`
(P[i, k] = 1 iff vertex i belongs to aggregate k) the coarse matrix is

    A_c = R A P,   R = P_owned^T,

where P_owned keeps only the rows owned by this process. Neither P nor R is
needed outside this module; the vector transfers below apply them directly
from the aggregate assignment.

The product is formed in two steps:
  - `galerkin_build` computes the sparsity pattern of A_c from the matrix
    graph and allocates A_c with explicit zeros;
  - `galerkin_calculate` fills the numeric values into that pattern.
"""

from __future__ import annotations

import numpy as np

from scipy.sparse import csr_array

from .operators import MatrixGraph
from .parallel import SequentialInformation
from .types import AggregatesMap


def aggregates_to_prolongator(
    aggregates: AggregatesMap,
    n_aggregates: int,
    *,
    dtype=float,
    rows: np.ndarray | None = None,
) -> csr_array:
    """Return the (n_fine x n_aggregates) piecewise-constant prolongator.

    Parameters
    ----------
    aggregates
        Renumbered aggregate map.
    n_aggregates
        Number of coarse columns.
    dtype
        Value type of the result.
    rows
        Optional boolean mask; rows where it is False are left empty.
    """
    assignment = aggregates.assignment
    mask = assignment >= 0
    if rows is not None:
        mask &= rows
    fine = np.flatnonzero(mask)
    return csr_array(
        (np.ones(fine.size, dtype=dtype), (fine, assignment[fine])),
        shape=(assignment.size, n_aggregates),
    )


def galerkin_build(
    A,
    graph: MatrixGraph,
    aggregates: AggregatesMap,
    n_aggregates: int,
    *,
    pinfo=None,
) -> csr_array:
    """Allocate the coarse matrix with the sparsity pattern of R A P.

    Coarse entry (k, l) is present iff some owned vertex of aggregate k is
    adjacent in `graph` to a vertex of aggregate l, or k == l.

    Returns
    -------
    coarse
        CSR array of shape (n_aggregates, n_aggregates) and the dtype of A,
        with sorted int32 indices and all stored values zero.
    """
    if pinfo is None:
        pinfo = SequentialInformation()
    n = A.shape[0]
    if graph.n_vertices != n or aggregates.assignment.size != n:
        raise ValueError(
            f"matrix has {n} rows but graph has {graph.n_vertices} vertices "
            f"and the aggregate map has {aggregates.assignment.size} entries"
        )

    owned = pinfo.owner_mask(n)
    P = aggregates_to_prolongator(aggregates, n_aggregates)
    R = aggregates_to_prolongator(aggregates, n_aggregates, rows=owned).T.tocsr()
    G = graph.adjacency(with_diagonal=True)

    pattern = (R @ G @ P).tocsr()
    diag = csr_array(
        (np.ones(n_aggregates), np.arange(n_aggregates), np.arange(n_aggregates + 1)),
        shape=(n_aggregates, n_aggregates),
    )
    pattern = (pattern + diag).tocsr()
    pattern.sum_duplicates()
    pattern.sort_indices()

    coarse = csr_array(
        (np.zeros(pattern.nnz, dtype=A.dtype),
         pattern.indices.astype(np.int32), pattern.indptr.astype(np.int32)),
        shape=pattern.shape,
    )
    coarse.has_sorted_indices = True
    return coarse


def galerkin_calculate(A, aggregates: AggregatesMap, coarse: csr_array, *, pinfo=None) -> None:
    """Fill the values of R A P into the pattern allocated by `galerkin_build`.

    Raises
    ------
    ValueError
        If a nonzero of the product falls outside the allocated pattern.
    """
    if pinfo is None:
        pinfo = SequentialInformation()
    n = A.shape[0]
    n_c = coarse.shape[0]

    owned = pinfo.owner_mask(n)
    P = aggregates_to_prolongator(aggregates, n_c, dtype=A.dtype)
    R = aggregates_to_prolongator(aggregates, n_c, dtype=A.dtype, rows=owned).T.tocsr()

    product = (R @ A @ P).tocoo()
    product.sum_duplicates()

    # (row, col) keys of a canonical CSR pattern are sorted.
    pattern_rows = np.repeat(np.arange(n_c, dtype=np.int64), np.diff(coarse.indptr))
    pattern_keys = pattern_rows * n_c + coarse.indices
    keys = product.row.astype(np.int64) * n_c + product.col
    pos = np.minimum(np.searchsorted(pattern_keys, keys), pattern_keys.size - 1)
    if not np.array_equal(pattern_keys[pos], keys):
        raise ValueError("Galerkin product has entries outside of the coarse sparsity pattern")

    coarse.data[:] = 0
    coarse.data[pos] = product.data


def restrict_vector(aggregates: AggregatesMap, coarse: np.ndarray, fine: np.ndarray, *, owned=None) -> None:
    """coarse[k] = sum of fine[i] over the (owned) vertices i of aggregate k."""
    assignment = aggregates.assignment
    mask = assignment >= 0
    if owned is not None:
        mask &= owned
    coarse[:] = 0
    np.add.at(coarse, assignment[mask], fine[mask])


def prolongate_vector(aggregates: AggregatesMap, coarse: np.ndarray, fine: np.ndarray, damp) -> None:
    """fine[i] += damp * coarse[aggregate(i)] for every non-skipped vertex i."""
    assignment = aggregates.assignment
    mask = assignment >= 0
    fine[mask] += damp * coarse[assignment[mask]]
