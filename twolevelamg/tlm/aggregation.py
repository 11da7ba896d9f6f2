"""Strength-of-connection, aggregation, and renumbering.

This module turns a fine matrix into an `AggregatesMap`, the partition of
fine unknowns that implies restriction, prolongation, and the coarse matrix.

Main responsibilities
---------------------
1) Strength-of-connection:
   Build a sparse strength graph C from a PyAMG-style method spec.

2) Aggregation:
   Group the non-skipped vertices of C with a PyAMG aggregation routine
   (standard, naive) or take a predefined partition.

3) Cleanup:
   Attach unaggregated vertices to the neighbouring aggregate with the
   largest strength vote. Vertices with no aggregated strong neighbour are
   marked ISOLATED.

4) Size bounds:
   Split aggregates above `max_aggregate_size` along a breadth-first order
   and merge aggregates below `min_aggregate_size` into their strongest
   neighbour.

5) Renumbering:
   Compact the aggregate ids in order of first appearance, turning every
   ISOLATED vertex into a singleton aggregate and leaving SKIPPED vertices
   without an aggregate.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from scipy.sparse import csr_array, coo_array
from scipy.sparse.csgraph import breadth_first_order

from pyamg.strength import (
    classical_strength_of_connection,
    symmetric_strength_of_connection,
)
from pyamg.aggregation.aggregate import standard_aggregation, naive_aggregation

from .types import (
    AggregatesMap,
    AggregationCriterion,
    IndexArray,
    ISOLATED,
    SKIPPED,
    UNAGGREGATED,
)


def _unpack_arg(v: Any) -> tuple[Any, dict[str, Any]]:
    """Normalize a PyAMG-style method spec into (name, kwargs)."""
    if isinstance(v, tuple):
        return v[0], dict(v[1])
    return v, {}


def build_strength(A, criterion: AggregationCriterion) -> csr_array:
    """Compute the strength-of-connection graph C of A.

    Parameters
    ----------
    A
        CSR fine matrix.
    criterion
        Supplies the strength spec. Supported names:
          - "symmetric"  : `symmetric_strength_of_connection`
          - "classical"  : `classical_strength_of_connection`
          - "abs"        : the absolute values of A
          - "predefined" : kwargs["C"]

    Returns
    -------
    C
        CSR strength graph with explicit zeros removed.
    """
    name, kwargs = criterion.strength_spec()

    if name == "symmetric":
        C = symmetric_strength_of_connection(A, **kwargs)
    elif name == "classical":
        C = classical_strength_of_connection(A, **kwargs)
    elif name == "abs":
        C = abs(A.copy())
    elif name == "predefined":
        C = kwargs["C"]
    else:
        raise ValueError(f"Unrecognized strength-of-connection method: {name!r}")

    C = csr_array(C)
    if C.shape != A.shape:
        raise ValueError(f"strength graph has shape {C.shape}, expected {A.shape}")
    C.eliminate_zeros()
    return C


def _restrict_graph(C: csr_array, keep: np.ndarray) -> csr_array:
    """Drop every edge of C touching a vertex with keep[i] == False."""
    coo = C.tocoo()
    mask = keep[coo.row] & keep[coo.col]
    return coo_array((coo.data[mask], (coo.row[mask], coo.col[mask])), shape=C.shape).tocsr()


def _offdiagonal_weights(C: csr_array) -> csr_array:
    """Return |C| without its diagonal, used as neighbour votes."""
    W = abs(C.tocoo())
    off = W.row != W.col
    W = coo_array((W.data[off], (W.row[off], W.col[off])), shape=C.shape).tocsr()
    W.eliminate_zeros()
    return W


def _aggop_to_assignment(AggOp, n: int) -> IndexArray:
    """Convert an (n x n_aggs) aggregation operator to an assignment array."""
    AggOp = csr_array(AggOp)
    AggOp.eliminate_zeros()
    assignment = np.full(n, UNAGGREGATED, dtype=np.int32)
    rows = np.repeat(np.arange(n, dtype=np.int32), np.diff(AggOp.indptr))
    assignment[rows] = AggOp.indices
    return assignment


def _group_vertices(A, C: csr_array, criterion: AggregationCriterion) -> IndexArray:
    """Run the configured aggregation method and return the raw assignment.

    Unassigned vertices are UNAGGREGATED; ids are not necessarily contiguous.
    """
    n = A.shape[0]
    name, kwargs = _unpack_arg(criterion.aggregate)

    if name == "standard":
        AggOp, _ = standard_aggregation(C, **kwargs)
        return _aggop_to_assignment(AggOp, n)
    if name == "naive":
        AggOp, _ = naive_aggregation(C, **kwargs)
        return _aggop_to_assignment(AggOp, n)
    if name == "predefined":
        if "AggOp" in kwargs:
            AggOp = kwargs["AggOp"]
            if AggOp.shape[0] != n:
                raise ValueError(f"predefined AggOp has {AggOp.shape[0]} rows, expected {n}")
            return _aggop_to_assignment(AggOp, n)
        aggregates = np.asarray(kwargs["aggregates"])
        if aggregates.shape != (n,):
            raise ValueError(f"predefined aggregates have shape {aggregates.shape}, expected ({n},)")
        return np.where(aggregates >= 0, aggregates, UNAGGREGATED).astype(np.int32)

    raise ValueError(f"Unrecognized aggregation method: {name!r}")


def _fill_unaggregated_by_neighbors(W: csr_array, assignment: IndexArray, *, iterate: bool = True) -> None:
    """Assign UNAGGREGATED vertices to neighbour aggregates, in place.

    For each unassigned vertex i the votes ``sum_j W[i, j]`` over aggregated
    neighbours j are accumulated per aggregate and i joins the aggregate with
    the largest vote. Votes are computed from a snapshot of the assignment,
    so the result does not depend on vertex order. With `iterate`, a second
    pass lets newly assigned vertices vote. Vertices that remain unassigned
    are left UNAGGREGATED.
    """
    for _ in range(2 if iterate else 1):
        unassigned = np.flatnonzero(assignment == UNAGGREGATED)
        if unassigned.size == 0:
            return

        snapshot = assignment.copy()
        for i in unassigned:
            s, e = W.indptr[i], W.indptr[i + 1]
            nbrs = W.indices[s:e]
            aggs = snapshot[nbrs]
            mask = aggs >= 0
            if not mask.any():
                continue
            votes = np.bincount(aggs[mask], weights=W.data[s:e][mask])
            assignment[i] = int(np.argmax(votes))


def _aggregate_members(assignment: IndexArray, n_aggs: int) -> list[IndexArray]:
    """Return the member vertices of each aggregate id in [0, n_aggs)."""
    valid = np.flatnonzero(assignment >= 0)
    order = valid[np.argsort(assignment[valid], kind="stable")]
    sizes = np.bincount(assignment[valid], minlength=n_aggs)
    ptr = np.concatenate(([0], np.cumsum(sizes)))
    return [order[ptr[k] : ptr[k + 1]] for k in range(n_aggs)]


def _bfs_order(W: csr_array, members: IndexArray) -> IndexArray:
    """Breadth-first ordering of `members` through edges of W that stay inside the set.

    Each connected piece of the induced subgraph is traversed from its
    lowest-numbered member.
    """
    sub = csr_array(W[members, :][:, members])
    seen = np.zeros(members.size, dtype=bool)
    pieces: list[IndexArray] = []
    for seed in range(members.size):
        if seen[seed]:
            continue
        nodes = breadth_first_order(sub, seed, directed=False, return_predecessors=False)
        seen[nodes] = True
        pieces.append(nodes)
    return members[np.concatenate(pieces)].astype(np.int32)


def _split_large_aggregates(W: csr_array, assignment: IndexArray, n_aggs: int, max_size: int) -> int:
    """Split aggregates larger than max_size in place; return the new id bound."""
    next_id = n_aggs
    for members in _aggregate_members(assignment, n_aggs):
        if members.size <= max_size:
            continue
        order = _bfs_order(W, members)
        for start in range(max_size, order.size, max_size):
            assignment[order[start : start + max_size]] = next_id
            next_id += 1
    return next_id


def _merge_small_aggregates(
    W: csr_array,
    assignment: IndexArray,
    n_aggs: int,
    min_size: int,
    max_size: int | None,
) -> None:
    """Merge aggregates smaller than min_size into their strongest neighbour, in place.

    A merge is skipped when it would exceed max_size or when the aggregate
    has no strongly connected neighbouring aggregate.
    """
    sizes = np.bincount(assignment[assignment >= 0], minlength=n_aggs).astype(np.int64)

    for k in range(n_aggs):
        if sizes[k] == 0 or sizes[k] >= min_size:
            continue
        verts = np.flatnonzero(assignment == k)

        votes: dict[int, float] = {}
        for i in verts.tolist():
            s, e = W.indptr[i], W.indptr[i + 1]
            for j, w in zip(W.indices[s:e].tolist(), W.data[s:e].tolist()):
                a = int(assignment[j])
                if a >= 0 and a != k:
                    votes[a] = votes.get(a, 0.0) + w

        for target, _ in sorted(votes.items(), key=lambda kv: (-kv[1], kv[0])):
            if max_size is None or sizes[target] + verts.size <= max_size:
                assignment[verts] = target
                sizes[target] += verts.size
                sizes[k] = 0
                break


def build_aggregates(
    A,
    C: csr_array,
    criterion: AggregationCriterion,
    *,
    excluded: np.ndarray | None = None,
) -> tuple[AggregatesMap, int, int, int, int]:
    """Partition the vertices of A into aggregates.

    Parameters
    ----------
    A
        CSR fine matrix.
    C
        Strength graph of A (see `build_strength`).
    criterion
        Aggregation method and aggregate size bounds.
    excluded
        Optional boolean mask of vertices to skip.

    Returns
    -------
    aggregates, n_total, n_isolated, n_singleton, n_skipped
        `aggregates` holds aggregate ids, ISOLATED and SKIPPED entries and is
        not yet renumbered. The counts are diagnostic: `n_total` counts the
        aggregates after isolated vertices become singletons, `n_singleton`
        counts aggregates of size one that are not isolated vertices.
    """
    n = A.shape[0]
    if excluded is None:
        excluded = np.zeros(n, dtype=bool)
    keep = ~excluded

    C = _restrict_graph(C, keep)
    W = _offdiagonal_weights(C)

    assignment = _group_vertices(A, C, criterion)
    assignment[excluded] = UNAGGREGATED
    n_aggs = int(assignment.max()) + 1 if assignment.size else 0

    _fill_unaggregated_by_neighbors(W, assignment)

    if criterion.max_aggregate_size is not None:
        n_aggs = _split_large_aggregates(W, assignment, n_aggs, criterion.max_aggregate_size)
    if criterion.min_aggregate_size > 1:
        _merge_small_aggregates(
            W, assignment, n_aggs, criterion.min_aggregate_size, criterion.max_aggregate_size
        )

    assignment[(assignment == UNAGGREGATED) & keep] = ISOLATED
    assignment[excluded] = SKIPPED

    sizes = np.bincount(assignment[assignment >= 0], minlength=n_aggs)
    n_isolated = int(np.count_nonzero(assignment == ISOLATED))
    n_skipped = int(np.count_nonzero(excluded))
    n_singleton = int(np.count_nonzero(sizes == 1))
    n_total = int(np.count_nonzero(sizes)) + n_isolated

    return AggregatesMap(assignment=assignment, n_aggregates=n_aggs), n_total, n_isolated, n_singleton, n_skipped


def renumber_aggregates(aggregates: AggregatesMap, visited: np.ndarray) -> int:
    """Compact the aggregate ids of `aggregates` in place.

    Ids are assigned in order of first appearance along the vertex order.
    Every ISOLATED vertex receives its own new id. SKIPPED vertices keep
    their marker. `visited` is a boolean marker array of length n_fine; it
    must be all False on entry and marks every vertex that was numbered.

    Returns
    -------
    n_aggregates
        Number of aggregates after renumbering.
    """
    old = aggregates.assignment
    if visited.shape != old.shape:
        raise ValueError(f"visited markers have shape {visited.shape}, expected {old.shape}")
    assert not visited.any(), "visited markers must be reset before renumbering"

    new = np.full_like(old, SKIPPED)
    mapping = np.full(max(aggregates.n_aggregates, 0), -1, dtype=np.int64)
    next_id = 0
    for i, a in enumerate(old.tolist()):
        if a == SKIPPED:
            continue
        if a == ISOLATED:
            new[i] = next_id
            next_id += 1
        elif a >= 0:
            if mapping[a] < 0:
                mapping[a] = next_id
                next_id += 1
            new[i] = mapping[a]
        else:
            raise ValueError(f"vertex {i} was left unaggregated")
        visited[i] = True

    aggregates.assignment[:] = new
    aggregates.n_aggregates = next_id
    return next_id
