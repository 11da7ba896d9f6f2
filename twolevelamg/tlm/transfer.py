"""Level transfer policies.

A transfer policy creates the coarse level system from the fine operator and
moves vectors between the levels. The usage contract is

    policy.create_coarse_level_system(fine_operator)      # exactly once
    repeat:
        policy.move_to_coarse_level(fine_residual)        # rhs_c = R r, lhs_c = 0
        <coarse solve on get_coarse_level_lhs()/get_coarse_level_rhs()>
        policy.move_to_fine_level(fine_lhs)               # fine_lhs += damp * P lhs_c

The coarse operator never changes after `create_coarse_level_system`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from .aggregation import build_aggregates, build_strength, renumber_aggregates
from .galerkin import galerkin_build, galerkin_calculate, prolongate_vector, restrict_vector
from .operators import MatrixGraph, MatrixOperator
from .parallel import SequentialInformation
from .stats import TransferStats, _finalize_transfer_stats, _print_transfer_summary
from .types import AggregatesMap, AggregationCriterion


class LevelTransferPolicy(ABC):
    """Abstract transfer between a fine level and the coarse level it creates.

    Subclasses fill the shared coarse state: the coarse operator (shared with
    the coarse solver), the coarse right hand side and the coarse left hand
    side. The coarse vectors are updated in place by the coarse solver.
    """

    def __init__(self) -> None:
        self._operator: MatrixOperator | None = None
        self._rhs: np.ndarray | None = None
        self._lhs: np.ndarray | None = None

    def get_coarse_level_operator(self) -> MatrixOperator | None:
        """Return the coarse level operator (None before the system is created)."""
        return self._operator

    def get_coarse_level_rhs(self) -> np.ndarray:
        """Return the coarse level right hand side."""
        assert self._rhs is not None, "create_coarse_level_system has not been called"
        return self._rhs

    def get_coarse_level_lhs(self) -> np.ndarray:
        """Return the coarse level left hand side."""
        assert self._lhs is not None, "create_coarse_level_system has not been called"
        return self._lhs

    @abstractmethod
    def create_coarse_level_system(self, fine_operator: MatrixOperator) -> None:
        """Algebraically create the coarse level system from the fine operator."""

    @abstractmethod
    def move_to_coarse_level(self, fine_rhs: np.ndarray) -> None:
        """Restrict the fine residual into the coarse rhs and zero the coarse lhs."""

    @abstractmethod
    def move_to_fine_level(self, fine_lhs: np.ndarray) -> None:
        """Add the prolongated coarse lhs to fine_lhs in place."""


class AggregationLevelTransferPolicy(LevelTransferPolicy):
    """Transfer policy that builds the coarse level by aggregation.

    Parameters
    ----------
    criterion
        Aggregation criterion; also supplies the prolongation damping factor.
    excluded
        Optional boolean mask of fine unknowns that take no part in the
        aggregation (they get no aggregate and receive no correction).
    pinfo
        Parallel information object, `SequentialInformation()` by default.
        Rows it does not own are skipped as well.
    print_info
        If True, print the setup diagnostics.
    callback
        Optional callable receiving the `TransferStats` of the setup.
    """

    def __init__(
        self,
        criterion: AggregationCriterion | None = None,
        *,
        excluded: np.ndarray | None = None,
        pinfo=None,
        print_info: bool = False,
        callback: Callable[[TransferStats], None] | None = None,
    ) -> None:
        super().__init__()
        self.criterion = criterion if criterion is not None else AggregationCriterion()
        self.excluded = None if excluded is None else np.asarray(excluded, dtype=bool)
        self.pinfo = pinfo if pinfo is not None else SequentialInformation()
        self.print_info = print_info
        self.callback = callback
        self.stats: TransferStats | None = None
        self._aggregates: AggregatesMap | None = None
        self._owned: np.ndarray | None = None
        self._prolong_damp = self.criterion.prolongation_damping

    @property
    def aggregates(self) -> AggregatesMap | None:
        return self._aggregates

    def _skipped_vertices(self, n: int) -> np.ndarray:
        """Return the mask of vertices excluded from aggregation."""
        skipped = ~self._owned
        if self.excluded is not None:
            if self.excluded.shape != (n,):
                raise ValueError(
                    f"excluded mask has shape {self.excluded.shape}, "
                    f"but the fine operator has {n} rows"
                )
            skipped = skipped | self.excluded
        return skipped

    def create_coarse_level_system(self, fine_operator: MatrixOperator) -> None:
        """Aggregate the fine unknowns and form the Galerkin coarse operator.

        Raises
        ------
        ValueError
            If the excluded mask does not match the operator, if aggregation
            yields no aggregate, or if the coarse matrix is empty or has a
            zero diagonal entry.
        """
        A = fine_operator.getmat()
        n = A.shape[0]
        self._prolong_damp = self.criterion.prolongation_damping
        stats = TransferStats(n_fine=n)

        with stats.timeit("graph"):
            graph = MatrixGraph.from_matrix(A)
            self._owned = self.pinfo.owner_mask(n)
            skipped = self._skipped_vertices(n)

        with stats.timeit("strength"):
            C = build_strength(A, self.criterion)

        with stats.timeit("aggregate"):
            aggregates, *counts = build_aggregates(A, C, self.criterion, excluded=skipped)

        with stats.timeit("renumber"):
            n_coarse = renumber_aggregates(aggregates, np.zeros(n, dtype=bool))
        if n_coarse == 0:
            raise ValueError("aggregation produced no aggregates")

        with stats.timeit("galerkin"):
            matrix = galerkin_build(A, graph, aggregates, n_coarse, pinfo=self.pinfo)
            galerkin_calculate(A, aggregates, matrix, pinfo=self.pinfo)
        _check_coarse_matrix(matrix)

        self._aggregates = aggregates
        self._lhs = np.zeros(matrix.shape[1], dtype=A.dtype)
        self._rhs = np.zeros(matrix.shape[0], dtype=A.dtype)
        self._operator = MatrixOperator(matrix)

        _finalize_transfer_stats(
            stats=stats, aggregates=aggregates, counts=tuple(counts),
            n_coarse=n_coarse, coarse_nnz=matrix.nnz,
        )
        self.stats = stats
        _print_transfer_summary(stats, print_info=self.print_info)
        if self.callback is not None:
            self.callback(stats)

    def _match_coarse_vectors(self, dtype) -> None:
        """Give the coarse vectors the dtype of the operator combined with `dtype`."""
        tp = np.result_type(self._operator.dtype, dtype)
        if tp != self._rhs.dtype:
            self._rhs = np.zeros(self._rhs.shape, dtype=tp)
            self._lhs = np.zeros(self._lhs.shape, dtype=tp)

    def move_to_coarse_level(self, fine_rhs: np.ndarray) -> None:
        assert self._aggregates is not None, "create_coarse_level_system has not been called"
        self._match_coarse_vectors(fine_rhs.dtype)
        restrict_vector(self._aggregates, self._rhs, fine_rhs, owned=self._owned)
        self._lhs[:] = 0

    def move_to_fine_level(self, fine_lhs: np.ndarray) -> None:
        assert self._aggregates is not None, "create_coarse_level_system has not been called"
        prolongate_vector(self._aggregates, self._lhs, fine_lhs, self._prolong_damp)


def _check_coarse_matrix(matrix) -> None:
    """Reject coarse matrices the coarse solver cannot work with."""
    if matrix.shape[0] == 0 or not matrix.data.any():
        raise ValueError("the coarse matrix is empty")
    zero = np.flatnonzero(matrix.diagonal() == 0)
    if zero.size:
        raise ValueError(
            f"the coarse matrix is structurally singular: zero diagonal in rows {zero[:10].tolist()}"
        )
