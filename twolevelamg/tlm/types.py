"""Typed containers shared by the two-level method internals.

Containers
----------
AggregatesMap
    Fine-vertex to aggregate assignment. Entries are aggregate ids in
    ``[0, n_aggregates)`` or one of the sentinels:
      - UNAGGREGATED : not yet visited by the aggregation procedure
      - ISOLATED     : no strong off-diagonal connection; turned into a
                       singleton aggregate by the renumbering pass
      - SKIPPED      : excluded from aggregation (eliminated or not owned);
                       never receives a coarse correction

AggregationCriterion
    Coarsening configuration: strength threshold, aggregation method,
    aggregate size bounds, prolongation damping, and the options of the
    recursive AMG used on the coarse level.

InverseOperatorResult
    Convergence diagnostics written by a coarse solve.

SolverCategory
    Execution category of a preconditioner or parallel-information object.

Invariants
----------
- After renumbering, ``AggregatesMap.assignment`` only holds ids in
  ``[0, n_aggregates)`` and SKIPPED, and the ids are contiguous.
- Index arrays are stored as int32 numpy arrays.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray

from scipy.sparse import sparray, spmatrix

SparseLike = spmatrix | sparray
MethodSpec = str | tuple[str, dict[str, Any]] | None

IndexArray: TypeAlias = NDArray[np.int32]

UNAGGREGATED = -1
ISOLATED = -2
SKIPPED = -3


class SolverCategory(enum.Enum):
    """Execution category, following the preconditioner contract of Krylov drivers."""

    SEQUENTIAL = "sequential"
    NONOVERLAPPING = "nonoverlapping"
    OVERLAPPING = "overlapping"


@dataclass(slots=True)
class AggregatesMap:
    """Assignment of fine vertices to aggregates.

    Attributes
    ----------
    assignment
        int32 array of length n_fine holding an aggregate id or a sentinel.
    n_aggregates
        Upper bound (exclusive) on the aggregate ids currently in `assignment`.
        Equals the number of aggregates once the map has been renumbered.
    """

    assignment: IndexArray
    n_aggregates: int = 0

    @classmethod
    def allocate(cls, n_fine: int) -> "AggregatesMap":
        """Allocate a map for n_fine vertices with every entry UNAGGREGATED."""
        return cls(assignment=np.full(n_fine, UNAGGREGATED, dtype=np.int32))

    def __len__(self) -> int:
        return int(self.assignment.size)


@dataclass(slots=True, frozen=True)
class AggregationCriterion:
    """Configuration of the aggregation-based coarsening.

    Attributes
    ----------
    theta : float
        Strength-of-connection threshold used by the default strength method.
    strength : str | tuple[str, dict] | None
        PyAMG-style strength spec ("symmetric", "classical", "abs", "predefined").
        None means ("symmetric", {"theta": theta}).
    aggregate : str | tuple[str, dict]
        PyAMG-style aggregation spec ("standard", "naive", "predefined").
    min_aggregate_size : int
        Aggregates smaller than this are merged into a strongly connected
        neighbour when possible.
    max_aggregate_size : int | None
        Aggregates larger than this are split. None disables the bound.
    prolongation_damping : float
        Scaling of the prolongated coarse correction, in (0, 2).
    coarse_max_levels, coarse_max_coarse, coarse_solver, cycle
        Options of the recursive AMG that approximately solves the coarse system.
    """

    theta: float = 0.0
    strength: MethodSpec = None
    aggregate: MethodSpec = "standard"
    min_aggregate_size: int = 1
    max_aggregate_size: int | None = None
    prolongation_damping: float = 1.0
    coarse_max_levels: int = 10
    coarse_max_coarse: int = 10
    coarse_solver: str = "pinv"
    cycle: str = "V"

    def __post_init__(self) -> None:
        if not (self.theta >= 0.0):
            raise ValueError(f"theta must be nonnegative, got {self.theta!r}")
        if self.min_aggregate_size < 1:
            raise ValueError("min_aggregate_size must be at least 1")
        if self.max_aggregate_size is not None and self.max_aggregate_size < self.min_aggregate_size:
            raise ValueError(
                f"max_aggregate_size={self.max_aggregate_size} is smaller than "
                f"min_aggregate_size={self.min_aggregate_size}"
            )
        damp = self.prolongation_damping
        if not (math.isfinite(damp) and 0.0 < damp < 2.0):
            raise ValueError(f"prolongation_damping must lie in (0, 2), got {damp!r}")
        if self.coarse_max_levels < 1:
            raise ValueError("coarse_max_levels must be at least 1")
        if self.cycle not in ("V", "W", "F", "AMLI"):
            raise ValueError(f"Unrecognized cycle type: {self.cycle!r}")

    def strength_spec(self) -> tuple[str, dict[str, Any]]:
        """Return the strength spec as (name, kwargs), applying the theta default."""
        if self.strength is None:
            return "symmetric", {"theta": self.theta}
        if isinstance(self.strength, tuple):
            return self.strength[0], dict(self.strength[1])
        return self.strength, {}


@dataclass(slots=True)
class InverseOperatorResult:
    """Diagnostics of one approximate inverse application.

    `reduction` is the ratio of final to initial residual norm. A coarse solve
    that misses the requested reduction sets `converged` to False; nothing is
    raised.
    """

    iterations: int = 0
    reduction: float = float("nan")
    conv_rate: float = float("nan")
    converged: bool = False
    elapsed: float = 0.0
    residuals: list[float] = field(default_factory=list)

    def clear(self) -> None:
        """Reset all fields to their defaults."""
        self.iterations = 0
        self.reduction = float("nan")
        self.conv_rate = float("nan")
        self.converged = False
        self.elapsed = 0.0
        self.residuals = []
