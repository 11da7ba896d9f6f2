"""Approximate solution of the coarse system by one step of AMG.

The coarse system built by a transfer policy is solved by a recursive PyAMG
hierarchy, applied once per coarse solve.

Classes
-------
AMGCycle
    Adapter over a PyAMG `MultilevelSolver` with the `pre` / `apply` / `post`
    lifecycle of a multilevel preconditioner.
AMGInverseOperator
    The coarse solver handle. Runs `pre` on its first `apply` only, and `post`
    exactly once when it is closed, if it was ever applied.
OneStepAMGCoarseSolverPolicy
    Builds an `AMGInverseOperator` from the coarse operator of a transfer policy.

Handle states
-------------
    UNINITIALIZED --apply--> ACTIVE --close--> CLOSED
    UNINITIALIZED --close--> CLOSED           (post is skipped)

`close()` must be called, directly or by leaving a ``with`` block, for the
teardown to run.
"""

from __future__ import annotations

import enum
import time

import numpy as np

from pyamg.aggregation import smoothed_aggregation_solver

from .smoothers import SmootherSpec, smoother_spec
from .stats import _print_coarse_hierarchy
from .types import AggregationCriterion, InverseOperatorResult


_PYAMG_STRENGTH = ("symmetric", "classical")
_PYAMG_AGGREGATE = ("standard", "naive")


def _coarse_specs(criterion: AggregationCriterion):
    """Translate a criterion into PyAMG strength/aggregate specs for the coarse hierarchy.

    Methods that only make sense on the fine level ("abs", "predefined") fall
    back to the PyAMG defaults.
    """
    strength = criterion.strength_spec()
    if strength[0] not in _PYAMG_STRENGTH:
        strength = ("symmetric", {"theta": criterion.theta})

    aggregate = criterion.aggregate
    name = aggregate[0] if isinstance(aggregate, tuple) else aggregate
    if name not in _PYAMG_AGGREGATE:
        aggregate = "standard"
    return strength, aggregate


class AMGCycle:
    """One cycle of a PyAMG hierarchy per application.

    Parameters
    ----------
    operator
        Coarse `MatrixOperator`.
    criterion
        Aggregation criterion of the recursive hierarchy.
    smoother
        PyAMG smoother spec used as pre- and postsmoother on every level.
    print_info
        If True, print the hierarchy after construction.

    Construction builds the whole hierarchy and propagates any setup error.
    """

    def __init__(self, operator, criterion: AggregationCriterion, smoother, *, print_info: bool = False) -> None:
        A = operator.getmat()
        strength, aggregate = _coarse_specs(criterion)
        self.ml = smoothed_aggregation_solver(
            A,
            strength=strength,
            aggregate=aggregate,
            presmoother=smoother,
            postsmoother=smoother,
            max_levels=criterion.coarse_max_levels,
            max_coarse=criterion.coarse_max_coarse,
            coarse_solver=criterion.coarse_solver,
        )
        self.cycle = criterion.cycle
        self._A = self.ml.levels[0].A
        self._active = False
        _print_coarse_hierarchy(self.ml, print_info=print_info)

    @property
    def active(self) -> bool:
        return self._active

    def pre(self, x: np.ndarray, b: np.ndarray) -> None:
        """Check the vectors against the hierarchy and start a sequence of cycles."""
        assert not self._active, "AMGCycle.pre called twice without post"
        n = self._A.shape[0]
        if x.shape != (n,) or b.shape != (n,):
            raise ValueError(f"expected vectors of shape ({n},), got {x.shape} and {b.shape}")
        self._active = True

    def apply(self, x: np.ndarray, b: np.ndarray) -> list[float]:
        """Apply one cycle to A x = b, updating x in place.

        A complex system on a real hierarchy is cycled part by part; one
        cycle is affine in (x, b), so this equals the complex cycle.

        Returns
        -------
        residuals
            Residual norms before and after the cycle.
        """
        assert self._active, "AMGCycle.apply called before pre"
        if np.iscomplexobj(x) and not np.iscomplexobj(self._A.data):
            xr = np.ascontiguousarray(x.real)
            xi = np.ascontiguousarray(x.imag)
            res_r = self._cycle(xr, np.ascontiguousarray(b.real))
            res_i = self._cycle(xi, np.ascontiguousarray(b.imag))
            x[:] = xr + 1j * xi
            return [float(np.hypot(r, i)) for r, i in zip(res_r, res_i)]
        return self._cycle(x, b)

    def _cycle(self, x: np.ndarray, b: np.ndarray) -> list[float]:
        residuals: list[float] = []
        x[:] = self.ml.solve(b, x0=x, tol=0.0, maxiter=1, cycle=self.cycle, residuals=residuals)
        return residuals

    def post(self, x: np.ndarray) -> None:
        """End the sequence of cycles started by `pre`."""
        assert self._active, "AMGCycle.post called before pre"
        n = self._A.shape[0]
        if x.shape != (n,):
            raise ValueError(f"expected a vector of shape ({n},), got {x.shape}")
        self._active = False


class CoarseSolverState(enum.Enum):
    """Lifecycle state of an `AMGInverseOperator`."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


class AMGInverseOperator:
    """Approximate inverse of the coarse operator by one AMG application.

    Parameters
    ----------
    amg
        Object with `pre(x, b)`, `apply(x, b)` and `post(x)`, usually an
        `AMGCycle`.
    default_reduction
        Requested residual reduction used when `apply` gets none. It only
        decides `result.converged`; the cost is always one application.
    """

    def __init__(self, amg, *, default_reduction: float = 1e-8) -> None:
        self._amg = amg
        self._state = CoarseSolverState.UNINITIALIZED
        self._x: np.ndarray | None = None
        self.default_reduction = default_reduction

    @property
    def state(self) -> CoarseSolverState:
        return self._state

    @property
    def amg(self):
        return self._amg

    def apply(self, x: np.ndarray, b: np.ndarray, reduction: float | None = None,
              result: InverseOperatorResult | None = None) -> InverseOperatorResult:
        """Approximately solve A x = b in place with one AMG application."""
        assert self._amg is not None, "coarse solver has no operator"
        assert self._state is not CoarseSolverState.CLOSED, "apply on a closed coarse solver"
        if reduction is None:
            reduction = self.default_reduction
        if result is None:
            result = InverseOperatorResult()
        else:
            result.clear()

        t0 = time.perf_counter()
        if self._state is CoarseSolverState.UNINITIALIZED:
            self._amg.pre(x, b)
            self._state = CoarseSolverState.ACTIVE
            self._x = x.copy()
        residuals = self._amg.apply(x, b)
        result.elapsed = time.perf_counter() - t0

        result.iterations = 1
        if residuals:
            result.residuals = [float(r) for r in residuals]
            r0, r1 = result.residuals[0], result.residuals[-1]
            result.iterations = max(len(residuals) - 1, 1)
            result.reduction = r1 / r0 if r0 > 0.0 else 0.0
            result.conv_rate = result.reduction ** (1.0 / result.iterations)
            result.converged = result.reduction <= reduction
        return result

    def close(self) -> None:
        """Run the teardown of the AMG if it was ever applied. Idempotent."""
        if self._state is CoarseSolverState.ACTIVE:
            self._amg.post(self._x)
        self._state = CoarseSolverState.CLOSED
        self._x = None

    def __enter__(self) -> "AMGInverseOperator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class OneStepAMGCoarseSolverPolicy:
    """Build coarse solvers that use one step of AMG.

    Parameters
    ----------
    smoother
        PyAMG smoother spec used on every level of the coarse AMG.
    criterion
        Aggregation criterion of the coarse AMG.
    print_info
        If True, print each hierarchy that is built.
    """

    def __init__(self, smoother: SmootherSpec = ("gauss_seidel", {"sweep": "symmetric"}),
                 criterion: AggregationCriterion | None = None, *, print_info: bool = False) -> None:
        spec = smoother_spec(smoother)
        if spec is None:
            raise ValueError("the coarse AMG requires a smoother")
        self.smoother = spec
        self.criterion = criterion if criterion is not None else AggregationCriterion()
        self.print_info = print_info
        self._coarse_operator = None

    @property
    def coarse_operator(self):
        return self._coarse_operator

    def create_coarse_level_solver(self, transfer_policy) -> AMGInverseOperator:
        """Return a solver handle bound to the coarse operator of `transfer_policy`."""
        self._coarse_operator = transfer_policy.get_coarse_level_operator()
        assert self._coarse_operator is not None, (
            "create_coarse_level_system must run before create_coarse_level_solver"
        )
        amg = AMGCycle(self._coarse_operator, self.criterion, self.smoother, print_info=self.print_info)
        return AMGInverseOperator(amg)
