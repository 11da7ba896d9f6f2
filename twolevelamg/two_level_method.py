"""Algebraic two-level method.

A preconditioner combining fine-level smoothing with a coarse-grid correction
on a coarse system created algebraically by a level transfer policy. The
coarse system is solved approximately by a coarse solver built from a coarse
solver policy, e.g. one step of AMG.

One application, for an iterate v and a defect d:

    u <- v,  r <- d
    presmooth:   repeat pre_steps   c = S(r);  u += c;  r -= A c
    coarse:      rhs_c = R r;  lhs_c ~= A_c^{-1} rhs_c;  c = damp * P lhs_c
                 u += c;  r -= A c
    postsmooth:  repeat post_steps  c = S(r);  u += c;  r -= A c
    v <- u

so r always equals d - A (u - v), the defect of the correction accumulated
so far.
"""

from __future__ import annotations

import numpy as np
from scipy.sparse.linalg import LinearOperator

from .tlm.coarse import OneStepAMGCoarseSolverPolicy
from .tlm.operators import MatrixOperator
from .tlm.parallel import SequentialInformation
from .tlm.smoothers import make_smoother
from .tlm.stats import _print_coarse_solve
from .tlm.transfer import AggregationLevelTransferPolicy, LevelTransferPolicy
from .tlm.types import AggregationCriterion, InverseOperatorResult, SolverCategory


class TwoLevelMethod:
    """Two-level preconditioner.

    Parameters
    ----------
    op
        Fine level `MatrixOperator`, or a sparse matrix that is wrapped into
        one. The matrix is referenced, never copied, and must stay unchanged
        while the preconditioner is in use.
    smoother
        Fine-level smoother with ``apply(A, x, b)`` performing one sweep, or
        None to disable smoothing.
    policy
        Level transfer policy. Its coarse system is created here.
    coarse_policy
        Coarse solver policy providing ``create_coarse_level_solver(policy)``.
    pre_steps, post_steps
        Number of smoothing sweeps before and after the coarse correction.
    print_info
        If True, print the diagnostics of every coarse solve.

    The whole coarse level is built during construction.
    """

    category = SolverCategory.SEQUENTIAL

    def __init__(self, op, smoother, policy: LevelTransferPolicy, coarse_policy,
                 pre_steps: int = 1, post_steps: int = 1, *, print_info: bool = False) -> None:
        if pre_steps < 0 or post_steps < 0:
            raise ValueError(f"smoothing steps must be nonnegative, got {pre_steps} and {post_steps}")
        if not isinstance(op, MatrixOperator):
            op = MatrixOperator(op)

        self.operator = op
        self.smoother = smoother
        self.policy = policy
        self.pre_steps = int(pre_steps)
        self.post_steps = int(post_steps)
        self.print_info = print_info
        self.pinfo = SequentialInformation()
        self.last_coarse_result: InverseOperatorResult | None = None

        self.policy.create_coarse_level_system(self.operator)
        self.coarse_solver = coarse_policy.create_coarse_level_solver(self.policy)

    @property
    def shape(self) -> tuple[int, int]:
        return self.operator.shape

    def pre(self, x: np.ndarray, b: np.ndarray) -> None:
        """Prepare for a sequence of applications. Nothing to do here."""

    def post(self, x: np.ndarray) -> None:
        """Finish a sequence of applications. Nothing to do here."""

    def _smooth(self, u: np.ndarray, rhs: np.ndarray, steps: int) -> None:
        """Apply `steps` smoothing sweeps, keeping rhs equal to the current defect."""
        if self.smoother is None:
            return
        for _ in range(steps):
            c = np.zeros_like(u)
            self.smoother.apply(self.operator, c, rhs)
            u += c
            self.operator.apply_scale_add(-1.0, c, rhs)
            self.pinfo.project(rhs)

    def apply(self, v: np.ndarray, d: np.ndarray) -> np.ndarray:
        """Apply the preconditioner to the defect d, updating v in place.

        Returns
        -------
        v
            The updated iterate.

        Raises
        ------
        ValueError
            If v or d does not match the size of the fine operator.
        """
        n = self.operator.shape[0]
        if v.shape != (n,) or d.shape != (n,):
            raise ValueError(f"expected vectors of shape ({n},), got {v.shape} and {d.shape}")
        tp = np.result_type(self.operator.dtype, v.dtype, d.dtype)
        u = np.array(v, dtype=tp)
        rhs = np.array(d, dtype=tp)

        # Presmoothing
        self._smooth(u, rhs, self.pre_steps)

        # Coarse grid correction
        self.policy.move_to_coarse_level(rhs)
        result = InverseOperatorResult()
        self.coarse_solver.apply(self.policy.get_coarse_level_lhs(),
                                 self.policy.get_coarse_level_rhs(), result=result)
        self.last_coarse_result = result
        _print_coarse_solve(result, print_info=self.print_info)

        c = np.zeros_like(u)
        self.policy.move_to_fine_level(c)
        u += c
        self.operator.apply_scale_add(-1.0, c, rhs)
        self.pinfo.project(rhs)

        # Postsmoothing
        self._smooth(u, rhs, self.post_steps)

        v[...] = u
        return v

    def aspreconditioner(self) -> LinearOperator:
        """Return a LinearOperator mapping a defect d to apply(0, d).

        Suitable as the `M` argument of PyAMG and SciPy Krylov methods.
        """
        n = self.operator.shape[0]

        def matvec(d):
            d = np.ravel(d)
            v = np.zeros(n, dtype=np.result_type(self.operator.dtype, d.dtype))
            return self.apply(v, d)

        return LinearOperator((n, n), matvec=matvec, dtype=self.operator.dtype)

    def close(self) -> None:
        """Tear down the coarse solver. The preconditioner is unusable afterwards."""
        self.coarse_solver.close()

    def __enter__(self) -> "TwoLevelMethod":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        coarse = self.policy.get_coarse_level_operator()
        n_c = coarse.shape[0] if coarse is not None else "?"
        return (f"TwoLevelMethod(n={self.operator.shape[0]}, n_coarse={n_c}, "
                f"pre_steps={self.pre_steps}, post_steps={self.post_steps}, "
                f"category={self.category.value})")


def two_level_solver(A,
                     criterion=None,
                     smoother=("gauss_seidel", {"sweep": "symmetric"}),
                     coarse_smoother=("gauss_seidel", {"sweep": "symmetric"}),
                     coarse_criterion=None,
                     pre_steps=1,
                     post_steps=1,
                     excluded=None,
                     print_info=False,
                     callback=None):
    """Create a two-level aggregation preconditioner.

    Parameters
    ----------
    A : sparse matrix
        Square fine level matrix. Converted to CSR (with a warning) if needed.
    criterion : AggregationCriterion
        Fine-level aggregation criterion. Defaults to `AggregationCriterion()`.
    smoother : str, tuple, smoother object, or None
        Fine-level smoother, see `twolevelamg.tlm.smoothers`.
    coarse_smoother : str or tuple
        Smoother of the recursive AMG on the coarse level.
    coarse_criterion : AggregationCriterion
        Criterion of the recursive AMG. Defaults to `AggregationCriterion()`.
    pre_steps, post_steps : int
        Smoothing sweeps before and after the coarse correction.
    excluded : array_like of bool
        Fine unknowns that take no part in the coarse correction.
    print_info : bool
        Print setup diagnostics, the coarse hierarchy, and coarse solves.
    callback : callable
        Receives the `TransferStats` of the coarse level setup.

    Returns
    -------
    TwoLevelMethod

    Examples
    --------
    >>> from pyamg.gallery import poisson
    >>> from twolevelamg import two_level_solver
    >>> A = poisson((32, 32), format='csr')
    >>> M = two_level_solver(A).aspreconditioner()
    """
    op = MatrixOperator(A)
    if criterion is None:
        criterion = AggregationCriterion()
    policy = AggregationLevelTransferPolicy(criterion, excluded=excluded,
                                            print_info=print_info, callback=callback)
    coarse_policy = OneStepAMGCoarseSolverPolicy(coarse_smoother, coarse_criterion,
                                                 print_info=print_info)
    return TwoLevelMethod(op, make_smoother(smoother), policy, coarse_policy,
                          pre_steps=pre_steps, post_steps=post_steps,
                          print_info=print_info)
