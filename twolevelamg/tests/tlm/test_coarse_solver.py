"""Tests for the one-step AMG coarse solver and its handle lifecycle."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pyamg.gallery import poisson

from twolevelamg.tlm.coarse import (
    AMGCycle,
    AMGInverseOperator,
    CoarseSolverState,
    OneStepAMGCoarseSolverPolicy,
)
from twolevelamg.tlm.operators import MatrixOperator
from twolevelamg.tlm.transfer import AggregationLevelTransferPolicy
from twolevelamg.tlm.types import AggregationCriterion, InverseOperatorResult


class _SpyAMG:
    """Records the lifecycle calls; apply copies b into x."""

    def __init__(self, residuals=(1.0, 0.1)):
        self.calls = []
        self.residuals = list(residuals)
        self.post_arg = None

    def pre(self, x, b):
        self.calls.append("pre")

    def apply(self, x, b):
        self.calls.append("apply")
        x[:] = b
        return list(self.residuals)

    def post(self, x):
        self.calls.append("post")
        self.post_arg = x.copy()


def test_pre_runs_once_and_post_on_close():
    spy = _SpyAMG()
    solver = AMGInverseOperator(spy)
    x = np.full(3, 7.0)
    b = np.arange(3.0)

    for _ in range(4):
        solver.apply(x, b)
    assert spy.calls == ["pre"] + ["apply"] * 4
    assert solver.state is CoarseSolverState.ACTIVE

    solver.close()
    solver.close()
    assert spy.calls.count("post") == 1
    assert solver.state is CoarseSolverState.CLOSED
    assert_allclose(spy.post_arg, 7.0)


def test_close_without_apply_skips_post():
    spy = _SpyAMG()
    with AMGInverseOperator(spy) as solver:
        assert solver.state is CoarseSolverState.UNINITIALIZED
    assert spy.calls == []
    assert solver.state is CoarseSolverState.CLOSED


def test_apply_after_close_fails():
    solver = AMGInverseOperator(_SpyAMG())
    solver.close()
    with pytest.raises(AssertionError):
        solver.apply(np.zeros(2), np.ones(2))


def test_result_reports_reduction():
    solver = AMGInverseOperator(_SpyAMG(residuals=(2.0, 0.5)))
    result = InverseOperatorResult()

    out = solver.apply(np.zeros(2), np.ones(2), reduction=0.5, result=result)
    assert out is result
    assert result.iterations == 1
    assert result.reduction == pytest.approx(0.25)
    assert result.conv_rate == pytest.approx(0.25)
    assert result.converged

    solver.apply(np.zeros(2), np.ones(2), result=result)
    assert not result.converged
    assert result.residuals == [2.0, 0.5]


def test_amg_cycle_reduces_residual():
    A = poisson((40,), format="csr")
    amg = AMGCycle(MatrixOperator(A), AggregationCriterion(), ("gauss_seidel", {"sweep": "symmetric"}))
    assert len(amg.ml.levels) > 1

    b = np.random.default_rng(1).standard_normal(40)
    x = np.zeros(40)
    with AMGInverseOperator(amg) as solver:
        result = solver.apply(x, b)
        assert amg.active
        assert len(result.residuals) == 2
        assert result.reduction < 1.0
        assert np.linalg.norm(b - A @ x) < np.linalg.norm(b)
    assert not amg.active


def test_amg_cycle_complex_system_on_real_hierarchy():
    A = poisson((40,), format="csr")
    amg = AMGCycle(MatrixOperator(A), AggregationCriterion(), ("gauss_seidel", {"sweep": "symmetric"}))
    rng = np.random.default_rng(2)
    b = rng.standard_normal(40) + 1j * rng.standard_normal(40)
    x0 = rng.standard_normal(40) + 1j * rng.standard_normal(40)

    x = x0.copy()
    amg.pre(x, b)
    residuals = amg.apply(x, b)
    xr = np.ascontiguousarray(x0.real)
    xi = np.ascontiguousarray(x0.imag)
    amg.apply(xr, np.ascontiguousarray(b.real))
    amg.apply(xi, np.ascontiguousarray(b.imag))
    amg.post(x)

    assert np.iscomplexobj(x)
    assert_allclose(x, xr + 1j * xi)
    assert residuals[0] == pytest.approx(np.linalg.norm(b - A @ x0))
    assert residuals[-1] == pytest.approx(np.linalg.norm(b - A @ x))


def test_amg_cycle_checks_vector_shapes():
    amg = AMGCycle(MatrixOperator(poisson((20,), format="csr")), AggregationCriterion(), "jacobi")
    with pytest.raises(ValueError):
        amg.pre(np.zeros(19), np.zeros(20))
    with pytest.raises(AssertionError):
        amg.apply(np.zeros(20), np.zeros(20))


def test_coarse_amg_falls_back_for_fine_level_methods():
    pairs = np.repeat(np.arange(15), 2)
    criterion = AggregationCriterion(strength="abs", aggregate=("predefined", {"aggregates": pairs}))
    amg = AMGCycle(MatrixOperator(poisson((30,), format="csr")), criterion, "gauss_seidel")
    assert amg.ml.levels[0].A.shape == (30, 30)


def test_policy_builds_handle_for_coarse_operator():
    policy = AggregationLevelTransferPolicy()
    policy.create_coarse_level_system(MatrixOperator(poisson((30, 30), format="csr")))
    coarse_policy = OneStepAMGCoarseSolverPolicy()

    solver = coarse_policy.create_coarse_level_solver(policy)

    assert isinstance(solver, AMGInverseOperator)
    assert coarse_policy.coarse_operator is policy.get_coarse_level_operator()
    assert solver.amg.ml.levels[0].A.shape == policy.get_coarse_level_operator().shape
    solver.close()


def test_policy_requires_coarse_system():
    with pytest.raises(AssertionError):
        OneStepAMGCoarseSolverPolicy().create_coarse_level_solver(AggregationLevelTransferPolicy())


def test_policy_requires_smoother():
    with pytest.raises(ValueError):
        OneStepAMGCoarseSolverPolicy(smoother=None)
