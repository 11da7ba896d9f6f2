"""End-to-end tests of the two-level preconditioner."""

from __future__ import annotations

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from scipy.sparse import csr_array

from pyamg.gallery import poisson
from pyamg.krylov import fgmres

from twolevelamg import (
    AggregationCriterion,
    AggregationLevelTransferPolicy,
    OneStepAMGCoarseSolverPolicy,
    SolverCategory,
    TwoLevelMethod,
    two_level_solver,
)
from twolevelamg.tlm.coarse import CoarseSolverState
from twolevelamg.tlm.operators import MatrixOperator


def _single_aggregate(n):
    return AggregationCriterion(aggregate=("predefined", {"aggregates": np.zeros(n, dtype=int)}))


def test_identity_with_single_aggregate_returns_defect():
    A = csr_array(np.eye(5))
    M = two_level_solver(A, criterion=_single_aggregate(5), smoother=None)
    d = np.full(5, 3.0)
    v = np.zeros(5)

    out = M.apply(v, d)

    assert out is v
    assert_allclose(v, d)
    assert M.last_coarse_result.iterations == 1


def test_identity_with_smoothing_returns_defect():
    A = csr_array(np.eye(6))
    M = two_level_solver(A, criterion=_single_aggregate(6))
    d = np.arange(6.0)
    assert_allclose(M.apply(np.zeros(6), d), d)


def test_coarse_correction_only_adds_aggregate_mean():
    A = csr_array(np.eye(4))
    M = two_level_solver(A, criterion=_single_aggregate(4), smoother=None)
    v = np.ones(4)
    M.apply(v, np.array([1.0, 2.0, 3.0, 6.0]))
    assert_allclose(v, 1.0 + 3.0)


def test_apply_is_deterministic():
    A = poisson((12, 12), format="csr")
    M = two_level_solver(A)
    d = np.random.default_rng(5).standard_normal(A.shape[0])

    first = M.apply(np.zeros_like(d), d)
    second = M.apply(np.zeros_like(d), d)

    assert_array_equal(first, second)


def test_pre_and_post_are_no_ops():
    A = poisson((8, 8), format="csr")
    M = two_level_solver(A)
    d = np.ones(A.shape[0])
    expected = M.apply(np.zeros_like(d), d)

    x = np.zeros_like(d)
    M.pre(x, d)
    assert not x.any()
    got = M.apply(x, d)
    M.post(x)

    assert_array_equal(got, expected)
    assert M.category is SolverCategory.SEQUENTIAL


def test_preconditioned_fgmres_beats_plain_fgmres():
    A = poisson((16, 16), format="csr")
    b = np.random.default_rng(7).standard_normal(A.shape[0])

    plain = []
    fgmres(A, b, residuals=plain)

    prec = []
    with two_level_solver(A) as ml:
        x, _ = fgmres(A, b, M=ml.aspreconditioner(), residuals=prec)

    assert np.linalg.norm(b - A @ x) <= 1e-4 * np.linalg.norm(b)
    assert len(prec) < len(plain)


def test_stationary_iteration_converges_faster_than_smoothing():
    A = poisson((16, 16), format="csr")
    b = np.ones(A.shape[0])
    M = two_level_solver(A)
    smoother = M.smoother

    x = np.zeros_like(b)
    y = np.zeros_like(b)
    for _ in range(40):
        x += M.apply(np.zeros_like(b), b - A @ x)
        smoother.apply(A, y, b)

    r_tlm = np.linalg.norm(b - A @ x) / np.linalg.norm(b)
    r_smooth = np.linalg.norm(b - A @ y) / np.linalg.norm(b)
    assert r_tlm < 1e-2
    assert r_tlm < r_smooth


def test_explicit_policies():
    A = poisson((10, 10), format="csr")
    policy = AggregationLevelTransferPolicy(AggregationCriterion(max_aggregate_size=4))
    coarse_policy = OneStepAMGCoarseSolverPolicy("jacobi")

    M = TwoLevelMethod(MatrixOperator(A), None, policy, coarse_policy, pre_steps=0, post_steps=0)

    assert M.shape == A.shape
    assert M.policy.get_coarse_level_operator().shape[0] >= A.shape[0] // 4
    assert "TwoLevelMethod(n=100" in repr(M)
    M.close()


def test_builds_with_multilevel_coarse_solver():
    A = poisson((12, 12), format="csr")
    with two_level_solver(A) as M:
        Ac = M.policy.get_coarse_level_operator().getmat()
        assert Ac.indices.dtype == np.int32
        assert len(M.coarse_solver.amg.ml.levels) > 1
        v = M.apply(np.zeros(144), np.ones(144))
    assert np.all(np.isfinite(v))


def test_complex_defect_on_real_operator():
    A = poisson((20,), format="csr")
    M = two_level_solver(A)
    d = np.ones(20) + 1j * np.arange(20)

    v = M.apply(np.zeros(20, dtype=complex), d)
    vr = M.apply(np.zeros(20), np.ones(20))
    vi = M.apply(np.zeros(20), np.arange(20.0))

    assert np.iscomplexobj(v)
    assert_allclose(v, vr + 1j * vi)
    assert_allclose(M.aspreconditioner().matvec(d), v)


def test_wrong_vector_size_is_rejected():
    A = poisson((10,), format="csr")
    M = two_level_solver(A)
    with pytest.raises(ValueError):
        M.apply(np.zeros(9), np.ones(9))
    with pytest.raises(ValueError):
        M.apply(np.zeros(10), np.ones(11))


def test_negative_steps_are_rejected():
    A = poisson((6,), format="csr")
    with pytest.raises(ValueError):
        two_level_solver(A, pre_steps=-1)


def test_aspreconditioner_shape():
    A = poisson((6, 6), format="csr")
    M = two_level_solver(A).aspreconditioner()
    assert M.shape == A.shape
    assert M.matvec(np.ones(36)).shape == (36,)


def test_close_tears_down_coarse_solver():
    A = poisson((10, 10), format="csr")
    with two_level_solver(A) as M:
        M.apply(np.zeros(100), np.ones(100))
        assert M.coarse_solver.state is CoarseSolverState.ACTIVE
    assert M.coarse_solver.state is CoarseSolverState.CLOSED
    assert not M.coarse_solver.amg.active


def test_excluded_unknowns_are_left_to_smoother():
    A = poisson((10,), format="csr")
    excluded = np.zeros(10, dtype=bool)
    excluded[-1] = True
    M = two_level_solver(A, excluded=excluded, smoother=None)

    v = M.apply(np.zeros(10), np.ones(10))

    assert v[-1] == 0.0
    assert np.all(v[:-1] > 0.0)


def test_print_info_and_callback(capsys):
    seen = []
    A = poisson((12, 12), format="csr")
    M = two_level_solver(A, print_info=True, callback=seen.append)
    M.apply(np.zeros(144), np.ones(144))

    out = capsys.readouterr().out
    assert "coarse solver:" in out
    assert "coarse solve:" in out
    assert len(seen) == 1
    assert seen[0].n_coarse == M.policy.get_coarse_level_operator().shape[0]
