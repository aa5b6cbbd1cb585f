import numpy as np
import pytest

from mhdprec.models.mhd.parameters import MHDParameters
from mhdprec.utils.manufactured_systems import (
    ManufacturedMHDProblem,
    ScriptedResidualOperator,
    divergence_1d,
    laplacian_1d,
)


@pytest.fixture
def problem():
    return ManufacturedMHDProblem(6, MHDParameters(B=(0.0, 0.0, 1.0)))


def test_exact_solution_has_zero_residual(problem):
    b, A = problem.residual_and_jacobian(problem.exact_solution)
    np.testing.assert_array_equal(b, 0.0)
    assert A.layout.sizes == (6, 6, 6, 6)


def test_jacobian_matches_finite_differences(problem):
    x = np.random.default_rng(3).standard_normal(problem.layout.size)
    direction = np.random.default_rng(4).standard_normal(problem.layout.size)
    eps = 1e-6
    b_plus, _ = problem.residual_and_jacobian(x + eps * direction)
    b_minus, _ = problem.residual_and_jacobian(x - eps * direction)
    _, A = problem.residual_and_jacobian(x)
    np.testing.assert_allclose(
        (b_plus - b_minus) / (2.0 * eps), A.matvec(direction), rtol=1e-5, atol=1e-5
    )


def test_linear_problem_has_constant_jacobian():
    problem = ManufacturedMHDProblem(5, MHDParameters(alpha=0.0, B=(0.0, 0.0, 1.0)))
    A0 = problem.jacobian(problem.allocate_solution())
    A1 = problem.jacobian(problem.exact_solution)
    assert abs(A0.matrix - A1.matrix).max() == 0.0


def test_jacobian_is_nonsingular(problem):
    A = problem.jacobian(problem.exact_solution)
    assert np.linalg.matrix_rank(A.matrix.toarray()) == problem.layout.size


def test_auxiliary_operators_match_fields(problem):
    ops = problem.auxiliary_operators()
    for matrix in (ops.ij, ops.ip, ops.dp, ops.dphi):
        assert matrix.shape == (problem.n, problem.n)


def test_operators():
    K = laplacian_1d(4)
    np.testing.assert_allclose(K.toarray().sum(axis=1), [25.0, 0.0, 0.0, 25.0])
    D = divergence_1d(3)
    np.testing.assert_allclose(D @ np.ones(3), [4.0, 0.0, 0.0])


def test_problem_requires_two_nodes():
    with pytest.raises(ValueError):
        ManufacturedMHDProblem(1, MHDParameters())


def test_scripted_residuals_are_replayed():
    op = ScriptedResidualOperator([np.ones(4), np.zeros(4)])
    first, A = op.residual_and_jacobian(op.allocate_solution())
    second, _ = op.residual_and_jacobian(op.allocate_solution())
    third, _ = op.residual_and_jacobian(op.allocate_solution())
    np.testing.assert_array_equal(first, 1.0)
    np.testing.assert_array_equal(second, 0.0)
    np.testing.assert_array_equal(third, 0.0)
    assert A.layout.sizes == (1, 1, 1, 1)
    assert op.evaluations == 3


def test_scripted_residuals_need_four_fields():
    with pytest.raises(ValueError):
        ScriptedResidualOperator([np.ones(5)])
    op = ScriptedResidualOperator([np.ones(5)], field_sizes=(2, 1, 1, 1))
    assert op.layout.size == 5
