import numpy as np
import pytest
import scipy.sparse as sp

from mhdprec.blocks.system import BlockLayout, BlockSystem, BlockVector
from mhdprec.errors import NonConvergenceError, SolverApplyError, SolverSetupError
from mhdprec.models.mhd.parameters import MHDParameters
from mhdprec.solvers.krylov import GMRESSolver
from mhdprec.solvers.linear import ILUGMRESSolver, LUSolver
from mhdprec.solvers.preconditioner import MHDBlockPreconditioner
from mhdprec.solvers.solver import make_block_preconditioner
from mhdprec.utils.manufactured_systems import ManufacturedMHDProblem, laplacian_1d


@pytest.fixture
def problem():
    return ManufacturedMHDProblem(6, MHDParameters(B=(0.0, 0.0, 1.0)))


def test_block_preconditioned_gmres_solves_jacobian(problem):
    A = problem.jacobian(problem.exact_solution)
    b = np.linspace(1.0, -1.0, A.layout.size)
    pc = make_block_preconditioner(problem.auxiliary_operators(), problem.model_params)
    ns = GMRESSolver(pc).setup(A)

    x = np.zeros(A.layout.size)
    assert ns.solve(x, b) is x
    np.testing.assert_allclose(A.matvec(x), b, rtol=1e-8, atol=1e-8)
    assert ns.last_iterations >= 1
    assert ns.last_residual_norm <= 1e-8 * np.linalg.norm(b)


def test_gmres_accepts_block_vectors(problem):
    A = problem.jacobian(problem.exact_solution)
    b = BlockVector(np.ones(A.layout.size), A.layout)
    pc = make_block_preconditioner(problem.auxiliary_operators(), problem.model_params)
    x = GMRESSolver(pc).setup(A).solve(A.allocate_vector(), b)
    np.testing.assert_allclose(A.matvec(x.values), b.values, rtol=1e-8, atol=1e-8)


def test_unpreconditioned_gmres(problem):
    A = problem.jacobian(problem.exact_solution)
    b = np.ones(A.layout.size)
    x = np.zeros(A.layout.size)
    GMRESSolver(None, max_iterations=1000).setup(A).solve(x, b)
    np.testing.assert_allclose(A.matvec(x), b, rtol=1e-8, atol=1e-8)


def test_budget_exhaustion_keeps_last_iterate(problem):
    A = problem.jacobian(problem.exact_solution)
    ns = GMRESSolver(None, restart=1, rtol=1e-12, max_iterations=1).setup(A)
    with pytest.raises(NonConvergenceError) as excinfo:
        ns.solve(np.zeros(A.layout.size), np.ones(A.layout.size))
    error = excinfo.value
    assert error.block == "gmres"
    assert error.stage == "convergence"
    assert error.last_iterate.shape == (A.layout.size,)
    assert error.residual_norm > 0.0


def test_reported_iterations_respect_budget_with_partial_restart():
    A = sp.diags([2.0, -1.9], [0, 1], shape=(160, 160), format="csr")
    layout = BlockLayout((40, 40, 40, 40))
    ns = GMRESSolver(None, restart=30, rtol=1e-14, max_iterations=45).setup(BlockSystem(A, layout))
    with pytest.raises(NonConvergenceError) as excinfo:
        ns.solve(np.zeros(160), np.ones(160))
    assert excinfo.value.iterations <= 45
    assert ns.last_iterations == excinfo.value.iterations


def test_update_refreshes_preconditioner(problem):
    A0 = problem.jacobian(problem.allocate_solution())
    A1 = problem.jacobian(problem.exact_solution)
    pc = make_block_preconditioner(problem.auxiliary_operators(), problem.model_params)
    ns = GMRESSolver(pc).setup(A0)
    assert ns.update(A1) is ns
    assert ns.sysmat is A1
    assert ns.pc_ns.sysmat is A1

    b = np.ones(A1.layout.size)
    x = np.zeros(A1.layout.size)
    ns.solve(x, b)
    np.testing.assert_allclose(A1.matvec(x), b, rtol=1e-8, atol=1e-8)


def test_setup_failure_propagates(problem):
    A = problem.jacobian(problem.exact_solution)
    ops = problem.auxiliary_operators()
    singular = sp.csr_matrix((problem.n, problem.n))
    pc = MHDBlockPreconditioner(
        *(LUSolver() for _ in range(5)), ops.ij, ops.ip, singular, ops.dphi, problem.model_params
    )
    with pytest.raises(SolverSetupError) as excinfo:
        GMRESSolver(pc).setup(A)
    assert excinfo.value.block == "Dp"


def test_apply_failure_propagates():
    n = 10
    fu = sp.kronsum(laplacian_1d(n), laplacian_1d(n), format="csr")
    eye = sp.identity(n * n, format="csr")
    A = BlockSystem(sp.block_diag((fu, eye, eye, eye), format="csr"), BlockLayout((n * n,) * 4))
    failing_fu = ILUGMRESSolver(rtol=1e-12, restart=1, max_iterations=1, drop_tol=0.5)
    pc = MHDBlockPreconditioner(
        LUSolver(), failing_fu, LUSolver(), LUSolver(), LUSolver(),
        eye, 2.0 * eye, 2.0 * eye, eye, MHDParameters(),
    )
    ns = GMRESSolver(pc).setup(A)
    with pytest.raises(SolverApplyError) as excinfo:
        ns.solve(np.zeros(A.layout.size), np.ones(A.layout.size))
    assert excinfo.value.block == "Fu"
