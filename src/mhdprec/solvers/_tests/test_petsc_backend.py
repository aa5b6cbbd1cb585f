import numpy as np
import pytest

PETSc = pytest.importorskip("petsc4py.PETSc")

from mhdprec.blocks.system import BlockVector  # noqa: E402
from mhdprec.errors import SolverApplyError, SolverSetupError  # noqa: E402
from mhdprec.models.mhd.parameters import MHDParameters  # noqa: E402
from mhdprec.solvers import parameters as solver_params  # noqa: E402
from mhdprec.solvers.petsc_backend import (  # noqa: E402
    BLOCK_NAMES,
    PETScMHDBlockPC,
    default_block_parameters,
    field_index_sets,
    petsc_aij_from_csr,
)
from mhdprec.solvers.solver import make_block_preconditioner  # noqa: E402
from mhdprec.utils.manufactured_systems import ManufacturedMHDProblem  # noqa: E402

LU_BLOCKS = {name: solver_params.PETSC_LU_PARAMS for name in BLOCK_NAMES}


@pytest.fixture
def problem():
    return ManufacturedMHDProblem(5, MHDParameters(B=(0.0, 0.0, 1.0)))


def _petsc_operators(problem):
    ops = problem.auxiliary_operators()
    return tuple(petsc_aij_from_csr(m) for m in (ops.ij, ops.ip, ops.dp, ops.dphi))


def _python_pc(P, context):
    pc = PETSc.PC().create(comm=PETSc.COMM_SELF)
    pc.setType("python")
    pc.setPythonContext(context)
    pc.setOperators(P, P)
    pc.setUp()
    return pc


def _petsc_apply(pc, P, rhs):
    x, y = P.createVecs()
    x.setArray(rhs)
    pc.apply(x, y)
    return y.getArray().copy()


def _scipy_apply(problem, A, rhs):
    pc = make_block_preconditioner(problem.auxiliary_operators(), problem.model_params)
    ns = pc.setup(A)
    return ns.solve(A.allocate_vector(), BlockVector(rhs, A.layout)).values


def test_field_index_sets():
    ises = field_index_sets((3, 1, 2, 2))
    assert [iset.getSize() for iset in ises] == [3, 1, 2, 2]
    np.testing.assert_array_equal(ises[2].getIndices(), [4, 5])


def test_default_block_parameters_cover_every_block():
    blocks = default_block_parameters()
    assert set(blocks) == set(BLOCK_NAMES)
    assert all(p["pc_type"] == "lu" for p in blocks.values())


def test_petsc_apply_matches_scipy(problem):
    A = problem.jacobian(problem.exact_solution)
    P = petsc_aij_from_csr(A.matrix)
    context = PETScMHDBlockPC(field_index_sets(A.layout.sizes), _petsc_operators(problem), LU_BLOCKS)
    pc = _python_pc(P, context)

    rhs = np.random.default_rng(5).standard_normal(A.layout.size)
    np.testing.assert_allclose(
        _petsc_apply(pc, P, rhs), _scipy_apply(problem, A, rhs), rtol=1e-10, atol=1e-12
    )
    pc.destroy()


def test_petsc_refresh_only_rebuilds_velocity(problem):
    A0 = problem.jacobian(problem.allocate_solution())
    A1 = problem.jacobian(problem.exact_solution)
    P0 = petsc_aij_from_csr(A0.matrix)
    P1 = petsc_aij_from_csr(A1.matrix)
    context = PETScMHDBlockPC(field_index_sets(A0.layout.sizes), _petsc_operators(problem), LU_BLOCKS)
    pc = _python_pc(P0, context)
    constant_ksps = {name: context.ksps[name] for name in ("ij", "ip", "dp", "dphi")}

    pc.setOperators(P1, P1)
    context.setUp(pc)
    for name, ksp in constant_ksps.items():
        assert context.ksps[name] is ksp

    rhs = np.linspace(0.0, 1.0, A1.layout.size)
    np.testing.assert_allclose(
        _petsc_apply(pc, P1, rhs), _scipy_apply(problem, A1, rhs), rtol=1e-10, atol=1e-12
    )
    pc.destroy()


def test_outer_ksp_with_block_pc(problem):
    A = problem.jacobian(problem.exact_solution)
    P = petsc_aij_from_csr(A.matrix)
    ksp = PETSc.KSP().create(comm=PETSc.COMM_SELF)
    ksp.setOperators(P)
    ksp.setType("gmres")
    ksp.setTolerances(rtol=1e-10, max_it=300)
    pc = ksp.getPC()
    pc.setType("python")
    pc.setPythonContext(
        PETScMHDBlockPC(field_index_sets(A.layout.sizes), _petsc_operators(problem), LU_BLOCKS)
    )

    b, x = P.createVecs()
    b.setArray(np.ones(A.layout.size))
    ksp.solve(b, x)
    assert ksp.getConvergedReason() > 0
    np.testing.assert_allclose(A.matvec(x.getArray()), np.ones(A.layout.size), rtol=1e-6)
    ksp.destroy()


def test_set_fields_requires_four_index_sets():
    with pytest.raises(ValueError, match="4 field index sets"):
        PETScMHDBlockPC(field_index_sets((1, 1, 1)))


def test_setup_requires_fields_and_operators(problem):
    A = problem.jacobian(problem.exact_solution)
    P = petsc_aij_from_csr(A.matrix)
    pc = PETSc.PC().create(comm=PETSc.COMM_SELF)
    pc.setType("python")
    pc.setPythonContext(PETScMHDBlockPC())
    pc.setOperators(P, P)
    with pytest.raises((ValueError, PETSc.Error)):
        pc.setUp()


def test_singular_block_is_reported(problem):
    A = problem.jacobian(problem.exact_solution)
    P = petsc_aij_from_csr(A.matrix)
    ij, ip, dp, dphi = _petsc_operators(problem)
    zero = petsc_aij_from_csr(0.0 * problem.M)
    context = PETScMHDBlockPC(field_index_sets(A.layout.sizes), (zero, ip, dp, dphi), LU_BLOCKS)
    pc = PETSc.PC().create(comm=PETSc.COMM_SELF)
    pc.setType("python")
    pc.setPythonContext(context)
    pc.setOperators(P, P)
    # PETSc may defer a zero pivot to the first application
    with pytest.raises((SolverSetupError, SolverApplyError, PETSc.Error)):
        pc.setUp()
        _petsc_apply(pc, P, np.ones(A.layout.size))


def test_destroy_without_setup():
    context = PETScMHDBlockPC()
    context.destroy(None)
    assert context.ksps == {}
    assert context.scatters == []
    assert context.fu is None


def test_destroy_after_failed_setup_releases_created_sub_solvers(problem):
    A = problem.jacobian(problem.exact_solution)
    P = petsc_aij_from_csr(A.matrix)
    blocks = dict(LU_BLOCKS)
    blocks["ip"] = {"ksp_type": "no_such_krylov_method"}
    context = PETScMHDBlockPC(field_index_sets(A.layout.sizes), _petsc_operators(problem), blocks)
    pc = PETSc.PC().create(comm=PETSc.COMM_SELF)
    pc.setOperators(P, P)

    with pytest.raises(PETSc.Error):
        context.setUp(pc)
    assert set(context.ksps) == {"ij", "fu"}
    assert context.scatters == []

    context.destroy(pc)
    assert context.ksps == {}
    assert context.fu is None
    pc.destroy()
