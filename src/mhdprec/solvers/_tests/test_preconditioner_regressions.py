import pytest

from mhdprec.models.mhd.parameters import MHDParameters
from mhdprec.solvers.solver import make_block_preconditioner
from mhdprec.utils.manufactured_systems import ManufacturedMHDProblem


@pytest.mark.regression
def test_preconditioner_setup_structure_regression(data_regression):
    problem = ManufacturedMHDProblem(4, MHDParameters(B=(0.0, 0.0, 1.0)))
    A = problem.jacobian(problem.exact_solution)
    pc = make_block_preconditioner(problem.auxiliary_operators(), problem.model_params)
    ns = pc.setup(A)
    sub_setups = (ns.ij_ns, ns.fu_ns, ns.ip_ns, ns.dp_ns, ns.dphi_ns)
    # Export simple metadata that should be stable across runs
    data = {
        "fu_nnz": int(A[0, 0].nnz),
        "jacobian_nnz": int(A.matrix.nnz),
        "jacobian_size": int(A.layout.size),
        "number_of_sub_solvers": len(sub_setups),
        "sub_solver_labels": " ".join(setup.label for setup in sub_setups),
    }
    data_regression.check(data)
