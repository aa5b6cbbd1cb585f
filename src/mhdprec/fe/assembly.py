"""
Adapter from Firedrake bilinear forms to the block systems of the MHD solvers.

The FE layer owns meshes, weak forms and boundary conditions; this module only
assembles what it is handed and reads the resulting PETSc matrices.
"""

import logging
from typing import List, Tuple

import firedrake as fd
import scipy.sparse as sp

from mhdprec.blocks.conversion import block_system_from_petsc, csr_from_petsc
from mhdprec.blocks.system import BlockSystem

logger = logging.getLogger(__name__)


def _test_space(form: fd.Form) -> fd.FunctionSpace:
    return form.arguments()[0].function_space()


def mixed_field_sizes(W: fd.FunctionSpace) -> Tuple[int, int, int, int]:
    """
    Number of DoFs of the (u, p, j, phi) sub-spaces of a mixed space.

    :raises ValueError:
        If W is not a 4-field MixedFunctionSpace.
    """
    if not hasattr(W, "num_sub_spaces") or W.num_sub_spaces() != 4:
        raise ValueError(f"Expected a 4-field MixedFunctionSpace, got {type(W)}")
    u_size, p_size, j_size, phi_size = (W.sub(i).dim() for i in range(4))
    return u_size, p_size, j_size, phi_size


def assemble_block_system(form: fd.Form, bcs: List[fd.DirichletBC] | None = None) -> BlockSystem:
    """
    Assemble a bilinear form over the (u, p, j, phi) mixed space into a BlockSystem.

    :param form:
        Bilinear form, typically the Jacobian of the MHD residual.

    :param bcs:
        List of DirichletBC objects applied during assembly.

    :return:
        The BlockSystem of the assembled (monolithic, AIJ) matrix.

    :raises ValueError:
        If the form is not defined on a 4-field MixedFunctionSpace.
    """
    field_sizes = mixed_field_sizes(_test_space(form))
    assembled_matrix = fd.assemble(form, bcs=bcs or [], mat_type="aij")
    petsc_matrix = assembled_matrix.M.handle
    logger.debug("Assembled MHD Jacobian with field sizes %s", field_sizes)
    return block_system_from_petsc(petsc_matrix, field_sizes)


def assemble_operator(form: fd.Form, bcs: List[fd.DirichletBC] | None = None) -> sp.csr_matrix:
    """
    Assemble a single-field bilinear form, e.g. one of the auxiliary operators.

    :param form:
        Bilinear form on a non-mixed function space.

    :param bcs:
        List of DirichletBC objects applied during assembly.

    :return:
        The assembled matrix in SciPy CSR format.
    """
    assembled_matrix = fd.assemble(form, bcs=bcs or [], mat_type="aij")
    return csr_from_petsc(assembled_matrix.M.handle)


def field_index_sets(W: fd.FunctionSpace) -> list:
    """
    PETSc index sets of the (u, p, j, phi) fields, usable by the PETSc block
    preconditioner on distributed systems.
    """
    mixed_field_sizes(W)
    return list(W.dof_dset.field_ises)
