"""
Conversions from assembled matrices handed over by the FE layer into block systems.
"""

from typing import Any, Sequence

import numpy as np
import scipy.sparse as sp

from mhdprec.blocks.system import BlockLayout, BlockSystem


def block_system_from_csr(matrix: sp.spmatrix, field_sizes: Sequence[int]) -> BlockSystem:
    """
    Wrap a global sparse matrix into a BlockSystem.

    :param matrix:
        Global matrix with rows/columns ordered as (u, p, j, phi).

    :param field_sizes:
        Number of DoFs of each field.

    :return:
        The BlockSystem view of the matrix.
    """
    return BlockSystem(matrix, BlockLayout(field_sizes))


def csr_from_petsc(petsc_matrix: Any) -> sp.csr_matrix:
    """
    Extract the CSR representation of a sequential PETSc AIJ matrix.

    :param petsc_matrix:
        A PETSc.Mat of AIJ type living on a single process.

    :return:
        SciPy CSR matrix with explicit zeros removed.

    :raises ValueError:
        If the matrix is distributed over more than one process.
    """
    if petsc_matrix.getComm().getSize() > 1:
        raise ValueError("Only sequential PETSc matrices can be converted to SciPy CSR")
    indptr, indices, data = petsc_matrix.getValuesCSR()
    csr = sp.csr_matrix(
        (np.asarray(data), np.asarray(indices), np.asarray(indptr)), shape=petsc_matrix.getSize()
    )
    csr.eliminate_zeros()  # Note: in-place operation
    return csr


def block_system_from_petsc(petsc_matrix: Any, field_sizes: Sequence[int]) -> BlockSystem:
    """
    Build a BlockSystem from a sequential PETSc AIJ matrix.

    :param petsc_matrix:
        A PETSc.Mat whose rows/columns are ordered as (u, p, j, phi).

    :param field_sizes:
        Number of DoFs of each field.

    :return:
        The BlockSystem view of the matrix.
    """
    return block_system_from_csr(csr_from_petsc(petsc_matrix), field_sizes)
