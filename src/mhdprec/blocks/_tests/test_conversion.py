import numpy as np
import pytest
import scipy.sparse as sp

from mhdprec.blocks.conversion import block_system_from_csr


def test_block_system_from_csr():
    matrix = sp.random(6, 6, density=0.5, format="csr", random_state=3)
    A = block_system_from_csr(matrix, [2, 2, 1, 1])
    assert A.layout.sizes == (2, 2, 1, 1)
    np.testing.assert_array_equal(A[1, 1].toarray(), matrix.toarray()[2:4, 2:4])


def test_csr_from_petsc_roundtrip():
    pytest.importorskip("petsc4py")
    from mhdprec.blocks.conversion import block_system_from_petsc, csr_from_petsc
    from mhdprec.solvers.petsc_backend import petsc_aij_from_csr

    matrix = sp.csr_matrix(
        np.array(
            [
                [4.0, 1.0, 0.0, 0.0],
                [1.0, 3.0, 0.0, 2.0],
                [0.0, 0.0, 2.0, 0.0],
                [0.0, 2.0, 0.0, 5.0],
            ]
        )
    )
    petsc_matrix = petsc_aij_from_csr(matrix)
    converted = csr_from_petsc(petsc_matrix)
    assert converted.nnz == matrix.nnz
    np.testing.assert_array_equal(converted.toarray(), matrix.toarray())

    A = block_system_from_petsc(petsc_matrix, (1, 1, 1, 1))
    assert A[3, 1].toarray()[0, 0] == 2.0
    petsc_matrix.destroy()
