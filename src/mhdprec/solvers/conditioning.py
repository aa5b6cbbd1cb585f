"""
Conditioning diagnostics for the MHD blocks and the preconditioned Jacobian.
"""

import logging
from typing import Dict

import attr
import numpy as np
import scipy.sparse as sp
from scipy.linalg import svd
from scipy.sparse.linalg import svds

from mhdprec.blocks.system import FIELDS, BlockSystem, BlockVector
from mhdprec.solvers.linear import NumericalSetup

logger = logging.getLogger(__name__)

DEFAULT_CONDITION_NUMBER_TOLERANCE = 1e-7

# Dense preconditioned operators are only formed up to this size
MAX_DENSE_SIZE = 4000


@attr.define(frozen=True)
class MatrixData:
    """
    Structural data of a block of the MHD system.

    :param name:
        Label of the block, e.g. ``"u,u"``.

    :param number_of_dofs:
        Number of rows of the block.

    :param number_of_nonzero_entries:
        Number of stored non-zero entries.

    :param is_symmetric:
        Whether the block is symmetric up to ``symmetry_tolerance``.

    :param symmetry_tolerance:
        Tolerance of the symmetry check.
    """

    name: str
    number_of_dofs: int
    number_of_nonzero_entries: int
    is_symmetric: bool
    symmetry_tolerance: float


def get_matrix_data(
    matrix: sp.spmatrix, name: str = "A", symmetry_tolerance: float = 1e-8
) -> MatrixData:
    """
    Collect size, sparsity and symmetry information of a sparse matrix.
    """
    csr = sp.csr_matrix(matrix)
    csr.eliminate_zeros()  # Note: in-place operation
    asymmetry = abs(csr - csr.T)
    is_symmetric = bool(asymmetry.nnz == 0 or asymmetry.max() <= symmetry_tolerance)
    return MatrixData(name, csr.shape[0], csr.nnz, is_symmetric, symmetry_tolerance)


def block_matrix_data(A: BlockSystem, symmetry_tolerance: float = 1e-8) -> Dict[str, MatrixData]:
    """
    MatrixData of the four diagonal blocks of a BlockSystem, keyed by field name.
    """
    return {
        field: get_matrix_data(A[field, field], f"{field},{field}", symmetry_tolerance)
        for field in FIELDS
    }


def _dense_condition_number(matrix: np.ndarray, zero_tol: float) -> float:
    svals = np.asarray(svd(matrix, compute_uv=False, check_finite=False))
    svals = svals[svals > zero_tol]
    if svals.size == 0:
        return float("inf")
    return float(svals.max() / svals.min())


def calculate_condition_number(
    scipy_csr_sparse_matrix: sp.csr_matrix,
    num_singular_values: int | None = None,
    use_sparse: bool = False,
    zero_tol: float = DEFAULT_CONDITION_NUMBER_TOLERANCE,
) -> float | np.float64:
    """
    Computes the 2-norm condition number of a matrix from its singular values.

    In dense mode the full spectrum is computed and singular values below ``zero_tol``
    are discarded. In sparse mode only the extreme singular values are computed with
    ARPACK, which scales to the larger blocks.

    :param scipy_csr_sparse_matrix:
        Matrix in SciPy CSR format.

    :param num_singular_values:
        Used only in sparse mode. If None, non-positive or too close to the matrix
        size, the dense SVD is used instead.

    :param use_sparse:
        Whether to use the sparse (svds) or dense (svd) computation.

    :param zero_tol:
        Singular values below this tolerance count as zero.

    :return:
        The condition number, ``inf`` if the matrix is numerically singular and
        ``nan`` for an empty matrix.
    """
    nrows, ncols = scipy_csr_sparse_matrix.shape
    nmin = min(nrows, ncols)
    if nmin == 0:
        return float("nan")

    if (
        (not use_sparse)
        or (num_singular_values is None)
        or (num_singular_values <= 0)
        or (int(num_singular_values) >= nmin - 1)
    ):
        return _dense_condition_number(scipy_csr_sparse_matrix.toarray(), zero_tol)

    smax_arr = svds(
        A=scipy_csr_sparse_matrix,
        k=1,
        which="LM",
        maxiter=10000,
        return_singular_vectors=False,
        solver="arpack",
    )
    smin_arr = svds(
        A=scipy_csr_sparse_matrix,
        k=1,
        which="SM",
        maxiter=20000,
        return_singular_vectors=False,
        solver="arpack",
        tol=1e-8,
    )
    smax = float(np.max(smax_arr))
    smin = float(np.min(smin_arr))
    if smin <= zero_tol:
        return float("inf")
    return float(smax / smin)


def preconditioned_operator(A: BlockSystem, ns: NumericalSetup) -> np.ndarray:
    """
    Form the dense matrix ``P^{-1} A`` column by column.

    :param A:
        The BlockSystem the preconditioner was set up with.

    :param ns:
        Numerical setup of the block preconditioner.

    :return:
        Dense array of shape ``A.shape``.

    :raises ValueError:
        If the system is too large to be formed densely.
    """
    n = A.layout.size
    if n > MAX_DENSE_SIZE:
        raise ValueError(f"System of size {n} is too large for a dense preconditioned operator")

    dense = A.matrix.toarray()
    result = np.empty((n, n))
    for column in range(n):
        b = BlockVector(dense[:, column].copy(), A.layout)
        x = A.allocate_vector()
        ns.solve(x, b)
        result[:, column] = x.values
    return result


def preconditioned_condition_number(
    A: BlockSystem, ns: NumericalSetup, zero_tol: float = DEFAULT_CONDITION_NUMBER_TOLERANCE
) -> float:
    """
    Condition number of the block-preconditioned Jacobian ``P^{-1} A``.

    Useful to compare sub-solver flavours on small systems: a robust preconditioner
    keeps this number bounded as the physical parameters vary.
    """
    condition_number = _dense_condition_number(preconditioned_operator(A, ns), zero_tol)
    logger.debug("Preconditioned condition number: %.6e", condition_number)
    return condition_number
