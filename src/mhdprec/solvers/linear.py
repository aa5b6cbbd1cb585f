"""
Linear sub-solvers used by the MHD block preconditioner.

Every solver follows the same three-stage life cycle:

    ss = solver.symbolic_setup(A)        # structure only
    ns = solver.numerical_setup(ss, A)   # factorization / preparation
    ns.solve(x, b)                       # repeatable, writes into x

and ``ns.update(A_new)`` re-does the numerical stage for new values of a matrix with
the same structure.
"""

import abc
import logging
from typing import Callable, Tuple

import attr
import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator, gmres, spilu, splu

from mhdprec.blocks.system import BlockSystem
from mhdprec.errors import SolverApplyError, SolverSetupError

logger = logging.getLogger(__name__)


@attr.define(frozen=True)
class SymbolicSetup:
    """
    Structural information of a matrix, independent of its values.

    :param solver:
        The solver which produced this setup.

    :param shape:
        Shape of the matrix.

    :param nnz:
        Number of stored entries of the matrix.
    """

    solver: "LinearSolver"
    shape: Tuple[int, int]
    nnz: int


def as_square_csr(A: BlockSystem | sp.spmatrix | np.ndarray) -> sp.csr_matrix:
    """
    Convert a matrix to CSR, checking that it is square. Block systems yield their
    global matrix.

    :raises ValueError:
        If the matrix is not square.
    """
    if isinstance(A, BlockSystem):
        return A.matrix
    csr = sp.csr_matrix(A)
    nrows, ncols = csr.shape
    if nrows != ncols:
        raise ValueError(f"Expected a square matrix, got shape {csr.shape}")
    return csr


class NumericalSetup(abc.ABC):
    """
    A solver prepared for the current values of a matrix.
    """

    @abc.abstractmethod
    def solve(self, x: np.ndarray, b: np.ndarray) -> np.ndarray:
        """
        Solve ``A x = b`` writing the result into ``x``.

        :return:
            The (updated) ``x``.
        """

    @abc.abstractmethod
    def update(self, A) -> "NumericalSetup":
        """
        Re-do the numerical setup for new values of the matrix.
        """


class LinearSolver(abc.ABC):
    """
    Interface shared by every (sub-)solver flavour.
    """

    def symbolic_setup(self, A) -> SymbolicSetup:
        csr = as_square_csr(A)
        return SymbolicSetup(self, csr.shape, csr.nnz)

    @abc.abstractmethod
    def numerical_setup(
        self, ss: SymbolicSetup, A, label: str | None = None
    ) -> NumericalSetup:
        """
        Prepare the solver for the values of ``A``.

        :param ss:
            Symbolic setup obtained from :meth:`symbolic_setup`.

        :param A:
            Matrix with the same structure used in the symbolic setup.

        :param label:
            Name of the block being solved, reported by setup/apply errors.
        """

    def setup(self, A, label: str | None = None) -> NumericalSetup:
        """
        Convenience for the symbolic followed by the numerical setup.
        """
        return self.numerical_setup(self.symbolic_setup(A), A, label=label)


def _check_shape(ss: SymbolicSetup, A: sp.csr_matrix) -> None:
    if A.shape != ss.shape:
        raise ValueError(f"Matrix shape {A.shape} differs from the symbolic setup {ss.shape}")


def _check_finite(x: np.ndarray, label: str | None) -> None:
    if not np.all(np.isfinite(x)):
        raise SolverApplyError("Sub-solve produced non-finite values", block=label)


class LUSolver(LinearSolver):
    """
    Sparse direct solver based on SuperLU.

    :param pivot_tolerance:
        Relative threshold below which the smallest pivot of U flags the matrix as
        numerically singular.

    :param permc_spec:
        Column permutation strategy forwarded to SuperLU.
    """

    def __init__(self, pivot_tolerance: float = 1e-14, permc_spec: str = "COLAMD"):
        self.pivot_tolerance = pivot_tolerance
        self.permc_spec = permc_spec

    def numerical_setup(self, ss: SymbolicSetup, A, label: str | None = None) -> "LUNumericalSetup":
        ns = LUNumericalSetup(self, ss, label)
        return ns.update(A)


class LUNumericalSetup(NumericalSetup):
    def __init__(self, solver: LUSolver, ss: SymbolicSetup, label: str | None):
        self.solver = solver
        self.symbolic = ss
        self.label = label
        self.factors = None

    def update(self, A) -> "LUNumericalSetup":
        A = as_square_csr(A)
        _check_shape(self.symbolic, A)
        self.factors = None
        if A.shape[0] == 0:
            return self

        try:
            factors = splu(A.tocsc(), permc_spec=self.solver.permc_spec)
        except RuntimeError as error:
            raise SolverSetupError(f"LU factorization failed: {error}", block=self.label) from error

        pivots = np.abs(factors.U.diagonal())
        if not np.all(np.isfinite(pivots)) or pivots.min() <= self.solver.pivot_tolerance * pivots.max():
            raise SolverSetupError(
                f"Matrix is numerically singular (smallest pivot {pivots.min():.3e}, "
                f"largest pivot {pivots.max():.3e})",
                block=self.label,
            )
        self.factors = factors
        logger.debug("LU factorization of block %s (n=%d, nnz=%d)", self.label, A.shape[0], A.nnz)
        return self

    def solve(self, x: np.ndarray, b: np.ndarray) -> np.ndarray:
        if self.symbolic.shape[0] == 0:
            return x
        if self.factors is None:
            raise SolverApplyError("No valid LU factorization to apply", block=self.label)
        y = self.factors.solve(np.asarray(b, dtype=float))
        _check_finite(y, self.label)
        x[...] = y
        return x


def restarted_gmres(
    A,
    b: np.ndarray,
    M: LinearOperator | None,
    rtol: float,
    atol: float,
    restart: int,
    max_iterations: int,
    x0: np.ndarray | None = None,
) -> Tuple[np.ndarray, int, int]:
    """
    Run restarted GMRES and count the inner iterations.

    Each restart cycle is a separate SciPy call; the last cycle is shortened so
    that no more than ``max_iterations`` inner iterations are performed.

    :param max_iterations:
        Budget of inner iterations.

    :return:
        Tuple (x, info, iterations) where ``info`` is SciPy's convergence flag of
        the last cycle.
    """
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be positive, got {max_iterations}")
    restart = max(1, restart)
    iterations = 0
    x = x0
    while True:
        cycle_length = min(restart, max_iterations - iterations)
        counter = [0]

        def _count(_residual):
            counter[0] += 1

        x, info = gmres(
            A,
            b,
            x0=x,
            rtol=rtol,
            atol=atol,
            restart=cycle_length,
            maxiter=1,
            M=M,
            callback=_count,
            callback_type="pr_norm",
        )
        iterations += counter[0]
        if info == 0 or counter[0] == 0 or iterations >= max_iterations:
            return x, info, iterations


class ILUGMRESSolver(LinearSolver):
    """
    Iterative sub-solver: GMRES preconditioned with an incomplete LU factorization.

    The sub-solve is accurate up to ``rtol``, which then bounds the fidelity of the
    block preconditioner using it.

    :param rtol:
        Relative tolerance of the inner GMRES.

    :param atol:
        Absolute tolerance of the inner GMRES.

    :param restart:
        Restart length.

    :param max_iterations:
        Budget of inner iterations; exhausting it is an apply failure.

    :param drop_tol:
        Drop tolerance of the incomplete factorization.

    :param fill_factor:
        Fill ratio upper bound of the incomplete factorization.
    """

    def __init__(
        self,
        rtol: float = 1e-8,
        atol: float = 0.0,
        restart: int = 50,
        max_iterations: int = 500,
        drop_tol: float = 1e-4,
        fill_factor: float = 10.0,
    ):
        self.rtol = rtol
        self.atol = atol
        self.restart = restart
        self.max_iterations = max_iterations
        self.drop_tol = drop_tol
        self.fill_factor = fill_factor

    def numerical_setup(
        self, ss: SymbolicSetup, A, label: str | None = None
    ) -> "ILUGMRESNumericalSetup":
        ns = ILUGMRESNumericalSetup(self, ss, label)
        return ns.update(A)


class ILUGMRESNumericalSetup(NumericalSetup):
    def __init__(self, solver: ILUGMRESSolver, ss: SymbolicSetup, label: str | None):
        self.solver = solver
        self.symbolic = ss
        self.label = label
        self.matrix: sp.csr_matrix | None = None
        self.preconditioner: LinearOperator | None = None
        self.last_iterations = 0

    def update(self, A) -> "ILUGMRESNumericalSetup":
        A = as_square_csr(A)
        _check_shape(self.symbolic, A)
        self.matrix = A
        if A.shape[0] == 0:
            self.preconditioner = None
            return self

        try:
            ilu = spilu(
                A.tocsc(), drop_tol=self.solver.drop_tol, fill_factor=self.solver.fill_factor
            )
        except RuntimeError as error:
            raise SolverSetupError(
                f"Incomplete LU factorization failed: {error}", block=self.label
            ) from error
        apply_ilu: Callable[[np.ndarray], np.ndarray] = ilu.solve
        self.preconditioner = LinearOperator(A.shape, matvec=apply_ilu, dtype=float)
        return self

    def solve(self, x: np.ndarray, b: np.ndarray) -> np.ndarray:
        if self.matrix is None or self.matrix.shape[0] == 0:
            return x
        solver = self.solver
        y, info, iterations = restarted_gmres(
            self.matrix,
            np.asarray(b, dtype=float),
            self.preconditioner,
            rtol=solver.rtol,
            atol=solver.atol,
            restart=solver.restart,
            max_iterations=solver.max_iterations,
        )
        self.last_iterations = iterations
        if info != 0:
            raise SolverApplyError(
                f"Inner GMRES did not reach rtol={solver.rtol} (info={info}, "
                f"iterations={iterations})",
                block=self.label,
            )
        _check_finite(y, self.label)
        x[...] = y
        return x
