"""
Outer Krylov solver (restarted GMRES) for the fully coupled MHD Jacobian.

The GMRES solver only sees matrix-vector products with the global matrix and the
application of its preconditioner; the block structure is only used by the
preconditioner's own setup.
"""

import logging

import numpy as np
from scipy.sparse.linalg import LinearOperator

from mhdprec.blocks.system import BlockVector
from mhdprec.errors import NonConvergenceError
from mhdprec.solvers.linear import (
    LinearSolver,
    NumericalSetup,
    SymbolicSetup,
    as_square_csr,
    restarted_gmres,
)

logger = logging.getLogger(__name__)


def _values(v: BlockVector | np.ndarray) -> np.ndarray:
    return v.values if isinstance(v, BlockVector) else v


def _preconditioner_operator(ns: NumericalSetup, n: int) -> LinearOperator:
    as_operator = getattr(ns, "as_linear_operator", None)
    if as_operator is not None:
        return as_operator()

    def _apply(r: np.ndarray) -> np.ndarray:
        return ns.solve(np.zeros(n), np.asarray(r, dtype=float).ravel())

    return LinearOperator((n, n), matvec=_apply, dtype=float)


class GMRESSolver(LinearSolver):
    """
    Restarted GMRES using an optional preconditioner solver.

    :param preconditioner:
        Any LinearSolver (typically the MHDBlockPreconditioner). None means no
        preconditioning.

    :param restart:
        Restart length of GMRES.

    :param rtol:
        Relative tolerance on the residual norm.

    :param atol:
        Absolute tolerance on the residual norm.

    :param max_iterations:
        Budget of inner iterations before NonConvergenceError is raised.
    """

    def __init__(
        self,
        preconditioner: LinearSolver | None = None,
        restart: int = 300,
        rtol: float = 1e-10,
        atol: float = 0.0,
        max_iterations: int = 300,
    ):
        self.preconditioner = preconditioner
        self.restart = restart
        self.rtol = rtol
        self.atol = atol
        self.max_iterations = max_iterations

    def symbolic_setup(self, A) -> SymbolicSetup:
        matrix = as_square_csr(A)
        return SymbolicSetup(self, matrix.shape, matrix.nnz)

    def numerical_setup(
        self, ss: SymbolicSetup, A, label: str | None = None
    ) -> "GMRESNumericalSetup":
        pc_ns = None
        if self.preconditioner is not None:
            pc_ns = self.preconditioner.setup(A, label="preconditioner")
        return GMRESNumericalSetup(self, A, pc_ns, label or "gmres")


class GMRESNumericalSetup(NumericalSetup):
    def __init__(
        self,
        solver: GMRESSolver,
        A,
        pc_ns: NumericalSetup | None,
        label: str,
    ):
        self.solver = solver
        self.sysmat = A
        self.pc_ns = pc_ns
        self.label = label
        self.last_iterations = 0
        self.last_residual_norm = float("nan")

    def update(self, A) -> "GMRESNumericalSetup":
        self.sysmat = A
        if self.pc_ns is not None:
            self.pc_ns.update(A)
        return self

    def solve(self, x: BlockVector | np.ndarray, b: BlockVector | np.ndarray) -> BlockVector | np.ndarray:
        solver = self.solver
        matrix = as_square_csr(self.sysmat)
        rhs = np.asarray(_values(b), dtype=float)
        M = None
        if self.pc_ns is not None:
            M = _preconditioner_operator(self.pc_ns, matrix.shape[0])

        y, info, iterations = restarted_gmres(
            matrix,
            rhs,
            M,
            rtol=solver.rtol,
            atol=solver.atol,
            restart=solver.restart,
            max_iterations=solver.max_iterations,
        )
        residual_norm = float(np.linalg.norm(rhs - matrix @ y))
        self.last_iterations = iterations
        self.last_residual_norm = residual_norm
        logger.debug(
            "GMRES finished after %d iterations, residual norm %.6e", iterations, residual_norm
        )

        if info != 0 or not np.all(np.isfinite(y)):
            raise NonConvergenceError(
                f"GMRES did not reach rtol={solver.rtol} within {solver.max_iterations} iterations",
                block=self.label,
                last_iterate=y,
                residual_norm=residual_norm,
                iterations=iterations,
            )

        _values(x)[...] = y
        return x
