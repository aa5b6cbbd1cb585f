"""
Physics-based block preconditioner for the MHD saddle-point system.

This preconditioner is based on Li (2019), https://doi.org/10.1137/19M1260372.
Each application performs five independent sub-solves over the diagonal field blocks:

    p   = Dp^{-1} bp + Ip^{-1} bp
    phi = Dphi^{-1} bphi
    u   = Fu^{-1} bu
    j   = Ij^{-1} bj

where Fu is the velocity block of the current Newton Jacobian and Ij, Ip, Dp, Dphi are
constant auxiliary operators (current mass, pressure mass, and the interior-penalty
stabilized Laplacians of pressure and potential). Off-diagonal couplings are left to
the outer Krylov iteration.
"""

import logging
from typing import Tuple

import attr
import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator

from mhdprec.blocks.system import BlockSystem, BlockVector
from mhdprec.models.mhd.parameters import MHDParameters
from mhdprec.solvers.linear import LinearSolver, NumericalSetup, SymbolicSetup, as_square_csr

logger = logging.getLogger(__name__)


@attr.define(frozen=True, eq=False)
class AuxiliaryOperators:
    """
    The four constant operators of the block preconditioner.

    :param ij:
        Current mass matrix.

    :param ip:
        Pressure mass-like matrix.

    :param dp:
        Pressure Laplacian with interior-penalty jump stabilization.

    :param dphi:
        Potential Laplacian with interior-penalty jump stabilization.
    """

    ij: sp.csr_matrix = attr.field(converter=as_square_csr)
    ip: sp.csr_matrix = attr.field(converter=as_square_csr)
    dp: sp.csr_matrix = attr.field(converter=as_square_csr)
    dphi: sp.csr_matrix = attr.field(converter=as_square_csr)


def build_auxiliary_operators(
    mass_j: sp.spmatrix,
    mass_p: sp.spmatrix,
    laplacian_p: sp.spmatrix,
    laplacian_phi: sp.spmatrix,
    model_params: MHDParameters,
    coefficient: float = 1.0,
) -> AuxiliaryOperators:
    """
    Scale raw assembled operators with the model coefficients.

    The FE layer provides unscaled mass matrices and stabilized stiffness matrices
    (the stiffness term plus interior-penalty jump terms on the mesh skeleton); the
    preconditioner uses Ij = c Mj, Ip = beta Mp, Dp = -c Kp and Dphi = -c Kphi.
    The coefficient c is fixed to 1 by default and is independent of the Lorentz
    coefficient gamma of the model.

    :param mass_j:
        Current mass matrix Mj.

    :param mass_p:
        Pressure mass matrix Mp.

    :param laplacian_p:
        Stabilized pressure stiffness matrix Kp.

    :param laplacian_phi:
        Stabilized potential stiffness matrix Kphi.

    :param model_params:
        MHDParameters providing beta.

    :param coefficient:
        Scaling c of the current mass and of both Laplacians.

    :return:
        The scaled AuxiliaryOperators.
    """
    beta = model_params.beta
    return AuxiliaryOperators(
        ij=coefficient * sp.csr_matrix(mass_j),
        ip=beta * sp.csr_matrix(mass_p),
        dp=-coefficient * sp.csr_matrix(laplacian_p),
        dphi=-coefficient * sp.csr_matrix(laplacian_phi),
    )


class MHDBlockPreconditioner(LinearSolver):
    """
    Block preconditioner following Algorithm 4.1 in (Li, 2019).

    :param ij_solver:
        Solver for the current mass operator.

    :param fu_solver:
        Solver for the velocity block of the Jacobian (refreshed every Newton step).

    :param ip_solver:
        Solver for the pressure mass-like operator.

    :param dp_solver:
        Solver for the stabilized pressure Laplacian.

    :param dphi_solver:
        Solver for the stabilized potential Laplacian.

    :param ij:
        Current mass operator.

    :param ip:
        Pressure mass-like operator.

    :param dp:
        Stabilized pressure Laplacian.

    :param dphi:
        Stabilized potential Laplacian.

    :param model_params:
        MHDParameters the auxiliary operators were built with.
    """

    def __init__(
        self,
        ij_solver: LinearSolver,
        fu_solver: LinearSolver,
        ip_solver: LinearSolver,
        dp_solver: LinearSolver,
        dphi_solver: LinearSolver,
        ij: sp.spmatrix,
        ip: sp.spmatrix,
        dp: sp.spmatrix,
        dphi: sp.spmatrix,
        model_params: MHDParameters,
    ):
        self.ij_solver = ij_solver
        self.fu_solver = fu_solver
        self.ip_solver = ip_solver
        self.dp_solver = dp_solver
        self.dphi_solver = dphi_solver
        self.operators = AuxiliaryOperators(ij, ip, dp, dphi)
        self.model_params = model_params

    @classmethod
    def from_operators(
        cls,
        solvers: Tuple[LinearSolver, ...],
        operators: AuxiliaryOperators,
        model_params: MHDParameters,
    ) -> "MHDBlockPreconditioner":
        """
        Build from the five solvers (order: Ij, Fu, Ip, Dp, Dphi) and AuxiliaryOperators.
        """
        if len(solvers) != 5:
            raise ValueError(f"Expected 5 sub-solvers, got {len(solvers)}")
        return cls(
            *solvers, operators.ij, operators.ip, operators.dp, operators.dphi, model_params
        )

    def symbolic_setup(self, A: BlockSystem) -> "MHDBlockPreconditionerSS":
        return MHDBlockPreconditionerSS(self)

    def numerical_setup(
        self, ss: SymbolicSetup, A: BlockSystem, label: str | None = None
    ) -> "MHDBlockPreconditionerNS":
        if not isinstance(A, BlockSystem):
            raise ValueError(f"Expected a BlockSystem, got {type(A)}")
        self._check_operator_sizes(A)

        ops = self.operators
        fu = A[0, 0]
        ij_ns = self.ij_solver.setup(ops.ij, label="Ij")
        fu_ns = self.fu_solver.setup(fu, label="Fu")
        ip_ns = self.ip_solver.setup(ops.ip, label="Ip")
        dp_ns = self.dp_solver.setup(ops.dp, label="Dp")
        dphi_ns = self.dphi_solver.setup(ops.dphi, label="Dphi")
        caches = allocate_preconditioner_caches(A)
        logger.debug("Block preconditioner set up for field sizes %s", A.layout.sizes)
        return MHDBlockPreconditionerNS(self, ij_ns, fu_ns, ip_ns, dp_ns, dphi_ns, A, caches)

    def _check_operator_sizes(self, A: BlockSystem) -> None:
        sizes = A.layout.sizes
        expected = {"Ij": sizes[2], "Ip": sizes[1], "Dp": sizes[1], "Dphi": sizes[3]}
        ops = self.operators
        given = {"Ij": ops.ij, "Ip": ops.ip, "Dp": ops.dp, "Dphi": ops.dphi}
        for name, matrix in given.items():
            if matrix.shape[0] != expected[name]:
                raise ValueError(
                    f"Auxiliary operator {name} has size {matrix.shape[0]}, "
                    f"but its field block has size {expected[name]}"
                )


@attr.define(frozen=True)
class MHDBlockPreconditionerSS:
    """
    Symbolic setup of the block preconditioner: only wraps its configuration.
    """

    solver: MHDBlockPreconditioner


def allocate_preconditioner_caches(A: BlockSystem) -> Tuple[np.ndarray, ...]:
    """
    Allocate one scratch vector per field, sized by the diagonal blocks of ``A``.

    :return:
        Tuple (du, dp, dj, dphi).
    """
    return tuple(A.layout.allocate_field(i) for i in range(4))


class MHDBlockPreconditionerNS(NumericalSetup):
    """
    Stateful block preconditioner bound to the current Jacobian.

    The four constant sub-solver setups are created once; only ``fu_ns`` is
    recomputed by :meth:`update`.
    """

    def __init__(
        self,
        solver: MHDBlockPreconditioner,
        ij_ns: NumericalSetup,
        fu_ns: NumericalSetup,
        ip_ns: NumericalSetup,
        dp_ns: NumericalSetup,
        dphi_ns: NumericalSetup,
        sysmat: BlockSystem,
        caches: Tuple[np.ndarray, ...],
    ):
        self.solver = solver
        self.ij_ns = ij_ns
        self.fu_ns = fu_ns
        self.ip_ns = ip_ns
        self.dp_ns = dp_ns
        self.dphi_ns = dphi_ns
        self.sysmat = sysmat
        self.caches = caches

    def update(self, A: BlockSystem) -> "MHDBlockPreconditionerNS":
        if A.layout != self.sysmat.layout:
            raise ValueError(f"Block layout changed from {self.sysmat.layout} to {A.layout}")
        self.fu_ns.update(A[0, 0])
        self.sysmat = A
        return self

    # Follows Algorithm 4.1 in (Li, 2019)
    def solve(self, x: BlockVector, b: BlockVector) -> BlockVector:
        bu, bp, bj, bphi = b.blocks()
        u, p, j, phi = x.blocks()
        du, dp, dj, dphi = self.caches

        # Solve for p
        p.fill(0.0)
        self.ip_ns.solve(dp, bp)
        self.dp_ns.solve(p, bp)
        p += dp

        # Solve for phi
        phi.fill(0.0)
        self.dphi_ns.solve(phi, bphi)

        # Solve for u
        u.fill(0.0)
        self.fu_ns.solve(u, bu)

        # Solve for j
        j.fill(0.0)
        self.ij_ns.solve(j, bj)

        return x

    def as_linear_operator(self) -> LinearOperator:
        """
        Expose the preconditioner application as a SciPy LinearOperator.

        Each call allocates a fresh output vector, since Krylov solvers may keep
        references to the results.
        """
        layout = self.sysmat.layout

        def _apply(r: np.ndarray) -> np.ndarray:
            b = BlockVector(np.asarray(r, dtype=float).ravel(), layout)
            x = BlockVector(np.zeros(layout.size), layout)
            return self.solve(x, b).values

        return LinearOperator((layout.size, layout.size), matvec=_apply, dtype=float)
