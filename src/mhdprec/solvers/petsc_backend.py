"""
PETSc implementation of the MHD block preconditioner.

``PETScMHDBlockPC`` is a python preconditioner context (``pc_type = "python"``) that
performs Algorithm 4.1 of (Li, 2019) on distributed PETSc objects. Field sub-vectors
are accessed through index sets, the velocity block is extracted from the current
preconditioning matrix with ``createSubMatrix``, and each sub-solve is a collective
``KSP.solve``: every rank executes the five sub-solves in the same order.

Users can attach it to an outer KSP with::

    pc = ksp.getPC()
    pc.setType("python")
    pc.setPythonContext(PETScMHDBlockPC(field_ises, (ij, ip, dp, dphi)))
"""

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
from petsc4py import PETSc

from mhdprec.errors import SolverApplyError, SolverSetupError
from mhdprec.solvers import parameters as solver_params

logger = logging.getLogger(__name__)

BLOCK_NAMES = ("ij", "fu", "ip", "dp", "dphi")


def petsc_aij_from_csr(matrix: sp.spmatrix, comm=None) -> PETSc.Mat:
    """
    Create a sequential PETSc AIJ matrix from a SciPy sparse matrix.
    """
    csr = sp.csr_matrix(matrix)
    csr.sort_indices()
    petsc_matrix = PETSc.Mat().createAIJ(
        size=csr.shape,
        csr=(
            csr.indptr.astype(PETSc.IntType),
            csr.indices.astype(PETSc.IntType),
            csr.data.astype(PETSc.ScalarType),
        ),
        comm=comm or PETSc.COMM_SELF,
    )
    petsc_matrix.assemble()
    return petsc_matrix


def field_index_sets(field_sizes: Sequence[int], comm=None) -> List[PETSc.IS]:
    """
    Contiguous index sets of the (u, p, j, phi) fields of a sequential system.

    Distributed systems should use the index sets provided by the FE layer instead.
    """
    offsets = np.concatenate(([0], np.cumsum(field_sizes)))
    return [
        PETSc.IS().createStride(int(size), first=int(offset), step=1, comm=comm or PETSc.COMM_SELF)
        for size, offset in zip(field_sizes, offsets[:-1])
    ]


def default_block_parameters() -> Dict[str, dict]:
    """
    LU via MUMPS in every block when PETSc was built with it, PETSc LU otherwise.
    """
    if PETSc.Sys.hasExternalPackage("mumps"):
        lu_parameters = solver_params.PETSC_MUMPS_PARAMS
    else:
        lu_parameters = solver_params.PETSC_LU_PARAMS
    return {name: lu_parameters for name in BLOCK_NAMES}


class PETScMHDBlockPC:
    """
    Python context of the PETSc MHD block preconditioner.

    :param field_ises:
        Index sets of the (u, p, j, phi) fields in the global system.

    :param operators:
        Tuple of PETSc matrices (Ij, Ip, Dp, Dphi), constant across Newton steps.

    :param block_parameters:
        Optional dict mapping ``ij``, ``fu``, ``ip``, ``dp`` and ``dphi`` to PETSc
        option dicts for the corresponding sub-KSP.
    """

    def __init__(
        self,
        field_ises: Sequence[PETSc.IS] | None = None,
        operators: Tuple[PETSc.Mat, PETSc.Mat, PETSc.Mat, PETSc.Mat] | None = None,
        block_parameters: Dict[str, dict] | None = None,
    ):
        self.field_ises: List[PETSc.IS] = []
        self.operators: Tuple[PETSc.Mat, ...] = ()
        if field_ises is not None:
            self.set_fields(field_ises)
        if operators is not None:
            self.set_auxiliary_operators(*operators)
        self.block_parameters = block_parameters
        self.ksps: Dict[str, PETSc.KSP] = {}
        self.fu: PETSc.Mat | None = None
        self.dp_cache: PETSc.Vec | None = None
        self.field_rhs: List[PETSc.Vec] = []
        self.field_solutions: List[PETSc.Vec] = []
        self.scatters: List[PETSc.Scatter] = []

    def set_fields(self, field_ises: Sequence[PETSc.IS]) -> None:
        if len(field_ises) != 4:
            raise ValueError(f"Expected 4 field index sets, got {len(field_ises)}")
        self.field_ises = list(field_ises)

    def set_auxiliary_operators(
        self, ij: PETSc.Mat, ip: PETSc.Mat, dp: PETSc.Mat, dphi: PETSc.Mat
    ) -> None:
        self.operators = (ij, ip, dp, dphi)

    def _create_ksp(self, pc: PETSc.PC, name: str, matrix: PETSc.Mat) -> PETSc.KSP:
        ksp = PETSc.KSP().create(comm=pc.getComm())
        prefix = f"{pc.getOptionsPrefix() or ''}mhd_{name}_"
        ksp.setOptionsPrefix(prefix)
        ksp.setOperators(matrix)

        options = PETSc.Options()
        block_parameters = self.block_parameters or default_block_parameters()
        for key, value in block_parameters[name].items():
            options.setValue(f"{prefix}{key}", value)
        ksp.setFromOptions()
        for key in block_parameters[name]:
            options.delValue(f"{prefix}{key}")
        return ksp

    @staticmethod
    def _setup_ksp(ksp: PETSc.KSP, name: str) -> None:
        try:
            ksp.setUp()
        except PETSc.Error as error:
            raise SolverSetupError(f"PETSc sub-solver setup failed: {error}", block=name) from error

    def setUp(self, pc: PETSc.PC) -> None:
        if not self.field_ises or not self.operators:
            raise ValueError("Field index sets and auxiliary operators must be set before setUp")

        _, P = pc.getOperators()
        is_u = self.field_ises[0]
        if self.fu is not None:
            self.fu.destroy()
        self.fu = P.createSubMatrix(is_u, is_u)

        if len(self.ksps) == len(BLOCK_NAMES) and self.scatters:
            # Only the velocity block changes between Newton iterations
            self.ksps["fu"].setOperators(self.fu)
            self._setup_ksp(self.ksps["fu"], "fu")
            return

        # Leftovers of a failed setUp are released before starting over
        self._destroy_sub_solvers()
        ij, ip, dp, dphi = self.operators
        matrices = {"ij": ij, "fu": self.fu, "ip": ip, "dp": dp, "dphi": dphi}
        for name in BLOCK_NAMES:
            self.ksps[name] = self._create_ksp(pc, name, matrices[name])
            self._setup_ksp(self.ksps[name], name)
        self._allocate_caches(P)
        logger.debug("PETSc block preconditioner set up")

    def _allocate_caches(self, P: PETSc.Mat) -> None:
        ij, ip, _, dphi = self.operators
        field_matrices = (self.fu, ip, ij, dphi)
        global_vec = P.createVecLeft()
        for iset, matrix in zip(self.field_ises, field_matrices):
            solution, rhs = matrix.createVecs()
            self.field_rhs.append(rhs)
            self.field_solutions.append(solution)
            self.scatters.append(PETSc.Scatter().create(global_vec, iset, rhs, None))
        global_vec.destroy()
        self.dp_cache = ip.createVecLeft()

    def _solve(self, name: str, b: PETSc.Vec, x: PETSc.Vec) -> None:
        ksp = self.ksps[name]
        ksp.solve(b, x)
        reason = ksp.getConvergedReason()
        if reason < 0:
            raise SolverApplyError(
                f"PETSc sub-solver diverged with converged reason {reason}", block=name
            )

    # Follows Algorithm 4.1 in (Li, 2019)
    def apply(self, pc: PETSc.PC, x: PETSc.Vec, y: PETSc.Vec) -> None:
        insert = PETSc.InsertMode.INSERT_VALUES
        for scatter, rhs in zip(self.scatters, self.field_rhs):
            scatter.scatter(x, rhs, addv=insert, mode=PETSc.ScatterMode.FORWARD)
        bu, bp, bj, bphi = self.field_rhs
        u, p, j, phi = self.field_solutions
        dp = self.dp_cache

        # Solve for p
        p.set(0.0)
        self._solve("ip", bp, dp)
        self._solve("dp", bp, p)
        p.axpy(1.0, dp)

        # Solve for phi
        phi.set(0.0)
        self._solve("dphi", bphi, phi)

        # Solve for u
        u.set(0.0)
        self._solve("fu", bu, u)

        # Solve for j
        j.set(0.0)
        self._solve("ij", bj, j)

        for scatter, solution in zip(self.scatters, self.field_solutions):
            scatter.scatter(solution, y, addv=insert, mode=PETSc.ScatterMode.REVERSE)

    def view(self, pc: PETSc.PC, viewer: PETSc.Viewer) -> None:
        viewer.printfASCII("MHD block preconditioner (Li, 2019)\n")
        for name, ksp in self.ksps.items():
            viewer.printfASCII(f"  sub-solver {name}: {ksp.getType()} / {ksp.getPC().getType()}\n")

    def _destroy_sub_solvers(self) -> None:
        for petsc_object in (
            *self.ksps.values(),
            *self.scatters,
            *self.field_rhs,
            *self.field_solutions,
        ):
            petsc_object.destroy()
        self.ksps = {}
        self.scatters, self.field_rhs, self.field_solutions = [], [], []
        if self.dp_cache is not None:
            self.dp_cache.destroy()
            self.dp_cache = None

    def destroy(self, pc: PETSc.PC) -> None:
        self._destroy_sub_solvers()
        if self.fu is not None:
            self.fu.destroy()
            self.fu = None
