import logging
from typing import Dict

import numpy as np

from mhdprec.models.mhd.parameters import MHDParameters
from mhdprec.solvers import parameters as solver_params
from mhdprec.solvers.krylov import GMRESSolver
from mhdprec.solvers.linear import ILUGMRESSolver, LinearSolver, LUSolver
from mhdprec.solvers.newton import NewtonRaphsonSolver, NonlinearOperator, Solution
from mhdprec.solvers.preconditioner import AuxiliaryOperators, MHDBlockPreconditioner

logger = logging.getLogger(__name__)

SUB_SOLVER_ORDER = ("ij", "fu", "ip", "dp", "dphi")


def make_sub_solver(sub_solver_parameters: Dict) -> LinearSolver:
    """
    Build a sub-solver from its parameter dict.

    :param sub_solver_parameters:
        Dict with a ``type`` key (``"lu"`` or ``"ilu_gmres"``) and the keyword
        arguments of the corresponding solver.

    :return:
        The LinearSolver instance.

    :raises ValueError:
        If the sub-solver type is unknown.
    """
    options = dict(sub_solver_parameters)
    solver_type = options.pop("type", "lu")
    if solver_type == "lu":
        return LUSolver(**options)
    if solver_type == "ilu_gmres":
        return ILUGMRESSolver(**options)
    raise ValueError(f"Unknown sub-solver type: {solver_type}")


def make_block_preconditioner(
    operators: AuxiliaryOperators,
    model_params: MHDParameters,
    block_parameters: Dict | None = None,
) -> MHDBlockPreconditioner:
    """
    Build the MHD block preconditioner with one sub-solver per block.

    :param operators:
        The constant AuxiliaryOperators (Ij, Ip, Dp, Dphi).

    :param model_params:
        MHDParameters container with model constants.

    :param block_parameters:
        Dict mapping ``ij``, ``fu``, ``ip``, ``dp`` and ``dphi`` to sub-solver
        parameters (default: LU everywhere).

    :return:
        The configured MHDBlockPreconditioner.
    """
    block_parameters = block_parameters or solver_params.BLOCK_LU_PARAMS
    missing = [name for name in SUB_SOLVER_ORDER if name not in block_parameters]
    if missing:
        raise ValueError(f"Missing sub-solver parameters for blocks: {missing}")
    solvers = tuple(make_sub_solver(block_parameters[name]) for name in SUB_SOLVER_ORDER)
    return MHDBlockPreconditioner.from_operators(solvers, operators, model_params)


def solve_mhd(
    op: NonlinearOperator,
    operators: AuxiliaryOperators,
    model_params: MHDParameters,
    solver_parameters: Dict | None = None,
    x0: np.ndarray | None = None,
) -> Solution:
    """
    Solve the nonlinear MHD system with Newton-Raphson and block-preconditioned GMRES.

    :param op:
        NonlinearOperator providing residual and block Jacobian.

    :param operators:
        The constant AuxiliaryOperators of the preconditioner.

    :param model_params:
        MHDParameters container with model constants.

    :param solver_parameters:
        Dict with ``newton``, ``gmres`` and ``blocks`` entries (default:
        BLOCK_GMRES_SOLVER_PARAMS).

    :param x0:
        Optional initial guess.

    :return:
        A Solution with the converged (u, p, j, phi) vector.
    """
    solver_parameters = solver_parameters or solver_params.BLOCK_GMRES_SOLVER_PARAMS
    newton_parameters = solver_parameters.get("newton", solver_params.NEWTON_PARAMS)
    gmres_parameters = solver_parameters.get("gmres", solver_params.GMRES_PARAMS)

    preconditioner = make_block_preconditioner(
        operators, model_params, solver_parameters.get("blocks")
    )
    linear_solver = GMRESSolver(preconditioner, **gmres_parameters)
    nonlinear_solver = NewtonRaphsonSolver(linear_solver, **newton_parameters)

    solution = nonlinear_solver.solve(op, x0)
    logger.info(
        "MHD solve converged in %d Newton iterations (%d GMRES iterations)",
        solution.iteration_number,
        sum(solution.linear_iterations),
    )
    return solution
