import abc
import logging
from typing import Tuple

import attr
import numpy as np

from mhdprec.blocks.system import BlockSystem
from mhdprec.errors import NonConvergenceError
from mhdprec.solvers.linear import LinearSolver, NumericalSetup

logger = logging.getLogger(__name__)


class NonlinearOperator(abc.ABC):
    """
    Discrete nonlinear MHD operator F(x) = 0 provided by the assembly layer.
    """

    @abc.abstractmethod
    def residual_and_jacobian(self, x: np.ndarray) -> Tuple[np.ndarray, BlockSystem]:
        """
        Assemble the residual and the Jacobian at ``x``.

        :param x:
            Current iterate, ordered as (u, p, j, phi).

        :return:
            Tuple (b, A) with the residual vector and the block Jacobian.
        """

    @abc.abstractmethod
    def allocate_solution(self) -> np.ndarray:
        """
        :return:
            A zero initial guess of the right size.
        """


def inf_norm(v: np.ndarray) -> float:
    v = np.asarray(v)
    if v.size == 0:
        return 0.0
    return float(np.max(np.abs(v)))


@attr.define(frozen=True)
class Solution:
    """
    Represents the result of a Newton-Raphson computation.

    Attributes:
        solution (np.ndarray): The converged iterate, ordered as (u, p, j, phi).
        iteration_number (int): The number of Newton iterations performed.
        residual_error (float | np.float64): Infinity norm of the final residual.
        initial_residual (float): Infinity norm of the residual at the initial guess.
        residual_history (Tuple[float, ...]): Infinity norms of all residuals, initial one included.
        linear_iterations (Tuple[int, ...]): Krylov iterations spent in each Newton step.
    """

    solution: np.ndarray = attr.field(eq=False)
    iteration_number: int
    residual_error: float | np.float64
    initial_residual: float
    residual_history: Tuple[float, ...]
    linear_iterations: Tuple[int, ...]


class NewtonRaphsonSolver:
    """
    Newton-Raphson iteration with an infinity-norm convergence check.

    Iterations stop when ``||F(x_k)||_inf < tolerance * ||F(x_0)||_inf``. Before
    iterating, the initial residual is only compared with the absolute tolerance.

    :param linear_solver:
        Solver for the Newton corrections, usually a GMRESSolver using the
        MHDBlockPreconditioner. Its numerical setup is refreshed with the new Jacobian
        after every Newton step.

    :param tolerance:
        Convergence tolerance.

    :param max_iterations:
        Maximum number of Newton iterations.
    """

    def __init__(
        self, linear_solver: LinearSolver, tolerance: float = 1e-6, max_iterations: int = 100
    ):
        if tolerance <= 0.0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        if max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {max_iterations}")
        self.linear_solver = linear_solver
        self.tolerance = tolerance
        self.max_iterations = max_iterations

    def _initial_iterate(self, op: NonlinearOperator, x0: np.ndarray | None) -> np.ndarray:
        if x0 is None:
            return op.allocate_solution()
        return np.array(x0, dtype=float, copy=True)

    def setup(self, op: NonlinearOperator, x0: np.ndarray | None = None) -> NumericalSetup:
        """
        Assemble the Jacobian at ``x0`` and set up the linear solver, without iterating.

        :return:
            The linear solver's numerical setup.
        """
        x = self._initial_iterate(op, x0)
        _, A = op.residual_and_jacobian(x)
        return self.linear_solver.setup(A)

    def solve(self, op: NonlinearOperator, x0: np.ndarray | None = None) -> Solution:
        """
        Solve ``F(x) = 0`` starting from ``x0`` (zero when omitted).

        :param op:
            The NonlinearOperator.

        :param x0:
            Optional initial guess. It is not modified.

        :return:
            A Solution with the converged iterate and the convergence history.

        :raises NonConvergenceError:
            If the tolerance is not met within ``max_iterations`` steps.
        """
        x = self._initial_iterate(op, x0)
        b, A = op.residual_and_jacobian(x)
        initial_norm = inf_norm(b)
        history = [initial_norm]
        linear_iterations = []
        logger.info("Newton iteration 0: nonlinear abs error (inf-norm) = %.6e", initial_norm)

        if initial_norm < self.tolerance:
            return Solution(x, 0, initial_norm, initial_norm, tuple(history), ())

        ns = self.linear_solver.setup(A)
        dx = np.zeros_like(x)
        for iteration in range(1, self.max_iterations + 1):
            dx.fill(0.0)
            ns.solve(dx, -b)
            linear_iterations.append(int(getattr(ns, "last_iterations", 0)))
            x += dx

            b, A = op.residual_and_jacobian(x)
            norm = inf_norm(b)
            history.append(norm)
            logger.info(
                "Newton iteration %d: nonlinear abs error (inf-norm) = %.6e", iteration, norm
            )
            if norm < self.tolerance * initial_norm:
                return Solution(
                    x, iteration, norm, initial_norm, tuple(history), tuple(linear_iterations)
                )
            ns.update(A)

        raise NonConvergenceError(
            f"Newton-Raphson did not converge to {self.tolerance} x {initial_norm:.6e}",
            block="newton",
            last_iterate=x,
            residual_norm=history[-1],
            iterations=self.max_iterations,
        )
