"""
Small algebraic MHD-like problems with a known solution.

``ManufacturedMHDProblem`` discretizes a one-dimensional analogue of the scaled MHD
system with finite differences on ``n`` interior nodes per field:

    alpha u (C u) + beta K u + G p - gamma b M j = r_u
    D u                                          = r_p
    -sigma b M u + M j + sigma G phi             = r_j
    D j                                          = r_phi

where K is the Dirichlet Laplacian, D a one-sided divergence, G = D^T the gradient,
M the lumped mass matrix, C the centered first derivative and b the z-component of
the applied field. The right-hand side is chosen so that a smooth manufactured
state solves the system exactly, and the residual is ``F(x) = N(x) - N(x*)``.
"""

from typing import Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from mhdprec.blocks.system import BlockLayout, BlockSystem
from mhdprec.models.mhd.parameters import MHDParameters
from mhdprec.solvers.newton import NonlinearOperator
from mhdprec.solvers.preconditioner import AuxiliaryOperators, build_auxiliary_operators


def laplacian_1d(n: int) -> sp.csr_matrix:
    h = 1.0 / (n + 1)
    return sp.diags([-1.0, 2.0, -1.0], [-1, 0, 1], shape=(n, n), format="csr") / h**2


def divergence_1d(n: int) -> sp.csr_matrix:
    h = 1.0 / (n + 1)
    return sp.diags([-1.0, 1.0], [-1, 0], shape=(n, n), format="csr") / h


def centered_derivative_1d(n: int) -> sp.csr_matrix:
    h = 1.0 / (n + 1)
    return sp.diags([-1.0, 1.0], [-1, 1], shape=(n, n), format="csr") / (2.0 * h)


def mass_1d(n: int) -> sp.csr_matrix:
    h = 1.0 / (n + 1)
    return sp.identity(n, format="csr") * h


class ManufacturedMHDProblem(NonlinearOperator):
    """
    Discrete nonlinear MHD-like operator with a closed-form solution.

    :param n:
        Number of nodes of each of the four fields.

    :param model_params:
        MHDParameters providing alpha, beta, gamma, sigma and B. With ``alpha = 0``
        the problem is linear.

    :param velocity_amplitude:
        Amplitude of the manufactured velocity.
    """

    def __init__(self, n: int, model_params: MHDParameters, velocity_amplitude: float = 0.5):
        if n < 2:
            raise ValueError(f"Expected at least two nodes per field, got {n}")
        self.n = n
        self.model_params = model_params
        self.layout = BlockLayout((n, n, n, n))

        self.K = laplacian_1d(n)
        self.D = divergence_1d(n)
        self.G = self.D.T.tocsr()
        self.M = mass_1d(n)
        self.C = centered_derivative_1d(n)
        self.linear_part = self._assemble_linear_part()

        nodes = np.arange(1, n + 1) / (n + 1)
        self.exact_solution = np.concatenate(
            (
                velocity_amplitude * np.sin(np.pi * nodes),
                np.cos(np.pi * nodes),
                np.sin(2.0 * np.pi * nodes),
                nodes * (1.0 - nodes),
            )
        )
        self.rhs = self._apply_operator(self.exact_solution)

    def _assemble_linear_part(self) -> sp.csr_matrix:
        params = self.model_params
        b = params.B[2]
        sigma = params.sigma
        return sp.bmat(
            [
                [params.beta * self.K, self.G, -params.gamma * b * self.M, None],
                [self.D, None, None, None],
                [-sigma * b * self.M, None, self.M, sigma * self.G],
                [None, None, self.D, None],
            ],
            format="csr",
        )

    def _velocity(self, x: np.ndarray) -> np.ndarray:
        return x[self.layout.field_slice("u")]

    def _apply_operator(self, x: np.ndarray) -> np.ndarray:
        result = self.linear_part @ x
        u = self._velocity(x)
        result[self.layout.field_slice("u")] += self.model_params.alpha * u * (self.C @ u)
        return result

    def jacobian(self, x: np.ndarray) -> BlockSystem:
        u = self._velocity(x)
        convection = sp.diags(self.C @ u) + sp.diags(u) @ self.C
        nonlinear_part = sp.block_diag(
            (self.model_params.alpha * convection, sp.csr_matrix((3 * self.n, 3 * self.n))),
            format="csr",
        )
        return BlockSystem(self.linear_part + nonlinear_part, self.layout)

    def residual_and_jacobian(self, x: np.ndarray) -> Tuple[np.ndarray, BlockSystem]:
        x = np.asarray(x, dtype=float)
        return self._apply_operator(x) - self.rhs, self.jacobian(x)

    def allocate_solution(self) -> np.ndarray:
        return np.zeros(self.layout.size)

    def auxiliary_operators(self) -> AuxiliaryOperators:
        """
        Scaled auxiliary operators of the block preconditioner for this problem.
        """
        return build_auxiliary_operators(self.M, self.M, self.K, self.K, self.model_params)


class ScriptedResidualOperator(NonlinearOperator):
    """
    Nonlinear operator replaying a fixed sequence of residuals with identity Jacobians.

    The k-th evaluation returns ``residuals[k]`` regardless of the iterate, which
    allows checking the convergence criterion of a nonlinear solver in isolation.

    :param residuals:
        Residual vectors, all of the same length.

    :param field_sizes:
        Field sizes of the identity Jacobian, defaulting to four equal fields.
    """

    def __init__(
        self, residuals: Sequence[np.ndarray], field_sizes: Sequence[int] | None = None
    ):
        self.residuals = [np.asarray(r, dtype=float) for r in residuals]
        size = self.residuals[0].size
        if field_sizes is None:
            if size % 4:
                raise ValueError(f"Residual size {size} cannot be split into four equal fields")
            field_sizes = (size // 4,) * 4
        self.layout = BlockLayout(field_sizes)
        self.evaluations = 0

    def residual_and_jacobian(self, x: np.ndarray) -> Tuple[np.ndarray, BlockSystem]:
        index = min(self.evaluations, len(self.residuals) - 1)
        self.evaluations += 1
        identity = sp.identity(self.layout.size, format="csr")
        return self.residuals[index].copy(), BlockSystem(identity, self.layout)

    def allocate_solution(self) -> np.ndarray:
        return np.zeros(self.layout.size)
