"""
Exceptions raised by the MHD block solvers.

Every numerical failure names the stage it happened in (``"setup"``, ``"apply"`` or
``"convergence"``) and the block or loop that failed, e.g. ``"Fu"`` for the velocity
sub-solver or ``"newton"`` for the outer nonlinear iteration.
"""

from typing import Any

import numpy as np


class MHDSolverError(RuntimeError):
    """
    Base class for numerical failures of the block solvers.

    Subclasses set the ``stage`` class attribute.

    :param message:
        Human readable description of the failure.

    :param block:
        Label of the block (or outer loop) that failed.
    """

    stage = "unknown"

    def __init__(self, message: str, block: str | None = None):
        self.block = block
        where = f"{self.stage} of block '{block}'" if block is not None else self.stage
        super().__init__(f"[{where}] {message}")


class SolverSetupError(MHDSolverError):
    """A sub-solver factorization could not be formed (singular or indefinite block)."""

    stage = "setup"


class SolverApplyError(MHDSolverError):
    """A sub-solve diverged or produced non-finite values."""

    stage = "apply"


class NonConvergenceError(MHDSolverError):
    """
    An outer Krylov or Newton loop exhausted its iteration budget.

    :param last_iterate:
        The iterate reached when the budget ran out.

    :param residual_norm:
        Residual norm of the last iterate.

    :param iterations:
        Number of iterations performed.
    """

    stage = "convergence"

    def __init__(
        self,
        message: str,
        block: str | None = None,
        last_iterate: np.ndarray | Any = None,
        residual_norm: float = float("nan"),
        iterations: int = 0,
    ):
        self.last_iterate = last_iterate
        self.residual_norm = residual_norm
        self.iterations = iterations
        super().__init__(
            f"{message} (iterations={iterations}, residual={residual_norm:.6e})", block=block
        )
