"""mhdprec package init.

Expose feature flags indicating whether petsc4py and Firedrake are available. Avoid
raising at import time so that the scipy-based block preconditioner, the Krylov and
Newton drivers (and the parameter dicts) can be imported in lightweight environments
and CI.
"""

HAS_PETSC = False
try:  # pragma: no cover - trivial import guard
    import petsc4py as _petsc4py  # noqa: F401

    HAS_PETSC = True
except Exception:  # pragma: no cover
    HAS_PETSC = False

HAS_FIREDRAKE = False
try:  # pragma: no cover - trivial import guard
    import firedrake as _fd  # noqa: F401

    HAS_FIREDRAKE = True
except Exception:  # pragma: no cover
    HAS_FIREDRAKE = False

__all__ = ["HAS_PETSC", "HAS_FIREDRAKE"]
