from typing import Any, Dict

import attr
import numpy as np


def _as_vector(value: Any) -> np.ndarray:
    vector = np.zeros(3)
    given = np.atleast_1d(np.asarray(value, dtype=float))
    if given.size > 3:
        raise ValueError(f"Expected at most 3 components, got {given.size}")
    vector[: given.size] = given
    return vector


@attr.define(eq=False)
class MHDParameters:
    """
    Container for the coefficients of the (scaled) incompressible MHD system:

        alpha u.grad(u) - beta lap(u) + grad(p) - gamma (j x B) = f
        j + sigma grad(phi) - sigma (u x B) = 0
        div(u) = 0,  div(j) = 0

    :param alpha:
        Convection coefficient.

    :param beta:
        Diffusion coefficient (the inverse Reynolds number in the CFD scaling).

    :param gamma:
        Lorentz force coefficient (the Stuart number in the CFD scaling).

    :param sigma:
        Electric conductivity.

    :param B:
        Applied magnetic field, padded to three components.

    :param f:
        Body force, padded to three components.
    """

    alpha: float = 1.0
    beta: float = 1.0
    gamma: float = 1.0
    sigma: float = 1.0
    B: np.ndarray = attr.field(factory=lambda: np.zeros(3), converter=_as_vector)
    f: np.ndarray = attr.field(factory=lambda: np.zeros(3), converter=_as_vector)

    def __attrs_post_init__(self):
        if self.beta <= 0.0:
            raise ValueError(f"beta must be positive, got {self.beta}")
        if self.sigma <= 0.0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")

    @classmethod
    def from_cfd_scaling(
        cls, reynolds: float, stuart: float, B: Any = (0.0, 0.0, 1.0), **kwargs
    ) -> "MHDParameters":
        """
        Coefficients for the CFD scaling: alpha = 1, beta = 1/Re, gamma = N.

        :param reynolds:
            Reynolds number Re = u0 L / nu.

        :param stuart:
            Stuart (interaction) number N = Ha^2 / Re.
        """
        return cls(alpha=1.0, beta=1.0 / reynolds, gamma=stuart, B=B, **kwargs)

    @classmethod
    def from_mhd_scaling(
        cls, hartmann: float, stuart: float, B: Any = (0.0, 0.0, 1.0), **kwargs
    ) -> "MHDParameters":
        """
        Coefficients for the MHD scaling: alpha = 1/N, beta = 1/Ha^2, gamma = 1.

        :param hartmann:
            Hartmann number Ha = B0 L sqrt(sigma / (rho nu)).

        :param stuart:
            Stuart (interaction) number N.
        """
        return cls(alpha=1.0 / stuart, beta=1.0 / hartmann**2, gamma=1.0, B=B, **kwargs)


FLUID_MANDATORY_KEYS = ("alpha", "beta", "gamma", "B")
FLUID_OPTIONAL_DEFAULTS: Dict[str, Any] = {"sigma": 1.0, "f": (0.0, 0.0, 0.0)}


def params_from_dict(fluid: Dict[str, Any], check_valid: bool = True) -> MHDParameters:
    """
    Build MHDParameters from a fluid parameter dict, filling optional keys in-place.

    :param fluid:
        Dict with mandatory keys ``alpha``, ``beta``, ``gamma``, ``B`` and optional
        keys ``sigma`` (default 1) and ``f`` (default zero).

    :param check_valid:
        If True, raise on keys that are neither mandatory nor optional. Otherwise,
        silently ignore them.

    :return:
        The validated MHDParameters.

    :raises ValueError:
        If a mandatory key is missing or an invalid key is found.
    """
    if not isinstance(fluid, dict):
        raise ValueError(f"Expected a dict of fluid parameters, got {type(fluid)}")

    for key in FLUID_MANDATORY_KEYS:
        if key not in fluid:
            raise ValueError(
                f"Key '{key}' is a mandatory fluid parameter, but it is not provided. "
                f"Mandatory keys: {FLUID_MANDATORY_KEYS}."
            )

    for key, default in FLUID_OPTIONAL_DEFAULTS.items():
        fluid.setdefault(key, default)

    valid_keys = set(FLUID_MANDATORY_KEYS) | set(FLUID_OPTIONAL_DEFAULTS)
    if check_valid:
        for key in fluid:
            if key not in valid_keys:
                raise ValueError(
                    f"Key '{key}' is not a valid fluid parameter. Valid keys: {sorted(valid_keys)}. "
                    "Set check_valid=False to ignore invalid keys."
                )

    return MHDParameters(**{key: fluid[key] for key in valid_keys})
