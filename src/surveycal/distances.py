"""
Distance functions for generalized calibration.

Each family is described by its calibration function F, which maps the
linear predictor u = q * (X @ lam) of the dual problem to a reweighting
factor g = F(u), and by the derivative F' used in the Newton Jacobian.
Every family satisfies F(0) = 1 and F'(0) = 1.

Families (Deville and Sarndal, 1992):
- linear:  F(u) = 1 + u                (chi-square distance, closed form)
- raking:  F(u) = exp(u)               (multiplicative / raking ratio)
- logit:   F(u) = (L(U-1) + U(1-L)e^{Au}) / ((U-1) + (1-L)e^{Au}),
           A = (U-L) / ((1-L)(U-1)), factors bounded in (L, U)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
from scipy.special import expit

from .exceptions import ConfigurationError


class Method(Enum):
    """Calibration method requested at call entry."""

    LINEAR = "linear"
    RAKING = "raking"
    LOGIT = "logit"
    MIN = "min"
    PENALIZED = "penalized"

    @classmethod
    def parse(cls, method: Union[str, "Method"]) -> "Method":
        if isinstance(method, cls):
            return method
        try:
            return cls(str(method).lower())
        except ValueError:
            valid = ", ".join(f"'{m.value}'" for m in cls)
            raise ConfigurationError(
                f"Invalid method: {method}. Must be one of {valid}"
            ) from None

    @property
    def is_distance(self) -> bool:
        """True for the three families that define a distance function."""
        return self in (Method.LINEAR, Method.RAKING, Method.LOGIT)


@dataclass(frozen=True)
class Distance:
    """A distance family with its bound payload.

    Attributes:
        method: LINEAR, RAKING or LOGIT
        lower: Lower bound L on g (logit only)
        upper: Upper bound U on g (logit only)
    """

    method: Method
    lower: Optional[float] = None
    upper: Optional[float] = None

    def __post_init__(self):
        if not self.method.is_distance:
            raise ConfigurationError(
                f"'{self.method.value}' is not a distance function"
            )
        if self.method is Method.LOGIT:
            if self.lower is None or self.upper is None:
                raise ConfigurationError("Logit method requires bounds (L, U)")
            if not (0 <= self.lower < 1 < self.upper) or not np.isfinite(self.upper):
                raise ConfigurationError(
                    f"Logit bounds must satisfy 0 <= L < 1 < U < inf, "
                    f"got L={self.lower}, U={self.upper}"
                )

    @classmethod
    def build(
        cls,
        method: Union[str, Method],
        bounds: Optional[Tuple[float, float]] = None,
    ) -> "Distance":
        """Select the distance once from a method tag and optional bounds.

        Bounds are only meaningful for the logit family and are ignored otherwise.
        """
        method = Method.parse(method)
        if method is Method.LOGIT:
            if bounds is None:
                raise ConfigurationError("Logit method requires bounds (L, U)")
            lower, upper = _unpack_bounds(bounds)
            return cls(method, lower, upper)
        return cls(method)

    @property
    def bounded(self) -> bool:
        return self.method is Method.LOGIT

    @property
    def _logit_terms(self) -> Tuple[float, float]:
        # Slope A and offset log((1-L)/(U-1)) of the logistic form
        L, U = self.lower, self.upper
        slope = (U - L) / ((1 - L) * (U - 1))
        offset = np.log((1 - L) / (U - 1))
        return slope, offset

    def g(self, u: np.ndarray) -> np.ndarray:
        """Reweighting factors F(u)."""
        if self.method is Method.LINEAR:
            return 1.0 + u
        if self.method is Method.RAKING:
            with np.errstate(over="ignore"):
                return np.exp(u)
        slope, offset = self._logit_terms
        return self.lower + (self.upper - self.lower) * expit(slope * u + offset)

    def dg(self, u: np.ndarray) -> np.ndarray:
        """Derivative F'(u)."""
        if self.method is Method.LINEAR:
            return np.ones_like(u, dtype=float)
        if self.method is Method.RAKING:
            with np.errstate(over="ignore"):
                return np.exp(u)
        slope, offset = self._logit_terms
        s = expit(slope * u + offset)
        return (self.upper - self.lower) * slope * s * (1.0 - s)

    def contains(self, g: np.ndarray) -> bool:
        """Whether every factor is finite and admissible for this family."""
        if not np.all(np.isfinite(g)):
            return False
        if self.method is Method.RAKING:
            return bool(np.all(g > 0))
        if self.method is Method.LOGIT:
            return bool(np.all((g >= self.lower) & (g <= self.upper)))
        return True


def _unpack_bounds(bounds) -> Tuple[float, float]:
    try:
        lower, upper = (float(b) for b in bounds)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Bounds must be a pair of numbers (L, U), got {bounds!r}"
        ) from None
    return lower, upper
