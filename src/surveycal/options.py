"""Validated option set shared by the calibration entry points."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .exceptions import ConfigurationError

# Above this many design-matrix cells the simplex formulation is not attempted
SIMPLEX_MAX_ELEMENTS = 10**8


class BoundsStrategy(Enum):
    """How the tightest calibration bounds are searched."""

    AUTO = "auto"
    SIMPLEX = "simplex"
    BISECTION = "bisection"

    @classmethod
    def from_flags(cls, force_simplex: bool = False, force_bisection: bool = False) -> "BoundsStrategy":
        """Map the two override flags to a strategy.

        ``force_bisection`` wins when both flags are set.
        """
        if force_bisection:
            return cls.BISECTION
        if force_simplex:
            return cls.SIMPLEX
        return cls.AUTO

    def resolve(self, n_elements: int) -> "BoundsStrategy":
        """Pick a concrete strategy for a design matrix of ``n_elements`` cells."""
        if self is not BoundsStrategy.AUTO:
            return self
        if n_elements <= SIMPLEX_MAX_ELEMENTS:
            return BoundsStrategy.SIMPLEX
        return BoundsStrategy.BISECTION


class CalibrationOptions(BaseModel):
    """Numeric knobs of a calibration call.

    Examples:
        >>> CalibrationOptions(max_iter=500).calib_tolerance
        1e-06
        >>> CalibrationOptions(force_simplex=True, force_bisection=True).bounds_strategy
        <BoundsStrategy.BISECTION: 'bisection'>
    """

    max_iter: int = Field(default=2500, ge=1)
    calib_tolerance: float = Field(default=1e-6, gt=0)
    precision_bounds: float = Field(default=1e-4, gt=0, lt=1)
    u_cost_penalized: float = Field(default=1.0, gt=0)
    lambda_: Optional[float] = Field(default=None, gt=0)
    gap: Optional[float] = Field(default=None, gt=0)
    force_simplex: bool = False
    force_bisection: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _finite_knobs(self) -> "CalibrationOptions":
        for name in ("calib_tolerance", "u_cost_penalized", "lambda_", "gap"):
            value = getattr(self, name)
            if value is not None and value == float("inf"):
                raise ValueError(f"{name} must be finite")
        return self

    @property
    def bounds_strategy(self) -> BoundsStrategy:
        return BoundsStrategy.from_flags(self.force_simplex, self.force_bisection)

    @classmethod
    def build(cls, **kwargs) -> "CalibrationOptions":
        """Construct options, reporting invalid values as ConfigurationError."""
        try:
            return cls(**kwargs)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid calibration options: {exc}") from exc
