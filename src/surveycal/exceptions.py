"""
Error types raised by the calibration solvers.

Invalid input is reported as a ``ValueError`` subclass and a failed search
as a ``RuntimeError`` subclass, so callers that only know the builtin
exceptions keep working.
"""

from typing import Optional


class CalibrationError(Exception):
    """Base class for every calibration failure."""


class ConfigurationError(CalibrationError, ValueError):
    """Inputs or options are malformed or incompatible.

    Raised before any iteration is attempted.
    """


class ConvergenceFailure(CalibrationError, RuntimeError):
    """An iterative solver ran out of budget without meeting its tolerance.

    Attributes:
        iterations: Number of iterations (or search steps) performed
        max_error: Last relative margin error, if known
    """

    def __init__(
        self,
        message: str,
        iterations: Optional[int] = None,
        max_error: Optional[float] = None,
    ):
        super().__init__(message)
        self.iterations = iterations
        self.max_error = max_error


class SearchExhausted(ConvergenceFailure):
    """A bound or lambda search found no feasible point in its bracket."""


class InfeasibilityFailure(CalibrationError):
    """The tight-bounds linear program has no feasible solution.

    This is a property of the margins themselves; more iterations will not help.
    """


class RiskyConfigurationWarning(UserWarning):
    """The configuration is accepted but may not converge or may mislead."""
