"""
surveycal: calibration of survey weights on margins.

Computes reweighting factors g so that the calibrated weights d * g
reproduce known population totals of auxiliary variables:
- Generalized calibration with linear, raking and logit distances
- Calibration on the tightest feasible bounds (bisection or simplex)
- Penalized (ridge) calibration with per-margin costs

Example:
    >>> from surveycal import calibration
    >>> margins = [
    ...     ["category", 3, 80, 90, 60],
    ...     ["salary", 0, 470000, 0, 0],
    ... ]
    >>> weights = calibration(data, margins, weight_col="weight", method="raking")
"""

from surveycal.calibration import Calibrator, calibration
from surveycal.newton import CalibrationProblem, IterationState, calib, newton_step, solve
from surveycal.bounds import min_bounds_calib
from surveycal.penalized import penalized_calib
from surveycal.distances import Distance, Method
from surveycal.options import BoundsStrategy, CalibrationOptions
from surveycal.results import CalibrationResult
from surveycal.search import bisect_monotone
from surveycal.margins import (
    create_formatted_margins,
    check_number_margins,
    missing_values_margins,
    parse_margins,
)
from surveycal.costs import format_costs
from surveycal.reporting import (
    calibration_margin_stats,
    weight_ratio_stats,
    weighted_mean,
    weighted_total,
)
from surveycal.exceptions import (
    CalibrationError,
    ConfigurationError,
    ConvergenceFailure,
    InfeasibilityFailure,
    RiskyConfigurationWarning,
    SearchExhausted,
)

__version__ = "0.1.0"

__all__ = [
    # Orchestration
    "Calibrator",
    "calibration",
    # Solvers
    "CalibrationProblem",
    "IterationState",
    "calib",
    "newton_step",
    "solve",
    "min_bounds_calib",
    "penalized_calib",
    "bisect_monotone",
    # Types
    "Distance",
    "Method",
    "BoundsStrategy",
    "CalibrationOptions",
    "CalibrationResult",
    # Margins and reporting
    "create_formatted_margins",
    "check_number_margins",
    "missing_values_margins",
    "parse_margins",
    "format_costs",
    "calibration_margin_stats",
    "weight_ratio_stats",
    "weighted_mean",
    "weighted_total",
    # Errors
    "CalibrationError",
    "ConfigurationError",
    "ConvergenceFailure",
    "InfeasibilityFailure",
    "RiskyConfigurationWarning",
    "SearchExhausted",
]
