"""
Calibration on margins.

Adjusts survey weights so that weighted totals of auxiliary variables match
known population margins, keeping the new weights close to the initial ones.

Supported methods:
- linear: chi-square distance, closed form (weights may become negative)
- raking: raking ratio / exponential distance, positive weights
- logit: bounded distance, L <= w / d <= U
- min: logit calibration on the tightest feasible bounds
- penalized: ridge calibration with per-margin costs (also triggered by
  passing ``costs`` with any of the distances above)

Example:
    >>> from surveycal.calibration import Calibrator
    >>> margins = [
    ...     ["category", 3, 80, 90, 60],
    ...     ["sex", 2, 140, 90, 0],
    ...     ["salary", 0, 470000, 0, 0],
    ... ]
    >>> calibrator = Calibrator(method="raking")
    >>> calibrated = calibrator.fit_transform(data, margins, weight_col="weight")

References:
    Deville, J.-C. and Sarndal, C.-E. (1992). Calibration estimators in
    survey sampling. JASA 87(418), 376-382.
    Bocci, J. and Beaumont, C. (2008). Another look at ridge calibration.
    Metron 66(1), 5-20.
"""

import warnings
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .bounds import min_bounds_calib, tight_bounds
from .costs import Costs, format_costs
from .distances import Distance, Method
from .exceptions import ConfigurationError, RiskyConfigurationWarning
from .margins import MarginTable, create_formatted_margins, margin_labels
from .newton import CalibrationProblem, solve
from .options import CalibrationOptions
from .penalized import penalized_calib
from .reporting import calibration_margin_stats, ratio_distribution_table
from .results import CalibrationResult
from .validation import check_margin_variables, check_q, check_weights

Bounds = Union[Tuple[float, float], str, None]


class Calibrator:
    """
    Calibrate survey weights on margins.

    Attributes set by ``fit``:
        weights_: Calibrated weights (n_units,)
        g_: Weight ratios weights_ / initial weights
        result_: CalibrationResult of the solver
        design_matrix_, totals_: Formatted calibration problem
        margin_labels_: Names of the design-matrix columns
        converged_: Whether the solver met calib_tolerance

    Example:
        >>> calibrator = Calibrator(method="logit", bounds=(0.5, 1.5))
        >>> calibrator.fit(data, margins)
        >>> calibrator.get_weight_stats()["max_ratio"] <= 1.5
        True
    """

    def __init__(
        self,
        method: Optional[Union[str, Method]] = "linear",
        bounds: Bounds = None,
        max_iter: int = 2500,
        calib_tolerance: float = 1e-6,
        u_cost_penalized: float = 1.0,
        lambda_: Optional[float] = None,
        gap: Optional[float] = None,
        precision_bounds: float = 1e-4,
        force_simplex: bool = False,
        force_bisection: bool = False,
        check: bool = True,
        description: bool = False,
        verbose: bool = False,
    ):
        """
        Initialize calibrator.

        Args:
            method: "linear", "raking", "logit", "min" or "penalized"; None
                falls back to raking with a warning
            bounds: (L, U) for logit, or "min" for the tightest bounds
            max_iter: Maximum number of iterations
            calib_tolerance: Tolerance on the relative margin errors
            u_cost_penalized: Multiplier of every finite cost (penalized)
            lambda_: Ridge parameter, or a starting guess when ``gap`` is set
            gap: Maximum gap between largest and smallest weight ratio
                (penalized)
            precision_bounds: Precision of the tight bounds (min)
            force_simplex: Always use the simplex for tight bounds
            force_bisection: Always use bisection for tight bounds; wins
                over force_simplex
            check: Run sanity checks on weights and margin variables
            description: Print a summary of the weight ratios and margins
            verbose: Print search progress

        Raises:
            ConfigurationError: If the method or an option is invalid
        """
        if method is None:
            warnings.warn(
                "Method not specified, raking method selected by default",
                RiskyConfigurationWarning,
                stacklevel=2,
            )
            method = Method.RAKING
        self.method = Method.parse(method)
        self.bounds = bounds
        self.options = CalibrationOptions.build(
            max_iter=max_iter,
            calib_tolerance=calib_tolerance,
            precision_bounds=precision_bounds,
            u_cost_penalized=u_cost_penalized,
            lambda_=lambda_,
            gap=gap,
            force_simplex=force_simplex,
            force_bisection=force_bisection,
        )
        if isinstance(bounds, str) and bounds != "min":
            raise ConfigurationError(f"Invalid bounds: {bounds!r}. Use (L, U) or 'min'")
        self.check = check
        self.description = description
        self.verbose = verbose

        # Set during fit
        self.weights_: Optional[np.ndarray] = None
        self.g_: Optional[np.ndarray] = None
        self.result_: Optional[CalibrationResult] = None
        self.design_matrix_: Optional[np.ndarray] = None
        self.totals_: Optional[np.ndarray] = None
        self.margin_labels_: Optional[List[str]] = None
        self.n_records_: Optional[int] = None
        self.is_fitted_: bool = False
        self.converged_: bool = False

    @property
    def min_bounds(self) -> bool:
        return self.method is Method.MIN or (isinstance(self.bounds, str) and self.bounds == "min")

    def fit(
        self,
        data: pd.DataFrame,
        margins: MarginTable,
        weight_col: str = "weight",
        q: Optional[np.ndarray] = None,
        costs: Optional[Costs] = None,
        pop_total: Optional[float] = None,
        pct: bool = False,
        scale: Optional[bool] = None,
    ) -> "Calibrator":
        """
        Fit calibrated weights.

        Args:
            data: Survey data
            margins: Margin table (see surveycal.margins)
            weight_col: Name of the initial weight column
            q: Optional heterogeneity weights, one per unit
            costs: Costs per margin variable; triggers penalized calibration
            pop_total: Population total (needed for percentage margins)
            pct: Categorical margins are percentages of ``pop_total``
            scale: Rescale initial weights to sum to ``pop_total`` before
                calibrating; defaults to True when ``pop_total`` is given

        Returns:
            self

        Raises:
            ConfigurationError: If inputs are invalid or incompatible
            ConvergenceFailure: If the solver does not converge
            InfeasibilityFailure: If the tight-bounds LP is infeasible
        """
        if weight_col not in data.columns:
            raise ConfigurationError(f"Weight column '{weight_col}' not in data columns")
        if scale is None:
            scale = pop_total is not None
        if scale and pop_total is None:
            raise ConfigurationError("When scale is True, pop_total cannot be None")
        if self.method is Method.PENALIZED and costs is None:
            raise ConfigurationError("Penalized calibration requires costs")

        if self.check:
            weights = check_weights(data[weight_col])
            check_margin_variables(data, margins)
            check_q(q, len(data), self.method, costs is not None, self.min_bounds)
        else:
            weights = data[weight_col].to_numpy(dtype=float)

        X, total = create_formatted_margins(data, margins, pop_total=pop_total, pct=pct)
        self.design_matrix_ = X
        self.totals_ = total
        self.margin_labels_ = margin_labels(data, margins)
        self.n_records_ = len(data)

        if scale:
            weights = weights * (pop_total / weights.sum())

        if costs is not None:
            if self.options.gap is not None and pop_total is None:
                warnings.warn(
                    "pop_total None when gap is selected is a risky setting",
                    RiskyConfigurationWarning,
                    stacklevel=2,
                )
            result = self._fit_penalized(X, weights, total, format_costs(costs, margins))
        elif self.min_bounds:
            result = min_bounds_calib(
                X, weights, total,
                tol=self.options.calib_tolerance,
                max_iter=self.options.max_iter,
                precision_bounds=self.options.precision_bounds,
                strategy=self.options.bounds_strategy,
                verbose=self.verbose,
            )
        else:
            distance = Distance.build(self.method, self.bounds)
            problem = CalibrationProblem.build(X, weights, total, q)
            result = solve(
                problem,
                distance,
                tol=self.options.calib_tolerance,
                max_iter=self.options.max_iter,
            )

        self.result_ = result
        self.g_ = result.g
        self.weights_ = result.weights(weights)
        # Penalized results report the error of the penalized equations
        self.converged_ = result.max_error < self.options.calib_tolerance
        self.is_fitted_ = True

        if self.description:
            self._describe(data, margins, weight_col, pop_total, pct)

        return self

    def _fit_penalized(
        self,
        X: np.ndarray,
        weights: np.ndarray,
        total: np.ndarray,
        costs: np.ndarray,
    ) -> CalibrationResult:
        method = Method.LINEAR if self.method is Method.PENALIZED else self.method
        if method is Method.MIN:
            raise ConfigurationError("Penalized calibration cannot search tight bounds")
        return penalized_calib(
            X, weights, total, costs,
            method=method,
            bounds=None if isinstance(self.bounds, str) else self.bounds,
            u_cost_penalized=self.options.u_cost_penalized,
            lambda_=self.options.lambda_,
            gap=self.options.gap,
            tol=self.options.calib_tolerance,
            max_iter=self.options.max_iter,
            verbose=self.verbose,
        )

    def _describe(self, data, margins, weight_col, pop_total, pct):
        print()
        print("################### Summary of before/after weight ratios ###################")
        print(f"Calibration method : {self.method.value}")
        if self.min_bounds:
            bounds = tight_bounds(self.result_)
        else:
            bounds = self.result_.bounds
        if self.result_.lambda_ is not None:
            print(f"\t lambda : {self.result_.lambda_:.4g}")
        print(ratio_distribution_table(self.g_, bounds).to_string(index=False))
        print()
        print("################### Comparison Margins Before/After calibration ###################")
        print(self.margin_stats(data, margins, weight_col, pop_total, pct).to_string())

    def _check_fitted(self):
        if not self.is_fitted_:
            raise ValueError("Calibrator not fitted. Call fit() first.")

    def transform(
        self,
        data: pd.DataFrame,
        output_col: str = "calibrated_weight",
    ) -> pd.DataFrame:
        """
        Add the calibrated weights to a copy of the data.

        Raises:
            ValueError: If not fitted or data length doesn't match
        """
        self._check_fitted()
        if len(data) != self.n_records_:
            raise ValueError(
                f"Data length ({len(data)}) doesn't match fitted length ({self.n_records_})"
            )
        result = data.copy()
        result[output_col] = self.weights_
        return result

    def fit_transform(
        self,
        data: pd.DataFrame,
        margins: MarginTable,
        weight_col: str = "weight",
        output_col: str = "calibrated_weight",
        **fit_kwargs,
    ) -> pd.DataFrame:
        """Fit calibrated weights and add them to a copy of the data."""
        self.fit(data, margins, weight_col=weight_col, **fit_kwargs)
        return self.transform(data, output_col=output_col)

    def validate(self) -> Dict[str, Any]:
        """
        Compare weighted totals of the design matrix with the targets.

        Returns:
            Dict with per-column errors, max_error, converged (the solver met
            its tolerance) and margins_met (every margin within tolerance;
            False after penalized calibration relaxes a margin)
        """
        self._check_fitted()
        actual = self.design_matrix_.T @ self.weights_
        errors = {}
        for label, value, target in zip(self.margin_labels_, actual, self.totals_):
            rel_error = abs(value - target) / abs(target) if target != 0 else abs(value)
            errors[label] = {
                "actual": float(value),
                "target": float(target),
                "relative_error": float(rel_error),
            }
        max_error = max(e["relative_error"] for e in errors.values()) if errors else 0.0
        return {
            "margin_errors": errors,
            "max_error": max_error,
            "converged": self.converged_,
            "margins_met": max_error <= self.options.calib_tolerance,
        }

    def get_weight_stats(self) -> Dict[str, float]:
        """Min, max, mean of the calibrated weights and of their ratios."""
        self._check_fitted()
        weights = self.weights_
        mean_w = weights.mean()
        return {
            "min_weight": float(weights.min()),
            "max_weight": float(weights.max()),
            "mean_weight": float(mean_w),
            "cv": float(weights.std() / mean_w) if mean_w > 0 else 0.0,
            "min_ratio": float(self.g_.min()),
            "max_ratio": float(self.g_.max()),
            "n_iterations": self.result_.iterations,
        }

    def get_convergence_history(self) -> List[Dict[str, Any]]:
        self._check_fitted()
        return self.result_.history

    def margin_stats(
        self,
        data: pd.DataFrame,
        margins: MarginTable,
        weight_col: str = "weight",
        pop_total: Optional[float] = None,
        pct: bool = False,
    ) -> pd.DataFrame:
        """Before/after comparison of the margins (see reporting)."""
        self._check_fitted()
        return calibration_margin_stats(
            data, margins, weight_col,
            calibrated_weights=self.weights_,
            pop_total=pop_total,
            pct=pct,
        )


def calibration(
    data: pd.DataFrame,
    margins: MarginTable,
    weight_col: str = "weight",
    method: Optional[Union[str, Method]] = "linear",
    bounds: Bounds = None,
    q: Optional[np.ndarray] = None,
    costs: Optional[Costs] = None,
    gap: Optional[float] = None,
    pop_total: Optional[float] = None,
    pct: bool = False,
    scale: Optional[bool] = None,
    description: bool = False,
    max_iter: int = 2500,
    check: bool = True,
    calib_tolerance: float = 1e-6,
    u_cost_penalized: float = 1.0,
    lambda_: Optional[float] = None,
    precision_bounds: float = 1e-4,
    force_simplex: bool = False,
    force_bisection: bool = False,
) -> np.ndarray:
    """
    Calibrate weights on margins in one call.

    See Calibrator for the meaning of each argument.

    Returns:
        Calibrated weights (n_units,)
    """
    calibrator = Calibrator(
        method=method,
        bounds=bounds,
        max_iter=max_iter,
        calib_tolerance=calib_tolerance,
        u_cost_penalized=u_cost_penalized,
        lambda_=lambda_,
        gap=gap,
        precision_bounds=precision_bounds,
        force_simplex=force_simplex,
        force_bisection=force_bisection,
        check=check,
        description=description,
    )
    calibrator.fit(
        data, margins,
        weight_col=weight_col,
        q=q,
        costs=costs,
        pop_total=pop_total,
        pct=pct,
        scale=scale,
    )
    return calibrator.weights_
