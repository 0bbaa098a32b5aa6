"""
Penalized (ridge) calibration.

Relaxes exact margin matching (Bocci and Beaumont, 2008). For a ridge
parameter lambda and per-margin costs c_j, the dual equations become

    X' (d * g) - total + lambda * C^-1 lam = 0,   g = F(q * X @ lam)

so that for the linear distance

    lam = (X' D Q X + lambda * C^-1)^-1 (total - X' d)

A larger cost enforces its margin more strictly; an infinite cost
(C^-1 = 0) enforces it exactly whatever lambda. A larger lambda relaxes
the finite-cost margins and pulls every factor towards 1.

When a ``gap`` is requested, lambda is searched on a log10 scale for the
smallest value whose factors satisfy max(g) - min(g) <= gap.
"""

import warnings
from typing import Optional, Tuple, Union

import numpy as np

from .distances import Distance, Method
from .exceptions import (
    ConfigurationError,
    ConvergenceFailure,
    RiskyConfigurationWarning,
    SearchExhausted,
)
from .newton import CalibrationProblem, solve
from .results import CalibrationResult
from .search import bisect_monotone

# Decades searched either side of the default lambda scale
DEFAULT_SEARCH_DECADES = 12.0
# Decades searched either side of a user-supplied lambda
USER_SEARCH_DECADES = 2.0
# Precision of the lambda search, in decades
LAMBDA_PRECISION = 1e-3


def inverse_costs(costs: np.ndarray, u_cost_penalized: float = 1.0) -> np.ndarray:
    """
    Diagonal of C^-1 for a cost vector.

    Finite positive costs are multiplied by ``u_cost_penalized``. Negative or
    non-finite costs map to infinite cost (0 in C^-1). Zero costs map to inf
    (the margin is free).
    """
    costs = np.asarray(costs, dtype=float).ravel()
    if u_cost_penalized <= 0 or not np.isfinite(u_cost_penalized):
        raise ConfigurationError("u_cost_penalized must be positive and finite")

    inverse = np.zeros_like(costs)
    finite = np.isfinite(costs) & (costs > 0)
    inverse[finite] = 1.0 / (costs[finite] * u_cost_penalized)
    inverse[costs == 0] = np.inf
    return inverse


def lambda_scale(problem: CalibrationProblem) -> float:
    """Mean diagonal of X' D X, the natural scale of lambda * C^-1."""
    diag = np.einsum("ij,ij->j", problem.X, problem.X * problem.d[:, np.newaxis])
    scale = float(np.mean(diag))
    return scale if scale > 0 else 1.0


def ridge_solve(
    problem: CalibrationProblem,
    distance: Distance,
    inverse_cost: np.ndarray,
    lambda_: float,
    tol: float = 1e-6,
    max_iter: int = 2500,
) -> CalibrationResult:
    """Solve the penalized calibration equations for one lambda.

    Margins with zero cost are dropped from the system.
    """
    active = np.isfinite(inverse_cost)
    if not np.any(active):
        g = np.ones(problem.n_units)
        return CalibrationResult(g=g, method=Method.PENALIZED.value, iterations=0,
                                 max_error=0.0, lambda_=lambda_)

    sub = problem if np.all(active) else problem.restrict(np.flatnonzero(active))
    result = solve(
        sub,
        distance,
        tol=tol,
        max_iter=max_iter,
        penalty=lambda_ * inverse_cost[active],
    )
    result.method = Method.PENALIZED.value
    result.lambda_ = lambda_
    return result


def penalized_calib(
    X: np.ndarray,
    d: np.ndarray,
    total: np.ndarray,
    costs: np.ndarray,
    method: Union[str, Method] = "linear",
    bounds: Optional[Tuple[float, float]] = None,
    u_cost_penalized: float = 1.0,
    lambda_: Optional[float] = None,
    gap: Optional[float] = None,
    q: Optional[np.ndarray] = None,
    tol: float = 1e-6,
    max_iter: int = 2500,
    verbose: bool = False,
) -> CalibrationResult:
    """
    Ridge calibration with per-margin costs.

    Args:
        X: Design matrix (n_units, n_vars)
        d: Initial weights (n_units,)
        total: Population totals (n_vars,)
        costs: One cost per column of X; negative or non-finite entries
            mean infinite cost (exact margin)
        method: Distance used for the factors: "linear", "raking" or "logit"
        bounds: (L, U), required for "logit"
        u_cost_penalized: Multiplier applied to every finite cost
        lambda_: Ridge parameter. Without ``gap`` it is used as is; with
            ``gap`` it narrows the search to 2 decades around it
        gap: Maximum allowed max(g) - min(g)
        q: Optional heterogeneity weights (n_units,)
        tol: Tolerance on the penalized equations
        max_iter: Maximum Newton iterations per solve, and search steps
        verbose: Print lambda search progress

    Returns:
        CalibrationResult with the factors and ``lambda_`` used

    Raises:
        ConfigurationError: If neither lambda_ nor gap is given, or inputs
            are malformed
        SearchExhausted: If no lambda in the bracket satisfies the gap
        ConvergenceFailure: If a fixed-lambda solve does not converge
    """
    distance = Distance.build(method, bounds)
    problem = CalibrationProblem.build(X, d, total, q)

    costs = np.asarray(costs, dtype=float).ravel()
    if len(costs) != problem.n_vars:
        raise ConfigurationError(
            f"Costs length ({len(costs)}) doesn't match number of margins ({problem.n_vars})"
        )
    inverse_cost = inverse_costs(costs, u_cost_penalized)

    if lambda_ is not None and not (lambda_ > 0 and np.isfinite(lambda_)):
        raise ConfigurationError(f"lambda_ must be positive and finite, got {lambda_}")
    if gap is not None and not gap > 0:
        raise ConfigurationError(f"gap must be positive, got {gap}")

    if gap is None:
        if lambda_ is None:
            raise ConfigurationError(
                "Penalized calibration requires lambda_ or gap"
            )
        return ridge_solve(problem, distance, inverse_cost, lambda_, tol, max_iter)

    if lambda_ is None:
        center = np.log10(lambda_scale(problem))
        decades = DEFAULT_SEARCH_DECADES
    else:
        warnings.warn(
            f"Searching lambda only within {USER_SEARCH_DECADES:g} decades of "
            f"{lambda_:g}; the search may fail if the optimum lies outside",
            RiskyConfigurationWarning,
            stacklevel=2,
        )
        center = np.log10(lambda_)
        decades = USER_SEARCH_DECADES

    def within_gap(log_lambda: float) -> Optional[CalibrationResult]:
        try:
            result = ridge_solve(
                problem, distance, inverse_cost, 10.0 ** log_lambda, tol, max_iter
            )
        except ConvergenceFailure:
            return None
        return result if result.weight_range <= gap else None

    if verbose:
        print(f"Searching ridge lambda for gap {gap:g}")

    try:
        log_lambda, result = bisect_monotone(
            within_gap,
            lower=center - decades,
            upper=center + decades,
            precision=LAMBDA_PRECISION,
            max_steps=max_iter,
            verbose=verbose,
            label="log10(lambda)",
        )
    except SearchExhausted as exc:
        raise SearchExhausted(
            f"No lambda up to {10.0 ** (center + decades):.4g} gives a ratio "
            f"range within gap {gap:g}",
            iterations=exc.iterations,
        ) from exc

    return result
