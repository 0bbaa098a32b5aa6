"""
Calibration on tight bounds.

Finds the narrowest interval [L, U] around 1 for which a bounded (logit)
calibration exists, by one of two strategies:

- Bisection: symmetric bounds [1 - eps, 1 + eps]; eps is bisected, each
  candidate being tested by a full logit calibration.
- Simplex: the question is a linear program in (g, L, U),

      min  U - L
      s.t. X' (d * g) = total
           L <= g_k <= U
           0 <= L <= 1 <= U

  solved directly with the HiGHS simplex solver. The LP scales with the
  number of units, so it is only tried for design matrices up to
  SIMPLEX_MAX_ELEMENTS cells unless forced.
"""

from typing import Optional, Tuple, Union

import numpy as np
from scipy import sparse as sp
from scipy.optimize import linprog

from .distances import Distance, Method
from .exceptions import ConfigurationError, ConvergenceFailure, InfeasibilityFailure
from .newton import CalibrationProblem, solve
from .options import BoundsStrategy
from .results import CalibrationResult
from .search import bisect_monotone

# linprog status code for a problem with no feasible point
LP_INFEASIBLE = 2


def _logit_attempt(
    problem: CalibrationProblem,
    lower: float,
    upper: float,
    tol: float,
    max_iter: int,
) -> Optional[CalibrationResult]:
    try:
        return solve(problem, Distance(Method.LOGIT, lower, upper), tol=tol, max_iter=max_iter)
    except ConvergenceFailure:
        return None


def bisection_bounds(
    problem: CalibrationProblem,
    tol: float = 1e-6,
    max_iter: int = 2500,
    precision_bounds: float = 1e-4,
    verbose: bool = False,
) -> CalibrationResult:
    """
    Tightest symmetric logit bounds [1 - eps, 1 + eps] by bisection on eps.

    Raises:
        SearchExhausted: If no eps below 1 admits a logit calibration
    """
    def feasible(eps: float) -> Optional[CalibrationResult]:
        return _logit_attempt(problem, 1.0 - eps, 1.0 + eps, tol, max_iter)

    eps, result = bisect_monotone(
        feasible,
        lower=0.0,
        upper=1.0 - precision_bounds,
        precision=precision_bounds,
        verbose=verbose,
        label="eps",
    )
    result.bounds = (1.0 - eps, 1.0 + eps)
    result.method = Method.MIN.value
    result.strategy = BoundsStrategy.BISECTION.value
    return result


def simplex_bounds(
    problem: CalibrationProblem,
    tol: float = 1e-6,
    max_iter: int = 2500,
    precision_bounds: float = 1e-4,
    verbose: bool = False,
) -> CalibrationResult:
    """
    Tightest bounds [L, U] from the linear program.

    The LP optimum is a vertex solution; it is refined by a logit
    calibration on bounds widened by ``precision_bounds``. If that refinement
    does not converge the LP factors are returned unchanged.

    Raises:
        InfeasibilityFailure: If the LP has no feasible point
        ConvergenceFailure: If the LP solver stops for any other reason
    """
    n, p = problem.n_units, problem.n_vars

    # Variables: g_1..g_n, L, U
    cost = np.zeros(n + 2)
    cost[n], cost[n + 1] = -1.0, 1.0

    A_eq = sp.hstack([
        sp.csr_matrix((problem.X * problem.d[:, np.newaxis]).T),
        sp.csr_matrix((p, 2)),
    ])
    eye = sp.identity(n, format="csr")
    ones = sp.csr_matrix(np.ones((n, 1)))
    zeros = sp.csr_matrix((n, 1))
    A_ub = sp.vstack([
        sp.hstack([eye, zeros, -ones]),   # g_k - U <= 0
        sp.hstack([-eye, ones, zeros]),   # L - g_k <= 0
    ]).tocsr()
    b_ub = np.zeros(2 * n)
    variable_bounds = [(0, None)] * n + [(0, 1), (1, None)]

    lp = linprog(
        cost,
        A_ub=A_ub,
        b_ub=b_ub,
        A_eq=A_eq,
        b_eq=problem.total,
        bounds=variable_bounds,
        method="highs",
        options={"maxiter": max_iter * max(n, 1)},
    )

    if lp.status == LP_INFEASIBLE:
        raise InfeasibilityFailure(
            f"Tight-bounds linear program is infeasible: {lp.message}"
        )
    if not lp.success:
        raise ConvergenceFailure(
            f"Tight-bounds linear program failed: {lp.message}",
            iterations=getattr(lp, "nit", None),
        )

    g_lp = np.clip(lp.x[:n], lp.x[n], lp.x[n + 1])
    lower, upper = float(lp.x[n]), float(lp.x[n + 1])
    if verbose:
        print(f"  simplex: L={lower:.6g}, U={upper:.6g}")

    # Logit bounds must be strictly around 1
    widened_lower = max(min(lower, 1.0) - precision_bounds, 0.0)
    widened_upper = max(upper, 1.0) + precision_bounds
    refined = _logit_attempt(problem, widened_lower, widened_upper, tol, max_iter)

    if refined is not None:
        refined.bounds = (widened_lower, widened_upper)
        refined.method = Method.MIN.value
        refined.strategy = BoundsStrategy.SIMPLEX.value
        return refined

    residual = problem.estimated_totals(g_lp) - problem.total
    return CalibrationResult(
        g=g_lp,
        method=Method.MIN.value,
        iterations=int(getattr(lp, "nit", 0) or 0),
        max_error=problem.relative_error(residual),
        bounds=(lower, upper),
        strategy=BoundsStrategy.SIMPLEX.value,
    )


def min_bounds_calib(
    X: np.ndarray,
    d: np.ndarray,
    total: np.ndarray,
    q: Optional[np.ndarray] = None,
    tol: float = 1e-6,
    max_iter: int = 2500,
    precision_bounds: float = 1e-4,
    strategy: Union[str, BoundsStrategy] = BoundsStrategy.AUTO,
    force_simplex: bool = False,
    force_bisection: bool = False,
    verbose: bool = False,
) -> CalibrationResult:
    """
    Calibrate on the tightest feasible bounds.

    Args:
        X: Design matrix (n_units, n_vars)
        d: Initial weights (n_units,)
        total: Population totals (n_vars,)
        q: Optional heterogeneity weights (n_units,)
        tol: Calibration tolerance of each logit attempt
        max_iter: Maximum Newton iterations of each logit attempt
        precision_bounds: Target precision on the bounds
        strategy: AUTO, SIMPLEX or BISECTION
        force_simplex: Use the simplex strategy whatever the problem size
        force_bisection: Use bisection; takes precedence over force_simplex
        verbose: Print search progress

    Returns:
        CalibrationResult with ``bounds=(L, U)`` and the strategy used

    Raises:
        ConfigurationError: If inputs are malformed or precision_bounds is
            not in (0, 1)
        SearchExhausted: If bisection finds no feasible bound
        InfeasibilityFailure: If the LP is infeasible
    """
    if not 0 < precision_bounds < 1:
        raise ConfigurationError(
            f"precision_bounds must lie in (0, 1), got {precision_bounds}"
        )
    problem = CalibrationProblem.build(X, d, total, q)

    strategy = BoundsStrategy(strategy)
    if strategy is BoundsStrategy.AUTO:
        strategy = BoundsStrategy.from_flags(force_simplex, force_bisection)
    strategy = strategy.resolve(problem.X.size)

    if verbose:
        print(f"Calibration on tight bounds ({strategy.value})")

    if strategy is BoundsStrategy.SIMPLEX:
        return simplex_bounds(problem, tol, max_iter, precision_bounds, verbose)
    return bisection_bounds(problem, tol, max_iter, precision_bounds, verbose)


def tight_bounds(result: CalibrationResult) -> Tuple[float, float]:
    """Observed range of the factors, as reported after a min-bounds run."""
    return float(result.g.min()), float(result.g.max())
