"""
Newton-Raphson solver for generalized calibration.

Finds reweighting factors g so that the calibrated weights d * g reproduce
known totals of the auxiliary variables:

    X' (d * g) = total

while g stays close to 1 under the chosen distance. The primal problem
is solved through its dual: for Lagrange multipliers lam the factors are
g = F(q * X @ lam), and Newton's method is applied to

    phi(lam) = X' (d * F(q * X @ lam)) - total

with Jacobian X' diag(d * q * F'(u)) X. For the linear distance one step from
lam = 0 is the exact closed-form solution.

An optional ridge diagonal turns phi into phi(lam) + penalty * lam, which is
the dual of penalized (ridge) calibration.

Example:
    >>> import numpy as np
    >>> from surveycal.newton import calib
    >>> X = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
    >>> result = calib(X, np.ones(3), np.array([3.0, 2.0]), method="raking")
    >>> np.round(result.g, 6)
    array([1.5, 1.5, 2. ])
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np

from .distances import Distance, Method
from .exceptions import ConfigurationError, ConvergenceFailure
from .results import CalibrationResult

# Totals smaller than this are compared on an absolute scale
TOTAL_EPS = 1e-12
# Step halvings allowed when a Newton step leaves the admissible range
MAX_HALVINGS = 10


@dataclass(frozen=True, eq=False)
class CalibrationProblem:
    """Design matrix, initial weights, totals and q-weights of one problem.

    Built once and shared read-only by every solver call of a bound or
    lambda search.

    Attributes:
        X: Design matrix (n_units, n_vars)
        d: Initial weights (n_units,)
        total: Population totals (n_vars,)
        q: Heterogeneity weights (n_units,)
    """
    X: np.ndarray
    d: np.ndarray
    total: np.ndarray
    q: np.ndarray
    scale: np.ndarray = field(repr=False)

    @classmethod
    def build(
        cls,
        X: np.ndarray,
        d: np.ndarray,
        total: np.ndarray,
        q: Optional[np.ndarray] = None,
    ) -> "CalibrationProblem":
        """Validate inputs and build a problem.

        Raises:
            ConfigurationError: On shape mismatches, non-finite entries,
                non-positive weights, or an all-zero column with a nonzero total
        """
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X[:, np.newaxis]
        if X.ndim != 2 or X.shape[0] == 0 or X.shape[1] == 0:
            raise ConfigurationError(
                f"Design matrix must be a non-empty 2-D array, got shape {X.shape}"
            )
        n, p = X.shape

        d = np.asarray(d, dtype=float).ravel()
        total = np.asarray(total, dtype=float).ravel()
        if len(d) != n:
            raise ConfigurationError(
                f"Weights length ({len(d)}) doesn't match design matrix rows ({n})"
            )
        if len(total) != p:
            raise ConfigurationError(
                f"Totals length ({len(total)}) doesn't match design matrix columns ({p})"
            )
        if not np.all(np.isfinite(X)):
            raise ConfigurationError("Design matrix contains non-finite values")
        if not np.all(np.isfinite(d)) or np.any(d <= 0):
            raise ConfigurationError("Weights must be finite and strictly positive")
        if not np.all(np.isfinite(total)):
            raise ConfigurationError("Totals must be finite")

        if q is None:
            q = np.ones(n)
        else:
            q = np.asarray(q, dtype=float).ravel()
            if len(q) != n:
                raise ConfigurationError(
                    f"Vector q length ({len(q)}) doesn't match design matrix rows ({n})"
                )
            if not np.all(np.isfinite(q)) or np.any(q <= 0):
                raise ConfigurationError("Vector q must be finite and strictly positive")

        empty = ~np.any(X != 0, axis=0) & (np.abs(total) > TOTAL_EPS)
        if np.any(empty):
            raise ConfigurationError(
                f"Columns {np.flatnonzero(empty).tolist()} are entirely zero "
                f"but have a nonzero total"
            )

        scale = np.where(np.abs(total) > TOTAL_EPS, np.abs(total), 1.0)
        return cls(X=X, d=d, total=total, q=q, scale=scale)

    @property
    def n_units(self) -> int:
        return self.X.shape[0]

    @property
    def n_vars(self) -> int:
        return self.X.shape[1]

    def estimated_totals(self, g: np.ndarray) -> np.ndarray:
        """Weighted totals X' (d * g)."""
        return self.X.T @ (self.d * g)

    def relative_error(self, residual: np.ndarray) -> float:
        return float(np.max(np.abs(residual) / self.scale))

    def restrict(self, columns: np.ndarray) -> "CalibrationProblem":
        """Problem on a subset of the calibration variables."""
        return CalibrationProblem(
            X=self.X[:, columns],
            d=self.d,
            total=self.total[columns],
            q=self.q,
            scale=self.scale[columns],
        )


@dataclass(frozen=True, eq=False)
class IterationState:
    """Dual multipliers and derived quantities after one Newton iteration."""
    lam: np.ndarray
    g: np.ndarray
    residual: np.ndarray
    iteration: int
    max_error: float


def _residual(
    problem: CalibrationProblem,
    g: np.ndarray,
    lam: np.ndarray,
    penalty: Optional[np.ndarray],
) -> np.ndarray:
    residual = problem.estimated_totals(g) - problem.total
    if penalty is not None:
        residual = residual + penalty * lam
    return residual


def _scaled_lstsq(jacobian: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Solve jacobian @ step = rhs after symmetric diagonal scaling.

    Columns of very different magnitude (a large ridge penalty next to an
    exact margin, or counts next to monetary totals) would otherwise fall
    below the lstsq singular-value cutoff. The least-squares solve acts as a
    generalized inverse for collinear margins.
    """
    diag = np.abs(np.diag(jacobian))
    scale = np.where(diag > 0, 1.0 / np.sqrt(np.where(diag > 0, diag, 1.0)), 1.0)
    scaled = jacobian * scale[:, np.newaxis] * scale[np.newaxis, :]
    return scale * np.linalg.lstsq(scaled, scale * rhs, rcond=None)[0]


def initial_state(
    problem: CalibrationProblem,
    distance: Distance,
    penalty: Optional[np.ndarray] = None,
) -> IterationState:
    """State at lam = 0, where every factor equals 1."""
    lam = np.zeros(problem.n_vars)
    g = distance.g(np.zeros(problem.n_units))
    residual = _residual(problem, g, lam, penalty)
    return IterationState(lam, g, residual, 0, problem.relative_error(residual))


def newton_step(
    problem: CalibrationProblem,
    distance: Distance,
    state: IterationState,
    penalty: Optional[np.ndarray] = None,
) -> IterationState:
    """Perform one Newton-Raphson update of the dual multipliers.

    The step is halved while the resulting factors are non-finite or outside
    the admissible range of the distance.

    Raises:
        ConvergenceFailure: If no admissible step is found after MAX_HALVINGS
    """
    X, q = problem.X, problem.q
    u = q * (X @ state.lam)
    curvature = problem.d * q * distance.dg(u)
    jacobian = X.T @ (X * curvature[:, np.newaxis])
    if penalty is not None:
        jacobian = jacobian + np.diag(penalty)

    step = _scaled_lstsq(jacobian, -state.residual)

    alpha = 1.0
    for _ in range(MAX_HALVINGS + 1):
        lam = state.lam + alpha * step
        g = distance.g(q * (X @ lam))
        if distance.contains(g):
            break
        alpha *= 0.5
    else:
        raise ConvergenceFailure(
            f"No admissible Newton step at iteration {state.iteration + 1} "
            f"for method '{distance.method.value}'",
            iterations=state.iteration,
            max_error=state.max_error,
        )

    residual = _residual(problem, g, lam, penalty)
    return IterationState(
        lam=lam,
        g=g,
        residual=residual,
        iteration=state.iteration + 1,
        max_error=problem.relative_error(residual),
    )


def solve(
    problem: CalibrationProblem,
    distance: Distance,
    tol: float = 1e-6,
    max_iter: int = 2500,
    penalty: Optional[np.ndarray] = None,
) -> CalibrationResult:
    """Iterate Newton steps until the margins are met.

    Args:
        problem: Validated calibration problem
        distance: Distance family (with bounds for logit)
        tol: Maximum relative margin error accepted
        max_iter: Maximum number of Newton iterations
        penalty: Optional ridge diagonal (n_vars,) for penalized calibration

    Returns:
        CalibrationResult with the reweighting factors

    Raises:
        ConvergenceFailure: If the tolerance is not reached within max_iter
    """
    state = initial_state(problem, distance, penalty)
    history: List[dict] = [{"iteration": 0, "max_error": state.max_error}]

    while state.max_error >= tol:
        if state.iteration >= max_iter:
            raise ConvergenceFailure(
                f"No convergence in {max_iter} iterations "
                f"(max relative error {state.max_error:.3g})",
                iterations=state.iteration,
                max_error=state.max_error,
            )
        state = newton_step(problem, distance, state, penalty)
        history.append({"iteration": state.iteration, "max_error": state.max_error})

        if distance.method is Method.LINEAR and state.max_error >= tol:
            # The linear step is already the exact least-squares solution
            raise ConvergenceFailure(
                f"Linear calibration cannot reproduce the margins "
                f"(max relative error {state.max_error:.3g}); "
                f"the margins may be incompatible",
                iterations=state.iteration,
                max_error=state.max_error,
            )

    return CalibrationResult(
        g=state.g,
        method=distance.method.value,
        iterations=state.iteration,
        max_error=state.max_error,
        bounds=(distance.lower, distance.upper) if distance.bounded else None,
        history=history,
    )


def calib(
    X: np.ndarray,
    d: np.ndarray,
    total: np.ndarray,
    method: Union[str, Method] = "linear",
    bounds: Optional[Tuple[float, float]] = None,
    q: Optional[np.ndarray] = None,
    tol: float = 1e-6,
    max_iter: int = 2500,
) -> CalibrationResult:
    """
    Compute calibration reweighting factors.

    Args:
        X: Design matrix (n_units, n_vars)
        d: Initial weights (n_units,)
        total: Population totals of the columns of X (n_vars,)
        method: "linear", "raking" or "logit"
        bounds: (L, U) with L < 1 < U, required for "logit"
        q: Optional heterogeneity weights (n_units,)
        tol: Maximum relative margin error accepted
        max_iter: Maximum number of Newton iterations

    Returns:
        CalibrationResult; calibrated weights are ``d * result.g``

    Raises:
        ConfigurationError: If inputs are malformed
        ConvergenceFailure: If the margins cannot be met within max_iter
    """
    distance = Distance.build(method, bounds)
    if tol <= 0 or max_iter < 1:
        raise ConfigurationError("tol must be positive and max_iter at least 1")
    problem = CalibrationProblem.build(X, d, total, q)
    return solve(problem, distance, tol=tol, max_iter=max_iter)
