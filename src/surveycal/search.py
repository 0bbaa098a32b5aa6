"""Bisection search for the boundary of a monotone feasibility predicate."""

from typing import Callable, Optional, Tuple, TypeVar

from .exceptions import ConvergenceFailure, SearchExhausted

T = TypeVar("T")


def bisect_monotone(
    predicate: Callable[[float], Optional[T]],
    lower: float,
    upper: float,
    precision: float,
    max_steps: int = 200,
    verbose: bool = False,
    label: str = "x",
) -> Tuple[float, T]:
    """
    Find the smallest feasible point of a monotone predicate.

    The predicate returns a payload when its argument is feasible and None
    otherwise, and feasibility must be monotone: if x is feasible every
    x' > x in [lower, upper] is feasible too. ``lower`` itself is never
    evaluated.

    Args:
        predicate: Feasibility test returning a payload or None
        lower: Left end of the bracket (assumed infeasible)
        upper: Right end of the bracket
        precision: Stop once the bracket is narrower than this
        max_steps: Maximum number of bisection steps
        verbose: Print each step
        label: Name of the searched quantity in progress output

    Returns:
        (x, payload) where x is the feasible end of the final bracket,
        so x exceeds the true boundary by less than ``precision``

    Raises:
        SearchExhausted: If ``upper`` is not feasible
        ConvergenceFailure: If max_steps is reached before ``precision``
    """
    if not lower < upper:
        raise ValueError(f"Empty search bracket [{lower}, {upper}]")

    payload = predicate(upper)
    if payload is None:
        raise SearchExhausted(
            f"No feasible {label} found up to {upper:.6g}", iterations=1
        )

    steps = 0
    while upper - lower > precision:
        if steps >= max_steps:
            raise ConvergenceFailure(
                f"Search for {label} did not reach precision {precision:g} "
                f"in {max_steps} steps (bracket [{lower:.6g}, {upper:.6g}])",
                iterations=steps,
            )
        steps += 1
        mid = 0.5 * (lower + upper)
        candidate = predicate(mid)
        feasible = candidate is not None
        if verbose:
            print(f"  step {steps}: {label}={mid:.6g} {'feasible' if feasible else 'infeasible'}")
        if feasible:
            upper, payload = mid, candidate
        else:
            lower = mid

    return upper, payload
