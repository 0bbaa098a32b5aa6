"""Expansion of per-variable costs to per-column costs."""

from typing import Dict, Sequence, Union

import numpy as np

from .exceptions import ConfigurationError
from .margins import MarginTable, parse_margins

Costs = Union[Sequence[float], np.ndarray, Dict[str, float]]


def format_costs(costs: Costs, margins: MarginTable) -> np.ndarray:
    """
    Map one cost per margin row onto the columns of the design matrix.

    A categorical variable with k modalities repeats its cost k times. Costs
    may be given in margin-table order or as a dict keyed by variable name;
    variables absent from the dict get an infinite cost. Negative and
    non-finite costs are kept as they are and read as infinite cost by the
    penalized solver.

    Args:
        costs: Costs per margin variable
        margins: Margin table

    Returns:
        Cost vector with one entry per design-matrix column

    Raises:
        ConfigurationError: If the number of costs differs from the number
            of margin rows, or a dict names an unknown variable
    """
    specs = parse_margins(margins)

    if isinstance(costs, dict):
        unknown = set(costs) - {spec.variable for spec in specs}
        if unknown:
            raise ConfigurationError(f"Costs given for unknown margins: {sorted(unknown)}")
        per_variable = [float(costs.get(spec.variable, np.inf)) for spec in specs]
    else:
        per_variable = np.asarray(costs, dtype=float).ravel().tolist()
        if len(per_variable) != len(specs):
            raise ConfigurationError(
                f"Costs length ({len(per_variable)}) doesn't match number of "
                f"margin rows ({len(specs)})"
            )

    return np.concatenate([
        np.full(spec.n_columns, cost) for spec, cost in zip(specs, per_variable)
    ])
