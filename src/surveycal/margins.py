"""
Margin tables and design-matrix construction.

A margin table has one row per calibration variable:

    [variable, n_modalities, value_1, ..., value_k]

``n_modalities == 0`` marks a continuous variable whose single value is its
population total. For a categorical variable the values are the totals of its
modalities in sorted modality order. Rows may be padded with trailing zeros
so that they all have the same width.

Example:
    >>> margins = [
    ...     ["category", 3, 80, 90, 60],
    ...     ["sex", 2, 140, 90, 0],
    ...     ["salary", 0, 470000, 0, 0],
    ... ]
    >>> X, total = create_formatted_margins(data, margins)
"""

import warnings
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, RiskyConfigurationWarning

MarginTable = Union[pd.DataFrame, np.ndarray, Sequence[Sequence]]


@dataclass(frozen=True)
class MarginSpec:
    """One row of a margin table."""
    variable: str
    n_modalities: int
    values: Tuple[float, ...]

    @property
    def is_continuous(self) -> bool:
        return self.n_modalities == 0

    @property
    def n_columns(self) -> int:
        """Number of design-matrix columns generated by this margin."""
        return 1 if self.is_continuous else self.n_modalities


def parse_margins(margins: MarginTable) -> List[MarginSpec]:
    """Parse a margin table into MarginSpec rows.

    Raises:
        ConfigurationError: If a row is malformed
    """
    if isinstance(margins, pd.DataFrame):
        rows = margins.itertuples(index=False, name=None)
    else:
        rows = margins

    specs = []
    for row in rows:
        row = list(row)
        if len(row) < 3:
            raise ConfigurationError(f"Margin row too short: {row}")
        variable = str(row[0])
        try:
            n_modalities = int(float(row[1]))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid number of modalities for '{variable}': {row[1]!r}"
            ) from None
        if n_modalities < 0 or n_modalities == 1:
            raise ConfigurationError(
                f"Margin '{variable}' must have 0 (continuous) or at least 2 modalities"
            )

        n_values = max(n_modalities, 1)
        raw = row[2:2 + n_values]
        if len(raw) < n_values:
            raise ConfigurationError(
                f"Margin '{variable}' declares {n_values} values, got {len(raw)}"
            )
        try:
            values = tuple(float(v) for v in raw)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Non-numeric margin value for '{variable}'") from None
        specs.append(MarginSpec(variable, n_modalities, values))

    if not specs:
        raise ConfigurationError("Margin table is empty")

    names = [spec.variable for spec in specs]
    duplicated = sorted({name for name in names if names.count(name) > 1})
    if duplicated:
        raise ConfigurationError(f"Duplicated margin variables: {duplicated}")
    return specs


def modalities(values: pd.Series) -> pd.Index:
    """Sorted distinct modalities of a categorical variable."""
    index = pd.Index(values.dropna().unique())
    try:
        return index.sort_values()
    except TypeError:
        return pd.Index(sorted(index, key=str))


def categorical_totals(
    spec: MarginSpec,
    pop_total: Optional[float],
    pct: bool,
) -> np.ndarray:
    values = np.asarray(spec.values, dtype=float)
    if not pct:
        if pop_total is not None and not np.isclose(values.sum(), pop_total, rtol=1e-6):
            warnings.warn(
                f"Margins of '{spec.variable}' sum to {values.sum():g}, "
                f"not to the population total {pop_total:g}",
                RiskyConfigurationWarning,
                stacklevel=3,
            )
        return values

    if pop_total is None:
        raise ConfigurationError("pct margins require pop_total")
    if np.isclose(values.sum(), 100.0):
        return values / 100.0 * pop_total
    if np.isclose(values.sum(), 1.0):
        return values * pop_total
    raise ConfigurationError(
        f"Percentage margins of '{spec.variable}' must sum to 100 (or 1), "
        f"got {values.sum():g}"
    )


def expand_margin(
    data: pd.DataFrame,
    spec: MarginSpec,
) -> Iterator[Tuple[str, np.ndarray]]:
    if spec.variable not in data.columns:
        raise ConfigurationError(f"Margin variable '{spec.variable}' not in data columns")
    column = data[spec.variable]

    if spec.is_continuous:
        yield spec.variable, column.to_numpy(dtype=float)
        return

    levels = modalities(column)
    if len(levels) != spec.n_modalities:
        raise ConfigurationError(
            f"Margin '{spec.variable}' declares {spec.n_modalities} modalities, "
            f"data has {len(levels)}: {list(levels)}"
        )
    for level in levels:
        yield f"{spec.variable}_{level}", (column == level).to_numpy(dtype=float)


def create_formatted_margins(
    data: pd.DataFrame,
    margins: MarginTable,
    pop_total: Optional[float] = None,
    pct: bool = False,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build the design matrix and target vector of a calibration problem.

    Args:
        data: Survey data
        margins: Margin table
        pop_total: Population total, required when ``pct`` is True
        pct: Categorical margins are percentages of ``pop_total``

    Returns:
        (X, total): design matrix (n_units, n_columns) and totals (n_columns,)

    Raises:
        ConfigurationError: On unknown variables, wrong modality counts, or
            percentages without a population total
    """
    columns = []
    totals = []
    for spec in parse_margins(margins):
        columns.extend(values for _, values in expand_margin(data, spec))
        if spec.is_continuous:
            totals.append(spec.values[0])
        else:
            totals.extend(categorical_totals(spec, pop_total, pct))

    return np.column_stack(columns), np.asarray(totals, dtype=float)


def margin_labels(data: pd.DataFrame, margins: MarginTable) -> List[str]:
    """Names of the design-matrix columns, e.g. ``category_1``."""
    return [
        label
        for spec in parse_margins(margins)
        for label, _ in expand_margin(data, spec)
    ]


def check_number_margins(data: pd.DataFrame, margins: MarginTable) -> bool:
    """Whether each categorical variable has as many modalities as declared."""
    for spec in parse_margins(margins):
        if spec.is_continuous:
            continue
        if spec.variable not in data.columns:
            return False
        if len(modalities(data[spec.variable])) != spec.n_modalities:
            return False
    return True


def missing_values_margins(data: pd.DataFrame, margins: MarginTable) -> pd.DataFrame:
    """Count missing values of each calibration variable."""
    rows = []
    for spec in parse_margins(margins):
        if spec.variable in data.columns:
            n_missing = int(data[spec.variable].isna().sum())
        else:
            n_missing = len(data)
        rows.append({"variable": spec.variable, "n_missing": n_missing})
    return pd.DataFrame(rows, columns=["variable", "n_missing"])
