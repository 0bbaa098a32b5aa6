"""
Descriptive statistics on calibrated weights.

Summaries of the weight ratios g = w / d and before/after comparisons of the
weighted margins.
"""

from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .margins import MarginTable, categorical_totals, expand_margin, parse_margins

RATIO_QUANTILES = (0.0, 0.01, 0.1, 0.25, 0.5, 0.75, 0.9, 0.99, 1.0)


def weighted_total(values, weights) -> float:
    """Horvitz-Thompson total sum(w * x)."""
    return float(np.sum(np.asarray(values, dtype=float) * np.asarray(weights, dtype=float)))


def weighted_mean(values, weights, pop_total: Optional[float] = None) -> float:
    """
    Weighted mean of a variable.

    Args:
        values: Variable values
        weights: Sampling or calibrated weights
        pop_total: Divide by this instead of sum(weights) (Horvitz-Thompson
            estimator of the mean)
    """
    denominator = float(np.sum(weights)) if pop_total is None else float(pop_total)
    return weighted_total(values, weights) / denominator


def weight_ratio_stats(g: np.ndarray) -> pd.Series:
    """Quantiles and mean of the weight ratios."""
    g = np.asarray(g, dtype=float)
    labels = [f"{q * 100:g}%" for q in RATIO_QUANTILES]
    stats = pd.Series(np.quantile(g, RATIO_QUANTILES), index=labels)
    stats["Mean"] = g.mean()
    return stats


def ratio_distribution_table(
    g: np.ndarray,
    bounds: Optional[Tuple[float, float]] = None,
) -> pd.DataFrame:
    """One-row distribution table of the ratios, with bounds when given."""
    stats = weight_ratio_stats(g).round(4)
    if bounds is None:
        return stats.to_frame().T

    row = {"L": bounds[0]}
    row.update(stats.drop("Mean").to_dict())
    row["U"] = bounds[1]
    row["Mean"] = stats["Mean"]
    return pd.DataFrame([row])


def calibration_margin_stats(
    data: pd.DataFrame,
    margins: MarginTable,
    weight_col: str,
    calibrated_weights: Optional[np.ndarray] = None,
    pop_total: Optional[float] = None,
    pct: bool = False,
) -> pd.DataFrame:
    """
    Compare weighted margins before and after calibration with their targets.

    Categorical margins are reported as percentages of the weighted total,
    continuous margins as totals.

    Returns:
        DataFrame indexed by design-matrix column with columns
        "Before calibration", "After calibration" (if weights given) and "Margin"
    """
    before = data[weight_col].to_numpy(dtype=float)
    after = None if calibrated_weights is None else np.asarray(calibrated_weights, dtype=float)

    rows = {}
    for spec in parse_margins(margins):
        expanded = list(expand_margin(data, spec))
        if spec.is_continuous:
            label, values = expanded[0]
            rows[label] = _margin_row(values, before, after, spec.values[0])
            continue

        targets = categorical_totals(spec, pop_total, pct)
        target_sum = targets.sum()
        for (label, indicator), target in zip(expanded, targets):
            rows[label] = _margin_row(
                indicator, before, after,
                100.0 * target / target_sum if target_sum else np.nan,
                share=True,
            )

    table = pd.DataFrame.from_dict(rows, orient="index")
    return table.round(2)


def _margin_row(values, before, after, target, share=False):
    def estimate(weights):
        total = weighted_total(values, weights)
        return 100.0 * total / weights.sum() if share else total

    row = {"Before calibration": estimate(before)}
    if after is not None:
        row["After calibration"] = estimate(after)
    row["Margin"] = target
    return row
