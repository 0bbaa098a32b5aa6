"""Sanity checks run on survey data before calibration."""

from typing import Optional

import numpy as np
import pandas as pd

from .distances import Method
from .exceptions import ConfigurationError
from .margins import MarginTable, modalities, missing_values_margins, parse_margins


def check_weights(weights) -> np.ndarray:
    """
    Check initial weights.

    Returns:
        Weights as a float array

    Raises:
        ConfigurationError: If weights are empty, missing, or not strictly positive
    """
    weights = pd.to_numeric(pd.Series(np.asarray(weights).ravel()), errors="coerce")
    if len(weights) == 0:
        raise ConfigurationError("Weights column has length zero")
    if weights.isna().any():
        raise ConfigurationError("Some weights are NA")
    if (weights <= 0).any():
        raise ConfigurationError("Some weights are negative or zero")
    return weights.to_numpy(dtype=float)


def check_margin_variables(data: pd.DataFrame, margins: MarginTable) -> None:
    """
    Check calibration variables against the margin table.

    Raises:
        ConfigurationError: On absent variables, missing values, or a modality
            count that differs from the margin table
    """
    specs = parse_margins(margins)

    absent = [spec.variable for spec in specs if spec.variable not in data.columns]
    if absent:
        raise ConfigurationError(f"Margin variables not in data columns: {absent}")

    missing = missing_values_margins(data, margins)
    if missing["n_missing"].sum() > 0:
        with_na = missing[missing["n_missing"] > 0]
        raise ConfigurationError(
            f"NAs found in calibration variables:\n{with_na.to_string(index=False)}"
        )

    mismatched = []
    for spec in specs:
        if spec.is_continuous:
            continue
        found = len(modalities(data[spec.variable]))
        if found != spec.n_modalities:
            mismatched.append(f"{spec.variable} (declared {spec.n_modalities}, found {found})")
    if mismatched:
        raise ConfigurationError(f"Error in number of modalities: {', '.join(mismatched)}")


def check_q(
    q: Optional[np.ndarray],
    n_units: int,
    method: Method,
    has_costs: bool,
    min_bounds: bool,
) -> None:
    """
    Check the q-weights and the options they are incompatible with.

    Raises:
        ConfigurationError: On a length mismatch, or q combined with penalized
            or tight-bounds calibration
    """
    if q is None:
        return
    if len(np.asarray(q).ravel()) != n_units:
        raise ConfigurationError("Vector q must have same length as data")
    if has_costs or method is Method.PENALIZED:
        raise ConfigurationError("q weights not supported with penalized calibration yet")
    if min_bounds or method is Method.MIN:
        raise ConfigurationError("q weights not supported with calibration on min bounds yet")
