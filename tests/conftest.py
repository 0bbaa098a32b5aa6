"""Shared survey fixtures for calibration tests."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def design():
    """300 units, indicators of groups a and b plus a continuous variable.

    Targets [80, 90, 60]: groups a and b must shrink to 0.8 and 0.9 of their
    size and group c makes up the continuous total.
    """
    np.random.seed(42)
    n = 300
    group = np.repeat(["a", "b", "c"], n // 3)
    x = np.random.uniform(0.1, 0.3, n)
    X = np.column_stack([
        (group == "a").astype(float),
        (group == "b").astype(float),
        x,
    ])
    d = np.ones(n)
    total = np.array([80.0, 90.0, 60.0])
    return X, d, total


@pytest.fixture
def employees():
    """Survey of 300 employees with unit initial weights."""
    np.random.seed(42)
    n = 300
    return pd.DataFrame({
        "category": np.random.choice([1, 2, 3], n, p=[0.35, 0.40, 0.25]),
        "sex": np.random.choice([1, 2], n, p=[0.6, 0.4]),
        "salary": np.random.uniform(1000, 2000, n),
        "movies": np.random.poisson(2, n),
        "weight": np.ones(n),
    })


@pytest.fixture
def margins():
    """Margin table for the employees survey (totals sum to 230)."""
    return [
        ["category", 3, 80, 90, 60],
        ["sex", 2, 140, 90, 0],
        ["salary", 0, 350000, 0, 0],
    ]
