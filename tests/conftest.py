"""
Shared data sets for the ilamm tests.
"""

import numpy as np
import pytest


@pytest.fixture
def sparse_data():
    """High-dimensional design: n = 50, d = 100, beta = (2, 2, 2, 0, ..., 0), no intercept."""
    rng = np.random.default_rng(2018)
    n, d = 50, 100
    X = rng.standard_normal((n, d))
    beta = np.r_[2, 2, 2, np.zeros(d - 3)]
    Y = X.dot(beta) + rng.standard_normal(n)
    return X, Y


@pytest.fixture
def small_data():
    """Low-dimensional design with intercept 0.5: n = 60, d = 8."""
    rng = np.random.default_rng(42)
    n = 60
    beta = np.array([1.5, -1, 0, 0, 1, 0, 0, 0])
    X = rng.standard_normal((n, len(beta)))
    Y = 0.5 + X.dot(beta) + 0.5 * rng.standard_normal(n)
    return X, Y
