"""Shared fixtures: headless plotting and synthetic monitor data."""

import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


def make_monitor_data(n_rows=100, seed=123, noise=0.25, intercept=0.0):
    """
    value = 2 * CMAQ + 0.5 * imp_a5000 + intercept + noise

    log_pri_length_15000 is unrelated to the outcome.
    """
    rng = np.random.default_rng(seed)
    cmaq = rng.normal(10, 3, n_rows)
    imp = rng.uniform(0, 20, n_rows)
    log_pri = rng.normal(10, 1, n_rows)
    value = 2 * cmaq + 0.5 * imp + intercept + rng.normal(0, noise, n_rows) * (noise > 0)
    return pd.DataFrame({
        'value': value,
        'CMAQ': cmaq,
        'imp_a5000': imp,
        'log_pri_length_15000': log_pri
    })


@pytest.fixture(scope="session")
def seed():
    return 123


@pytest.fixture
def monitor_data(seed):
    """The 100-row synthetic dataset with light noise."""
    return make_monitor_data(n_rows=100, seed=seed)


@pytest.fixture
def exact_linear_data():
    """Outcome is an exact linear function of the predictors."""
    return make_monitor_data(n_rows=100, seed=7, noise=0.0, intercept=1.0)
