from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest


def pytest_configure() -> None:
    """Ensure the repository root is on sys.path.

    When pytest is started from inside the package directory it may choose
    the package itself as its rootdir; importing the top-level package
    `privacyunbiased` then fails unless the parent directory is on
    `sys.path`.
    """

    repo_root = Path(__file__).resolve().parents[2]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def dp_small():
    """Simulated release (noise row first) with 2,000 rows."""
    from privacyunbiased.sim.montecarlo import simulate_dp_data

    return simulate_dp_data(n_obs=2_000, seed=2024)
