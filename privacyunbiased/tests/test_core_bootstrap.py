import os

import numpy as np
import pandas as pd
import pytest

from privacyunbiased.core import bootstrap as bs
from privacyunbiased.core.design import ModelSpec, TransformedTerm, build_design

# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def design(dp_small):
    _, dp = dp_small
    return build_design(ModelSpec("Y", ("X1", "X2", "X3")), dp.iloc[1:].iloc[:500])


V = np.array([0.49, 1.44, 1.0])

# ---------------------------------------------------------------------
# Unit Tests: Parallel streams
# ---------------------------------------------------------------------


def test_chunk_sizes():
    assert bs.chunk_sizes(10, 4) == [4, 4, 2]
    assert bs.chunk_sizes(8, 4) == [4, 4]
    assert bs.chunk_sizes(3, 25) == [3]
    with pytest.raises(ValueError):
        bs.chunk_sizes(10, 0)


def test_resolve_n_jobs(monkeypatch):
    monkeypatch.delenv(bs.ENV_N_JOBS, raising=False)
    assert bs.resolve_n_jobs(None) == 1
    assert bs.resolve_n_jobs(3) == 3
    assert bs.resolve_n_jobs(-1) == (os.cpu_count() or 1)
    with pytest.raises(ValueError, match="n_jobs"):
        bs.resolve_n_jobs(0)


def test_resolve_n_jobs_from_env(monkeypatch):
    monkeypatch.setenv(bs.ENV_N_JOBS, "2")
    assert bs.resolve_n_jobs(None) == 2
    monkeypatch.setenv(bs.ENV_N_JOBS, "many")
    with pytest.raises(ValueError, match=bs.ENV_N_JOBS):
        bs.resolve_n_jobs(None)


def test_spawn_generators_reproducible():
    a = [g.standard_normal(3) for g in bs.spawn_generators(7, 3)]
    b = [g.standard_normal(3) for g in bs.spawn_generators(7, 3)]
    for x, y in zip(a, b):
        assert np.array_equal(x, y)
    # streams differ from each other
    assert not np.array_equal(a[0], a[1])


def test_spawn_generators_accepts_generator():
    parent = np.random.default_rng(1)
    gens = bs.spawn_generators(parent, 2)
    assert len(gens) == 2
    assert all(isinstance(g, np.random.Generator) for g in gens)


def test_run_in_chunks_independent_of_workers():
    def work(rng, size):
        return rng.standard_normal(size)

    sizes = bs.chunk_sizes(50, 7)
    serial = bs.run_in_chunks(work, sizes, seed=11, n_jobs=1)
    threaded = bs.run_in_chunks(work, sizes, seed=11, n_jobs=4)
    assert np.array_equal(np.concatenate(serial), np.concatenate(threaded))


# ---------------------------------------------------------------------
# Unit Tests: Summaries
# ---------------------------------------------------------------------


def test_empirical_vcov_matches_numpy(rng):
    draws = rng.standard_normal((200, 3))
    V_hat = bs.empirical_vcov(draws)
    assert np.allclose(V_hat, np.cov(draws, rowvar=False, ddof=1))
    assert np.allclose(bs.bootstrap_se(draws), np.sqrt(np.diag(V_hat)))


def test_empirical_vcov_strict():
    with pytest.raises(ValueError, match="at least 2 draws"):
        bs.empirical_vcov(np.ones((1, 3)))
    with pytest.raises(ValueError, match="Non-finite"):
        bs.empirical_vcov(np.array([[1.0, np.nan], [2.0, 3.0]]))


# ---------------------------------------------------------------------
# Row bootstrap
# ---------------------------------------------------------------------


def test_bootstrap_vcov_shapes(design):
    out = bs.bootstrap_vcov(design, V, n_boot=30, seed=5)
    assert out.draws.shape == (30, 4)
    assert out.vcov.shape == (4, 4)
    assert out.n_draws == 30
    assert out.positive_definite
    assert np.all(np.diag(out.vcov) > 0.0)


def test_bootstrap_vcov_reproducible_across_workers(design):
    a = bs.bootstrap_vcov(design, V, n_boot=40, seed=9, chunk_size=6, n_jobs=1)
    b = bs.bootstrap_vcov(design, V, n_boot=40, seed=9, chunk_size=6, n_jobs=3)
    assert np.array_equal(a.draws, b.draws)
    c = bs.bootstrap_vcov(design, V, n_boot=40, seed=10, chunk_size=6)
    assert not np.array_equal(a.draws, c.draws)


def test_bootstrap_vcov_counts_projections(rng):
    # declared noise far above the spread of x: the corrected second moment is negative
    df = pd.DataFrame({"y": rng.standard_normal(300), "x": rng.standard_normal(300)})
    design = build_design(ModelSpec("y", ("x",)), df)
    out = bs.bootstrap_vcov(design, [9.0], n_boot=10, seed=1)
    assert out.n_projections == 10
    assert not out.positive_definite


def test_bootstrap_vcov_with_square(dp_small):
    _, dp = dp_small
    spec = ModelSpec("Y", ("X1", "X3"), TransformedTerm.square("X3"))
    design = build_design(spec, dp.iloc[1:])
    out = bs.bootstrap_vcov(design, [0.49, 1.0], n_boot=20, seed=3)
    assert out.draws.shape == (20, 4)


def test_bootstrap_vcov_requires_two_draws(design):
    with pytest.raises(ValueError, match="at least 2"):
        bs.bootstrap_vcov(design, V, n_boot=1)
