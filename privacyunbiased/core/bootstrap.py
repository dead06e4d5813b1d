"""Row bootstrap and parallel random streams.

The nonparametric bootstrap resamples rows with replacement and recomputes the
full corrected estimate on every resample. Work is split into fixed-size
chunks, each with its own ``numpy.random.Generator`` spawned from a single
seed, so results depend on the seed and the chunk size but not on the number
of worker threads.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, TypeVar, Union

import numpy as np

from privacyunbiased.core import linalg as la
from privacyunbiased.core.moments import corrected_moments

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

    from privacyunbiased.core.design import Design

__all__ = [
    "DEFAULT_BOOTSTRAP_ITERATIONS",
    "DEFAULT_CHUNK_SIZE",
    "ENV_N_JOBS",
    "BootstrapDraws",
    "SeedLike",
    "bootstrap_se",
    "bootstrap_vcov",
    "chunk_sizes",
    "empirical_vcov",
    "resolve_n_jobs",
    "run_in_chunks",
    "spawn_generators",
]

LOGGER = logging.getLogger(__name__)

# Default bootstrap replications
DEFAULT_BOOTSTRAP_ITERATIONS: int = 500
# Resamples per random stream
DEFAULT_CHUNK_SIZE: int = 25
ENV_N_JOBS = "PRIVACYUNBIASED_N_JOBS"

SeedLike = Union[int, np.random.SeedSequence, np.random.Generator, None]
T = TypeVar("T")


# ---------------------------------------------------------------------
# Parallel random streams
# ---------------------------------------------------------------------
def resolve_n_jobs(n_jobs: int | None) -> int:
    """Worker count; ``None`` reads ``PRIVACYUNBIASED_N_JOBS`` (default 1)."""
    if n_jobs is None:
        raw = os.environ.get(ENV_N_JOBS, "").strip()
        if not raw:
            return 1
        try:
            n_jobs = int(raw)
        except ValueError as exc:
            msg = f"{ENV_N_JOBS} must be an integer; got {raw!r}"
            raise ValueError(msg) from exc
    n = int(n_jobs)
    if n == -1:
        return os.cpu_count() or 1
    if n < 1:
        msg = f"n_jobs must be a positive integer or -1; got {n_jobs}"
        raise ValueError(msg)
    return n


def chunk_sizes(total: int, chunk_size: int) -> list[int]:
    """Split ``total`` repetitions into chunks of at most ``chunk_size``."""
    if int(chunk_size) < 1:
        msg = "chunk_size must be a positive integer"
        raise ValueError(msg)
    full, rest = divmod(int(total), int(chunk_size))
    return [int(chunk_size)] * full + ([rest] if rest else [])


def spawn_generators(seed: SeedLike, n: int) -> list[np.random.Generator]:
    """Independent child generators from one seed.

    Accepts an int, a ``SeedSequence``, a ``Generator`` (its ``spawn`` is
    used, leaving the parent usable) or ``None`` for fresh OS entropy.
    """
    if isinstance(seed, np.random.Generator):
        return seed.spawn(int(n))
    ss = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    return [np.random.default_rng(child) for child in ss.spawn(int(n))]


def run_in_chunks(
    work: Callable[[np.random.Generator, int], T],
    sizes: Sequence[int],
    *,
    seed: SeedLike = None,
    n_jobs: int | None = None,
) -> list[T]:
    """Run ``work(rng, size)`` for every chunk and return results in chunk order."""
    rngs = spawn_generators(seed, len(sizes))
    workers = min(resolve_n_jobs(n_jobs), max(len(sizes), 1))
    LOGGER.debug("running %d chunk(s) on %d worker(s)", len(sizes), workers)
    if workers == 1:
        return [work(rng, size) for rng, size in zip(rngs, sizes)]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(work, rng, size) for rng, size in zip(rngs, sizes)]
        return [future.result() for future in futures]


# ---------------------------------------------------------------------
# Summaries of coefficient draws
# ---------------------------------------------------------------------
def _check_draws(draws: ArrayLike) -> NDArray[np.float64]:
    arr = np.asarray(draws, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise ValueError("draws must be a 2-D array of shape (B, K).")
    if arr.shape[0] < 2:
        raise ValueError("Variance estimation requires at least 2 draws.")
    if not np.all(np.isfinite(arr)):
        raise ValueError("Non-finite bootstrap draws detected.")
    return arr


def empirical_vcov(draws: ArrayLike) -> NDArray[np.float64]:
    """Covariance of coefficient draws (B, K) with ddof=1.

    This function is intentionally strict:

    - Requires at least 2 draws.
    - Rejects any non-finite (NaN/Inf) values.
    """
    arr = _check_draws(draws)
    V = np.atleast_2d(np.cov(arr, rowvar=False, ddof=1))
    return 0.5 * (V + V.T)


def bootstrap_se(draws: ArrayLike) -> NDArray[np.float64]:
    """Standard errors from coefficient draws (B, K), ddof=1."""
    return np.std(_check_draws(draws), axis=0, ddof=1)


# ---------------------------------------------------------------------
# Row bootstrap of the corrected estimator
# ---------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class BootstrapDraws:
    """Coefficient draws and their covariance from the row bootstrap."""

    draws: NDArray[np.float64]
    vcov: NDArray[np.float64]
    n_projections: int

    @property
    def positive_definite(self) -> bool:
        return self.n_projections == 0

    @property
    def n_draws(self) -> int:
        return int(self.draws.shape[0])


def bootstrap_vcov(  # noqa: PLR0913
    design: Design,
    variances: ArrayLike,
    *,
    n_boot: int = DEFAULT_BOOTSTRAP_ITERATIONS,
    seed: SeedLike = None,
    n_jobs: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    kurtosis: float = 3.0,
    project_moments: bool = True,
) -> BootstrapDraws:
    """Row-bootstrap covariance of the corrected coefficients.

    Each of the ``n_boot`` resamples draws n rows with replacement, recomputes
    the corrected moments, projects a resampled moment matrix that fails the
    Cholesky check (when ``project_moments``) and solves for the
    coefficients. Cost is linear in ``n_boot`` and n.
    """
    if int(n_boot) < 2:
        raise ValueError("bootstrap requires at least 2 draws (n_boot >= 2).")
    v = np.asarray(variances, dtype=np.float64)
    n = design.n_obs

    def _chunk(rng: np.random.Generator, size: int) -> tuple[NDArray[np.float64], int]:
        out = np.empty((size, design.n_params), dtype=np.float64)
        n_proj = 0
        for b in range(size):
            idx = rng.integers(0, n, size=n)
            mm = corrected_moments(design.take(idx), v, kurtosis=kurtosis)
            M = mm.M
            if project_moments and not mm.positive_definite:
                M = la.nearest_pd(M).matrix
                n_proj += 1
            out[b] = la.solve_moments(M, mm.c)
        return out, n_proj

    results = run_in_chunks(
        _chunk, chunk_sizes(n_boot, chunk_size), seed=seed, n_jobs=n_jobs,
    )
    draws = np.vstack([r[0] for r in results])
    n_projections = int(sum(r[1] for r in results))
    if n_projections:
        LOGGER.debug(
            "bootstrap: %d of %d resampled moment matrices projected",
            n_projections, n_boot,
        )
    return BootstrapDraws(
        draws=draws, vcov=empirical_vcov(draws), n_projections=n_projections,
    )
