"""Simulation-based variance of the corrected coefficients.

The corrected moments are sample means of row-wise terms ``m_i``, so by the
central limit theorem the free moment vector is approximately
``N(theta, V / n)`` with ``V`` the sample covariance of ``m_i``. Drawing from
that normal, rebuilding (M, c) and solving gives coefficient draws whose
empirical covariance estimates the sampling covariance of the estimator.
After the single pass over the data the cost depends only on the number of
draws and the number of coefficients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from privacyunbiased.core import linalg as la
from privacyunbiased.core.bootstrap import chunk_sizes, empirical_vcov, run_in_chunks
from privacyunbiased.core.exceptions import VarianceMethodError
from privacyunbiased.core.moments import DEFAULT_CHUNK_ROWS, moment_covariance

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from privacyunbiased.core.bootstrap import SeedLike
    from privacyunbiased.core.design import Design

__all__ = [
    "DEFAULT_SIMULATION_CHUNK",
    "DEFAULT_SIMULATION_DRAWS",
    "SimulationDraws",
    "simulation_vcov",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_SIMULATION_DRAWS: int = 10_000
DEFAULT_SIMULATION_CHUNK: int = 1_000


@dataclass(frozen=True, eq=False)
class SimulationDraws:
    """Coefficient draws from the asymptotic distribution of the moments."""

    draws: NDArray[np.float64]
    vcov: NDArray[np.float64]
    positive_definite: bool
    theta_hat: NDArray[np.float64]
    theta_cov: NDArray[np.float64]

    @property
    def n_draws(self) -> int:
        return int(self.draws.shape[0])


def simulation_vcov(  # noqa: PLR0913
    design: Design,
    variances: ArrayLike,
    *,
    n_sims: int = DEFAULT_SIMULATION_DRAWS,
    seed: SeedLike = None,
    n_jobs: int | None = None,
    chunk_size: int = DEFAULT_SIMULATION_CHUNK,
    kurtosis: float = 3.0,
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
) -> SimulationDraws:
    """Simulation covariance of the corrected coefficients.

    Only additive models are supported; a design with an interaction or a
    square raises :class:`VarianceMethodError`. When the covariance of the
    moment vector fails the positive-definiteness check it is projected with
    :func:`privacyunbiased.core.linalg.nearest_pd` and the returned
    ``positive_definite`` flag is False.
    """
    if design.has_transformation:
        msg = (
            "simulation variance is only available for additive models; "
            "use the bootstrap for models with an interaction or a square"
        )
        raise VarianceMethodError(msg)
    if int(n_sims) < 2:
        raise ValueError("simulation requires at least 2 draws (n_sims >= 2).")

    theta_hat, V, layout = moment_covariance(
        design, variances, kurtosis=kurtosis, chunk_rows=chunk_rows,
    )
    Sigma = V / design.n_obs
    positive_definite = la.is_positive_definite(Sigma, rtol=la.default_rtol(Sigma.shape[0]))
    if positive_definite:
        L = la.safe_cholesky(Sigma)
    else:
        proj = la.nearest_pd(Sigma)
        LOGGER.debug(
            "moment covariance projected (converged=%s, iterations=%d)",
            proj.converged, proj.iterations,
        )
        Sigma = proj.matrix
        try:
            L = la.safe_cholesky(Sigma)
        except np.linalg.LinAlgError:
            L = la.chol_psd(Sigma)

    def _chunk(rng: np.random.Generator, size: int) -> NDArray[np.float64]:
        z = rng.standard_normal((size, theta_hat.shape[0]))
        Ms, cs = layout.assemble(theta_hat + z @ L.T)
        return la.solve_moments_batch(Ms, cs)

    parts = run_in_chunks(
        _chunk, chunk_sizes(n_sims, chunk_size), seed=seed, n_jobs=n_jobs,
    )
    draws = np.vstack(parts)
    return SimulationDraws(
        draws=draws,
        vcov=empirical_vcov(draws),
        positive_definite=positive_definite,
        theta_hat=theta_hat,
        theta_cov=Sigma,
    )
