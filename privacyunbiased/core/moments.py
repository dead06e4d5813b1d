"""Noise-corrected second moments.

With ``x = z + u`` and independent, symmetric, zero-mean noise ``u`` of known
variance ``s2`` and kurtosis ``k``, the polynomials

    h0 = 1
    h1 = x
    h2 = x^2 - s2
    h3 = x^3 - 3 s2 x
    h4 = x^4 - 6 s2 x^2 + (6 - k) s2^2

satisfy ``E[h_d(x) | z] = z^d``. Every entry of ``M = E[r r']`` and
``c = E[r y]`` is the mean of a monomial in the raw columns, so replacing
each noisy power by ``h_d`` and averaging over rows gives unbiased moments.
Noise is independent across columns and of the outcome's noise, hence a
product of per-column ``h`` terms stays unbiased.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from privacyunbiased.core import linalg as la

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from privacyunbiased.core.design import Design

__all__ = [
    "DEFAULT_CHUNK_ROWS",
    "MAX_DEGREE",
    "MomentLayout",
    "MomentMatrices",
    "corrected_moments",
    "moment_contributions",
    "moment_covariance",
    "naive_moments",
    "unbiased_powers",
]

LOGGER = logging.getLogger(__name__)

MAX_DEGREE = 4
DEFAULT_CHUNK_ROWS = 50_000


def unbiased_powers(
    x: ArrayLike, degree: int, variance: float, *, kurtosis: float = 3.0,
) -> NDArray[np.float64]:
    """Return ``h_degree(x)``, an unbiased estimator of ``z**degree``."""
    xv = np.asarray(x, dtype=np.float64)
    d = int(degree)
    s2 = float(variance)
    if d < 0 or d > MAX_DEGREE:
        msg = f"degree must be in [0, {MAX_DEGREE}]; got {degree}"
        raise ValueError(msg)
    if d == 0:
        return np.ones_like(xv)
    if d == 1 or s2 == 0.0:
        return xv**d
    if d == 2:
        return xv * xv - s2
    x2 = xv * xv
    if d == 3:
        return xv * (x2 - 3.0 * s2)
    return x2 * (x2 - 6.0 * s2) + (6.0 - float(kurtosis)) * s2 * s2


def _row_products(  # noqa: PLR0913
    raw: NDArray[np.float64],
    exps: NDArray[np.int64],
    variances: NDArray[np.float64],
    kurtosis: float,
    y: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """Row-wise unbiased products, one column per exponent vector in ``exps``."""
    n = raw.shape[0]
    out = np.ones((n, exps.shape[0]), dtype=np.float64)
    cache: dict[tuple[int, int], NDArray[np.float64]] = {}
    for j, e in enumerate(exps):
        for k in np.flatnonzero(e):
            key = (int(k), int(e[k]))
            h = cache.get(key)
            if h is None:
                h = unbiased_powers(raw[:, k], key[1], variances[k], kurtosis=kurtosis)
                cache[key] = h
            out[:, j] *= h
    if y is not None:
        out *= y[:, None]
    return out


def _check_inputs(
    design: Design, variances: ArrayLike, kurtosis: float,
) -> NDArray[np.float64]:
    v = np.asarray(variances, dtype=np.float64).reshape(-1)
    if v.shape[0] != len(design.columns):
        msg = (
            f"expected {len(design.columns)} noise variances for columns "
            f"{list(design.columns)}; got {v.shape[0]}"
        )
        raise ValueError(msg)
    if not np.all(np.isfinite(v)) or np.any(v < 0.0):
        msg = "noise variances must be finite and non-negative"
        raise ValueError(msg)
    if not np.isfinite(kurtosis) or kurtosis < 1.0:
        msg = f"noise kurtosis must be >= 1; got {kurtosis}"
        raise ValueError(msg)
    return v


# ---------------------------------------------------------------------
# Moment matrices
# ---------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class MomentMatrices:
    """Second moments of the regressors and their cross-moments with y."""

    M: NDArray[np.float64]
    c: NDArray[np.float64]
    names: tuple[str, ...]
    n_obs: int
    positive_definite: bool


def naive_moments(design: Design) -> MomentMatrices:
    """Uncorrected ``R'R / n`` and ``R'y / n`` on the noisy data."""
    R = design.regressors()
    n = design.n_obs
    M = R.T @ R / n
    M = 0.5 * (M + M.T)
    c = R.T @ design.y / n
    return MomentMatrices(
        M=M,
        c=c,
        names=design.names,
        n_obs=n,
        positive_definite=la.is_positive_definite(M),
    )


def corrected_moments(
    design: Design, variances: ArrayLike, *, kurtosis: float = 3.0,
) -> MomentMatrices:
    """Unbiased estimates of the true-data moments ``E[r r']`` and ``E[r y]``.

    Entries whose monomial holds a noisy column to a power of at least two
    are recomputed from the ``h`` polynomials; all others are already
    unbiased and kept from the naive cross-products.
    """
    v = _check_inputs(design, variances, kurtosis)
    naive = naive_moments(design)
    M = naive.M.copy()
    c = naive.c.copy()
    noisy = v > 0.0
    if np.any(noisy):
        P = design.powers
        iu, ju = np.triu_indices(design.n_params)
        exps = P[iu] + P[ju]
        hit = np.any(exps[:, noisy] >= 2, axis=1)
        if np.any(hit):
            vals = _row_products(design.raw, exps[hit], v, kurtosis).mean(axis=0)
            M[iu[hit], ju[hit]] = vals
            M[ju[hit], iu[hit]] = vals
        chit = np.any(P[:, noisy] >= 2, axis=1)
        if np.any(chit):
            c[chit] = _row_products(design.raw, P[chit], v, kurtosis, y=design.y).mean(axis=0)
        LOGGER.debug(
            "corrected %d moment entries and %d cross-moments",
            int(hit.sum()), int(chit.sum()),
        )
    return MomentMatrices(
        M=M,
        c=c,
        names=design.names,
        n_obs=design.n_obs,
        positive_definite=la.is_positive_definite(M),
    )


# ---------------------------------------------------------------------
# Free moment vector and its sampling covariance
# ---------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class MomentLayout:
    """Position of the free moment entries inside (M, c).

    The free vector stacks the upper triangle of ``M`` (without cells that
    are identically one, i.e. intercept x intercept) followed by ``c``.
    """

    n_params: int
    rows: NDArray[np.int64]
    cols: NDArray[np.int64]
    m_exps: NDArray[np.int64]
    c_exps: NDArray[np.int64]
    const_rows: NDArray[np.int64]
    const_cols: NDArray[np.int64]

    @classmethod
    def from_powers(cls, powers: NDArray[np.int64]) -> MomentLayout:
        p = powers.shape[0]
        iu, ju = np.triu_indices(p)
        exps = powers[iu] + powers[ju]
        const = exps.sum(axis=1) == 0
        return cls(
            n_params=p,
            rows=iu[~const],
            cols=ju[~const],
            m_exps=exps[~const],
            c_exps=powers.copy(),
            const_rows=iu[const],
            const_cols=ju[const],
        )

    @property
    def size(self) -> int:
        return int(self.rows.shape[0] + self.c_exps.shape[0])

    def assemble(
        self, theta: ArrayLike,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Map free vectors (S, q) back to stacks ``Ms`` (S, p, p) and ``cs`` (S, p)."""
        t = np.atleast_2d(np.asarray(theta, dtype=np.float64))
        if t.shape[1] != self.size:
            msg = f"expected {self.size} moment entries; got {t.shape[1]}"
            raise ValueError(msg)
        S, p, qm = t.shape[0], self.n_params, self.rows.shape[0]
        Ms = np.zeros((S, p, p), dtype=np.float64)
        Ms[:, self.rows, self.cols] = t[:, :qm]
        Ms[:, self.cols, self.rows] = t[:, :qm]
        Ms[:, self.const_rows, self.const_cols] = 1.0
        return Ms, t[:, qm:].copy()


def moment_contributions(
    design: Design,
    variances: ArrayLike,
    *,
    kurtosis: float = 3.0,
    layout: MomentLayout | None = None,
) -> NDArray[np.float64]:
    """Row-wise terms (n x q) whose column means are the free corrected moments."""
    v = _check_inputs(design, variances, kurtosis)
    lay = layout or MomentLayout.from_powers(design.powers)
    m_part = _row_products(design.raw, lay.m_exps, v, kurtosis)
    c_part = _row_products(design.raw, lay.c_exps, v, kurtosis, y=design.y)
    return np.hstack([m_part, c_part])


def moment_covariance(
    design: Design,
    variances: ArrayLike,
    *,
    kurtosis: float = 3.0,
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
) -> tuple[NDArray[np.float64], NDArray[np.float64], MomentLayout]:
    """Mean and sample covariance (ddof=1) of the row-wise moment terms.

    Rows are processed in chunks of ``chunk_rows`` so memory stays
    proportional to the chunk, not to n. Sums are shifted by the first
    chunk's mean to limit cancellation.
    """
    if int(chunk_rows) < 1:
        msg = "chunk_rows must be a positive integer"
        raise ValueError(msg)
    lay = MomentLayout.from_powers(design.powers)
    n = design.n_obs
    q = lay.size
    shift: NDArray[np.float64] | None = None
    s1 = np.zeros(q, dtype=np.float64)
    s2 = np.zeros((q, q), dtype=np.float64)
    for start in range(0, n, int(chunk_rows)):
        idx = np.arange(start, min(start + int(chunk_rows), n))
        m = moment_contributions(design.take(idx), variances, kurtosis=kurtosis, layout=lay)
        if shift is None:
            shift = m.mean(axis=0)
        m -= shift
        s1 += m.sum(axis=0)
        s2 += m.T @ m
    mean_dev = s1 / n
    cov = (s2 - n * np.outer(mean_dev, mean_dev)) / (n - 1)
    cov = 0.5 * (cov + cov.T)
    return shift + mean_dev, cov, lay
