"""Linear algebra routines for moment-based estimation.

This module provides the strict Cholesky check, the nearest positive-definite
projection (R ``Matrix::nearPD`` semantics) and the solvers that turn corrected
moment matrices into coefficients. Explicit matrix inversion is avoided.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sla

from privacyunbiased.core.exceptions import SingularMomentError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

__all__ = [
    "Projection",
    "chol_psd",
    "default_rtol",
    "eigvalsh",
    "is_positive_definite",
    "nearest_pd",
    "safe_cholesky",
    "singular_values",
    "solve_moments",
    "solve_moments_batch",
    "symmetrize",
]

LOGGER = logging.getLogger(__name__)


def symmetrize(A: ArrayLike) -> NDArray[np.float64]:
    Ad = np.asarray(A, dtype=np.float64)
    if Ad.ndim != 2 or Ad.shape[0] != Ad.shape[1]:
        msg = f"expected a square matrix; got shape {Ad.shape}"
        raise ValueError(msg)
    return (Ad + Ad.T) * 0.5


def safe_cholesky(A: ArrayLike, *, lower: bool = True) -> NDArray[np.float64]:
    """Strict Cholesky factorization without implicit ridges.
    Raises np.linalg.LinAlgError if not positive definite.
    """
    Ad = symmetrize(A)
    if not np.all(np.isfinite(Ad)):
        raise np.linalg.LinAlgError("Cholesky factorization failed: non-finite entries")
    try:
        return sla.cholesky(Ad, lower=lower, check_finite=False)
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise np.linalg.LinAlgError(f"Cholesky factorization failed: {exc}") from exc


def is_positive_definite(A: ArrayLike, *, rtol: float | None = None) -> bool:
    """Positive-definiteness check by attempted Cholesky factorization.

    With ``rtol`` the smallest eigenvalue must also exceed
    ``rtol * max|eigenvalue|`` (rcond-style), which rejects matrices that are
    singular in exact arithmetic but factor because of rounding.
    """
    try:
        safe_cholesky(A)
    except np.linalg.LinAlgError:
        return False
    if rtol is None:
        return True
    vals = eigvalsh(A)
    return bool(vals[0] > float(rtol) * np.max(np.abs(vals)))


def default_rtol(n: int) -> float:
    return float(np.finfo(np.float64).eps * max(int(n), 1))


def chol_psd(A: ArrayLike) -> NDArray[np.float64]:
    """Square root factor L (L @ L.T == A) for positive semi-definite matrices.
    Enforces PSD by thresholding eigenvalues.
    """
    e, V = np.linalg.eigh(symmetrize(A))
    e = np.maximum(e, 0.0)
    return (V * np.sqrt(e)) @ V.T


def eigvalsh(A: ArrayLike) -> NDArray[np.float64]:
    """Ascending eigenvalues of the symmetric part of ``A``."""
    return np.linalg.eigvalsh(symmetrize(A))


def singular_values(A: ArrayLike) -> NDArray[np.float64]:
    return np.linalg.svd(np.asarray(A, dtype=np.float64), compute_uv=False)


# ---------------------------------------------------------------------
# Nearest positive-definite projection
# ---------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class Projection:
    """Outcome of :func:`nearest_pd`.

    ``projected`` is False when the input already passed the rcond-style
    positive-definiteness check and was returned unchanged.
    """

    matrix: NDArray[np.float64]
    projected: bool
    converged: bool
    iterations: int
    min_eigenvalue: float


def nearest_pd(  # noqa: PLR0913
    A: ArrayLike,
    *,
    keep_diag: bool = True,
    do_dykstra: bool = True,
    eig_tol: float = 1e-6,
    conv_tol: float = 1e-7,
    posd_tol: float = 1e-8,
    maxit: int = 100,
) -> Projection:
    """Map A to a nearby positive-definite matrix.

    Higham (2002) alternating projections with Dykstra's correction, as in
    R's ``Matrix::nearPD``, followed by the ``do2eigen`` step: eigenvalues
    are floored at ``posd_tol * lambda_max`` and the matrix is rescaled so
    that its diagonal is restored.

    Parameters
    ----------
    A : array-like
        Finite square matrix; only its symmetric part is used.
    keep_diag : bool
        Restore the original diagonal after every projection step.
    do_dykstra : bool
        Apply Dykstra's correction during the alternating projections.
    eig_tol : float
        Eigenvalues below ``eig_tol * lambda_max`` are treated as zero
        inside the iterations.
    conv_tol : float
        Convergence tolerance on the relative sup-norm change.
    posd_tol : float
        Relative floor for the eigenvalues of the result.
    maxit : int
        Maximum number of alternating-projection iterations.

    Returns
    -------
    Projection
        The projected matrix together with convergence diagnostics.

    """
    A0 = symmetrize(A)
    if not np.all(np.isfinite(A0)):
        msg = "nearest_pd requires a finite matrix"
        raise ValueError(msg)
    if is_positive_definite(A0, rtol=default_rtol(A0.shape[0])):
        return Projection(
            matrix=A0,
            projected=False,
            converged=True,
            iterations=0,
            min_eigenvalue=float(eigvalsh(A0)[0]),
        )

    n = A0.shape[0]
    diag0 = np.diag(A0).copy()
    X = A0.copy()
    D_S = np.zeros_like(X)
    converged = False
    iterations = 0
    while iterations < int(maxit):
        Y = X
        R = Y - D_S if do_dykstra else Y
        d, Q = np.linalg.eigh(R)
        keep = d > eig_tol * d[-1]
        if not np.any(keep):
            # negative semi-definite input: nothing to project onto
            X = np.diag(np.maximum(diag0, 0.0))
            iterations += 1
            break
        Qp = Q[:, keep]
        X = (Qp * d[keep]) @ Qp.T
        if do_dykstra:
            D_S = X - R
        if keep_diag:
            np.fill_diagonal(X, diag0)
        X = 0.5 * (X + X.T)
        iterations += 1
        denom = np.linalg.norm(Y, ord=np.inf)
        conv = np.linalg.norm(Y - X, ord=np.inf) / (denom if denom > 0 else 1.0)
        if conv <= conv_tol:
            converged = True
            break

    d, Q = np.linalg.eigh(X)
    eps = posd_tol * abs(d[-1])
    if eps <= 0.0:
        eps = posd_tol
    if d[0] < eps:
        d = np.where(d < eps, eps, d)
        o_diag = np.diag(X).copy()
        X = (Q * d) @ Q.T
        D = np.sqrt(np.maximum(eps, o_diag) / np.diag(X))
        X = D[:, None] * X * D[None, :]
    X = 0.5 * (X + X.T)
    min_eig = float(eigvalsh(X)[0])
    LOGGER.debug(
        "nearest_pd: n=%d iterations=%d converged=%s min_eig=%.3g",
        n, iterations, converged, min_eig,
    )
    return Projection(
        matrix=X.astype(np.float64),
        projected=True,
        converged=converged,
        iterations=iterations,
        min_eigenvalue=min_eig,
    )


# ---------------------------------------------------------------------
# Moment-equation solvers
# ---------------------------------------------------------------------
def _condition_number(s: NDArray[np.float64]) -> float:
    if s.size == 0 or s.min() <= 0.0:
        return float("inf")
    return float(s.max() / s.min())


def solve_moments(M: ArrayLike, c: ArrayLike) -> NDArray[np.float64]:
    """Solve ``M beta = c`` for a corrected moment system.

    Singularity is judged with the SVD rank tolerance
    ``s_min <= eps * p * s_max``; a singular system raises
    :class:`SingularMomentError` carrying the condition number instead of
    returning an arbitrary least-norm solution.
    """
    Md = np.asarray(M, dtype=np.float64)
    cd = np.asarray(c, dtype=np.float64).reshape(-1)
    if Md.ndim != 2 or Md.shape[0] != Md.shape[1] or Md.shape[0] != cd.shape[0]:
        msg = f"incompatible shapes M{Md.shape} and c{cd.shape}"
        raise ValueError(msg)
    if not (np.all(np.isfinite(Md)) and np.all(np.isfinite(cd))):
        msg = "moment matrix contains non-finite values"
        raise SingularMomentError(msg)
    s = singular_values(Md)
    tol = np.finfo(np.float64).eps * Md.shape[0] * (s.max() if s.size else 0.0)
    if s.size == 0 or s.max() == 0.0 or s.min() <= tol:
        cond = _condition_number(s)
        msg = (
            "corrected moment matrix is singular "
            f"(condition number {cond:.3g}); check for collinear or constant regressors"
        )
        raise SingularMomentError(msg, condition_number=cond)
    return sla.solve(Md, cd, assume_a="sym", check_finite=False)


def solve_moments_batch(
    Ms: ArrayLike, cs: ArrayLike,
) -> NDArray[np.float64]:
    """Solve a stack of systems ``Ms[s] beta_s = cs[s]``; returns (S, p)."""
    Md = np.asarray(Ms, dtype=np.float64)
    cd = np.asarray(cs, dtype=np.float64)
    if Md.ndim != 3 or cd.ndim != 2 or Md.shape[:2] != cd.shape:
        msg = f"incompatible batch shapes Ms{Md.shape} and cs{cd.shape}"
        raise ValueError(msg)
    try:
        out = np.linalg.solve(Md, cd[..., None])[..., 0]
    except np.linalg.LinAlgError as exc:
        msg = f"singular moment matrix in simulation draws: {exc}"
        raise SingularMomentError(msg) from exc
    if not np.all(np.isfinite(out)):
        msg = "non-finite coefficients in simulation draws"
        raise SingularMomentError(msg)
    return out
