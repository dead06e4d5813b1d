import numpy as np
import pytest

from privacyunbiased.core import linalg as la
from privacyunbiased.core.exceptions import SingularMomentError

# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def indefinite():
    return np.array(
        [
            [1.0, 0.9, -0.9],
            [0.9, 1.0, 0.9],
            [-0.9, 0.9, 1.0],
        ],
    )


@pytest.fixture
def spd(rng):
    A = rng.standard_normal((6, 4))
    return A.T @ A + 0.1 * np.eye(4)


# ---------------------------------------------------------------------
# Positive-definiteness checks
# ---------------------------------------------------------------------


def test_is_positive_definite(spd, indefinite):
    assert la.is_positive_definite(np.eye(3))
    assert la.is_positive_definite(spd)
    assert not la.is_positive_definite(indefinite)
    singular = np.array([[1.0, 1.0], [1.0, 1.0]])
    assert not la.is_positive_definite(singular, rtol=la.default_rtol(2))


def test_safe_cholesky_reconstructs(spd):
    L = la.safe_cholesky(spd)
    assert np.allclose(L @ L.T, spd)
    assert np.allclose(L, np.tril(L))


def test_safe_cholesky_rejects_indefinite(indefinite):
    with pytest.raises(np.linalg.LinAlgError, match="Cholesky factorization failed"):
        la.safe_cholesky(indefinite)


def test_symmetrize_requires_square():
    with pytest.raises(ValueError, match="square"):
        la.symmetrize(np.ones((2, 3)))


def test_chol_psd_factor_of_singular():
    A = np.array([[1.0, 1.0], [1.0, 1.0]])
    L = la.chol_psd(A)
    assert np.allclose(L @ L.T, A)


# ---------------------------------------------------------------------
# Nearest positive-definite projection
# ---------------------------------------------------------------------


def test_nearest_pd_projects_indefinite(indefinite):
    proj = la.nearest_pd(indefinite)
    assert proj.projected
    assert proj.min_eigenvalue > 0.0
    assert np.all(la.eigvalsh(proj.matrix) > 0.0)
    assert la.is_positive_definite(proj.matrix)
    assert np.allclose(proj.matrix, proj.matrix.T)
    # diagonal is kept
    assert np.allclose(np.diag(proj.matrix), np.diag(indefinite))


def test_nearest_pd_is_idempotent(indefinite):
    first = la.nearest_pd(indefinite).matrix
    second = la.nearest_pd(first)
    assert not second.projected
    assert np.array_equal(second.matrix, first)


def test_nearest_pd_leaves_pd_unchanged(spd):
    proj = la.nearest_pd(spd)
    assert not proj.projected
    assert proj.iterations == 0
    assert np.allclose(proj.matrix, spd)


def test_nearest_pd_negative_definite_input():
    proj = la.nearest_pd(-np.eye(2))
    assert proj.projected
    assert proj.min_eigenvalue > 0.0


def test_nearest_pd_without_dykstra(indefinite):
    proj = la.nearest_pd(indefinite, do_dykstra=False)
    assert proj.min_eigenvalue > 0.0


def test_nearest_pd_rejects_non_finite():
    with pytest.raises(ValueError, match="finite"):
        la.nearest_pd(np.array([[1.0, np.nan], [np.nan, 1.0]]))


# ---------------------------------------------------------------------
# Moment solvers
# ---------------------------------------------------------------------


def test_solve_moments_matches_lstsq(rng):
    X = np.column_stack([np.ones(200), rng.standard_normal((200, 2))])
    y = X @ np.array([1.0, -2.0, 0.5]) + rng.standard_normal(200)
    beta = la.solve_moments(X.T @ X / 200, X.T @ y / 200)
    ref = np.linalg.lstsq(X, y, rcond=None)[0]
    assert np.allclose(beta, ref)


def test_solve_moments_singular_reports_condition_number():
    M = np.array([[1.0, 1.0], [1.0, 1.0]])
    with pytest.raises(SingularMomentError, match="singular") as excinfo:
        la.solve_moments(M, np.array([1.0, 1.0]))
    assert excinfo.value.condition_number > 1e12
    # still a LinAlgError for generic callers
    assert isinstance(excinfo.value, np.linalg.LinAlgError)


def test_solve_moments_shape_mismatch():
    with pytest.raises(ValueError, match="incompatible shapes"):
        la.solve_moments(np.eye(3), np.ones(2))


def test_solve_moments_batch(spd, rng):
    Ms = np.stack([spd, 2.0 * spd])
    cs = rng.standard_normal((2, 4))
    out = la.solve_moments_batch(Ms, cs)
    assert out.shape == (2, 4)
    assert np.allclose(Ms[0] @ out[0], cs[0])
    assert np.allclose(Ms[1] @ out[1], cs[1])


def test_solve_moments_batch_singular():
    Ms = np.zeros((1, 2, 2))
    with pytest.raises(SingularMomentError):
        la.solve_moments_batch(Ms, np.ones((1, 2)))
