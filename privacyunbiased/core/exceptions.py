"""Exception and warning taxonomy.

Configuration errors subclass ``ValueError`` and numerical failures subclass
``numpy.linalg.LinAlgError`` so that callers catching the builtin types keep
working. Statistical anomalies that do not stop estimation are reported with
:class:`NotPositiveDefiniteWarning`.
"""

from __future__ import annotations

import numpy as np

__all__ = [
    "ModelSpecError",
    "MultipleTransformationsError",
    "NoiseSpecError",
    "NotPositiveDefiniteWarning",
    "PrivacyUnbiasedError",
    "SingularMomentError",
    "UnsupportedTransformationError",
    "VarianceMethodError",
]


class PrivacyUnbiasedError(Exception):
    """Base class for all errors raised by privacyunbiased."""


# ---------------------------------------------------------------------
# Configuration errors (raised before any numeric work)
# ---------------------------------------------------------------------
class ModelSpecError(PrivacyUnbiasedError, ValueError):
    """Invalid model specification or fit configuration."""


class UnsupportedTransformationError(ModelSpecError):
    """Transformed term other than a pairwise interaction or a square."""


class MultipleTransformationsError(ModelSpecError):
    """More than one transformed term in a single model."""


class NoiseSpecError(ModelSpecError):
    """Missing or invalid noise standard deviation for a used column."""


class VarianceMethodError(ModelSpecError):
    """Variance method not available for the requested model."""


# ---------------------------------------------------------------------
# Numerical errors
# ---------------------------------------------------------------------
class SingularMomentError(PrivacyUnbiasedError, np.linalg.LinAlgError):
    """Corrected moment matrix is numerically singular.

    Attributes
    ----------
    condition_number : float
        Ratio of the largest to the smallest singular value (``inf`` when the
        smallest one is exactly zero).
    """

    def __init__(self, message: str, *, condition_number: float = float("inf")) -> None:
        super().__init__(message)
        self.condition_number = float(condition_number)


# ---------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------
class NotPositiveDefiniteWarning(RuntimeWarning):
    """A matrix parameterizing random draws had to be projected to PD."""
