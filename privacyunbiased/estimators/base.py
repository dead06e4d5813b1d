"""Base classes, variance configuration and results container.

This module defines the abstract base estimator, the frozen configuration
objects for the two variance strategies and the immutable estimation result.
"""

# privacyunbiased/estimators/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd
from scipy import stats

from privacyunbiased.core import bootstrap as bt
from privacyunbiased.core import simulation as sim

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "BaseEstimator",
    "BootConfig",
    "EstimationResult",
    "SimConfig",
    "ci_level_to_alpha",
    "normalize_ci_level",
]


def normalize_ci_level(level: float | None, *, default: float = 0.95) -> float:
    """Normalize confidence level to a probability (0, 1)."""
    if not (0.0 < float(default) < 1.0):
        raise ValueError("default confidence level must lie in (0, 1)")
    if level is None:
        coerced = float(default)
    else:
        coerced = float(level)
        # Accept percentage-style inputs (e.g., 90 for 90%)
        if coerced > 1.0:
            coerced /= 100.0
    if not (0.0 < coerced < 1.0):
        raise ValueError("ci_level must be in (0, 1); supply e.g. 0.95 or 95")
    return coerced


def ci_level_to_alpha(level: float | None, *, default: float = 0.95) -> float:
    """Return the corresponding tail probability ``alpha`` for a confidence level."""
    ci_level = normalize_ci_level(level, default=default)
    return 1.0 - ci_level


# ---------------------------------------------------------------------
# Results container, immutable once built
# ---------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class EstimationResult:
    """Container for estimation results.

    Stores the corrected coefficients, their covariance from the selected
    variance method, the positive-definiteness flag and diagnostics.
    ``se`` is derived from the diagonal of ``vcov`` when not supplied.
    """

    params: pd.Series
    vcov: pd.DataFrame
    se: pd.Series | None = None
    positive_definite: bool = True
    n_obs: int | None = None
    model_info: Mapping[str, Any] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)
    """Estimator-specific diagnostics and intermediate results."""

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        head = ", ".join(
            f"{k}={v}" for k, v in self.model_info.items()
            if k in {"Estimator", "variance_method", "n_draws"}
        )
        return (
            f"EstimationResult(k={len(self.params)}, n={self.n_obs}, "
            f"positive_definite={self.positive_definite}, {head})"
        )

    def __post_init__(self) -> None:
        if self.se is None:
            diag = np.clip(np.diag(self.vcov.to_numpy(dtype=np.float64)), 0.0, None)
            object.__setattr__(
                self, "se", pd.Series(np.sqrt(diag), index=self.params.index, name="se"),
            )
        object.__setattr__(self, "model_info", MappingProxyType(dict(self.model_info)))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))
        self.validate()

    def validate(self) -> None:
        """Check that ``vcov`` and ``se`` align with ``params`` and are finite."""
        if not isinstance(self.params, pd.Series):
            raise ValueError("params must be a pandas Series.")
        if not isinstance(self.vcov, pd.DataFrame):
            raise ValueError("vcov must be a pandas DataFrame indexed like params.")
        if not (
            self.vcov.index.equals(self.params.index)
            and self.vcov.columns.equals(self.params.index)
        ):
            raise ValueError("vcov index and columns must exactly match params index and order.")
        if not np.all(np.isfinite(self.vcov.to_numpy(dtype=np.float64))):
            raise ValueError("vcov contains non-finite values.")
        if not isinstance(self.se, pd.Series):
            raise ValueError("se must be a pandas Series aligned to params.")
        if not self.se.index.equals(self.params.index):
            raise ValueError("se index must exactly match params index and order.")
        if not np.all(np.isfinite(self.se.values)):
            raise ValueError("se contains non-finite values.")

    @property
    def variance_method(self) -> str | None:
        return self.model_info.get("variance_method")

    @property
    def n_draws(self) -> int | None:
        return self.model_info.get("n_draws")

    def conf_int(self, level: float | None = None) -> pd.DataFrame:
        """Normal confidence intervals ``params +/- z * se``."""
        alpha = ci_level_to_alpha(level)
        z = float(stats.norm.ppf(1.0 - alpha / 2.0))
        return pd.DataFrame(
            {"lower": self.params - z * self.se, "upper": self.params + z * self.se},
            index=self.params.index,
        )

    def summary(self, **kwargs: Any) -> str:
        from privacyunbiased.output.summary import summary

        return summary(self, **kwargs)


# ---------------------------------------------------------------------
# Variance configuration
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootConfig:
    """Row-bootstrap configuration.

    Notes
    -----
    - Replications: default is 500; every replication recomputes the full
      corrected estimate on n resampled rows.
    - Reproducibility: ``seed`` (int, ``SeedSequence`` or ``Generator``) seeds
      one independent stream per chunk of ``chunk_size`` replications, so the
      draws do not depend on ``n_jobs``.
    - ``project_moments``: project a resampled moment matrix that fails the
      Cholesky check before solving. Each projection is counted and clears the
      result's positive-definiteness flag.

    """

    n_boot: int = bt.DEFAULT_BOOTSTRAP_ITERATIONS
    seed: bt.SeedLike = None
    n_jobs: int | None = None
    chunk_size: int = bt.DEFAULT_CHUNK_SIZE
    project_moments: bool = True

    def __post_init__(self) -> None:
        if int(self.n_boot) < 2:
            raise ValueError("n_boot must be at least 2.")
        if int(self.chunk_size) < 1:
            raise ValueError("chunk_size must be a positive integer.")


@dataclass(frozen=True)
class SimConfig:
    """Simulation-variance configuration (draws from the moments' normal limit)."""

    n_sims: int = sim.DEFAULT_SIMULATION_DRAWS
    seed: bt.SeedLike = None
    n_jobs: int | None = None
    chunk_size: int = sim.DEFAULT_SIMULATION_CHUNK

    def __post_init__(self) -> None:
        if int(self.n_sims) < 2:
            raise ValueError("n_sims must be at least 2.")
        if int(self.chunk_size) < 1:
            raise ValueError("chunk_size must be a positive integer.")


# ---------------------------------------------------------------------
# Base interface
# ---------------------------------------------------------------------
class BaseEstimator(ABC):
    """Abstract base class for all `privacyunbiased` estimators.

    Principles
    ----------
    1) All linear algebra goes through `core.linalg`.
    2) Noise corrections go through `core.moments`.
    3) Variance draws go through `core.simulation` or `core.bootstrap`.
    """

    def __init__(self) -> None:
        self._results: EstimationResult | None = None

    @abstractmethod
    def fit(
        self, *args: Any, **kwargs: Any,
    ) -> EstimationResult:  # pragma: no cover - abstract
        """Fit the estimator and return EstimationResult (abstract)."""
        ...

    # -- convenience accessors ----------------------------------------
    @property
    def results(self) -> EstimationResult:
        if self._results is None:
            msg = "Model has not been fitted yet. Call .fit() first."
            raise RuntimeError(msg)
        return self._results

    @property
    def params(self) -> pd.Series:
        return self.results.params

    @property
    def se(self) -> pd.Series | None:
        return self.results.se

    @property
    def vcov(self) -> pd.DataFrame:
        return self.results.vcov

    @property
    def n_obs(self) -> int | None:
        return self.results.n_obs
