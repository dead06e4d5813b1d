"""Bias-corrected linear regression on differentially private data.

This module implements the moment-corrected least-squares estimator for data
whose columns carry independent additive noise of known scale, with variance
by simulation from the moments' normal limit or by the row bootstrap.
"""

from __future__ import annotations

import logging
import math
import numbers
import warnings
from collections.abc import Mapping
from typing import TYPE_CHECKING, Union

import numpy as np
import pandas as pd

from privacyunbiased.core import linalg as la
from privacyunbiased.core.bootstrap import bootstrap_vcov
from privacyunbiased.core.design import ModelSpec, NoiseSpec, build_design
from privacyunbiased.core.exceptions import (
    ModelSpecError,
    NoiseSpecError,
    NotPositiveDefiniteWarning,
    SingularMomentError,
    VarianceMethodError,
)
from privacyunbiased.core.moments import corrected_moments, naive_moments
from privacyunbiased.core.simulation import simulation_vcov
from privacyunbiased.utils.formula import FormulaParser, parse_formula

from .base import BaseEstimator, BootConfig, EstimationResult, SimConfig

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from privacyunbiased.core.design import Design

__all__ = ["LMDP", "lmdp", "resolve_noise", "select_variance_method"]

LOGGER = logging.getLogger(__name__)

VARIANCE_METHODS = ("auto", "simulation", "bootstrap")
NOT_PD_MESSAGE = "VC matrix not positive definite"

NoiseArg = Union[NoiseSpec, Mapping[str, float], float, None]


def select_variance_method(
    spec: ModelSpec, *, bootstrap_var: bool = False, variance: str | None = None,
) -> str:
    """Resolve the variance strategy for ``spec``.

    A transformed term always uses the bootstrap; otherwise the simulation
    method is used unless the bootstrap is requested. Asking for the
    simulation on a model with a transformed term raises
    :class:`VarianceMethodError`.
    """
    choice = "auto" if variance is None else str(variance).strip().lower()
    if choice not in VARIANCE_METHODS:
        msg = f"variance must be one of {list(VARIANCE_METHODS)}; got {variance!r}"
        raise ModelSpecError(msg)
    if bootstrap_var and choice == "simulation":
        msg = "bootstrap_var=True conflicts with variance='simulation'"
        raise ModelSpecError(msg)
    if choice == "simulation" and spec.has_transformation:
        msg = (
            f"simulation variance is not available with the transformed term "
            f"{spec.transformation.name!r}; use the bootstrap"
        )
        raise VarianceMethodError(msg)
    if spec.has_transformation or bootstrap_var or choice == "bootstrap":
        return "bootstrap"
    return "simulation"


def resolve_noise(
    data: pd.DataFrame,
    spec: ModelSpec,
    noise: NoiseArg = None,
    *,
    drop_noise_row: bool | None = None,
) -> tuple[NoiseSpec, pd.DataFrame, str]:
    """Return ``(noise_spec, working_data, source)``.

    With ``noise=None`` the first row of ``data`` holds the noise standard
    deviations and is removed from the working data. A scalar override
    applies to every covariate (the outcome gets 0) and the data are used as
    given unless ``drop_noise_row=True``. A mapping or NoiseSpec is used
    as is.
    """
    if not isinstance(data, pd.DataFrame):
        msg = f"data must be a pandas DataFrame; got {type(data).__name__}"
        raise TypeError(msg)
    if noise is None:
        if drop_noise_row is False:
            msg = "without a noise override the first row must hold the noise scales"
            raise ModelSpecError(msg)
        if data.shape[0] == 0:
            msg = "data is empty; expected a first row with noise standard deviations"
            raise ModelSpecError(msg)
        return NoiseSpec.from_row(data.iloc[0]), data.iloc[1:], "row"
    if isinstance(noise, NoiseSpec):
        spec_noise, source = noise, "spec"
    elif isinstance(noise, Mapping):
        spec_noise, source = NoiseSpec(dict(noise)), "spec"
    elif isinstance(noise, numbers.Real) and not isinstance(noise, bool):
        value = float(noise)
        if not math.isfinite(value) or value < 0.0:
            msg = f"noise override must be finite and non-negative; got {noise}"
            raise NoiseSpecError(msg)
        spec_noise = NoiseSpec.uniform(value, spec.covariates, outcome=spec.outcome)
        source = "override"
    else:
        msg = f"noise must be None, a number, a mapping or a NoiseSpec; got {type(noise).__name__}"
        raise TypeError(msg)
    working = data.iloc[1:] if drop_noise_row else data
    return spec_noise, working, source


class LMDP(BaseEstimator):
    """Linear model on differentially private (noise-added) data.

    Estimates ``y = r(z)' beta + e`` when only ``x = z + u`` is observed and
    every covariate's noise ``u`` is independent, zero-mean and of known
    standard deviation. The second moments of the regressors are corrected
    for the noise before solving the normal equations.

    Parameters
    ----------
    spec : ModelSpec
        Outcome, additive regressors and at most one interaction or square.
    data : pandas.DataFrame
        Noisy data. Unless ``noise`` is given, its first row holds the noise
        standard deviations of every column and is removed before estimation.
    noise : float, mapping, NoiseSpec or None
        Noise override. A float applies to every covariate.
    drop_noise_row : bool, optional
        With an override, also discard the first row of ``data``.
    formula : str, optional
        Formula recorded in ``model_info`` (set by :meth:`from_formula`).

    Attributes
    ----------
    spec : ModelSpec
    noise : NoiseSpec
    design : Design
        Numeric design after dropping the noise row and non-finite rows.

    Examples
    --------
    >>> from privacyunbiased.sim.montecarlo import simulate_dp_data
    >>> from privacyunbiased.estimators.lmdp import LMDP
    >>> from privacyunbiased.estimators.base import SimConfig
    >>> _, dp = simulate_dp_data(10_000, seed=1)
    >>> res = LMDP.from_formula("Y ~ X1 + X2 + X3", dp).fit(sim=SimConfig(seed=1))
    >>> res.params.round(1)  # doctest: +SKIP

    Notes
    -----
    - Noise is assumed symmetric; ``noise_kurtosis`` (3 for Gaussian, 6 for
      Laplace) only matters for the fourth moment of a squared term.
    - Models with a transformed term always use the bootstrap.
    - No explicit matrix inversion; singular corrected moments raise
      :class:`SingularMomentError`.

    """

    def __init__(
        self,
        spec: ModelSpec,
        data: pd.DataFrame,
        noise: NoiseArg = None,
        *,
        drop_noise_row: bool | None = None,
        formula: str | None = None,
    ) -> None:
        super().__init__()
        if not isinstance(spec, ModelSpec):
            msg = f"spec must be a ModelSpec; got {type(spec).__name__}"
            raise TypeError(msg)
        self.spec = spec
        self.formula = formula if formula is not None else str(spec)
        self.noise, working, self.noise_source = resolve_noise(
            data, spec, noise, drop_noise_row=drop_noise_row,
        )
        # fatal before any arithmetic if a covariate has no noise scale
        self._variances = self.noise.variances(spec.covariates)
        self.design: Design = build_design(spec, working)
        LOGGER.debug(
            "LMDP: %s on %d rows (noise from %s, %d dropped)",
            self.formula, self.design.n_obs, self.noise_source, self.design.n_dropped,
        )

    @classmethod
    def from_formula(
        cls,
        formula: str,
        data: pd.DataFrame,
        *,
        noise: NoiseArg = None,
        drop_noise_row: bool | None = None,
    ) -> LMDP:
        """Create the model from an R-style formula such as ``"Y ~ X1 + X2 + X1:X2"``."""
        spec = FormulaParser(data).parse(formula)
        return cls(spec, data, noise, drop_noise_row=drop_noise_row, formula=formula)

    @property
    def variances(self) -> NDArray[np.float64]:
        return self._variances.copy()

    def fit(  # noqa: PLR0913
        self,
        *,
        bootstrap_var: bool = False,
        variance: str | None = None,
        boot: BootConfig | None = None,
        sim: SimConfig | None = None,
        noise_kurtosis: float = 3.0,
    ) -> EstimationResult:
        """Estimate corrected coefficients and their covariance.

        Parameters
        ----------
        bootstrap_var : bool, default False
            Use the row bootstrap even for an additive model.
        variance : {"auto", "simulation", "bootstrap"}, optional
            Explicit variance method; ``None`` means ``"auto"``.
        boot, sim : BootConfig, SimConfig, optional
            Settings of the bootstrap and the simulation.
        noise_kurtosis : float, default 3.0
            ``E[u^4] / sd^4`` of the noise; must be at least 1.

        """
        kurt = float(noise_kurtosis)
        if not math.isfinite(kurt) or kurt < 1.0:
            msg = f"noise_kurtosis must be a finite number >= 1; got {noise_kurtosis}"
            raise ModelSpecError(msg)
        method = select_variance_method(
            self.spec, bootstrap_var=bootstrap_var, variance=variance,
        )
        LOGGER.debug("LMDP: variance method %s", method)

        design = self.design
        v = self._variances
        moments = corrected_moments(design, v, kurtosis=kurt)
        beta = la.solve_moments(moments.M, moments.c)
        if not moments.positive_definite:
            LOGGER.debug("corrected moment matrix is not positive definite")

        naive = naive_moments(design)
        try:
            beta_naive = la.solve_moments(naive.M, naive.c)
        except SingularMomentError:
            beta_naive = np.full(design.n_params, np.nan)

        if method == "simulation":
            cfg_s = sim or SimConfig()
            out_s = simulation_vcov(
                design,
                v,
                n_sims=cfg_s.n_sims,
                seed=cfg_s.seed,
                n_jobs=cfg_s.n_jobs,
                chunk_size=cfg_s.chunk_size,
                kurtosis=kurt,
            )
            draws, vcov = out_s.draws, out_s.vcov
            positive_definite = out_s.positive_definite
            n_projections = 0 if positive_definite else 1
        else:
            cfg_b = boot or BootConfig()
            out_b = bootstrap_vcov(
                design,
                v,
                n_boot=cfg_b.n_boot,
                seed=cfg_b.seed,
                n_jobs=cfg_b.n_jobs,
                chunk_size=cfg_b.chunk_size,
                kurtosis=kurt,
                project_moments=cfg_b.project_moments,
            )
            draws, vcov = out_b.draws, out_b.vcov
            positive_definite = out_b.positive_definite
            n_projections = out_b.n_projections

        if not positive_definite:
            warnings.warn(NOT_PD_MESSAGE, NotPositiveDefiniteWarning, stacklevel=2)

        names = list(design.names)
        index = pd.Index(names)
        used = [design.outcome, *design.columns]
        res = EstimationResult(
            params=pd.Series(beta, index=index, name="coef"),
            vcov=pd.DataFrame(vcov, index=index, columns=index),
            positive_definite=positive_definite,
            n_obs=design.n_obs,
            model_info={
                "Estimator": "LMDP",
                "formula": self.formula,
                "variance_method": method,
                "n_draws": int(draws.shape[0]),
                "noise": {c: self.noise.sd.get(c, 0.0) for c in used},
                "noise_source": self.noise_source,
                "noise_kurtosis": kurt,
                "dropped_stats": {
                    "na": int(design.n_dropped),
                    "noise_row": int(self.noise_source == "row"),
                },
            },
            extra={
                "draws": draws,
                "M_hat": moments.M,
                "c_hat": moments.c,
                "M_naive": naive.M,
                "naive_params": pd.Series(beta_naive, index=index, name="naive"),
                "moments_positive_definite": moments.positive_definite,
                "n_projections": n_projections,
            },
        )
        self._results = res
        return res


def lmdp(  # noqa: PLR0913
    formula_or_spec: str | ModelSpec,
    data: pd.DataFrame,
    *,
    noise: NoiseArg = None,
    bootstrap_var: bool = False,
    variance: str | None = None,
    drop_noise_row: bool | None = None,
    boot: BootConfig | None = None,
    sim: SimConfig | None = None,
    noise_kurtosis: float = 3.0,
) -> EstimationResult:
    """Fit a bias-corrected linear model on noise-added data.

    ``formula_or_spec`` is an R-style formula or a ModelSpec. All
    configuration errors (unsupported or multiple transformations, missing
    noise scales, conflicting variance options) are raised before any pass
    over the data. A ``NotPositiveDefiniteWarning`` is emitted when a
    positive-definiteness projection occurred in the variance step.
    """
    if isinstance(formula_or_spec, ModelSpec):
        spec, formula = formula_or_spec, None
    elif isinstance(formula_or_spec, str):
        spec, formula = parse_formula(formula_or_spec), formula_or_spec
    else:
        msg = f"expected a formula string or a ModelSpec; got {type(formula_or_spec).__name__}"
        raise TypeError(msg)
    select_variance_method(spec, bootstrap_var=bootstrap_var, variance=variance)
    model = LMDP(spec, data, noise, drop_noise_row=drop_noise_row, formula=formula)
    return model.fit(
        bootstrap_var=bootstrap_var,
        variance=variance,
        boot=boot,
        sim=sim,
        noise_kurtosis=noise_kurtosis,
    )
