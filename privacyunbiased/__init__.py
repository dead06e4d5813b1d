"""privacyunbiased: linear regression on noise-protected data.

Bias-corrected least squares for data released with additive noise of known
scale (e.g. differential privacy), with simulation or bootstrap standard
errors.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "LMDP",
    "BaseEstimator",
    "BootConfig",
    "EstimationResult",
    "ModelSpec",
    "ModelSpecError",
    "MultipleTransformationsError",
    "NoiseSpec",
    "NoiseSpecError",
    "NotPositiveDefiniteWarning",
    "PrivacyUnbiasedError",
    "SimConfig",
    "SingularMomentError",
    "TransformedTerm",
    "UnsupportedTransformationError",
    "VarianceMethodError",
    "bias_study",
    "coef_plot",
    "lmdp",
    "modelsummary",
    "parse_formula",
    "simulate_dp_data",
    "summary",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseEstimator": ("privacyunbiased.estimators.base", "BaseEstimator"),
    "BootConfig": ("privacyunbiased.estimators.base", "BootConfig"),
    "SimConfig": ("privacyunbiased.estimators.base", "SimConfig"),
    "EstimationResult": ("privacyunbiased.estimators.base", "EstimationResult"),
    "LMDP": ("privacyunbiased.estimators.lmdp", "LMDP"),
    "lmdp": ("privacyunbiased.estimators.lmdp", "lmdp"),
    "ModelSpec": ("privacyunbiased.core.design", "ModelSpec"),
    "NoiseSpec": ("privacyunbiased.core.design", "NoiseSpec"),
    "TransformedTerm": ("privacyunbiased.core.design", "TransformedTerm"),
    "PrivacyUnbiasedError": ("privacyunbiased.core.exceptions", "PrivacyUnbiasedError"),
    "ModelSpecError": ("privacyunbiased.core.exceptions", "ModelSpecError"),
    "MultipleTransformationsError": (
        "privacyunbiased.core.exceptions", "MultipleTransformationsError",
    ),
    "UnsupportedTransformationError": (
        "privacyunbiased.core.exceptions", "UnsupportedTransformationError",
    ),
    "NoiseSpecError": ("privacyunbiased.core.exceptions", "NoiseSpecError"),
    "VarianceMethodError": ("privacyunbiased.core.exceptions", "VarianceMethodError"),
    "SingularMomentError": ("privacyunbiased.core.exceptions", "SingularMomentError"),
    "NotPositiveDefiniteWarning": (
        "privacyunbiased.core.exceptions", "NotPositiveDefiniteWarning",
    ),
    "parse_formula": ("privacyunbiased.utils.formula", "parse_formula"),
    "summary": ("privacyunbiased.output.summary", "summary"),
    "modelsummary": ("privacyunbiased.output.summary", "modelsummary"),
    "coef_plot": ("privacyunbiased.output.plots", "coef_plot"),
    "simulate_dp_data": ("privacyunbiased.sim.montecarlo", "simulate_dp_data"),
    "bias_study": ("privacyunbiased.sim.montecarlo", "bias_study"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public estimators and utilities on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'privacyunbiased' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))
