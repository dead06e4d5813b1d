"""Estimator exports with lazy loading.

Public estimator classes and result containers. Uses lazy imports so that
importing the package does not pull in the output stack.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "LMDP",
    "BaseEstimator",
    "BootConfig",
    "EstimationResult",
    "SimConfig",
    "lmdp",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseEstimator": ("privacyunbiased.estimators.base", "BaseEstimator"),
    "BootConfig": ("privacyunbiased.estimators.base", "BootConfig"),
    "SimConfig": ("privacyunbiased.estimators.base", "SimConfig"),
    "EstimationResult": ("privacyunbiased.estimators.base", "EstimationResult"),
    "LMDP": ("privacyunbiased.estimators.lmdp", "LMDP"),
    "lmdp": ("privacyunbiased.estimators.lmdp", "lmdp"),
}


def __getattr__(name: str) -> Any:
    """Lazily import estimator classes and shared containers."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'privacyunbiased.estimators' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Expose lazily loaded attributes to ``dir()``."""
    return sorted(set(globals()) | set(__all__))
