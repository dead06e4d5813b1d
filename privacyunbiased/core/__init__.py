# privacyunbiased/core/__init__.py
"""Core computational modules for privacyunbiased."""
from . import bootstrap, design, exceptions, linalg, moments, simulation

__all__ = ["bootstrap", "design", "exceptions", "linalg", "moments", "simulation"]
