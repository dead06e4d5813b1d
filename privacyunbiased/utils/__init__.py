# privacyunbiased/utils/__init__.py
"""Utility functions module."""
from .formula import FormulaParser, parse_formula

__all__ = [
    "FormulaParser",
    "parse_formula",
]
