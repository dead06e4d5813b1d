# privacyunbiased/output/__init__.py
"""Output and visualization module for corrected regression results."""
from .plots import coef_plot
from .summary import coef_table, modelsummary, summary

__all__ = [
    "coef_plot",
    "coef_table",
    "modelsummary",
    "summary",
]
