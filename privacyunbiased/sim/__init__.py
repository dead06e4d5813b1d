# privacyunbiased/sim/__init__.py
"""Simulated noise-added datasets."""
from .montecarlo import NOISE_SD, TRUE_COEFFICIENTS, bias_study, simulate_dp_data

__all__ = ["NOISE_SD", "TRUE_COEFFICIENTS", "bias_study", "simulate_dp_data"]
