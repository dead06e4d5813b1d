"""Monte Carlo data generation.

Simulates a released dataset with Gaussian noise of known scale added to each
covariate, and a small bias study comparing the corrected estimator with OLS
on the noisy columns.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from privacyunbiased.core import linalg as la
from privacyunbiased.core.bootstrap import SeedLike, spawn_generators
from privacyunbiased.core.design import ModelSpec, NoiseSpec, build_design
from privacyunbiased.core.moments import corrected_moments, naive_moments

__all__ = [
    "NOISE_SD",
    "TRUE_COEFFICIENTS",
    "bias_study",
    "simulate_dp_data",
]

# (Intercept), X1, X2, X3
TRUE_COEFFICIENTS: dict[str, float] = {
    "(Intercept)": 10.0,
    "X1": 12.0,
    "X2": -3.0,
    "X3": 9.0,
}
NOISE_SD: dict[str, float] = {"Y": 0.0, "X1": 0.7, "X2": 1.2, "X3": 1.0}
OUTCOME_SD = 2.0


def simulate_dp_data(
    n_obs: int = 1000,
    seed: SeedLike = None,
    *,
    noise_sd: dict[str, float] | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Simulate true data and its noise-added release.

    Z1 ~ Pois(7), Z2 = Z1 + Pois(9), Z3 ~ Pois(3) and
    Y = 10 + 12 Z1 - 3 Z2 + 9 Z3 + N(0, 2^2). The release adds
    N(0, sd^2) noise to each Z (defaults 0.7, 1.2, 1.0) and prepends the
    noise row ``(Y=0, X1=sd1, X2=sd2, X3=sd3)``.

    Returns
    -------
    private_data : DataFrame with columns Y, Z1, Z2, Z3 (n_obs rows)
    dp_data : DataFrame with columns Y, X1, X2, X3 (n_obs + 1 rows, noise row first)
    """
    n = int(n_obs)
    if n < 1:
        raise ValueError("n_obs must be a positive integer")
    sd = dict(NOISE_SD)
    if noise_sd is not None:
        sd.update(noise_sd)
    rng = seed if isinstance(seed, np.random.Generator) else np.random.default_rng(seed)

    Z1 = rng.poisson(7, n).astype(np.float64)
    Z2 = Z1 + rng.poisson(9, n)
    Z3 = rng.poisson(3, n).astype(np.float64)
    b = TRUE_COEFFICIENTS
    Y = (
        b["(Intercept)"] + b["X1"] * Z1 + b["X2"] * Z2 + b["X3"] * Z3
        + rng.normal(0.0, OUTCOME_SD, n)
    )
    private_data = pd.DataFrame({"Y": Y, "Z1": Z1, "Z2": Z2, "Z3": Z3})

    released = pd.DataFrame(
        {
            "Y": Y,
            "X1": Z1 + rng.normal(0.0, sd["X1"], n),
            "X2": Z2 + rng.normal(0.0, sd["X2"], n),
            "X3": Z3 + rng.normal(0.0, sd["X3"], n),
        },
    )
    noise_row = pd.DataFrame([{c: sd[c] for c in released.columns}])
    dp_data = pd.concat([noise_row, released], ignore_index=True)
    return private_data, dp_data


def bias_study(
    n_reps: int = 200,
    n_obs: int = 1000,
    seed: SeedLike = None,
) -> pd.DataFrame:
    """Mean and RMSE of corrected vs naive point estimates over replications.

    Only point estimates are computed (no variance step), so the study is
    cheap enough for a few hundred replications.
    """
    if int(n_reps) < 1:
        raise ValueError("n_reps must be a positive integer")
    spec = ModelSpec("Y", ("X1", "X2", "X3"))
    names = spec.term_names
    corrected = np.empty((int(n_reps), len(names)))
    naive = np.empty_like(corrected)
    for r, rng in enumerate(spawn_generators(seed, int(n_reps))):
        _, dp = simulate_dp_data(n_obs, rng)
        noise = NoiseSpec.from_row(dp.iloc[0])
        design = build_design(spec, dp.iloc[1:])
        mm = corrected_moments(design, noise.variances(design.columns))
        corrected[r] = la.solve_moments(mm.M, mm.c)
        nm = naive_moments(design)
        naive[r] = la.solve_moments(nm.M, nm.c)
    truth = np.array([TRUE_COEFFICIENTS[n] for n in names])
    return pd.DataFrame(
        {
            "truth": truth,
            "corrected_mean": corrected.mean(axis=0),
            "naive_mean": naive.mean(axis=0),
            "corrected_rmse": np.sqrt(((corrected - truth) ** 2).mean(axis=0)),
            "naive_rmse": np.sqrt(((naive - truth) ** 2).mean(axis=0)),
        },
        index=pd.Index(names, name="term"),
    )
