"""Plot utilities.

Visualizes corrected coefficients with normal confidence intervals next to
the naive OLS estimates on the noisy data.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import matplotlib.pyplot as plt
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from privacyunbiased.estimators.base import EstimationResult
else:  # pragma: no cover - used only for typing
    Sequence = tuple  # type: ignore[assignment]
    EstimationResult = Any  # type: ignore[assignment,misc]

__all__ = ["coef_plot"]


def coef_plot(  # noqa: PLR0913
    result: EstimationResult,
    *,
    terms: Sequence[str] | None = None,
    ci_level: float | None = None,
    show_naive: bool = True,
    truth: dict[str, float] | None = None,
    ax: plt.Axes | None = None,
) -> plt.Axes:
    """Point-and-interval plot of corrected coefficients.

    - terms: coefficients to show, in order (default: all)
    - show_naive: overlay the uncorrected OLS estimates stored in the result
    - truth: optional true values (e.g. from simulated data) drawn as ticks
    """
    names = list(result.params.index) if terms is None else list(terms)
    missing = [t for t in names if t not in result.params.index]
    if missing:
        raise ValueError(f"unknown coefficient(s): {missing}")
    ci = result.conf_int(ci_level).loc[names]
    est = result.params.loc[names].to_numpy(dtype=float)
    lo = ci["lower"].to_numpy(dtype=float)
    hi = ci["upper"].to_numpy(dtype=float)

    ax = ax or plt.gca()
    y = np.arange(len(names))
    ax.errorbar(
        est, y, xerr=np.vstack([est - lo, hi - est]),
        fmt="o", capsize=3, label="Corrected", zorder=3,
    )
    naive = result.extra.get("naive_params")
    if show_naive and naive is not None:
        ax.scatter(
            naive.reindex(names).to_numpy(dtype=float), y + 0.15,
            marker="x", label="Naive OLS", zorder=3,
        )
    if truth:
        tv = np.array([truth.get(n, np.nan) for n in names], dtype=float)
        ax.scatter(tv, y, marker="|", s=200, color="0.3", label="True", zorder=2)
    ax.axvline(0.0, color="0.8", lw=1, ls="--")
    ax.set_yticks(y)
    ax.set_yticklabels(names)
    ax.set_xlabel("Coefficient")
    ax.invert_yaxis()
    ax.legend(frameon=False)
    return ax
