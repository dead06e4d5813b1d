"""Summary tables.

Plain-text and LaTeX coefficient tables for corrected estimates, with normal
confidence intervals built from the simulation or bootstrap covariance.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import cast

import numpy as np
import pandas as pd
from tabulate import tabulate

from privacyunbiased.estimators.base import EstimationResult

__all__ = ["coef_table", "modelsummary", "summary"]


def _fmt(x: float, digits: int) -> str:
    return "" if not np.isfinite(x) else f"{x:.{digits}f}"


def coef_table(
    result: EstimationResult, *, ci_level: float | None = None, show_naive: bool = False,
) -> pd.DataFrame:
    """Estimate, standard error and confidence interval per coefficient."""
    ci = result.conf_int(ci_level)
    table = pd.DataFrame(
        {
            "Estimate": result.params,
            "Std. Error": result.se,
            "CI lower": ci["lower"],
            "CI upper": ci["upper"],
        },
    )
    naive = result.extra.get("naive_params")
    if show_naive and naive is not None:
        table["Naive OLS"] = naive.reindex(table.index)
    return table


def _footer(result: EstimationResult) -> list[tuple[str, str]]:
    method = result.model_info.get("variance_method", "")
    draws = result.model_info.get("n_draws")
    unit = "draws" if method == "simulation" else "resamples"
    return [
        ("Observations", str(result.n_obs)),
        ("Variance", f"{method} ({draws} {unit})" if draws is not None else str(method)),
        ("VC matrix positive definite", str(bool(result.positive_definite))),
    ]


def summary(
    result: EstimationResult,
    *,
    ci_level: float | None = None,
    digits: int = 4,
    show_naive: bool = False,
    tablefmt: str = "simple",
) -> str:
    """Render a single result as a coefficient table with a short footer."""
    table = coef_table(result, ci_level=ci_level, show_naive=show_naive)
    rows = [
        [name, *(_fmt(float(v), digits) for v in row)]
        for name, row in zip(table.index, table.to_numpy(dtype=np.float64))
    ]
    body = cast(
        "str",
        tabulate(rows, headers=["", *table.columns], stralign="right", tablefmt=tablefmt),
    )
    formula = result.model_info.get("formula")
    lines = [f"LMDP: {formula}" if formula else "LMDP", body, ""]
    lines.extend(f"{label}: {value}" for label, value in _footer(result))
    return "\n".join(lines)


def modelsummary(
    results: Sequence[EstimationResult],
    model_names: Sequence[str] | None = None,
    *,
    digits: int = 3,
    output: str = "text",
) -> str:
    """Side-by-side table of several results (estimate over ``(se)``)."""
    results = list(results)
    if not results:
        raise ValueError("modelsummary requires at least one result.")
    if model_names is None:
        model_names = [f"({i + 1})" for i in range(len(results))]
    if len(model_names) != len(results):
        raise ValueError("model_names length must match number of results.")
    if output not in {"text", "latex"}:
        raise ValueError("output must be 'text' or 'latex'.")

    index: list[str] = []
    for res in results:
        index.extend(n for n in res.params.index if n not in index)

    table_data: list[list[str]] = []
    for name in index:
        est_row = [name]
        se_row = [""]
        for res in results:
            if name in res.params.index:
                est_row.append(_fmt(float(res.params[name]), digits))
                se_row.append(f"({_fmt(float(res.se[name]), digits)})")
            else:
                est_row.append("")
                se_row.append("")
        table_data.extend([est_row, se_row])

    footer_rows = []
    for k, label in enumerate(("Observations", "Variance", "VC matrix positive definite")):
        footer_rows.append([label, *(_footer(res)[k][1] for res in results)])

    headers = ["", *list(model_names)]
    sep = ["" for _ in headers]  # blank separator row
    table_all = [*table_data, sep, *footer_rows]
    tablefmt = "latex_booktabs" if output == "latex" else "simple"
    return cast(
        "str", tabulate(table_all, headers=headers, stralign="center", tablefmt=tablefmt),
    )
