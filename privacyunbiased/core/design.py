"""Model specification, noise specification and numeric design.

The objects here are plain values: :class:`ModelSpec` names the outcome and
regressors (with at most one transformed term), :class:`NoiseSpec` carries the
known per-column noise standard deviations, and :class:`Design` is the numeric
realization of a ModelSpec on a data table. Every regressor of a Design is a
monomial in the raw noisy columns, described by an integer exponent matrix;
the moment corrections in :mod:`privacyunbiased.core.moments` work directly on
those exponents.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from privacyunbiased.core.exceptions import (
    ModelSpecError,
    MultipleTransformationsError,
    NoiseSpecError,
    UnsupportedTransformationError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from numpy.typing import NDArray

__all__ = [
    "INTERCEPT_NAME",
    "TRANSFORMATION_KINDS",
    "Design",
    "ModelSpec",
    "NoiseSpec",
    "TransformedTerm",
    "build_design",
]

LOGGER = logging.getLogger(__name__)

INTERCEPT_NAME = "(Intercept)"
# kind -> number of distinct columns the term is built from
TRANSFORMATION_KINDS: dict[str, int] = {"interaction": 2, "square": 1}


# ---------------------------------------------------------------------
# Model specification
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class TransformedTerm:
    """Single nonlinear regressor built from raw columns.

    Only a pairwise ``"interaction"`` (``a:b``) and a ``"square"`` (``a^2``)
    are supported; any other kind or arity fails at construction.
    """

    kind: str
    columns: tuple[str, ...]

    def __post_init__(self) -> None:
        kind = str(self.kind).strip().lower()
        if kind not in TRANSFORMATION_KINDS:
            msg = (
                f"unsupported transformation {self.kind!r}; "
                f"only {sorted(TRANSFORMATION_KINDS)} are allowed"
            )
            raise UnsupportedTransformationError(msg)
        cols = (self.columns,) if isinstance(self.columns, str) else tuple(self.columns)
        arity = TRANSFORMATION_KINDS[kind]
        if len(cols) != arity:
            msg = f"a {kind} term takes exactly {arity} column(s); got {list(cols)}"
            raise UnsupportedTransformationError(msg)
        if kind == "interaction" and cols[0] == cols[1]:
            msg = (
                f"interaction of {cols[0]!r} with itself is a square; "
                "declare it as kind='square'"
            )
            raise UnsupportedTransformationError(msg)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "columns", tuple(str(c) for c in cols))

    @classmethod
    def interaction(cls, a: str, b: str) -> TransformedTerm:
        return cls("interaction", (a, b))

    @classmethod
    def square(cls, a: str) -> TransformedTerm:
        return cls("square", (a,))

    @property
    def name(self) -> str:
        if self.kind == "square":
            return f"I({self.columns[0]}^2)"
        return ":".join(self.columns)

    @property
    def exponents(self) -> dict[str, int]:
        """Column -> power of the monomial this term represents."""
        if self.kind == "square":
            return {self.columns[0]: 2}
        return {c: 1 for c in self.columns}


@dataclass(frozen=True)
class ModelSpec:
    """Typed description of a linear model.

    Parameters
    ----------
    outcome : str
        Outcome column.
    regressors : sequence of str
        Additive regressor columns, in output order.
    transformed : TransformedTerm or sequence of TransformedTerm, optional
        At most one transformed term. Passing more than one raises
        :class:`MultipleTransformationsError`.
    include_intercept : bool, default True
        Add an intercept named ``"(Intercept)"`` as the first coefficient.
    """

    outcome: str
    regressors: tuple[str, ...] = ()
    transformed: tuple[TransformedTerm, ...] = ()
    include_intercept: bool = True

    def __post_init__(self) -> None:
        regs = (
            (self.regressors,)
            if isinstance(self.regressors, str)
            else tuple(str(r) for r in self.regressors)
        )
        trans = self.transformed
        if trans is None:
            trans = ()
        elif isinstance(trans, TransformedTerm):
            trans = (trans,)
        trans = tuple(trans)
        for t in trans:
            if not isinstance(t, TransformedTerm):
                msg = f"transformed terms must be TransformedTerm instances; got {type(t).__name__}"
                raise UnsupportedTransformationError(msg)
        if len(trans) > 1:
            names = [t.name for t in trans]
            msg = f"multiple transformed terms {names}; at most one is supported per model"
            raise MultipleTransformationsError(msg)
        if len(set(regs)) != len(regs):
            msg = f"duplicate regressors in {list(regs)}"
            raise ModelSpecError(msg)
        outcome = str(self.outcome)
        used = set(regs)
        for t in trans:
            used.update(t.columns)
        if outcome in used:
            msg = f"outcome {outcome!r} cannot also appear on the right-hand side"
            raise ModelSpecError(msg)
        if not regs and not trans and not self.include_intercept:
            msg = "model has no regressors"
            raise ModelSpecError(msg)
        object.__setattr__(self, "outcome", outcome)
        object.__setattr__(self, "regressors", regs)
        object.__setattr__(self, "transformed", trans)
        object.__setattr__(self, "include_intercept", bool(self.include_intercept))

    @property
    def transformation(self) -> TransformedTerm | None:
        return self.transformed[0] if self.transformed else None

    @property
    def has_transformation(self) -> bool:
        return bool(self.transformed)

    @property
    def covariates(self) -> tuple[str, ...]:
        """Raw right-hand-side columns in first-appearance order."""
        cols = list(self.regressors)
        for t in self.transformed:
            cols.extend(c for c in t.columns if c not in cols)
        return tuple(cols)

    @property
    def term_names(self) -> list[str]:
        names = [INTERCEPT_NAME] if self.include_intercept else []
        names.extend(self.regressors)
        names.extend(t.name for t in self.transformed)
        return names

    def __str__(self) -> str:
        rhs = list(self.regressors) + [t.name for t in self.transformed]
        if not self.include_intercept:
            rhs.append("0")
        return f"{self.outcome} ~ {' + '.join(rhs) if rhs else '1'}"


# ---------------------------------------------------------------------
# Noise specification
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NoiseSpec:
    """Known noise standard deviation per column.

    Use :meth:`from_row` when the noise scales travel as the first row of a
    released table, or :meth:`uniform` to apply a single value to every
    covariate.
    """

    sd: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        clean: dict[str, float] = {}
        for col, value in dict(self.sd).items():
            try:
                v = float(value)
            except (TypeError, ValueError) as exc:
                msg = f"noise standard deviation for column {col!r} is not numeric: {value!r}"
                raise NoiseSpecError(msg) from exc
            if not math.isfinite(v) or v < 0.0:
                msg = f"noise standard deviation for column {col!r} must be finite and non-negative; got {v}"
                raise NoiseSpecError(msg)
            clean[str(col)] = v
        object.__setattr__(self, "sd", clean)

    @classmethod
    def uniform(
        cls, value: float, columns: Iterable[str], *, outcome: str | None = None,
    ) -> NoiseSpec:
        """Apply ``value`` to every column except ``outcome`` (which gets 0)."""
        sd = {str(c): value for c in columns}
        if outcome is not None:
            sd[str(outcome)] = 0.0
        return cls(sd)

    @classmethod
    def from_row(cls, row: pd.Series | Mapping[str, Any]) -> NoiseSpec:
        """Read standard deviations from a single row.

        Entries that are missing or not numeric are skipped; asking later for
        the variance of such a column raises :class:`NoiseSpecError`.
        """
        s = pd.Series(row, dtype=object) if not isinstance(row, pd.Series) else row
        values = pd.to_numeric(s, errors="coerce")
        return cls({str(k): float(v) for k, v in values.items() if pd.notna(v)})

    def __getitem__(self, column: str) -> float:
        try:
            return self.sd[column]
        except KeyError:
            msg = f"missing noise specification for column {column}"
            raise NoiseSpecError(msg) from None

    def __contains__(self, column: object) -> bool:
        return column in self.sd

    def variances(self, columns: Sequence[str]) -> NDArray[np.float64]:
        """Noise variances for ``columns``; every column must be covered."""
        return np.array([self[c] ** 2 for c in columns], dtype=np.float64)

    def to_dict(self) -> dict[str, float]:
        return dict(self.sd)


# ---------------------------------------------------------------------
# Numeric design
# ---------------------------------------------------------------------
@dataclass(frozen=True, eq=False)
class Design:
    """Numeric realization of a ModelSpec.

    ``raw`` holds the noisy covariate columns (n x m), ``y`` the outcome and
    ``powers`` the (p x m) exponents so that regressor ``j`` equals
    ``prod_k raw[:, k] ** powers[j, k]``. The intercept is the all-zero row.
    """

    raw: NDArray[np.float64]
    y: NDArray[np.float64]
    columns: tuple[str, ...]
    names: tuple[str, ...]
    powers: NDArray[np.int64]
    outcome: str
    n_dropped: int = 0

    @property
    def n_obs(self) -> int:
        return int(self.raw.shape[0])

    @property
    def n_params(self) -> int:
        return int(self.powers.shape[0])

    @property
    def has_transformation(self) -> bool:
        return bool(np.any(self.powers.sum(axis=1) > 1))

    def regressors(self) -> NDArray[np.float64]:
        """Design matrix R (n x p) evaluated on the noisy columns."""
        R = np.ones((self.n_obs, self.n_params), dtype=np.float64)
        for j, row in enumerate(self.powers):
            for k in np.flatnonzero(row):
                R[:, j] *= self.raw[:, k] ** int(row[k])
        return R

    def take(self, idx: NDArray[np.int64]) -> Design:
        """Row subset (with repetition), as used by the row bootstrap."""
        return Design(
            raw=self.raw[idx],
            y=self.y[idx],
            columns=self.columns,
            names=self.names,
            powers=self.powers,
            outcome=self.outcome,
        )


def _powers_for(spec: ModelSpec, columns: tuple[str, ...]) -> NDArray[np.int64]:
    pos = {c: k for k, c in enumerate(columns)}
    rows: list[np.ndarray] = []
    if spec.include_intercept:
        rows.append(np.zeros(len(columns), dtype=np.int64))
    for r in spec.regressors:
        e = np.zeros(len(columns), dtype=np.int64)
        e[pos[r]] = 1
        rows.append(e)
    for t in spec.transformed:
        e = np.zeros(len(columns), dtype=np.int64)
        for c, d in t.exponents.items():
            e[pos[c]] += d
        rows.append(e)
    return np.vstack(rows)


def build_design(spec: ModelSpec, data: pd.DataFrame) -> Design:
    """Build the numeric design of ``spec`` on ``data``.

    Rows with a non-finite value in any used column are dropped (the count is
    kept in ``Design.n_dropped``). Raises ``ModelSpecError`` if a used column
    is absent or not numeric, or if fewer rows than coefficients remain.
    """
    if not isinstance(data, pd.DataFrame):
        msg = f"data must be a pandas DataFrame; got {type(data).__name__}"
        raise TypeError(msg)
    columns = spec.covariates
    used = [spec.outcome, *columns]
    missing = [c for c in used if c not in data.columns]
    if missing:
        msg = f"columns {missing} not found in the provided DataFrame"
        raise ModelSpecError(msg)
    for c in used:
        if not (
            pd.api.types.is_numeric_dtype(data[c]) or pd.api.types.is_bool_dtype(data[c])
        ):
            msg = f"column {c!r} must be numeric; got dtype {data[c].dtype}"
            raise ModelSpecError(msg)

    block = data.loc[:, used].to_numpy(dtype=np.float64)
    keep = np.all(np.isfinite(block), axis=1)
    n_dropped = int(block.shape[0] - keep.sum())
    if n_dropped:
        LOGGER.debug("dropping %d row(s) with non-finite values in %s", n_dropped, used)
        block = block[keep]

    powers = _powers_for(spec, columns)
    if block.shape[0] <= powers.shape[0]:
        msg = (
            f"not enough observations ({block.shape[0]}) for "
            f"{powers.shape[0]} coefficients"
        )
        raise ModelSpecError(msg)
    return Design(
        raw=np.ascontiguousarray(block[:, 1:]),
        y=np.ascontiguousarray(block[:, 0]),
        columns=columns,
        names=tuple(spec.term_names),
        powers=powers,
        outcome=spec.outcome,
        n_dropped=n_dropped,
    )
