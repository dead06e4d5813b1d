"""Formula parser for privacyunbiased.

Patsy-based translation of an R-style model string into a typed
:class:`~privacyunbiased.core.design.ModelSpec`. Only the terms the
noise correction supports are accepted: plain columns, one pairwise
interaction (``a:b``, also produced by ``a*b``) or one square
(``I(a**2)`` / ``I(a^2)``).
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import patsy

from privacyunbiased.core.design import ModelSpec, TransformedTerm
from privacyunbiased.core.exceptions import ModelSpecError, UnsupportedTransformationError

if TYPE_CHECKING:  # pragma: no cover - typing only
    import pandas as pd

__all__ = ["FormulaParser", "parse_formula"]

_NAME_PAT = re.compile(r"^[A-Za-z_.][A-Za-z0-9_.]*$")
_Q_PAT = re.compile(r"""^Q\(\s*(?P<quote>['"])(?P<name>.*)(?P=quote)\s*\)$""")
_SQUARE_PAT = re.compile(r"^I\(\s*(?P<var>.+?)\s*(?:\*\*|\^)\s*2\s*\)$")


def _column_name(code: str) -> str | None:
    """Column referenced by a factor's code, or None if it is an expression."""
    s = code.strip()
    m = _Q_PAT.match(s)
    if m:
        return m.group("name")
    if _NAME_PAT.match(s):
        return s
    return None


def _factor_code(factor: object) -> str:
    code = getattr(factor, "code", None)
    if code is None:
        msg = f"unsupported formula factor {factor!r}"
        raise UnsupportedTransformationError(msg)
    return str(code)


def _translate_term(term: patsy.Term) -> str | TransformedTerm:
    codes = [_factor_code(f) for f in term.factors]
    if len(codes) == 1:
        name = _column_name(codes[0])
        if name is not None:
            return name
        m = _SQUARE_PAT.match(codes[0].strip())
        if m:
            inner = _column_name(m.group("var"))
            if inner is not None:
                return TransformedTerm.square(inner)
        msg = (
            f"unsupported transformation {codes[0]!r}; only plain columns, "
            "pairwise interactions a:b and squares I(a^2) are allowed"
        )
        raise UnsupportedTransformationError(msg)
    if len(codes) == 2:
        names = [_column_name(c) for c in codes]
        if all(n is not None for n in names):
            return TransformedTerm.interaction(names[0], names[1])
    msg = (
        f"unsupported transformation {':'.join(codes)!r}; interactions must "
        "involve exactly two plain columns"
    )
    raise UnsupportedTransformationError(msg)


def parse_formula(formula: str) -> ModelSpec:
    """Parse ``"y ~ x1 + x2 + x1:x2"`` into a ModelSpec.

    ``- 1`` or ``0 +`` drops the intercept. More than one interaction or
    square raises :class:`MultipleTransformationsError` (from ModelSpec);
    any other transformation raises :class:`UnsupportedTransformationError`.
    """
    if not isinstance(formula, str) or "~" not in formula:
        msg = "formula must be a string of the form 'y ~ x1 + x2'"
        raise ModelSpecError(msg)
    try:
        desc = patsy.ModelDesc.from_formula(formula)
    except patsy.PatsyError as exc:
        msg = f"could not parse formula {formula!r}: {exc}"
        raise ModelSpecError(msg) from exc

    lhs = [t for t in desc.lhs_termlist if t.factors]
    if len(lhs) != 1 or len(lhs[0].factors) != 1:
        msg = "formula must have exactly one outcome column on the left-hand side"
        raise ModelSpecError(msg)
    outcome = _column_name(_factor_code(lhs[0].factors[0]))
    if outcome is None:
        msg = f"outcome must be a plain column; got {_factor_code(lhs[0].factors[0])!r}"
        raise ModelSpecError(msg)

    include_intercept = False
    regressors: list[str] = []
    transformed: list[TransformedTerm] = []
    for term in desc.rhs_termlist:
        if not term.factors:
            include_intercept = True
            continue
        item = _translate_term(term)
        if isinstance(item, TransformedTerm):
            if item not in transformed:
                transformed.append(item)
        elif item not in regressors:
            regressors.append(item)
    return ModelSpec(
        outcome=outcome,
        regressors=tuple(regressors),
        transformed=tuple(transformed),
        include_intercept=include_intercept,
    )


class FormulaParser:
    """Formula parser bound to a data table.

    Parses with :func:`parse_formula` and checks that every referenced column
    exists in ``data`` so that typos fail before any estimation work.
    """

    def __init__(self, data: pd.DataFrame) -> None:
        self.data = data

    def parse(self, formula: str) -> ModelSpec:
        spec = parse_formula(formula)
        used = [spec.outcome, *spec.covariates]
        missing = [c for c in used if c not in self.data.columns]
        if missing:
            msg = f"columns {missing} not found in the provided DataFrame"
            raise ModelSpecError(msg)
        return spec
