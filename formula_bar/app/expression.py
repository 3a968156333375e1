from __future__ import annotations

import logging
from typing import Iterable, Mapping

from .errors import FormulaError, UnknownVariableError
from .formula import FUNCTIONS, FormulaEngine, format_number, format_result
from .tokens import FormulaToken

logger = logging.getLogger(__name__)

ERROR_RESULT = "Error"


def _substitute(value: float) -> str:
    text = format_number(value)
    return f"({text})" if value < 0 else text


def build_expression(tokens: Iterable[FormulaToken], values: Mapping[str, float]) -> str:
    """Linearize ``tokens`` into an arithmetic string.

    Tags are replaced by their bound value, or by the function name when the
    tag names a known function. Negative values are parenthesized so that
    ``^`` and unary signs apply to the whole value. Text runs are copied
    trimmed and in order; whitespace-only runs are dropped. Nothing is
    inserted between operands.
    """
    parts = []
    for token in tokens:
        if token.is_tag:
            if token.value in values:
                parts.append(_substitute(values[token.value]))
            elif token.value.upper() in FUNCTIONS:
                parts.append(token.value.upper())
            else:
                raise UnknownVariableError(token.value)
            continue
        text = token.value.strip()
        if text:
            parts.append(text)
    expression = "".join(parts)
    return expression if expression.strip() else "0"


def evaluate_tokens(
    tokens: Iterable[FormulaToken],
    values: Mapping[str, float],
    engine: FormulaEngine | None = None,
) -> str:
    """Build, evaluate and format; every failure becomes ``"Error"``."""
    engine = engine or FormulaEngine()
    expression = None
    try:
        expression = build_expression(tokens, values)
        return format_result(engine.evaluate(expression))
    except UnknownVariableError as exc:
        logger.warning("Formula references unknown variable %r", exc.name)
    except FormulaError as exc:
        logger.warning("Formula %r failed (%s): %s", expression, exc.kind, exc)
    return ERROR_RESULT
