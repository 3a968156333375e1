"""Formula engine exception hierarchy.

Edit operations never raise; these errors come out of building and evaluating
an expression and are collapsed to ``"Error"`` at the evaluate boundary.
"""

from __future__ import annotations


class FormulaError(Exception):
    """Base exception for all formula engine errors."""

    kind = "formula"


class UnknownVariableError(FormulaError):
    """Raised when a tag references a name absent from the registry."""

    kind = "unknown variable"

    def __init__(self, name: str):
        super().__init__(f"Unknown variable: {name}")
        self.name = name


class FormulaSyntaxError(FormulaError):
    """Raised for malformed expression text."""

    kind = "syntax"

    def __init__(self, message: str, offset: int | None = None):
        super().__init__(message)
        self.offset = offset


class EvaluationError(FormulaError):
    """Raised when a well-formed expression cannot produce a number."""

    kind = "evaluation"


class DivisionByZeroError(EvaluationError):
    kind = "division by zero"


class MathDomainError(EvaluationError):
    kind = "math domain"


class EmptyNameError(FormulaError, ValueError):
    """Raised by form validation when a formula or model name is blank."""

    kind = "empty name"
