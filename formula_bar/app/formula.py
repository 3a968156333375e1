from __future__ import annotations

import math
import operator
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Sequence

from .errors import DivisionByZeroError, FormulaSyntaxError, MathDomainError


def _average(values: Sequence[float]) -> float:
    return math.fsum(values) / len(values)


FUNCTIONS: Dict[str, Callable[[Sequence[float]], float]] = {
    "SUM": math.fsum,
    "AVERAGE": _average,
    "MIN": min,
    "MAX": max,
    "COUNT": lambda values: float(len(values)),
}

# Parentheses, function calls and exponents each count as one level.
MAX_NESTING = 100

_TOKEN_RE = re.compile(
    r"""
    (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    |(?P<name>[A-Za-z_][A-Za-z_0-9]*)
    |(?P<op>[-+*/^(),])
    |(?P<space>\s+)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class _Lexeme:
    kind: str
    text: str
    offset: int


def tokenize(expression: str) -> List[_Lexeme]:
    lexemes: List[_Lexeme] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise FormulaSyntaxError(
                f"Unexpected character {expression[pos]!r} at {pos}", offset=pos
            )
        kind = match.lastgroup or ""
        if kind != "space":
            lexemes.append(_Lexeme(kind, match.group(), pos))
        pos = match.end()
    return lexemes


class FormulaEngine:
    """Arithmetic evaluator for linearized formulas.

    Grammar, loosest binding first::

        expr    := term (("+" | "-") term)*
        term    := unary (("*" | "/") unary)*
        unary   := ("+" | "-")* power
        power   := primary ("^" unary)?
        primary := NUMBER | NAME "(" expr ("," expr)* ")" | "(" expr ")"

    ``^`` is right-associative and binds tighter than unary minus, so
    ``-2^2`` is ``-4`` and ``2^-1`` is ``0.5``. Nesting deeper than
    ``max_nesting`` is rejected as a syntax error.
    """

    _ops: Dict[str, Callable[[float, float], float]] = {
        "+": operator.add,
        "-": operator.sub,
        "*": operator.mul,
        "/": operator.truediv,
        "^": operator.pow,
    }

    def __init__(
        self,
        functions: Dict[str, Callable[[Sequence[float]], float]] | None = None,
        max_nesting: int = MAX_NESTING,
    ):
        self.functions = dict(FUNCTIONS if functions is None else functions)
        self.max_nesting = max_nesting
        self._lexemes: List[_Lexeme] = []
        self._index = 0
        self._depth = 0

    def evaluate(self, expression: str) -> float:
        self._lexemes = tokenize(expression)
        self._index = 0
        self._depth = 0
        if not self._lexemes:
            raise FormulaSyntaxError("Empty expression", offset=0)
        value = self._expr()
        if self._index < len(self._lexemes):
            extra = self._lexemes[self._index]
            raise FormulaSyntaxError(
                f"Unexpected {extra.text!r} at {extra.offset}", offset=extra.offset
            )
        if not math.isfinite(value):
            raise MathDomainError(f"Result is not finite: {value}")
        return value

    # -- parsing -----------------------------------------------------------

    def _peek(self) -> _Lexeme | None:
        if self._index < len(self._lexemes):
            return self._lexemes[self._index]
        return None

    def _take(self) -> _Lexeme:
        lexeme = self._peek()
        if lexeme is None:
            raise FormulaSyntaxError("Unexpected end of expression")
        self._index += 1
        return lexeme

    def _accept(self, *ops: str) -> str | None:
        lexeme = self._peek()
        if lexeme is not None and lexeme.kind == "op" and lexeme.text in ops:
            self._index += 1
            return lexeme.text
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            lexeme = self._peek()
            where = f"{lexeme.text!r} at {lexeme.offset}" if lexeme else "end of expression"
            raise FormulaSyntaxError(f"Expected {op!r}, found {where}")

    def _expr(self) -> float:
        value = self._term()
        while (op := self._accept("+", "-")) is not None:
            value = self._apply(op, value, self._term())
        return value

    def _term(self) -> float:
        value = self._unary()
        while (op := self._accept("*", "/")) is not None:
            value = self._apply(op, value, self._unary())
        return value

    @contextmanager
    def _nested(self, lexeme: _Lexeme) -> Iterator[None]:
        self._depth += 1
        if self._depth > self.max_nesting:
            raise FormulaSyntaxError(
                f"Nesting deeper than {self.max_nesting} levels at {lexeme.offset}",
                offset=lexeme.offset,
            )
        try:
            yield
        finally:
            self._depth -= 1

    def _unary(self) -> float:
        negative = False
        while (op := self._accept("+", "-")) is not None:
            if op == "-":
                negative = not negative
        value = self._power()
        return -value if negative else value

    def _power(self) -> float:
        base = self._primary()
        caret = self._peek()
        if self._accept("^") is not None:
            with self._nested(caret):
                return self._apply("^", base, self._unary())
        return base

    def _primary(self) -> float:
        lexeme = self._take()
        if lexeme.kind == "number":
            return float(lexeme.text)
        if lexeme.kind == "name":
            return self._call(lexeme)
        if lexeme.kind == "op" and lexeme.text == "(":
            with self._nested(lexeme):
                value = self._expr()
            self._expect(")")
            return value
        raise FormulaSyntaxError(
            f"Unexpected {lexeme.text!r} at {lexeme.offset}", offset=lexeme.offset
        )

    def _call(self, lexeme: _Lexeme) -> float:
        func = self.functions.get(lexeme.text.upper())
        if func is None:
            raise FormulaSyntaxError(
                f"Unknown function {lexeme.text!r} at {lexeme.offset}", offset=lexeme.offset
            )
        self._expect("(")
        with self._nested(lexeme):
            args = [self._expr()]
            while self._accept(",") is not None:
                args.append(self._expr())
        self._expect(")")
        return float(func(args))

    # -- arithmetic --------------------------------------------------------

    def _apply(self, op: str, lhs: float, rhs: float) -> float:
        if op == "/" and rhs == 0:
            raise DivisionByZeroError(f"Division by zero: {lhs} / {rhs}")
        try:
            value = self._ops[op](lhs, rhs)
        except ZeroDivisionError as exc:
            raise DivisionByZeroError(f"Division by zero: {lhs} {op} {rhs}") from exc
        except OverflowError as exc:
            raise MathDomainError(f"Overflow: {lhs} {op} {rhs}") from exc
        if isinstance(value, complex):
            raise MathDomainError(f"Complex result: {lhs} {op} {rhs}")
        return float(value)


def format_number(value: float) -> str:
    if float(value).is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(float(value))


def format_result(value: object) -> str:
    """Display text for an evaluation result.

    Numbers of 1000 and up read as dollars (``$183,750.00``); smaller numbers
    are plain decimals. Anything else is stringified.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)
    if value >= 1000:
        return f"${value:,.2f}"
    return format_number(value)
