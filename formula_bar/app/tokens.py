from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, Tuple

OPERATOR_CHARS = frozenset({"+", "-", "*", "/", "^", "(", ")"})


class TokenKind(str, Enum):
    TAG = "tag"
    TEXT = "text"


@dataclass(frozen=True)
class FormulaToken:
    id: str
    kind: TokenKind
    value: str
    position: int = 0

    @property
    def is_tag(self) -> bool:
        return self.kind is TokenKind.TAG

    @property
    def is_text(self) -> bool:
        return self.kind is TokenKind.TEXT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "value": self.value,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FormulaToken":
        return cls(
            id=str(payload["id"]),
            kind=TokenKind(payload["type"]),
            value=str(payload["value"]),
            position=int(payload.get("position", 0)),
        )


def new_token_id() -> str:
    return str(uuid.uuid4())


def tag_token(name: str) -> FormulaToken:
    return FormulaToken(id=new_token_id(), kind=TokenKind.TAG, value=name)


def text_token(text: str) -> FormulaToken:
    return FormulaToken(id=new_token_id(), kind=TokenKind.TEXT, value=text)


def reindex(tokens: Iterable[FormulaToken]) -> Tuple[FormulaToken, ...]:
    """Return ``tokens`` with ``position`` rewritten to match each index."""
    return tuple(
        token if token.position == index else replace(token, position=index)
        for index, token in enumerate(tokens)
    )


def is_operator(text: str) -> bool:
    return text in OPERATOR_CHARS
