from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple

from .tokens import FormulaToken, is_operator, reindex, tag_token, text_token


@dataclass(frozen=True)
class EditorState:
    """Token sequence, cursor and selection of one formula being edited.

    ``cursor_position`` is the insertion point before ``tokens[cursor_position]``;
    a value equal to ``len(tokens)`` means after the last token.
    """

    tokens: Tuple[FormulaToken, ...] = field(default_factory=tuple)
    cursor_position: int = 0
    selected_tag_id: Optional[str] = None
    result: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokens": [token.to_dict() for token in self.tokens],
            "cursorPosition": self.cursor_position,
            "selectedTagId": self.selected_tag_id,
            "result": self.result,
        }


def _clamp(position: int, length: int) -> int:
    return max(0, min(position, length))


def _insert(state: EditorState, token: FormulaToken) -> EditorState:
    cursor = _clamp(state.cursor_position, len(state.tokens))
    tokens = state.tokens[:cursor] + (token,) + state.tokens[cursor:]
    return replace(state, tokens=reindex(tokens), cursor_position=cursor + 1)


def insert_tag(state: EditorState, name: str) -> EditorState:
    return _insert(state, tag_token(name))


def insert_character(state: EditorState, text: str) -> EditorState:
    """Insert typed text at the cursor.

    Operators always get a token of their own. Anything else is appended to
    the text run directly before the cursor when there is one, so typing
    ``123`` produces a single token and leaves the cursor after it.
    """
    if text == "":
        return state
    if is_operator(text):
        return _insert(state, text_token(text))

    cursor = _clamp(state.cursor_position, len(state.tokens))
    previous = state.tokens[cursor - 1] if cursor > 0 else None
    if previous is None or not previous.is_text:
        return _insert(state, text_token(text))

    tokens = list(state.tokens)
    tokens[cursor - 1] = replace(previous, value=previous.value + text)
    return replace(state, tokens=tuple(tokens), cursor_position=cursor)


def delete_token(state: EditorState, token_id: str) -> EditorState:
    index = next((i for i, token in enumerate(state.tokens) if token.id == token_id), None)
    if index is None:
        return state
    tokens = reindex(state.tokens[:index] + state.tokens[index + 1 :])
    return replace(
        state,
        tokens=tokens,
        cursor_position=min(index, len(tokens)),
        selected_tag_id=None,
    )


def delete_backward(state: EditorState) -> EditorState:
    cursor = _clamp(state.cursor_position, len(state.tokens))
    if cursor == 0:
        return state

    target = state.tokens[cursor - 1]
    if target.is_tag or len(target.value) <= 1:
        tokens = reindex(state.tokens[: cursor - 1] + state.tokens[cursor:])
        return replace(state, tokens=tokens, cursor_position=cursor - 1, selected_tag_id=None)

    tokens = list(state.tokens)
    tokens[cursor - 1] = replace(target, value=target.value[:-1])
    return replace(state, tokens=tuple(tokens), cursor_position=cursor, selected_tag_id=None)


def move_to(state: EditorState, position: int) -> EditorState:
    return replace(
        state,
        cursor_position=_clamp(position, len(state.tokens)),
        selected_tag_id=None,
    )


def move_backward(state: EditorState) -> EditorState:
    return move_to(state, state.cursor_position - 1)


def move_forward(state: EditorState) -> EditorState:
    return move_to(state, state.cursor_position + 1)


def select_tag(state: EditorState, token_id: Optional[str]) -> EditorState:
    return replace(state, selected_tag_id=token_id)


def replace_token_at(state: EditorState, position: int, name: str) -> EditorState:
    """Swap the token at ``position`` for a new tag, appending when out of range."""
    if position < 0 or position >= len(state.tokens):
        return _insert(move_to(state, len(state.tokens)), tag_token(name))
    tokens = list(state.tokens)
    tokens[position] = tag_token(name)
    return replace(state, tokens=reindex(tokens), cursor_position=position + 1)


def clear(state: EditorState) -> EditorState:
    return EditorState()


def set_result(state: EditorState, result: Optional[str]) -> EditorState:
    return replace(state, result=result)


def install(tokens: Iterable[FormulaToken], result: Optional[str]) -> EditorState:
    """Build a fresh state from a snapshot with the cursor after the last token."""
    installed = reindex(tokens)
    return EditorState(tokens=installed, cursor_position=len(installed), result=result)


class FormulaEditor:
    """Owns an :class:`EditorState` and applies edit operations to it.

    The state is only replaced through the methods below, so positions and the
    cursor range stay consistent between operations.
    """

    def __init__(self, state: EditorState | None = None):
        self._state = state or EditorState()

    @property
    def state(self) -> EditorState:
        return self._state

    @property
    def tokens(self) -> Tuple[FormulaToken, ...]:
        return self._state.tokens

    @property
    def cursor_position(self) -> int:
        return self._state.cursor_position

    @property
    def selected_tag_id(self) -> Optional[str]:
        return self._state.selected_tag_id

    @property
    def result(self) -> Optional[str]:
        return self._state.result

    def insert_tag(self, name: str) -> EditorState:
        self._state = insert_tag(self._state, name)
        return self._state

    def insert_character(self, text: str) -> EditorState:
        self._state = insert_character(self._state, text)
        return self._state

    def delete_token(self, token_id: str) -> EditorState:
        self._state = delete_token(self._state, token_id)
        return self._state

    def delete_backward(self) -> EditorState:
        self._state = delete_backward(self._state)
        return self._state

    def move_backward(self) -> EditorState:
        self._state = move_backward(self._state)
        return self._state

    def move_forward(self) -> EditorState:
        self._state = move_forward(self._state)
        return self._state

    def move_to(self, position: int) -> EditorState:
        self._state = move_to(self._state, position)
        return self._state

    def select_tag(self, token_id: Optional[str]) -> EditorState:
        self._state = select_tag(self._state, token_id)
        return self._state

    def replace_token_at(self, position: int, name: str) -> EditorState:
        self._state = replace_token_at(self._state, position, name)
        return self._state

    def clear(self) -> EditorState:
        self._state = clear(self._state)
        return self._state

    def set_result(self, result: Optional[str]) -> EditorState:
        self._state = set_result(self._state, result)
        return self._state

    def install(self, tokens: Iterable[FormulaToken], result: Optional[str]) -> EditorState:
        self._state = install(tokens, result)
        return self._state
