from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..services.state_store import PersistentState
from .archive import FormulaArchive, SavedFormula
from .editor import EditorState, FormulaEditor
from .expression import evaluate_tokens
from .formula import FormulaEngine
from .linked_models import LinkedModel, LinkedModelSet
from .registry import VariableRegistry
from .suggestions import DEFAULT_CATALOG, DEFAULT_LIMIT, SuggestionEntry, SuggestionFeed, match

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 3600.0

EXAMPLE_FORMULAS: Dict[str, List[str]] = {
    "Base salary * (1 + 0.05)": ["Base salary", "*", "(", "1", "+", "0.05", ")"],
    "Base salary + Option grant * Current valuation": [
        "Base salary",
        "+",
        "Option grant",
        "*",
        "Current valuation",
    ],
    "Base salary + Annual equity comp": ["Base salary", "+", "Annual equity comp"],
}

# Example playback puts a space between two parts unless one side is one of these.
_NO_SPACE_BEFORE = {"+", "-", "*", "/", ")", "("}
_NO_SPACE_AFTER = {"+", "-", "*", "/", "("}


class FormulaSession:
    """One user's editor, variables, archive and linked models.

    Only ``archive``, ``registry`` and ``models`` are persistent; the editor
    state lives and dies with the session.
    """

    def __init__(
        self,
        registry: VariableRegistry | None = None,
        archive: FormulaArchive | None = None,
        models: LinkedModelSet | None = None,
        *,
        catalog: Sequence[SuggestionEntry] = DEFAULT_CATALOG,
        suggestion_limit: int = DEFAULT_LIMIT,
        suggestion_latency: float = 0.0,
    ):
        self.editor = FormulaEditor()
        self.registry = registry if registry is not None else VariableRegistry()
        self.archive = archive if archive is not None else FormulaArchive()
        self.models = models if models is not None else LinkedModelSet()
        self.catalog = tuple(catalog)
        self.suggestion_limit = suggestion_limit
        self.feed = SuggestionFeed(self.catalog, latency=suggestion_latency, limit=suggestion_limit)
        self.engine = FormulaEngine()

    @property
    def state(self) -> EditorState:
        return self.editor.state

    # -- editing -----------------------------------------------------------

    def insert_tag(self, name: str) -> EditorState:
        return self.editor.insert_tag(name)

    def insert_character(self, text: str) -> EditorState:
        return self.editor.insert_character(text)

    def delete_token(self, token_id: str) -> EditorState:
        return self.editor.delete_token(token_id)

    def delete_backward(self) -> EditorState:
        return self.editor.delete_backward()

    def move_backward(self) -> EditorState:
        return self.editor.move_backward()

    def move_forward(self) -> EditorState:
        return self.editor.move_forward()

    def move_to(self, position: int) -> EditorState:
        return self.editor.move_to(position)

    def select_tag(self, token_id: Optional[str]) -> EditorState:
        return self.editor.select_tag(token_id)

    def replace_token_at(self, position: int, name: str) -> EditorState:
        return self.editor.replace_token_at(position, name)

    def clear(self) -> EditorState:
        return self.editor.clear()

    def suggestions(self, query: str) -> List[SuggestionEntry]:
        return match(query, self.catalog, self.suggestion_limit)

    async def request_suggestions(self, query: str) -> Optional[List[SuggestionEntry]]:
        return await self.feed.request(query)

    # -- evaluation ----------------------------------------------------------

    def evaluate(self) -> str:
        result = evaluate_tokens(self.editor.tokens, self.registry.values(), self.engine)
        self.editor.set_result(result)
        return result

    def apply_example(self, parts: Sequence[str]) -> str:
        self.editor.clear()
        for index, part in enumerate(parts):
            if part in self.registry:
                self.editor.insert_tag(part)
            else:
                self.editor.insert_character(part)
            if index < len(parts) - 1:
                following = parts[index + 1]
                if following not in _NO_SPACE_BEFORE and part not in _NO_SPACE_AFTER:
                    self.editor.insert_character(" ")
        return self.evaluate()

    # -- archive -------------------------------------------------------------

    def save(self, name: str) -> Optional[SavedFormula]:
        result = self.editor.result
        if not result:
            result = self.evaluate()
        return self.archive.save(name, self.editor.tokens, result)

    def delete_saved(self, formula_id: str) -> bool:
        return self.archive.delete(formula_id)

    def load(self, formula_id: str) -> bool:
        formula = self.archive.load(formula_id)
        if formula is None:
            logger.info("No saved formula %s to load", formula_id)
            return False
        self.editor.install(formula.tokens, formula.result)
        return True

    # -- registry and models -------------------------------------------------

    def update_variable(self, variable_id: str, value: float) -> bool:
        return self.registry.update_value(variable_id, value)

    def add_model(self, name: str, model_type: str = "Financial", color: str | None = None) -> Optional[LinkedModel]:
        return self.models.add(name, model_type, color)

    def remove_model(self, model_id: str) -> bool:
        return self.models.remove(model_id)

    def set_active_model(self, model_id: str) -> bool:
        return self.models.set_active(model_id)

    def persistent_state(self) -> PersistentState:
        """The parts of the session that outlive it; live tokens are excluded."""
        return PersistentState(archive=self.archive, registry=self.registry, models=self.models)

    def snapshot(self) -> Dict[str, Any]:
        return self.editor.state.to_dict()


class SessionManager:
    """Independent :class:`FormulaSession` objects keyed by session id.

    Sessions untouched for ``idle_timeout`` seconds are dropped the next time
    the map is accessed; ``None`` keeps them until closed explicitly.
    """

    def __init__(
        self,
        idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, FormulaSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._sessions)

    def _prune(self, now: float) -> None:
        if self.idle_timeout is None:
            return
        expired = [sid for sid, seen in self._last_seen.items() if now - seen > self.idle_timeout]
        for sid in expired:
            self._sessions.pop(sid, None)
            self._last_seen.pop(sid, None)
        if expired:
            logger.info("Expired %d idle formula session(s)", len(expired))

    def create(self, session: FormulaSession) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._sessions[session_id] = session
            self._last_seen[session_id] = now
        logger.info("Opened formula session %s", session_id)
        return session_id

    def get(self, session_id: str) -> Optional[FormulaSession]:
        with self._lock:
            now = self._clock()
            self._prune(now)
            session = self._sessions.get(session_id)
            if session is not None:
                self._last_seen[session_id] = now
            return session

    def drop(self, session_id: str) -> bool:
        with self._lock:
            self._last_seen.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None
