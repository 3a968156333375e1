from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


@dataclass(frozen=True)
class TagStyle:
    color: str
    background: str
    icon: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"color": self.color, "background": self.background, "icon": self.icon}


@dataclass(frozen=True)
class SuggestionEntry:
    id: str
    kind: str
    value: str
    display: str
    style: TagStyle

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "value": self.value,
            "display": self.display,
            "style": self.style.to_dict(),
        }


KIND_STYLES: Dict[str, TagStyle] = {
    "variable": TagStyle("#757575", "#f5f5f5"),
    "function": TagStyle("#673ab7", "#ede7f6", "ƒ"),
    "operator": TagStyle("#757575", "#f5f5f5"),
}

TAG_STYLES: Dict[str, TagStyle] = {
    "Base salary": TagStyle("#2196f3", "#e3f2fd", "$"),
    "Current valuation": TagStyle("#1976d2", "#e3f2fd", "$"),
    "Exit valuation": TagStyle("#0d47a1", "#e3f2fd", "$"),
    "Annual equity comp": TagStyle("#4caf50", "#e8f5e9", "$"),
    "Option grant": TagStyle("#00796b", "#e0f2f1", "%"),
    "Vesting period": TagStyle("#0097a7", "#e0f7fa", "#"),
    "Future dilution": TagStyle("#00838f", "#e0f7fa", "%"),
    "SUM": TagStyle("#673ab7", "#ede7f6", "ƒ"),
    "AVERAGE": TagStyle("#5e35b1", "#ede7f6", "ƒ"),
    "MIN": TagStyle("#512da8", "#ede7f6", "ƒ"),
    "MAX": TagStyle("#512da8", "#ede7f6", "ƒ"),
}

_CATALOG_ROWS: Tuple[Tuple[str, str, str, str], ...] = (
    ("v1", "variable", "Base salary", "Base salary"),
    ("v2", "variable", "Option grant", "Option grant"),
    ("v3", "variable", "Vesting period", "Vesting period (years)"),
    ("v4", "variable", "Current valuation", "Current valuation"),
    ("v5", "variable", "Exit valuation", "Exit valuation"),
    ("v6", "variable", "Future dilution", "Future dilution"),
    ("v7", "variable", "Annual equity comp", "Annual equity comp"),
    ("f1", "function", "SUM", "SUM()"),
    ("f2", "function", "AVERAGE", "AVERAGE()"),
    ("f3", "function", "MIN", "MIN()"),
    ("f4", "function", "MAX", "MAX()"),
    ("f5", "function", "COUNT", "COUNT()"),
    ("f6", "function", "FORECAST", "FORECAST()"),
    ("o1", "operator", "+", "+"),
    ("o2", "operator", "-", "-"),
    ("o3", "operator", "*", "*"),
    ("o4", "operator", "/", "/"),
    ("o5", "operator", "^", "^"),
    ("o6", "operator", "(", "("),
    ("o7", "operator", ")", ")"),
)


def resolve_style(kind: str, value: str) -> TagStyle:
    return TAG_STYLES.get(value) or KIND_STYLES.get(kind) or KIND_STYLES["variable"]


def build_catalog(rows: Sequence[Tuple[str, str, str, str]] = _CATALOG_ROWS) -> Tuple[SuggestionEntry, ...]:
    return tuple(
        SuggestionEntry(id=id_, kind=kind, value=value, display=display, style=resolve_style(kind, value))
        for id_, kind, value, display in rows
    )


DEFAULT_CATALOG: Tuple[SuggestionEntry, ...] = build_catalog()


def style_for(name: str, catalog: Sequence[SuggestionEntry] = DEFAULT_CATALOG) -> TagStyle:
    """Presentation descriptor for a tag, looked up by the name it references."""
    entry = next((e for e in catalog if e.value == name), None)
    if entry is not None:
        return entry.style
    return TAG_STYLES.get(name, KIND_STYLES["variable"])


def match(
    query: str,
    catalog: Sequence[SuggestionEntry] = DEFAULT_CATALOG,
    limit: int = DEFAULT_LIMIT,
) -> List[SuggestionEntry]:
    """Catalog entries whose display or value contains ``query``, in catalog order."""
    if not query:
        return list(catalog[:limit])
    needle = query.lower()
    hits = [e for e in catalog if needle in e.display.lower() or needle in e.value.lower()]
    return hits[:limit]


class SuggestionFeed:
    """Autocomplete lookups modelled as a remote round trip.

    Each :meth:`request` supersedes the previous one: the in-flight lookup is
    cancelled and any response that still arrives for an older query is
    discarded, so :attr:`suggestions` always belongs to :attr:`query`.
    """

    def __init__(
        self,
        catalog: Sequence[SuggestionEntry] = DEFAULT_CATALOG,
        *,
        latency: float = 0.3,
        limit: int = DEFAULT_LIMIT,
    ):
        self.catalog = tuple(catalog)
        self.latency = latency
        self.limit = limit
        self.query = ""
        self.suggestions: List[SuggestionEntry] = []
        self._generation = 0
        self._pending: Optional[asyncio.Task] = None

    async def fetch(self, query: str) -> List[SuggestionEntry]:
        if self.latency:
            await asyncio.sleep(self.latency)
        return match(query, self.catalog, self.limit)

    def accept(self, generation: int, results: List[SuggestionEntry]) -> bool:
        if generation != self._generation:
            logger.debug("Discarding stale suggestions for generation %s", generation)
            return False
        self.suggestions = results
        return True

    async def request(self, query: str) -> Optional[List[SuggestionEntry]]:
        """Look up ``query``; returns ``None`` when a newer query overtook it."""
        self._generation += 1
        generation = self._generation
        self.query = query
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        task = asyncio.ensure_future(self.fetch(query))
        self._pending = task
        try:
            results = await task
        except asyncio.CancelledError:
            if task.cancelled() and generation != self._generation:
                return None
            raise
        if not self.accept(generation, results):
            return None
        return results
