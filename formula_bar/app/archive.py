from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .tokens import FormulaToken, reindex

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SavedFormula:
    id: str
    name: str
    tokens: Tuple[FormulaToken, ...]
    result: Optional[str]
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tokens": [token.to_dict() for token in self.tokens],
            "result": self.result,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SavedFormula":
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            tokens=tuple(FormulaToken.from_dict(t) for t in payload.get("tokens") or []),
            result=payload.get("result"),
            timestamp=int(payload.get("timestamp") or 0),
        )


class FormulaArchive:
    """Named snapshots of formulas, in save order."""

    def __init__(self, formulas: Iterable[SavedFormula] | None = None):
        self._formulas: List[SavedFormula] = list(formulas or [])

    def __iter__(self):
        return iter(self._formulas)

    def __len__(self) -> int:
        return len(self._formulas)

    def list(self) -> List[SavedFormula]:
        return list(self._formulas)

    def get(self, formula_id: str) -> Optional[SavedFormula]:
        return next((f for f in self._formulas if f.id == formula_id), None)

    def save(
        self,
        name: str,
        tokens: Iterable[FormulaToken],
        result: Optional[str],
    ) -> Optional[SavedFormula]:
        name = (name or "").strip()
        if not name:
            logger.info("Rejected saving a formula without a name")
            return None
        # Tokens are frozen, so a fresh tuple is already a deep copy.
        snapshot = SavedFormula(
            id=str(uuid.uuid4()),
            name=name,
            tokens=reindex(tokens),
            result=result,
            timestamp=_now_ms(),
        )
        self._formulas.append(snapshot)
        return snapshot

    def delete(self, formula_id: str) -> bool:
        before = len(self._formulas)
        self._formulas = [f for f in self._formulas if f.id != formula_id]
        return len(self._formulas) != before

    def load(self, formula_id: str) -> Optional[SavedFormula]:
        return self.get(formula_id)

    def to_records(self) -> List[Dict[str, Any]]:
        return [formula.to_dict() for formula in self._formulas]

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "FormulaArchive":
        return cls(SavedFormula.from_dict(record) for record in records)
