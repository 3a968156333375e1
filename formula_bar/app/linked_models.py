from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

MODEL_PALETTE = ("#7c4dff", "#2196f3", "#00bcd4", "#009688", "#4caf50", "#ff9800", "#f44336")

ICON_FOR_TYPE = {
    "Financial": "calculate",
    "Analytics": "bar_chart",
    "Data": "table_chart",
}


@dataclass(frozen=True)
class LinkedModel:
    id: str
    name: str
    type: str
    icon: str = "calculate"
    color: Optional[str] = None
    is_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "icon": self.icon,
            "color": self.color,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LinkedModel":
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            type=str(payload.get("type", "Financial")),
            icon=str(payload.get("icon") or icon_for_type(str(payload.get("type", "")))),
            color=payload.get("color"),
            is_active=bool(payload.get("isActive", payload.get("is_active", False))),
        )


DEFAULT_LINKED_MODELS: tuple[LinkedModel, ...] = (
    LinkedModel(
        id="comp-calc",
        name="Compensation Calculator",
        type="Financial",
        icon="calculate",
        color="#7c4dff",
        is_active=True,
    ),
    LinkedModel(
        id="equity-analyzer",
        name="Equity Analysis",
        type="Analytics",
        icon="bar_chart",
        color="#2196f3",
    ),
    LinkedModel(
        id="performance-metrics",
        name="Performance Metrics",
        type="Data",
        icon="table_chart",
        color="#4caf50",
    ),
)


def icon_for_type(model_type: str) -> str:
    return ICON_FOR_TYPE.get(model_type, "calculate")


class LinkedModelSet:
    """The models a session's variables belong to. Never drops below one model."""

    def __init__(self, models: Iterable[LinkedModel] | None = None):
        self._models: List[LinkedModel] = list(
            DEFAULT_LINKED_MODELS if models is None else models
        )

    def __iter__(self):
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def get(self, model_id: str) -> Optional[LinkedModel]:
        return next((m for m in self._models if m.id == model_id), None)

    def active(self) -> Optional[LinkedModel]:
        return next((m for m in self._models if m.is_active), None)

    def add(self, name: str, model_type: str = "Financial", color: str | None = None) -> Optional[LinkedModel]:
        name = (name or "").strip()
        if not name:
            logger.info("Rejected linked model with a blank name")
            return None
        if color is None:
            color = MODEL_PALETTE[len(self._models) % len(MODEL_PALETTE)]
        model = LinkedModel(
            id=str(uuid.uuid4()),
            name=name,
            type=model_type,
            icon=icon_for_type(model_type),
            color=color,
            is_active=False,
        )
        self._models.append(model)
        return model

    def remove(self, model_id: str) -> bool:
        if len(self._models) <= 1:
            logger.info("Refusing to remove the last linked model %s", model_id)
            return False
        removed = self.get(model_id)
        if removed is None:
            return False
        self._models = [m for m in self._models if m.id != model_id]
        if removed.is_active:
            self._models = [
                replace(m, is_active=index == 0) for index, m in enumerate(self._models)
            ]
        return True

    def set_active(self, model_id: str) -> bool:
        if self.get(model_id) is None:
            return False
        self._models = [replace(m, is_active=m.id == model_id) for m in self._models]
        return True

    def to_records(self) -> List[Dict[str, Any]]:
        return [model.to_dict() for model in self._models]

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "LinkedModelSet":
        return cls(LinkedModel.from_dict(record) for record in records)
