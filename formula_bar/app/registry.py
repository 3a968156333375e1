from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

DISPLAY_FORMATS = ("currency", "percent", "number")


@dataclass(frozen=True)
class VariableBinding:
    id: str
    name: str
    value: float
    model_id: str
    display_format: str = "number"
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        return {
            "id": payload["id"],
            "name": payload["name"],
            "value": payload["value"],
            "modelId": payload["model_id"],
            "displayFormat": payload["display_format"],
            "description": payload["description"],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "VariableBinding":
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            value=float(payload["value"]),
            model_id=str(payload.get("modelId") or payload.get("model_id") or ""),
            display_format=str(payload.get("displayFormat") or payload.get("display_format") or "number"),
            description=payload.get("description"),
        )


DEFAULT_VARIABLES: tuple[VariableBinding, ...] = (
    VariableBinding(
        id="base-salary",
        name="Base salary",
        value=175000,
        model_id="comp-calc",
        display_format="currency",
        description="Annual base salary before taxes",
    ),
    VariableBinding(
        id="annual-equity",
        name="Annual equity comp",
        value=62500,
        model_id="comp-calc",
        display_format="currency",
        description="Annual equity compensation value",
    ),
    VariableBinding(
        id="option-grant",
        name="Option grant",
        value=0.005,
        model_id="equity-analyzer",
        display_format="percent",
        description="Percentage of company ownership",
    ),
    VariableBinding(
        id="current-valuation",
        name="Current valuation",
        value=50000000,
        model_id="equity-analyzer",
        display_format="currency",
        description="Current company valuation",
    ),
    VariableBinding(
        id="exit-valuation",
        name="Exit valuation",
        value=1000000000,
        model_id="equity-analyzer",
        display_format="currency",
        description="Projected exit valuation",
    ),
    VariableBinding(
        id="future-dilution",
        name="Future dilution",
        value=0.3,
        model_id="equity-analyzer",
        display_format="percent",
        description="Expected future dilution",
    ),
    VariableBinding(
        id="vesting-period",
        name="Vesting period",
        value=4,
        model_id="performance-metrics",
        display_format="number",
        description="Number of years for full vesting",
    ),
)


class VariableRegistry:
    """Name → value bindings read by the expression builder.

    Names are expected to be unique; when they are not, the first binding in
    registry order wins.
    """

    def __init__(self, bindings: Iterable[VariableBinding] | None = None):
        self._bindings: List[VariableBinding] = list(
            DEFAULT_VARIABLES if bindings is None else bindings
        )

    def __iter__(self):
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, name: object) -> bool:
        return self.lookup(str(name)) is not None

    def lookup(self, name: str) -> Optional[VariableBinding]:
        return next((b for b in self._bindings if b.name == name), None)

    def get(self, variable_id: str) -> Optional[VariableBinding]:
        return next((b for b in self._bindings if b.id == variable_id), None)

    def for_model(self, model_id: str) -> List[VariableBinding]:
        return [b for b in self._bindings if b.model_id == model_id]

    def values(self) -> Dict[str, float]:
        values: Dict[str, float] = {}
        for binding in self._bindings:
            values.setdefault(binding.name, binding.value)
        return values

    def update_value(self, variable_id: str, value: float) -> bool:
        for index, binding in enumerate(self._bindings):
            if binding.id == variable_id:
                self._bindings[index] = replace(binding, value=float(value))
                return True
        logger.info("Ignoring update for unknown variable %s", variable_id)
        return False

    def to_records(self) -> List[Dict[str, Any]]:
        return [binding.to_dict() for binding in self._bindings]

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "VariableRegistry":
        return cls(VariableBinding.from_dict(record) for record in records)


def _trim_decimals(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _compact_currency(value: float) -> str:
    for threshold, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M")):
        if abs(value) >= threshold:
            return f"${_trim_decimals(f'{value / threshold:.2f}')}{suffix}"
    return f"${value:,.2f}"


def format_variable_value(binding: VariableBinding) -> str:
    """Render a binding the way the variable editor shows it."""
    value = binding.value
    if binding.display_format == "currency":
        if value >= 1_000_000:
            return _compact_currency(value)
        return f"${value:,.2f}"
    if binding.display_format == "percent":
        if value < 0.01:
            return f"{value * 100:.3f}%"
        return f"{_trim_decimals(f'{value * 100:.2f}')}%"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def parse_variable_input(text: str, display_format: str) -> Optional[float]:
    """Parse what a user typed for a binding; ``None`` when it is not a number."""
    raw = (text or "").strip()
    try:
        if display_format == "percent":
            return float(raw.replace("%", "").strip()) / 100
        return float(raw.replace("$", "").replace(",", "").strip())
    except ValueError:
        return None
