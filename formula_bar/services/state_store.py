"""Persistence adapter for the state that outlives a session.

Only the formula archive, the variable registry and the linked models are
stored; live tokens and the cursor never reach the database.

Several sessions can share one namespace. ``save_state`` writes a whole
snapshot and is only used to seed a namespace; after that every change goes
through the ``record_*``/``forget_*`` helpers, which touch only the rows that
changed so that one session never overwrites another's work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ..app.archive import FormulaArchive, SavedFormula
from ..app.linked_models import LinkedModel, LinkedModelSet
from ..app.models import LinkedModelRecord, SavedFormulaRecord, StorageNamespace, VariableRecord
from ..app.registry import VariableBinding, VariableRegistry

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "formula-storage"


@dataclass
class PersistentState:
    archive: FormulaArchive
    registry: VariableRegistry
    models: LinkedModelSet


def _formula_row(namespace: str, ordinal: int, formula: SavedFormula) -> SavedFormulaRecord:
    return SavedFormulaRecord(
        namespace=namespace,
        formula_id=formula.id,
        ordinal=ordinal,
        name=formula.name,
        tokens=[token.to_dict() for token in formula.tokens],
        result=formula.result,
        timestamp=formula.timestamp,
    )


def _variable_row(namespace: str, ordinal: int, binding: VariableBinding) -> VariableRecord:
    return VariableRecord(
        namespace=namespace,
        variable_id=binding.id,
        ordinal=ordinal,
        name=binding.name,
        value=binding.value,
        model_id=binding.model_id,
        display_format=binding.display_format,
        description=binding.description,
    )


def _model_row(namespace: str, ordinal: int, model: LinkedModel) -> LinkedModelRecord:
    return LinkedModelRecord(
        namespace=namespace,
        model_id=model.id,
        ordinal=ordinal,
        name=model.name,
        type=model.type,
        icon=model.icon,
        color=model.color,
        is_active=model.is_active,
    )


def _touch(session: Session, namespace: str) -> None:
    marker = session.get(StorageNamespace, namespace)
    if marker is None:
        marker = StorageNamespace(namespace=namespace)
        session.add(marker)
    marker.updated_at = datetime.utcnow()


def _next_ordinal(session: Session, table, namespace: str) -> int:
    current = session.scalar(select(func.max(table.ordinal)).where(table.namespace == namespace))
    return 0 if current is None else current + 1


def save_state(session: Session, namespace: str, state: PersistentState) -> None:
    """Replace everything stored under ``namespace`` with ``state``."""
    for table in (SavedFormulaRecord, VariableRecord, LinkedModelRecord):
        session.execute(delete(table).where(table.namespace == namespace))

    for ordinal, formula in enumerate(state.archive):
        session.add(_formula_row(namespace, ordinal, formula))
    for ordinal, binding in enumerate(state.registry):
        session.add(_variable_row(namespace, ordinal, binding))
    for ordinal, model in enumerate(state.models):
        session.add(_model_row(namespace, ordinal, model))

    _touch(session, namespace)
    session.flush()


def _seed(session: Session, namespace: str, state: PersistentState) -> bool:
    """Store the full ``state`` if ``namespace`` has never been written."""
    if session.get(StorageNamespace, namespace) is not None:
        return False
    logger.info("Seeding storage namespace %s", namespace)
    save_state(session, namespace, state)
    return True


def record_formula(session: Session, namespace: str, state: PersistentState, formula: SavedFormula) -> None:
    if _seed(session, namespace, state):
        return
    ordinal = _next_ordinal(session, SavedFormulaRecord, namespace)
    session.add(_formula_row(namespace, ordinal, formula))
    _touch(session, namespace)
    session.flush()


def forget_formula(session: Session, namespace: str, state: PersistentState, formula_id: str) -> None:
    if _seed(session, namespace, state):
        return
    session.execute(
        delete(SavedFormulaRecord).where(
            SavedFormulaRecord.namespace == namespace,
            SavedFormulaRecord.formula_id == formula_id,
        )
    )
    _touch(session, namespace)
    session.flush()


def record_variable(session: Session, namespace: str, state: PersistentState, binding: VariableBinding) -> None:
    if _seed(session, namespace, state):
        return
    updated = session.execute(
        update(VariableRecord)
        .where(VariableRecord.namespace == namespace, VariableRecord.variable_id == binding.id)
        .values(value=binding.value)
    )
    if not updated.rowcount:
        ordinal = _next_ordinal(session, VariableRecord, namespace)
        session.add(_variable_row(namespace, ordinal, binding))
    _touch(session, namespace)
    session.flush()


def record_model(session: Session, namespace: str, state: PersistentState, model: LinkedModel) -> None:
    if _seed(session, namespace, state):
        return
    ordinal = _next_ordinal(session, LinkedModelRecord, namespace)
    session.add(_model_row(namespace, ordinal, model))
    _touch(session, namespace)
    session.flush()


def forget_model(session: Session, namespace: str, state: PersistentState, model_id: str) -> None:
    if _seed(session, namespace, state):
        return
    session.execute(
        delete(LinkedModelRecord).where(
            LinkedModelRecord.namespace == namespace,
            LinkedModelRecord.model_id == model_id,
        )
    )
    _write_activation(session, namespace, state)


def record_active_model(session: Session, namespace: str, state: PersistentState) -> None:
    if _seed(session, namespace, state):
        return
    _write_activation(session, namespace, state)


def _write_activation(session: Session, namespace: str, state: PersistentState) -> None:
    active = state.models.active()
    if active is not None:
        session.execute(
            update(LinkedModelRecord)
            .where(LinkedModelRecord.namespace == namespace)
            .values(is_active=LinkedModelRecord.model_id == active.id)
        )
    _touch(session, namespace)
    session.flush()


def _formula_record(row: SavedFormulaRecord) -> Dict[str, Any]:
    return {
        "id": row.formula_id,
        "name": row.name,
        "tokens": row.tokens or [],
        "result": row.result,
        "timestamp": row.timestamp,
    }


def _variable_record(row: VariableRecord) -> Dict[str, Any]:
    return {
        "id": row.variable_id,
        "name": row.name,
        "value": row.value,
        "modelId": row.model_id,
        "displayFormat": row.display_format,
        "description": row.description,
    }


def _model_record(row: LinkedModelRecord) -> Dict[str, Any]:
    return {
        "id": row.model_id,
        "name": row.name,
        "type": row.type,
        "icon": row.icon,
        "color": row.color,
        "isActive": row.is_active,
    }


def load_state(session: Session, namespace: str) -> Optional[PersistentState]:
    """Return the stored state for ``namespace``, or ``None`` if never saved."""
    if session.get(StorageNamespace, namespace) is None:
        return None

    def rows(table):
        return session.scalars(
            select(table).where(table.namespace == namespace).order_by(table.ordinal)
        ).all()

    return PersistentState(
        archive=FormulaArchive.from_records(_formula_record(r) for r in rows(SavedFormulaRecord)),
        registry=VariableRegistry.from_records(_variable_record(r) for r in rows(VariableRecord)),
        models=LinkedModelSet.from_records(_model_record(r) for r in rows(LinkedModelRecord)),
    )


def clear_state(session: Session, namespace: str) -> None:
    for table in (SavedFormulaRecord, VariableRecord, LinkedModelRecord, StorageNamespace):
        session.execute(delete(table).where(table.namespace == namespace))
