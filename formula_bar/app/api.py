from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Literal, Optional, Type, TypeVar, Union

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from ..services.state_store import (
    forget_formula,
    forget_model,
    load_state,
    record_active_model,
    record_formula,
    record_model,
    record_variable,
)
from .config import get_editor_settings
from .database import session_scope
from .errors import EmptyNameError
from .registry import format_variable_value, parse_variable_input
from .services import EXAMPLE_FORMULAS, FormulaSession, SessionManager
from .suggestions import style_for

api = Blueprint("api", __name__, url_prefix="/api")
logger = logging.getLogger(__name__)

SESSIONS_KEY = "formula_sessions"

Body = TypeVar("Body", bound=BaseModel)


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TagBody(_Body):
    name: str = Field(..., min_length=1)


class TextBody(_Body):
    text: str


class CursorBody(_Body):
    move: Optional[Literal["back", "forward"]] = None
    position: Optional[int] = None


class SelectionBody(_Body):
    token_id: Optional[str] = Field(None, alias="tokenId")


class ReplaceBody(_Body):
    position: int
    name: str = Field(..., min_length=1)


class ExampleBody(_Body):
    parts: List[str] = Field(..., min_length=1)


class SaveBody(_Body):
    name: str

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise EmptyNameError("Formula name is required")
        return value


class VariableBody(_Body):
    # Either a number or text as the variable editor shows it ("5%", "$1,200").
    value: Union[float, str]


class ModelBody(_Body):
    name: str
    type: str = "Financial"
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise EmptyNameError("Model name is required")
        return value


class _BadRequest(Exception):
    def __init__(self, payload: Dict[str, Any]):
        super().__init__(payload.get("error"))
        self.payload = payload


class _StorageFailure(Exception):
    pass


def _parse(model: Type[Body]) -> Body:
    try:
        return model.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise _BadRequest({"error": first.get("msg", "invalid request"), "field": field}) from exc


def _sessions() -> SessionManager:
    return current_app.extensions[SESSIONS_KEY]


def _namespace() -> str:
    return get_editor_settings(current_app.config).storage_namespace


def _persist(write: Callable[..., None], session: FormulaSession, *args: Any) -> None:
    try:
        with session_scope() as db:
            write(db, _namespace(), session.persistent_state(), *args)
    except SQLAlchemyError as exc:
        logger.exception("Failed to persist formula state: %s", exc)
        raise _StorageFailure(str(exc)) from exc


def with_session(view):
    @functools.wraps(view)
    def wrapper(session_id: str, *args, **kwargs):
        session = _sessions().get(session_id)
        if session is None:
            return jsonify({"error": "session not found"}), 404
        try:
            return view(session, *args, **kwargs)
        except _BadRequest as exc:
            return jsonify(exc.payload), 400
        except _StorageFailure:
            return jsonify({"error": "Failed to persist formula state"}), 500

    return wrapper


def _state_payload(session: FormulaSession) -> Dict[str, Any]:
    payload = session.snapshot()
    for token in payload["tokens"]:
        if token["type"] == "tag":
            token["style"] = style_for(token["value"], session.catalog).to_dict()
    return payload


def _variables_payload(session: FormulaSession, model_id: Optional[str] = None) -> List[Dict[str, Any]]:
    bindings = session.registry if model_id is None else session.registry.for_model(model_id)
    return [
        {**binding.to_dict(), "formatted": format_variable_value(binding)}
        for binding in bindings
    ]


@api.post("/sessions")
def open_session():
    settings = get_editor_settings(current_app.config)
    with session_scope() as db:
        stored = load_state(db, settings.storage_namespace)
    if stored is None:
        session = FormulaSession(
            suggestion_limit=settings.suggestion_limit,
            suggestion_latency=settings.suggestion_latency_ms / 1000,
        )
    else:
        session = FormulaSession(
            stored.registry,
            stored.archive,
            stored.models,
            suggestion_limit=settings.suggestion_limit,
            suggestion_latency=settings.suggestion_latency_ms / 1000,
        )
    session_id = _sessions().create(session)
    return jsonify({"sessionId": session_id, "state": _state_payload(session)}), 201


@api.delete("/sessions/<session_id>")
def close_session(session_id: str):
    if not _sessions().drop(session_id):
        return jsonify({"error": "session not found"}), 404
    return jsonify({"ok": True})


@api.get("/sessions/<session_id>")
@with_session
def session_state(session: FormulaSession):
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/tags")
@with_session
def insert_tag(session: FormulaSession):
    body = _parse(TagBody)
    session.insert_tag(body.name)
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/characters")
@with_session
def insert_character(session: FormulaSession):
    body = _parse(TextBody)
    session.insert_character(body.text)
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/replace")
@with_session
def replace_token(session: FormulaSession):
    body = _parse(ReplaceBody)
    session.replace_token_at(body.position, body.name)
    return jsonify(_state_payload(session))


@api.delete("/sessions/<session_id>/tokens/<token_id>")
@with_session
def delete_token(session: FormulaSession, token_id: str):
    session.delete_token(token_id)
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/backspace")
@with_session
def delete_backward(session: FormulaSession):
    session.delete_backward()
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/cursor")
@with_session
def move_cursor(session: FormulaSession):
    body = _parse(CursorBody)
    if body.move == "back":
        session.move_backward()
    elif body.move == "forward":
        session.move_forward()
    elif body.position is not None:
        session.move_to(body.position)
    else:
        return jsonify({"error": "move or position is required", "field": "move"}), 400
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/selection")
@with_session
def select_tag(session: FormulaSession):
    body = _parse(SelectionBody)
    session.select_tag(body.token_id)
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/clear")
@with_session
def clear_tokens(session: FormulaSession):
    session.clear()
    return jsonify(_state_payload(session))


@api.post("/sessions/<session_id>/evaluate")
@with_session
def evaluate(session: FormulaSession):
    result = session.evaluate()
    return jsonify({"result": result, "state": _state_payload(session)})


@api.get("/examples")
def list_examples():
    return jsonify([{"display": display, "parts": parts} for display, parts in EXAMPLE_FORMULAS.items()])


@api.post("/sessions/<session_id>/examples")
@with_session
def apply_example(session: FormulaSession):
    body = _parse(ExampleBody)
    result = session.apply_example(body.parts)
    return jsonify({"result": result, "state": _state_payload(session)})


@api.get("/sessions/<session_id>/suggestions")
@with_session
def suggestions(session: FormulaSession):
    query = request.args.get("q", "")
    return jsonify([entry.to_dict() for entry in session.suggestions(query)])


@api.route("/sessions/<session_id>/formulas", methods=["GET", "POST"])
@with_session
def formulas(session: FormulaSession):
    if request.method == "POST":
        body = _parse(SaveBody)
        saved = session.save(body.name)
        if saved is None:
            return jsonify({"error": "Formula name is required", "field": "name"}), 400
        _persist(record_formula, session, saved)
        return jsonify(saved.to_dict()), 201
    return jsonify([formula.to_dict() for formula in session.archive])


@api.delete("/sessions/<session_id>/formulas/<formula_id>")
@with_session
def delete_formula(session: FormulaSession, formula_id: str):
    if not session.delete_saved(formula_id):
        return jsonify({"error": "formula not found"}), 404
    _persist(forget_formula, session, formula_id)
    return jsonify({"ok": True})


@api.post("/sessions/<session_id>/formulas/<formula_id>/load")
@with_session
def load_formula(session: FormulaSession, formula_id: str):
    if not session.load(formula_id):
        return jsonify({"error": "formula not found"}), 404
    return jsonify(_state_payload(session))


@api.get("/sessions/<session_id>/variables")
@with_session
def variables(session: FormulaSession):
    return jsonify(_variables_payload(session, request.args.get("model")))


@api.patch("/sessions/<session_id>/variables/<variable_id>")
@with_session
def update_variable(session: FormulaSession, variable_id: str):
    body = _parse(VariableBody)
    binding = session.registry.get(variable_id)
    if binding is None:
        return jsonify({"error": "variable not found"}), 404
    value = body.value
    if isinstance(value, str):
        value = parse_variable_input(value, binding.display_format)
        if value is None:
            return jsonify({"error": "value is not a number", "field": "value"}), 400
    session.update_variable(variable_id, value)
    _persist(record_variable, session, session.registry.get(variable_id))
    return jsonify(_variables_payload(session))


@api.route("/sessions/<session_id>/models", methods=["GET", "POST"])
@with_session
def models(session: FormulaSession):
    if request.method == "POST":
        body = _parse(ModelBody)
        model = session.add_model(body.name, body.type, body.color)
        if model is None:
            return jsonify({"error": "Model name is required", "field": "name"}), 400
        _persist(record_model, session, model)
        return jsonify(model.to_dict()), 201
    return jsonify(session.models.to_records())


@api.delete("/sessions/<session_id>/models/<model_id>")
@with_session
def remove_model(session: FormulaSession, model_id: str):
    removed = session.remove_model(model_id)
    if removed:
        _persist(forget_model, session, model_id)
    return jsonify({"removed": removed, "models": session.models.to_records()})


@api.post("/sessions/<session_id>/models/<model_id>/activate")
@with_session
def activate_model(session: FormulaSession, model_id: str):
    if not session.set_active_model(model_id):
        return jsonify({"error": "model not found"}), 404
    _persist(record_active_model, session)
    return jsonify(session.models.to_records())


def register_api(app: Flask) -> None:
    idle = get_editor_settings(app.config).session_idle_seconds
    # 0 or less keeps sessions until they are closed.
    app.extensions.setdefault(SESSIONS_KEY, SessionManager(idle_timeout=idle if idle > 0 else None))
    app.register_blueprint(api)
