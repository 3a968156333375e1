from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from formula_bar.app.archive import FormulaArchive
from formula_bar.app.editor import FormulaEditor
from formula_bar.app.linked_models import LinkedModelSet
from formula_bar.app.models import Base
from formula_bar.app.registry import VariableRegistry
from formula_bar.services.state_store import (
    PersistentState,
    clear_state,
    forget_formula,
    forget_model,
    load_state,
    record_active_model,
    record_formula,
    record_model,
    record_variable,
    save_state,
)


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, future=True)
    with SessionLocal() as session:
        yield session


def seed_state() -> PersistentState:
    editor = FormulaEditor()
    editor.insert_tag("Base salary")
    editor.insert_character("*")
    editor.insert_character("2")
    archive = FormulaArchive()
    archive.save("Double", editor.tokens, "$350,000.00")

    registry = VariableRegistry()
    registry.update_value("vesting-period", 5)
    models = LinkedModelSet()
    models.set_active("equity-analyzer")
    return PersistentState(archive=archive, registry=registry, models=models)


def test_nothing_stored_returns_none(session: Session) -> None:
    assert load_state(session, "formula-storage") is None


def test_round_trip(session: Session) -> None:
    state = seed_state()
    save_state(session, "formula-storage", state)

    loaded = load_state(session, "formula-storage")

    assert loaded is not None
    assert loaded.archive.list() == state.archive.list()
    assert list(loaded.registry) == list(state.registry)
    assert loaded.registry.lookup("Vesting period").value == 5
    assert list(loaded.models) == list(state.models)
    assert loaded.models.active().id == "equity-analyzer"


def test_saving_again_replaces_previous_rows(session: Session) -> None:
    state = seed_state()
    save_state(session, "formula-storage", state)
    state.archive.delete(state.archive.list()[0].id)
    save_state(session, "formula-storage", state)

    loaded = load_state(session, "formula-storage")
    assert loaded.archive.list() == []
    assert len(loaded.registry) == len(state.registry)


def test_namespaces_are_isolated(session: Session) -> None:
    save_state(session, "alpha", seed_state())
    empty = PersistentState(FormulaArchive(), VariableRegistry(), LinkedModelSet())
    save_state(session, "beta", empty)

    assert len(load_state(session, "alpha").archive) == 1
    assert len(load_state(session, "beta").archive) == 0


def test_clear_state(session: Session) -> None:
    save_state(session, "formula-storage", seed_state())
    clear_state(session, "formula-storage")
    assert load_state(session, "formula-storage") is None


def fresh_state() -> PersistentState:
    return PersistentState(FormulaArchive(), VariableRegistry(), LinkedModelSet())


def test_first_write_seeds_the_whole_state(session: Session) -> None:
    state = fresh_state()
    state.registry.update_value("base-salary", 1)
    saved = state.archive.save("Seed", FormulaEditor().tokens, "0")

    record_formula(session, "formula-storage", state, saved)

    loaded = load_state(session, "formula-storage")
    assert [f.name for f in loaded.archive] == ["Seed"]
    assert loaded.registry.lookup("Base salary").value == 1
    assert len(loaded.models) == len(state.models)


def test_concurrent_sessions_keep_each_others_formulas(session: Session) -> None:
    first, second = fresh_state(), fresh_state()
    record_formula(session, "shared", first, first.archive.save("from first", (), "0"))
    record_formula(session, "shared", second, second.archive.save("from second", (), "0"))

    loaded = load_state(session, "shared")
    assert [f.name for f in loaded.archive] == ["from first", "from second"]


def test_forget_formula_only_removes_that_formula(session: Session) -> None:
    first, second = fresh_state(), fresh_state()
    keep = first.archive.save("keep", (), "0")
    record_formula(session, "shared", first, keep)
    drop = second.archive.save("drop", (), "0")
    record_formula(session, "shared", second, drop)

    second.archive.delete(drop.id)
    forget_formula(session, "shared", second, drop.id)

    assert [f.name for f in load_state(session, "shared").archive] == ["keep"]


def test_record_variable_updates_one_row(session: Session) -> None:
    first, second = fresh_state(), fresh_state()
    first.registry.update_value("base-salary", 10)
    record_variable(session, "shared", first, first.registry.get("base-salary"))
    second.registry.update_value("vesting-period", 3)
    record_variable(session, "shared", second, second.registry.get("vesting-period"))

    registry = load_state(session, "shared").registry
    assert registry.lookup("Base salary").value == 10
    assert registry.lookup("Vesting period").value == 3
    assert len(registry) == len(first.registry)


def test_model_changes_are_written_per_model(session: Session) -> None:
    first, second = fresh_state(), fresh_state()
    added = first.models.add("Runway", "Data")
    record_model(session, "shared", first, added)

    second.models.set_active("equity-analyzer")
    record_active_model(session, "shared", second)

    models = load_state(session, "shared").models
    assert added.id in [m.id for m in models]
    assert models.active().id == "equity-analyzer"

    second.models.remove("equity-analyzer")
    forget_model(session, "shared", second, "equity-analyzer")

    models = load_state(session, "shared").models
    assert "equity-analyzer" not in [m.id for m in models]
    assert models.active().id == "comp-calc"
    assert [m.is_active for m in models].count(True) == 1
