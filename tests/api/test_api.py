from __future__ import annotations

import json

import pytest

from formula_bar.app import create_app


@pytest.fixture()
def app(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "DATABASE_URL": f"sqlite:///{tmp_path / 'formula.db'}",
                "STORAGE_NAMESPACE": "test-storage",
            }
        )
    )
    app = create_app(str(config_path))
    app.config.update(TESTING=True)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def open_session(client) -> str:
    response = client.post("/api/sessions")
    assert response.status_code == 201
    return response.get_json()["sessionId"]


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_new_session_starts_empty(client):
    response = client.post("/api/sessions")
    payload = response.get_json()
    assert payload["state"] == {"tokens": [], "cursorPosition": 0, "selectedTagId": None, "result": None}


def test_edit_and_evaluate(client):
    sid = open_session(client)
    client.post(f"/api/sessions/{sid}/tags", json={"name": "Base salary"})
    client.post(f"/api/sessions/{sid}/characters", json={"text": "*"})
    client.post(f"/api/sessions/{sid}/characters", json={"text": "2"})

    response = client.post(f"/api/sessions/{sid}/evaluate")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["result"] == "$350,000.00"
    tokens = payload["state"]["tokens"]
    assert [t["value"] for t in tokens] == ["Base salary", "*2"]
    assert [t["type"] for t in tokens] == ["tag", "text"]
    assert tokens[0]["style"]["icon"] == "$"
    assert payload["state"]["cursorPosition"] == 2


def test_cursor_backspace_and_delete(client):
    sid = open_session(client)
    client.post(f"/api/sessions/{sid}/tags", json={"name": "Base salary"})
    state = client.post(f"/api/sessions/{sid}/tags", json={"name": "Option grant"}).get_json()

    state = client.post(f"/api/sessions/{sid}/cursor", json={"move": "back"}).get_json()
    assert state["cursorPosition"] == 1
    state = client.post(f"/api/sessions/{sid}/backspace").get_json()
    assert [t["value"] for t in state["tokens"]] == ["Option grant"]

    token_id = state["tokens"][0]["id"]
    state = client.post(f"/api/sessions/{sid}/selection", json={"tokenId": token_id}).get_json()
    assert state["selectedTagId"] == token_id
    state = client.delete(f"/api/sessions/{sid}/tokens/{token_id}").get_json()
    assert state["tokens"] == []
    assert state["selectedTagId"] is None

    missing_move = client.post(f"/api/sessions/{sid}/cursor", json={})
    assert missing_move.status_code == 400


def test_replace_and_clear(client):
    sid = open_session(client)
    client.post(f"/api/sessions/{sid}/characters", json={"text": "1"})
    state = client.post(f"/api/sessions/{sid}/replace", json={"position": 0, "name": "Vesting period"}).get_json()
    assert [t["value"] for t in state["tokens"]] == ["Vesting period"]

    state = client.post(f"/api/sessions/{sid}/clear").get_json()
    assert state["tokens"] == []


def test_examples(client):
    examples = client.get("/api/examples").get_json()
    assert examples[0]["display"] == "Base salary * (1 + 0.05)"

    sid = open_session(client)
    response = client.post(f"/api/sessions/{sid}/examples", json={"parts": examples[0]["parts"]})
    assert response.get_json()["result"] == "$183,750.00"


def test_suggestions(client):
    sid = open_session(client)
    response = client.get(f"/api/sessions/{sid}/suggestions", query_string={"q": "exit"})
    payload = response.get_json()
    assert [entry["value"] for entry in payload] == ["Exit valuation"]
    assert len(client.get(f"/api/sessions/{sid}/suggestions").get_json()) == 10


def test_unknown_session_is_404(client):
    assert client.get("/api/sessions/nope").status_code == 404
    assert client.post("/api/sessions/nope/evaluate").status_code == 404
    assert client.delete("/api/sessions/nope").status_code == 404


def test_blank_formula_name_is_rejected(client):
    sid = open_session(client)
    response = client.post(f"/api/sessions/{sid}/formulas", json={"name": "   "})
    assert response.status_code == 400
    assert response.get_json()["field"] == "name"
    assert client.get(f"/api/sessions/{sid}/formulas").get_json() == []


def test_save_load_and_delete_formula(client):
    sid = open_session(client)
    client.post(f"/api/sessions/{sid}/tags", json={"name": "Vesting period"})
    saved = client.post(f"/api/sessions/{sid}/formulas", json={"name": "Years"})
    assert saved.status_code == 201
    formula = saved.get_json()
    assert formula["result"] == "4"

    client.post(f"/api/sessions/{sid}/clear")
    state = client.post(f"/api/sessions/{sid}/formulas/{formula['id']}/load").get_json()
    assert [t["value"] for t in state["tokens"]] == ["Vesting period"]
    assert state["result"] == "4"

    assert client.delete(f"/api/sessions/{sid}/formulas/{formula['id']}").status_code == 200
    assert client.delete(f"/api/sessions/{sid}/formulas/{formula['id']}").status_code == 404
    assert client.post(f"/api/sessions/{sid}/formulas/{formula['id']}/load").status_code == 404


def test_archive_and_variables_persist_across_sessions(client):
    first = open_session(client)
    client.post(f"/api/sessions/{first}/characters", json={"text": "7"})
    client.post(f"/api/sessions/{first}/formulas", json={"name": "Seven"})
    response = client.patch(f"/api/sessions/{first}/variables/vesting-period", json={"value": 6})
    assert response.status_code == 200

    second = open_session(client)
    names = [f["name"] for f in client.get(f"/api/sessions/{second}/formulas").get_json()]
    assert names == ["Seven"]
    variables = client.get(f"/api/sessions/{second}/variables").get_json()
    vesting = next(v for v in variables if v["id"] == "vesting-period")
    assert vesting["value"] == 6
    assert vesting["formatted"] == "6"
    # Live tokens are not persisted.
    assert client.get(f"/api/sessions/{second}").get_json()["tokens"] == []


def test_variable_validation(client):
    sid = open_session(client)
    assert client.patch(f"/api/sessions/{sid}/variables/missing", json={"value": 1}).status_code == 404
    assert client.patch(f"/api/sessions/{sid}/variables/base-salary", json={"value": "lots"}).status_code == 400


def test_models(client):
    sid = open_session(client)
    created = client.post(f"/api/sessions/{sid}/models", json={"name": "Runway", "type": "Analytics"})
    assert created.status_code == 201
    model = created.get_json()
    assert model["icon"] == "bar_chart"

    assert client.post(f"/api/sessions/{sid}/models", json={"name": ""}).status_code == 400

    models = client.post(f"/api/sessions/{sid}/models/{model['id']}/activate").get_json()
    assert [m["id"] for m in models if m["isActive"]] == [model["id"]]

    removed = client.delete(f"/api/sessions/{sid}/models/{model['id']}").get_json()
    assert removed["removed"] is True
    assert [m["id"] for m in removed["models"] if m["isActive"]] == ["comp-calc"]
    assert client.post(f"/api/sessions/{sid}/models/missing/activate").status_code == 404


def test_concurrent_sessions_do_not_overwrite_each_other(client):
    first = open_session(client)
    second = open_session(client)
    assert client.post(f"/api/sessions/{first}/formulas", json={"name": "from first"}).status_code == 201
    assert client.post(f"/api/sessions/{second}/formulas", json={"name": "from second"}).status_code == 201
    client.patch(f"/api/sessions/{first}/variables/vesting-period", json={"value": 6})
    client.patch(f"/api/sessions/{second}/variables/base-salary", json={"value": 1000})

    third = open_session(client)
    names = [f["name"] for f in client.get(f"/api/sessions/{third}/formulas").get_json()]
    assert names == ["from first", "from second"]
    variables = {v["id"]: v["value"] for v in client.get(f"/api/sessions/{third}/variables").get_json()}
    assert variables["vesting-period"] == 6
    assert variables["base-salary"] == 1000


def test_variable_accepts_formatted_text(client):
    sid = open_session(client)
    response = client.patch(f"/api/sessions/{sid}/variables/option-grant", json={"value": "5%"})
    assert response.status_code == 200
    grant = next(v for v in response.get_json() if v["id"] == "option-grant")
    assert grant["value"] == pytest.approx(0.05)
    assert grant["formatted"] == "5%"

    response = client.patch(f"/api/sessions/{sid}/variables/base-salary", json={"value": "$1,200"})
    salary = next(v for v in response.get_json() if v["id"] == "base-salary")
    assert salary["value"] == 1200


def test_variables_filtered_by_model(client):
    sid = open_session(client)
    payload = client.get(f"/api/sessions/{sid}/variables", query_string={"model": "performance-metrics"}).get_json()
    assert [v["id"] for v in payload] == ["vesting-period"]


def test_storage_failure_is_reported(client, monkeypatch):
    from sqlalchemy.exc import SQLAlchemyError

    from formula_bar.app import api as api_module

    def broken(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(api_module, "record_formula", broken)
    sid = open_session(client)
    response = client.post(f"/api/sessions/{sid}/formulas", json={"name": "Lost"})
    assert response.status_code == 500
    assert response.get_json() == {"error": "Failed to persist formula state"}


def test_deeply_nested_formula_evaluates_to_error(client):
    sid = open_session(client)
    client.post(f"/api/sessions/{sid}/characters", json={"text": "(" * 400 + "1" + ")" * 400})
    response = client.post(f"/api/sessions/{sid}/evaluate")
    assert response.status_code == 200
    assert response.get_json()["result"] == "Error"
