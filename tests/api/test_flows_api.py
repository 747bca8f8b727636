from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient

from tests.conftest import auth

QUIZ = {
    "questions": [
        {
            "text": "Where is the wiki?",
            "order": "i",
            "options": [
                {"text": "wiki.internal", "is_correct": True},
                {"text": "On a sticky note"},
            ],
        }
    ]
}


def _create_flow(client: TestClient, token: str, **overrides) -> dict:
    body = {"name": "Engineering onboarding", "description": "Laptop to first deploy"}
    body.update(overrides)
    resp = client.post("/v1/flows", json=body, headers=auth(token))
    assert resp.status_code == 201
    return resp.json()


def _add_step(client: TestClient, token: str, flow_id: str, title: str, **extra) -> dict:
    resp = client.post(
        f"/v1/flows/{flow_id}/steps", json={"title": title, **extra}, headers=auth(token)
    )
    assert resp.status_code == 201
    return resp.json()


def _step_titles(client: TestClient, token: str, flow_id: str) -> list[str]:
    resp = client.get(f"/v1/flows/{flow_id}/content", headers=auth(token))
    assert resp.status_code == 200
    return [s["title"] for s in resp.json()["steps"]]


# ---- access ----


def test_flows_require_authentication(client: TestClient) -> None:
    assert client.get("/v1/flows").status_code == 401


def test_learners_cannot_author_flows(client: TestClient, token: str) -> None:
    resp = client.post("/v1/flows", json={"name": "Sneaky"}, headers=auth(token))
    assert resp.status_code == 403


# ---- flows ----


def test_create_flow_returns_defaults(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token, tags=["engineering"])
    assert flow["is_active"] is True
    assert flow["tags"] == ["engineering"]
    assert flow["settings"]["days_per_step"] == 7
    assert flow["settings"]["requires_sequential_completion"] is True
    assert flow["active_content_id"] is not None


def test_create_flow_with_custom_settings(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(
        client,
        staff_token,
        settings={"days_per_step": 3, "working_days_only": True, "allow_self_pause": False},
    )
    assert flow["settings"]["days_per_step"] == 3
    assert flow["settings"]["working_days_only"] is True
    assert flow["settings"]["allow_self_pause"] is False


def test_get_unknown_flow_is_404(client: TestClient, staff_token: str) -> None:
    resp = client.get(f"/v1/flows/{uuid4()}", headers=auth(staff_token))
    assert resp.status_code == 404
    assert resp.json()["error"] == "NOT_FOUND"


def test_update_flow(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    resp = client.patch(
        f"/v1/flows/{flow['id']}",
        json={"name": "Platform onboarding", "estimated_hours": 12},
        headers=auth(staff_token),
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "Platform onboarding"
    assert resp.json()["estimated_hours"] == 12
    assert resp.json()["description"] == "Laptop to first deploy"


def test_deactivated_flow_hidden_from_default_listing(
    client: TestClient, staff_token: str
) -> None:
    kept = _create_flow(client, staff_token, name="Kept")
    dropped = _create_flow(client, staff_token, name="Dropped")

    resp = client.delete(f"/v1/flows/{dropped['id']}", headers=auth(staff_token))
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    active = client.get("/v1/flows", headers=auth(staff_token)).json()
    assert [f["id"] for f in active] == [kept["id"]]
    everything = client.get(
        "/v1/flows", params={"include_inactive": True}, headers=auth(staff_token)
    ).json()
    assert {f["id"] for f in everything} == {kept["id"], dropped["id"]}


# ---- steps ----


def test_steps_append_in_order(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    first = _add_step(client, staff_token, flow["id"], "Accounts")
    second = _add_step(client, staff_token, flow["id"], "Tooling")
    assert first["order"] < second["order"]
    assert _step_titles(client, staff_token, flow["id"]) == ["Accounts", "Tooling"]


def test_step_inserted_after_another(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    first = _add_step(client, staff_token, flow["id"], "Accounts")
    _add_step(client, staff_token, flow["id"], "Tooling")
    _add_step(client, staff_token, flow["id"], "Badge", after_step_id=first["id"])
    assert _step_titles(client, staff_token, flow["id"]) == ["Accounts", "Badge", "Tooling"]


def test_move_step_before_another(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    first = _add_step(client, staff_token, flow["id"], "Accounts")
    second = _add_step(client, staff_token, flow["id"], "Tooling")

    resp = client.post(
        f"/v1/flows/{flow['id']}/steps/{second['id']}/move",
        json={"before_id": first["id"]},
        headers=auth(staff_token),
    )
    assert resp.status_code == 200
    assert _step_titles(client, staff_token, flow["id"]) == ["Tooling", "Accounts"]


def test_update_and_remove_step(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    step = _add_step(client, staff_token, flow["id"], "Accounts")

    resp = client.patch(
        f"/v1/flows/{flow['id']}/steps/{step['id']}",
        json={"title": "Accounts and badges", "is_required": False},
        headers=auth(staff_token),
    )
    assert resp.json()["title"] == "Accounts and badges"
    assert resp.json()["is_required"] is False

    resp = client.delete(f"/v1/flows/{flow['id']}/steps/{step['id']}", headers=auth(staff_token))
    assert resp.status_code == 204
    assert _step_titles(client, staff_token, flow["id"]) == []


# ---- components ----


def test_add_quiz_component(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    step = _add_step(client, staff_token, flow["id"], "Accounts")

    resp = client.post(
        f"/v1/flows/{flow['id']}/steps/{step['id']}/components",
        json={"type": "quiz", "title": "Wiki check", "payload": QUIZ, "max_attempts": 3},
        headers=auth(staff_token),
    )
    assert resp.status_code == 201
    component = resp.json()
    assert component["type"] == "quiz"
    assert component["max_score"] == 1
    assert component["max_attempts"] == 3
    assert component["payload"]["questions"][0]["options"][0]["is_correct"] is True


def test_component_with_malformed_payload_is_422(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    step = _add_step(client, staff_token, flow["id"], "Accounts")

    resp = client.post(
        f"/v1/flows/{flow['id']}/steps/{step['id']}/components",
        json={"type": "task", "title": "Find it", "payload": {"instruction": "no code word"}},
        headers=auth(staff_token),
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "VALIDATION_ERROR"


def test_update_move_and_remove_component(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    step = _add_step(client, staff_token, flow["id"], "Accounts")
    url = f"/v1/flows/{flow['id']}/steps/{step['id']}/components"
    article = {"content": "Read the handbook"}
    first = client.post(
        url, json={"type": "article", "title": "Handbook", "payload": article},
        headers=auth(staff_token),
    ).json()
    second = client.post(
        url, json={"type": "task", "title": "Badge", "payload": {"code_word": "Lanyard"}},
        headers=auth(staff_token),
    ).json()

    resp = client.patch(
        f"/v1/flows/{flow['id']}/components/{second['id']}",
        json={"payload": {"code_word": "Lanyard", "score": 4}},
        headers=auth(staff_token),
    )
    assert resp.status_code == 200
    assert resp.json()["max_score"] == 4

    resp = client.post(
        f"/v1/flows/{flow['id']}/components/{second['id']}/move",
        json={"before_id": first["id"]},
        headers=auth(staff_token),
    )
    assert resp.status_code == 200
    content = client.get(f"/v1/flows/{flow['id']}/content", headers=auth(staff_token)).json()
    assert [c["title"] for c in content["steps"][0]["components"]] == ["Badge", "Handbook"]

    resp = client.delete(
        f"/v1/flows/{flow['id']}/components/{first['id']}", headers=auth(staff_token)
    )
    assert resp.status_code == 204
    content = client.get(f"/v1/flows/{flow['id']}/content", headers=auth(staff_token)).json()
    assert [c["title"] for c in content["steps"][0]["components"]] == ["Badge"]


# ---- content versions ----


def test_new_content_version_becomes_active(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    _add_step(client, staff_token, flow["id"], "Accounts")

    resp = client.post(f"/v1/flows/{flow['id']}/contents", headers=auth(staff_token))
    assert resp.status_code == 201
    assert resp.json()["version"] == 2
    assert [s["title"] for s in resp.json()["steps"]] == ["Accounts"]

    contents = client.get(f"/v1/flows/{flow['id']}/contents", headers=auth(staff_token)).json()
    assert [(c["version"], c["is_active"]) for c in contents] == [(1, False), (2, True)]


# ---- activation and publishing ----


def test_activation_check(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token, description="")
    url = f"/v1/flows/{flow['id']}/activation-check"
    assert client.get(url, headers=auth(staff_token)).json()["can_be_activated"] is False

    _add_step(client, staff_token, flow["id"], "Accounts")
    client.patch(
        f"/v1/flows/{flow['id']}", json={"description": "Day one"}, headers=auth(staff_token)
    )
    assert client.get(url, headers=auth(staff_token)).json()["can_be_activated"] is True


def test_publish_versions_only_what_changed(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    step = _add_step(client, staff_token, flow["id"], "Accounts")
    url = f"/v1/flows/{flow['id']}/publish"

    first = client.post(url, headers=auth(staff_token))
    assert first.status_code == 200
    assert first.json()["flow_version"]["version"] == 1
    assert first.json()["flow_version"]["is_active"] is True
    assert [v["original_id"] for v in first.json()["step_versions"]] == [step["id"]]

    second = client.post(url, headers=auth(staff_token)).json()
    assert second["flow_version"]["version"] == 2
    assert second["step_versions"] == []


def test_publish_incomplete_flow_is_422(client: TestClient, staff_token: str) -> None:
    flow = _create_flow(client, staff_token)
    resp = client.post(f"/v1/flows/{flow['id']}/publish", headers=auth(staff_token))
    assert resp.status_code == 422
