"""Demo: author a flow, assign it and work through it with TestClient.

Run with:
    python scripts/demo_onboarding_flow.py

Uses the in-memory repositories, so no Postgres or Redis is needed.
"""

from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient

from onboarding.main import app
from onboarding.services import token_service

STAFF_ID = uuid4()
LEARNER_ID = uuid4()


def _headers(user_id, roles: list[str]) -> dict[str, str]:
    token = token_service.create_access_token(sub=str(user_id), roles=roles)
    return {"Authorization": f"Bearer {token}"}


def main() -> None:
    client = TestClient(app)
    staff = _headers(STAFF_ID, ["moderator"])
    learner = _headers(LEARNER_ID, ["user"])

    # ── Step 1: author the flow ─────────────────────────────────────
    r = client.post(
        "/v1/flows",
        json={"name": "First week", "description": "Accounts, tools and people"},
        headers=staff,
    )
    flow_id = r.json()["id"]
    print(f"1. POST /v1/flows                → {r.status_code}  flow={flow_id}")

    for title, component in (
        ("Accounts", {"type": "article", "title": "Handbook",
                      "payload": {"content": "Read the handbook"}}),
        ("Tooling", {"type": "task", "title": "Find the code word",
                     "payload": {"code_word": "Onboard", "score": 5}}),
    ):
        step = client.post(f"/v1/flows/{flow_id}/steps", json={"title": title}, headers=staff)
        client.post(
            f"/v1/flows/{flow_id}/steps/{step.json()['id']}/components",
            json=component,
            headers=staff,
        )
    print("2. POST steps + components       → 2 steps, 1 component each")

    # ── Step 3: publish ─────────────────────────────────────────────
    r = client.post(f"/v1/flows/{flow_id}/publish", headers=staff)
    print(
        f"3. POST /publish                 → {r.status_code}  "
        f"flow version={r.json()['flow_version']['version']}"
    )

    # ── Step 4: assign ──────────────────────────────────────────────
    r = client.post(
        "/v1/assignments",
        json={"user_id": str(LEARNER_ID), "flow_id": flow_id},
        headers=staff,
    )
    assignment = r.json()
    print(
        f"4. POST /v1/assignments          → {r.status_code}  "
        f"status={assignment['status']}  due={assignment['due_date'][:10]}"
    )

    # ── Step 5: the learner reads the frozen snapshot ───────────────
    r = client.get(f"/v1/assignments/{assignment['id']}/snapshot", headers=learner)
    steps = r.json()["steps"]
    print(f"5. GET  /snapshot                → {r.status_code}  steps={len(steps)}")

    base = f"/v1/assignments/{assignment['id']}/progress/components"
    article_id = steps[0]["components"][0]["id"]
    task_id = steps[1]["components"][0]["id"]

    # ── Step 6: the second step is locked until the first is done ──
    r = client.post(f"{base}/{task_id}/interact", json={"answer": "Onboard"}, headers=learner)
    print(f"6. POST task before article      → {r.status_code}  ({r.json()['error']})")

    # ── Step 7: read the article ────────────────────────────────────
    r = client.post(f"{base}/{article_id}/interact", json={}, headers=learner)
    print(
        f"7. POST article                  → {r.status_code}  "
        f"progress={r.json()['overall_percent']}%  "
        f"unlocked={r.json()['next_step_unlocked']}"
    )

    # ── Step 8: solve the task ──────────────────────────────────────
    r = client.post(f"{base}/{task_id}/interact", json={"answer": "onboard"}, headers=learner)
    data = r.json()
    print(
        f"8. POST task                     → {r.status_code}  "
        f"progress={data['overall_percent']}%  "
        f"status={data['assignment']['status']}  score={data['assignment']['final_score']}"
    )

    # ── Step 9: feedback ────────────────────────────────────────────
    r = client.post(
        f"/v1/assignments/{assignment['id']}/feedback",
        json={"rating": 5, "feedback": "Smooth start"},
        headers=learner,
    )
    print(f"9. POST /feedback                → {r.status_code}  rating={r.json()['user_rating']}")


if __name__ == "__main__":
    main()
