"""Prometheus middleware tests.

Counters in the default registry only ever go up and survive between
tests, so every assertion compares a reading taken before the request
with one taken after.
"""

from __future__ import annotations

import asyncio
from uuid import UUID, uuid4

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from onboarding.repos.registry import Repositories
from tests.conftest import assign, auth, build_flow


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels=labels) or 0.0


def _requests(method: str, endpoint: str, status_code: str) -> float:
    return _sample(
        "http_requests_total",
        {"method": method, "endpoint": endpoint, "status_code": status_code},
    )


def test_request_is_counted(client: TestClient) -> None:
    before = _requests("GET", "/health", "200")
    client.get("/health")
    assert _requests("GET", "/health", "200") - before == 1


def test_duration_is_observed(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/ready"}
    before = _sample("http_request_duration_seconds_count", labels)
    client.get("/ready")
    assert _sample("http_request_duration_seconds_count", labels) - before == 1


def test_endpoint_label_is_route_template(
    client: TestClient, token: str, learner_id: UUID, repos: Repositories
) -> None:
    async def two_assignments():
        first = await assign(repos, (await build_flow(repos, name="One")).id, learner_id)
        second = await assign(repos, (await build_flow(repos, name="Two")).id, learner_id)
        return first, second

    first, second = asyncio.run(two_assignments())
    template = "/v1/assignments/{assignment_id}"

    before = _requests("GET", template, "200")
    client.get(f"/v1/assignments/{first.id}", headers=auth(token))
    client.get(f"/v1/assignments/{second.id}", headers=auth(token))

    assert _requests("GET", template, "200") - before == 2
    assert _requests("GET", f"/v1/assignments/{first.id}", "200") == 0


def test_error_status_is_labelled(client: TestClient, token: str) -> None:
    template = "/v1/assignments/{assignment_id}"
    before = _requests("GET", template, "404")
    client.get(f"/v1/assignments/{uuid4()}", headers=auth(token))
    assert _requests("GET", template, "404") - before == 1


def test_unknown_path_is_unmatched(client: TestClient) -> None:
    before = _requests("GET", "unmatched", "404")
    client.get("/no/such/route")
    client.get("/another/missing/route")
    assert _requests("GET", "unmatched", "404") - before == 2


def test_metrics_endpoint_exposes_text_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "flow_snapshots_created_total" in resp.text


def test_scrapes_are_not_counted(client: TestClient) -> None:
    before = _requests("GET", "/metrics", "200")
    client.get("/metrics")
    client.get("/metrics")
    assert _requests("GET", "/metrics", "200") == before
