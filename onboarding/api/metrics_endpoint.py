"""Prometheus scrape endpoint.

Serves the text exposition format, e.g.

  assignment_transitions_total{transition="complete"} 12.0
  http_requests_total{method="GET",endpoint="/v1/flows",status_code="200"} 40.0

Keep /metrics off the public ingress; it exposes request rates and the
shape of the API.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
