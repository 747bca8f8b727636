"""Prometheus metric inventory for onboarding-service.

Every metric the service exports is declared here.  Modules import the
ones they own and increment/observe them where the state change
happens, so this file doubles as the list of things worth alerting on:

  - HTTP traffic (populated by MetricsMiddleware)
  - version activations and snapshot churn (authoring side)
  - assignment transitions and component completions (learner side)
  - optimistic-lock conflicts (a rising rate means hot rows)
  - maintenance queue depth (worker backlog)
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, route, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # Snapshot creation copies a whole flow tree, so the upper buckets matter
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

VERSION_ACTIVATIONS = Counter(
    "version_activations_total",
    "Versions switched to active, by entity kind",
    ["kind"],  # flow|step|component
)

SNAPSHOTS_CREATED = Counter(
    "flow_snapshots_created_total",
    "Flow snapshots written",
)

SNAPSHOTS_DELETED = Counter(
    "flow_snapshots_deleted_total",
    "Flow snapshots removed, by trigger",
    ["reason"],  # manual|cleanup
)

ASSIGNMENT_TRANSITIONS = Counter(
    "assignment_transitions_total",
    "Assignment status changes by transition name",
    ["transition"],  # assign|start|pause|resume|complete|cancel|feedback
)

COMPONENT_COMPLETIONS = Counter(
    "component_completions_total",
    "Component interactions by component type and outcome",
    ["component_type", "outcome"],  # outcome: completed|failed|repeat
)

CONCURRENCY_CONFLICTS = Counter(
    "concurrency_conflicts_total",
    "Optimistic-lock mismatches by aggregate",
    ["aggregate"],  # assignment|progress|version|snapshot
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # snapshot_cleanup
)
