"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram

log = logging.getLogger(__name__)


REQUEST_COUNTER = Counter(
	"clubride_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"clubride_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

AUTHZ_DECISIONS = Counter(
	"clubride_authz_decisions_total",
	"Authorization decisions by action and outcome",
	["action", "result"],
)

MEMBERSHIP_TRANSITIONS = Counter(
	"clubride_membership_transitions_total",
	"Committed membership lifecycle transitions",
	["transition"],
)

INVITATION_TRANSITIONS = Counter(
	"clubride_invitation_transitions_total",
	"Committed invitation lifecycle transitions",
	["transition"],
)

RIDE_JOINS = Counter(
	"clubride_ride_joins_total",
	"Ride join attempts by outcome",
	["outcome"],
)

PARTICIPATION_EXITS = Counter(
	"clubride_participation_exits_total",
	"Participations leaving a ride",
	["status"],
)

WAITLIST_PROMOTIONS = Counter(
	"clubride_waitlist_promotions_total",
	"Waitlisted participants promoted into confirmed seats",
)

WRITE_CONFLICTS = Counter(
	"clubride_write_conflicts_total",
	"Optimistic write conflicts observed by operation",
	["operation", "result"],
)

CAPACITY_DRIFT = Counter(
	"clubride_capacity_drift_repairs_total",
	"Ride counters repaired by the integrity job",
)

STREAM_PUBLISH_FAILURES = Counter(
	"clubride_stream_publish_failures_total",
	"Domain events that could not be written to redis streams",
	["stream"],
)

BACKGROUND_RUNS = Counter(
	"clubride_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"clubride_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)

REDIS_UP = Gauge("clubride_redis_up", "Redis availability (1=up,0=down)")
POSTGRES_UP = Gauge("clubride_postgres_up", "Postgres availability (1=up,0=down)")


def observe_request(route: str, method: str, status: int, duration_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(duration_seconds)


def inc_authz_decision(action: str, allowed: bool) -> None:
	AUTHZ_DECISIONS.labels(action=action, result="allow" if allowed else "deny").inc()


def inc_membership_transition(transition: str) -> None:
	MEMBERSHIP_TRANSITIONS.labels(transition=transition).inc()


def inc_invitation_transition(transition: str) -> None:
	INVITATION_TRANSITIONS.labels(transition=transition).inc()


def inc_ride_join(outcome: str) -> None:
	RIDE_JOINS.labels(outcome=outcome).inc()


def inc_participation_exit(status: str) -> None:
	PARTICIPATION_EXITS.labels(status=status).inc()


def inc_waitlist_promotions(count: int = 1) -> None:
	if count > 0:
		WAITLIST_PROMOTIONS.inc(count)


def inc_write_conflict(operation: str, *, exhausted: bool = False) -> None:
	WRITE_CONFLICTS.labels(operation=operation, result="exhausted" if exhausted else "retried").inc()


def inc_capacity_drift(count: int = 1) -> None:
	if count > 0:
		CAPACITY_DRIFT.inc(count)


def inc_stream_publish_failure(stream: str) -> None:
	STREAM_PUBLISH_FAILURES.labels(stream=stream).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)