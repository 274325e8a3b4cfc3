"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

REQUEST_COUNTER = Counter(
	"blossom_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"blossom_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

POLICY_RPC = Counter(
	"blossom_policy_rpc_total",
	"Policy procedure invocations",
	["procedure", "result"],
)

CONVERSATION_ADMISSION = Counter(
	"blossom_conversation_admission_total",
	"Admission decisions for new conversations",
	["result"],
)

NUDGES_SENT = Counter(
	"blossom_nudges_sent_total",
	"Nudge notifications written",
	["kind"],
)

NUDGES_SKIPPED = Counter(
	"blossom_nudges_skipped_total",
	"Nudge candidates skipped",
	["kind", "reason"],
)

GHOSTING_RECORDED = Counter(
	"blossom_ghosting_recorded_total",
	"Ghosting events attributed to a silent participant",
)

TRUST_RECALCULATED = Counter(
	"blossom_trust_recalculated_total",
	"Trust signal recalculations",
	["result"],
)

JOB_RUNS = Counter(
	"blossom_job_runs_total",
	"Scheduled policy job invocations",
	["job", "result"],
)

REDUCED_VISIBILITY_USERS = Gauge(
	"blossom_reduced_visibility_users",
	"Users whose visibility score is below 1.0 at the last stats run",
)

GATE_FAIL_OPEN = Counter(
	"blossom_gate_fail_open_total",
	"Client policy checks that fell back to their default",
	["check"],
)

POSTGRES_UP = Gauge(
	"blossom_postgres_up",
	"Postgres reachability as seen by the readiness probe",
)

REDIS_UP = Gauge(
	"blossom_redis_up",
	"Redis reachability as seen by the readiness probe",
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_policy_rpc(procedure: str, result: str) -> None:
	POLICY_RPC.labels(procedure=procedure, result=result).inc()


def inc_admission(result: str) -> None:
	CONVERSATION_ADMISSION.labels(result=result).inc()


def inc_nudge_sent(kind: str) -> None:
	NUDGES_SENT.labels(kind=kind).inc()


def inc_nudge_skipped(kind: str, reason: str) -> None:
	NUDGES_SKIPPED.labels(kind=kind, reason=reason).inc()


def inc_ghosting_recorded(count: int = 1) -> None:
	if count > 0:
		GHOSTING_RECORDED.inc(count)


def inc_trust_recalculated(result: str = "ok") -> None:
	TRUST_RECALCULATED.labels(result=result).inc()


def inc_job_run(job: str, result: str) -> None:
	JOB_RUNS.labels(job=job, result=result).inc()


def set_reduced_visibility(count: int) -> None:
	REDUCED_VISIBILITY_USERS.set(count)


def inc_gate_fail_open(check: str) -> None:
	GATE_FAIL_OPEN.labels(check=check).inc()


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def render_latest() -> tuple[bytes, str]:
	return generate_latest(), CONTENT_TYPE_LATEST
