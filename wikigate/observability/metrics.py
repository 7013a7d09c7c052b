from __future__ import annotations

try:
    from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
except Exception as e:  # pragma: no cover
    raise RuntimeError("prometheus_client is required") from e


gate_decisions_total = Counter(
    "wikigate_gate_decisions_total",
    "Forward-auth decisions by policy domain and outcome.",
    labelnames=("domain", "outcome"),
)

gate_latency_ms = Histogram(
    "wikigate_gate_latency_ms",
    "Forward-auth check latency in milliseconds (token validation included).",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000),
)

task_streams_total = Counter(
    "wikigate_task_streams_total",
    "Followed task event streams by final outcome.",
    labelnames=("outcome",),
)

task_notifications_total = Counter(
    "wikigate_task_notifications_total",
    "Task event stream notifications by kind.",
    labelnames=("kind",),
)


def observe_gate(*, domain: str, outcome: str, duration_ms: float) -> None:
    gate_decisions_total.labels(domain=domain or "none", outcome=outcome).inc()
    if duration_ms >= 0:
        gate_latency_ms.observe(duration_ms)


def inc_task_stream(*, outcome: str) -> None:
    task_streams_total.labels(outcome=outcome).inc()


def inc_task_notification(*, kind: str) -> None:
    task_notifications_total.labels(kind=kind).inc()


def render_prometheus() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
