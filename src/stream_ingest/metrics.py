"""
Prometheus metrics for the stream ingestor.

Focused on essential metrics:
- Record submission, acknowledgment and failure counts
- Stream recoveries and session state
- In-flight records
- Batch duration

Metrics live in a module registry so a warm container accumulates them
across invocations without touching the process-wide default registry.
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry(auto_describe=True)

# Session states as gauge values
SESSION_STATE_VALUES = {
    "uninitialized": 0,
    "active": 1,
    "recovering": 2,
    "closed": 3,
    "failed": 4,
}


# =============================================================================
# Core Metrics
# =============================================================================

records_submitted_counter = Counter(
    "ingest_records_submitted_total",
    "Total records transmitted to the table service (resubmissions included)",
    labelnames=["table"],
    registry=REGISTRY,
)

records_acked_counter = Counter(
    "ingest_records_acked_total",
    "Total records acknowledged by the table service",
    labelnames=["table"],
    registry=REGISTRY,
)

records_failed_counter = Counter(
    "ingest_records_failed_total",
    "Total records with a failed terminal outcome by error kind",
    labelnames=["table", "error_kind"],
    registry=REGISTRY,
)

records_resubmitted_counter = Counter(
    "ingest_records_resubmitted_total",
    "Total outstanding records re-sent after stream recovery",
    labelnames=["table"],
    registry=REGISTRY,
)

stream_recoveries_counter = Counter(
    "ingest_stream_recoveries_total",
    "Stream recovery attempts by result",
    labelnames=["table", "result"],
    registry=REGISTRY,
)

inflight_records_gauge = Gauge(
    "ingest_inflight_records",
    "Records admitted and not yet drained",
    labelnames=["table"],
    registry=REGISTRY,
)

session_state_gauge = Gauge(
    "ingest_session_state",
    "Stream session state (0=uninitialized 1=active 2=recovering 3=closed 4=failed)",
    labelnames=["table"],
    registry=REGISTRY,
)

batch_duration_seconds = Histogram(
    "ingest_batch_duration_seconds",
    "Time spent processing one invocation batch",
    labelnames=["table", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

batch_items_counter = Counter(
    "ingest_batch_items_total",
    "Batch items by final outcome",
    labelnames=["table", "outcome"],
    registry=REGISTRY,
)


# =============================================================================
# Convenience Functions
# =============================================================================


def record_submitted(table: str, resubmission: bool = False) -> None:
    """Record a transmitted record."""
    records_submitted_counter.labels(table=table).inc()
    if resubmission:
        records_resubmitted_counter.labels(table=table).inc()


def record_acked(table: str) -> None:
    records_acked_counter.labels(table=table).inc()


def record_failed(table: str, error_kind: str) -> None:
    """Record a failed terminal outcome."""
    records_failed_counter.labels(table=table, error_kind=error_kind).inc()


def record_recovery(table: str, success: bool) -> None:
    stream_recoveries_counter.labels(
        table=table, result="success" if success else "exhausted"
    ).inc()


def update_inflight(table: str, count: int) -> None:
    inflight_records_gauge.labels(table=table).set(count)


def update_session_state(table: str, state: str) -> None:
    """Update session state gauge from a state name."""
    session_state_gauge.labels(table=table).set(SESSION_STATE_VALUES.get(state, -1))


def record_batch(table: str, duration_seconds: float, succeeded: int, failed: int) -> None:
    """Record a finished batch."""
    status = "success" if failed == 0 else ("partial" if succeeded else "failed")
    batch_duration_seconds.labels(table=table, status=status).observe(duration_seconds)
    if succeeded:
        batch_items_counter.labels(table=table, outcome="success").inc(succeeded)
    if failed:
        batch_items_counter.labels(table=table, outcome="failure").inc(failed)


__all__ = [
    "REGISTRY",
    "records_submitted_counter",
    "records_acked_counter",
    "records_failed_counter",
    "records_resubmitted_counter",
    "stream_recoveries_counter",
    "inflight_records_gauge",
    "session_state_gauge",
    "batch_duration_seconds",
    "batch_items_counter",
    "record_submitted",
    "record_acked",
    "record_failed",
    "record_recovery",
    "update_inflight",
    "update_session_state",
    "record_batch",
]
