"""Tests for the ingest metrics helpers."""

from stream_ingest import metrics


def sample(name, **labels):
    return metrics.REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetrics:
    def test_submitted_and_resubmitted(self):
        before = sample("ingest_records_submitted_total", table="metrics_t")
        before_resent = sample("ingest_records_resubmitted_total", table="metrics_t")
        metrics.record_submitted("metrics_t")
        metrics.record_submitted("metrics_t", resubmission=True)
        assert sample("ingest_records_submitted_total", table="metrics_t") == before + 2
        assert sample("ingest_records_resubmitted_total", table="metrics_t") == before_resent + 1

    def test_failed_by_kind(self):
        before = sample("ingest_records_failed_total", table="metrics_t", error_kind="AckTimeout")
        metrics.record_failed("metrics_t", "AckTimeout")
        assert (
            sample("ingest_records_failed_total", table="metrics_t", error_kind="AckTimeout")
            == before + 1
        )

    def test_session_state_gauge(self):
        metrics.update_session_state("metrics_t", "recovering")
        assert sample("ingest_session_state", table="metrics_t") == 2
        metrics.update_session_state("metrics_t", "bogus")
        assert sample("ingest_session_state", table="metrics_t") == -1

    def test_inflight_gauge(self):
        metrics.update_inflight("metrics_t", 7)
        assert sample("ingest_inflight_records", table="metrics_t") == 7

    def test_batch_status(self):
        metrics.record_batch("metrics_b", 0.2, succeeded=3, failed=1)
        metrics.record_batch("metrics_b", 0.1, succeeded=0, failed=2)
        assert sample(
            "ingest_batch_duration_seconds_count", table="metrics_b", status="partial"
        ) >= 1
        assert sample(
            "ingest_batch_duration_seconds_count", table="metrics_b", status="failed"
        ) >= 1
        assert sample("ingest_batch_items_total", table="metrics_b", outcome="failure") >= 3

    def test_metrics_not_in_default_registry(self):
        from prometheus_client import REGISTRY as DEFAULT_REGISTRY

        assert DEFAULT_REGISTRY.get_sample_value(
            "ingest_records_acked_total", {"table": "metrics_t"}
        ) is None
