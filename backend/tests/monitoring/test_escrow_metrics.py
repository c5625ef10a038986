"""Escrow counters show up in the Prometheus exposition output."""

from unittest.mock import Mock

import pytest

from escrow.monitoring.prometheus_metrics import (
    REGISTRY,
    payment_release_total,
    prometheus_metrics,
)
from escrow.services.base import BaseService


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestEscrowMetrics:
    def test_release_outcomes_are_counted(self):
        before = _sample("escrow_payment_release_total", {"outcome": "blocked"})
        prometheus_metrics.record_release("blocked")
        assert _sample("escrow_payment_release_total", {"outcome": "blocked"}) == before + 1

    def test_dead_job_gauge(self):
        prometheus_metrics.set_dead_jobs(3)
        assert _sample("escrow_scheduled_jobs_dead") == 3

    def test_job_failures_and_outbox(self):
        before = _sample("escrow_scheduled_job_failures_total", {"type": "payment_release"})
        prometheus_metrics.record_job_failure("payment_release")
        prometheus_metrics.record_outbox_outcome("payment_released", "sent")

        assert (
            _sample("escrow_scheduled_job_failures_total", {"type": "payment_release"})
            == before + 1
        )
        assert _sample(
            "escrow_outbox_events_total", {"status": "sent", "event_type": "payment_released"}
        ) >= 1

    def test_exposition_format(self):
        payment_release_total.labels(outcome="released").inc()
        output = prometheus_metrics.get_metrics().decode("utf-8")
        assert "# TYPE escrow_payment_release_total counter" in output
        assert 'escrow_payment_release_total{outcome="released"}' in output

    def test_measure_operation_records_errors(self):
        class FlakyService(BaseService):
            @BaseService.measure_operation("flaky.fail")
            def fail(self):
                raise RuntimeError("boom")

        labels = {"service": "FlakyService", "operation": "flaky.fail", "error_type": "RuntimeError"}
        before = _sample("escrow_errors_total", labels)
        service = FlakyService(Mock())
        with pytest.raises(RuntimeError):
            service.fail()
        assert _sample("escrow_errors_total", labels) == before + 1
        assert service.get_metrics()["flaky.fail"]["failure_count"] >= 1
