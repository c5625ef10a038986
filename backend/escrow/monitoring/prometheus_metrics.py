"""
Prometheus metrics for the escrow engine.

Service timings are fed by ``@BaseService.measure_operation``; the escrow
counters are recorded directly by the release worker, job scheduler and
outbox relay.
"""

from typing import Optional, cast

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "escrow_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "escrow_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "escrow_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

payment_release_total = Counter(
    "escrow_payment_release_total",
    "Payment release attempts by outcome",
    ["outcome"],  # released | blocked | already_released | nothing_to_release
    registry=REGISTRY,
)

scheduled_job_failures_total = Counter(
    "escrow_scheduled_job_failures_total",
    "Scheduled jobs that failed",
    ["type"],
    registry=REGISTRY,
)

scheduled_jobs_dead = Gauge(
    "escrow_scheduled_jobs_dead",
    "Scheduled jobs currently parked in the dead state",
    registry=REGISTRY,
)

outbox_events_total = Counter(
    "escrow_outbox_events_total",
    "Outbox events by delivery status",
    ["status", "event_type"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'SessionService')
            operation: Operation name (e.g., 'session.book')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_release(outcome: str) -> None:
        payment_release_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_job_failure(job_type: str) -> None:
        scheduled_job_failures_total.labels(type=job_type).inc()

    @staticmethod
    def set_dead_jobs(count: int) -> None:
        scheduled_jobs_dead.set(count)

    @staticmethod
    def record_outbox_outcome(event_type: str, status: str) -> None:
        outbox_events_total.labels(status=status, event_type=event_type).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))


# Singleton instance
prometheus_metrics = PrometheusMetrics()
