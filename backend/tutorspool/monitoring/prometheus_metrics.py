"""
Prometheus metrics for the TutorsPool booking core.

Service timings are fed by ``@BaseService.measure_operation``; the domain
counters below are incremented by the booking, reconciliation and meeting
provisioning services. Everything lives in a dedicated registry so tests
and the API process never collide with the default global registry.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorspool_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorspool_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorspool_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_requests_total = Counter(
    "tutorspool_booking_requests_total",
    "Booking requests by decision",
    ["decision"],  # accepted | rejection reason code
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "tutorspool_booking_transitions_total",
    "Applied booking status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

illegal_transitions_total = Counter(
    "tutorspool_illegal_transitions_total",
    "Refused booking status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

payment_reconciliations_total = Counter(
    "tutorspool_payment_reconciliations_total",
    "Payment gateway events by reconciliation outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

meeting_provisioning_total = Counter(
    "tutorspool_meeting_provisioning_total",
    "Meeting link provisioning attempts",
    ["status"],  # success | error
    registry=REGISTRY,
)

meeting_provisioning_seconds = Histogram(
    "tutorspool_meeting_provisioning_seconds",
    "Meeting provider call duration in seconds",
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class PrometheusMetrics:
    """Thin facade over the module-level collectors."""

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
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'request_booking')
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
    def inc_booking_request(decision: str) -> None:
        booking_requests_total.labels(decision=decision).inc()

    @staticmethod
    def inc_transition(from_status: str, to_status: str) -> None:
        booking_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def inc_illegal_transition(from_status: str, to_status: str) -> None:
        illegal_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def inc_reconciliation(event_type: str, outcome: str) -> None:
        payment_reconciliations_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_meeting_provisioning(status: str, duration: float) -> None:
        meeting_provisioning_total.labels(status=status).inc()
        meeting_provisioning_seconds.observe(max(duration, 0.0))

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
