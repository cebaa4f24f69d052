"""
Prometheus metrics for the booking lifecycle and settlement engine.

Service timings are fed by the @measure_operation decorator on BaseService;
domain counters are incremented by the services after their unit of work
commits.
"""

from typing import Optional, cast

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "home_services_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "home_services_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "home_services_service_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Domain-specific counters
booking_transitions_total = Counter(
    "home_services_booking_transitions_total",
    "Committed booking status transitions",
    ["action", "to_status"],
    registry=REGISTRY,
)

payouts_created_total = Counter(
    "home_services_payouts_created_total",
    "Payout batches created by the settlement engine",
    registry=REGISTRY,
)

payout_claim_conflicts_total = Counter(
    "home_services_payout_claim_conflicts_total",
    "Settlement runs that lost a claim race and were retried or abandoned",
    registry=REGISTRY,
)

notifications_dispatched_total = Counter(
    "home_services_notifications_dispatched_total",
    "Notification dispatch attempts by outcome",
    ["category", "status"],  # status: queued | failed | disabled
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
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'cancel_booking')
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
    def inc_booking_transition(action: str, to_status: str) -> None:
        booking_transitions_total.labels(action=action, to_status=to_status).inc()

    @staticmethod
    def inc_payout_created() -> None:
        payouts_created_total.inc()

    @staticmethod
    def inc_payout_claim_conflict() -> None:
        payout_claim_conflicts_total.inc()

    @staticmethod
    def inc_notification(category: str, status: str) -> None:
        notifications_dispatched_total.labels(category=category, status=status).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))


# Singleton instance
prometheus_metrics = PrometheusMetrics()
