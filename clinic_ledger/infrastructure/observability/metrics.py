"""Prometheus metrics for payments, delinquency and SMS gateway health"""

from typing import Optional

from prometheus_client import Counter, Gauge, Histogram

# Ledger metrics
payment_counter = Counter(
    "clinic_payments_recorded_total",
    "Payments recorded",
    ["kind", "status"],  # plan | one_time
)

overpayment_counter = Counter(
    "clinic_overpayments_total",
    "Plan payments that left a negative balance",
)

overdue_plans_gauge = Gauge(
    "clinic_overdue_plans",
    "Plans behind schedule at the last delinquency evaluation",
)

# Notification metrics
notification_counter = Counter(
    "clinic_notifications_total",
    "SMS notification outcomes",
    ["type", "outcome"],  # sent | failed | skipped
)

gateway_latency_histogram = Histogram(
    "sms_gateway_latency_seconds",
    "SMS gateway response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

gateway_failure_counter = Counter(
    "sms_gateway_failures_total",
    "Failed SMS gateway calls",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_payment(plan_id: Optional[str], status: str, balance_minor: Optional[int]) -> None:
    """Count payments by kind and flag overpayments for follow-up"""
    kind = "plan" if plan_id else "one_time"
    payment_counter.labels(kind=kind, status=status).inc()
    if balance_minor is not None and balance_minor < 0:
        overpayment_counter.inc()


def record_notification(notification_type: str, outcome: str, count: int = 1) -> None:
    notification_counter.labels(type=notification_type, outcome=outcome).inc(count)
