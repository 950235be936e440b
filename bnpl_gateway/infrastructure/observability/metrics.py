"""Prometheus metrics for order volume, webhook reconciliation and provider health"""

from prometheus_client import Counter, Histogram

# Order metrics
orders_created_counter = Counter(
    "bnpl_orders_created_total",
    "Orders created",
    ["payment_type", "mandate_source"],  # installment | single ; provider | synthesized | none
)

# Webhook metrics
webhook_events_counter = Counter(
    "bnpl_webhook_events_total",
    "Inbound payment webhooks by reconciliation outcome",
    ["outcome"],  # processed | duplicate | ignored | failover_pending | unauthorized | malformed | not_found
)

failover_counter = Counter(
    "bnpl_mandate_failovers_total",
    "Failed mandates by failover result",
    ["result"],  # replaced | no_backup | provider_error | settled
)

# Provider API metrics
provider_latency_histogram = Histogram(
    "bnpl_provider_latency_seconds",
    "Mandate provider response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

provider_failure_counter = Counter(
    "bnpl_provider_failures_total",
    "Failed mandate provider calls",
    ["operation"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_order_created(is_recurring: bool, mandate_source: str) -> None:
    """Record order volume split by payment type and where the mandate came from"""
    payment_type = "installment" if is_recurring else "single"
    orders_created_counter.labels(payment_type=payment_type, mandate_source=mandate_source).inc()


def record_webhook(outcome: str) -> None:
    webhook_events_counter.labels(outcome=outcome).inc()
