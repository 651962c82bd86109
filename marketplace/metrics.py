"""
Prometheus metrics: orders created, status transitions applied and rejected,
compensating deletes on order creation.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders placed by buyers",
    ["delivery_mode"],
)
order_status_transitions_total = Counter(
    "order_status_transitions_total",
    "Total order status changes applied by farmers",
    ["from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total status changes rejected by the order lifecycle state machine",
    ["current_status", "requested_status"],
)
order_create_compensations_total = Counter(
    "order_create_compensations_total",
    "Total orders retracted because their line item could not be written",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
