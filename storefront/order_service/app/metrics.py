"""Prometheus metrics for the order service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

CHECKOUTS_TOTAL: Final = Counter(
    "orders_checkouts_total",
    "Checkout attempts by outcome.",
    labelnames=("outcome",),
)

CHECKOUT_LATENCY_SECONDS: Final = Histogram(
    "orders_checkout_latency_seconds",
    "Time spent placing an order, including upstream calls.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

ORDER_STATUS_CHANGES_TOTAL: Final = Counter(
    "orders_status_changes_total",
    "Order status transitions applied by staff.",
    labelnames=("status",),
)
