"""Prometheus metrics for the pricing service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter

# Exchange rates ---------------------------------------------------------------------------
EXCHANGE_RATE_UPDATES_TOTAL: Final = Counter(
    "pricing_exchange_rate_updates_total",
    "Exchange rates written through the back office.",
    labelnames=("currency",),
)

# Promotions -------------------------------------------------------------------------------
PROMOTION_REDEMPTIONS_TOTAL: Final = Counter(
    "pricing_promotion_redemptions_total",
    "Promotion usage changes by outcome.",
    labelnames=("outcome",),
)

PROMOTION_REJECTIONS_TOTAL: Final = Counter(
    "pricing_promotion_rejections_total",
    "Promotions that were looked up but could not be applied.",
    labelnames=("reason",),
)

# Quotes -----------------------------------------------------------------------------------
QUOTES_TOTAL: Final = Counter(
    "pricing_quotes_total",
    "Quotes computed, split by whether every line could be converted.",
    labelnames=("rates",),
)
