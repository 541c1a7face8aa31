"""RevenueCat webhook counters.

Purchases add their price to today's revenue and mrr; new customers add one
to today's downloads. Every active RevenueCat app receives the deltas;
other event types are logged and leave counters and last_sync_at alone.
Increments are atomic in the store, so concurrent deliveries for the same
app/day cannot lose updates.
"""
import logging
from datetime import date
from typing import Any, Mapping

from .canonical import DOWNLOADS, MRR, REVENUE
from .store import MetricStore


logger = logging.getLogger(__name__)

PROVIDER = "revenuecat"
REVENUE_EVENTS = frozenset({"INITIAL_PURCHASE", "RENEWAL", "NON_RENEWING_PURCHASE"})
CUSTOMER_EVENTS = frozenset({"INITIAL_PURCHASE", "SUBSCRIBER_ALIAS"})


def event_price(event: Mapping[str, Any]) -> float:
    value = event.get("price") or event.get("price_in_purchased_currency") or 0
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def apply_revenuecat_event(
    store: MetricStore,
    body: Mapping[str, Any],
    metric_date: date,
) -> dict[str, Any]:
    """Apply one webhook body to every active RevenueCat app.

    Args:
        store: MetricStore
        body: Webhook JSON (flat, or wrapped in an ``event`` object)
        metric_date: Day the counters are stored under

    Returns:
        Response envelope with success and event_type
    """
    event = body.get("event") or body
    event_type = event.get("type")
    logger.info("RevenueCat webhook received: %s", event_type)

    apps = store.list_active_apps(provider=PROVIDER)
    if not apps:
        return {"success": True, "message": "No connected apps"}

    if event_type not in REVENUE_EVENTS | CUSTOMER_EVENTS:
        logger.debug("Ignoring RevenueCat event %s", event_type)
        return {"success": True, "event_type": event_type}

    price = event_price(event)
    for app in apps:
        if event_type in REVENUE_EVENTS:
            store.increment_metric(app.id, PROVIDER, REVENUE, price, metric_date)
            store.increment_metric(app.id, PROVIDER, MRR, price, metric_date)
        if event_type in CUSTOMER_EVENTS:
            store.increment_metric(app.id, PROVIDER, DOWNLOADS, 1, metric_date)
        store.touch_last_sync(app.id)

    logger.debug("Applied %s to %s RevenueCat apps", event_type, len(apps))
    return {"success": True, "event_type": event_type}
