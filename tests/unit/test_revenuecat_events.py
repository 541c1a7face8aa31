"""Unit tests for RevenueCat webhook counters."""
from datetime import date

from src.statly_core.metrics.events import apply_revenuecat_event, event_price


DAY = date(2024, 6, 1)


def test_no_connected_apps(store):
    """With no RevenueCat apps the webhook is acknowledged only."""
    result = apply_revenuecat_event(store, {"event": {"type": "RENEWAL"}}, DAY)

    assert result == {"success": True, "message": "No connected apps"}


def test_initial_purchase_updates_revenue_and_downloads(store, connected_app):
    """A purchase adds its price to revenue and mrr, and one download."""
    body = {"event": {"type": "INITIAL_PURCHASE", "price": 9.99}}

    result = apply_revenuecat_event(store, body, DAY)

    assert result == {"success": True, "event_type": "INITIAL_PURCHASE"}
    assert store.get_metric_value(connected_app.id, "revenuecat", "revenue", DAY) == 9.99
    assert store.get_metric_value(connected_app.id, "revenuecat", "mrr", DAY) == 9.99
    assert store.get_metric_value(connected_app.id, "revenuecat", "downloads", DAY) == 1
    assert store.get_app(connected_app.id).last_sync_at is not None


def test_deliveries_accumulate(store, connected_app):
    """Counters add up across deliveries for the same day."""
    store.upsert_metric(connected_app.id, "revenuecat", "revenue", 100.0, DAY)

    apply_revenuecat_event(store, {"event": {"type": "RENEWAL", "price": 5}}, DAY)
    apply_revenuecat_event(
        store, {"type": "RENEWAL", "price_in_purchased_currency": 2.5}, DAY
    )

    assert store.get_metric_value(connected_app.id, "revenuecat", "revenue", DAY) == 107.5
    assert store.get_metric_value(connected_app.id, "revenuecat", "downloads", DAY) is None


def test_alias_counts_download_only(store, connected_app):
    """SUBSCRIBER_ALIAS is a new customer without revenue."""
    apply_revenuecat_event(store, {"event": {"type": "SUBSCRIBER_ALIAS"}}, DAY)

    assert store.get_metric_value(connected_app.id, "revenuecat", "downloads", DAY) == 1
    assert store.get_metric_value(connected_app.id, "revenuecat", "revenue", DAY) is None


def test_other_events_leave_app_untouched(store, connected_app):
    """Unrelated events change no counters and do not bump last_sync_at."""
    result = apply_revenuecat_event(store, {"event": {"type": "CANCELLATION"}}, DAY)

    assert result["event_type"] == "CANCELLATION"
    assert store.get_metrics([connected_app.id], DAY, DAY) == []
    assert store.get_app(connected_app.id).last_sync_at is None


def test_event_price():
    """Price falls back to the purchased-currency price and tolerates junk."""
    assert event_price({"price": 0, "price_in_purchased_currency": 3}) == 3.0
    assert event_price({"price": "bad"}) == 0.0
    assert event_price({}) == 0.0
