"""Canonical metric vocabulary shared by every adapter and the read side.

Providers name the same concept differently (AppsFlyer/Adjust ``installs``,
RevenueCat ``new_customers``). Adapters report their native names and
``normalize_metrics`` folds them into one vocabulary before anything is stored.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional


logger = logging.getLogger(__name__)


DOWNLOADS = "downloads"
REVENUE = "revenue"
MRR = "mrr"
ACTIVE_SUBSCRIBERS = "active_subscribers"
ACTIVE_USERS = "active_users"
AVERAGE_RATING = "average_rating"
REVIEWS_COUNT = "reviews_count"
CHURN_RATE = "churn_rate"

CANONICAL_ALIASES: dict[str, str] = {
    "installs": DOWNLOADS,
    "new_customers": DOWNLOADS,
    "daily_active_users": ACTIVE_USERS,
    "active_subscriptions": ACTIVE_SUBSCRIBERS,
}

# Metrics folded into the snapshot's active_users column (max wins).
ACTIVE_USER_TYPES = frozenset({ACTIVE_USERS, ACTIVE_SUBSCRIBERS})

# Daily revenue is approximated from MRR when a provider reports no revenue.
MRR_DAYS = 30


@dataclass(frozen=True)
class MetricValue:
    """One (metric_type, value) observation for a single day."""

    metric_type: str
    value: float


@dataclass
class SnapshotTotals:
    """Daily rollup written to analytics_snapshots."""

    downloads: float = 0.0
    revenue: float = 0.0
    active_users: float = 0.0
    ratings_count: float = 0.0
    average_rating: Optional[float] = None


def canonical_metric(metric_type: str) -> str:
    """Map a provider-native metric name onto the canonical vocabulary."""
    key = metric_type.strip().lower()
    return CANONICAL_ALIASES.get(key, key)


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_metrics(raw: Mapping[str, Any]) -> list[MetricValue]:
    """Normalize a provider's ``{native_name: value}`` map.

    Aliases that collapse onto the same canonical type are summed, since they
    count the same thing reported under different names. Non-numeric values
    are dropped with a warning.

    Args:
        raw: Provider-native metric names to values

    Returns:
        Canonical metrics in first-seen order
    """
    totals: dict[str, float] = {}
    for name, value in raw.items():
        number = _to_number(value)
        if number is None:
            logger.warning("Dropping non-numeric metric %s=%r", name, value)
            continue
        metric_type = canonical_metric(name)
        totals[metric_type] = totals.get(metric_type, 0.0) + number

    return [MetricValue(metric_type, value) for metric_type, value in totals.items()]


def fold_snapshot(metrics: Iterable[tuple[str, float]]) -> SnapshotTotals:
    """Fold one app-day of metrics (possibly from several providers).

    Args:
        metrics: (metric_type, value) pairs, canonical or native names

    Returns:
        SnapshotTotals for analytics_snapshots
    """
    totals = SnapshotTotals()
    revenue_seen = False
    mrr_total = 0.0

    for metric_type, value in metrics:
        kind = canonical_metric(metric_type)
        number = _to_number(value) or 0.0

        if kind == DOWNLOADS:
            totals.downloads += number
        elif kind == REVENUE:
            totals.revenue += number
            revenue_seen = True
        elif kind == MRR:
            mrr_total += number
        elif kind in ACTIVE_USER_TYPES:
            totals.active_users = max(totals.active_users, number)
        elif kind == REVIEWS_COUNT:
            totals.ratings_count += number
        elif kind == AVERAGE_RATING:
            totals.average_rating = number

    if not revenue_seen and mrr_total:
        totals.revenue = mrr_total / MRR_DAYS

    return totals


def aggregate_metrics(metrics: Iterable[tuple]) -> dict[str, float]:
    """Dashboard totals across every provider for a set of metric rows.

    Flows (revenue, mrr, downloads) are summed. Active users follow the
    snapshot rule: the max over providers within a day, reported for the
    latest day seen.

    Args:
        metrics: (metric_type, value) or (metric_type, value, day) tuples;
            rows without a day count as one day

    Returns:
        dict with revenue, mrr, downloads, active_users, churn_rate, average_rating
    """
    result = {
        REVENUE: 0.0,
        MRR: 0.0,
        DOWNLOADS: 0.0,
        ACTIVE_USERS: 0.0,
        CHURN_RATE: 0.0,
        AVERAGE_RATING: 0.0,
    }

    active_by_day: dict[Any, float] = {}

    for metric_type, value, *day in metrics:
        kind = canonical_metric(metric_type)
        number = _to_number(value) or 0.0

        if kind in (REVENUE, MRR, DOWNLOADS):
            result[kind] += number
        elif kind in ACTIVE_USER_TYPES:
            key = day[0] if day else None
            active_by_day[key] = max(active_by_day.get(key, 0.0), number)
        elif kind in (CHURN_RATE, AVERAGE_RATING):
            result[kind] = number

    if active_by_day:
        latest = max(active_by_day, key=lambda key: (key is not None, key or ""))
        result[ACTIVE_USERS] = active_by_day[latest]

    return result
