"""Unit tests for the canonical metric vocabulary."""
from datetime import date

from src.statly_core.metrics.canonical import (
    MetricValue,
    aggregate_metrics,
    canonical_metric,
    fold_snapshot,
    normalize_metrics,
)


def test_provider_names_map_to_downloads():
    """installs and new_customers are both downloads."""
    assert canonical_metric("installs") == "downloads"
    assert canonical_metric("new_customers") == "downloads"
    assert canonical_metric("Installs ") == "downloads"
    assert canonical_metric("daily_active_users") == "active_users"


def test_unknown_names_pass_through():
    """Open vocabulary: unmapped names are kept (lowercased)."""
    assert canonical_metric("clicks") == "clicks"
    assert canonical_metric("Cost") == "cost"


def test_normalize_metrics_sums_aliases_and_drops_junk():
    """Aliases collapsing onto one type are summed; non-numeric values dropped."""
    result = normalize_metrics(
        {"installs": 3, "downloads": "2", "clicks": 10, "note": "n/a", "flag": True}
    )

    assert result == [MetricValue("downloads", 5.0), MetricValue("clicks", 10.0)]


def test_fold_snapshot_max_active_and_sum_downloads():
    """Downloads sum across providers; active users take the max."""
    totals = fold_snapshot(
        [
            ("downloads", 45),
            ("installs", 5),
            ("active_subscribers", 10),
            ("active_users", 7),
            ("revenue", 12.5),
            ("reviews_count", 4),
            ("average_rating", 4.5),
        ]
    )

    assert totals.downloads == 50
    assert totals.active_users == 10
    assert totals.revenue == 12.5
    assert totals.ratings_count == 4
    assert totals.average_rating == 4.5


def test_fold_snapshot_uses_mrr_when_no_revenue():
    """Without a revenue metric, daily revenue is mrr / 30."""
    totals = fold_snapshot([("mrr", 300.0)])

    assert totals.revenue == 10.0


def test_fold_snapshot_prefers_revenue_over_mrr():
    """A reported revenue wins over the mrr approximation."""
    totals = fold_snapshot([("mrr", 300.0), ("revenue", 0.0)])

    assert totals.revenue == 0.0


def test_aggregate_metrics_dashboard_totals():
    """Dashboard totals: revenue/mrr/downloads summed, active users maxed, rating last seen."""
    totals = aggregate_metrics(
        [
            ("revenue", 10),
            ("revenue", 5),
            ("new_customers", 3),
            ("installs", 2),
            ("mrr", 100),
            ("active_subscribers", 4),
            ("daily_active_users", 6),
            ("average_rating", 4.2),
        ]
    )

    assert totals["revenue"] == 15
    assert totals["downloads"] == 5
    assert totals["mrr"] == 100
    assert totals["active_users"] == 6
    assert totals["average_rating"] == 4.2


def test_aggregate_active_users_across_days_and_providers():
    """Active users take the max per day and report the latest day, never a sum."""
    day1, day2 = date(2024, 5, 1), date(2024, 5, 2)
    totals = aggregate_metrics(
        [
            ("active_subscribers", 10, day1),
            ("daily_active_users", 500, day1),
            ("active_subscribers", 12, day2),
            ("daily_active_users", 450, day2),
            ("revenue", 20, day1),
            ("revenue", 30, day2),
        ]
    )

    assert totals["active_users"] == 450
    assert totals["revenue"] == 50


def test_aggregate_active_users_same_day_repeats():
    """The same active count repeated on one day is not double counted."""
    totals = aggregate_metrics(
        [
            ("active_subscribers", 10),
            ("active_subscribers", 10),
            ("daily_active_users", 500),
        ]
    )

    assert totals["active_users"] == 500
