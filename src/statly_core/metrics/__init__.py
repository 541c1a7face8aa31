"""Statly metrics layer.

Persists provider metrics to SQLite (data/statly.db):
- realtime_metrics: one row per (app, provider, metric_type, day)
- analytics_snapshots: one derived rollup per (app, day)

Raw provider payloads optionally go to JSONL audit logs.
"""
from .canonical import aggregate_metrics, fold_snapshot, normalize_metrics
from .schema import init_database
from .store import MetricStore

__all__ = [
    "MetricStore",
    "aggregate_metrics",
    "fold_snapshot",
    "init_database",
    "normalize_metrics",
]
