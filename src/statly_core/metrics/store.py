"""Idempotent metric store over SQLite.

Conflict keys:
- realtime_metrics: (app_id, provider, metric_type, metric_date), last writer wins
- analytics_snapshots: (app_id, date), last writer wins

Sync never deletes a metric row; only disconnecting an app cascades.
"""
import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from ..schemas.records import AnalyticsSnapshot, ConnectedApp, RealtimeMetric
from .canonical import MetricValue


logger = logging.getLogger(__name__)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Fixed-width UTC timestamp so string order matches time order."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class MetricStore:
    """Table/row operations for connected apps, metrics and snapshots."""

    def __init__(self, db_conn: sqlite3.Connection) -> None:
        """Initialize store.

        Args:
            db_conn: SQLite connection (row_factory=sqlite3.Row)
        """
        self.db_conn = db_conn

    # Connected apps

    def create_app(
        self,
        user_id: str,
        provider: str,
        credentials: dict[str, str],
        credentials_masked: dict[str, str],
        external_app_id: str = "",
        is_encrypted: bool = False,
    ) -> ConnectedApp:
        """Insert a connected app and return it."""
        app_id = str(uuid.uuid4())
        self.db_conn.execute(
            """
            INSERT INTO connected_apps (
                id, user_id, provider, credentials_json, credentials_masked_json,
                external_app_id, is_active, is_encrypted, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
            """,
            (
                app_id,
                user_id,
                provider,
                json.dumps(credentials, separators=(",", ":")),
                json.dumps(credentials_masked, separators=(",", ":")),
                external_app_id,
                int(is_encrypted),
                format_timestamp(),
            ),
        )
        self.db_conn.commit()
        logger.info("Connected app created: id=%s provider=%s", app_id, provider)
        return self.get_app(app_id)

    def update_app_credentials(
        self,
        app_id: str,
        credentials: dict[str, str],
        credentials_masked: dict[str, str],
        is_encrypted: bool = False,
    ) -> Optional[ConnectedApp]:
        """Replace the credential bundle of an existing app."""
        cursor = self.db_conn.execute(
            """
            UPDATE connected_apps
            SET credentials_json=?, credentials_masked_json=?, is_encrypted=?
            WHERE id=?
            """,
            (
                json.dumps(credentials, separators=(",", ":")),
                json.dumps(credentials_masked, separators=(",", ":")),
                int(is_encrypted),
                app_id,
            ),
        )
        self.db_conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_app(app_id)

    def get_app(self, app_id: str) -> Optional[ConnectedApp]:
        row = self.db_conn.execute(
            "SELECT * FROM connected_apps WHERE id=?", (app_id,)
        ).fetchone()
        return ConnectedApp.from_row(row) if row else None

    def list_active_apps(
        self,
        user_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> list[ConnectedApp]:
        """Active connected apps, optionally filtered by owner and provider."""
        query = "SELECT * FROM connected_apps WHERE is_active=1"
        params: list[str] = []
        if user_id is not None:
            query += " AND user_id=?"
            params.append(user_id)
        if provider is not None:
            query += " AND provider=?"
            params.append(provider)
        query += " ORDER BY created_at"

        rows = self.db_conn.execute(query, params).fetchall()
        return [ConnectedApp.from_row(row) for row in rows]

    def touch_last_sync(self, app_id: str, at: Optional[datetime] = None) -> None:
        self.db_conn.execute(
            "UPDATE connected_apps SET last_sync_at=? WHERE id=?",
            (format_timestamp(at), app_id),
        )
        self.db_conn.commit()

    def disconnect_app(self, app_id: str) -> bool:
        """Delete an app; its metrics, snapshots and sync runs cascade."""
        cursor = self.db_conn.execute(
            "DELETE FROM connected_apps WHERE id=?", (app_id,)
        )
        self.db_conn.commit()
        if cursor.rowcount:
            logger.info("Connected app disconnected: id=%s", app_id)
        return cursor.rowcount > 0

    # Metrics

    def upsert_metric(
        self,
        app_id: str,
        provider: str,
        metric_type: str,
        value: float,
        metric_date: date,
        metadata: Optional[dict] = None,
    ) -> None:
        """Write one metric; replaces any value for the same 4-tuple."""
        self._upsert_metric_row(app_id, provider, metric_type, value, metric_date, metadata)
        self.db_conn.commit()

    def upsert_metrics(
        self,
        app_id: str,
        provider: str,
        metrics: Iterable[MetricValue],
        metric_date: date,
        metadata: Optional[dict] = None,
        replace_day: bool = False,
    ) -> int:
        """Write a batch of metrics in one transaction.

        Args:
            replace_day: Also delete this provider's other rows for the app-day,
                so the batch becomes the complete record for that day

        Returns:
            Number of rows written
        """
        written: list[str] = []
        try:
            for metric in metrics:
                self._upsert_metric_row(
                    app_id, provider, metric.metric_type, metric.value, metric_date, metadata
                )
                written.append(metric.metric_type)
            if replace_day:
                placeholders = ",".join("?" for _ in written)
                keep = f" AND metric_type NOT IN ({placeholders})" if written else ""
                self.db_conn.execute(
                    "DELETE FROM realtime_metrics"
                    " WHERE app_id=? AND provider=? AND metric_date=?" + keep,
                    (app_id, provider, metric_date.isoformat(), *written),
                )
            self.db_conn.commit()
        except sqlite3.Error as exc:
            self.db_conn.rollback()
            logger.error("SQLite write failed for %s metrics of app %s: %s", provider, app_id, exc)
            raise

        logger.debug("Persisted %s %s metrics for app %s", len(written), provider, app_id)
        return len(written)

    def _upsert_metric_row(
        self,
        app_id: str,
        provider: str,
        metric_type: str,
        value: float,
        metric_date: date,
        metadata: Optional[dict],
    ) -> None:
        self.db_conn.execute(
            """
            INSERT INTO realtime_metrics (
                app_id, provider, metric_type, metric_value, metric_date, metadata_json
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(app_id, provider, metric_type, metric_date)
            DO UPDATE SET
                metric_value=excluded.metric_value,
                metadata_json=excluded.metadata_json,
                updated_at=CURRENT_TIMESTAMP
            """,
            (
                app_id,
                provider,
                metric_type,
                float(value),
                metric_date.isoformat(),
                json.dumps(metadata, separators=(",", ":")) if metadata else None,
            ),
        )

    def increment_metric(
        self,
        app_id: str,
        provider: str,
        metric_type: str,
        delta: float,
        metric_date: date,
    ) -> float:
        """Atomically add ``delta`` to a metric, creating it at ``delta``.

        The addition happens inside the upsert statement, so concurrent
        webhook deliveries for the same app/day cannot lose an update.

        Returns:
            Value after the increment
        """
        rows = self.db_conn.execute(
            """
            INSERT INTO realtime_metrics (
                app_id, provider, metric_type, metric_value, metric_date
            )
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(app_id, provider, metric_type, metric_date)
            DO UPDATE SET
                metric_value=realtime_metrics.metric_value + excluded.metric_value,
                updated_at=CURRENT_TIMESTAMP
            RETURNING metric_value
            """,
            (app_id, provider, metric_type, float(delta), metric_date.isoformat()),
        ).fetchall()
        self.db_conn.commit()
        return float(rows[0][0])

    def get_metric_value(
        self,
        app_id: str,
        provider: str,
        metric_type: str,
        metric_date: date,
    ) -> Optional[float]:
        row = self.db_conn.execute(
            """
            SELECT metric_value FROM realtime_metrics
            WHERE app_id=? AND provider=? AND metric_type=? AND metric_date=?
            """,
            (app_id, provider, metric_type, metric_date.isoformat()),
        ).fetchone()
        return float(row[0]) if row else None

    def get_metrics(
        self,
        app_ids: list[str],
        start: date,
        end: date,
    ) -> list[RealtimeMetric]:
        """Metric rows for the given apps within [start, end]."""
        if not app_ids:
            return []

        placeholders = ",".join("?" for _ in app_ids)
        rows = self.db_conn.execute(
            f"""
            SELECT app_id, provider, metric_type, metric_value, metric_date, metadata_json
            FROM realtime_metrics
            WHERE app_id IN ({placeholders}) AND metric_date BETWEEN ? AND ?
            ORDER BY metric_date, app_id, provider, metric_type
            """,
            (*app_ids, start.isoformat(), end.isoformat()),
        ).fetchall()

        return [
            RealtimeMetric(
                app_id=row["app_id"],
                provider=row["provider"],
                metric_type=row["metric_type"],
                metric_value=row["metric_value"],
                metric_date=date.fromisoformat(row["metric_date"]),
                metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else None,
            )
            for row in rows
        ]

    def metrics_for_day(self, app_id: str, metric_date: date) -> list[tuple[str, float]]:
        """All providers' metrics for one app-day as (type, value) pairs."""
        rows = self.db_conn.execute(
            """
            SELECT metric_type, metric_value FROM realtime_metrics
            WHERE app_id=? AND metric_date=?
            """,
            (app_id, metric_date.isoformat()),
        ).fetchall()
        return [(row["metric_type"], row["metric_value"]) for row in rows]

    # Snapshots

    def upsert_snapshot(
        self,
        app_id: str,
        snapshot_date: date,
        downloads: float,
        revenue: float,
        active_users: float,
        ratings_count: float = 0.0,
        average_rating: Optional[float] = None,
    ) -> None:
        """Write the daily rollup; replaces any row for (app_id, date)."""
        self.db_conn.execute(
            """
            INSERT INTO analytics_snapshots (
                app_id, date, downloads, revenue, active_users,
                ratings_count, average_rating
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(app_id, date)
            DO UPDATE SET
                downloads=excluded.downloads,
                revenue=excluded.revenue,
                active_users=excluded.active_users,
                ratings_count=excluded.ratings_count,
                average_rating=excluded.average_rating,
                updated_at=CURRENT_TIMESTAMP
            """,
            (
                app_id,
                snapshot_date.isoformat(),
                downloads,
                revenue,
                active_users,
                ratings_count,
                average_rating,
            ),
        )
        self.db_conn.commit()

    def get_snapshots(self, app_id: str, start: date, end: date) -> list[AnalyticsSnapshot]:
        rows = self.db_conn.execute(
            """
            SELECT * FROM analytics_snapshots
            WHERE app_id=? AND date BETWEEN ? AND ?
            ORDER BY date
            """,
            (app_id, start.isoformat(), end.isoformat()),
        ).fetchall()
        return [
            AnalyticsSnapshot(
                app_id=row["app_id"],
                date=date.fromisoformat(row["date"]),
                downloads=row["downloads"],
                revenue=row["revenue"],
                active_users=row["active_users"],
                ratings_count=row["ratings_count"],
                average_rating=row["average_rating"],
            )
            for row in rows
        ]

    # Sync runs

    def record_sync_success(
        self,
        app_id: str,
        provider: str,
        run_date: date,
        details: Optional[str] = None,
    ) -> None:
        """Record successful sync run for an app-day."""
        self._record_sync(app_id, provider, run_date, "success", details)

    def record_sync_failure(
        self,
        app_id: str,
        provider: str,
        run_date: date,
        error: str,
    ) -> None:
        """Record failed sync run for an app-day."""
        self._record_sync(app_id, provider, run_date, "failed", error)

    def _record_sync(
        self,
        app_id: str,
        provider: str,
        run_date: date,
        status: str,
        details: Optional[str],
    ) -> None:
        self.db_conn.execute(
            """
            INSERT INTO sync_runs (app_id, provider, run_date, status, details)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(app_id, run_date)
            DO UPDATE SET
                status=excluded.status,
                details=excluded.details,
                updated_at=CURRENT_TIMESTAMP
            """,
            (app_id, provider, run_date.isoformat(), status, details),
        )
        self.db_conn.commit()

    def last_sync_status(self, app_id: str, run_date: date) -> Optional[str]:
        row = self.db_conn.execute(
            "SELECT status FROM sync_runs WHERE app_id=? AND run_date=?",
            (app_id, run_date.isoformat()),
        ).fetchone()
        return row["status"] if row else None
