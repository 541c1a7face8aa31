"""SQLite schema definitions for the metrics store.

Database: data/statly.db (WAL mode)
Tables: connected_apps, realtime_metrics, analytics_snapshots, tracking_links,
link_clicks, install_attributions, subscriptions, sync_runs
"""
import logging
import sqlite3
from pathlib import Path


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection with the pragmas every caller relies on.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Connection with row factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_database(db_path: str | Path) -> None:
    """Initialize metrics database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Database schema up to date (version %s)", current_version)

    finally:
        conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS connected_apps (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            credentials_json TEXT NOT NULL,
            credentials_masked_json TEXT NOT NULL,
            external_app_id TEXT NOT NULL DEFAULT '',
            is_active INTEGER NOT NULL DEFAULT 1,
            is_encrypted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            last_sync_at TEXT
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_apps_user_active
        ON connected_apps(user_id, is_active)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS realtime_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL REFERENCES connected_apps(id) ON DELETE CASCADE,
            provider TEXT NOT NULL,
            metric_type TEXT NOT NULL,
            metric_value REAL NOT NULL,
            metric_date TEXT NOT NULL,
            metadata_json TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, provider, metric_type, metric_date)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_metrics_app_date
        ON realtime_metrics(app_id, metric_date)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS analytics_snapshots (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL REFERENCES connected_apps(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            downloads REAL NOT NULL DEFAULT 0,
            revenue REAL NOT NULL DEFAULT 0,
            active_users REAL NOT NULL DEFAULT 0,
            ratings_count REAL NOT NULL DEFAULT 0,
            average_rating REAL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, date)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tracking_links (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE,
            app_slug TEXT NOT NULL UNIQUE,
            app_name TEXT,
            app_store_url TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS link_clicks (
            id TEXT PRIMARY KEY,
            link_id TEXT NOT NULL REFERENCES tracking_links(id),
            source TEXT NOT NULL,
            device_type TEXT NOT NULL,
            country TEXT,
            city TEXT,
            fingerprint TEXT NOT NULL,
            clicked_at TEXT NOT NULL
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_clicks_link_time
        ON link_clicks(link_id, clicked_at)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS install_attributions (
            id TEXT PRIMARY KEY,
            link_id TEXT NOT NULL REFERENCES tracking_links(id),
            click_id TEXT,
            source TEXT NOT NULL,
            device_type TEXT,
            country TEXT,
            revenue REAL NOT NULL DEFAULT 0,
            product_id TEXT,
            event_type TEXT,
            attributed_at TEXT NOT NULL
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_attributions_link_time
        ON install_attributions(link_id, attributed_at)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS subscriptions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            revenuecat_customer_id TEXT NOT NULL UNIQUE,
            plan TEXT,
            status TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id TEXT NOT NULL REFERENCES connected_apps(id) ON DELETE CASCADE,
            provider TEXT NOT NULL,
            run_date TEXT NOT NULL,
            status TEXT NOT NULL,
            details TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(app_id, run_date)
        )
        """
    )
