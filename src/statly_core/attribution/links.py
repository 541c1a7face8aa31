"""Tracking links, the append-only click log and install attributions."""
import logging
import re
import secrets
import sqlite3
import string
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..metrics.store import format_timestamp
from ..schemas.records import InstallAttribution, LinkClick, TrackingLink


logger = logging.getLogger(__name__)

SLUG_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SLUG_SUFFIX_LENGTH = 4
USER_ID_SLUG_LENGTH = 8


def make_slug(user_id: str, app_name: Optional[str] = None) -> str:
    """Lowercase alphanumerics of the app name, else of the user id prefix."""
    slug = re.sub(r"[^a-z0-9]", "", (app_name or user_id[:USER_ID_SLUG_LENGTH]).lower())
    if not slug:
        slug = re.sub(r"[^a-z0-9]", "", user_id.lower())[:USER_ID_SLUG_LENGTH]
    return slug or "app"


def _slug_suffix() -> str:
    return "".join(secrets.choice(SLUG_SUFFIX_ALPHABET) for _ in range(SLUG_SUFFIX_LENGTH))


class LinkStore:
    """Row operations for tracking_links, link_clicks and install_attributions."""

    def __init__(self, db_conn: sqlite3.Connection) -> None:
        self.db_conn = db_conn

    # Tracking links

    def get_link_by_slug(self, slug: str) -> Optional[TrackingLink]:
        row = self.db_conn.execute(
            "SELECT * FROM tracking_links WHERE app_slug=?", (slug.lower(),)
        ).fetchone()
        return TrackingLink(**dict(row)) if row else None

    def get_link_for_user(self, user_id: str) -> Optional[TrackingLink]:
        row = self.db_conn.execute(
            "SELECT * FROM tracking_links WHERE user_id=?", (user_id,)
        ).fetchone()
        return TrackingLink(**dict(row)) if row else None

    def get_or_create_tracking_link(
        self,
        user_id: str,
        app_name: Optional[str] = None,
        app_store_url: Optional[str] = None,
    ) -> TrackingLink:
        """Return the user's link, creating it on first use.

        An existing link keeps its slug; only app name and store URL are
        refreshed when given. A slug collision is retried once with a random
        4-character suffix.
        """
        existing = self.get_link_for_user(user_id)
        if existing is not None:
            if not app_name and not app_store_url:
                return existing
            self.db_conn.execute(
                """
                UPDATE tracking_links
                SET app_name=?, app_store_url=?, updated_at=?
                WHERE id=?
                """,
                (
                    app_name or existing.app_name,
                    app_store_url or existing.app_store_url,
                    format_timestamp(),
                    existing.id,
                ),
            )
            self.db_conn.commit()
            return self.get_link_for_user(user_id) or existing

        slug = make_slug(user_id, app_name)
        try:
            return self._insert_link(user_id, slug, app_name, app_store_url)
        except sqlite3.IntegrityError:
            self.db_conn.rollback()
            logger.info("Slug %s taken, retrying with suffix", slug)
            return self._insert_link(user_id, slug + _slug_suffix(), app_name, app_store_url)

    def _insert_link(
        self,
        user_id: str,
        slug: str,
        app_name: Optional[str],
        app_store_url: Optional[str],
    ) -> TrackingLink:
        now = format_timestamp()
        link = TrackingLink(
            id=str(uuid.uuid4()),
            user_id=user_id,
            app_slug=slug,
            app_name=app_name,
            app_store_url=app_store_url,
            created_at=now,
            updated_at=now,
        )
        self.db_conn.execute(
            """
            INSERT INTO tracking_links (
                id, user_id, app_slug, app_name, app_store_url, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                link.id,
                link.user_id,
                link.app_slug,
                link.app_name,
                link.app_store_url,
                link.created_at,
                link.updated_at,
            ),
        )
        self.db_conn.commit()
        logger.info("Tracking link created: slug=%s user=%s", slug, user_id)
        return link

    # Clicks

    def record_click(
        self,
        link_id: str,
        source: str,
        device_type: str,
        fingerprint: str,
        country: Optional[str] = None,
        city: Optional[str] = None,
        clicked_at: Optional[datetime] = None,
    ) -> LinkClick:
        """Append one click; rows are never updated afterwards."""
        click = LinkClick(
            id=str(uuid.uuid4()),
            link_id=link_id,
            source=source,
            device_type=device_type,
            country=country,
            city=city,
            fingerprint=fingerprint,
            clicked_at=format_timestamp(clicked_at),
        )
        self.db_conn.execute(
            """
            INSERT INTO link_clicks (
                id, link_id, source, device_type, country, city, fingerprint, clicked_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                click.id,
                click.link_id,
                click.source,
                click.device_type,
                click.country,
                click.city,
                click.fingerprint,
                click.clicked_at,
            ),
        )
        self.db_conn.commit()
        return click

    def latest_click_since(self, link_id: str, since: datetime) -> Optional[LinkClick]:
        """Newest click for the link at or after ``since``."""
        row = self.db_conn.execute(
            """
            SELECT * FROM link_clicks
            WHERE link_id=? AND clicked_at >= ?
            ORDER BY clicked_at DESC
            LIMIT 1
            """,
            (link_id, format_timestamp(since)),
        ).fetchone()
        return LinkClick(**dict(row)) if row else None

    # Attributions

    def resolve_customer(self, app_user_id: str) -> Optional[str]:
        """Map a RevenueCat app_user_id to an internal user id."""
        row = self.db_conn.execute(
            "SELECT user_id FROM subscriptions WHERE revenuecat_customer_id=?",
            (app_user_id,),
        ).fetchone()
        return row["user_id"] if row else None

    def record_attribution(
        self,
        link_id: str,
        click: Optional[LinkClick],
        revenue: float,
        country: Optional[str] = None,
        product_id: Optional[str] = None,
        event_type: Optional[str] = None,
        attributed_at: Optional[datetime] = None,
    ) -> InstallAttribution:
        """Write one attribution; no click means source 'direct'."""
        attribution = InstallAttribution(
            id=str(uuid.uuid4()),
            link_id=link_id,
            click_id=click.id if click else None,
            source=click.source if click else "direct",
            device_type=click.device_type if click else None,
            country=country,
            revenue=revenue,
            product_id=product_id,
            event_type=event_type,
            attributed_at=format_timestamp(attributed_at),
        )
        self.db_conn.execute(
            """
            INSERT INTO install_attributions (
                id, link_id, click_id, source, device_type, country,
                revenue, product_id, event_type, attributed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attribution.id,
                attribution.link_id,
                attribution.click_id,
                attribution.source,
                attribution.device_type,
                attribution.country,
                attribution.revenue,
                attribution.product_id,
                attribution.event_type,
                attribution.attributed_at,
            ),
        )
        self.db_conn.commit()
        return attribution

    def list_attributions(self, link_id: str) -> list[InstallAttribution]:
        rows = self.db_conn.execute(
            "SELECT * FROM install_attributions WHERE link_id=? ORDER BY attributed_at",
            (link_id,),
        ).fetchall()
        return [InstallAttribution(**dict(row)) for row in rows]

    # Read side

    def attribution_stats(
        self,
        user_id: str,
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> list[dict]:
        """Clicks, installs and revenue per source, most clicks first."""
        link = self.get_link_for_user(user_id)
        if link is None:
            return []

        since = format_timestamp((now or datetime.now(timezone.utc)) - timedelta(days=days))
        stats: dict[str, dict] = {}

        def bucket(source: Optional[str]) -> dict:
            key = source or "direct"
            return stats.setdefault(
                key, {"source": key, "clicks": 0, "installs": 0, "revenue": 0.0}
            )

        for row in self.db_conn.execute(
            """
            SELECT source, COUNT(*) AS clicks FROM link_clicks
            WHERE link_id=? AND clicked_at >= ?
            GROUP BY source
            """,
            (link.id, since),
        ):
            bucket(row["source"])["clicks"] += row["clicks"]

        for row in self.db_conn.execute(
            """
            SELECT source, COUNT(*) AS installs, COALESCE(SUM(revenue), 0) AS revenue
            FROM install_attributions
            WHERE link_id=? AND attributed_at >= ?
            GROUP BY source
            """,
            (link.id, since),
        ):
            entry = bucket(row["source"])
            entry["installs"] += row["installs"]
            entry["revenue"] += float(row["revenue"])

        return sorted(stats.values(), key=lambda entry: entry["clicks"], reverse=True)


def attribution_totals(stats: list[dict]) -> dict[str, float]:
    """Sum per-source stats into dashboard totals."""
    return {
        "total_clicks": sum(entry["clicks"] for entry in stats),
        "total_installs": sum(entry["installs"] for entry in stats),
        "total_revenue": sum(entry["revenue"] for entry in stats),
    }
