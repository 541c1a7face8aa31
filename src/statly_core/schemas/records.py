"""Pydantic models for persisted rows."""
import json
import sqlite3
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class ConnectedApp(BaseModel):
    """One provider credential binding for one user's app."""

    id: str = Field(..., description="Connected app id (UUID)")
    user_id: str = Field(..., description="Owning user id")
    provider: str = Field(..., description="Provider identifier, e.g. 'revenuecat'")
    credentials: dict[str, str] = Field(
        default_factory=dict,
        description="Stored credential bundle (sensitive fields encrypted when is_encrypted)",
    )
    credentials_masked: dict[str, str] = Field(
        default_factory=dict, description="Display-safe credential copy"
    )
    external_app_id: str = Field("", description="Provider-side app/project id")
    is_active: bool = True
    is_encrypted: bool = False
    created_at: str
    last_sync_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ConnectedApp":
        """Build from a connected_apps row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            provider=row["provider"],
            credentials=json.loads(row["credentials_json"] or "{}"),
            credentials_masked=json.loads(row["credentials_masked_json"] or "{}"),
            external_app_id=row["external_app_id"] or "",
            is_active=bool(row["is_active"]),
            is_encrypted=bool(row["is_encrypted"]),
            created_at=row["created_at"],
            last_sync_at=row["last_sync_at"],
        )

    def masked(self) -> "MaskedConnectedApp":
        """Public view: never carries the raw bundle."""
        return MaskedConnectedApp(
            id=self.id,
            provider=self.provider,
            credentials_masked=self.credentials_masked,
            created_at=self.created_at,
            last_sync_at=self.last_sync_at,
        )


class MaskedConnectedApp(BaseModel):
    """Connected app as returned to clients."""

    id: str
    provider: str
    credentials_masked: dict[str, str] = Field(default_factory=dict)
    created_at: str
    last_sync_at: Optional[str] = None


class RealtimeMetric(BaseModel):
    """One (provider, metric type, day) observation for one app."""

    app_id: str
    provider: str
    metric_type: str
    metric_value: float
    metric_date: date
    metadata: Optional[dict] = None


class AnalyticsSnapshot(BaseModel):
    """Denormalized daily rollup per app."""

    app_id: str
    date: date
    downloads: float = 0.0
    revenue: float = 0.0
    active_users: float = 0.0
    ratings_count: float = 0.0
    average_rating: Optional[float] = None


class TrackingLink(BaseModel):
    """Stable slug mapped to a storefront URL."""

    id: str
    user_id: str
    app_slug: str
    app_name: Optional[str] = None
    app_store_url: Optional[str] = None
    created_at: str
    updated_at: str


class LinkClick(BaseModel):
    """Append-only click event."""

    id: str
    link_id: str
    source: str
    device_type: str
    country: Optional[str] = None
    city: Optional[str] = None
    fingerprint: str
    clicked_at: str


class InstallAttribution(BaseModel):
    """Install/purchase event joined to the click that preceded it."""

    id: str
    link_id: str
    click_id: Optional[str] = Field(None, description="Matched click; null means direct")
    source: str
    device_type: Optional[str] = None
    country: Optional[str] = None
    revenue: float = 0.0
    product_id: Optional[str] = None
    event_type: Optional[str] = None
    attributed_at: str
