"""Sync orchestrator.

Runs every active connected app (optionally one user's) through the adapter
registered for its provider, persists the metrics, rebuilds the app's daily
snapshot and records the run. One app's failure is captured in its outcome
and never stops the others.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import aiohttp

from ..credentials.service import CredentialService
from ..providers import ADAPTERS, build_adapter
from ..providers.appstore_auth import AppStoreTokenCache
from ..providers.base import DEFAULT_TIMEOUT_SECONDS, SyncResult, redact
from ..providers.revenuecat import RevenueCatLimits
from ..schemas.records import ConnectedApp
from .archive import RawPayloadArchive
from .canonical import fold_snapshot
from .store import MetricStore


logger = logging.getLogger(__name__)

DEFAULT_APP_CONCURRENCY = 4


def resolve_timezone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid STATLY_TIMEZONE '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


@dataclass
class SyncOutcome:
    """Per-app result reported by sync_all."""

    provider: str
    app_id: str
    success: bool
    data: dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "provider": self.provider,
            "app_id": self.app_id,
            "success": self.success,
        }
        if self.success:
            body["data"] = self.data
            if self.warnings:
                body["warnings"] = self.warnings
        else:
            body["error"] = self.error
        return body


class SyncOrchestrator:
    """Dispatches connected apps to provider adapters."""

    def __init__(
        self,
        store: MetricStore,
        session: aiohttp.ClientSession,
        credentials: CredentialService,
        token_cache: Optional[AppStoreTokenCache] = None,
        archive: Optional[RawPayloadArchive] = None,
        revenuecat_limits: Optional[RevenueCatLimits] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        tzinfo: Optional[ZoneInfo] = None,
        app_concurrency: int = DEFAULT_APP_CONCURRENCY,
    ) -> None:
        """Initialize orchestrator.

        Args:
            store: MetricStore bound to the request's connection
            session: Shared aiohttp ClientSession
            credentials: Service that decrypts stored bundles
            token_cache: App Store Connect token cache
            archive: Optional raw payload archive
            revenuecat_limits: RevenueCat paging/fan-out caps
            timeout: Per-request timeout in seconds
            tzinfo: Zone that defines "today"
            app_concurrency: Apps synced in parallel
        """
        self.store = store
        self.session = session
        self.credentials = credentials
        self.token_cache = token_cache
        self.archive = archive
        self.revenuecat_limits = revenuecat_limits
        self.timeout = timeout
        self.tzinfo = tzinfo or ZoneInfo("UTC")
        self.app_concurrency = max(1, app_concurrency)

    def today(self) -> date:
        return datetime.now(self.tzinfo).date()

    async def sync_all(self, user_id: Optional[str] = None) -> list[SyncOutcome]:
        """Sync every active app, or only ``user_id``'s apps.

        Returns:
            One outcome per app, in connection order
        """
        apps = self.store.list_active_apps(user_id=user_id)
        metric_date = self.today()
        logger.info(
            "Starting sync of %s apps for %s (user=%s)",
            len(apps),
            metric_date.isoformat(),
            user_id or "*",
        )

        semaphore = asyncio.Semaphore(self.app_concurrency)

        async def run(app: ConnectedApp) -> SyncOutcome:
            async with semaphore:
                return await self.sync_app(app, metric_date)

        outcomes = list(await asyncio.gather(*(run(app) for app in apps)))

        failed = sum(1 for outcome in outcomes if not outcome.success)
        logger.info("Sync complete: %s ok, %s failed", len(outcomes) - failed, failed)
        return outcomes

    async def sync_app(
        self,
        app: ConnectedApp,
        metric_date: Optional[date] = None,
    ) -> SyncOutcome:
        """Sync one stored app using its stored (encrypted) credentials."""
        metric_date = metric_date or self.today()

        if app.provider not in ADAPTERS:
            error = f"Unsupported provider: {app.provider}"
            self.store.record_sync_failure(app.id, app.provider, metric_date, error)
            return SyncOutcome(app.provider, app.id, False, error=error)

        try:
            credentials = self.credentials.load_credentials(app)
        except Exception as exc:
            # Boundary: a bad stored bundle fails this app only.
            logger.error("Could not load credentials for app %s: %s", app.id, exc, exc_info=True)
            error = f"Could not load credentials: {exc}"
            self.store.record_sync_failure(app.id, app.provider, metric_date, error)
            return SyncOutcome(app.provider, app.id, False, error=error)

        return await self._run(app.provider, app.id, credentials, metric_date)

    async def sync_app_with_credentials(
        self,
        provider: str,
        app_id: str,
        credentials: Mapping[str, str],
        metric_date: Optional[date] = None,
    ) -> SyncOutcome:
        """Sync one app with a caller-supplied raw credential bundle.

        Raises:
            LookupError: If app_id is not a connected app
            ValueError: If provider has no adapter or does not match the app
        """
        if provider not in ADAPTERS:
            raise ValueError(f"Unsupported provider: {provider}")
        app = self.store.get_app(app_id)
        if app is None:
            raise LookupError(f"Connected app not found: {app_id}")
        if app.provider != provider:
            raise ValueError(f"App {app_id} is a {app.provider} app, not {provider}")

        return await self._run(provider, app_id, credentials, metric_date or self.today())

    async def _run(
        self,
        provider: str,
        app_id: str,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> SyncOutcome:
        try:
            adapter = build_adapter(
                provider,
                self.session,
                token_cache=self.token_cache,
                revenuecat_limits=self.revenuecat_limits,
                timeout=self.timeout,
                archive=self.archive,
            )
            result = await adapter.sync(app_id, credentials, metric_date)
            if not result.success:
                self.store.record_sync_failure(app_id, provider, metric_date, result.error or "")
                return SyncOutcome(provider, app_id, False, error=result.error)

            self._persist(result)
        except Exception as exc:
            # Boundary: anything unexpected fails this app only.
            error = redact(f"{exc.__class__.__name__}: {exc}", credentials)
            logger.error("Sync of %s app %s failed: %s", provider, app_id, error, exc_info=True)
            try:
                self.store.record_sync_failure(app_id, provider, metric_date, error)
            except Exception as record_exc:
                logger.error("Failed to record sync failure for app %s: %s", app_id, record_exc)
            return SyncOutcome(provider, app_id, False, error=error)

        return SyncOutcome(
            provider, app_id, True, data=result.as_dict(), warnings=result.warnings
        )

    def _persist(self, result: SyncResult) -> None:
        """Write metrics, rebuild the snapshot, stamp the app and the run."""
        written = self.store.upsert_metrics(
            result.app_id,
            result.provider,
            result.metrics,
            result.metric_date,
            metadata=result.metadata or None,
            replace_day=True,
        )

        totals = fold_snapshot(self.store.metrics_for_day(result.app_id, result.metric_date))
        self.store.upsert_snapshot(
            result.app_id,
            result.metric_date,
            downloads=totals.downloads,
            revenue=totals.revenue,
            active_users=totals.active_users,
            ratings_count=totals.ratings_count,
            average_rating=totals.average_rating,
        )

        self.store.touch_last_sync(result.app_id)
        details = f"Synced {written} metrics"
        if result.warnings:
            details += f" ({len(result.warnings)} warnings)"
        self.store.record_sync_success(
            result.app_id, result.provider, result.metric_date, details
        )
        logger.info("App %s (%s): %s", result.app_id, result.provider, details)
