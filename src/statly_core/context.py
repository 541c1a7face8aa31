"""Application-scoped services with an explicit lifecycle.

The FastAPI lifespan and the CLI each build one ServiceContext, configure it
on startup and close it on shutdown. Nothing here is a module-level global.
"""
import logging
import os
import sqlite3
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

import aiohttp
from redis.asyncio import Redis

from .credentials.cipher import CredentialCipher
from .credentials.service import CredentialService
from .credentials.validator import CredentialValidator
from .metrics.archive import RawPayloadArchive
from .metrics.orchestrator import SyncOrchestrator, resolve_timezone
from .metrics.schema import connect, init_database
from .metrics.store import MetricStore
from .providers.appstore_auth import AppStoreTokenCache
from .providers.revenuecat import RevenueCatLimits


logger = logging.getLogger(__name__)


class ContextState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    FAILED = "failed"


@dataclass(frozen=True)
class Settings:
    """Environment-derived configuration."""

    db_path: Path
    raw_dir: Optional[Path]
    timezone: str
    redis_url: Optional[str]
    encryption_key: Optional[str]
    http_timeout: float
    sync_on_store: bool
    revenuecat_limits: RevenueCatLimits

    @classmethod
    def from_env(cls) -> "Settings":
        raw_dir = os.getenv("STATLY_RAW_DIR")
        return cls(
            db_path=Path(os.getenv("STATLY_DB_PATH", "data/statly.db")),
            raw_dir=Path(raw_dir) if raw_dir else None,
            timezone=os.getenv("STATLY_TIMEZONE", "UTC"),
            redis_url=os.getenv("REDIS_URL") or None,
            encryption_key=os.getenv("CREDENTIALS_ENCRYPTION_KEY") or None,
            http_timeout=float(os.getenv("STATLY_HTTP_TIMEOUT", "10")),
            sync_on_store=os.getenv("STATLY_SYNC_ON_STORE", "true").lower()
            in ("1", "true", "yes"),
            revenuecat_limits=RevenueCatLimits.from_env(),
        )


class ServiceContext:
    """Owns the HTTP session, Redis client, cipher and database path."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings.from_env()
        self.state = ContextState.UNINITIALIZED
        self.tzinfo: ZoneInfo = ZoneInfo("UTC")
        self._session: Optional[aiohttp.ClientSession] = None
        self._redis: Optional[Redis] = None
        self._cipher: Optional[CredentialCipher] = None
        self._token_cache: Optional[AppStoreTokenCache] = None
        self._archive: Optional[RawPayloadArchive] = None

    async def configure(self) -> "ServiceContext":
        """Create shared resources and the database schema.

        Raises:
            Exception: Whatever setup raised; state is FAILED afterwards
        """
        if self.state is ContextState.CONFIGURED:
            return self

        settings = self.settings
        try:
            init_database(settings.db_path)
            self.tzinfo = resolve_timezone(settings.timezone)

            if settings.encryption_key:
                self._cipher = CredentialCipher(settings.encryption_key)
            else:
                logger.warning(
                    "CREDENTIALS_ENCRYPTION_KEY not set; credential intake disabled"
                )

            if settings.redis_url:
                self._redis = Redis.from_url(settings.redis_url, decode_responses=False)
            self._token_cache = AppStoreTokenCache(self._redis)

            if settings.raw_dir is not None:
                self._archive = RawPayloadArchive(settings.raw_dir)

            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.http_timeout)
            )
        except Exception:
            self.state = ContextState.FAILED
            logger.error("Service context setup failed", exc_info=True)
            await self.close()
            raise

        self.state = ContextState.CONFIGURED
        logger.info("Service context configured (database: %s)", settings.db_path)
        return self

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self.state is ContextState.CONFIGURED:
            self.state = ContextState.UNINITIALIZED

    def _require_configured(self) -> None:
        if self.state is not ContextState.CONFIGURED:
            raise RuntimeError(f"Service context is {self.state.value}, not configured")

    @property
    def session(self) -> aiohttp.ClientSession:
        self._require_configured()
        assert self._session is not None
        return self._session

    def open_db(self) -> sqlite3.Connection:
        self._require_configured()
        return connect(self.settings.db_path)

    def credential_service(self, store: MetricStore) -> CredentialService:
        validator = CredentialValidator(self.session, timeout=self.settings.http_timeout)
        return CredentialService(store, validator, self._cipher)

    def orchestrator(self, store: MetricStore) -> SyncOrchestrator:
        return SyncOrchestrator(
            store=store,
            session=self.session,
            credentials=self.credential_service(store),
            token_cache=self._token_cache,
            archive=self._archive,
            revenuecat_limits=self.settings.revenuecat_limits,
            timeout=self.settings.http_timeout,
            tzinfo=self.tzinfo,
        )
