"""Provider adapter base class.

An adapter authenticates to one external API and turns its response into
canonical ``(metric_type, value)`` pairs for one day. ``sync()`` never raises:
any provider or network failure comes back as ``SyncResult.error`` so the
caller can carry on with the next provider.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Optional

import aiohttp

from ..metrics.archive import RawPayloadArchive
from ..metrics.canonical import MetricValue, normalize_metrics
from .exceptions import (
    MissingCredentialsError,
    ProviderApiError,
    ProviderAuthError,
    ProviderError,
)


DEFAULT_TIMEOUT_SECONDS = 10.0


def redact(text: str, secrets: Mapping[str, Any] | list[Optional[str]]) -> str:
    """Replace every secret value found in ``text`` with [REDACTED]."""
    if not text:
        return text
    values = secrets.values() if isinstance(secrets, Mapping) else secrets
    redacted = text
    for secret in values:
        if isinstance(secret, str) and len(secret) >= 4:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


@dataclass
class ProviderPayload:
    """What an adapter collected before normalization."""

    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: Any = None


@dataclass
class SyncResult:
    """Outcome of one adapter run."""

    provider: str
    app_id: str
    metric_date: date
    metrics: list[MetricValue] = field(default_factory=list)
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, float]:
        return {metric.metric_type: metric.value for metric in self.metrics}


class ProviderAdapter:
    """Base class for all provider adapters."""

    provider: str = ""
    required_fields: tuple[str, ...] = ()

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        archive: Optional[RawPayloadArchive] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize adapter.

        Args:
            session: Injected aiohttp ClientSession
            timeout: Total seconds per outbound request (no retries)
            archive: Optional raw payload archive
            logger: Optional logger instance
        """
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.archive = archive
        self.logger = logger or logging.getLogger(
            f"{__name__.rsplit('.', 1)[0]}.{self.provider or 'adapter'}"
        )

    async def sync(
        self,
        app_id: str,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> SyncResult:
        """Collect and normalize metrics for ``metric_date``.

        Args:
            app_id: Connected app id (for logs and archive)
            credentials: Raw (decrypted) credential bundle
            metric_date: Day the metrics are stored under

        Returns:
            SyncResult; ``error`` is set and ``metrics`` empty on failure
        """
        result = SyncResult(provider=self.provider, app_id=app_id, metric_date=metric_date)

        try:
            self.check_credentials(credentials)
            payload = await self._collect(credentials, metric_date)
        except ProviderError as exc:
            result.error = redact(str(exc), credentials)
            self.logger.warning(
                "%s sync failed for app %s: %s", self.provider, app_id, result.error
            )
            return result
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            result.error = redact(
                f"Network error: {exc.__class__.__name__}: {exc}", credentials
            )
            self.logger.warning(
                "%s sync failed for app %s: %s", self.provider, app_id, result.error
            )
            return result

        result.metrics = normalize_metrics(payload.metrics)
        result.warnings = [redact(warning, credentials) for warning in payload.warnings]
        result.metadata = payload.metadata

        if self.archive is not None and payload.raw is not None:
            await self.archive.append(self.provider, app_id, metric_date, payload.raw)

        self.logger.info(
            "%s sync for app %s produced %s metrics (%s warnings)",
            self.provider,
            app_id,
            len(result.metrics),
            len(result.warnings),
        )
        return result

    def check_credentials(self, credentials: Mapping[str, str]) -> None:
        """Raise MissingCredentialsError if a required field is blank."""
        missing = [
            name
            for name in self.required_fields
            if not str(credentials.get(name) or "").strip()
        ]
        if missing:
            raise MissingCredentialsError(self.provider, missing)

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        raise NotImplementedError

    async def _get_json(
        self,
        url: str,
        headers: dict[str, str],
        params: Optional[dict[str, str]] = None,
        endpoint: str = "",
    ) -> Any:
        """GET and decode JSON; non-2xx raises ProviderApiError."""
        async with self.session.get(
            url, headers=headers, params=params, timeout=self.timeout
        ) as response:
            if not 200 <= response.status < 300:
                await self._raise_for_status(response, endpoint or url)
            return await response.json(content_type=None)

    async def _get_body(
        self,
        url: str,
        headers: dict[str, str],
        params: Optional[dict[str, str]] = None,
        endpoint: str = "",
    ) -> bytes:
        """GET and return the raw body; non-2xx raises ProviderApiError."""
        async with self.session.get(
            url, headers=headers, params=params, timeout=self.timeout
        ) as response:
            if not 200 <= response.status < 300:
                await self._raise_for_status(response, endpoint or url)
            return await response.read()

    async def _raise_for_status(self, response: Any, endpoint: str) -> None:
        body = await response.text()
        self.logger.error(
            "%s API error (%s) at %s: %s",
            self.provider,
            response.status,
            endpoint,
            body[:500],
        )
        if response.status in (401, 403):
            raise ProviderAuthError(self.provider, response.status, body, endpoint)
        raise ProviderApiError(self.provider, response.status, body, endpoint)
