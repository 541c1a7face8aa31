"""Amplitude Dashboard REST adapter: DAU, average session length, day-1 retention."""
import asyncio
import base64
from datetime import date
from typing import Any, Callable, Mapping

import aiohttp

from .base import ProviderAdapter, ProviderPayload
from .exceptions import ProviderError


API_BASE = "https://amplitude.com/api/2"


def _first(values: Any, *indexes: int) -> Any:
    for index in indexes:
        if not isinstance(values, list) or len(values) <= index:
            return 0
        values = values[index]
    return values or 0


def _active_users(data: dict) -> Any:
    return _first((data.get("data") or {}).get("xValues"), 0)


def _session_length(data: dict) -> Any:
    return _first((data.get("data") or {}).get("seriesCollapsed"), 0, 0)


def _day1_retention(data: dict) -> Any:
    rows = data.get("data") or []
    if not rows or not isinstance(rows[0], dict):
        return 0
    return _first(rows[0].get("retentionPercents"), 1)


ENDPOINTS: tuple[tuple[str, str, Callable[[dict], Any]], ...] = (
    ("daily_active_users", "users/day", _active_users),
    ("avg_session_length", "sessions/average", _session_length),
    ("day1_retention", "retention", _day1_retention),
)


class AmplitudeAdapter(ProviderAdapter):
    """Basic-auth adapter (``api_key:secret_key``) for Amplitude."""

    provider = "amplitude"
    required_fields = ("api_key", "secret_key")

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        pair = f"{credentials['api_key'].strip()}:{credentials['secret_key'].strip()}"
        headers = {
            "Authorization": f"Basic {base64.b64encode(pair.encode()).decode()}",
            "Accept": "application/json",
        }
        day = metric_date.strftime("%Y%m%d")
        params = {"start": day, "end": day}
        payload = ProviderPayload()
        first_error: ProviderError | None = None

        for metric_type, path, extract in ENDPOINTS:
            try:
                data = await self._get_json(
                    f"{API_BASE}/{path}", headers, params, endpoint=path
                )
                payload.metrics[metric_type] = extract(data)
            except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if first_error is None:
                    first_error = (
                        exc if isinstance(exc, ProviderError) else ProviderError(str(exc))
                    )
                payload.warnings.append(f"{path}: {exc}")

        if not payload.metrics and first_error is not None:
            raise first_error

        payload.raw = dict(payload.metrics)
        return payload
