"""Mixpanel adapter: profile total and today's event volume."""
import asyncio
import base64
from datetime import date, timedelta
from typing import Mapping

import aiohttp

from .base import ProviderAdapter, ProviderPayload
from .exceptions import ProviderError


ENGAGE_URL = "https://mixpanel.com/api/2.0/engage"
EVENTS_URL = "https://mixpanel.com/api/2.0/events"


class MixpanelAdapter(ProviderAdapter):
    """Basic-auth adapter (``api_secret:``) for the Mixpanel query API."""

    provider = "mixpanel"
    required_fields = ("api_secret", "project_id")

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        token = base64.b64encode(f"{credentials['api_secret'].strip()}:".encode()).decode()
        headers = {"Authorization": f"Basic {token}", "Accept": "application/json"}
        project_id = credentials["project_id"].strip()
        payload = ProviderPayload()
        failures: list[ProviderError] = []

        try:
            users = await self._get_json(
                ENGAGE_URL, headers, {"project_id": project_id}, endpoint="Engage"
            )
            payload.metrics["total_users"] = users.get("total") or 0
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            failures.append(exc if isinstance(exc, ProviderError) else ProviderError(str(exc)))
            payload.warnings.append(f"Engage: {exc}")

        day = metric_date.isoformat()
        params = {
            "project_id": project_id,
            "type": "general",
            "unit": "day",
            "from_date": (metric_date - timedelta(days=30)).isoformat(),
            "to_date": day,
        }
        try:
            events = await self._get_json(EVENTS_URL, headers, params, endpoint="Events")
            values = (events.get("data") or {}).get("values") or {}
            payload.metrics["events_today"] = sum(
                series.get(day) or 0 for series in values.values()
            )
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            failures.append(exc if isinstance(exc, ProviderError) else ProviderError(str(exc)))
            payload.warnings.append(f"Events: {exc}")

        if len(failures) == 2:
            raise failures[0]

        payload.raw = dict(payload.metrics)
        return payload
