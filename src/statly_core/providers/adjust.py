"""Adjust report-service adapter (daily KPIs, yesterday through today)."""
from datetime import date, timedelta
from typing import Mapping

from .base import ProviderAdapter, ProviderPayload


REPORT_URL = "https://dash.adjust.com/control-center/reports-service/report"

KPI_FIELDS = ("installs", "clicks", "impressions", "sessions", "revenue", "cost")


class AdjustAdapter(ProviderAdapter):
    """Bearer-token adapter for Adjust KPIs."""

    provider = "adjust"
    required_fields = ("api_token", "app_token")

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        start = metric_date - timedelta(days=1)
        headers = {
            "Authorization": f"Bearer {credentials['api_token'].strip()}",
            "Accept": "application/json",
        }
        params = {
            "app_token__in": credentials["app_token"].strip(),
            "date_period": f"{start.isoformat()}:{metric_date.isoformat()}",
            "dimensions": "day",
            "metrics": ",".join(KPI_FIELDS),
        }

        data = await self._get_json(REPORT_URL, headers, params, endpoint="KPI report")
        rows = data.get("rows") or []

        day = metric_date.isoformat()
        today_row = next((row for row in rows if row.get("day") == day), None)
        if today_row is None:
            today_row = rows[0] if rows else {}

        return ProviderPayload(
            metrics={name: today_row.get(name) or 0 for name in KPI_FIELDS},
            metadata={"rows": len(rows), "row_day": today_row.get("day")},
            raw=data,
        )
