"""AppsFlyer Pull API adapter (aggregate partners report, yesterday through today)."""
from datetime import date, timedelta
from typing import Any, Mapping

from .base import ProviderAdapter, ProviderPayload


REPORT_URL = "https://hq1.appsflyer.com/api/agg-data/export/app/{app_id}/partners_report/v5"

REPORT_FIELDS = ("installs", "clicks", "impressions", "cost", "revenue")


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class AppsFlyerAdapter(ProviderAdapter):
    """Bearer-token adapter for the AppsFlyer aggregate report."""

    provider = "appsflyer"
    required_fields = ("api_token", "app_id")

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        yesterday = metric_date - timedelta(days=1)
        headers = {
            "Authorization": f"Bearer {credentials['api_token'].strip()}",
            "Accept": "application/json",
        }
        params = {
            "from": yesterday.isoformat(),
            "to": metric_date.isoformat(),
            "timezone": "UTC",
        }

        data = await self._get_json(
            REPORT_URL.format(app_id=credentials["app_id"].strip()),
            headers,
            params,
            endpoint="Partners report",
        )

        # The report is either one totals object or one row per partner.
        rows = data if isinstance(data, list) else [data or {}]
        metrics = {name: 0.0 for name in REPORT_FIELDS}
        for row in rows:
            for name in REPORT_FIELDS:
                metrics[name] += _number(row.get(name))

        return ProviderPayload(
            metrics=metrics,
            metadata={"rows": len(rows), "from": params["from"], "to": params["to"]},
            raw=data,
        )
