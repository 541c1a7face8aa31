"""App Store Connect adapter: daily sales summary and recent customer reviews."""
import asyncio
import gzip
from datetime import date, timedelta
from typing import Any, Mapping, Optional

import aiohttp

from .appstore_auth import AppStoreTokenCache
from .base import ProviderAdapter, ProviderPayload
from .exceptions import ProviderApiError, ProviderError


API_BASE = "https://api.appstoreconnect.apple.com/v1"

# Sales summary TSV columns (0-based)
UNITS_COLUMN = 7
PROCEEDS_COLUMN = 8
REVIEWS_PAGE_SIZE = 50


def decode_report(body: bytes) -> str:
    """Sales reports arrive gzip-compressed or as plain TSV."""
    if body[:2] == b"\x1f\x8b":
        body = gzip.decompress(body)
    return body.decode("utf-8", errors="replace")


def _number(value: str) -> float:
    try:
        return float(value.strip() or 0)
    except ValueError:
        return 0.0


def parse_sales_report(text: str) -> tuple[float, float, int]:
    """Sum units and proceeds from a SALES/SUMMARY report.

    Returns:
        (units, proceeds, rows) with the header line skipped
    """
    units = 0.0
    proceeds = 0.0
    rows = 0
    for line in text.splitlines()[1:]:
        columns = line.split("\t")
        if len(columns) <= UNITS_COLUMN:
            continue
        units += _number(columns[UNITS_COLUMN])
        if len(columns) > PROCEEDS_COLUMN:
            proceeds += _number(columns[PROCEEDS_COLUMN])
        rows += 1
    return units, proceeds, rows


def summarize_reviews(data: Mapping[str, Any]) -> tuple[Optional[float], int]:
    ratings = [
        review["attributes"]["rating"]
        for review in data.get("data") or []
        if isinstance((review.get("attributes") or {}).get("rating"), (int, float))
    ]
    if not ratings:
        return None, 0
    return round(sum(ratings) / len(ratings), 2), len(ratings)


class AppStoreConnectAdapter(ProviderAdapter):
    """JWT-authenticated adapter for App Store Connect."""

    provider = "appstore"
    required_fields = ("key_id", "issuer_id", "private_key", "app_id")

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_cache: Optional[AppStoreTokenCache] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(session, **kwargs)
        self.token_cache = token_cache or AppStoreTokenCache()

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        token = await self.token_cache.get_token(
            credentials["key_id"].strip(),
            credentials["issuer_id"].strip(),
            credentials["private_key"],
        )
        headers = {"Authorization": f"Bearer {token}"}
        payload = ProviderPayload()
        failures: list[ProviderError] = []

        vendor_number = str(credentials.get("vendor_number") or "").strip()
        if vendor_number:
            try:
                await self._collect_sales(headers, vendor_number, metric_date, payload)
            except ProviderApiError as exc:
                if exc.status == 404:
                    payload.warnings.append("Sales report not available yet")
                else:
                    failures.append(exc)
                    payload.warnings.append(f"Sales report: {exc}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                failures.append(ProviderError(str(exc)))
                payload.warnings.append(f"Sales report: {exc}")
        else:
            payload.warnings.append("No vendor_number configured; sales report skipped")

        try:
            await self._collect_reviews(headers, credentials["app_id"].strip(), payload)
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            failures.append(exc if isinstance(exc, ProviderError) else ProviderError(str(exc)))
            payload.warnings.append(f"Customer reviews: {exc}")

        if failures and not payload.metrics:
            raise failures[0]

        payload.raw = {"metrics": payload.metrics, "metadata": payload.metadata}
        return payload

    async def _collect_sales(
        self,
        headers: dict[str, str],
        vendor_number: str,
        metric_date: date,
        payload: ProviderPayload,
    ) -> None:
        report_date = (metric_date - timedelta(days=1)).isoformat()
        params = {
            "filter[reportType]": "SALES",
            "filter[reportSubType]": "SUMMARY",
            "filter[frequency]": "DAILY",
            "filter[reportDate]": report_date,
            "filter[vendorNumber]": vendor_number,
        }
        body = await self._get_body(
            f"{API_BASE}/salesReports",
            {**headers, "Accept": "application/a-gzip"},
            params,
            endpoint="Sales report",
        )
        units, proceeds, rows = parse_sales_report(decode_report(body))
        payload.metrics["downloads"] = units
        payload.metrics["revenue"] = proceeds
        payload.metadata["sales_report_date"] = report_date
        payload.metadata["sales_rows"] = rows

    async def _collect_reviews(
        self,
        headers: dict[str, str],
        app_id: str,
        payload: ProviderPayload,
    ) -> None:
        data = await self._get_json(
            f"{API_BASE}/apps/{app_id}/customerReviews",
            {**headers, "Accept": "application/json"},
            {"limit": str(REVIEWS_PAGE_SIZE), "sort": "-createdDate"},
            endpoint="Customer reviews",
        )
        average, count = summarize_reviews(data)
        payload.metrics["reviews_count"] = count
        if average is not None:
            payload.metrics["average_rating"] = average
