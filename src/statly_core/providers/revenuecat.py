"""RevenueCat v2 adapter.

Flow:
1. Resolve project id (credentials, else first project of the key)
2. Page through customers (hard caps on pages and customers)
3. Fan out subscription + purchase fetches for the first N customers with
   bounded concurrency (N+1 pattern, capped)
4. If revenue is still zero, fall back to the project metrics overview
"""
import asyncio
import os
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

import aiohttp

from .base import ProviderAdapter, ProviderPayload
from .exceptions import ProviderError
from .pricing import resolve_price


API_HOST = "https://api.revenuecat.com"
API_BASE = f"{API_HOST}/v2"


@dataclass(frozen=True)
class RevenueCatLimits:
    """Caps that bound worst-case latency and cost of one sync."""

    max_pages: int = 10
    max_customers: int = 1000
    detail_limit: int = 30
    detail_concurrency: int = 5
    page_size: int = 100

    @classmethod
    def from_env(cls) -> "RevenueCatLimits":
        return cls(
            max_pages=int(os.getenv("REVENUECAT_MAX_PAGES", "10")),
            max_customers=int(os.getenv("REVENUECAT_MAX_CUSTOMERS", "1000")),
            detail_limit=int(os.getenv("REVENUECAT_DETAIL_LIMIT", "30")),
            detail_concurrency=int(os.getenv("REVENUECAT_DETAIL_CONCURRENCY", "5")),
            page_size=int(os.getenv("REVENUECAT_PAGE_SIZE", "100")),
        )


@dataclass
class CustomerDetail:
    """Accumulated subscription/purchase facts for one customer."""

    customer_id: str
    active_subscriptions: int = 0
    revenue: float = 0.0
    estimated_prices: int = 0
    errors: list[str] = field(default_factory=list)


def _epoch_ms(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            return None
    return None


def is_subscription_active(subscription: Mapping[str, Any], now_ms: int) -> bool:
    """Any one signal is sufficient: gives_access, status, or unexpired period."""
    if subscription.get("gives_access") is True:
        return True
    if str(subscription.get("status") or "").lower() == "active":
        return True
    ends_at = _epoch_ms(
        subscription.get("current_period_ends_at") or subscription.get("expires_at")
    )
    return ends_at is not None and ends_at > now_ms


class RevenueCatAdapter(ProviderAdapter):
    """Async adapter for the RevenueCat v2 REST API."""

    provider = "revenuecat"
    required_fields = ("api_key",)

    def __init__(
        self,
        session: aiohttp.ClientSession,
        limits: Optional[RevenueCatLimits] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(session, **kwargs)
        self.limits = limits or RevenueCatLimits()

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def _collect(
        self,
        credentials: Mapping[str, str],
        metric_date: date,
    ) -> ProviderPayload:
        api_key = credentials["api_key"].strip()
        headers = self._headers(api_key)
        payload = ProviderPayload()

        project_id = (
            credentials.get("project_id") or credentials.get("app_id") or ""
        ).strip()
        if not project_id:
            project_id = await self.resolve_project_id(headers)

        customers, truncated = await self._list_customers(project_id, headers, payload)

        now_ms = int(time.time() * 1000)
        details = await self._fetch_details(
            project_id, customers[: self.limits.detail_limit], headers, now_ms
        )

        active = sum(detail.active_subscriptions for detail in details)
        revenue = sum(detail.revenue for detail in details)
        estimated = sum(detail.estimated_prices for detail in details)
        for detail in details:
            payload.warnings.extend(detail.errors)

        payload.metrics = {
            "new_customers": len(customers),
            "active_subscribers": active,
        }

        if revenue == 0:
            overview = await self._fetch_overview(project_id, headers, payload)
            revenue = float(overview.get("revenue") or 0.0)
            if "mrr" in overview:
                payload.metrics["mrr"] = overview["mrr"]

        if revenue or "mrr" not in payload.metrics:
            payload.metrics["revenue"] = revenue
        payload.metadata = {
            "project_id": project_id,
            "customers_scanned": len(customers),
            "customers_detailed": len(details),
            "customers_truncated": truncated,
            "estimated_prices": estimated,
        }
        payload.raw = {"metrics": payload.metrics, "metadata": payload.metadata}

        if estimated:
            self.logger.info(
                "RevenueCat project %s: %s prices estimated from product identifiers",
                project_id,
                estimated,
            )
        return payload

    async def resolve_project_id(self, headers: dict[str, str]) -> str:
        """Return the first project visible to the key."""
        data = await self._get_json(f"{API_BASE}/projects", headers, endpoint="Projects")
        projects = data.get("items") or []
        if not projects:
            raise ProviderError("No projects found")
        return str(projects[0]["id"])

    async def _list_customers(
        self,
        project_id: str,
        headers: dict[str, str],
        payload: ProviderPayload,
    ) -> tuple[list[dict], bool]:
        """Page through customers until exhausted or a cap is hit.

        Returns:
            (customers, truncated) where truncated means a cap stopped paging
        """
        url: Optional[str] = f"{API_BASE}/projects/{project_id}/customers"
        params: Optional[dict[str, str]] = {"limit": str(self.limits.page_size)}
        customers: list[dict] = []
        pages = 0

        while url:
            if pages >= self.limits.max_pages:
                return customers, True

            try:
                data = await self._get_json(url, headers, params, endpoint="Customers")
            except ProviderError as exc:
                if pages == 0:
                    raise
                payload.warnings.append(f"Customers page {pages + 1}: {exc}")
                break

            pages += 1
            customers.extend(data.get("items") or [])

            if len(customers) >= self.limits.max_customers:
                truncated = len(customers) > self.limits.max_customers or bool(
                    data.get("next_page")
                )
                return customers[: self.limits.max_customers], truncated

            next_page = data.get("next_page")
            if not next_page:
                break
            url = f"{API_HOST}{next_page}" if next_page.startswith("/") else next_page
            params = None

        self.logger.debug(
            "Fetched %s RevenueCat customers in %s pages", len(customers), pages
        )
        return customers, False

    async def _fetch_details(
        self,
        project_id: str,
        customers: list[dict],
        headers: dict[str, str],
        now_ms: int,
    ) -> list[CustomerDetail]:
        semaphore = asyncio.Semaphore(max(1, self.limits.detail_concurrency))

        async def worker(customer: dict) -> CustomerDetail:
            async with semaphore:
                return await self._customer_detail(
                    project_id, str(customer.get("id")), headers, now_ms
                )

        return list(await asyncio.gather(*(worker(customer) for customer in customers)))

    async def _customer_detail(
        self,
        project_id: str,
        customer_id: str,
        headers: dict[str, str],
        now_ms: int,
    ) -> CustomerDetail:
        detail = CustomerDetail(customer_id=customer_id)
        base = f"{API_BASE}/projects/{project_id}/customers/{customer_id}"

        try:
            subscriptions = await self._get_json(
                f"{base}/subscriptions", headers, endpoint="Subscriptions"
            )
            for subscription in subscriptions.get("items") or []:
                if not is_subscription_active(subscription, now_ms):
                    continue
                detail.active_subscriptions += 1
                price, estimated = resolve_price(subscription)
                detail.revenue += price
                detail.estimated_prices += int(estimated)
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            detail.errors.append(f"Subscriptions for {customer_id}: {exc}")

        try:
            purchases = await self._get_json(
                f"{base}/purchases", headers, endpoint="Purchases"
            )
            for purchase in purchases.get("items") or []:
                price, estimated = resolve_price(purchase)
                detail.revenue += price
                detail.estimated_prices += int(estimated)
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            detail.errors.append(f"Purchases for {customer_id}: {exc}")

        return detail

    async def _fetch_overview(
        self,
        project_id: str,
        headers: dict[str, str],
        payload: ProviderPayload,
    ) -> dict[str, float]:
        """Project-level overview metrics keyed by metric id."""
        try:
            data = await self._get_json(
                f"{API_BASE}/projects/{project_id}/metrics/overview",
                headers,
                endpoint="Overview",
            )
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            payload.warnings.append(f"Overview: {exc}")
            return {}

        overview: dict[str, float] = {}
        for metric in data.get("metrics") or []:
            metric_id = metric.get("id")
            value = metric.get("value")
            if metric_id and isinstance(value, (int, float)) and not isinstance(value, bool):
                overview[metric_id] = float(value)
        return overview
