"""Provider adapters.

Each adapter pulls one day of metrics from one external analytics or
monetization API. New providers register here and are picked up by the sync
orchestrator without further wiring.
"""
from typing import Any, Optional

import aiohttp

from .adjust import AdjustAdapter
from .amplitude import AmplitudeAdapter
from .appsflyer import AppsFlyerAdapter
from .appstore import AppStoreConnectAdapter
from .appstore_auth import AppStoreTokenCache
from .base import ProviderAdapter, SyncResult
from .exceptions import (
    MissingCredentialsError,
    ProviderApiError,
    ProviderAuthError,
    ProviderError,
)
from .mixpanel import MixpanelAdapter
from .revenuecat import RevenueCatAdapter, RevenueCatLimits


ADAPTERS: dict[str, type[ProviderAdapter]] = {
    adapter.provider: adapter
    for adapter in (
        RevenueCatAdapter,
        AppsFlyerAdapter,
        AdjustAdapter,
        MixpanelAdapter,
        AmplitudeAdapter,
        AppStoreConnectAdapter,
    )
}


def supported_providers() -> list[str]:
    return sorted(ADAPTERS)


def build_adapter(
    provider: str,
    session: aiohttp.ClientSession,
    token_cache: Optional[AppStoreTokenCache] = None,
    revenuecat_limits: Optional[RevenueCatLimits] = None,
    **kwargs: Any,
) -> ProviderAdapter:
    """Instantiate the adapter registered for ``provider``.

    Raises:
        ProviderError: If no adapter is registered under that name
    """
    adapter_cls = ADAPTERS.get(provider)
    if adapter_cls is None:
        raise ProviderError(f"Unsupported provider: {provider}")
    if adapter_cls is RevenueCatAdapter:
        return RevenueCatAdapter(session, limits=revenuecat_limits, **kwargs)
    if adapter_cls is AppStoreConnectAdapter:
        return AppStoreConnectAdapter(session, token_cache=token_cache, **kwargs)
    return adapter_cls(session, **kwargs)


__all__ = [
    "ADAPTERS",
    "AppStoreTokenCache",
    "MissingCredentialsError",
    "ProviderAdapter",
    "ProviderApiError",
    "ProviderAuthError",
    "ProviderError",
    "RevenueCatLimits",
    "SyncResult",
    "build_adapter",
    "supported_providers",
]
