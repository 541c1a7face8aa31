"""Pre-persistence credential checks.

RevenueCat and Stripe get a live round-trip against a cheap endpoint. Every
other provider gets a weak structural check (declared fields non-empty).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import aiohttp

from ..providers import ADAPTERS
from ..providers.base import DEFAULT_TIMEOUT_SECONDS, redact


logger = logging.getLogger(__name__)

REVENUECAT_PROJECTS_URL = "https://api.revenuecat.com/v2/projects"
STRIPE_BALANCE_URL = "https://api.stripe.com/v1/balance"
MIXPANEL_SECRET_MIN_LENGTH = 11
ERROR_BODY_LIMIT = 200


@dataclass
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    canonical_project_id: Optional[str] = None


class CredentialValidator:
    """Validate a credential bundle before it is stored."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def validate(
        self,
        provider: str,
        credentials: Mapping[str, str],
    ) -> ValidationResult:
        """Classify a credential bundle as usable or not.

        Args:
            provider: Provider identifier
            credentials: Raw credential bundle

        Returns:
            ValidationResult; network failures are reported as invalid
        """
        if not credentials:
            return ValidationResult(False, "No credentials provided")

        try:
            if provider == "revenuecat":
                return await self._validate_revenuecat(credentials)
            if provider == "stripe":
                return await self._validate_stripe(credentials)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            message = redact(f"Could not reach {provider}: {exc}", credentials)
            logger.warning("Credential validation failed: %s", message)
            return ValidationResult(False, message)

        return self._validate_fields(provider, credentials)

    async def _validate_revenuecat(self, credentials: Mapping[str, str]) -> ValidationResult:
        api_key = str(credentials.get("api_key") or "").strip()
        if not api_key:
            return ValidationResult(False, "Missing api_key")

        async with self.session.get(
            REVENUECAT_PROJECTS_URL,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=self.timeout,
        ) as response:
            if response.status == 401:
                return ValidationResult(False, "Invalid API key")
            if not 200 <= response.status < 300:
                return ValidationResult(False, await self._api_error(response, credentials))
            data: Any = await response.json(content_type=None)

        projects = (data or {}).get("items") or []
        project_id = str(projects[0]["id"]) if projects else None
        return ValidationResult(True, canonical_project_id=project_id)

    async def _validate_stripe(self, credentials: Mapping[str, str]) -> ValidationResult:
        secret_key = str(credentials.get("secret_key") or "").strip()
        if not secret_key:
            return ValidationResult(False, "Missing secret_key")

        async with self.session.get(
            STRIPE_BALANCE_URL,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=self.timeout,
        ) as response:
            if response.status == 401:
                return ValidationResult(False, "Invalid API key")
            if not 200 <= response.status < 300:
                return ValidationResult(False, await self._api_error(response, credentials))
        return ValidationResult(True)

    @staticmethod
    async def _api_error(response: Any, credentials: Mapping[str, str]) -> str:
        body = await response.text()
        return redact(
            f"API error: HTTP {response.status} - {body[:ERROR_BODY_LIMIT]}", credentials
        )

    @staticmethod
    def _validate_fields(provider: str, credentials: Mapping[str, str]) -> ValidationResult:
        if provider == "mixpanel":
            secret = str(credentials.get("api_secret") or "")
            if len(secret) < MIXPANEL_SECRET_MIN_LENGTH:
                return ValidationResult(False, "Mixpanel api_secret looks malformed")
        if provider == "amplitude":
            if not credentials.get("api_key") or not credentials.get("secret_key"):
                return ValidationResult(False, "Amplitude requires api_key and secret_key")

        adapter = ADAPTERS.get(provider)
        required = adapter.required_fields if adapter else ()
        missing = [name for name in required if not str(credentials.get(name) or "").strip()]
        empty = [name for name, value in credentials.items() if not str(value or "").strip()]
        if missing or empty:
            fields = ", ".join(sorted(set(missing) | set(empty)))
            return ValidationResult(False, f"Missing or empty fields: {fields}")
        return ValidationResult(True)
