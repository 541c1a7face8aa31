"""Custom exceptions for provider adapters."""


class ProviderError(Exception):
    """Base exception for all provider adapter errors."""


class MissingCredentialsError(ProviderError):
    """Raised when a credential bundle lacks a field the provider needs."""

    def __init__(self, provider: str, missing: list[str]):
        self.provider = provider
        self.missing = missing
        super().__init__(
            f"Missing {provider} credentials: {', '.join(sorted(missing))}"
        )


class ProviderApiError(ProviderError):
    """Raised for non-2xx responses from a provider API."""

    def __init__(self, provider: str, status: int, body: str, endpoint: str = ""):
        self.provider = provider
        self.status = status
        self.body = body
        self.endpoint = endpoint
        label = f"{endpoint}: " if endpoint else ""
        super().__init__(f"{label}HTTP {status} - {body[:200]}")


class ProviderAuthError(ProviderApiError):
    """Raised when a provider rejects the credentials (HTTP 401/403)."""
