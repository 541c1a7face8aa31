"""Credential intake: validate, mask, encrypt, persist."""
import logging
from typing import Mapping, Optional

from ..metrics.store import MetricStore
from ..schemas.records import ConnectedApp
from .cipher import CredentialCipher
from .masking import mask_credentials
from .validator import CredentialValidator


logger = logging.getLogger(__name__)

DEFAULT_INVALID_MESSAGE = "Invalid credentials. Please check and try again."
EXTERNAL_ID_FIELDS = ("app_id", "project_id", "app_token")


class CredentialError(Exception):
    """Credentials were rejected; surfaced to the caller as a 400."""


class CredentialService:
    """Stores and updates connected-app credential bundles."""

    def __init__(
        self,
        store: MetricStore,
        validator: CredentialValidator,
        cipher: Optional[CredentialCipher],
    ) -> None:
        self.store = store
        self.validator = validator
        self.cipher = cipher

    async def store_credentials(
        self,
        user_id: str,
        provider: str,
        credentials: Mapping[str, str],
    ) -> ConnectedApp:
        """Validate and persist a new connected app.

        Raises:
            CredentialError: If validation fails
            RuntimeError: If encryption is not configured
        """
        if not user_id:
            raise CredentialError("user_id is required")
        bundle = await self._validated(provider, credentials)
        encrypted, masked = self._seal(bundle)

        app = self.store.create_app(
            user_id=user_id,
            provider=provider,
            credentials=encrypted,
            credentials_masked=masked,
            external_app_id=self._external_id(bundle),
            is_encrypted=True,
        )
        logger.info("Stored %s credentials for user %s (app %s)", provider, user_id, app.id)
        return app

    async def update_credentials(
        self,
        app_id: str,
        provider: str,
        credentials: Mapping[str, str],
    ) -> ConnectedApp:
        """Validate and replace the bundle of an existing app.

        Raises:
            CredentialError: If validation fails
            LookupError: If the app does not exist
        """
        existing = self.store.get_app(app_id) if app_id else None
        if existing is None:
            raise LookupError(f"Connected app not found: {app_id}")
        if provider and provider != existing.provider:
            raise CredentialError(
                f"Provider mismatch: app is {existing.provider}, got {provider}"
            )

        bundle = await self._validated(existing.provider, credentials)
        encrypted, masked = self._seal(bundle)
        app = self.store.update_app_credentials(app_id, encrypted, masked, is_encrypted=True)
        if app is None:
            raise LookupError(f"Connected app not found: {app_id}")
        logger.info("Updated %s credentials for app %s", existing.provider, app_id)
        return app

    def load_credentials(self, app: ConnectedApp) -> dict[str, str]:
        """Raw bundle for a sync; only decrypted here."""
        if not app.is_encrypted:
            return dict(app.credentials)
        if self.cipher is None:
            raise RuntimeError("CREDENTIALS_ENCRYPTION_KEY environment variable not configured")
        return self.cipher.decrypt_credentials(app.credentials)

    async def _validated(
        self,
        provider: str,
        credentials: Mapping[str, str],
    ) -> dict[str, str]:
        if not provider:
            raise CredentialError("provider is required")
        if not isinstance(credentials, Mapping) or not credentials:
            raise CredentialError("credentials are required")

        bundle = {str(name): str(value) for name, value in credentials.items()}
        result = await self.validator.validate(provider, bundle)
        if not result.valid:
            raise CredentialError(result.error or DEFAULT_INVALID_MESSAGE)

        if result.canonical_project_id and not bundle.get("project_id"):
            bundle["project_id"] = result.canonical_project_id
        return bundle

    def _seal(self, bundle: Mapping[str, str]) -> tuple[dict[str, str], dict[str, str]]:
        if self.cipher is None:
            raise RuntimeError("CREDENTIALS_ENCRYPTION_KEY environment variable not configured")
        return self.cipher.encrypt_credentials(bundle), mask_credentials(bundle)

    @staticmethod
    def _external_id(bundle: Mapping[str, str]) -> str:
        for name in EXTERNAL_ID_FIELDS:
            if bundle.get(name):
                return bundle[name]
        return ""
