"""Credential intake: validation, masking and at-rest encryption."""
from .cipher import CipherError, CredentialCipher
from .masking import mask_credentials, mask_value
from .service import CredentialError, CredentialService
from .validator import CredentialValidator, ValidationResult

__all__ = [
    "CipherError",
    "CredentialCipher",
    "CredentialError",
    "CredentialService",
    "CredentialValidator",
    "ValidationResult",
    "mask_credentials",
    "mask_value",
]
