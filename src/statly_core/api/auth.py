"""X-STATLY-API-KEY check shared by the dashboard-facing routers.

Webhooks and the click redirector are called by third parties and stay
open; everything else goes through ``require_api_key``.
"""
import logging
import os
import secrets
from typing import Annotated

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-STATLY-API-KEY"
API_KEY_ENV = "STATLY_API_KEY"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def _matches(presented: str, expected: str) -> bool:
    # Bytes, so non-ASCII input compares instead of raising TypeError.
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    api_key: Annotated[str | None, Security(api_key_header)] = None
) -> str:
    """Return the presented key when it equals STATLY_API_KEY.

    Raises:
        HTTPException: 401 for a missing or mismatched key
        RuntimeError: STATLY_API_KEY is unset, so no request can pass
    """
    expected_key = os.getenv(API_KEY_ENV)
    if not expected_key:
        raise RuntimeError(f"{API_KEY_ENV} environment variable not configured")

    if not api_key or not _matches(api_key, expected_key):
        reason = "mismatched" if api_key else "missing"
        logger.warning("Rejected request: %s header %s", API_KEY_HEADER, reason)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key
