"""Statly HTTP API."""
from .auth import require_api_key
from .redirect import router as redirect_router
from .routes import router
from .webhooks import router as webhooks_router

__all__ = ["redirect_router", "require_api_key", "router", "webhooks_router"]
