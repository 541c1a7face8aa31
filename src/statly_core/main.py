"""Statly FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api.redirect import router as redirect_router
from .api.routes import router as api_router
from .api.webhooks import router as webhooks_router
from .context import ServiceContext


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(context: Optional[ServiceContext] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        context: Pre-built service context; built from the environment on
            startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        service_context = context or ServiceContext()
        await service_context.configure()
        app.state.context = service_context
        try:
            yield
        finally:
            await service_context.close()

    app = FastAPI(
        title="Statly API",
        version="0.1.0",
        description="Multi-provider app metrics sync and install attribution",
        lifespan=lifespan,
    )

    app.include_router(api_router)
    app.include_router(webhooks_router)
    app.include_router(redirect_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
