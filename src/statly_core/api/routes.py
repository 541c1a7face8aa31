"""Interactive routes: sync triggers, credential intake and dashboard reads.

Every route here requires the API key.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..attribution.links import attribution_totals
from ..context import ServiceContext
from ..credentials.service import CredentialError
from ..metrics.canonical import aggregate_metrics
from ..metrics.store import MetricStore
from ..schemas.records import MaskedConnectedApp
from .auth import require_api_key
from .deps import Context, Links, Store


logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"], dependencies=[Depends(require_api_key)])


class SyncAllRequest(BaseModel):
    """Request payload for /sync-all."""

    user_id: Optional[str] = Field(
        None, description="Only sync this user's apps; omit for every active app"
    )


class SyncAllResponse(BaseModel):
    success: bool
    results: list[dict[str, Any]] = Field(
        default_factory=list,
        description="One {provider, app_id, success, data|error} entry per app",
    )


class SyncAppRequest(BaseModel):
    """Request payload for /sync-app."""

    app_id: str = Field(..., description="Connected app id")


class SyncProviderRequest(BaseModel):
    """Request payload for /sync-{provider}."""

    app_id: str = Field(..., description="Connected app id")
    credentials: dict[str, str] = Field(..., description="Raw credential bundle")


class SyncProviderResponse(BaseModel):
    success: bool
    metrics_synced: int = 0
    metrics: dict[str, float] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class StoreCredentialsRequest(BaseModel):
    """Request payload for /store-credentials."""

    action: str = Field(..., description="'store' or 'update'")
    provider: str = Field(..., description="Provider identifier")
    credentials: dict[str, str] = Field(..., description="Raw credential bundle")
    user_id: Optional[str] = Field(None, description="Owning user (store)")
    app_id: Optional[str] = Field(None, description="Existing app id (update)")


class StoreCredentialsResponse(BaseModel):
    success: bool
    app: MaskedConnectedApp


async def _run_app_sync(context: ServiceContext, app_id: str) -> None:
    """Background task: first sync of a freshly stored app.

    Exception-safe; failures are logged and recorded by the orchestrator.
    """
    conn = context.open_db()
    try:
        store = MetricStore(conn)
        app = store.get_app(app_id)
        if app is None:
            logger.warning("Background sync skipped, app %s no longer exists", app_id)
            return
        outcome = await context.orchestrator(store).sync_app(app)
        logger.info(
            "Background sync for app %s finished: success=%s", app_id, outcome.success
        )
    except Exception as exc:
        logger.error("Background sync for app %s failed: %s", app_id, exc, exc_info=True)
    finally:
        conn.close()


@router.post(
    "/sync-all",
    response_model=SyncAllResponse,
    summary="Sync every active connected app",
)
async def sync_all(payload: SyncAllRequest, context: Context, store: Store) -> SyncAllResponse:
    """Run all adapters; per-app failures are reported, never raised."""
    outcomes = await context.orchestrator(store).sync_all(payload.user_id)
    return SyncAllResponse(
        success=True, results=[outcome.to_dict() for outcome in outcomes]
    )


@router.post(
    "/sync-app",
    response_model=SyncAllResponse,
    summary="Sync one stored app with its stored credentials",
)
async def sync_app(payload: SyncAppRequest, context: Context, store: Store) -> SyncAllResponse:
    app = store.get_app(payload.app_id)
    if app is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")
    outcome = await context.orchestrator(store).sync_app(app)
    return SyncAllResponse(success=outcome.success, results=[outcome.to_dict()])


@router.post(
    "/sync-{provider}",
    response_model=SyncProviderResponse,
    summary="Sync one app with explicit credentials",
)
async def sync_provider(
    provider: str,
    payload: SyncProviderRequest,
    context: Context,
    store: Store,
) -> SyncProviderResponse:
    try:
        outcome = await context.orchestrator(store).sync_app_with_credentials(
            provider, payload.app_id, payload.credentials
        )
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if not outcome.success:
        return SyncProviderResponse(success=False, error=outcome.error)
    return SyncProviderResponse(
        success=True,
        metrics_synced=len(outcome.data),
        metrics=outcome.data,
        warnings=outcome.warnings,
    )


@router.post(
    "/store-credentials",
    response_model=StoreCredentialsResponse,
    summary="Validate, mask and persist provider credentials",
)
async def store_credentials(
    payload: StoreCredentialsRequest,
    background_tasks: BackgroundTasks,
    context: Context,
    store: Store,
) -> StoreCredentialsResponse:
    """Store a new app or update an existing one, then queue its first sync.

    Validates:
    - API key (X-STATLY-API-KEY header) - 401 if missing/invalid
    - action is 'store' or 'update' - 400 otherwise
    - credentials pass provider validation - 400 with the reason otherwise
    """
    service = context.credential_service(store)

    try:
        if payload.action == "store":
            app = await service.store_credentials(
                payload.user_id or "", payload.provider, payload.credentials
            )
        elif payload.action == "update":
            app = await service.update_credentials(
                payload.app_id or "", payload.provider, payload.credentials
            )
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action"
            )
    except CredentialError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except RuntimeError as exc:
        logger.error("Credential intake unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        )

    if context.settings.sync_on_store:
        background_tasks.add_task(_run_app_sync, context, app.id)

    return StoreCredentialsResponse(success=True, app=app.masked())


class MetricsSummaryResponse(BaseModel):
    start: date
    end: date
    apps: int
    totals: dict[str, float]


class AttributionStatsResponse(BaseModel):
    days: int
    sources: list[dict[str, Any]] = Field(
        default_factory=list, description="{source, clicks, installs, revenue}, most clicks first"
    )
    totals: dict[str, float]


@router.get(
    "/metrics-summary",
    response_model=MetricsSummaryResponse,
    summary="Dashboard totals across a user's connected apps",
)
async def metrics_summary(
    context: Context,
    store: Store,
    user_id: str,
    days: int = Query(30, ge=1, le=365),
) -> MetricsSummaryResponse:
    end = datetime.now(context.tzinfo).date()
    start = end - timedelta(days=days - 1)
    apps = store.list_active_apps(user_id=user_id)
    rows = store.get_metrics([app.id for app in apps], start, end)
    totals = aggregate_metrics(
        (row.metric_type, row.metric_value, row.metric_date) for row in rows
    )
    return MetricsSummaryResponse(start=start, end=end, apps=len(apps), totals=totals)


@router.get(
    "/attribution-stats",
    response_model=AttributionStatsResponse,
    summary="Clicks, installs and revenue per traffic source",
)
async def attribution_stats(
    links: Links,
    user_id: str,
    days: int = Query(30, ge=1, le=365),
) -> AttributionStatsResponse:
    sources = links.attribution_stats(user_id, days)
    return AttributionStatsResponse(
        days=days, sources=sources, totals=attribution_totals(sources)
    )
