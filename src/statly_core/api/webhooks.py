"""Inbound webhooks (unauthenticated).

/revenuecat-webhook always answers 200 so the sender does not retry-storm.
/attribution-webhook answers 500 on unexpected errors.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from ..attribution.matcher import AttributionMatcher
from ..metrics.events import apply_revenuecat_event
from .deps import Context, Links, Store


logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/revenuecat-webhook")
async def revenuecat_webhook(request: Request, context: Context, store: Store) -> JSONResponse:
    try:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("Webhook body must be a JSON object")
        today = datetime.now(context.tzinfo).date()
        result = apply_revenuecat_event(store, body, today)
    except Exception as exc:
        # Boundary: report in the envelope, never as a 5xx.
        logger.error("RevenueCat webhook error: %s", exc, exc_info=True)
        return JSONResponse({"success": False, "error": str(exc)}, status_code=status.HTTP_200_OK)
    return JSONResponse(result)


@router.post("/attribution-webhook")
async def attribution_webhook(request: Request, links: Links) -> JSONResponse:
    try:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("Webhook body must be a JSON object")
        logger.debug("Attribution webhook received: %.500s", body)
        result = AttributionMatcher(links).handle_event(body)
    except Exception as exc:
        logger.error("Attribution webhook error: %s", exc, exc_info=True)
        return JSONResponse(
            {"error": str(exc)}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return JSONResponse(result)
