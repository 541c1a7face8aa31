"""GET /track-click/{slug}: log the click and 302 to the storefront."""
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import PlainTextResponse, Response

from ..attribution.redirector import ClickRedirector
from .deps import Links


logger = logging.getLogger(__name__)

router = APIRouter(tags=["redirect"])


@router.get("/track-click/", include_in_schema=False)
async def track_click_missing_slug() -> Response:
    return PlainTextResponse("Missing app slug", status_code=status.HTTP_400_BAD_REQUEST)


@router.get("/track-click/{slug}")
async def track_click(slug: str, request: Request, links: Links) -> Response:
    try:
        decision = ClickRedirector(links).handle_click(slug, request.headers)
    except ValueError as exc:
        return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)

    return Response(status_code=status.HTTP_302_FOUND, headers=decision.headers)
