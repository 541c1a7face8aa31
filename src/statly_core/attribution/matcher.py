"""Click-to-install attribution for purchase webhooks.

The newest click on the user's tracking link inside the match window wins.
With no click in the window the install is attributed to ``direct``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from .links import LinkStore


logger = logging.getLogger(__name__)

MATCH_WINDOW = timedelta(minutes=60)

RELEVANT_EVENTS = frozenset(
    {"INITIAL_PURCHASE", "NON_RENEWING_PURCHASE", "TEST", "SUBSCRIBER_ALIAS"}
)


def _first_present(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None


def parse_revenue(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class AttributionEvent:
    """Fields the matcher reads from a RevenueCat-style webhook body."""

    event_type: Optional[str]
    app_user_id: Optional[str]
    revenue: float
    product_id: Optional[str]
    country: Optional[str]

    @classmethod
    def from_payload(cls, body: Mapping[str, Any]) -> "AttributionEvent":
        event = body.get("event") or body
        return cls(
            event_type=event.get("type") or body.get("type"),
            app_user_id=_first_present(event.get("app_user_id"), body.get("app_user_id")),
            revenue=parse_revenue(
                _first_present(event.get("price"), event.get("revenue"), body.get("price"))
            ),
            product_id=_first_present(event.get("product_id"), body.get("product_id")),
            country=_first_present(event.get("country_code"), body.get("country_code")),
        )


class AttributionMatcher:
    """Joins purchase events to the most recent click on the owner's link."""

    def __init__(self, links: LinkStore, window: timedelta = MATCH_WINDOW) -> None:
        self.links = links
        self.window = window

    def handle_event(
        self,
        body: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Process one webhook body.

        Unknown customers and users without a tracking link are acknowledged
        without writing anything.

        Returns:
            Response envelope: status 'ignored' for filtered event types,
            otherwise status 'ok' with the resolved linkId/userId
        """
        event = AttributionEvent.from_payload(body)

        if event.event_type is not None and event.event_type not in RELEVANT_EVENTS:
            logger.info("Ignoring event type: %s", event.event_type)
            return {"status": "ignored", "type": event.event_type}

        user_id = self.links.resolve_customer(event.app_user_id) if event.app_user_id else None
        link = self.links.get_link_for_user(user_id) if user_id else None

        if link is None:
            logger.info(
                "No tracking link for app_user_id %s (user %s); nothing attributed",
                event.app_user_id,
                user_id,
            )
            return {"status": "ok", "success": True, "linkId": None, "userId": user_id}

        moment = now or datetime.now(timezone.utc)
        click = self.links.latest_click_since(link.id, moment - self.window)
        attribution = self.links.record_attribution(
            link_id=link.id,
            click=click,
            revenue=event.revenue,
            country=event.country,
            product_id=event.product_id,
            event_type=event.event_type,
            attributed_at=moment,
        )
        logger.info(
            "Attribution created: link=%s source=%s revenue=%s",
            link.id,
            attribution.source,
            attribution.revenue,
        )
        return {
            "status": "ok",
            "success": True,
            "linkId": link.id,
            "userId": user_id,
            "attributionId": attribution.id,
            "source": attribution.source,
        }
