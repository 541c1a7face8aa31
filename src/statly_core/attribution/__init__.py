"""Click redirector and click-to-install attribution matcher."""
from .links import LinkStore, attribution_totals, make_slug
from .matcher import MATCH_WINDOW, RELEVANT_EVENTS, AttributionMatcher
from .redirector import (
    ClickRedirector,
    RedirectDecision,
    classify_device,
    classify_source,
    fingerprint,
)

__all__ = [
    "AttributionMatcher",
    "ClickRedirector",
    "LinkStore",
    "MATCH_WINDOW",
    "RELEVANT_EVENTS",
    "RedirectDecision",
    "classify_device",
    "classify_source",
    "fingerprint",
    "attribution_totals",
    "make_slug",
]
