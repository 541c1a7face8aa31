"""Click redirector: classify, log, redirect.

Source rules match referrer hostnames, device rules are case-insensitive user
agent substrings. Both tables are checked in order and the first match wins.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional
from urllib.parse import quote, urlparse

from .links import LinkStore


logger = logging.getLogger(__name__)

STORE_SEARCH_URL = "https://apps.apple.com/search?term={term}"
NO_CACHE = "no-cache, no-store, must-revalidate"

SOURCE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Twitter", ("twitter.com", "t.co", "x.com")),
    ("Reddit", ("reddit.com",)),
    ("Instagram", ("instagram.com",)),
    ("TikTok", ("tiktok.com",)),
    ("Facebook", ("facebook.com", "fb.com")),
    ("YouTube", ("youtube.com", "youtu.be")),
    ("LinkedIn", ("linkedin.com",)),
    ("Google", ("google.com",)),
    ("Bing", ("bing.com",)),
)

DEVICE_RULES: tuple[tuple[str, str], ...] = (
    ("iphone", "iPhone"),
    ("ipad", "iPad"),
    ("android", "Android"),
    ("mac", "Mac"),
    ("windows", "Windows"),
    ("linux", "Linux"),
)


def _source_for(matches: Callable[[str], bool]) -> Optional[str]:
    for source, needles in SOURCE_RULES:
        if any(matches(needle) for needle in needles):
            return source
    return None


def classify_source(referrer: Optional[str]) -> str:
    """Named source for a Referer header; bare hostname when unknown.

    Rules match the referrer hostname or any subdomain of it. A referrer
    without a parseable hostname falls back to substring matching on the
    whole value.
    """
    if not referrer:
        return "direct"

    try:
        hostname = urlparse(referrer.strip()).hostname
    except ValueError:
        hostname = None

    if hostname:
        source = _source_for(
            lambda needle: hostname == needle or hostname.endswith("." + needle)
        )
        if source:
            return source
        return hostname[4:] if hostname.startswith("www.") else hostname

    lowered = referrer.lower()
    return _source_for(lambda needle: needle in lowered) or "direct"


def classify_device(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "Unknown"
    lowered = user_agent.lower()
    for needle, device in DEVICE_RULES:
        if needle in lowered:
            return device
    return "Unknown"


def fingerprint(ip: str, user_agent: Optional[str]) -> str:
    """Coarse, non-reversible dedup key (32-bit shift-subtract-add hash).

    Not an identity and not cryptographic.
    """
    data = f"{ip}-{user_agent or 'unknown'}"
    units = data.encode("utf-16-le")
    value = 0
    for index in range(0, len(units), 2):
        code_unit = units[index] | (units[index + 1] << 8)
        value = ((value << 5) - value + code_unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x")


def client_ip(headers: Mapping[str, str]) -> str:
    """First X-Forwarded-For hop, else CF-Connecting-IP, else 'unknown'."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("cf-connecting-ip") or "unknown"


def store_search_url(term: str) -> str:
    return STORE_SEARCH_URL.format(term=quote(term, safe="-_.!~*'()"))


@dataclass
class RedirectDecision:
    """Where to send the visitor, and what was logged."""

    location: str
    link_id: Optional[str] = None
    click_id: Optional[str] = None
    source: Optional[str] = None
    device_type: Optional[str] = None

    @property
    def headers(self) -> dict[str, str]:
        return {"Location": self.location, "Cache-Control": NO_CACHE}


class ClickRedirector:
    """Resolves a tracking slug to a storefront URL and logs the click."""

    def __init__(self, links: LinkStore) -> None:
        self.links = links

    def handle_click(self, slug: str, headers: Mapping[str, str]) -> RedirectDecision:
        """Handle one redirect request.

        Args:
            slug: Path slug (matched case-insensitively)
            headers: Request headers with lowercase names

        Returns:
            RedirectDecision; an unknown slug falls back to a store search

        Raises:
            ValueError: If slug is empty
        """
        slug = slug.strip().strip("/")
        if not slug:
            raise ValueError("Missing app slug")

        link = self.links.get_link_by_slug(slug)
        if link is None:
            logger.info("Unknown tracking slug %s, redirecting to store search", slug)
            return RedirectDecision(location=store_search_url(slug))

        user_agent = headers.get("user-agent")
        ip = client_ip(headers)
        click = self.links.record_click(
            link_id=link.id,
            source=classify_source(headers.get("referer") or headers.get("referrer")),
            device_type=classify_device(user_agent),
            fingerprint=fingerprint(ip, user_agent),
            country=headers.get("cf-ipcountry") or None,
            city=headers.get("cf-ipcity") or None,
        )
        logger.debug("Click %s on %s from %s/%s", click.id, slug, click.source, click.device_type)

        return RedirectDecision(
            location=link.app_store_url or store_search_url(link.app_name or slug),
            link_id=link.id,
            click_id=click.id,
            source=click.source,
            device_type=click.device_type,
        )
