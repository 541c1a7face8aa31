"""Price resolution for RevenueCat subscriptions and purchases.

``estimate_price`` is a known-approximate fallback: when a record carries no
price field at all, a price is guessed from words in the product identifier.
"""
from typing import Any, Mapping, Optional


# Ordered substring -> USD guess. First match wins.
PRICE_HEURISTICS: tuple[tuple[str, float], ...] = (
    ("weekly", 2.99),
    ("monthly", 9.99),
    ("yearly", 49.99),
    ("annual", 49.99),
    ("lifetime", 99.99),
)
DEFAULT_ESTIMATED_PRICE = 4.99

# Dotted paths tried in order before falling back to the estimate.
PRICE_FIELD_CHAIN: tuple[str, ...] = (
    "total_revenue_in_usd.gross",
    "revenue_in_usd.gross",
    "price_in_usd",
    "price.amount",
    "price",
    "revenue",
)

PRODUCT_IDENTIFIER_FIELDS: tuple[str, ...] = (
    "product_identifier",
    "store_product_identifier",
    "product_id",
)


def estimate_price(product_identifier: Optional[str]) -> float:
    """Guess a USD price from the product identifier.

    Args:
        product_identifier: e.g. 'com.app.pro_monthly'

    Returns:
        Estimated price (4.99 when nothing matches)
    """
    identifier = (product_identifier or "").lower()
    for needle, price in PRICE_HEURISTICS:
        if needle in identifier:
            return price
    return DEFAULT_ESTIMATED_PRICE


def _lookup(record: Mapping[str, Any], path: str) -> Any:
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _as_price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, (bool, Mapping)):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def product_identifier(record: Mapping[str, Any]) -> Optional[str]:
    for name in PRODUCT_IDENTIFIER_FIELDS:
        value = record.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def resolve_price(record: Mapping[str, Any]) -> tuple[float, bool]:
    """Resolve the revenue of one subscription or purchase record.

    Args:
        record: RevenueCat subscription/purchase object

    Returns:
        (price, estimated) where estimated is True when the heuristic was used
    """
    for path in PRICE_FIELD_CHAIN:
        price = _as_price(_lookup(record, path))
        if price is not None:
            return price, False

    return estimate_price(product_identifier(record)), True
