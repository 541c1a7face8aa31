"""Unit tests for price resolution.

estimate_price is a known-approximate fallback: these tests pin the policy,
they do not assert that the guessed prices are correct.
"""
import pytest

from src.statly_core.providers.pricing import estimate_price, resolve_price


@pytest.mark.parametrize(
    "identifier,expected",
    [
        ("com.app.pro_weekly", 2.99),
        ("com.app.pro_MONTHLY", 9.99),
        ("com.app.pro_yearly", 49.99),
        ("com.app.annual_plan", 49.99),
        ("com.app.lifetime", 99.99),
        ("com.app.coins_100", 4.99),
        (None, 4.99),
    ],
)
def test_estimate_price_heuristic(identifier, expected):
    """Substring guess, first match wins, 4.99 otherwise."""
    assert estimate_price(identifier) == expected


def test_resolve_price_prefers_explicit_fields():
    """Gross USD revenue is used before any other field."""
    price, estimated = resolve_price(
        {
            "total_revenue_in_usd": {"gross": 12.5},
            "price": 3,
            "product_identifier": "pro_monthly",
        }
    )

    assert price == 12.5
    assert estimated is False


def test_resolve_price_nested_amount():
    """price.amount is read when no USD totals exist."""
    assert resolve_price({"price": {"amount": "7.49"}}) == (7.49, False)


def test_resolve_price_falls_back_to_estimate():
    """No price field at all: guess from the product identifier."""
    price, estimated = resolve_price({"store_product_identifier": "app.yearly"})

    assert price == 49.99
    assert estimated is True
