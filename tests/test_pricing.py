from __future__ import annotations

from shelfimport.pricing import price_from_offers, resolve_price


def test_offer_mean_ignores_missing_and_non_positive_prices() -> None:
    assert price_from_offers([2.0, None, 0.0, 3.0]) == 2.5


def test_recorded_range_used_without_offers() -> None:
    assert price_from_offers([], lowest=1.99, highest=2.99) == 2.49
    assert price_from_offers([], lowest=1.99) == 1.99
    assert price_from_offers([], highest=0) is None


def test_resolve_price_prefers_lookup_then_estimate() -> None:
    assert resolve_price(2.49, 4.99) == 2.49
    assert resolve_price(None, 4.99) == 4.99
    assert resolve_price(0.0, 4.99) == 4.99
    assert resolve_price(None, None) == 0.0
    assert resolve_price(-1.0, -2.0) == 0.0


def test_price_resolution_examples() -> None:
    assert price_from_offers([1.50, 2.50]) == 2.00
    assert price_from_offers([], lowest=1.00, highest=3.00) == 2.00
    assert price_from_offers([], lowest=0, highest=4.00) == 4.00
    assert price_from_offers([0, -1], lowest=0, highest=0) is None
