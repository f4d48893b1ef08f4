"""Price resolution from lookup offers and identification estimates."""

from __future__ import annotations

from typing import Iterable


def _positive(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def price_from_offers(
    offers: Iterable[float | None],
    lowest: float | None = None,
    highest: float | None = None,
) -> float | None:
    """Mean of positive offer prices, else the recorded low/high range."""
    prices = [p for p in (_positive(o) for o in offers) if p is not None]
    if prices:
        return round(sum(prices) / len(prices), 2)

    low = _positive(lowest)
    high = _positive(highest)
    if low is not None and high is not None:
        return round((low + high) / 2, 2)
    if low is not None:
        return round(low, 2)
    if high is not None:
        return round(high, 2)
    return None


def resolve_price(lookup_price: float | None, estimate: float | None) -> float:
    """Prefer a positive looked-up price; fall back to the estimate, else 0."""
    resolved = _positive(lookup_price)
    if resolved is not None:
        return round(resolved, 2)
    fallback = _positive(estimate)
    if fallback is not None:
        return round(fallback, 2)
    return 0.0
