"""UPCitemdb search client."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shelfimport.errors import RateLimitedError
from shelfimport.pricing import price_from_offers

logger = logging.getLogger(__name__)


class UPCOffer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    merchant: str | None = None
    price: float | None = None

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, value: Any) -> float | None:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


class UPCItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    brand: str = ""
    category: str = ""
    description: str = ""
    upc: str | None = None
    ean: str | None = None
    offers: list[UPCOffer] = Field(default_factory=list)
    lowest_recorded_price: float | None = None
    highest_recorded_price: float | None = None

    @field_validator("title", "brand", "category", "description", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("offers", mode="before")
    @classmethod
    def _offers(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []

    @field_validator("upc", "ean", mode="before")
    @classmethod
    def _code(cls, value: Any) -> str | None:
        if value is None or str(value).strip() == "":
            return None
        return str(value).strip()

    @field_validator("lowest_recorded_price", "highest_recorded_price", mode="before")
    @classmethod
    def _recorded(cls, value: Any) -> float | None:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @property
    def code(self) -> str | None:
        return self.ean or self.upc or None

    @property
    def price(self) -> float | None:
        return price_from_offers(
            [offer.price for offer in self.offers],
            self.lowest_recorded_price,
            self.highest_recorded_price,
        )


def pick_item(items: list[UPCItem], brand: str) -> UPCItem | None:
    """First item whose brand contains ``brand`` (case-insensitive), else the first item."""
    if not items:
        return None
    needle = brand.strip().lower()
    if needle:
        for item in items:
            if needle in item.brand.lower():
                return item
    return items[0]


class UPCItemDBClient:
    """Free-text product search against UPCitemdb.

    Without an API key the trial endpoint is used, which is heavily rate
    limited. A 429 answer raises ``RateLimitedError``; every other failure is
    logged and yields no items.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        trial_url: str = "https://api.upcitemdb.com/prod/trial/search",
        prod_url: str = "https://api.upcitemdb.com/prod/v1/search",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key or None
        self.url = prod_url if self.api_key else trial_url
        self._client = client or httpx.Client(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["user_key"] = self.api_key
            headers["key_type"] = "3scale"
        return headers

    def search(self, query: str) -> list[UPCItem]:
        query = query.strip()
        if not query:
            return []
        try:
            resp = self._client.get(self.url, params={"s": query}, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("UPCitemdb request failed: %s", exc)
            return []

        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            raise RateLimitedError("upcitemdb", int(retry_after) if retry_after and retry_after.isdigit() else None)
        if resp.status_code != 200:
            logger.warning("UPCitemdb returned %d for %r", resp.status_code, query)
            return []

        try:
            data: dict[str, Any] = resp.json()
        except ValueError:
            logger.warning("UPCitemdb returned non-JSON body for %r", query)
            return []

        items: list[UPCItem] = []
        for raw in data.get("items") or []:
            try:
                items.append(UPCItem.model_validate(raw))
            except ValidationError as exc:
                logger.debug("Skipping malformed UPCitemdb item: %s", exc)
        return items

    def find(self, brand: str, product_name: str) -> UPCItem | None:
        """Best item for a detected brand and product name."""
        return pick_item(self.search(f"{brand} {product_name}"), brand)
