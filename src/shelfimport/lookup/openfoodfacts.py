"""Open Food Facts search client."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from shelfimport.errors import RateLimitedError

logger = logging.getLogger(__name__)


class OFFProduct(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: str = ""
    brands: str = ""
    product_name: str = ""
    product_name_en: str = ""
    categories: str = ""
    image_url: str | None = None

    @field_validator("code", "brands", "product_name", "product_name_en", "categories", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @property
    def name(self) -> str:
        return self.product_name or self.product_name_en

    @property
    def category_list(self) -> list[str]:
        return [part.strip() for part in self.categories.split(",") if part.strip()]


class OpenFoodFactsClient:
    def __init__(
        self,
        *,
        base_url: str = "https://world.openfoodfacts.org",
        user_agent: str = "shelf-import/0.1",
        page_size: int = 5,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self._headers = {"User-Agent": user_agent}
        self._client = client or httpx.Client(timeout=timeout)

    def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        try:
            resp = self._client.get(url, params=params, headers=self._headers)
        except httpx.HTTPError as exc:
            logger.warning("Open Food Facts request failed: %s", exc)
            return None
        if resp.status_code == 429:
            raise RateLimitedError("openfoodfacts")
        if resp.status_code != 200:
            logger.warning("Open Food Facts returned %d for %s", resp.status_code, url)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning("Open Food Facts returned non-JSON body for %s", url)
            return None
        return data if isinstance(data, dict) else None

    def search(self, terms: str) -> list[OFFProduct]:
        terms = terms.strip()
        if not terms:
            return []
        data = self._get_json(
            f"{self.base_url}/cgi/search.pl",
            {"search_terms": terms, "json": 1, "page_size": self.page_size},
        )
        if data is None:
            return []
        products: list[OFFProduct] = []
        for raw in data.get("products") or []:
            try:
                products.append(OFFProduct.model_validate(raw))
            except ValidationError as exc:
                logger.debug("Skipping malformed Open Food Facts product: %s", exc)
        return products

    def first(self, terms: str) -> OFFProduct | None:
        products = self.search(terms)
        return products[0] if products else None
