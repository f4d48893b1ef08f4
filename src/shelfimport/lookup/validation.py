"""Cross-validate an identified candidate against the product databases."""

from __future__ import annotations

import logging
import time
from typing import Callable

from shelfimport.catalog.models import CandidateProduct, ValidationResult
from shelfimport.errors import RateLimitedError
from shelfimport.lookup.adjudicator import MatchAdjudicator
from shelfimport.lookup.openfoodfacts import OFFProduct, OpenFoodFactsClient
from shelfimport.lookup.upcitemdb import UPCItemDBClient
from shelfimport.pricing import resolve_price

logger = logging.getLogger(__name__)


def _candidate_categories(candidate: CandidateProduct) -> list[str]:
    return [candidate.category] if candidate.category else []


class ProductValidator:
    """UPC database first, then Open Food Facts with LLM adjudication.

    Outcomes:
      * UPC and price found in UPCitemdb: verified, canonical fields adopted.
      * UPC found without a price: needs_review, the UPC is kept for dedup.
      * Open Food Facts match confirmed by the adjudicator: verified, canonical
        name/brand/categories/code adopted, price from the estimate.
      * Nothing found, or a lookup was rate limited: needs_review.
    """

    def __init__(
        self,
        upc_client: UPCItemDBClient,
        off_client: OpenFoodFactsClient,
        adjudicator: MatchAdjudicator,
        *,
        off_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.upc_client = upc_client
        self.off_client = off_client
        self.adjudicator = adjudicator
        self.off_delay_seconds = off_delay_seconds
        self._sleep = sleep

    def _fallback(self, candidate: CandidateProduct, upc: str | None = None) -> ValidationResult:
        return ValidationResult(
            found=False,
            canonical_name=candidate.display_name,
            canonical_brand=candidate.brand,
            categories=_candidate_categories(candidate),
            upc=upc,
            source="none",
            price=resolve_price(None, candidate.estimated_price),
            status="needs_review",
        )

    def _from_off(self, candidate: CandidateProduct, product: OFFProduct) -> ValidationResult:
        categories = product.category_list or _candidate_categories(candidate)
        return ValidationResult(
            found=True,
            canonical_name=product.name or candidate.display_name,
            canonical_brand=product.brands or candidate.brand,
            categories=categories,
            upc=product.code or None,
            source="open_db",
            price=resolve_price(None, candidate.estimated_price),
            status="verified",
        )

    def _adjudicated(self, candidate: CandidateProduct, product: OFFProduct | None) -> bool:
        if product is None:
            return False
        verdict = self.adjudicator.adjudicate(candidate.brand, candidate.product_name, product.brands, product.name)
        return verdict.is_match

    def validate(self, candidate: CandidateProduct) -> ValidationResult:
        try:
            item = self.upc_client.find(candidate.brand, candidate.product_name)
        except RateLimitedError:
            logger.warning("UPCitemdb rate limited; %r goes to review", candidate.display_name)
            return self._fallback(candidate)

        if item is not None and item.code:
            price = item.price
            if price is not None:
                logger.info("UPC verified %r as %s at %.2f", candidate.display_name, item.code, price)
                return ValidationResult(
                    found=True,
                    canonical_name=item.title or candidate.display_name,
                    canonical_brand=item.brand or candidate.brand,
                    categories=[item.category] if item.category else _candidate_categories(candidate),
                    upc=item.code,
                    source="upc_db",
                    price=price,
                    description=item.description,
                    status="verified",
                )
            logger.info("UPC %s found for %r without a price", item.code, candidate.display_name)
            return self._fallback(candidate, upc=item.code)

        try:
            product = self.off_client.first(f"{candidate.brand} {candidate.product_name}")
            if self._adjudicated(candidate, product):
                return self._from_off(candidate, product)

            self._sleep(self.off_delay_seconds)

            product = self.off_client.first(candidate.brand)
            if self._adjudicated(candidate, product):
                return self._from_off(candidate, product)
        except RateLimitedError:
            logger.warning("Open Food Facts rate limited; %r goes to review", candidate.display_name)

        return self._fallback(candidate)
