"""Refresh prices of catalog drafts that were stored without a usable one."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from shelfimport.errors import DuplicateUPCError, InferenceUnavailable, RateLimitedError
from shelfimport.lookup.upcitemdb import UPCItemDBClient
from shelfimport.pricing import resolve_price
from shelfimport.storage.catalog import CatalogStore
from shelfimport.vision.identify import ProductIdentifier

logger = logging.getLogger(__name__)


@dataclass
class RepriceReport:
    checked: int = 0
    from_lookup: int = 0
    from_estimate: int = 0
    unchanged: int = 0
    upcs_added: int = 0


class PriceRefresher:
    """UPCitemdb search first, then a fresh estimate read off the product image.

    Only the price and a missing UPC change; review status stays as it is.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        upc_client: UPCItemDBClient,
        identifier: ProductIdentifier,
        *,
        delay_seconds: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.catalog = catalog
        self.upc_client = upc_client
        self.identifier = identifier
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    def refresh(self, *, include_review: bool = False, limit: int = 500) -> RepriceReport:
        report = RepriceReport()
        products = self.catalog.list_unpriced(include_review=include_review, limit=limit)
        for position, product in enumerate(products):
            if position:
                self._sleep(self.delay_seconds)
            report.checked += 1
            self._refresh_one(product, report)

        logger.info(
            "Repriced %d drafts: %d from UPCitemdb, %d estimated, %d unchanged",
            report.checked,
            report.from_lookup,
            report.from_estimate,
            report.unchanged,
        )
        return report

    def _refresh_one(self, product: dict[str, Any], report: RepriceReport) -> None:
        product_id = int(product["product_id"])
        brand = str(product["brand"] or "")
        name = str(product["name"])

        try:
            item = self.upc_client.find(brand, name)
        except RateLimitedError:
            logger.warning("UPCitemdb rate limited while repricing %s", product["sku"])
            item = None

        if item is not None and item.price is not None:
            upc = None
            if not product["upc"] and item.code and not self.catalog.exists_by_upc(item.code):
                upc = item.code
            try:
                self.catalog.update_price(product_id, item.price, upc=upc)
            except DuplicateUPCError:
                self.catalog.update_price(product_id, item.price)
                upc = None
            report.from_lookup += 1
            report.upcs_added += 1 if upc else 0
            logger.info("Priced %s at %.2f from UPCitemdb", product["sku"], item.price)
            return

        price = self._estimate(product) if float(product["price"]) <= 0 else 0.0
        if price > 0:
            self.catalog.update_price(product_id, price)
            report.from_estimate += 1
            logger.info("Priced %s at %.2f from an image estimate", product["sku"], price)
            return

        report.unchanged += 1
        logger.info("No new price for %s", product["sku"])

    def _estimate(self, product: dict[str, Any]) -> float:
        image_ref = product["image_ref"]
        if not image_ref or not Path(image_ref).exists():
            return 0.0
        try:
            candidate = self.identifier.identify(image_ref)
        except InferenceUnavailable as exc:
            logger.warning("Price estimate unavailable for %s: %s", product["sku"], exc)
            return 0.0
        return resolve_price(None, candidate.estimated_price)
