"""CSV export of draft products for a storefront bulk importer."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, TextIO

CSV_COLUMNS = [
    "Name",
    "SKU",
    "Description",
    "Regular price",
    "Categories",
    "Images",
    "Published",
    "Type",
    "UPC",
    "Status",
]


def product_row(product: dict[str, Any], image_base_url: str | None = None) -> list[str]:
    image = str(product.get("image_ref") or "")
    if image and image_base_url:
        image = f"{image_base_url.rstrip('/')}/{Path(image).name}"
    verified = product.get("status") == "verified"
    return [
        str(product.get("name") or ""),
        str(product.get("sku") or ""),
        str(product.get("description") or ""),
        f"{float(product.get('price') or 0.0):.2f}",
        ", ".join(product.get("categories") or []),
        image,
        "1" if verified else "0",
        "simple",
        str(product.get("upc") or ""),
        str(product.get("status") or ""),
    ]


def write_products_csv(
    products: Iterable[dict[str, Any]],
    out: TextIO,
    image_base_url: str | None = None,
) -> int:
    """Write products in import column order; verified rows are published."""
    writer = csv.writer(out)
    writer.writerow(CSV_COLUMNS)
    count = 0
    for product in products:
        writer.writerow(product_row(product, image_base_url))
        count += 1
    return count
