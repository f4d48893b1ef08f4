"""SKU generation and collision discriminators."""

from __future__ import annotations

import hashlib
import re

SKU_MAX_LENGTH = 50
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def make_sku(brand: str, name: str) -> str:
    """Deterministic slug for a brand and product name.

    >>> make_sku("El Mexicano", "Crema Mexicana 15 oz")
    'el-mexicano-crema-mexicana-15-oz'
    """
    raw = f"{brand or ''}-{name or ''}".lower()
    slug = _NON_ALNUM.sub("-", raw).strip("-")
    slug = slug[:SKU_MAX_LENGTH].rstrip("-")
    if not slug:
        return "product"
    return slug


def sku_discriminator(source_hash: str, detection_index: int) -> str:
    """Six hex chars tied to one detection of one source image."""
    digest = hashlib.sha256(f"{source_hash}:{detection_index}".encode("utf-8")).hexdigest()
    return digest[:6]


def disambiguate_sku(base: str, source_hash: str, detection_index: int) -> str:
    return f"{base}-{sku_discriminator(source_hash, detection_index)}"
