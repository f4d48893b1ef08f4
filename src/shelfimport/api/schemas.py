"""API response models."""

from __future__ import annotations

from pydantic import BaseModel


class BatchAccepted(BaseModel):
    batch_id: str
    total_images: int
    duplicate_uploads: int = 0


class BatchProgress(BaseModel):
    batch_id: str
    status: str
    total_images: int
    processed_images: int
    failed_images: int = 0
    total_products: int
    verified_products: int
    review_products: int
    current_image: str | None = None


class ProductOut(BaseModel):
    product_id: int
    sku: str
    name: str
    brand: str | None = None
    price: float
    status: str
    upc: str | None = None
    categories: list[str] = []
    size: str | None = None
    description: str | None = None
    image_ref: str | None = None
    batch_id: str | None = None
    created_at: str | None = None


class CatalogStats(BaseModel):
    total: int
    verified: int
    needs_review: int
