"""Product schemas shared by identification, validation and the catalog."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


CATEGORIES = [
    "Snacks & Chips",
    "Beverages",
    "Dairy & Eggs",
    "Meat & Seafood",
    "Bakery & Bread",
    "Pantry & Canned Goods",
    "Condiments & Sauces",
    "Frozen Foods",
    "Fresh Produce",
    "Breakfast & Cereal",
    "International Foods",
    "Candy & Sweets",
    "Health & Personal Care",
]

ProductType = Literal["packaged", "produce", "meat", "bakery"]
ProductStatus = Literal["verified", "needs_review"]
ValidationSource = Literal["upc_db", "open_db", "none"]

_PRODUCT_TYPES = {"packaged", "produce", "meat", "bakery"}
_CATEGORY_BY_LOWER = {name.lower(): name for name in CATEGORIES}


class CandidateProduct(BaseModel):
    """What the identification model read off one crop."""

    model_config = ConfigDict(extra="ignore")

    brand: str = ""
    product_name: str = ""
    full_name: str = ""
    size: str = ""
    category: str | None = None
    estimated_price: float | None = Field(
        default=None,
        validation_alias=AliasChoices("estimated_price_usd", "estimated_price"),
    )
    product_type: ProductType = "packaged"
    is_product: bool = False

    @field_validator("brand", "product_name", "full_name", "size", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("product_type", mode="before")
    @classmethod
    def _product_type(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in _PRODUCT_TYPES else "packaged"

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> str | None:
        if value is None:
            return None
        return _CATEGORY_BY_LOWER.get(str(value).strip().lower())

    @field_validator("estimated_price", mode="before")
    @classmethod
    def _price(cls, value: Any) -> float | None:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            value = value.strip().lstrip("$")
        try:
            price = float(value)
        except (TypeError, ValueError):
            return None
        return price if price > 0 else None

    @classmethod
    def not_a_product(cls) -> "CandidateProduct":
        return cls(is_product=False)

    @property
    def is_usable(self) -> bool:
        return self.is_product and bool(self.brand) and bool(self.product_name)

    @property
    def display_name(self) -> str:
        return self.full_name or f"{self.brand} {self.product_name}".strip()


class ValidationResult(BaseModel):
    found: bool = False
    canonical_name: str
    canonical_brand: str
    categories: list[str] = Field(default_factory=list)
    upc: str | None = None
    source: ValidationSource = "none"
    price: float | None = None
    description: str = ""
    status: ProductStatus = "needs_review"


class ProductDraft(BaseModel):
    """A catalog row ready to be written."""

    sku: str
    name: str
    brand: str = ""
    price: float = Field(ge=0.0)
    status: ProductStatus
    upc: str | None = None
    categories: list[str] = Field(default_factory=list)
    size: str = ""
    description: str = ""
    image_ref: str | None = None
    source_hash: str
    source_image: str | None = None
    detection_index: int = Field(ge=0)
    batch_id: str | None = None
