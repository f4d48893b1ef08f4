"""Read brand, name, size and price estimate off a product crop."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from shelfimport.catalog.models import CATEGORIES, CandidateProduct
from shelfimport.errors import InferenceUnavailable, ShelfImportError
from shelfimport.inference.llm import StructuredLLM

logger = logging.getLogger(__name__)


def build_identification_prompt() -> str:
    lines = [
        "Look at this product image and READ THE LABEL to extract product information.",
        "",
        "Identify:",
        "1. BRAND exactly as printed on the packaging",
        "2. PRODUCT NAME, the specific product",
        '3. SIZE, weight or volume if visible (e.g. "16 oz", "450ml")',
        "4. ESTIMATED PRICE, a reasonable US retail price in USD",
        "5. CATEGORY, exactly one from the list below",
        "",
        "CATEGORIES:",
    ]
    lines.extend(f"- {name}" for name in CATEGORIES)
    lines.extend(
        [
            "",
            "Examples:",
            '- Brand: "Goya", Product: "Mango Nectar", Size: "9.6 oz", Category: "Beverages", Price: 1.49',
            '- Brand: "El Mexicano", Product: "Crema Mexicana", Size: "15 oz", Category: "Dairy & Eggs", Price: 4.99',
            '- Brand: "Cheetos", Product: "Puffs", Size: "8 oz", Category: "Snacks & Chips", Price: 3.99',
            "",
            "PRICING GUIDELINES (USD):",
            "- Small juice/nectar bottles (8-12 oz): 1.00 - 2.00",
            "- Large juice bottles (32+ oz): 3.00 - 5.00",
            "- Yogurt drinks (individual): 1.50 - 3.00",
            "- Crema, small: 3.00 - 5.00; large: 5.00 - 8.00",
            "- Cheese: 4.00 - 8.00",
            "- Meat/Chorizo: 5.00 - 10.00",
            "- Snacks (8-12 oz): 3.00 - 5.00",
            "",
            'For fresh produce use Brand="Fresh", product_type="produce", category="Fresh Produce".',
            "",
            "RULES:",
            "- If you cannot clearly read the brand or product name, set is_product=false",
            "- Base the price estimate on product type, size and brand positioning",
            "",
            "Return ONLY this JSON object, no markdown:",
            "{",
            '  "brand": "brand name",',
            '  "product_name": "product name",',
            '  "full_name": "brand + product name",',
            '  "is_product": true,',
            '  "product_type": "packaged" | "produce" | "meat" | "bakery",',
            '  "category": "category from the list",',
            '  "size": "size string",',
            '  "estimated_price_usd": 0.00',
            "}",
        ]
    )
    return "\n".join(lines)


IDENTIFICATION_PROMPT = build_identification_prompt()


class ProductIdentifier:
    """Turns a crop into a CandidateProduct; a bad read is never an exception."""

    def __init__(self, llm: StructuredLLM, max_output_tokens: int = 500) -> None:
        self.llm = llm
        self.max_output_tokens = max_output_tokens

    def identify(self, crop_path: str | Path) -> CandidateProduct:
        try:
            payload = self.llm.generate_json(
                IDENTIFICATION_PROMPT,
                [Path(crop_path)],
                max_output_tokens=self.max_output_tokens,
            )
        except InferenceUnavailable:
            raise
        except ShelfImportError as exc:
            logger.warning("Identification failed for %s: %s", Path(crop_path).name, exc)
            return CandidateProduct.not_a_product()

        try:
            candidate = CandidateProduct.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Identification output rejected for %s: %s", Path(crop_path).name, exc)
            return CandidateProduct.not_a_product()

        logger.debug(
            "Identified %s as %r / %r (product=%s)",
            Path(crop_path).name,
            candidate.brand,
            candidate.product_name,
            candidate.is_product,
        )
        return candidate
