"""LLM judgement of whether a database record is the product we detected."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from shelfimport.errors import InferenceUnavailable, ShelfImportError
from shelfimport.inference.llm import StructuredLLM

logger = logging.getLogger(__name__)


class MatchVerdict(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_match: bool = False
    reason: str = ""

    @field_validator("reason", mode="before")
    @classmethod
    def _reason(cls, value: object) -> str:
        return "" if value is None else str(value)


def build_match_prompt(detected_brand: str, detected_name: str, db_brand: str, db_name: str) -> str:
    return "\n".join(
        [
            "I detected a product from an image and found a potential match in a database.",
            "Decide whether these are the SAME product.",
            "",
            "DETECTED FROM IMAGE:",
            f'- Brand: "{detected_brand}"',
            f'- Product: "{detected_name}"',
            "",
            "DATABASE RESULT:",
            f'- Brand: "{db_brand}"',
            f'- Product: "{db_name}"',
            "",
            "RULES:",
            "- The brands must be the same company (exact match or known variant)",
            "- The product type must match (both creams, both yogurts, etc.)",
            '- Minor spelling differences are fine (e.g. "Goya" vs "GOYA")',
            "- Different products from the same brand are NOT a match",
            "- A completely different brand is NOT a match",
            "",
            "Examples:",
            '- "El Mexicano" + "Crema" vs "El Mexicano" + "Sour Cream" = MATCH',
            '- "Del Prado" + "Crema" vs "Verduras Curro" + "Remolacha" = NOT MATCH',
            '- "Saborico" + "Yogurt" vs "Gullon" + "Sandwich" = NOT MATCH',
            "",
            "Return ONLY valid JSON:",
            '{"is_match": true or false, "reason": "brief explanation"}',
        ]
    )


class MatchAdjudicator:
    def __init__(self, llm: StructuredLLM, max_output_tokens: int = 200) -> None:
        self.llm = llm
        self.max_output_tokens = max_output_tokens

    def adjudicate(self, detected_brand: str, detected_name: str, db_brand: str, db_name: str) -> MatchVerdict:
        """Same-product verdict; any model failure counts as no match."""
        if not detected_brand.strip() or not (db_brand.strip() or db_name.strip()):
            return MatchVerdict(is_match=False, reason="missing brand")

        prompt = build_match_prompt(detected_brand, detected_name, db_brand, db_name)
        try:
            payload = self.llm.generate_json(prompt, [], max_output_tokens=self.max_output_tokens)
            verdict = MatchVerdict.model_validate(payload)
        except InferenceUnavailable:
            raise
        except (ShelfImportError, ValidationError) as exc:
            logger.warning("Match adjudication failed: %s", exc)
            return MatchVerdict(is_match=False, reason="LLM error")

        logger.info(
            "%s match: %r/%r vs %r/%r (%s)",
            "MATCH" if verdict.is_match else "NO",
            detected_brand,
            detected_name,
            db_brand,
            db_name,
            verdict.reason,
        )
        return verdict
