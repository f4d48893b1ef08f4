from __future__ import annotations

from pathlib import Path

import pytest

from shelfimport.catalog.models import CATEGORIES
from shelfimport.errors import InferenceUnavailable
from shelfimport.inference.llm import LLMResponseError
from shelfimport.vision.identify import IDENTIFICATION_PROMPT, ProductIdentifier


class FakeLLM:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: list[tuple[str, list[Path], int | None]] = []

    def generate_json(self, prompt, images, *, max_output_tokens=None):
        self.calls.append((prompt, images, max_output_tokens))
        if self.error is not None:
            raise self.error
        return self.payload


def test_prompt_lists_every_category() -> None:
    for name in CATEGORIES:
        assert f"- {name}" in IDENTIFICATION_PROMPT
    assert "estimated_price_usd" in IDENTIFICATION_PROMPT


def test_identify_normalizes_model_output(tmp_path: Path) -> None:
    llm = FakeLLM(
        {
            "brand": " El Mexicano ",
            "product_name": "Crema Mexicana",
            "full_name": "El Mexicano Crema Mexicana",
            "is_product": True,
            "product_type": "Packaged",
            "category": "dairy & eggs",
            "size": 15,
            "estimated_price_usd": "$4.99",
            "confidence": "high",
        }
    )

    candidate = ProductIdentifier(llm, max_output_tokens=321).identify(tmp_path / "crop.jpg")

    assert candidate.is_usable
    assert candidate.brand == "El Mexicano"
    assert candidate.category == "Dairy & Eggs"
    assert candidate.size == "15"
    assert candidate.estimated_price == 4.99
    assert candidate.product_type == "packaged"
    assert llm.calls[0][2] == 321


def test_unknown_category_and_bad_price_are_dropped(tmp_path: Path) -> None:
    llm = FakeLLM(
        {
            "brand": "Goya",
            "product_name": "Mango Nectar",
            "is_product": True,
            "category": "Juices",
            "estimated_price_usd": "free",
        }
    )

    candidate = ProductIdentifier(llm).identify(tmp_path / "crop.jpg")

    assert candidate.is_usable
    assert candidate.category is None
    assert candidate.estimated_price is None
    assert candidate.display_name == "Goya Mango Nectar"


@pytest.mark.parametrize(
    "payload",
    [
        {"brand": "", "product_name": "Crema", "is_product": True},
        {"brand": "Goya", "product_name": "", "is_product": True},
        {"brand": "Goya", "product_name": "Nectar", "is_product": False},
        {"brand": "Goya", "product_name": "Nectar"},
    ],
)
def test_unreadable_labels_are_not_usable(tmp_path: Path, payload: dict) -> None:
    assert not ProductIdentifier(FakeLLM(payload)).identify(tmp_path / "crop.jpg").is_usable


def test_unparseable_output_is_not_a_product(tmp_path: Path) -> None:
    llm = FakeLLM(error=LLMResponseError("no JSON object"))

    candidate = ProductIdentifier(llm).identify(tmp_path / "crop.jpg")

    assert not candidate.is_product


def test_unavailable_service_propagates(tmp_path: Path) -> None:
    llm = FakeLLM(error=InferenceUnavailable("down"))

    with pytest.raises(InferenceUnavailable):
        ProductIdentifier(llm).identify(tmp_path / "crop.jpg")
