from __future__ import annotations

from pathlib import Path

import pytest

from shelfimport.config import AppSettings, IdentificationSettings
from shelfimport.errors import ConfigurationError
from shelfimport.inference.llm import LLMResponseError, ReplicateLLM, build_llm, extract_json
from shelfimport.inference.replicate import Prediction


class RecordingPredictions:
    def __init__(self, output) -> None:
        self.output = output
        self.runs: list[tuple[str, dict]] = []

    def run(self, model_ref, inputs, timeout):
        self.runs.append((model_ref, inputs))
        return Prediction(id="p1", status="succeeded", output=self.output)


def test_extract_json_plain_and_fenced() -> None:
    assert extract_json('{"is_match": true}') == {"is_match": True}
    assert extract_json('```json\n{"brand": "Goya"}\n```') == {"brand": "Goya"}


def test_extract_json_finds_object_in_chatter() -> None:
    assert extract_json('Sure! Here it is: {"brand": "Goya", "size": "9.6 oz"} Hope this helps') == {
        "brand": "Goya",
        "size": "9.6 oz",
    }


@pytest.mark.parametrize("text", ["", "no json at all", "[1, 2]", "{broken"])
def test_extract_json_rejects_unusable_text(text: str) -> None:
    with pytest.raises(LLMResponseError):
        extract_json(text)


def test_replicate_llm_joins_streamed_output_and_sends_images(tmp_path: Path) -> None:
    crop = tmp_path / "crop.jpg"
    crop.write_bytes(b"jpeg")
    predictions = RecordingPredictions(['{"brand": ', '"Goya"}'])
    llm = ReplicateLLM(predictions, model_version="v1", max_output_tokens=500)

    assert llm.generate_json("prompt", [crop], max_output_tokens=200) == {"brand": "Goya"}

    model_ref, inputs = predictions.runs[0]
    assert model_ref == "v1"
    assert inputs["max_output_tokens"] == 200
    assert inputs["images"][0].startswith("data:image/jpeg;base64,")


def test_replicate_llm_omits_images_for_text_prompts() -> None:
    predictions = RecordingPredictions('{"is_match": false}')
    llm = ReplicateLLM(predictions, model_version="v1")

    llm.generate_json("prompt", [])

    assert "images" not in predictions.runs[0][1]


def test_gemini_backend_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    settings = AppSettings(identification=IdentificationSettings(backend="gemini"))

    with pytest.raises(ConfigurationError):
        build_llm(settings, predictions=None)


def test_replicate_backend_reuses_prediction_client() -> None:
    predictions = RecordingPredictions("{}")

    llm = build_llm(AppSettings(), predictions=predictions)

    assert isinstance(llm, ReplicateLLM)
    assert llm.predictions is predictions
