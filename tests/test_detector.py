from __future__ import annotations

from pathlib import Path

import pytest

from _helpers import write_image
from shelfimport.config import DetectionSettings
from shelfimport.errors import InferenceUnavailable, PredictionTimeout
from shelfimport.inference.replicate import Prediction
from shelfimport.vision.detector import GroundingDetector, parse_detections


def _output(*boxes: tuple[list[float], float, str]) -> dict:
    return {"detections": [{"bbox": bbox, "confidence": conf, "label": label} for bbox, conf, label in boxes]}


class ScriptedPredictions:
    """Each query resolves to an output dict or raises the scripted exception."""

    def __init__(self, outcomes: dict[str, object]) -> None:
        self.outcomes = outcomes
        self.inputs: list[dict] = []

    def create(self, model_ref, inputs):
        self.inputs.append(inputs)
        outcome = self.outcomes[inputs["query"]]
        if isinstance(outcome, Exception):
            raise outcome
        return Prediction(id=inputs["query"], status="starting")

    def wait(self, prediction, timeout):
        outcome = self.outcomes[prediction.id]
        if isinstance(outcome, PredictionTimeout):
            raise outcome
        if outcome == "failed":
            return Prediction(id=prediction.id, status="failed", error="boom")
        return Prediction(id=prediction.id, status="succeeded", output=outcome)


def test_parse_detections_skips_malformed_boxes() -> None:
    parsed = parse_detections(
        {
            "detections": [
                {"bbox": [0, 0, 10, 10], "confidence": 0.5, "label": "jar"},
                {"bbox": [0, 0, 10], "confidence": 0.5},
                {"bbox": [10, 10, 5, 20], "confidence": 0.5},
                {"bbox": [0, 0, 10, 10], "confidence": 1.5},
                "not a dict",
            ]
        }
    )

    assert len(parsed) == 1
    assert parsed[0].box == (0, 0, 10, 10) and parsed[0].label == "jar"
    assert parse_detections(None) == []
    assert parse_detections({"detections": "nope"}) == []


def test_detect_merges_queries_and_removes_overlaps(tmp_path: Path) -> None:
    image = write_image(tmp_path / "shelf.jpg")
    predictions = ScriptedPredictions(
        {
            "jar . can": _output(([10, 10, 110, 160], 0.7, "jar"), ([200, 20, 320, 200], 0.6, "can")),
            "cream . milk": _output(([12, 12, 112, 162], 0.85, "cream")),
        }
    )
    detector = GroundingDetector(predictions, DetectionSettings(queries=["jar . can", "cream . milk"]))

    found = detector.detect(image)

    assert [(d.label, d.confidence) for d in found] == [("cream", 0.85), ("can", 0.6)]
    assert predictions.inputs[0]["box_threshold"] == 0.15
    assert predictions.inputs[0]["image"].startswith("data:image/jpeg;base64,")


def test_failed_or_timed_out_query_contributes_nothing(tmp_path: Path) -> None:
    image = write_image(tmp_path / "shelf.jpg")
    predictions = ScriptedPredictions(
        {
            "slow": PredictionTimeout("slow", 300),
            "broken": "failed",
            "fine": _output(([0, 0, 50, 50], 0.5, "bread")),
        }
    )
    detector = GroundingDetector(predictions, DetectionSettings(queries=["slow", "broken", "fine"]))

    found = detector.detect(image)

    assert [d.label for d in found] == ["bread"]


def test_all_queries_unreachable_raises(tmp_path: Path) -> None:
    image = write_image(tmp_path / "shelf.jpg")
    predictions = ScriptedPredictions({"a": InferenceUnavailable("down"), "b": InferenceUnavailable("down")})
    detector = GroundingDetector(predictions, DetectionSettings(queries=["a", "b"]))

    with pytest.raises(InferenceUnavailable):
        detector.detect(image)


def test_partial_outage_still_returns_detections(tmp_path: Path) -> None:
    image = write_image(tmp_path / "shelf.jpg")
    predictions = ScriptedPredictions(
        {"a": InferenceUnavailable("down"), "b": _output(([0, 0, 50, 50], 0.5, "milk"))}
    )
    detector = GroundingDetector(predictions, DetectionSettings(queries=["a", "b"]))

    assert len(detector.detect(image)) == 1
