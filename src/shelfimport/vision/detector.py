"""Open-vocabulary shelf detection through Grounding DINO predictions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shelfimport.config import DetectionSettings
from shelfimport.errors import InferenceUnavailable, PredictionFailed, PredictionTimeout
from shelfimport.inference.replicate import PredictionClient, image_data_uri
from shelfimport.types import Detection
from shelfimport.vision.dedupe import suppress_duplicates

logger = logging.getLogger(__name__)


class _RawDetection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bbox: list[float] = Field(min_length=4, max_length=4)
    confidence: float = Field(ge=0.0, le=1.0)
    label: str = "product"


class _DetectionOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    detections: list[_RawDetection] = Field(default_factory=list)


def parse_detections(output: Any) -> list[Detection]:
    """Turn a prediction's output payload into detections, skipping malformed boxes."""
    if not isinstance(output, dict):
        return []
    items = output.get("detections")
    if not isinstance(items, list):
        return []
    out: list[Detection] = []
    for item in items:
        try:
            raw = _RawDetection.model_validate(item)
        except ValidationError:
            continue
        x1, y1, x2, y2 = raw.bbox
        if x2 <= x1 or y2 <= y1:
            continue
        out.append(Detection(box=(x1, y1, x2, y2), confidence=raw.confidence, label=raw.label))
    return out


class GroundingDetector:
    """Run every configured text query against one photo and merge the boxes."""

    def __init__(self, predictions: PredictionClient, settings: DetectionSettings) -> None:
        self.predictions = predictions
        self.settings = settings

    def _run_query(self, image_uri: str, query: str) -> list[Detection]:
        prediction = self.predictions.create(
            self.settings.model_version,
            {
                "image": image_uri,
                "query": query,
                "box_threshold": self.settings.box_threshold,
                "text_threshold": self.settings.text_threshold,
                "show_visualisation": False,
            },
        )
        prediction = self.predictions.wait(prediction, timeout=self.settings.timeout_seconds)
        if not prediction.succeeded:
            logger.warning("Detection query %r ended %s: %s", query, prediction.status, prediction.error)
            return []
        return parse_detections(prediction.output)

    def detect(self, image_path: str | Path) -> list[Detection]:
        """Detections for one image, highest confidence first, overlaps removed.

        A query that fails or times out contributes nothing. If every query
        fails to reach the service, ``InferenceUnavailable`` is raised so the
        caller's job can be retried.
        """
        image_uri = image_data_uri(image_path)
        merged: list[Detection] = []
        unavailable: list[InferenceUnavailable] = []

        for query in self.settings.queries:
            try:
                found = self._run_query(image_uri, query)
            except InferenceUnavailable as exc:
                logger.warning("Detection query %r unavailable: %s", query, exc)
                unavailable.append(exc)
                continue
            except (PredictionTimeout, PredictionFailed) as exc:
                logger.warning("Detection query %r failed: %s", query, exc)
                continue
            logger.debug("Query %r found %d boxes", query, len(found))
            merged.extend(found)

        if self.settings.queries and len(unavailable) == len(self.settings.queries):
            raise InferenceUnavailable(f"all {len(unavailable)} detection queries unreachable") from unavailable[-1]

        kept = suppress_duplicates(merged, threshold=self.settings.iou_threshold)
        logger.info("Detected %d products in %s (%d raw boxes)", len(kept), Path(image_path).name, len(merged))
        return kept
