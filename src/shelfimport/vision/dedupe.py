"""Overlap suppression for detections merged from several text queries."""

from __future__ import annotations

from shelfimport.types import Detection


def iou(a: tuple[float, float, float, float], b: tuple[float, float, float, float]) -> float:
    """Intersection over union of two xyxy boxes."""
    ix1 = max(a[0], b[0])
    iy1 = max(a[1], b[1])
    ix2 = min(a[2], b[2])
    iy2 = min(a[3], b[3])

    inter = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
    area_a = max(0.0, a[2] - a[0]) * max(0.0, a[3] - a[1])
    area_b = max(0.0, b[2] - b[0]) * max(0.0, b[3] - b[1])
    union = area_a + area_b - inter
    if union <= 0:
        return 0.0
    return inter / union


def suppress_duplicates(detections: list[Detection], threshold: float = 0.5) -> list[Detection]:
    """Greedy non-maximum suppression, highest confidence first.

    Labels are ignored: the same jar found by the "jar" and "cream" queries is
    still one product.
    """
    ordered = sorted(detections, key=lambda det: det.confidence, reverse=True)
    kept: list[Detection] = []
    for det in ordered:
        if any(iou(det.box, other.box) > threshold for other in kept):
            continue
        kept.append(det)
    return kept
