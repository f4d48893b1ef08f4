"""Cut detections out of shelf photos."""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image

logger = logging.getLogger(__name__)

ALPHA_FORMATS = {"PNG", "WEBP"}


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def crop_detection(
    image_path: str | Path,
    box: tuple[float, float, float, float],
    out_stem: str | Path,
    padding: int = 5,
    min_size: int = 30,
) -> Path | None:
    """Write the padded, clamped crop for ``box`` next to ``out_stem``.

    Returns the written path (``.png`` for transparent PNG/WEBP sources,
    ``.jpg`` otherwise) or None when the crop is smaller than ``min_size``
    in either dimension.
    """
    with Image.open(image_path) as img:
        width, height = img.size
        x1 = max(0, int(box[0]) - padding)
        y1 = max(0, int(box[1]) - padding)
        x2 = min(width, int(box[2]) + padding)
        y2 = min(height, int(box[3]) + padding)

        if (x2 - x1) < min_size or (y2 - y1) < min_size:
            logger.debug("Skipping %dx%d crop from %s", x2 - x1, y2 - y1, Path(image_path).name)
            return None

        cropped = img.crop((x1, y1, x2, y2))
        keep_alpha = (img.format or "").upper() in ALPHA_FORMATS and _has_alpha(img)

    out = Path(out_stem)
    out.parent.mkdir(parents=True, exist_ok=True)
    if keep_alpha:
        path = out.with_suffix(".png")
        cropped.convert("RGBA").save(path, format="PNG")
    else:
        path = out.with_suffix(".jpg")
        cropped.convert("RGB").save(path, format="JPEG", quality=95)
    return path
