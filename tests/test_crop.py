from __future__ import annotations

from pathlib import Path

from PIL import Image

from _helpers import write_image
from shelfimport.vision.crop import crop_detection


def test_crop_pads_and_clamps_to_image(tmp_path: Path) -> None:
    src = write_image(tmp_path / "shelf.jpg", size=(200, 100))

    out = crop_detection(src, (2.0, 10.0, 198.0, 97.0), tmp_path / "work" / "crop-0", padding=5)

    assert out == tmp_path / "work" / "crop-0.jpg"
    with Image.open(out) as img:
        assert img.size == (200, 95)
        assert img.mode == "RGB"


def test_crop_below_min_size_is_skipped(tmp_path: Path) -> None:
    src = write_image(tmp_path / "shelf.jpg", size=(200, 100))

    assert crop_detection(src, (10, 10, 25, 80), tmp_path / "crop", padding=5, min_size=30) is None
    assert not list(tmp_path.glob("crop*"))


def test_transparent_png_keeps_alpha(tmp_path: Path) -> None:
    src = write_image(tmp_path / "shelf.png", size=(120, 120), fmt="PNG")

    out = crop_detection(src, (10, 10, 90, 90), tmp_path / "crop")

    assert out is not None and out.suffix == ".png"
    with Image.open(out) as img:
        assert img.mode == "RGBA"
