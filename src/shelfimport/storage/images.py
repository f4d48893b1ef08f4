"""Content-addressed source images, product images and processed markers."""

from __future__ import annotations

import hashlib
import shutil
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shelfimport.storage.db import connect, init_db, utc_now_iso


EXTENSIONS = {"JPEG": ".jpg", "PNG": ".png", "WEBP": ".webp"}


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class SourceImage:
    content_hash: str
    stored_path: Path
    original_filename: str


class ImageStore:
    """Files under ``root`` plus their bookkeeping rows in SQLite.

    Layout::

        root/source/<sha256>.<ext>     uploaded photos, one per distinct content
        root/work/                     interim crops keyed by temporary SKU
        root/products/<sku>.<ext>      final product images
    """

    def __init__(self, root: str | Path, db_path: str | Path) -> None:
        self.root = Path(root)
        self.db_path = Path(db_path)
        self.source_dir = self.root / "source"
        self.work_dir = self.root / "work"
        self.products_dir = self.root / "products"
        for path in (self.source_dir, self.work_dir, self.products_dir):
            path.mkdir(parents=True, exist_ok=True)
        init_db(self.db_path)

    def _conn(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def store_source(self, data: bytes, original_filename: str, image_format: str) -> SourceImage:
        """Write uploaded bytes once per distinct content and record them."""
        digest = content_hash(data)
        ext = EXTENSIONS.get(image_format.upper(), ".jpg")
        path = self.source_dir / f"{digest}{ext}"
        if not path.exists():
            tmp = path.with_suffix(path.suffix + ".part")
            tmp.write_bytes(data)
            tmp.replace(path)

        conn = self._conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO source_images(content_hash, stored_path, original_filename, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(content_hash) DO NOTHING
                    """,
                    (digest, str(path), original_filename, utc_now_iso()),
                )
        finally:
            conn.close()
        return SourceImage(content_hash=digest, stored_path=path, original_filename=original_filename)

    def get_source(self, digest: str) -> SourceImage | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM source_images WHERE content_hash=?", (digest,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return SourceImage(
            content_hash=str(row["content_hash"]),
            stored_path=Path(row["stored_path"]),
            original_filename=str(row["original_filename"] or ""),
        )

    def work_stem(self, key: str, source_hash: str, detection_index: int) -> Path:
        """Extension-less path for an interim crop."""
        return self.work_dir / f"{key}-{source_hash[:12]}-{detection_index}"

    def stash_interim(self, crop: Path, temp_sku: str, source_hash: str, detection_index: int) -> Path:
        """Re-key a fresh crop under the temporary SKU read from its label."""
        target = self.work_stem(temp_sku, source_hash, detection_index).with_suffix(crop.suffix)
        crop.replace(target)
        return target

    def find_interim(self, source_hash: str, detection_index: int) -> Path | None:
        """The interim crop left in ``work/`` for a detection, whatever SKU it was keyed by."""
        matches = sorted(self.work_dir.glob(f"*-{source_hash[:12]}-{detection_index}.*"))
        return matches[0] if matches else None

    def product_image_path(self, sku: str, suffix: str) -> Path:
        return self.products_dir / f"{sku}{suffix}"

    def save_product_image(self, interim: Path, sku: str) -> Path:
        """Move an interim crop to its final SKU-keyed location."""
        target = self.product_image_path(sku, interim.suffix)
        shutil.move(str(interim), str(target))
        return target

    def discard(self, path: Path | None) -> None:
        if path is not None:
            path.unlink(missing_ok=True)

    def is_processed(self, digest: str) -> bool:
        conn = self._conn()
        try:
            row = conn.execute("SELECT 1 FROM processed_images WHERE content_hash=?", (digest,)).fetchone()
            return row is not None
        finally:
            conn.close()

    def mark_processed(
        self,
        digest: str,
        *,
        original_filename: str,
        batch_id: str,
        products_detected: int,
        products_created: int,
    ) -> bool:
        """Write the processed marker; False when one already existed."""
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    """
                    INSERT INTO processed_images(
                        content_hash, original_filename, batch_id, products_detected, products_created, processed_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(content_hash) DO NOTHING
                    """,
                    (digest, original_filename, batch_id, products_detected, products_created, utc_now_iso()),
                )
                return cur.rowcount == 1
        finally:
            conn.close()

    def clear_marker(self, digest: str) -> bool:
        """Forget that an image was processed so it can be imported again.

        Products already created from it stay; a rerun only fills detection
        slots that have no product yet. Returns False when no marker existed.
        """
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute("DELETE FROM processed_images WHERE content_hash=?", (digest,))
                return cur.rowcount == 1
        finally:
            conn.close()

    def get_marker(self, digest: str) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM processed_images WHERE content_hash=?", (digest,)).fetchone()
            return None if row is None else dict(row)
        finally:
            conn.close()
