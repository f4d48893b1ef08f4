"""Batch progress counters with expiry."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any, Callable

from shelfimport.storage.db import connect, init_db, utc_now_iso


COUNTER_COLUMNS = frozenset(
    {
        "total_images",
        "processed_images",
        "failed_images",
        "total_products",
        "verified_products",
        "review_products",
    }
)
BATCH_STATUSES = ("queued", "detecting", "processing", "completed")


class ProgressStore:
    """Per-batch counters polled by clients.

    Counters only move through single-statement increments so that concurrent
    image jobs never lose an update. Rows expire ``ttl_seconds`` after their
    last write and are then treated as missing.
    """

    def __init__(
        self,
        db_path: str | Path,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        init_db(self.db_path)

    def _conn(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def _expires_at(self) -> float:
        return self._clock() + self.ttl_seconds

    def init_batch(self, batch_id: str, images: list[tuple[str, str]]) -> dict[str, Any]:
        """Create the batch row and register its distinct images.

        ``images`` holds ``(content_hash, original_filename)`` pairs.
        """
        now = utc_now_iso()
        conn = self._conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO batches(
                        batch_id, status, total_images, current_image, created_at, updated_at, expires_at
                    )
                    VALUES (?, 'queued', ?, NULL, ?, ?, ?)
                    """,
                    (batch_id, len(images), now, now, self._expires_at()),
                )
                conn.executemany(
                    """
                    INSERT INTO batch_images(batch_id, content_hash, original_filename)
                    VALUES (?, ?, ?)
                    ON CONFLICT(batch_id, content_hash) DO NOTHING
                    """,
                    [(batch_id, content_hash, filename) for content_hash, filename in images],
                )
        finally:
            conn.close()
        return self.get(batch_id) or {}

    def _bump(self, conn: sqlite3.Connection, batch_id: str, key: str, amount: int) -> None:
        if key not in COUNTER_COLUMNS:
            raise ValueError(f"Unknown progress counter: {key}")
        conn.execute(
            f"UPDATE batches SET {key}={key}+?, updated_at=?, expires_at=? WHERE batch_id=?",
            (amount, utc_now_iso(), self._expires_at(), batch_id),
        )

    def update(self, batch_id: str, *, status: str | None = None, current_image: str | None = None) -> None:
        """Set status and/or current image; a completed batch keeps its status."""
        if status is not None and status not in BATCH_STATUSES:
            raise ValueError(f"Unknown batch status: {status}")
        conn = self._conn()
        try:
            with conn:
                if status is not None:
                    conn.execute(
                        "UPDATE batches SET status=? WHERE batch_id=? AND status != 'completed'",
                        (status, batch_id),
                    )
                if current_image is not None:
                    conn.execute(
                        "UPDATE batches SET current_image=? WHERE batch_id=?",
                        (current_image, batch_id),
                    )
                conn.execute(
                    "UPDATE batches SET updated_at=?, expires_at=? WHERE batch_id=?",
                    (utc_now_iso(), self._expires_at(), batch_id),
                )
        finally:
            conn.close()

    def complete(self, batch_id: str) -> None:
        conn = self._conn()
        try:
            with conn:
                conn.execute(
                    """
                    UPDATE batches SET status='completed', current_image=NULL, updated_at=?, expires_at=?
                    WHERE batch_id=?
                    """,
                    (utc_now_iso(), self._expires_at(), batch_id),
                )
        finally:
            conn.close()

    def record_detections(self, batch_id: str, content_hash: str, count: int) -> bool:
        """Add an image's detection count to total_products once per batch."""
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    """
                    UPDATE batch_images SET detections=?
                    WHERE batch_id=? AND content_hash=? AND detections IS NULL
                    """,
                    (count, batch_id, content_hash),
                )
                if cur.rowcount == 0:
                    return False
                self._bump(conn, batch_id, "total_products", count)
                return True
        finally:
            conn.close()

    def count_product(self, batch_id: str, product_id: int, counter: str) -> bool:
        """Flag a product materialized and bump ``counter`` in one transaction.

        Returns False when the product was already counted, so a rerun of the
        same detection never counts it twice.
        """
        if counter not in ("verified_products", "review_products"):
            raise ValueError(f"Not a product counter: {counter}")
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    "UPDATE products SET materialized=1 WHERE product_id=? AND materialized=0",
                    (product_id,),
                )
                if cur.rowcount == 0:
                    return False
                self._bump(conn, batch_id, counter, 1)
                return True
        finally:
            conn.close()

    def finish_image(self, batch_id: str, content_hash: str) -> bool:
        """Count an image as processed, at most once per batch."""
        return self._close_image(batch_id, content_hash, column="finished", counter="processed_images")

    def mark_failed_image(self, batch_id: str, content_hash: str) -> bool:
        """Count an image as failed after its job gave up, at most once per batch."""
        return self._close_image(batch_id, content_hash, column="failed", counter="failed_images")

    def _close_image(self, batch_id: str, content_hash: str, *, column: str, counter: str) -> bool:
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    f"""
                    UPDATE batch_images SET {column}=1
                    WHERE batch_id=? AND content_hash=? AND finished=0 AND failed=0
                    """,
                    (batch_id, content_hash),
                )
                if cur.rowcount == 0:
                    return False
                self._bump(conn, batch_id, counter, 1)
                return True
        finally:
            conn.close()

    def is_settled(self, batch_id: str) -> bool:
        """True once every image of the batch finished or failed."""
        row = self.get(batch_id)
        if row is None:
            return False
        return int(row["processed_images"]) + int(row["failed_images"]) >= int(row["total_images"])

    def get(self, batch_id: str) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT * FROM batches WHERE batch_id=? AND expires_at > ?",
                (batch_id, self._clock()),
            ).fetchone()
            return None if row is None else dict(row)
        finally:
            conn.close()

    def purge_expired(self) -> int:
        """Delete expired batches and their image rows."""
        now = self._clock()
        conn = self._conn()
        try:
            with conn:
                conn.execute(
                    """
                    DELETE FROM batch_images
                    WHERE batch_id IN (SELECT batch_id FROM batches WHERE expires_at <= ?)
                    """,
                    (now,),
                )
                cur = conn.execute("DELETE FROM batches WHERE expires_at <= ?", (now,))
                return cur.rowcount
        finally:
            conn.close()
