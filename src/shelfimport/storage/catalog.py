"""SQLite-backed catalog of draft products."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from shelfimport.catalog.models import ProductDraft
from shelfimport.errors import DuplicateDetectionError, DuplicateSKUError, DuplicateUPCError
from shelfimport.storage.db import connect, init_db, utc_now_iso


class CatalogStore:
    """Draft product persistence with write-time uniqueness on SKU, UPC and detection."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        init_db(self.db_path)

    def _conn(self) -> sqlite3.Connection:
        return connect(self.db_path)

    @staticmethod
    def _json_load(raw: str | None, fallback: Any) -> Any:
        if raw is None:
            return fallback
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return fallback

    def _row_to_product(self, row: sqlite3.Row) -> dict[str, Any]:
        out = dict(row)
        out["categories"] = self._json_load(out.pop("categories_json", None), [])
        return out

    def create_draft(self, draft: ProductDraft) -> int:
        """Insert a draft product and return its id.

        Raises DuplicateUPCError, DuplicateSKUError or DuplicateDetectionError
        when the matching unique constraint rejects the row.
        """
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    """
                    INSERT INTO products(
                        sku, name, brand, price, status, upc, categories_json, size, description,
                        image_ref, source_hash, source_image, detection_index, batch_id, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        draft.sku,
                        draft.name,
                        draft.brand,
                        draft.price,
                        draft.status,
                        draft.upc or None,
                        json.dumps(draft.categories),
                        draft.size,
                        draft.description,
                        draft.image_ref,
                        draft.source_hash,
                        draft.source_image,
                        draft.detection_index,
                        draft.batch_id,
                        utc_now_iso(),
                    ),
                )
            return int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            message = str(exc)
            if "products.upc" in message:
                raise DuplicateUPCError(draft.upc or "") from exc
            if "products.sku" in message:
                raise DuplicateSKUError(draft.sku) from exc
            if "products.source_hash" in message:
                raise DuplicateDetectionError(
                    f"detection {draft.detection_index} of {draft.source_hash} already stored"
                ) from exc
            raise
        finally:
            conn.close()

    def exists_by_upc(self, upc: str) -> bool:
        conn = self._conn()
        try:
            row = conn.execute("SELECT 1 FROM products WHERE upc=?", (upc,)).fetchone()
            return row is not None
        finally:
            conn.close()

    def sku_taken(self, sku: str) -> bool:
        conn = self._conn()
        try:
            row = conn.execute("SELECT 1 FROM products WHERE sku=?", (sku,)).fetchone()
            return row is not None
        finally:
            conn.close()

    def get_for_detection(self, source_hash: str, detection_index: int) -> dict[str, Any] | None:
        """The product stored for a detection slot, materialized or not."""
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT * FROM products WHERE source_hash=? AND detection_index=?",
                (source_hash, detection_index),
            ).fetchone()
            return None if row is None else self._row_to_product(row)
        finally:
            conn.close()

    def count_for_source(self, source_hash: str) -> int:
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM products WHERE source_hash=?",
                (source_hash,),
            ).fetchone()
            return int(row["n"]) if row else 0
        finally:
            conn.close()

    def get_product(self, product_id: int) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM products WHERE product_id=?", (product_id,)).fetchone()
            return None if row is None else self._row_to_product(row)
        finally:
            conn.close()

    def get_by_sku(self, sku: str) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM products WHERE sku=?", (sku,)).fetchone()
            return None if row is None else self._row_to_product(row)
        finally:
            conn.close()

    def list_products(
        self,
        *,
        status: str | None = None,
        batch_id: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """List draft products, newest first, optionally filtered."""
        filters: list[str] = []
        params: list[Any] = []
        if status is not None:
            filters.append("status=?")
            params.append(status)
        if batch_id is not None:
            filters.append("batch_id=?")
            params.append(batch_id)
        where = f"WHERE {' AND '.join(filters)}" if filters else ""
        params.append(limit)

        conn = self._conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM products {where} ORDER BY product_id DESC LIMIT ?",
                tuple(params),
            ).fetchall()
            return [self._row_to_product(row) for row in rows]
        finally:
            conn.close()

    def list_unpriced(self, *, include_review: bool = False, limit: int = 500) -> list[dict[str, Any]]:
        """Drafts without a positive price, oldest first; optionally every needs_review draft too."""
        where = "price <= 0 OR status='needs_review'" if include_review else "price <= 0"
        conn = self._conn()
        try:
            rows = conn.execute(
                f"SELECT * FROM products WHERE {where} ORDER BY product_id ASC LIMIT ?",
                (limit,),
            ).fetchall()
            return [self._row_to_product(row) for row in rows]
        finally:
            conn.close()

    def update_price(self, product_id: int, price: float, *, upc: str | None = None) -> bool:
        """Set a draft's price, and its UPC when it has none yet.

        Raises DuplicateUPCError when ``upc`` already belongs to another product.
        """
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    "UPDATE products SET price=?, upc=COALESCE(upc, ?) WHERE product_id=?",
                    (round(price, 2), upc or None, product_id),
                )
                return cur.rowcount == 1
        except sqlite3.IntegrityError as exc:
            raise DuplicateUPCError(upc or "") from exc
        finally:
            conn.close()

    def stats(self, batch_id: str | None = None) -> dict[str, int]:
        """Totals by review status, for the whole catalog or one batch."""
        where = "WHERE batch_id=?" if batch_id is not None else ""
        params: tuple[Any, ...] = (batch_id,) if batch_id is not None else ()
        conn = self._conn()
        try:
            row = conn.execute(
                f"""
                SELECT
                  COUNT(*) AS total,
                  COALESCE(SUM(CASE WHEN status='verified' THEN 1 ELSE 0 END), 0) AS verified,
                  COALESCE(SUM(CASE WHEN status='needs_review' THEN 1 ELSE 0 END), 0) AS needs_review
                FROM products {where}
                """,
                params,
            ).fetchone()
            return {
                "total": int(row["total"]),
                "verified": int(row["verified"]),
                "needs_review": int(row["needs_review"]),
            }
        finally:
            conn.close()
