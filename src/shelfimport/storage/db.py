"""SQLite database initialization and connection helpers."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
  job_id TEXT PRIMARY KEY,
  type TEXT NOT NULL,
  job_group TEXT,
  status TEXT NOT NULL,
  attempts INTEGER NOT NULL DEFAULT 0,
  max_attempts INTEGER NOT NULL,
  payload_json TEXT NOT NULL,
  error TEXT,
  run_after REAL NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_status_run_after ON jobs(status, run_after);
CREATE INDEX IF NOT EXISTS idx_jobs_group_status ON jobs(job_group, status);

CREATE TABLE IF NOT EXISTS batches (
  batch_id TEXT PRIMARY KEY,
  status TEXT NOT NULL,
  total_images INTEGER NOT NULL DEFAULT 0,
  processed_images INTEGER NOT NULL DEFAULT 0,
  failed_images INTEGER NOT NULL DEFAULT 0,
  total_products INTEGER NOT NULL DEFAULT 0,
  verified_products INTEGER NOT NULL DEFAULT 0,
  review_products INTEGER NOT NULL DEFAULT 0,
  current_image TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS batch_images (
  batch_id TEXT NOT NULL,
  content_hash TEXT NOT NULL,
  original_filename TEXT,
  detections INTEGER,
  finished INTEGER NOT NULL DEFAULT 0,
  failed INTEGER NOT NULL DEFAULT 0,
  PRIMARY KEY (batch_id, content_hash)
);

CREATE TABLE IF NOT EXISTS source_images (
  content_hash TEXT PRIMARY KEY,
  stored_path TEXT NOT NULL,
  original_filename TEXT,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS processed_images (
  content_hash TEXT PRIMARY KEY,
  original_filename TEXT,
  batch_id TEXT,
  products_detected INTEGER NOT NULL DEFAULT 0,
  products_created INTEGER NOT NULL DEFAULT 0,
  processed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
  product_id INTEGER PRIMARY KEY AUTOINCREMENT,
  sku TEXT NOT NULL UNIQUE,
  name TEXT NOT NULL,
  brand TEXT,
  price REAL NOT NULL,
  status TEXT NOT NULL,
  upc TEXT UNIQUE,
  categories_json TEXT NOT NULL,
  size TEXT,
  description TEXT,
  image_ref TEXT,
  source_hash TEXT,
  source_image TEXT,
  detection_index INTEGER,
  batch_id TEXT,
  materialized INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  UNIQUE (source_hash, detection_index)
);

CREATE INDEX IF NOT EXISTS idx_products_status ON products(status, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_products_batch ON products(batch_id);
"""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open SQLite connection with row factory configured."""
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str | Path) -> None:
    """Initialize database schema."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()
