"""Background job queue backed by SQLite rows and worker threads."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from shelfimport.storage.db import connect, init_db, utc_now_iso

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], None]
FailureHook = Callable[[dict[str, Any], Exception], None]

JOB_STATUSES = ("queued", "running", "complete", "failed")
FAR_FUTURE = 1e18


class JobQueue:
    """At-least-once job runner for import work.

    Jobs are rows in the ``jobs`` table. Workers claim a row with a
    conditional update, so two workers never run the same attempt. A handler
    that raises is retried with linear backoff until ``max_attempts``; then the
    row is marked failed and the type's failure hook runs once.

    Rows survive in the database but nothing resumes ``running`` rows after a
    restart.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        workers: int = 2,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 10.0,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self.workers = max(1, workers)
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.poll_interval = poll_interval
        self._clock = clock
        self._handlers: dict[str, JobHandler] = {}
        self._failure_hooks: dict[str, FailureHook] = {}
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        init_db(self.db_path)

    def _conn(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def register(self, job_type: str, handler: JobHandler, on_failure: FailureHook | None = None) -> None:
        self._handlers[job_type] = handler
        if on_failure is not None:
            self._failure_hooks[job_type] = on_failure

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        group: str | None = None,
        delay_seconds: float = 0.0,
    ) -> str:
        """Queue a job and return its id."""
        job_id = str(uuid4())
        now = utc_now_iso()
        conn = self._conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO jobs(
                        job_id, type, job_group, status, attempts, max_attempts,
                        payload_json, error, run_after, created_at, updated_at
                    )
                    VALUES (?, ?, ?, 'queued', 0, ?, ?, NULL, ?, ?, ?)
                    """,
                    (
                        job_id,
                        job_type,
                        group,
                        self.max_attempts,
                        json.dumps(payload),
                        self._clock() + max(0.0, delay_seconds),
                        now,
                        now,
                    ),
                )
        finally:
            conn.close()
        logger.debug("Enqueued %s job %s (group=%s, delay=%.0fs)", job_type, job_id, group, delay_seconds)
        return job_id

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM jobs WHERE job_id=?", (job_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        out = dict(row)
        out["payload"] = json.loads(out.pop("payload_json") or "{}")
        return out

    def _claim_next(self, not_after: float) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            for _ in range(5):
                row = conn.execute(
                    """
                    SELECT job_id FROM jobs
                    WHERE status='queued' AND run_after <= ?
                    ORDER BY run_after, created_at
                    LIMIT 1
                    """,
                    (not_after,),
                ).fetchone()
                if row is None:
                    return None
                with conn:
                    cur = conn.execute(
                        """
                        UPDATE jobs SET status='running', attempts=attempts+1, updated_at=?
                        WHERE job_id=? AND status='queued'
                        """,
                        (utc_now_iso(), row["job_id"]),
                    )
                if cur.rowcount == 1:
                    return self.get_job(str(row["job_id"]))
            return None
        finally:
            conn.close()

    def _finish(self, job_id: str, status: str, error: str | None = None, run_after: float | None = None) -> None:
        conn = self._conn()
        try:
            with conn:
                conn.execute(
                    """
                    UPDATE jobs SET status=?, error=?, run_after=COALESCE(?, run_after), updated_at=?
                    WHERE job_id=?
                    """,
                    (status, error, run_after, utc_now_iso(), job_id),
                )
        finally:
            conn.close()

    def _execute(self, job: dict[str, Any]) -> None:
        job_id = str(job["job_id"])
        job_type = str(job["type"])
        handler = self._handlers.get(job_type)
        if handler is None:
            logger.error("No handler registered for job type %s", job_type)
            self._finish(job_id, "failed", error=f"Unsupported job type: {job_type}")
            return

        try:
            handler(job["payload"])
        except Exception as exc:  # noqa: BLE001
            attempts = int(job["attempts"])
            if attempts < int(job["max_attempts"]):
                delay = self.retry_backoff_seconds * attempts
                logger.warning(
                    "%s job %s failed (attempt %d/%d), retrying in %.0fs: %s",
                    job_type, job_id, attempts, job["max_attempts"], delay, exc,
                )
                self._finish(job_id, "queued", error=str(exc), run_after=self._clock() + delay)
                return
            logger.exception("%s job %s failed permanently", job_type, job_id)
            self._finish(job_id, "failed", error=str(exc))
            hook = self._failure_hooks.get(job_type)
            if hook is not None:
                try:
                    hook(job["payload"], exc)
                except Exception:  # noqa: BLE001
                    logger.exception("Failure hook for %s job %s raised", job_type, job_id)
            return

        self._finish(job_id, "complete")

    def start(self) -> None:
        """Start worker threads if not already running."""
        if any(thread.is_alive() for thread in self._threads):
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._run_loop, name=f"shelfimport-worker-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: float | None = None) -> bool:
        """Stop worker loops and join threads; a job already running finishes first.

        Returns False when a worker was still busy after ``timeout`` seconds.
        """
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = [thread for thread in self._threads if thread.is_alive()]
        return not self._threads

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            job = self._claim_next(self._clock())
            if job is None:
                self._stop.wait(self.poll_interval)
                continue
            self._execute(job)

    def run_until_idle(self, *, include_delayed: bool = False, max_jobs: int = 10_000) -> int:
        """Run queued jobs in the calling thread until none are ready.

        With ``include_delayed`` jobs scheduled in the future (retries and
        deferred checks) run immediately, in schedule order.
        """
        ran = 0
        while ran < max_jobs:
            not_after = FAR_FUTURE if include_delayed else self._clock()
            job = self._claim_next(not_after)
            if job is None:
                break
            self._execute(job)
            ran += 1
        return ran

    def status_counts(self, group: str) -> dict[str, int]:
        counts = {status: 0 for status in JOB_STATUSES}
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM jobs WHERE job_group=? GROUP BY status",
                (group,),
            ).fetchall()
        finally:
            conn.close()
        for row in rows:
            counts[str(row["status"])] = int(row["n"])
        return counts

    def cancel_group(self, group: str) -> int:
        """Fail every queued job of a group; running jobs finish normally."""
        conn = self._conn()
        try:
            with conn:
                cur = conn.execute(
                    """
                    UPDATE jobs SET status='failed', error='canceled', updated_at=?
                    WHERE job_group=? AND status='queued'
                    """,
                    (utc_now_iso(), group),
                )
                return cur.rowcount
        finally:
            conn.close()
