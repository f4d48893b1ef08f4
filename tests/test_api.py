from __future__ import annotations

import csv
import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from _helpers import FakeEnhancer, FakePredictions, build_importer, image_bytes
from shelfimport.api.app import create_app
from shelfimport.config import AppSettings, IntakeSettings
from shelfimport.errors import ConfigurationError
from shelfimport.pipeline.runtime import ImportRuntime


def _app(tmp_path: Path, intake: IntakeSettings | None = None):
    settings = AppSettings(intake=intake or IntakeSettings())
    importer = build_importer(tmp_path, intake=settings.intake)
    runtime = ImportRuntime(
        settings=settings,
        importer=importer,
        queue=importer.queue,
        catalog=importer.catalog,
        progress=importer.progress,
        images=importer.images,
        predictions=FakePredictions(),
        enhancer=FakeEnhancer(),
    )
    app = create_app(runtime=runtime)
    app.state.runtime.queue.stop()
    return app, runtime


def _files(*names: str) -> list[tuple[str, tuple[str, bytes, str]]]:
    return [("files", (name, image_bytes(color=(i * 20, 100, 100)), "image/jpeg")) for i, name in enumerate(names)]


def test_health(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    assert TestClient(app).get("/health").json() == {"status": "ok"}


def test_batch_lifecycle(tmp_path: Path) -> None:
    app, runtime = _app(tmp_path)
    client = TestClient(app)

    accepted = client.post("/batches", files=_files("a.jpg"))
    assert accepted.status_code == 202
    batch_id = accepted.json()["batch_id"]
    assert accepted.json()["total_images"] == 1

    queued = client.get(f"/batches/{batch_id}").json()
    assert queued["status"] == "queued"
    assert queued["processed_images"] == 0

    runtime.queue.run_until_idle(include_delayed=True)

    done = client.get(f"/batches/{batch_id}").json()
    assert done["status"] == "completed"
    assert done["processed_images"] == 1
    assert done["total_products"] == 2
    assert done["verified_products"] == 1
    assert done["review_products"] == 1

    jobs = client.get(f"/batches/{batch_id}/jobs").json()
    assert jobs["failed"] == 0 and jobs["queued"] == 0

    products = client.get("/products", params={"batch_id": batch_id}).json()
    assert {p["status"] for p in products} == {"verified", "needs_review"}
    assert client.get("/products", params={"status": "verified"}).json()[0]["upc"] == "0012345678905"
    assert client.get("/products/stats").json() == {"total": 2, "verified": 1, "needs_review": 1}

    export = client.get("/products/export.csv")
    assert export.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(export.text)))
    assert rows[0][0] == "Name"
    assert len(rows) == 3


@pytest.mark.parametrize(
    ("files", "intake", "status"),
    [
        ([], None, 422),
        ([("files", ("a.txt", b"hello", "text/plain"))], None, 415),
        ([("files", ("a.jpg", b"not really a jpeg", "image/jpeg"))], None, 415),
        (None, IntakeSettings(max_file_bytes=200), 413),
    ],
)
def test_rejected_uploads(tmp_path: Path, files, intake, status: int) -> None:
    app, _ = _app(tmp_path, intake=intake)

    response = TestClient(app).post("/batches", files=files if files is not None else _files("big.jpg"))

    assert response.status_code == status


def test_too_many_files(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)

    response = TestClient(app).post("/batches", files=_files(*[f"{i}.jpg" for i in range(11)]))

    assert response.status_code == 400
    assert "Too many images" in response.json()["detail"]


def test_unknown_batch_is_404(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    client = TestClient(app)

    assert client.get("/batches/batch-nope").status_code == 404
    assert client.post("/batches/batch-nope/cancel").status_code == 404


def test_cancel_batch(tmp_path: Path) -> None:
    app, runtime = _app(tmp_path)
    client = TestClient(app)
    batch_id = client.post("/batches", files=_files("a.jpg")).json()["batch_id"]

    response = client.post(f"/batches/{batch_id}/cancel")

    assert response.json() == {"status": "canceled", "batch_id": batch_id, "canceled_jobs": 2}
    assert client.get(f"/batches/{batch_id}").json()["status"] == "completed"


def test_app_refuses_to_start_without_token(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)

    with pytest.raises(ConfigurationError):
        create_app(db_path=tmp_path / "shelf.db", config_path=tmp_path / "missing.yaml")


def test_clear_image_marker(tmp_path: Path) -> None:
    app, runtime = _app(tmp_path)
    client = TestClient(app)
    runtime.images.mark_processed("abc123", original_filename="a.jpg", batch_id="b1", products_detected=2, products_created=2)

    cleared = client.delete("/images/abc123/marker")

    assert cleared.status_code == 200
    assert cleared.json() == {"status": "cleared", "content_hash": "abc123"}
    assert not runtime.images.is_processed("abc123")
    assert client.delete("/images/abc123/marker").status_code == 404
