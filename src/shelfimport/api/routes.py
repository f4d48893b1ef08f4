"""FastAPI routes for batch intake, progress polling and catalog review."""

from __future__ import annotations

import io
from typing import Any

from fastapi import APIRouter, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from shelfimport.api.schemas import BatchAccepted, BatchProgress, CatalogStats, ProductOut
from shelfimport.catalog.export import write_products_csv
from shelfimport.errors import IntakeError
from shelfimport.pipeline.importer import PhotoImporter
from shelfimport.pipeline.intake import Upload
from shelfimport.storage.catalog import CatalogStore

router = APIRouter()

INTAKE_STATUS_CODES = {
    "empty": 400,
    "too_many_files": 400,
    "too_large": 413,
    "unsupported_type": 415,
}


def _importer(request: Request) -> PhotoImporter:
    return request.app.state.runtime.importer


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.runtime.catalog


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/batches", status_code=202, response_model=BatchAccepted)
async def create_batch(request: Request, files: list[UploadFile] = File(...)) -> BatchAccepted:
    limit = request.app.state.settings.intake.max_file_bytes
    uploads: list[Upload] = []
    for item in files:
        # One byte past the limit is enough to reject the file.
        data = await item.read(limit + 1)
        uploads.append(Upload(filename=item.filename or "upload", data=data, content_type=item.content_type))

    try:
        ticket = _importer(request).submit_batch(uploads)
    except IntakeError as exc:
        raise HTTPException(status_code=INTAKE_STATUS_CODES.get(exc.reason, 400), detail=str(exc)) from exc
    return BatchAccepted(
        batch_id=ticket.batch_id,
        total_images=ticket.total_images,
        duplicate_uploads=ticket.duplicate_uploads,
    )


@router.get("/batches/{batch_id}", response_model=BatchProgress)
def get_batch(batch_id: str, request: Request) -> BatchProgress:
    progress = _importer(request).get_progress(batch_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Unknown or expired batch: {batch_id}")
    return BatchProgress.model_validate(progress)


@router.get("/batches/{batch_id}/jobs")
def get_batch_jobs(batch_id: str, request: Request) -> dict[str, int]:
    return _importer(request).queue_status(batch_id)


@router.post("/batches/{batch_id}/cancel")
def cancel_batch(batch_id: str, request: Request) -> dict[str, Any]:
    importer = _importer(request)
    if importer.get_progress(batch_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown or expired batch: {batch_id}")
    canceled = importer.cancel_batch(batch_id)
    return {"status": "canceled", "batch_id": batch_id, "canceled_jobs": canceled}


@router.get("/products", response_model=list[ProductOut])
def list_products(
    request: Request,
    status: str | None = Query(None, pattern="^(verified|needs_review)$"),
    batch_id: str | None = Query(None),
    limit: int = Query(500, ge=1, le=5000),
) -> list[dict[str, Any]]:
    return _catalog(request).list_products(status=status, batch_id=batch_id, limit=limit)


@router.get("/products/stats", response_model=CatalogStats)
def product_stats(request: Request, batch_id: str | None = Query(None)) -> dict[str, int]:
    return _catalog(request).stats(batch_id=batch_id)


@router.get("/products/export.csv")
def export_products(
    request: Request,
    status: str | None = Query(None, pattern="^(verified|needs_review)$"),
    batch_id: str | None = Query(None),
    image_base_url: str | None = Query(None),
) -> Response:
    products = _catalog(request).list_products(status=status, batch_id=batch_id, limit=100000)
    buffer = io.StringIO()
    write_products_csv(products, buffer, image_base_url=image_base_url)
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="products.csv"'},
    )


@router.delete("/images/{content_hash}/marker")
def clear_image_marker(content_hash: str, request: Request) -> dict[str, str]:
    """Let an already processed photo be imported again."""
    if not request.app.state.runtime.images.clear_marker(content_hash):
        raise HTTPException(status_code=404, detail=f"No processed marker for {content_hash}")
    return {"status": "cleared", "content_hash": content_hash}
