"""Batch orchestration: shelf photo in, draft catalog products out."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from shelfimport.catalog.models import CandidateProduct, ProductDraft, ValidationResult
from shelfimport.catalog.sku import disambiguate_sku, make_sku
from shelfimport.config import BatchSettings, CropSettings, IntakeSettings
from shelfimport.errors import DuplicateDetectionError, DuplicateSKUError, DuplicateUPCError, ShelfImportError
from shelfimport.jobs.queue import JobQueue
from shelfimport.lookup.validation import ProductValidator
from shelfimport.pipeline.enhance import EnhancementWorker
from shelfimport.pipeline.intake import Upload, validate_uploads
from shelfimport.pricing import resolve_price
from shelfimport.storage.catalog import CatalogStore
from shelfimport.storage.images import ImageStore, SourceImage
from shelfimport.storage.progress import ProgressStore
from shelfimport.types import Detection
from shelfimport.vision.crop import crop_detection
from shelfimport.vision.detector import GroundingDetector
from shelfimport.vision.identify import ProductIdentifier

logger = logging.getLogger(__name__)

PROCESS_IMAGE_JOB = "process_image"
COMPLETE_BATCH_JOB = "complete_batch"

PROGRESS_FIELDS = (
    "status",
    "total_images",
    "processed_images",
    "failed_images",
    "total_products",
    "verified_products",
    "review_products",
    "current_image",
)


@dataclass(frozen=True)
class BatchTicket:
    batch_id: str
    total_images: int
    duplicate_uploads: int = 0


@dataclass
class _Created:
    product_id: int
    sku: str
    status: str
    enhancement: Future[bool]


class PhotoImporter:
    """Drives each image of a batch through detect, identify, validate and materialize.

    Work runs as queue jobs: one ``process_image`` job per distinct image and a
    deferred ``complete_batch`` check. Jobs may run more than once; every step
    that writes state is guarded by a unique key (processed marker, detection
    slot, UPC, SKU) so a rerun never creates a product twice.
    """

    def __init__(
        self,
        *,
        images: ImageStore,
        progress: ProgressStore,
        catalog: CatalogStore,
        queue: JobQueue,
        detector: GroundingDetector,
        identifier: ProductIdentifier,
        validator: ProductValidator,
        enhancer: EnhancementWorker,
        crop_settings: CropSettings | None = None,
        intake_settings: IntakeSettings | None = None,
        batch_settings: BatchSettings | None = None,
    ) -> None:
        self.images = images
        self.progress = progress
        self.catalog = catalog
        self.queue = queue
        self.detector = detector
        self.identifier = identifier
        self.validator = validator
        self.enhancer = enhancer
        self.crop_settings = crop_settings or CropSettings()
        self.intake_settings = intake_settings or IntakeSettings()
        self.batch_settings = batch_settings or BatchSettings()

        queue.register(PROCESS_IMAGE_JOB, self._handle_process_image, on_failure=self._handle_image_failed)
        queue.register(COMPLETE_BATCH_JOB, self._handle_complete_batch)

    # Intake

    def submit_batch(self, uploads: list[Upload]) -> BatchTicket:
        """Store uploads, create the batch and queue its jobs.

        Raises IntakeError when the upload set breaks a limit.
        """
        accepted = validate_uploads(uploads, self.intake_settings)

        self.progress.purge_expired()
        batch_id = f"batch-{uuid4().hex[:12]}"
        distinct: dict[str, SourceImage] = {}
        for item in accepted:
            source = self.images.store_source(item.upload.data, item.upload.filename, item.image_format)
            distinct.setdefault(source.content_hash, source)

        sources = list(distinct.values())
        self.progress.init_batch(batch_id, [(s.content_hash, s.original_filename) for s in sources])
        for source in sources:
            self.queue.enqueue(
                PROCESS_IMAGE_JOB,
                {"batch_id": batch_id, "content_hash": source.content_hash},
                group=batch_id,
            )
        self.queue.enqueue(
            COMPLETE_BATCH_JOB,
            {"batch_id": batch_id, "check": 1},
            group=batch_id,
            delay_seconds=self.batch_settings.completion_grace_seconds,
        )

        logger.info(
            "Batch %s queued: %d images (%d duplicate uploads)",
            batch_id,
            len(sources),
            len(accepted) - len(sources),
        )
        return BatchTicket(
            batch_id=batch_id,
            total_images=len(sources),
            duplicate_uploads=len(accepted) - len(sources),
        )

    # Polling

    def get_progress(self, batch_id: str) -> dict[str, Any] | None:
        row = self.progress.get(batch_id)
        if row is None:
            return None
        out = {key: row[key] for key in PROGRESS_FIELDS}
        out["batch_id"] = batch_id
        return out

    def queue_status(self, batch_id: str) -> dict[str, int]:
        return self.queue.status_counts(batch_id)

    def cancel_batch(self, batch_id: str) -> int:
        """Drop the batch's queued jobs and close it; running images finish."""
        canceled = self.queue.cancel_group(batch_id)
        if self.progress.get(batch_id) is not None:
            self.progress.complete(batch_id)
        logger.warning("Batch %s canceled (%d queued jobs dropped)", batch_id, canceled)
        return canceled

    # Jobs

    def _handle_process_image(self, payload: dict[str, Any]) -> None:
        self.process_image(str(payload["batch_id"]), str(payload["content_hash"]))

    def _handle_image_failed(self, payload: dict[str, Any], exc: Exception) -> None:
        batch_id = str(payload["batch_id"])
        content_hash = str(payload["content_hash"])
        logger.error("Image %s of batch %s failed: %s", content_hash[:12], batch_id, exc)
        self.progress.mark_failed_image(batch_id, content_hash)
        self._complete_if_settled(batch_id)

    def _handle_complete_batch(self, payload: dict[str, Any]) -> None:
        self.complete_batch(str(payload["batch_id"]), int(payload.get("check", 1)))

    def _complete_if_settled(self, batch_id: str) -> bool:
        if not self.progress.is_settled(batch_id):
            return False
        self.progress.complete(batch_id)
        logger.info("Batch %s completed", batch_id)
        return True

    def complete_batch(self, batch_id: str, check: int = 1) -> None:
        """Close the batch once every image finished or failed, else check again later."""
        row = self.progress.get(batch_id)
        if row is None:
            logger.warning("Batch %s expired before completion check", batch_id)
            return
        if row["status"] == "completed" or self._complete_if_settled(batch_id):
            return
        if check >= self.batch_settings.max_completion_checks:
            logger.warning(
                "Batch %s still unsettled after %d checks (%d/%d images); completing anyway",
                batch_id,
                check,
                int(row["processed_images"]) + int(row["failed_images"]),
                int(row["total_images"]),
            )
            self.progress.complete(batch_id)
            return
        self.queue.enqueue(
            COMPLETE_BATCH_JOB,
            {"batch_id": batch_id, "check": check + 1},
            group=batch_id,
            delay_seconds=self.batch_settings.completion_grace_seconds,
        )

    def process_image(self, batch_id: str, content_hash: str) -> int:
        """Run one stored image through the pipeline and return products created.

        Exceptions propagate so the queue can retry the whole image.
        """
        source = self.images.get_source(content_hash)
        if source is None:
            raise ShelfImportError(f"source image {content_hash} is not stored")

        if self.images.is_processed(content_hash):
            logger.info("Image %s already processed; skipping", source.original_filename)
            self.progress.finish_image(batch_id, content_hash)
            self._complete_if_settled(batch_id)
            return 0

        self.progress.update(batch_id, status="detecting", current_image=source.original_filename)
        detections = self.detector.detect(source.stored_path)
        self.progress.record_detections(batch_id, content_hash, len(detections))
        self.progress.update(batch_id, status="processing")

        seen_upcs: set[str] = set()
        created: list[_Created] = []
        for index, detection in enumerate(detections):
            result = self._process_detection(batch_id, source, index, detection, seen_upcs)
            if result is not None:
                created.append(result)

        enhanced = sum(1 for item in created if item.enhancement.result())

        self.images.mark_processed(
            content_hash,
            original_filename=source.original_filename,
            batch_id=batch_id,
            products_detected=len(detections),
            products_created=self.catalog.count_for_source(content_hash),
        )
        self.progress.finish_image(batch_id, content_hash)
        logger.info(
            "Processed %s: %d detections, %d products created, %d images enhanced",
            source.original_filename,
            len(detections),
            len(created),
            enhanced,
        )
        self._complete_if_settled(batch_id)
        return len(created)

    def _process_detection(
        self,
        batch_id: str,
        source: SourceImage,
        index: int,
        detection: Detection,
        seen_upcs: set[str],
    ) -> _Created | None:
        existing = self.catalog.get_for_detection(source.content_hash, index)
        if existing is not None:
            if existing["materialized"]:
                logger.debug("Detection %d of %s already materialized", index, source.content_hash[:12])
                return None
            if existing["upc"]:
                seen_upcs.add(str(existing["upc"]))
            logger.info("Resuming unfinished product #%d %s", existing["product_id"], existing["sku"])
            return self._materialize(batch_id, existing)

        crop_path = crop_detection(
            source.stored_path,
            detection.box,
            self.images.work_stem("crop", source.content_hash, index),
            padding=self.crop_settings.padding,
            min_size=self.crop_settings.min_size,
        )
        if crop_path is None:
            return None

        candidate = self.identifier.identify(crop_path)
        if not candidate.is_usable:
            logger.info("Detection %d of %s is not a readable product", index, source.original_filename)
            self.images.discard(crop_path)
            return None

        interim = self.images.stash_interim(
            crop_path,
            make_sku(candidate.brand, candidate.product_name),
            source.content_hash,
            index,
        )

        validation = self.validator.validate(candidate)
        if validation.upc:
            if validation.upc in seen_upcs or self.catalog.exists_by_upc(validation.upc):
                logger.info("Duplicate UPC %s for %r; discarding crop", validation.upc, candidate.display_name)
                self.images.discard(interim)
                return None
            seen_upcs.add(validation.upc)

        draft = self._draft(batch_id, source, index, candidate, validation, interim.suffix)
        try:
            product_id = self._create(draft, index, interim.suffix)
        except (DuplicateUPCError, DuplicateDetectionError) as exc:
            logger.info("Skipping detection %d of %s: %s", index, source.original_filename, exc)
            self.images.discard(interim)
            return None

        product = self.catalog.get_product(product_id)
        if product is None:
            raise ShelfImportError(f"product #{product_id} vanished after insert")
        return self._materialize(batch_id, product)

    def _materialize(self, batch_id: str, product: dict[str, Any]) -> _Created:
        """Move the product image into place, count the product once and queue enhancement.

        Every step tolerates having run before, so a retried job resumes a
        product whose row was stored but whose image or counter was not.
        """
        sku = str(product["sku"])
        image_path = Path(product["image_ref"]) if product["image_ref"] else None
        enhancement: Future[bool]
        if image_path is None or not image_path.exists():
            interim = self.images.find_interim(str(product["source_hash"]), int(product["detection_index"]))
            image_path = None if interim is None else self.images.save_product_image(interim, sku)
        if image_path is not None:
            description = " ".join(part for part in (product["brand"], product["name"], product["size"]) if part)
            enhancement = self.enhancer.submit(image_path, description)
        else:
            logger.warning("No image left for product %s; it stays without one", sku)
            enhancement = Future()
            enhancement.set_result(False)

        status = str(product["status"])
        counter = "verified_products" if status == "verified" else "review_products"
        if self.progress.count_product(batch_id, int(product["product_id"]), counter):
            logger.info("Created product #%d %s (%s, %.2f)", product["product_id"], sku, status, product["price"])

        return _Created(
            product_id=int(product["product_id"]),
            sku=sku,
            status=status,
            enhancement=enhancement,
        )

    def _draft(
        self,
        batch_id: str,
        source: SourceImage,
        index: int,
        candidate: CandidateProduct,
        validation: ValidationResult,
        suffix: str,
    ) -> ProductDraft:
        sku = make_sku(validation.canonical_brand, validation.canonical_name)
        if self.catalog.sku_taken(sku):
            sku = disambiguate_sku(sku, source.content_hash, index)
        return ProductDraft(
            sku=sku,
            name=validation.canonical_name,
            brand=validation.canonical_brand,
            price=resolve_price(validation.price, candidate.estimated_price),
            status=validation.status,
            upc=validation.upc,
            categories=validation.categories,
            size=candidate.size,
            description=validation.description,
            image_ref=str(self.images.product_image_path(sku, suffix)),
            source_hash=source.content_hash,
            source_image=str(source.stored_path),
            detection_index=index,
            batch_id=batch_id,
        )

    def _create(self, draft: ProductDraft, index: int, suffix: str) -> int:
        try:
            return self.catalog.create_draft(draft)
        except DuplicateSKUError:
            retry_sku = f"{draft.sku}-{index}"
            logger.info("SKU %s taken at insert; retrying as %s", draft.sku, retry_sku)
            draft = draft.model_copy(
                update={"sku": retry_sku, "image_ref": str(self.images.product_image_path(retry_sku, suffix))}
            )
            return self.catalog.create_draft(draft)
