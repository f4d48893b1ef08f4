"""Wire configured services into a ready importer."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from shelfimport.config import AppSettings
from shelfimport.inference.llm import build_llm
from shelfimport.inference.replicate import PredictionClient
from shelfimport.jobs.queue import JobQueue
from shelfimport.lookup.adjudicator import MatchAdjudicator
from shelfimport.lookup.openfoodfacts import OpenFoodFactsClient
from shelfimport.lookup.upcitemdb import UPCItemDBClient
from shelfimport.lookup.validation import ProductValidator
from shelfimport.pipeline.enhance import EnhancementWorker
from shelfimport.pipeline.importer import PhotoImporter
from shelfimport.pipeline.reprice import PriceRefresher
from shelfimport.storage.catalog import CatalogStore
from shelfimport.storage.images import ImageStore
from shelfimport.storage.progress import ProgressStore
from shelfimport.vision.detector import GroundingDetector
from shelfimport.vision.identify import ProductIdentifier

logger = logging.getLogger(__name__)


@dataclass
class ImportRuntime:
    settings: AppSettings
    importer: PhotoImporter
    queue: JobQueue
    catalog: CatalogStore
    progress: ProgressStore
    images: ImageStore
    predictions: PredictionClient
    enhancer: EnhancementWorker
    repricer: PriceRefresher | None = None

    def close(self) -> None:
        """Stop the workers, letting running jobs finish, then close the clients they use."""
        self.queue.stop()
        self.enhancer.shutdown(wait=True)
        self.predictions.close()


def build_runtime(
    settings: AppSettings,
    db_path: str | Path | None = None,
    image_root: str | Path | None = None,
) -> ImportRuntime:
    """Build every pipeline component from settings.

    Raises ConfigurationError when the inference token (or the Gemini key for
    the direct backend) is missing from the environment.
    """
    db = Path(db_path or settings.storage.db_path)
    root = Path(image_root or settings.storage.image_root)

    predictions = PredictionClient.from_settings(settings.replicate)
    llm = build_llm(settings, predictions)

    lookups = settings.lookups
    upc_key = os.environ.get(lookups.upcitemdb_api_key_env, "").strip() or None
    if upc_key is None:
        logger.info("No UPCitemdb key configured; using the trial endpoint")

    upc_client = UPCItemDBClient(
        api_key=upc_key,
        trial_url=lookups.upcitemdb_trial_url,
        prod_url=lookups.upcitemdb_prod_url,
        timeout=lookups.timeout_seconds,
    )
    identifier = ProductIdentifier(llm, max_output_tokens=settings.identification.max_output_tokens)
    validator = ProductValidator(
        upc_client,
        OpenFoodFactsClient(
            base_url=lookups.openfoodfacts_base_url,
            user_agent=lookups.user_agent,
            page_size=lookups.page_size,
            timeout=lookups.timeout_seconds,
        ),
        MatchAdjudicator(llm, max_output_tokens=settings.identification.adjudication_max_output_tokens),
        off_delay_seconds=lookups.openfoodfacts_delay_seconds,
    )

    queue = JobQueue(
        db,
        workers=settings.queue.workers,
        max_attempts=settings.queue.max_attempts,
        retry_backoff_seconds=settings.queue.retry_backoff_seconds,
        poll_interval=settings.queue.poll_interval_seconds,
    )
    images = ImageStore(root, db)
    progress = ProgressStore(db, ttl_seconds=settings.batch.progress_ttl_seconds)
    catalog = CatalogStore(db)
    enhancer = EnhancementWorker(predictions, settings.enhancement)

    importer = PhotoImporter(
        images=images,
        progress=progress,
        catalog=catalog,
        queue=queue,
        detector=GroundingDetector(predictions, settings.detection),
        identifier=identifier,
        validator=validator,
        enhancer=enhancer,
        crop_settings=settings.crop,
        intake_settings=settings.intake,
        batch_settings=settings.batch,
    )
    return ImportRuntime(
        settings=settings,
        importer=importer,
        queue=queue,
        catalog=catalog,
        progress=progress,
        images=images,
        predictions=predictions,
        enhancer=enhancer,
        repricer=PriceRefresher(catalog, upc_client, identifier, delay_seconds=lookups.reprice_delay_seconds),
    )
