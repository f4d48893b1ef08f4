"""Best-effort studio-style regeneration of product images."""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

import httpx

from shelfimport.config import EnhancementSettings
from shelfimport.errors import ShelfImportError
from shelfimport.inference.replicate import PredictionClient, image_data_uri

logger = logging.getLogger(__name__)


def enhancement_prompt(description: str) -> str:
    return f"Product photo of {description}, clean white background, professional product photography"


def _first_url(output: object) -> str | None:
    if isinstance(output, str) and output.startswith("http"):
        return output
    if isinstance(output, list):
        for item in output:
            if isinstance(item, str) and item.startswith("http"):
                return item
    return None


class EnhancementWorker:
    """Bounded pool that swaps product images for generated white-background shots.

    ``submit`` never raises and its future resolves to False on any failure, in
    which case the original crop stays in place.
    """

    def __init__(
        self,
        predictions: PredictionClient | None,
        settings: EnhancementSettings,
        download_client: httpx.Client | None = None,
    ) -> None:
        self.predictions = predictions
        self.settings = settings
        self.enabled = settings.enabled and predictions is not None
        self._executor = ThreadPoolExecutor(max_workers=settings.workers, thread_name_prefix="shelfimport-enhance")
        self._http = download_client or httpx.Client(timeout=settings.download_timeout_seconds, follow_redirects=True)

    def submit(self, image_path: str | Path, description: str) -> Future[bool]:
        if not self.enabled:
            done: Future[bool] = Future()
            done.set_result(False)
            return done
        try:
            return self._executor.submit(self._enhance, Path(image_path), description)
        except RuntimeError as exc:
            logger.warning("Enhancement pool unavailable: %s", exc)
            failed: Future[bool] = Future()
            failed.set_result(False)
            return failed

    def _enhance(self, image_path: Path, description: str) -> bool:
        try:
            prediction = self.predictions.run(  # type: ignore[union-attr]
                self.settings.model,
                {
                    "prompt": enhancement_prompt(description),
                    "image_input": [image_data_uri(image_path)],
                    "aspect_ratio": "1:1",
                    "resolution": "1K",
                    "output_format": "jpg",
                },
                timeout=self.settings.timeout_seconds,
            )
            url = _first_url(prediction.output)
            if url is None:
                logger.warning("Enhancement of %s returned no image URL", image_path.name)
                return False

            resp = self._http.get(url)
            resp.raise_for_status()
            if not resp.content:
                logger.warning("Enhancement of %s downloaded an empty image", image_path.name)
                return False

            tmp = image_path.with_name(image_path.name + ".enhanced")
            tmp.write_bytes(resp.content)
            os.replace(tmp, image_path)
        except (ShelfImportError, httpx.HTTPError, OSError) as exc:
            logger.warning("Enhancement of %s failed: %s", image_path.name, exc)
            return False
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected enhancement error for %s", image_path.name)
            return False

        logger.info("Enhanced %s", image_path.name)
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self._http.close()
