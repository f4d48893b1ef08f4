"""Prediction transport for the hosted inference gateway (Replicate HTTP API)."""

from __future__ import annotations

import base64
import logging
import random
import time
from pathlib import Path
from typing import Any, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shelfimport.config import ReplicateSettings, require_env
from shelfimport.errors import InferenceUnavailable, PredictionFailed, PredictionTimeout

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled", "aborted"})

RETRYABLE_EXC = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.ReadError,
    httpx.WriteError,
)


class Prediction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    output: Any = None
    error: Any = None
    urls: dict[str, str] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PredictionClient:
    """Submit predictions and wait for them to reach a terminal state.

    ``wait`` is the only place this client blocks between requests. Transport
    errors, 5xx and 429 answers are retried with exponential backoff up to
    ``max_attempts``; after that the call raises ``InferenceUnavailable``.
    """

    def __init__(
        self,
        api_token: str,
        *,
        api_base: str = "https://api.replicate.com/v1",
        request_timeout: float = 30.0,
        poll_interval: float = 2.0,
        max_attempts: int = 3,
        retry_backoff: float = 1.5,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.poll_interval = poll_interval
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._clock = clock
        self._client = client or httpx.Client(timeout=request_timeout)
        self._base = api_base.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls, settings: ReplicateSettings) -> "PredictionClient":
        return cls(
            require_env(settings.api_token_env),
            api_base=settings.api_base,
            request_timeout=settings.request_timeout_seconds,
            poll_interval=settings.poll_interval_seconds,
            max_attempts=settings.max_attempts,
            retry_backoff=settings.retry_backoff_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def _backoff(self, attempt: int) -> float:
        return self.retry_backoff * (2 ** (attempt - 1)) + random.random() * 0.1

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base}{path}"
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = self._client.request(method, url, headers=self._headers, json=payload)
            except RETRYABLE_EXC as exc:
                if attempt >= self.max_attempts:
                    raise InferenceUnavailable(
                        f"{method} {path}: transport error after {attempt} attempts"
                    ) from exc
                delay = self._backoff(attempt)
                logger.warning(
                    "%s %s: transport error (%s), retrying in %.1fs (attempt %d/%d)",
                    method, path, type(exc).__name__, delay, attempt, self.max_attempts,
                )
                self._sleep(delay)
                continue

            sc = resp.status_code
            if sc in (401, 403):
                raise InferenceUnavailable(f"{method} {path}: authentication rejected ({sc})")
            if sc == 429 or sc >= 500:
                if attempt >= self.max_attempts:
                    raise InferenceUnavailable(f"{method} {path}: status {sc} after {attempt} attempts")
                delay = self._backoff(attempt)
                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        delay = max(delay, float(retry_after))
                    except ValueError:
                        pass
                logger.warning(
                    "%s %s: status %d, retrying in %.1fs (attempt %d/%d)",
                    method, path, sc, delay, attempt, self.max_attempts,
                )
                self._sleep(delay)
                continue
            if sc >= 400:
                raise PredictionFailed(f"{method} {path}: rejected with status {sc}: {resp.text[:200]}")
            try:
                return resp.json()
            except ValueError as exc:
                raise PredictionFailed(f"{method} {path}: response is not JSON") from exc

        raise InferenceUnavailable(f"{method} {path}: no attempts made")

    @staticmethod
    def _parse(raw: dict[str, Any]) -> Prediction:
        try:
            return Prediction.model_validate(raw)
        except ValidationError as exc:
            raise PredictionFailed(f"unexpected prediction payload: {exc}") from exc

    def create(self, model_ref: str, inputs: dict[str, Any]) -> Prediction:
        """Start a prediction.

        ``model_ref`` is either a version hash or an ``owner/name`` model
        reference, which runs the model's latest version.
        """
        if "/" in model_ref:
            owner, name = model_ref.split("/", 1)
            raw = self._request("POST", f"/models/{owner}/{name}/predictions", {"input": inputs})
        else:
            raw = self._request("POST", "/predictions", {"version": model_ref, "input": inputs})
        prediction = self._parse(raw)
        logger.debug("Created prediction %s (%s)", prediction.id, prediction.status)
        return prediction

    def get(self, prediction_id: str) -> Prediction:
        return self._parse(self._request("GET", f"/predictions/{prediction_id}"))

    def wait(self, prediction: Prediction, timeout: float) -> Prediction:
        """Poll until the prediction is terminal or ``timeout`` seconds pass."""
        started = self._clock()
        current = prediction
        while not current.is_terminal:
            waited = self._clock() - started
            if waited >= timeout:
                raise PredictionTimeout(current.id, waited)
            self._sleep(self.poll_interval)
            current = self.get(current.id)
        return current

    def run(self, model_ref: str, inputs: dict[str, Any], timeout: float) -> Prediction:
        """Create, wait, and require success."""
        prediction = self.wait(self.create(model_ref, inputs), timeout)
        if not prediction.succeeded:
            raise PredictionFailed(f"prediction {prediction.id} {prediction.status}: {prediction.error}")
        return prediction


_MIME_BY_SUFFIX = {".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png", ".webp": "image/webp"}


def image_data_uri(path: str | Path) -> str:
    """Inline an image file as a base64 data URI."""
    image_path = Path(path)
    mime = _MIME_BY_SUFFIX.get(image_path.suffix.lower(), "image/jpeg")
    encoded = base64.b64encode(image_path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"
