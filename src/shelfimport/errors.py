"""Exception types shared across the import pipeline."""

from __future__ import annotations


class ShelfImportError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigurationError(ShelfImportError):
    """Raised when credentials or settings required to start are missing."""


class InferenceUnavailable(ShelfImportError):
    """Raised when an inference service cannot be reached after retries."""


class PredictionTimeout(ShelfImportError):
    """Raised when a prediction does not reach a terminal state in time."""

    def __init__(self, prediction_id: str, waited_seconds: float) -> None:
        super().__init__(f"prediction {prediction_id} not finished after {waited_seconds:.0f}s")
        self.prediction_id = prediction_id
        self.waited_seconds = waited_seconds


class PredictionFailed(ShelfImportError):
    """Raised when a prediction ends in a failed or canceled state."""


class RateLimitedError(ShelfImportError):
    """Raised when a lookup service answers 429."""

    def __init__(self, service: str, retry_after: int | None = None) -> None:
        super().__init__(f"{service} rate limited")
        self.service = service
        self.retry_after = retry_after


class DuplicateUPCError(ShelfImportError):
    """Raised when a catalog product with the same UPC already exists."""

    def __init__(self, upc: str) -> None:
        super().__init__(f"product with UPC {upc} already exists")
        self.upc = upc


class DuplicateSKUError(ShelfImportError):
    """Raised when the SKU is already taken by another catalog product."""

    def __init__(self, sku: str) -> None:
        super().__init__(f"SKU {sku} already exists")
        self.sku = sku


class DuplicateDetectionError(ShelfImportError):
    """Raised when a detection of a source image was already materialized."""


class IntakeError(ShelfImportError):
    """Raised when an uploaded batch violates intake limits."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason
