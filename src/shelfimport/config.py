"""Project configuration models and YAML loading."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from shelfimport.errors import ConfigurationError


DETECTION_QUERIES = [
    "bottle . jar . carton . can . box . package",
    "tomato . lime . pepper . avocado . onion . lettuce . cucumber . chili",
    "chicken . meat . sausage . chorizo",
    "bread . tortilla . pan dulce . pastry",
    "yogurt . cream . cheese . milk",
]


class StorageSettings(BaseModel):
    db_path: str = "data/shelfimport.db"
    image_root: str = "data/images"


class ReplicateSettings(BaseModel):
    api_base: str = "https://api.replicate.com/v1"
    api_token_env: str = "REPLICATE_API_TOKEN"
    request_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 2.0
    max_attempts: int = 3
    retry_backoff_seconds: float = 1.5


class DetectionSettings(BaseModel):
    model_version: str = "efd10a8ddc57ea28773327e881ce95e20cc1d734c589f7dd01d2036921ed78aa"
    queries: list[str] = Field(default_factory=lambda: list(DETECTION_QUERIES))
    box_threshold: float = Field(default=0.15, ge=0.0, le=1.0)
    text_threshold: float = Field(default=0.15, ge=0.0, le=1.0)
    iou_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    timeout_seconds: float = 300.0


class CropSettings(BaseModel):
    padding: int = Field(default=5, ge=0)
    min_size: int = Field(default=30, ge=1)


class IdentificationSettings(BaseModel):
    backend: Literal["replicate", "gemini"] = "replicate"
    replicate_model_version: str = "bfb7df9586ae4fafa00a593d8dc4868698f72cf9d695da28b8c8a70f88e876ba"
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_key_env: str = "GEMINI_API_KEY"
    temperature: float = 0.1
    max_output_tokens: int = 500
    adjudication_max_output_tokens: int = 200
    timeout_seconds: float = 300.0


class LookupSettings(BaseModel):
    upcitemdb_api_key_env: str = "UPCITEMDB_API_KEY"
    upcitemdb_trial_url: str = "https://api.upcitemdb.com/prod/trial/search"
    upcitemdb_prod_url: str = "https://api.upcitemdb.com/prod/v1/search"
    openfoodfacts_base_url: str = "https://world.openfoodfacts.org"
    user_agent: str = "shelf-import/0.1"
    timeout_seconds: float = 10.0
    page_size: int = Field(default=5, ge=1, le=100)
    openfoodfacts_delay_seconds: float = 1.0
    reprice_delay_seconds: float = 0.3


class EnhancementSettings(BaseModel):
    enabled: bool = True
    model: str = "google/nano-banana-pro"
    workers: int = Field(default=4, ge=1)
    timeout_seconds: float = 300.0
    download_timeout_seconds: float = 60.0


class IntakeSettings(BaseModel):
    max_files: int = Field(default=10, ge=1)
    max_file_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    allowed_content_types: list[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp"]
    )


class QueueSettings(BaseModel):
    workers: int = Field(default=2, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = 10.0
    poll_interval_seconds: float = 0.5


class BatchSettings(BaseModel):
    completion_grace_seconds: float = 30.0
    max_completion_checks: int = Field(default=20, ge=1)
    progress_ttl_seconds: int = Field(default=3600, ge=60)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: str | None = None


class AppSettings(BaseModel):
    storage: StorageSettings = Field(default_factory=StorageSettings)
    replicate: ReplicateSettings = Field(default_factory=ReplicateSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    crop: CropSettings = Field(default_factory=CropSettings)
    identification: IdentificationSettings = Field(default_factory=IdentificationSettings)
    lookups: LookupSettings = Field(default_factory=LookupSettings)
    enhancement: EnhancementSettings = Field(default_factory=EnhancementSettings)
    intake: IntakeSettings = Field(default_factory=IntakeSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def load_settings(config_path: str | Path | None = None) -> AppSettings:
    """Load YAML configuration into typed app settings."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        return AppSettings()

    with path.open("r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    return AppSettings.model_validate(raw)


def require_env(name: str) -> str:
    """Read a secret from the environment or fail with a configuration error."""
    value = os.environ.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} is not configured")
    return value
