"""FastAPI application factory and server entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from shelfimport.api.routes import router
from shelfimport.config import AppSettings, load_settings
from shelfimport.logging_config import setup_logging
from shelfimport.pipeline.runtime import ImportRuntime, build_runtime

logger = logging.getLogger(__name__)


def create_app(
    db_path: str | Path | None = None,
    config_path: str | Path | None = None,
    runtime: ImportRuntime | None = None,
) -> FastAPI:
    """Create the configured app and start its queue workers.

    Raises ConfigurationError when required credentials are missing.
    """
    settings: AppSettings = runtime.settings if runtime is not None else load_settings(config_path)
    if runtime is None:
        runtime = build_runtime(settings, db_path=db_path)

    app = FastAPI(title="Shelf Import", version="0.1.0")
    app.state.settings = settings
    app.state.runtime = runtime

    app.include_router(router)
    runtime.queue.start()

    @app.on_event("shutdown")
    def _shutdown_workers() -> None:
        runtime.close()

    return app


def serve(host: str, port: int, db_path: str | Path | None, config_path: str | Path) -> None:
    """Run the API with a single worker process; queue threads live in-process."""
    settings = load_settings(config_path)
    setup_logging(settings.logging.level, settings.logging.file)
    app = create_app(db_path=db_path, config_path=config_path)
    logger.info("Serving shelf import API on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, workers=1)
