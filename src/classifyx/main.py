"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.middleware import register_exception_handlers
from classifyx.api.routes import router
from classifyx.config import Settings, get_settings
from classifyx.ml.backend import OnnxBackend
from classifyx.ml.codec import configure_decoder
from classifyx.ml.inference import InferencePool
from classifyx.ml.model_manager import FileModelManager
from classifyx.ml.pipeline import ClassificationPipeline

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the backend, model manager, pipeline, and pool onto ``app.state``."""
    configure_decoder(settings.max_image_pixels)
    backend = OnnxBackend(settings)
    model_manager = FileModelManager(settings, backend)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.pipeline = ClassificationPipeline(
        settings.model_settings(),
        model_manager,
        backend,
        max_image_pixels=settings.max_image_pixels,
        save_preprocessed=settings.save_preprocessed,
        diagnostics_dir=settings.diagnostics_dir,
    )
    app.state.inference_pool = InferencePool(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ClassifyX (device=%s, max_concurrent=%s, models_dir=%s, model=%s, cache=%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.model_filename,
        settings.model_cache,
    )

    init_state(app, settings)

    logger.info("ClassifyX ready")
    yield

    logger.info("Shutting down ClassifyX")
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("ClassifyX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Single-image classification API backed by a pre-trained network",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(application)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Start the API server with the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "classifyx.main:app",
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
