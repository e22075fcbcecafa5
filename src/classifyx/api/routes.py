"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from classifyx.api.middleware import verify_api_key
from classifyx.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
)

if TYPE_CHECKING:
    from classifyx.config import Settings
    from classifyx.ml.inference import InferencePool
    from classifyx.ml.model_manager import FileModelManager
    from classifyx.ml.pipeline import ClassificationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> FileModelManager:
    manager: FileModelManager = request.app.state.model_manager
    return manager


def _get_pipeline(request: Request) -> ClassificationPipeline:
    pipeline: ClassificationPipeline = request.app.state.pipeline
    return pipeline


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
        status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image and return ranked tags."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    pipeline = _get_pipeline(request)

    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds {settings.max_file_size} bytes",
        )

    manager.unload_idle_models()
    timeout = settings.request_timeout or None
    try:
        results = await pool.run(pipeline.classify, data, timeout=timeout)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many concurrent requests, try again later",
        ) from None

    logger.info("Classified %s: %d tags", file.filename, len(results))
    return ClassifyImageResponse(
        tags=[ImageTag(label=result.label, confidence=result.probability) for result in results],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelInfo,
    summary="Describe the configured model",
)
async def model_info(request: Request) -> ModelInfo:
    """Return the configured model files, their presence on disk, and the tensor contract."""
    manager = _get_model_manager(request)
    model_settings = _get_pipeline(request).model_settings

    model_path = manager.resolve(model_settings.model_filename)
    labels_path = manager.resolve(model_settings.labels_filename)
    return ModelInfo(
        model_file=model_settings.model_filename,
        labels_file=model_settings.labels_filename,
        model_present=model_path.is_file(),
        labels_present=labels_path.is_file(),
        input_tensor_name=model_settings.input_tensor_name,
        output_tensor_name=model_settings.output_tensor_name,
        input_size=list(model_settings.tensor_shape),
        threshold=model_settings.threshold,
        cached=model_path.name in manager.get_loaded_models(),
    )
