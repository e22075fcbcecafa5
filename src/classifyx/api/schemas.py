"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag] = Field(description="Tags at or above the threshold, highest confidence first")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """The configured model and its network contract."""

    model_file: str
    labels_file: str
    model_present: bool
    labels_present: bool
    input_tensor_name: str
    output_tensor_name: str
    input_size: list[int] = Field(description="Input tensor shape: [1, width, height, channels]")
    threshold: float
    cached: bool = Field(description="Whether a parsed copy of the model is currently cached")


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    stage: str | None = Field(default=None, description="Pipeline stage that failed, if any")
