"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ModelSettings:
    """Immutable description of the network's input/output contract.

    Constant for the lifetime of the process and passed explicitly into the
    classification pipeline.
    """

    input_tensor_name: str = "Placeholder"
    output_tensor_name: str = "loss"
    model_filename: str = "model.pb"
    labels_filename: str = "labels.txt"
    threshold: float = 0.9
    input_tensor_width: int = 227
    input_tensor_height: int = 227
    input_tensor_channels: int = 3

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")
        if self.input_tensor_width < 1 or self.input_tensor_height < 1:
            raise ValueError(
                f"Input tensor size must be positive, got {self.input_tensor_width}x{self.input_tensor_height}"
            )
        if self.input_tensor_channels != 3:
            raise ValueError(f"Only 3-channel (BGR) input tensors are supported, got {self.input_tensor_channels}")

    @property
    def tensor_shape(self) -> tuple[int, int, int, int]:
        """Shape of the packed input tensor: [1, width, height, channels]."""
        return (1, self.input_tensor_width, self.input_tensor_height, self.input_tensor_channels)


DEFAULT_MODEL_SETTINGS = ModelSettings()


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    request_timeout: float = Field(default=30.0, ge=0.0)

    # Input limits
    max_image_pixels: int = Field(default=89_478_485, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Model files
    models_dir: str = "models"
    model_filename: str = DEFAULT_MODEL_SETTINGS.model_filename
    labels_filename: str = DEFAULT_MODEL_SETTINGS.labels_filename
    models_repo_id: str | None = None

    # Network contract
    input_tensor_name: str = DEFAULT_MODEL_SETTINGS.input_tensor_name
    output_tensor_name: str = DEFAULT_MODEL_SETTINGS.output_tensor_name
    threshold: float = Field(default=DEFAULT_MODEL_SETTINGS.threshold, ge=0.0, le=1.0)
    input_tensor_width: int = Field(default=DEFAULT_MODEL_SETTINGS.input_tensor_width, ge=1)
    input_tensor_height: int = Field(default=DEFAULT_MODEL_SETTINGS.input_tensor_height, ge=1)
    input_tensor_channels: int = Field(default=DEFAULT_MODEL_SETTINGS.input_tensor_channels, ge=1)

    # Model management (cache disabled = reload model and labels on every request)
    model_cache: bool = False
    model_ttl: int = Field(default=300, ge=0)

    # Diagnostics
    save_preprocessed: bool = False
    diagnostics_dir: str | None = None

    def model_settings(self) -> ModelSettings:
        """Freeze the network contract into a ModelSettings value."""
        return ModelSettings(
            input_tensor_name=self.input_tensor_name,
            output_tensor_name=self.output_tensor_name,
            model_filename=self.model_filename,
            labels_filename=self.labels_filename,
            threshold=self.threshold,
            input_tensor_width=self.input_tensor_width,
            input_tensor_height=self.input_tensor_height,
            input_tensor_channels=self.input_tensor_channels,
        )


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
