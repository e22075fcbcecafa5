"""Single-image classification pipeline.

decode -> resize down to 1600 -> square center crop -> resize to 256
-> center crop to the input tensor size -> pack -> infer -> rank
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from classifyx.errors import ClassificationCancelledError, ClassificationTimeoutError
from classifyx.ml import geometry
from classifyx.ml.codec import decode_image, save_diagnostic_copy
from classifyx.ml.ranking import rank
from classifyx.ml.tensor import pack_tensor

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    import numpy as np
    from numpy.typing import NDArray

    from classifyx.config import ModelSettings
    from classifyx.ml.backend import InferenceBackend
    from classifyx.ml.model_manager import ModelManager
    from classifyx.ml.ranking import LabelConfidence

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE: int = 1600
INTERMEDIATE_SIZE: int = 256


class _Deadline:
    """Checked between stages; raises once the timeout passes or the caller cancels."""

    def __init__(self, timeout: float | None, cancel_event: threading.Event | None) -> None:
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._timeout = timeout
        self._cancel_event = cancel_event

    def check(self, stage: str) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise ClassificationCancelledError(stage, "Classification cancelled by caller")
        if self._expires_at is not None and time.monotonic() > self._expires_at:
            raise ClassificationTimeoutError(stage, f"Classification exceeded {self._timeout:.3f}s")


class ClassificationPipeline:
    """Turns encoded image bytes into ranked label/confidence pairs."""

    def __init__(
        self,
        model_settings: ModelSettings,
        model_manager: ModelManager,
        backend: InferenceBackend,
        *,
        max_image_pixels: int | None = None,
        save_preprocessed: bool = False,
        diagnostics_dir: str | Path | None = None,
    ) -> None:
        self._model_settings = model_settings
        self._model_manager = model_manager
        self._backend = backend
        self._max_image_pixels = max_image_pixels
        self._save_preprocessed = save_preprocessed
        self._diagnostics_dir = diagnostics_dir

    @property
    def model_settings(self) -> ModelSettings:
        return self._model_settings

    def classify(
        self,
        image_bytes: bytes,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[LabelConfidence]:
        """Classify one encoded image.

        Args:
            image_bytes: Encoded image (JPEG, PNG, ...).
            timeout: Seconds allowed for the whole call (None = unlimited).
            cancel_event: When set by another thread, the call stops at the next stage.

        Returns:
            Pairs with probability >= threshold, highest first. Empty if none qualify.

        Raises:
            ClassificationError: Any stage failure; no partial results are returned.
        """
        deadline = _Deadline(timeout, cancel_event)
        settings = self._model_settings

        model = self._model_manager.load(settings)
        deadline.check("load_model")

        tensor = self.preprocess(image_bytes, deadline=deadline)

        probabilities = self._backend.run(
            model.graph,
            settings.input_tensor_name,
            settings.output_tensor_name,
            tensor,
        )
        deadline.check("infer")

        results = rank(probabilities, model.labels, settings.threshold)
        logger.info("Classified image: %d of %d labels above %.2f", len(results), len(model.labels), settings.threshold)
        return results

    def preprocess(self, image_bytes: bytes, *, deadline: _Deadline | None = None) -> NDArray[np.float32]:
        """Decode and transform an image into the packed input tensor."""
        deadline = deadline or _Deadline(None, None)
        settings = self._model_settings

        image = decode_image(image_bytes, max_pixels=self._max_image_pixels)
        logger.info("Image info: width=%d, height=%d", image.width, image.height)
        deadline.check("decode")

        image = geometry.resize_down_to_max(image, MAX_IMAGE_SIZE)
        deadline.check("resize_down")

        min_dim = min(image.width, image.height)
        image = geometry.crop_center(image, min_dim, min_dim)
        deadline.check("crop_square")

        image = geometry.resize_exact(image, INTERMEDIATE_SIZE)
        deadline.check("resize_exact")

        image = geometry.crop_center(image, settings.input_tensor_width, settings.input_tensor_height)
        deadline.check("crop_input")

        if self._save_preprocessed:
            save_diagnostic_copy(image, self._diagnostics_dir)

        return pack_tensor(image, settings)
