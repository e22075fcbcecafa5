"""Error taxonomy for the classification pipeline.

Every stage failure aborts the whole classification. Errors carry the stage
that failed and the offending value so they can be diagnosed without retrying.
"""

from __future__ import annotations


class ClassificationError(Exception):
    """Base class for all pipeline failures."""

    status_code: int = 500

    def __init__(self, stage: str, detail: str) -> None:
        super().__init__(f"[{stage}] {detail}")
        self.stage = stage
        self.detail = detail


class DecodeError(ClassificationError):
    """The image bytes are not a recognized format or are corrupt."""

    status_code = 400


class OutOfBoundsError(ClassificationError):
    """A crop rectangle exceeds the source image bounds."""


class ModelLoadError(ClassificationError):
    """The model file is missing or cannot be parsed."""


class LabelsLoadError(ClassificationError):
    """The labels file is missing or unreadable."""


class InferenceError(ClassificationError):
    """Tensor/graph mismatch or a failure while running the graph."""


class ClassificationTimeoutError(ClassificationError):
    """The per-request deadline passed before the pipeline finished."""

    status_code = 504


class ClassificationCancelledError(ClassificationError):
    """The caller cancelled the request."""

    status_code = 503
