"""Shared fixtures: in-memory images and a scripted inference backend."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest
from PIL import Image

from classifyx.ml.backend import parse_labels

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from numpy.typing import NDArray


class FakeBackend:
    """Backend returning a fixed probability vector and recording every call."""

    def __init__(self, probabilities: Sequence[float] = (0.95, 0.2)) -> None:
        self.probabilities = list(probabilities)
        self.graphs_loaded: list[bytes] = []
        self.run_calls: list[tuple[Any, str, str, NDArray[np.float32]]] = []

    def load_graph(self, graph_bytes: bytes) -> Any:
        self.graphs_loaded.append(graph_bytes)
        return {"graph": graph_bytes}

    def load_labels(self, labels_bytes: bytes) -> list[str]:
        return parse_labels(labels_bytes)

    def run(
        self,
        graph: Any,
        input_tensor_name: str,
        output_tensor_name: str,
        tensor: NDArray[np.float32],
    ) -> NDArray[np.float32]:
        self.run_calls.append((graph, input_tensor_name, output_tensor_name, tensor))
        return np.asarray(self.probabilities, dtype=np.float32)


def make_image(width: int, height: int, mode: str = "RGB", seed: int = 0) -> Image.Image:
    """Random-content image of the given size."""
    rng = np.random.default_rng(seed)
    channels = len(mode)
    pixels = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    if channels == 1:
        pixels = pixels[:, :, 0]
    return Image.fromarray(pixels)


def encode(image: Image.Image, image_format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def models_dir(tmp_path: Path) -> Path:
    """A models directory holding model.pb and a two-label labels.txt."""
    directory = tmp_path / "models"
    directory.mkdir()
    (directory / "model.pb").write_bytes(b"serialized-graph")
    (directory / "labels.txt").write_text("cat\ndog\n", encoding="utf-8")
    return directory
