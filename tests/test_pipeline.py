"""End-to-end tests for the classification pipeline with a scripted backend."""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from conftest import FakeBackend, encode, make_image
from PIL import Image

from classifyx.config import DEFAULT_MODEL_SETTINGS, ModelSettings, Settings
from classifyx.errors import (
    ClassificationCancelledError,
    ClassificationTimeoutError,
    DecodeError,
    InferenceError,
    ModelLoadError,
    OutOfBoundsError,
)
from classifyx.ml import geometry
from classifyx.ml.model_manager import FileModelManager
from classifyx.ml.pipeline import ClassificationPipeline
from classifyx.ml.ranking import LabelConfidence

if TYPE_CHECKING:
    from pathlib import Path


def _make_pipeline(
    models_dir: Path,
    backend: FakeBackend,
    model_settings: ModelSettings = DEFAULT_MODEL_SETTINGS,
    **kwargs: object,
) -> ClassificationPipeline:
    manager = FileModelManager(Settings(models_dir=str(models_dir)), backend)
    return ClassificationPipeline(model_settings, manager, backend, **kwargs)  # type: ignore[arg-type]


@pytest.fixture()
def large_jpeg() -> bytes:
    return encode(make_image(3000, 2000), "JPEG")


class TestClassify:
    def test_returns_labels_above_threshold(self, models_dir: Path, large_jpeg: bytes) -> None:
        backend = FakeBackend([0.95, 0.2])
        results = _make_pipeline(models_dir, backend).classify(large_jpeg)

        assert results == [LabelConfidence("cat", pytest.approx(0.95))]  # type: ignore[arg-type]

    def test_runs_named_tensors_with_packed_input(self, models_dir: Path, large_jpeg: bytes) -> None:
        backend = FakeBackend([0.95, 0.2])
        _make_pipeline(models_dir, backend).classify(large_jpeg)

        assert len(backend.run_calls) == 1
        graph, input_name, output_name, tensor = backend.run_calls[0]
        assert graph == {"graph": b"serialized-graph"}
        assert (input_name, output_name) == ("Placeholder", "loss")
        assert tensor.shape == (1, 227, 227, 3)
        assert tensor.dtype == np.float32

    def test_empty_when_nothing_clears_threshold(self, models_dir: Path, large_jpeg: bytes) -> None:
        results = _make_pipeline(models_dir, FakeBackend([0.5, 0.3])).classify(large_jpeg)
        assert results == []

    def test_results_sorted_descending(self, models_dir: Path) -> None:
        (models_dir / "labels.txt").write_text("a\nb\nc\n", encoding="utf-8")
        settings = ModelSettings(threshold=0.1)
        backend = FakeBackend([0.3, 0.6, 0.1])

        results = _make_pipeline(models_dir, backend, settings).classify(encode(make_image(400, 300)))

        assert [r.label for r in results] == ["b", "a", "c"]

    def test_geometry_sequence(self, models_dir: Path, large_jpeg: bytes) -> None:
        backend = FakeBackend()
        with (
            patch.object(geometry, "crop_center", wraps=geometry.crop_center) as crop,
            patch.object(geometry, "resize_exact", wraps=geometry.resize_exact) as resize,
        ):
            _make_pipeline(models_dir, backend).classify(large_jpeg)

        square_call, input_call = crop.call_args_list
        # 3000x2000 shrinks to 1600x1066 before the square crop.
        assert square_call.args[0].size == (1600, 1066)
        assert square_call.args[1:] == (1066, 1066)
        assert resize.call_args.args[0].size == (1066, 1066)
        assert resize.call_args.args[1] == 256
        assert input_call.args[0].size == (256, 256)
        assert input_call.args[1:] == (227, 227)

    def test_small_image_is_upscaled(self, models_dir: Path) -> None:
        backend = FakeBackend()
        _make_pipeline(models_dir, backend).classify(encode(make_image(100, 50)))
        assert backend.run_calls[0][3].shape == (1, 227, 227, 3)

    def test_alternate_input_size(self, models_dir: Path) -> None:
        backend = FakeBackend()
        settings = ModelSettings(input_tensor_width=128, input_tensor_height=128)
        _make_pipeline(models_dir, backend, settings).classify(encode(make_image(640, 480)))
        assert backend.run_calls[0][3].shape == (1, 128, 128, 3)

    def test_non_square_input_size(self, models_dir: Path) -> None:
        backend = FakeBackend()
        settings = ModelSettings(input_tensor_width=224, input_tensor_height=200)
        _make_pipeline(models_dir, backend, settings).classify(encode(make_image(640, 480)))
        assert backend.run_calls[0][3].shape == (1, 224, 200, 3)

    def test_input_larger_than_intermediate_size_fails(self, models_dir: Path) -> None:
        backend = FakeBackend()
        settings = ModelSettings(input_tensor_width=300, input_tensor_height=300)
        with pytest.raises(OutOfBoundsError):
            _make_pipeline(models_dir, backend, settings).classify(encode(make_image(640, 480)))
        assert backend.run_calls == []


class TestPreprocess:
    def test_uniform_image_packs_bgr(self, models_dir: Path) -> None:
        pipeline = _make_pipeline(models_dir, FakeBackend())
        data = encode(Image.new("RGB", (900, 700), (200, 100, 50)))

        tensor = pipeline.preprocess(data)

        assert tensor.shape == (1, 227, 227, 3)
        assert np.abs(tensor[0, :, :, 0] - 50).max() <= 1
        assert np.abs(tensor[0, :, :, 1] - 100).max() <= 1
        assert np.abs(tensor[0, :, :, 2] - 200).max() <= 1

    def test_saves_diagnostic_copy(self, models_dir: Path, tmp_path: Path) -> None:
        diagnostics = tmp_path / "diagnostics"
        diagnostics.mkdir()
        pipeline = _make_pipeline(models_dir, FakeBackend(), save_preprocessed=True, diagnostics_dir=diagnostics)

        pipeline.preprocess(encode(make_image(500, 400)))

        (saved,) = list(diagnostics.glob("*.jpg"))
        with Image.open(saved) as image:
            assert image.size == (227, 227)

    def test_no_diagnostic_copy_by_default(self, models_dir: Path, tmp_path: Path) -> None:
        with patch("classifyx.ml.pipeline.save_diagnostic_copy") as save:
            _make_pipeline(models_dir, FakeBackend()).preprocess(encode(make_image(500, 400)))
        save.assert_not_called()


class TestFailures:
    def test_missing_model_makes_no_inference_call(self, models_dir: Path, large_jpeg: bytes) -> None:
        (models_dir / "model.pb").unlink()
        backend = FakeBackend()

        with pytest.raises(ModelLoadError):
            _make_pipeline(models_dir, backend).classify(large_jpeg)
        assert backend.run_calls == []

    def test_bad_image_makes_no_inference_call(self, models_dir: Path) -> None:
        backend = FakeBackend()
        with pytest.raises(DecodeError):
            _make_pipeline(models_dir, backend).classify(b"not an image")
        assert backend.run_calls == []

    def test_label_count_mismatch(self, models_dir: Path) -> None:
        backend = FakeBackend([0.95, 0.2, 0.1])
        with pytest.raises(InferenceError, match="3 probabilities for 2 labels"):
            _make_pipeline(models_dir, backend).classify(encode(make_image(300, 300)))

    def test_cancelled_before_work(self, models_dir: Path) -> None:
        backend = FakeBackend()
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(ClassificationCancelledError) as exc_info:
            _make_pipeline(models_dir, backend).classify(encode(make_image(300, 300)), cancel_event=cancel_event)
        assert exc_info.value.stage == "load_model"
        assert backend.run_calls == []

    @patch("classifyx.ml.pipeline.time")
    def test_timeout_stops_pipeline(self, mock_time: MagicMock, models_dir: Path) -> None:
        # Deadline starts at t=0; every later check sees t=100.
        mock_time.monotonic.side_effect = itertools.chain([0.0], itertools.repeat(100.0))
        backend = FakeBackend()

        with pytest.raises(ClassificationTimeoutError, match="exceeded") as exc_info:
            _make_pipeline(models_dir, backend).classify(encode(make_image(300, 300)), timeout=5.0)
        assert exc_info.value.status_code == 504
        assert backend.run_calls == []

    def test_generous_timeout_completes(self, models_dir: Path) -> None:
        results = _make_pipeline(models_dir, FakeBackend()).classify(encode(make_image(300, 300)), timeout=60.0)
        assert [r.label for r in results] == ["cat"]
