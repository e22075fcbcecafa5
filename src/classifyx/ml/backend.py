"""Inference backend: load a graph, load labels, run a named tensor through it.

The pipeline only depends on the ``InferenceBackend`` protocol; ``OnnxBackend``
is the onnxruntime implementation used by the service.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from classifyx.errors import InferenceError, LabelsLoadError, ModelLoadError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from classifyx.config import Settings

logger = logging.getLogger(__name__)


class InferenceBackend(Protocol):
    """Capability interface over a numeric graph-execution library."""

    def load_graph(self, graph_bytes: bytes) -> Any:
        """Parse serialized graph bytes into an opaque graph handle."""
        ...

    def load_labels(self, labels_bytes: bytes) -> list[str]:
        """Parse a newline-delimited labels file into an ordered list."""
        ...

    def run(
        self,
        graph: Any,
        input_tensor_name: str,
        output_tensor_name: str,
        tensor: NDArray[np.float32],
    ) -> NDArray[np.float32]:
        """Feed ``tensor`` to the named input and return the named output, flattened."""
        ...


def parse_labels(labels_bytes: bytes) -> list[str]:
    """Decode a labels file: UTF-8 (BOM tolerated), one label per line.

    Interior blank lines are kept so labels stay index-aligned with the output.
    """
    try:
        text = labels_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise LabelsLoadError("load_labels", f"Labels file is not valid UTF-8: {exc}") from exc
    return text.splitlines()


class OnnxBackend:
    """Runs graphs with onnxruntime ``InferenceSession`` objects."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def load_graph(self, graph_bytes: bytes) -> InferenceSession:
        """Create an InferenceSession from serialized ONNX bytes."""
        if not graph_bytes:
            raise ModelLoadError("load_graph", "Model file is empty")
        try:
            return InferenceSession(
                graph_bytes,
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:  # onnxruntime raises its own pybind exception types
            raise ModelLoadError("load_graph", f"Cannot parse model graph: {exc}") from exc

    def load_labels(self, labels_bytes: bytes) -> list[str]:
        """Parse a newline-delimited labels file."""
        return parse_labels(labels_bytes)

    def run(
        self,
        graph: InferenceSession,
        input_tensor_name: str,
        output_tensor_name: str,
        tensor: NDArray[np.float32],
    ) -> NDArray[np.float32]:
        """Run the graph and return the output vector for the single batch item."""
        input_names = [node.name for node in graph.get_inputs()]
        if input_tensor_name not in input_names:
            raise InferenceError(
                "infer",
                f"Input tensor '{input_tensor_name}' not found in graph (inputs: {input_names})",
            )
        output_names = [node.name for node in graph.get_outputs()]
        if output_tensor_name not in output_names:
            raise InferenceError(
                "infer",
                f"Output tensor '{output_tensor_name}' not found in graph (outputs: {output_names})",
            )

        try:
            (output,) = graph.run([output_tensor_name], {input_tensor_name: tensor})
        except Exception as exc:  # shape/type mismatches surface as runtime exceptions
            raise InferenceError("infer", f"Graph execution failed for input shape {tensor.shape}: {exc}") from exc

        return np.asarray(output, dtype=np.float32).reshape(-1)

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
