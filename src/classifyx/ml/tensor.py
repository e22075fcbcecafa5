"""Pack a preprocessed RGB image into the network's input tensor."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from classifyx.errors import InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from PIL import Image

    from classifyx.config import ModelSettings


def pack_tensor(image: Image.Image, settings: ModelSettings) -> NDArray[np.float32]:
    """Convert an RGB image into a [1, width, height, channels] float tensor.

    Channels are stored in B, G, R order as raw 0-255 sample values (no
    normalization). Index order is [0, x, y, channel]: the first axis runs
    across the image width and the second down its height.

    Raises:
        InferenceError: If the image size does not match the input tensor.
    """
    expected = (settings.input_tensor_width, settings.input_tensor_height)
    if image.size != expected or image.mode != "RGB":
        raise InferenceError(
            "pack",
            f"Expected a {expected[0]}x{expected[1]} RGB image, got {image.size[0]}x{image.size[1]} {image.mode}",
        )

    # numpy holds pixels as [y, x]; swap to [x, y] before reversing channels.
    pixels = np.asarray(image, dtype=np.uint8).transpose(1, 0, 2)
    bgr = pixels[:, :, ::-1].astype(np.float32)
    tensor = np.ascontiguousarray(bgr[np.newaxis, ...])

    if tensor.shape != settings.tensor_shape:
        raise InferenceError("pack", f"Packed tensor has shape {tensor.shape}, expected {settings.tensor_shape}")
    return tensor
