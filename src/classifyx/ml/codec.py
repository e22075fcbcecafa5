"""Image codec: raw bytes to RGB pixel grids and back.

The in-memory pixel grid is a Pillow ``Image`` in ``RGB`` mode (3 channels,
8 bits per sample). Alpha and any other extra channels are discarded on decode.
EXIF orientation is deliberately not applied, so geometry matches the pixel
order stored in the file.
"""

from __future__ import annotations

import io
import logging
import tempfile
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from classifyx.errors import DecodeError

logger = logging.getLogger(__name__)

STAGE = "decode"


def configure_decoder(max_pixels: int) -> None:
    """Set Pillow's decompression-bomb limit once, at application startup."""
    Image.MAX_IMAGE_PIXELS = max_pixels


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> Image.Image:
    """Decode an encoded image buffer into an RGB pixel grid.

    Args:
        image_bytes: Raw file bytes (JPEG, PNG, or any format Pillow reads).
        max_pixels: Reject images with more pixels than this (None = no limit).

    Returns:
        A fully loaded RGB image owned by the caller.

    Raises:
        DecodeError: If the bytes are empty, unrecognized, truncated, or too large.
    """
    if not image_bytes:
        raise DecodeError(STAGE, "Image buffer is empty")

    try:
        with Image.open(io.BytesIO(image_bytes)) as source:
            width, height = source.size
            if max_pixels is not None and width * height > max_pixels:
                raise DecodeError(
                    STAGE,
                    f"Image of {width}x{height} exceeds the limit of {max_pixels} pixels",
                )
            # convert() forces a full decode, surfacing truncated data here.
            image = source.convert("RGB")
    except UnidentifiedImageError as exc:
        raise DecodeError(STAGE, f"Unrecognized image format ({len(image_bytes)} bytes)") from exc
    except Image.DecompressionBombError as exc:
        raise DecodeError(STAGE, f"Image too large to decode safely: {exc}") from exc
    except (OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(STAGE, f"Corrupt or truncated image data: {exc}") from exc

    return image


def encode_image(image: Image.Image, image_format: str = "JPEG") -> bytes:
    """Encode a pixel grid into a compressed byte buffer."""
    buffer = io.BytesIO()
    image.save(buffer, format=image_format)
    return buffer.getvalue()


def save_diagnostic_copy(image: Image.Image, directory: str | Path | None = None) -> Path:
    """Write the preprocessed image as a JPEG temp file and return its path."""
    with tempfile.NamedTemporaryFile(
        prefix="classifyx-",
        suffix=".jpg",
        dir=directory,
        delete=False,
    ) as handle:
        handle.write(encode_image(image))
        path = Path(handle.name)
    logger.info("Writing pre-processed image file at %s", path)
    return path
