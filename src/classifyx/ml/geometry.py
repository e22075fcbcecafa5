"""Deterministic geometric transforms applied before packing the tensor.

The exact integer arithmetic here reproduces the sampling the network was
trained with. Every function returns a new image and leaves its input intact.
"""

from __future__ import annotations

from PIL import Image

from classifyx.errors import OutOfBoundsError

# Triangle filter; Pillow widens its support when downscaling.
RESAMPLE_FILTER = Image.Resampling.BILINEAR


def resize_down_to_max(image: Image.Image, max_size: int) -> Image.Image:
    """Shrink the image so its longer side equals ``max_size``.

    Images whose sides are both ``<= max_size`` are returned unchanged. The
    shorter side becomes ``max_size * shorter // longer`` (integer truncation).
    """
    width, height = image.size
    if width <= max_size and height <= max_size:
        return image

    if height > width:
        new_width, new_height = max_size * width // height, max_size
    else:
        new_width, new_height = max_size, max_size * height // width

    # Pillow cannot produce a zero-sized image; extreme aspect ratios keep one pixel.
    return image.resize((max(new_width, 1), max(new_height, 1)), RESAMPLE_FILTER)


def resize_exact(image: Image.Image, target_size: int) -> Image.Image:
    """Resize to ``target_size`` x ``target_size``, ignoring aspect ratio."""
    return image.resize((target_size, target_size), RESAMPLE_FILTER)


def center_origin(width: int, height: int, out_width: int, out_height: int) -> tuple[int, int]:
    """Top-left corner of a centered ``out_width`` x ``out_height`` rectangle."""
    return width // 2 - out_width // 2, height // 2 - out_height // 2


def crop_center(image: Image.Image, out_width: int, out_height: int) -> Image.Image:
    """Extract the ``out_width`` x ``out_height`` rectangle centered on the image.

    Raises:
        OutOfBoundsError: If the rectangle does not fit inside the image.
    """
    width, height = image.size
    if not (0 < out_width <= width and 0 < out_height <= height):
        raise OutOfBoundsError(
            "crop",
            f"Cannot crop {out_width}x{out_height} from a {width}x{height} image",
        )

    left, top = center_origin(width, height, out_width, out_height)
    return image.crop((left, top, left + out_width, top + out_height))
