from __future__ import annotations

import logging

import numpy as np
from PIL import Image

from .errors import AllocationError
from .image import PixelFormat, PixelImage

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 128


def packed_row_length(width: int) -> int:
    """Bytes per row of a 1-bit image: ``ceil(width / 8)``."""
    return (width + 7) // 8


def is_already_bilevel(image: PixelImage) -> bool:
    return image.format is PixelFormat.BILEVEL


def to_grayscale8(image: PixelImage) -> PixelImage:
    """Convert any supported image to one 8-bit channel.

    Transparent regions are composited over opaque white so they read as
    background rather than black.
    """
    if image.format is PixelFormat.GRAY8:
        return image

    try:
        pil_image = image.to_pil()
        if pil_image.mode == "RGBA":
            flattened = Image.new("RGB", pil_image.size, (255, 255, 255))
            flattened.paste(pil_image, mask=pil_image.getchannel("A"))
            pil_image = flattened
        return PixelImage.from_pil(pil_image.convert("L"))
    except MemoryError as exc:
        raise AllocationError(
            f"Cannot allocate a {image.width}x{image.height} grayscale buffer"
        ) from exc


def threshold(image: PixelImage, level: int = DEFAULT_THRESHOLD) -> PixelImage:
    """Pack an 8-bit grayscale image into 1 bit per pixel.

    A pixel whose value is ``>= level`` becomes 1 (white), anything darker
    becomes 0 (black). Bits are stored MSB-first; each row is
    ``packed_row_length(width)`` bytes and the trailing padding bits are 0.
    """
    if image.format is not PixelFormat.GRAY8:
        raise ValueError(f"threshold expects a gray8 image, got {image.format.value}")

    try:
        rows = np.frombuffer(image.data, dtype=np.uint8).reshape(image.height, image.stride)
        pixels = rows[:, : image.width]
        packed = np.packbits(pixels >= level, axis=1, bitorder="big")
    except MemoryError as exc:
        raise AllocationError(
            f"Cannot allocate a {image.width}x{image.height} bilevel buffer"
        ) from exc

    return PixelImage(
        width=image.width,
        height=image.height,
        format=PixelFormat.BILEVEL,
        stride=packed_row_length(image.width),
        data=packed.tobytes(),
    )


def binarize(image: PixelImage, *, force: bool = False, level: int = DEFAULT_THRESHOLD) -> PixelImage:
    if is_already_bilevel(image) and not force:
        logger.debug("Image is already bilevel, skipping threshold")
        return image
    return threshold(to_grayscale8(image), level)
