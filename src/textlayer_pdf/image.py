from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
from PIL import Image


class PixelFormat(str, Enum):
    RGB = "rgb"
    RGBA = "rgba"
    GRAY8 = "gray8"
    BILEVEL = "bilevel"

    @property
    def bits_per_pixel(self) -> int:
        return _BITS_PER_PIXEL[self]

    @property
    def pil_mode(self) -> str:
        return _PIL_MODES[self]


_BITS_PER_PIXEL: dict[PixelFormat, int] = {
    PixelFormat.RGB: 24,
    PixelFormat.RGBA: 32,
    PixelFormat.GRAY8: 8,
    PixelFormat.BILEVEL: 1,
}

_PIL_MODES: dict[PixelFormat, str] = {
    PixelFormat.RGB: "RGB",
    PixelFormat.RGBA: "RGBA",
    PixelFormat.GRAY8: "L",
    PixelFormat.BILEVEL: "1",
}

_FORMATS_BY_MODE: dict[str, PixelFormat] = {mode: fmt for fmt, mode in _PIL_MODES.items()}

# Single-channel modes wider than 8 bits; "I;16*" variants are matched by prefix.
_WIDE_GRAY_MODES = ("I", "F")


def _narrow_gray(image: Image.Image) -> Image.Image:
    """Scale a 16-bit (or 32-bit/float) grayscale image down to mode ``L``.

    Integer data is read as 16-bit samples and keeps its top byte. Float data
    in [0, 1] is stretched to [0, 255]; larger floats are treated as 16-bit.
    """
    pixels = np.asarray(image)
    if image.mode == "F" and pixels.size and float(np.nanmax(pixels)) <= 1.0:
        narrowed = np.clip(np.nan_to_num(pixels) * 255.0 + 0.5, 0, 255)
    else:
        narrowed = np.clip(np.nan_to_num(pixels), 0, 65535).astype(np.uint32) >> 8
    return Image.fromarray(narrowed.astype(np.uint8))


def min_row_bytes(width: int, pixel_format: PixelFormat) -> int:
    return (width * pixel_format.bits_per_pixel + 7) // 8


@dataclass(frozen=True)
class PixelImage:
    """Raw pixel buffer with an explicit row stride.

    Row ``r`` occupies ``data[r * stride:(r + 1) * stride]``; bytes past
    ``min_row_bytes(width, format)`` in a row are padding.
    """

    width: int
    height: int
    format: PixelFormat
    stride: int
    data: bytes

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"image dimensions must be positive, got {self.width}x{self.height}")
        needed = min_row_bytes(self.width, self.format)
        if self.stride < needed:
            raise ValueError(f"stride {self.stride} is smaller than the {needed} bytes a row needs")
        if len(self.data) != self.stride * self.height:
            raise ValueError(
                f"buffer holds {len(self.data)} bytes, expected {self.stride * self.height}"
            )

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def has_alpha(self) -> bool:
        return self.format is PixelFormat.RGBA

    def row(self, index: int) -> bytes:
        start = index * self.stride
        return self.data[start : start + min_row_bytes(self.width, self.format)]

    def packed_rows(self) -> bytes:
        """Pixel bytes with row padding removed."""
        if self.stride == min_row_bytes(self.width, self.format):
            return self.data
        return b"".join(self.row(index) for index in range(self.height))

    @classmethod
    def from_pil(cls, image: Image.Image) -> PixelImage:
        if image.mode in _WIDE_GRAY_MODES or image.mode.startswith("I;16"):
            image = _narrow_gray(image)
        elif image.mode not in _FORMATS_BY_MODE:
            has_transparency = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_transparency else "RGB")
        pixel_format = _FORMATS_BY_MODE[image.mode]
        width, height = image.size
        return cls(
            width=width,
            height=height,
            format=pixel_format,
            stride=min_row_bytes(width, pixel_format),
            data=image.tobytes(),
        )

    def to_pil(self) -> Image.Image:
        mode = self.format.pil_mode
        return Image.frombytes(mode, self.size, self.data, "raw", mode, self.stride, 1)


@dataclass(frozen=True)
class PageGeometry:
    pixel_width: int
    pixel_height: int
    page_width: float
    page_height: float
    render_scale: float = 1.0

    @property
    def resolution(self) -> float:
        """Dots per inch of the raster relative to the page (72 units per inch)."""
        return 72.0 * self.render_scale

    @classmethod
    def for_image(cls, image: PixelImage) -> PageGeometry:
        return cls(
            pixel_width=image.width,
            pixel_height=image.height,
            page_width=float(image.width),
            page_height=float(image.height),
        )
