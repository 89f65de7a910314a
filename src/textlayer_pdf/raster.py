from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .errors import PageOutOfRange, RasterAllocationError, SourceLoadError
from .image import PageGeometry, PixelImage

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255, 255)


@dataclass(frozen=True)
class PageBox:
    origin_x: float
    origin_y: float
    width: float
    height: float


@dataclass(frozen=True)
class ImageSource:
    """A single already-decoded image; it has no pages."""

    image: PixelImage


class PageSource(ABC):
    """Paginated input (PDF). Page indices are 0-based."""

    @abstractmethod
    def page_count(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def page_bounds(self, index: int) -> PageBox:
        raise NotImplementedError

    @abstractmethod
    def render_page(self, index: int, size: tuple[int, int]) -> PixelImage:
        """Render page ``index`` onto an opaque white raster of exactly ``size``
        pixels, with the page box origin at pixel (0, 0)."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class PdfiumPageSource(PageSource):
    def __init__(self, path: Path) -> None:
        import pypdfium2 as pdfium

        self._pdfium = pdfium
        try:
            self._document = pdfium.PdfDocument(str(path))
        except pdfium.PdfiumError as exc:
            raise SourceLoadError(f"Cannot open PDF {path}: {exc}") from exc
        self.path = path

    def page_count(self) -> int:
        return len(self._document)

    def page_bounds(self, index: int) -> PageBox:
        page = self._document[index]
        try:
            left, bottom, _right, _top = page.get_cropbox()
            # get_size() already accounts for /Rotate.
            width, height = page.get_size()
        finally:
            page.close()
        return PageBox(origin_x=left, origin_y=bottom, width=width, height=height)

    def render_page(self, index: int, size: tuple[int, int]) -> PixelImage:
        target_width, target_height = size
        page = self._document[index]
        try:
            page_width, page_height = page.get_size()
            # pdfium maps the crop box to the bitmap origin and rounds the bitmap
            # size up, so render at the larger axis scale and cut back to size.
            scale = max(target_width / page_width, target_height / page_height)
            bitmap = page.render(scale=scale, fill_color=WHITE)
            rendered = bitmap.to_pil().convert("RGB")
        except MemoryError as exc:
            raise RasterAllocationError(
                f"Cannot allocate a {target_width}x{target_height} raster for page {index + 1}"
            ) from exc
        except self._pdfium.PdfiumError as exc:
            raise SourceLoadError(f"Cannot render page {index + 1} of {self.path}: {exc}") from exc
        finally:
            page.close()

        if rendered.size != (target_width, target_height):
            canvas = Image.new("RGB", (target_width, target_height), WHITE[:3])
            canvas.paste(rendered.crop((0, 0, target_width, target_height)), (0, 0))
            rendered = canvas
        return PixelImage.from_pil(rendered)

    def close(self) -> None:
        self._document.close()


def load_image(path: Path) -> ImageSource:
    try:
        with Image.open(path) as image:
            image.load()
            return ImageSource(image=PixelImage.from_pil(image))
    except Image.DecompressionBombError as exc:
        raise RasterAllocationError(f"Image {path} is too large to decode: {exc}") from exc
    except MemoryError as exc:
        raise RasterAllocationError(f"Cannot allocate a raster for {path}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise SourceLoadError(f"Cannot load image {path}: {exc}") from exc


def open_source(path: Path) -> ImageSource | PageSource:
    if not path.exists():
        raise SourceLoadError(f"Input file not found: {path}")
    if path.suffix.lower() == ".pdf":
        return PdfiumPageSource(path)
    return load_image(path)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def raster_size(box: PageBox, scale: float) -> tuple[int, int]:
    return (
        max(_round_half_up(box.width * scale), 1),
        max(_round_half_up(box.height * scale), 1),
    )


def rasterize(
    source: ImageSource | PageSource,
    page_index: int | None = None,
    scale: float = 1.0,
) -> tuple[PixelImage, PageGeometry]:
    if isinstance(source, ImageSource):
        if page_index is not None:
            raise ValueError("A page index is only valid for paginated sources")
        return source.image, PageGeometry.for_image(source.image)

    if page_index is None:
        raise ValueError("A page index is required for paginated sources")
    if not math.isfinite(scale) or scale <= 0:
        raise ValueError(f"Render scale must be positive, got {scale}")

    page_count = source.page_count()
    if not 0 <= page_index < page_count:
        raise PageOutOfRange(page_index, page_count)

    box = source.page_bounds(page_index)
    width_px, height_px = raster_size(box, scale)
    logger.info(
        "Rendering page %d (%.2f x %.2f pt) at scale %g -> %dx%d px",
        page_index + 1,
        box.width,
        box.height,
        scale,
        width_px,
        height_px,
    )
    try:
        image = source.render_page(page_index, (width_px, height_px))
    except MemoryError as exc:
        raise RasterAllocationError(
            f"Cannot allocate a {width_px}x{height_px} raster for page {page_index + 1}"
        ) from exc

    geometry = PageGeometry(
        pixel_width=width_px,
        pixel_height=height_px,
        page_width=box.width,
        page_height=box.height,
        render_scale=scale,
    )
    return image, geometry
