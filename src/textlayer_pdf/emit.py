from __future__ import annotations

import io
import logging
import zlib
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pikepdf
from PIL import Image

from . import __version__
from .errors import OutputWriteError
from .image import PageGeometry, PixelFormat, PixelImage
from .textlayer import GlyphRun

logger = logging.getLogger(__name__)

# Advance width of every glyph in the text-layer font, in 1/1000 em.
GLYPH_ADVANCE = 500
_REPLACEMENT_CHAR = 0xFFFD
_SURROGATE_HIGH_BYTES = range(0xD8, 0xE0)


@dataclass(frozen=True)
class DocumentMetadata:
    creator: str
    title: str


DEFAULT_METADATA = DocumentMetadata(
    creator=f"textlayer-pdf {__version__}",
    title="textlayer-pdf searchable page",
)


def _fmt(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _encode_text(text: str) -> list[int]:
    codes: list[int] = []
    for char in text:
        code = ord(char)
        if code > 0xFFFF or 0xD800 <= code <= 0xDFFF:
            code = _REPLACEMENT_CHAR
        codes.append(code)
    return codes


def _to_unicode_cmap() -> bytes:
    ranges = [
        f"<{high:02X}00> <{high:02X}FF> <{high:02X}00>"
        for high in range(256)
        if high not in _SURROGATE_HIGH_BYTES
    ]
    lines = [
        "/CIDInit /ProcSet findresource begin",
        "12 dict begin",
        "begincmap",
        "/CIDSystemInfo << /Registry (Adobe) /Ordering (UCS) /Supplement 0 >> def",
        "/CMapName /Adobe-Identity-UCS def",
        "/CMapType 2 def",
        "1 begincodespacerange",
        "<0000> <FFFF>",
        "endcodespacerange",
    ]
    # A bfrange block may hold at most 100 entries.
    for start in range(0, len(ranges), 100):
        block = ranges[start : start + 100]
        lines.append(f"{len(block)} beginbfrange")
        lines.extend(block)
        lines.append("endbfrange")
    lines.extend(
        [
            "endcmap",
            "CMapName currentdict /CMap defineresource pop",
            "end",
            "end",
        ]
    )
    return ("\n".join(lines) + "\n").encode("ascii")


def _text_font(pdf: pikepdf.Pdf) -> pikepdf.Object:
    descriptor = pdf.make_indirect(
        pikepdf.Dictionary(
            Type=pikepdf.Name.FontDescriptor,
            FontName=pikepdf.Name("/GlyphLessFont"),
            Flags=5,
            FontBBox=pikepdf.Array([0, 0, GLYPH_ADVANCE, 1000]),
            ItalicAngle=0,
            Ascent=1000,
            Descent=0,
            CapHeight=1000,
            StemV=80,
        )
    )
    cid_font = pdf.make_indirect(
        pikepdf.Dictionary(
            Type=pikepdf.Name.Font,
            Subtype=pikepdf.Name.CIDFontType2,
            BaseFont=pikepdf.Name("/GlyphLessFont"),
            CIDSystemInfo=pikepdf.Dictionary(
                Registry=pikepdf.String("Adobe"),
                Ordering=pikepdf.String("Identity"),
                Supplement=0,
            ),
            FontDescriptor=descriptor,
            DW=GLYPH_ADVANCE,
            CIDToGIDMap=pikepdf.Name.Identity,
        )
    )
    to_unicode = pdf.make_stream(_to_unicode_cmap())
    return pdf.make_indirect(
        pikepdf.Dictionary(
            Type=pikepdf.Name.Font,
            Subtype=pikepdf.Name.Type0,
            BaseFont=pikepdf.Name("/GlyphLessFont"),
            Encoding=pikepdf.Name("/Identity-H"),
            DescendantFonts=pikepdf.Array([cid_font]),
            ToUnicode=to_unicode,
        )
    )


def _flatten_alpha(image: PixelImage) -> PixelImage:
    rgba = image.to_pil()
    flattened = Image.new("RGB", rgba.size, (255, 255, 255))
    flattened.paste(rgba, mask=rgba.getchannel("A"))
    return PixelImage.from_pil(flattened)


def _image_xobject(pdf: pikepdf.Pdf, image: PixelImage) -> pikepdf.Stream:
    if image.has_alpha:
        image = _flatten_alpha(image)

    if image.format is PixelFormat.BILEVEL:
        color_space, bits = pikepdf.Name.DeviceGray, 1
    elif image.format is PixelFormat.GRAY8:
        color_space, bits = pikepdf.Name.DeviceGray, 8
    else:
        color_space, bits = pikepdf.Name.DeviceRGB, 8

    # PDF rows are byte aligned with no extra padding, so strip any stride slack.
    stream = pikepdf.Stream(pdf, b"")
    stream.write(zlib.compress(image.packed_rows()), filter=pikepdf.Name.FlateDecode)
    stream.Type = pikepdf.Name.XObject
    stream.Subtype = pikepdf.Name.Image
    stream.Width = image.width
    stream.Height = image.height
    stream.ColorSpace = color_space
    stream.BitsPerComponent = bits
    if image.format is PixelFormat.BILEVEL:
        stream.Interpolate = False
    return stream


def _glyph_run_ops(run: GlyphRun) -> str | None:
    codes = _encode_text(run.text)
    if not codes:
        return None
    natural_width = len(codes) * run.font_size * GLYPH_ADVANCE / 1000.0
    horizontal_scale = run.width / natural_width * 100.0
    hex_text = "".join(f"{code:04X}" for code in codes)
    return (
        f"BT 3 Tr /F1 {_fmt(run.font_size)} Tf {_fmt(horizontal_scale)} Tz "
        f"1 0 0 1 {_fmt(run.x)} {_fmt(run.y)} Tm <{hex_text}> Tj ET"
    )


def emit(
    background: PixelImage | None,
    geometry: PageGeometry,
    runs: Sequence[GlyphRun],
    metadata: DocumentMetadata = DEFAULT_METADATA,
) -> bytes:
    """Build a one-page PDF: background image (if any), then invisible text.

    The page is sized to the document-unit size in ``geometry``, not to the
    raster's pixel size.
    """
    page_width = geometry.page_width
    page_height = geometry.page_height

    with pikepdf.Pdf.new() as pdf:
        page = pdf.add_blank_page(page_size=(page_width, page_height))
        resources = pikepdf.Dictionary()
        ops: list[str] = []

        if background is not None:
            resources.XObject = pikepdf.Dictionary(Im0=_image_xobject(pdf, background))
            ops.append(f"q {_fmt(page_width)} 0 0 {_fmt(page_height)} 0 0 cm /Im0 Do Q")

        text_ops = [op for op in (_glyph_run_ops(run) for run in runs) if op is not None]
        if text_ops:
            resources.Font = pikepdf.Dictionary(F1=_text_font(pdf))
            ops.extend(text_ops)

        page.obj.Resources = resources
        page.obj.Contents = pdf.make_stream(("\n".join(ops) + "\n").encode("ascii"))

        pdf.docinfo[pikepdf.Name.Creator] = metadata.creator
        pdf.docinfo[pikepdf.Name.Title] = metadata.title

        buffer = io.BytesIO()
        pdf.save(buffer, deterministic_id=True)

    logger.debug(
        "Emitted %.2f x %.2f pt page with %d text run(s)%s",
        page_width,
        page_height,
        len(text_ops),
        "" if background is None else f" over a {background.format.value} background",
    )
    return buffer.getvalue()


def write_document(path: Path, data: bytes) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise OutputWriteError(f"Cannot write {path}: {exc}") from exc
    return path
