from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from . import __version__
from .binarize import binarize
from .config import DEFAULT_TIMEOUT_S, PipelineConfig
from .emit import emit, write_document
from .errors import OutputWriteError, TextLayerError
from .pipeline import run_g4_pipeline
from .raster import PageSource, open_source, rasterize
from .recognize import DEFAULT_LANGUAGES, RecognizedFragment, Recognizer, TesseractRecognizer
from .textlayer import composite
from .tools import PIPELINE_TOOLS, TESSERACT, missing_tools, resolve_tool

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 2.0


def _default_output_path(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}_searchable.pdf")


def _is_paginated(input_path: Path) -> bool:
    return input_path.suffix.lower() == ".pdf"


def _parse_languages(raw: str) -> list[str]:
    return [part.strip() for part in raw.replace("+", ",").split(",") if part.strip()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="textlayer-pdf",
        description=(
            "Recognize text on an image or a PDF page and emit it as JSON, or as a PDF "
            "with an invisible, searchable text layer over the original pixels."
        ),
    )
    parser.add_argument("input", type=Path, help="Path to the source image or PDF")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--json",
        dest="output_mode",
        action="store_const",
        const="json",
        help="Write recognized text and normalized boxes as JSON",
    )
    mode.add_argument(
        "--pdf",
        dest="output_mode",
        action="store_const",
        const="pdf",
        help="Write a searchable PDF",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output path (default: <input>_searchable.pdf for --pdf, stdout for --json)",
    )
    parser.add_argument(
        "-l",
        "--lang",
        default=",".join(DEFAULT_LANGUAGES),
        help="Comma separated recognition languages, e.g. en-US,zh-Hans (default: %(default)s)",
    )
    parser.add_argument(
        "-p",
        "--page",
        type=int,
        default=None,
        help="1-based page number; required for PDF input, not accepted for images",
    )
    parser.add_argument(
        "-s",
        "--scale",
        type=float,
        default=DEFAULT_SCALE,
        help="Render scale for PDF pages, 1.0 = 72 dpi (default: %(default)s)",
    )
    parser.add_argument(
        "--bilevel",
        action="store_true",
        help="Binarize the page image before embedding it (1-bit, threshold 128)",
    )
    parser.add_argument(
        "--g4",
        action="store_true",
        help="Recompress the page as CCITT G4 via tiffcp, tiff2pdf and qpdf (requires --pdf)",
    )
    parser.add_argument(
        "--no-correction",
        action="store_true",
        help="Disable dictionary-based correction in the recognizer",
    )
    parser.add_argument(
        "--psm",
        "--tesseract-psm",
        dest="tesseract_psm",
        type=int,
        choices=tuple(range(0, 14)),
        default=None,
        help="Tesseract page segmentation mode (0-13)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each external tool (default: 120; <=0 disables)",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Report every stage")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _validate_args(args: argparse.Namespace) -> None:
    if not args.input.exists():
        raise FileNotFoundError(f"Input file not found: {args.input}")
    if args.g4 and args.output_mode != "pdf":
        raise ValueError("--g4 requires --pdf output")
    if _is_paginated(args.input):
        if args.page is None:
            raise ValueError("--page is required for PDF input")
        if args.page < 1:
            raise ValueError("--page must be >= 1")
        if args.scale <= 0:
            raise ValueError("--scale must be > 0")
    elif args.page is not None:
        raise ValueError("--page is only accepted for PDF input")
    if not _parse_languages(args.lang):
        raise ValueError("--lang must name at least one language")


def _ensure_runtime_dependencies(*, codec_tools: bool) -> None:
    specs = (TESSERACT, *PIPELINE_TOOLS) if codec_tools else (TESSERACT,)
    missing = missing_tools(specs)
    if missing:
        joined = ", ".join(missing)
        raise RuntimeError(
            "Missing required executables in PATH: "
            f"{joined}. Install OCR system dependencies first."
        )


def _configure_logging(*, quiet: bool, verbose: bool) -> None:
    level = logging.ERROR if quiet else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def serialize_fragments(fragments: Sequence[RecognizedFragment]) -> str:
    payload = [fragment.to_dict() for fragment in fragments]
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n"


def run(
    input_path: Path,
    output_path: Path | None = None,
    *,
    output_mode: str = "pdf",
    languages: Sequence[str] = DEFAULT_LANGUAGES,
    page: int | None = None,
    scale: float = DEFAULT_SCALE,
    bilevel: bool = False,
    g4: bool = False,
    use_correction: bool = True,
    recognizer: Recognizer | None = None,
    config: PipelineConfig | None = None,
) -> Path | None:
    """Rasterize, recognize and write one page.

    Returns the written path, or ``None`` when JSON went to stdout.
    """
    if output_mode not in ("json", "pdf"):
        raise ValueError(f"Unknown output mode: {output_mode}")
    if g4 and output_mode != "pdf":
        raise ValueError("G4 recompression requires PDF output")

    recognizer = recognizer or TesseractRecognizer(resolve_tool(TESSERACT) or TESSERACT.name)
    page_index = None if page is None else page - 1

    source = open_source(input_path)
    try:
        raster, geometry = rasterize(source, page_index, scale)
    finally:
        if isinstance(source, PageSource):
            source.close()

    fragments = list(recognizer.recognize(raster, languages, use_correction))
    logger.info("Recognized %d fragment(s)", len(fragments))

    if output_mode == "json":
        payload = serialize_fragments(fragments)
        if output_path is None:
            sys.stdout.write(payload)
            return None
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(payload, encoding="utf-8")
        except OSError as exc:
            raise OutputWriteError(f"Cannot write {output_path}: {exc}") from exc
        return output_path

    output_path = output_path or _default_output_path(input_path)
    runs = composite(fragments, geometry)

    if g4:
        return run_g4_pipeline(
            raster,
            geometry,
            runs,
            output_path,
            force_bilevel=bilevel,
            config=config or PipelineConfig.from_environ(),
        )

    background = binarize(raster, force=True) if bilevel else raster
    return write_document(output_path, emit(background, geometry, runs))


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(quiet=args.quiet, verbose=args.verbose)

    try:
        _validate_args(args)
        _ensure_runtime_dependencies(codec_tools=args.g4)
        config = PipelineConfig.from_environ() if args.g4 else None
        timeout_s = DEFAULT_TIMEOUT_S
        if args.timeout is not None:
            timeout_s = args.timeout if args.timeout > 0 else None
            if config is not None:
                config = dataclasses.replace(config, timeout_s=timeout_s)
        recognizer = TesseractRecognizer(
            resolve_tool(TESSERACT) or TESSERACT.name,
            psm=args.tesseract_psm,
            timeout_s=timeout_s,
        )
        output_path = run(
            args.input,
            args.output,
            output_mode=args.output_mode,
            languages=_parse_languages(args.lang),
            page=args.page,
            scale=args.scale,
            bilevel=args.bilevel,
            g4=args.g4,
            use_correction=not args.no_correction,
            recognizer=recognizer,
            config=config,
        )
    except (FileNotFoundError, RuntimeError, ValueError, TextLayerError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    if output_path is not None:
        print(f"Done: {args.output_mode.upper()} written to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
