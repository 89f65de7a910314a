from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from .binarize import binarize
from .config import PipelineConfig
from .emit import DEFAULT_METADATA, DocumentMetadata, emit, write_document
from .errors import ExternalToolFailure, OutputWriteError, PipelineError, TextLayerError
from .image import PageGeometry, PixelImage
from .textlayer import GlyphRun

logger = logging.getLogger(__name__)

TIFFTAG_DATETIME = 306
# tiff2pdf copies the TIFF DateTime into the PDF; a fixed value keeps output stable.
CONTAINER_DATETIME = "2000:01:01 00:00:00"


class PipelineState(str, Enum):
    INIT = "init"
    BINARIZE_DONE = "binarize-done"
    CONTAINER_WRITTEN = "container-written"
    COMPRESSED = "compressed"
    BASE_DOCUMENT_BUILT = "base-document-built"
    TEXT_DOCUMENT_BUILT = "text-document-built"
    MERGED = "merged"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class StageFailure:
    stage: str
    cause: TextLayerError


@dataclass(frozen=True)
class CodecWorkspace:
    root: Path

    @property
    def container(self) -> Path:
        return self.root / "container.tif"

    @property
    def compressed(self) -> Path:
        return self.root / "compressed.tif"

    @property
    def base_document(self) -> Path:
        return self.root / "base.pdf"

    @property
    def text_document(self) -> Path:
        return self.root / "text.pdf"


@contextmanager
def codec_workspace(parent: Path | None = None) -> Iterator[CodecWorkspace]:
    """Private temporary directory, removed on every exit path.

    Removal errors are ignored so they never replace the error that ended
    the pipeline.
    """
    root = Path(tempfile.mkdtemp(prefix="textlayer_pdf_g4_", dir=parent))
    logger.debug("Created workspace %s", root)
    try:
        yield CodecWorkspace(root)
    finally:
        shutil.rmtree(root, ignore_errors=True)
        logger.debug("Removed workspace %s", root)


def write_bilevel_container(image: PixelImage, path: Path, resolution: float) -> None:
    """Write an uncompressed 1-bit TIFF carrying ``resolution`` dots per inch."""
    try:
        image.to_pil().save(
            path,
            format="TIFF",
            compression="raw",
            dpi=(resolution, resolution),
            tiffinfo={TIFFTAG_DATETIME: CONTAINER_DATETIME},
        )
    except OSError as exc:
        raise OutputWriteError(f"Cannot write bilevel container {path}: {exc}") from exc


def _format_dpi(value: float) -> str:
    return f"{value:g}"


def fit_to_container_page(
    geometry: PageGeometry, runs: Sequence[GlyphRun]
) -> tuple[PageGeometry, list[GlyphRun]]:
    """Rescale runs onto the page tiff2pdf derives from the raster.

    tiff2pdf sizes the base page as ``pixels / render_scale``, which differs
    from a fractional source page by up to half a pixel. The overlay must
    match it exactly or qpdf scales the text layer to fit.
    """
    page_width = geometry.pixel_width / geometry.render_scale
    page_height = geometry.pixel_height / geometry.render_scale
    if (page_width, page_height) == (geometry.page_width, geometry.page_height):
        return geometry, list(runs)

    sx = page_width / geometry.page_width
    sy = page_height / geometry.page_height
    fitted = replace(geometry, page_width=page_width, page_height=page_height)
    return fitted, [
        replace(
            run,
            x=run.x * sx,
            y=run.y * sy,
            width=run.width * sx,
            height=run.height * sy,
            font_size=run.font_size * sy,
        )
        for run in runs
    ]


class G4Pipeline:
    """Rebuild a page as a CCITT G4 bilevel PDF with an invisible text layer.

    Stages run strictly in order; the first failure moves the pipeline to
    ``PipelineState.FAILED`` and is re-raised with its stage name. Nothing
    is retried.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        metadata: DocumentMetadata = DEFAULT_METADATA,
    ) -> None:
        self.config = config or PipelineConfig()
        self.metadata = metadata
        self.state = PipelineState.INIT
        self.failure: StageFailure | None = None

    @contextmanager
    def _stage(self, stage: str, reached: PipelineState) -> Iterator[None]:
        logger.debug("Stage %s started (state=%s)", stage, self.state.value)
        try:
            yield
        except TextLayerError as exc:
            if exc.stage is None:
                exc.stage = stage
            self._fail(stage, exc)
            raise
        except Exception as exc:  # noqa: BLE001
            error = PipelineError(stage, exc)
            self._fail(stage, error)
            raise error from exc
        self.state = reached

    def _fail(self, stage: str, error: TextLayerError) -> None:
        logger.error("G4 pipeline failed at stage %s: %s", stage, error)
        self.state = PipelineState.FAILED
        self.failure = StageFailure(stage=stage, cause=error)

    def _run_tool(self, tool: str, cmd: list[str], *, cwd: Path, expected_output: Path) -> None:
        logger.info("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.config.timeout_s,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolFailure(
                tool, None, detail=f"timed out after {self.config.timeout_s} s"
            ) from exc
        except OSError as exc:
            raise ExternalToolFailure(tool, None, detail=str(exc)) from exc

        if proc.returncode != 0:
            raise ExternalToolFailure(
                tool, proc.returncode, detail=(proc.stderr or "").strip()[-2000:]
            )
        if not expected_output.exists():
            raise ExternalToolFailure(tool, 0, detail=f"no output written to {expected_output.name}")

    def run(
        self,
        raster: PixelImage,
        geometry: PageGeometry,
        runs: Sequence[GlyphRun],
        output_path: Path,
        *,
        force_bilevel: bool = False,
    ) -> Path:
        self.state = PipelineState.INIT
        self.failure = None
        resolution = geometry.resolution

        with codec_workspace(self.config.workspace_parent) as workspace:
            with self._stage("binarize", PipelineState.BINARIZE_DONE):
                bilevel = binarize(raster, force=force_bilevel)

            with self._stage("write-container", PipelineState.CONTAINER_WRITTEN):
                write_bilevel_container(bilevel, workspace.container, resolution)

            with self._stage("compress", PipelineState.COMPRESSED):
                rows_per_strip = self.config.strip_rows or bilevel.height
                self._run_tool(
                    "tiffcp",
                    [
                        self.config.tiffcp,
                        "-c",
                        "g4",
                        "-r",
                        str(rows_per_strip),
                        str(workspace.container),
                        str(workspace.compressed),
                    ],
                    cwd=workspace.root,
                    expected_output=workspace.compressed,
                )

            with self._stage("build-base-document", PipelineState.BASE_DOCUMENT_BUILT):
                self._run_tool(
                    "tiff2pdf",
                    [
                        self.config.tiff2pdf,
                        "-o",
                        str(workspace.base_document),
                        "-c",
                        self.metadata.creator,
                        "-t",
                        self.metadata.title,
                        "-x",
                        _format_dpi(resolution),
                        "-y",
                        _format_dpi(resolution),
                        str(workspace.compressed),
                    ],
                    cwd=workspace.root,
                    expected_output=workspace.base_document,
                )

            with self._stage("build-text-document", PipelineState.TEXT_DOCUMENT_BUILT):
                base_geometry, base_runs = fit_to_container_page(geometry, runs)
                write_document(
                    workspace.text_document,
                    emit(None, base_geometry, base_runs, self.metadata),
                )

            with self._stage("merge", PipelineState.MERGED):
                try:
                    output_path.parent.mkdir(parents=True, exist_ok=True)
                    # A leftover file would pass the output check below.
                    output_path.unlink(missing_ok=True)
                except OSError as exc:
                    raise OutputWriteError(f"Cannot prepare {output_path}: {exc}") from exc
                self._run_tool(
                    "qpdf",
                    [
                        self.config.qpdf,
                        "--deterministic-id",
                        str(workspace.base_document),
                        "--overlay",
                        str(workspace.text_document),
                        "--",
                        str(output_path),
                    ],
                    cwd=workspace.root,
                    expected_output=output_path,
                )

        self.state = PipelineState.DONE
        logger.info("G4 pipeline wrote %s", output_path)
        return output_path


def run_g4_pipeline(
    raster: PixelImage,
    geometry: PageGeometry,
    runs: Sequence[GlyphRun],
    output_path: Path,
    *,
    force_bilevel: bool = False,
    config: PipelineConfig | None = None,
    metadata: DocumentMetadata = DEFAULT_METADATA,
) -> Path:
    return G4Pipeline(config, metadata=metadata).run(
        raster, geometry, runs, output_path, force_bilevel=force_bilevel
    )
