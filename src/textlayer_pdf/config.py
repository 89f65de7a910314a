from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .tools import QPDF, TIFF2PDF, TIFFCP, resolve_tool

TIMEOUT_ENV = "TEXTLAYER_PDF_TOOL_TIMEOUT"
WORKSPACE_ENV = "TEXTLAYER_PDF_TMPDIR"

DEFAULT_TIMEOUT_S = 120.0


@dataclass(frozen=True)
class PipelineConfig:
    """External tools and limits for the G4 codec pipeline.

    Tool fields hold the executable to spawn; an unresolved tool keeps its
    bare name, so spawning it fails as an ``ExternalToolFailure``.
    """

    tiffcp: str = TIFFCP.name
    tiff2pdf: str = TIFF2PDF.name
    qpdf: str = QPDF.name
    timeout_s: float | None = DEFAULT_TIMEOUT_S
    strip_rows: int | None = None  # None => whole image in one strip
    workspace_parent: Path | None = None

    def __post_init__(self) -> None:
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive or None")
        if self.strip_rows is not None and self.strip_rows < 1:
            raise ValueError("strip_rows must be >= 1")

    @classmethod
    def from_environ(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> PipelineConfig:
        env = os.environ if environ is None else environ

        raw_timeout = env.get(TIMEOUT_ENV, "").strip()
        if raw_timeout:
            try:
                value = float(raw_timeout)
            except ValueError as exc:
                raise ValueError(f"{TIMEOUT_ENV} must be a number, got {raw_timeout!r}") from exc
            timeout_s = value if value > 0 else None

        raw_workspace = env.get(WORKSPACE_ENV, "").strip()

        return cls(
            tiffcp=resolve_tool(TIFFCP, env) or TIFFCP.name,
            tiff2pdf=resolve_tool(TIFF2PDF, env) or TIFF2PDF.name,
            qpdf=resolve_tool(QPDF, env) or QPDF.name,
            timeout_s=timeout_s,
            workspace_parent=Path(raw_workspace) if raw_workspace else None,
        )
