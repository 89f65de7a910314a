from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_SEARCH_DIRS: tuple[str, ...] = ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin")


@dataclass(frozen=True)
class ToolSpec:
    name: str
    env_var: str
    search_dirs: tuple[str, ...] = DEFAULT_SEARCH_DIRS


TIFFCP = ToolSpec("tiffcp", "TEXTLAYER_PDF_TIFFCP")
TIFF2PDF = ToolSpec("tiff2pdf", "TEXTLAYER_PDF_TIFF2PDF")
QPDF = ToolSpec("qpdf", "TEXTLAYER_PDF_QPDF")
TESSERACT = ToolSpec("tesseract", "TEXTLAYER_PDF_TESSERACT")

PIPELINE_TOOLS: tuple[ToolSpec, ...] = (TIFFCP, TIFF2PDF, QPDF)


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def resolve_tool(spec: ToolSpec, environ: Mapping[str, str] | None = None) -> str | None:
    """Locate an external tool.

    Order: the ``spec.env_var`` override (used as given), then each of
    ``spec.search_dirs``, then ``PATH``. Returns ``None`` when nothing matches.
    """
    env = os.environ if environ is None else environ
    override = env.get(spec.env_var, "").strip()
    if override:
        return override

    for directory in spec.search_dirs:
        candidate = os.path.join(directory, spec.name)
        if _is_executable(candidate):
            return candidate

    return shutil.which(spec.name, path=env.get("PATH"))


def missing_tools(specs: tuple[ToolSpec, ...], environ: Mapping[str, str] | None = None) -> list[str]:
    return [spec.name for spec in specs if resolve_tool(spec, environ) is None]
