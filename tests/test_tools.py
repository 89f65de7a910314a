from __future__ import annotations

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from textlayer_pdf.tools import QPDF, ToolSpec, missing_tools, resolve_tool


def _make_executable(path: Path) -> Path:
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path


def test_env_override_wins(tmp_path: Path):
    spec = ToolSpec("qpdf", "TEXTLAYER_PDF_QPDF", search_dirs=(str(tmp_path),))
    _make_executable(tmp_path / "qpdf")

    assert resolve_tool(spec, {"TEXTLAYER_PDF_QPDF": "/custom/qpdf"}) == "/custom/qpdf"


def test_candidate_dirs_are_searched_before_path(tmp_path: Path):
    candidates = tmp_path / "candidates"
    on_path = tmp_path / "on_path"
    candidates.mkdir()
    on_path.mkdir()
    expected = _make_executable(candidates / "tiffcp")
    _make_executable(on_path / "tiffcp")
    spec = ToolSpec("tiffcp", "TEXTLAYER_PDF_TIFFCP", search_dirs=(str(candidates),))

    assert resolve_tool(spec, {"PATH": str(on_path)}) == str(expected)


def test_non_executable_candidate_is_skipped(tmp_path: Path):
    (tmp_path / "tiff2pdf").write_text("not executable")
    spec = ToolSpec("tiff2pdf", "TEXTLAYER_PDF_TIFF2PDF", search_dirs=(str(tmp_path),))

    assert resolve_tool(spec, {"PATH": os.devnull}) is None


def test_falls_back_to_path(tmp_path: Path):
    expected = _make_executable(tmp_path / "qpdf")
    spec = ToolSpec(QPDF.name, QPDF.env_var, search_dirs=())

    assert resolve_tool(spec, {"PATH": str(tmp_path)}) == str(expected)


def test_missing_tools_lists_unresolved_names(tmp_path: Path):
    _make_executable(tmp_path / "qpdf")
    specs = (
        ToolSpec("qpdf", "TEXTLAYER_PDF_QPDF", search_dirs=()),
        ToolSpec("tiffcp", "TEXTLAYER_PDF_TIFFCP", search_dirs=()),
    )

    assert missing_tools(specs, {"PATH": str(tmp_path)}) == ["tiffcp"]
