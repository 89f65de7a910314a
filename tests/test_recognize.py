from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from textlayer_pdf.errors import RecognitionEngineError
from textlayer_pdf.image import PixelImage
from textlayer_pdf.recognize import TesseractRecognizer, parse_tsv, tesseract_language_spec

HEADER = "level\tpage_num\tblock_num\tpar_num\tline_num\tword_num\tleft\ttop\twidth\theight\tconf\ttext"
TSV = "\n".join(
    [
        HEADER,
        "1\t1\t0\t0\t0\t0\t0\t0\t200\t100\t-1\t",
        "5\t1\t1\t1\t1\t1\t20\t10\t60\t20\t96.5\tHello",
        "5\t1\t1\t1\t1\t2\t100\t10\t40\t20\t-1\tghost",
        "5\t1\t1\t1\t1\t3\t150\t10\t40\t20\t88\t ",
        "5\t1\t1\t1\t2\t1\t0\t80\t200\t20\t120\tworld",
    ]
)


def test_parse_tsv_normalizes_boxes_to_bottom_left_origin():
    fragments = list(parse_tsv(TSV, image_width=200, image_height=100))

    assert [fragment.text for fragment in fragments] == ["Hello", "world"]
    hello, world = fragments
    assert hello.confidence == pytest.approx(0.965)
    assert (hello.x, hello.y, hello.width, hello.height) == pytest.approx((0.1, 0.7, 0.3, 0.2))
    assert world.confidence == 1.0
    assert (world.x, world.y) == pytest.approx((0.0, 0.0))
    assert hello.to_dict()["box"] == {"x": hello.x, "y": hello.y, "w": hello.width, "h": hello.height}


def test_language_spec_maps_bcp47_tags():
    assert tesseract_language_spec(["zh-Hans", "en-US", "en"]) == "chi_sim+eng"
    assert tesseract_language_spec(["rus"]) == "rus"
    assert tesseract_language_spec([]) == "eng"


def test_build_command_disables_dictionaries_without_correction():
    recognizer = TesseractRecognizer("/usr/bin/tesseract", psm=6)

    cmd = recognizer.build_command(Path("page.png"), ["en-US"], use_correction=False)

    assert cmd[:5] == ["/usr/bin/tesseract", "page.png", "stdout", "-l", "eng"]
    assert cmd[5:7] == ["--psm", "6"]
    assert "load_system_dawg=0" in cmd
    assert cmd[-1] == "tsv"
    assert "load_system_dawg=0" not in recognizer.build_command(Path("p.png"), ["en-US"], True)


def _image() -> PixelImage:
    return PixelImage.from_pil(Image.new("RGB", (200, 100), (255, 255, 255)))


def test_recognize_runs_tesseract_on_png(monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["format"] = Image.open(cmd[1]).format
        return subprocess.CompletedProcess(cmd, 0, TSV, "")

    monkeypatch.setattr("textlayer_pdf.recognize.subprocess.run", fake_run)

    fragments = list(TesseractRecognizer().recognize(_image(), ["en-US"], True))

    assert seen["format"] == "PNG"
    assert [fragment.text for fragment in fragments] == ["Hello", "world"]


def test_recognize_reports_engine_failure(monkeypatch):
    monkeypatch.setattr(
        "textlayer_pdf.recognize.subprocess.run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 1, "", "Failed loading language"),
    )

    with pytest.raises(RecognitionEngineError, match="Failed loading language"):
        list(TesseractRecognizer().recognize(_image(), ["xx"], True))


def test_recognize_reports_missing_binary(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr("textlayer_pdf.recognize.subprocess.run", fake_run)

    with pytest.raises(RecognitionEngineError, match="not found"):
        list(TesseractRecognizer("missing-tesseract").recognize(_image(), ["en-US"], True))
