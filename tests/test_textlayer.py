from __future__ import annotations

import math
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from textlayer_pdf.image import PageGeometry
from textlayer_pdf.recognize import RecognizedFragment
from textlayer_pdf.textlayer import composite

GEOMETRY = PageGeometry(pixel_width=400, pixel_height=800, page_width=200.0, page_height=400.0, render_scale=2.0)


def test_composite_maps_normalized_box_to_page_units():
    fragment = RecognizedFragment(text="Hello", confidence=0.9, x=0.1, y=0.2, width=0.3, height=0.1)

    (run,) = composite([fragment], GEOMETRY)

    assert run.text == "Hello"
    assert run.x == pytest.approx(20.0)
    assert run.y == pytest.approx(80.0)
    assert run.width == pytest.approx(60.0)
    assert run.height == pytest.approx(40.0)
    assert run.font_size == pytest.approx(40.0)


def test_composite_floors_tiny_boxes_to_one_unit():
    fragment = RecognizedFragment(text="i", confidence=0.5, x=0.0, y=0.0, width=0.0001, height=0.0)

    (run,) = composite([fragment], GEOMETRY)

    assert run.width == 1.0
    assert run.height == 1.0
    assert run.font_size == 1.0


def test_composite_accepts_json_shaped_fragments():
    payload = {"text": "world", "confidence": 1, "box": {"x": 0.5, "y": 0.5, "w": 0.25, "h": 0.05}}

    (run,) = composite([payload], GEOMETRY)

    assert (run.x, run.y) == pytest.approx((100.0, 200.0))
    assert run.width == pytest.approx(50.0)


def test_composite_drops_malformed_fragments_and_keeps_order():
    fragments = [
        {"text": "first", "confidence": 0.9, "box": {"x": 0.1, "y": 0.1, "w": 0.1, "h": 0.1}},
        {"text": "", "confidence": 0.9, "box": {"x": 0.1, "y": 0.1, "w": 0.1, "h": 0.1}},
        {"text": "no box", "confidence": 0.9},
        {"text": "bad number", "confidence": 0.9, "box": {"x": "0.1", "y": 0.1, "w": 0.1, "h": 0.1}},
        {"text": "nan", "confidence": 0.9, "box": {"x": math.nan, "y": 0.1, "w": 0.1, "h": 0.1}},
        {"text": "bool", "confidence": True, "box": {"x": 0.1, "y": 0.1, "w": 0.1, "h": 0.1}},
        "not a fragment",
        RecognizedFragment(text="second", confidence=0.1, x=0.2, y=0.2, width=0.1, height=0.1),
        {"text": "third", "confidence": 0.9, "box": {"x": 0.3, "y": 0.3, "w": 0.1, "h": 0.1}},
    ]

    runs = composite(fragments, GEOMETRY)

    assert [run.text for run in runs] == ["first", "second", "third"]


def test_composite_of_nothing_is_empty():
    assert composite([], GEOMETRY) == []
