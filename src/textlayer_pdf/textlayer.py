from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .image import PageGeometry
from .recognize import RecognizedFragment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GlyphRun:
    """Invisible text painted at ``(x, y)`` (baseline-left, document points)."""

    text: str
    x: float
    y: float
    width: float
    height: float
    font_size: float


def _finite(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _coerce_fragment(item: Any) -> RecognizedFragment | None:
    if isinstance(item, RecognizedFragment):
        text = item.text
        numbers = (item.confidence, item.x, item.y, item.width, item.height)
    elif isinstance(item, Mapping):
        box = item.get("box")
        if not isinstance(box, Mapping):
            return None
        text = item.get("text")
        numbers = (item.get("confidence"), box.get("x"), box.get("y"), box.get("w"), box.get("h"))
    else:
        return None

    if not isinstance(text, str) or not text:
        return None
    values = [_finite(value) for value in numbers]
    if any(value is None for value in values):
        return None
    confidence, x, y, width, height = values
    return RecognizedFragment(text=text, confidence=confidence, x=x, y=y, width=width, height=height)


def composite(
    fragments: Iterable[RecognizedFragment | Mapping[str, Any]],
    geometry: PageGeometry,
) -> list[GlyphRun]:
    """Map normalized fragment boxes onto the page, keeping input order.

    Malformed fragments are dropped without failing the call.
    """
    runs: list[GlyphRun] = []
    skipped = 0
    for item in fragments:
        fragment = _coerce_fragment(item)
        if fragment is None:
            skipped += 1
            continue

        width = max(fragment.width * geometry.page_width, 1.0)
        height = max(fragment.height * geometry.page_height, 1.0)
        runs.append(
            GlyphRun(
                text=fragment.text,
                x=fragment.x * geometry.page_width,
                y=fragment.y * geometry.page_height,
                width=width,
                height=height,
                font_size=max(height, 1.0),
            )
        )

    if skipped:
        logger.debug("Skipped %d malformed fragment(s)", skipped)
    return runs
