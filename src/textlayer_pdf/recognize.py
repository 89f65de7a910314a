from __future__ import annotations

import csv
import logging
import subprocess
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import RecognitionEngineError
from .image import PixelImage

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGES: tuple[str, ...] = ("zh-Hans", "en-US")

_TESSERACT_LANGUAGES: dict[str, str] = {
    "en": "eng",
    "en-us": "eng",
    "en-gb": "eng",
    "zh-hans": "chi_sim",
    "zh-cn": "chi_sim",
    "zh-hant": "chi_tra",
    "zh-tw": "chi_tra",
    "ja": "jpn",
    "ja-jp": "jpn",
    "ko": "kor",
    "ko-kr": "kor",
    "ru": "rus",
    "ru-ru": "rus",
    "de": "deu",
    "de-de": "deu",
    "fr": "fra",
    "fr-fr": "fra",
    "es": "spa",
    "es-es": "spa",
    "it": "ita",
    "it-it": "ita",
    "pt": "por",
    "pt-br": "por",
    "uk": "ukr",
    "uk-ua": "ukr",
}


@dataclass(frozen=True)
class RecognizedFragment:
    """One recognized piece of text.

    The box is normalized to the page: ``x``/``y`` is the bottom-left corner,
    y grows upward, and every value lies in [0, 1].
    """

    text: str
    confidence: float
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "box": {"x": self.x, "y": self.y, "w": self.width, "h": self.height},
        }


class Recognizer(ABC):
    """Text recognition engine.

    Implementations return literal hypotheses in the engine's native order;
    they must not reorder, merge or correct fragments beyond what the engine
    itself does.
    """

    @abstractmethod
    def recognize(
        self,
        image: PixelImage,
        languages: Sequence[str],
        use_correction: bool,
    ) -> Iterator[RecognizedFragment]:
        raise NotImplementedError


def tesseract_language_spec(languages: Sequence[str]) -> str:
    codes: list[str] = []
    for language in languages:
        language = language.strip()
        if not language:
            continue
        code = _TESSERACT_LANGUAGES.get(language.lower(), language)
        if code not in codes:
            codes.append(code)
    return "+".join(codes) or "eng"


def _normalize_confidence(raw_conf: float) -> float:
    return max(0.0, min(1.0, raw_conf / 100.0))


class TesseractRecognizer(Recognizer):
    """Recognition through the ``tesseract`` CLI, parsed from its TSV output."""

    def __init__(
        self,
        executable: str = "tesseract",
        *,
        psm: int | None = None,
        timeout_s: float | None = 120.0,
    ) -> None:
        self.executable = executable
        self.psm = psm
        self.timeout_s = timeout_s

    def build_command(self, image_file: Path, languages: Sequence[str], use_correction: bool) -> list[str]:
        cmd = [
            self.executable,
            str(image_file),
            "stdout",
            "-l",
            tesseract_language_spec(languages),
        ]
        if self.psm is not None:
            cmd.extend(["--psm", str(self.psm)])
        if not use_correction:
            cmd.extend(["-c", "load_system_dawg=0", "-c", "load_freq_dawg=0"])
        cmd.append("tsv")
        return cmd

    def recognize(
        self,
        image: PixelImage,
        languages: Sequence[str],
        use_correction: bool,
    ) -> Iterator[RecognizedFragment]:
        with tempfile.TemporaryDirectory(prefix="textlayer_pdf_ocr_") as tmp_raw:
            image_file = Path(tmp_raw) / "page.png"
            image.to_pil().save(image_file, format="PNG")
            tsv = self._run(self.build_command(image_file, languages, use_correction))

        yield from parse_tsv(tsv, image_width=image.width, image_height=image.height)

    def _run(self, cmd: list[str]) -> str:
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except FileNotFoundError as exc:
            raise RecognitionEngineError(f"{self.executable} binary not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise RecognitionEngineError(
                f"{self.executable} timed out after {self.timeout_s} s"
            ) from exc
        except OSError as exc:
            raise RecognitionEngineError(f"Cannot start {self.executable}: {exc}") from exc

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[-2000:]
            raise RecognitionEngineError(
                f"{self.executable} failed with exit code {proc.returncode}: {stderr}"
            )
        return proc.stdout


def parse_tsv(tsv: str, *, image_width: int, image_height: int) -> Iterator[RecognizedFragment]:
    """Yield word-level fragments from tesseract TSV in output order.

    Pixel boxes (top-left origin) are converted to normalized boxes with a
    bottom-left origin.
    """
    reader = csv.DictReader(tsv.splitlines(), delimiter="\t", quoting=csv.QUOTE_NONE)
    for row in reader:
        # level 5 = word
        if (row.get("level") or "").strip() != "5":
            continue
        text = (row.get("text") or "").strip()
        if not text:
            continue
        try:
            raw_conf = float(row.get("conf") or "-1")
            left = int(row["left"])
            top = int(row["top"])
            width = int(row["width"])
            height = int(row["height"])
        except (KeyError, TypeError, ValueError):
            continue
        if raw_conf < 0:
            continue

        yield RecognizedFragment(
            text=text,
            confidence=_normalize_confidence(raw_conf),
            x=left / image_width,
            y=(image_height - top - height) / image_height,
            width=width / image_width,
            height=height / image_height,
        )
