"""Speech and scene capture.

SpeechCapture yields finalised utterances; SceneCapture returns one still
image on demand. The implementations here read from files and text streams
so the companion can run from a terminal or a recorded session.

Transcript lines may start with a pause marker giving the silence before the
utterance, which drives speaker turn-taking:

    (+0.5s) Hello Rose, it's Jane
    (+5s) Oh Jane, how lovely

Blank lines and lines starting with ``#`` are skipped.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Protocol, TextIO, runtime_checkable

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

_PAUSE_MARKER = re.compile(r"^\(\+\s*(\d+(?:\.\d+)?)\s*s?\)\s*")


@dataclass(frozen=True)
class Utterance:
    """One finalised piece of speech.

    Attributes:
        text: Transcribed text.
        pause_seconds: Silence before the utterance, when known. None means
            the listener should measure it with its own clock.
    """

    text: str
    pause_seconds: float | None = None


def parse_utterance(line: str) -> Utterance | None:
    """Turn one transcript line into an Utterance, or None to skip it."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    pause = None
    match = _PAUSE_MARKER.match(line)
    if match:
        pause = float(match.group(1))
        line = line[match.end() :].strip()
    return Utterance(line, pause) if line else None


# =============================================================================
# Speech
# =============================================================================


@runtime_checkable
class SpeechCapture(Protocol):
    """Source of finalised utterances. Iterating again restarts listening."""

    def __aiter__(self) -> AsyncIterator[Utterance]: ...


class LineSpeechCapture:
    """Reads utterances line by line from a file or a text stream.

    A file source restarts from the beginning on each iteration. A stream
    source (e.g. stdin) continues where the previous iteration stopped.
    """

    def __init__(self, source: Path | TextIO) -> None:
        self._source = source

    async def __aiter__(self) -> AsyncIterator[Utterance]:
        if isinstance(self._source, Path):
            text = await asyncio.to_thread(self._source.read_text, encoding="utf-8")
            for line in text.splitlines():
                utterance = parse_utterance(line)
                if utterance:
                    yield utterance
            return

        while True:
            line = await asyncio.to_thread(self._source.readline)
            if not line:
                return
            utterance = parse_utterance(line)
            if utterance:
                yield utterance


# =============================================================================
# Scene
# =============================================================================


@runtime_checkable
class SceneCapture(Protocol):
    """Produces one still image on demand."""

    mime_type: str

    def capture(self) -> bytes | None: ...


class ImageFileCapture:
    """Loads a still image from disk and re-encodes it as a small JPEG.

    Attributes:
        path: Image file to read on every capture.
        max_dim: Longest side of the encoded image in pixels.
        quality: JPEG quality.
    """

    mime_type = "image/jpeg"

    def __init__(self, path: Path, max_dim: int = 1024, quality: int = 85) -> None:
        self.path = Path(path)
        self.max_dim = max_dim
        self.quality = quality

    def capture(self) -> bytes | None:
        """Return JPEG bytes, or None when the file cannot be read as an image."""
        try:
            with Image.open(self.path) as img:
                # PNG/RGBA and palette images cannot be written as JPEG directly
                if img.mode != "RGB":
                    img = img.convert("RGB")
                img.thumbnail((self.max_dim, self.max_dim))

                buffer = BytesIO()
                img.save(buffer, format="JPEG", quality=self.quality)
                return buffer.getvalue()
        except (OSError, UnidentifiedImageError) as e:
            logger.warning(f"Failed to capture image {self.path.name}: {type(e).__name__}")
            return None
