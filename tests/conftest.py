"""Central Pytest Fixtures for Mnemosync.

Fixtures included:
- Dates: reference_date (a Sunday), reference_now
- Store: memory_store, json_store
- AI mocks: FakeSource, make_source, scene and conversation responses
- Time: FakeClock for the speaker state machine
- Environment: isolated configuration, no API key, no keyring
"""

from __future__ import annotations

import os
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image

from mnemosync.config import reset_config
from mnemosync.core.store import InMemoryStore, JsonFileStore

# =============================================================================
# Helper Classes
# =============================================================================


class FakeSource:
    """InformationSource double whose ``invoke`` is an AsyncMock.

    Args:
        name: Tier name.
        response: Text to return, or an exception to raise.
        side_effect: Sequence of texts/exceptions, one per call.
    """

    def __init__(self, name: str = "primary", response: str | Exception = "", side_effect=None) -> None:
        self.name = name
        if side_effect is not None:
            self.invoke = AsyncMock(side_effect=side_effect)
        elif isinstance(response, Exception):
            self.invoke = AsyncMock(side_effect=response)
        else:
            self.invoke = AsyncMock(return_value=response)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def create_test_image(path: Path, width: int = 100, height: int = 100, mode: str = "RGB") -> Path:
    """Write a solid-colour image and return its path."""
    color = (200, 30, 30, 255) if mode == "RGBA" else "red"
    Image.new(mode, (width, height), color=color).save(path)
    return path


# =============================================================================
# Environment Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Strip API keys and MNEMOSYNC_* settings, and keep the real keyring out of tests."""
    for name in list(os.environ):
        if name.startswith("MNEMOSYNC_") or name in ("GEMINI_API_KEY", "GOOGLE_API_KEY"):
            monkeypatch.delenv(name, raising=False)

    reset_config()
    with patch("keyring.get_password", return_value=None), patch("keyring.set_password"):
        yield
    reset_config()


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def reference_date() -> date:
    """Sunday 15 February 2026."""
    return date(2026, 2, 15)


@pytest.fixture
def reference_now() -> datetime:
    return datetime(2026, 2, 15, 10, 30).astimezone()


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def json_store(tmp_path: Path) -> JsonFileStore:
    return JsonFileStore(tmp_path / "data")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def image_file(tmp_path: Path) -> Path:
    return create_test_image(tmp_path / "visitor.png", 64, 48)


@pytest.fixture
def make_image():
    """Factory for test images of a given size and mode."""
    return create_test_image


# =============================================================================
# Response Fixtures
# =============================================================================


@pytest.fixture
def conversation_response() -> str:
    """Model answer for a visit from Jane."""
    return (
        "VISITOR: Jane, Daughter\n"
        "SUMMARY: Jane, your daughter, came to see you. She reminded you about the dentist.\n"
        "DATES: Dentist on Feb 16\n"
        "ACTIONS: None\n"
        "TRANSCRIPT:\n"
        'Jane: "Hi Mum"\n'
    )


@pytest.fixture
def scene_response() -> str:
    """Model answer identifying Jane in a camera image."""
    return (
        "VISITOR: Jane, Daughter\n"
        "SUMMARY: This is Jane, your daughter. Last time you talked about her garden.\n"
        "NUDGES: Drink a glass of water, Take your afternoon walk\n"
    )


@pytest.fixture
def make_source():
    """Factory for FakeSource instances."""
    return FakeSource
