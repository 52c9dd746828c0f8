"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from task_wrapper.config import Config
from task_wrapper.controller import TaskController

# Fake child script
FAKE_CHILD = PROJECT_ROOT / "tests" / "fixtures" / "fake_child.py"


class RecordingController(TaskController):
    """Controller that records every callback in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.decode_errors: list[tuple[str, bytes]] = []

    def append_output(self, text: str) -> None:
        self.events.append(("output", text))

    def append_error(self, text: str) -> None:
        self.events.append(("error", text))

    def process_started(self) -> None:
        self.events.append(("started", None))

    def process_finished(self, exit_code: int) -> None:
        self.events.append(("finished", exit_code))

    def decode_failed(self, stream: str, data: bytes, error: UnicodeDecodeError) -> None:
        self.decode_errors.append((stream, data))

    @property
    def output(self) -> str:
        return "".join(text for kind, text in self.events if kind == "output")

    @property
    def error(self) -> str:
        return "".join(text for kind, text in self.events if kind == "error")

    def count(self, kind: str) -> int:
        return sum(1 for event_kind, _ in self.events if event_kind == kind)

    @property
    def finished_codes(self) -> list[object]:
        return [value for kind, value in self.events if kind == "finished"]


@pytest.fixture
def controller() -> RecordingController:
    """A fresh recording controller."""
    return RecordingController()


@pytest.fixture
def config() -> Config:
    """Configuration with short termination timeouts for tests."""
    return Config(term_timeout=0.5, kill_timeout=0.5)


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


def fake_child_args(*args: str) -> list[str]:
    """Arguments that run the fake child with the current interpreter."""
    return [str(FAKE_CHILD), *args]
