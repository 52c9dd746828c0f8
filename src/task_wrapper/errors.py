"""Exception classes for task-wrapper.

task-wrapper v0.1.0
"""

from __future__ import annotations

from enum import Enum

__all__ = [
    "TaskWrapperError",
    "StartErrorKind",
    "ProcessStartError",
]


class TaskWrapperError(Exception):
    """Base exception for task-wrapper."""
    pass


class StartErrorKind(int, Enum):
    """Why a child process could not be started.

    The pipe kinds keep the numeric codes of the classic task-wrapper
    error domain so callers that log or compare codes keep working. That
    domain reserves 0xF0000 for "no error", so spawn failures take the
    next free code.
    """

    STDIN_PIPE = 0xF0001
    STDOUT_PIPE = 0xF0002
    STDERR_PIPE = 0xF0003
    SPAWN = 0xF0004

    @property
    def pipe(self) -> str | None:
        """Name of the stream whose pipe failed, or None for spawn failures."""
        return _PIPE_NAMES.get(self)


_PIPE_NAMES: dict[StartErrorKind, str] = {
    StartErrorKind.STDIN_PIPE: "stdin",
    StartErrorKind.STDOUT_PIPE: "stdout",
    StartErrorKind.STDERR_PIPE: "stderr",
}


class ProcessStartError(TaskWrapperError):
    """The child process could not be started.

    Raised synchronously from ``TaskWrapper.start()``. When this is raised
    no child is running, ``process_started`` was not called and
    ``process_finished`` will never be called.

    Attributes:
        kind: Which step failed
        message: Human readable detail (usually from the underlying OSError)
    """

    def __init__(self, kind: StartErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message
        if kind.pipe is not None:
            text = f"failed to create pipe for {kind.pipe}"
        else:
            text = "failed to spawn process"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)

    @property
    def code(self) -> int:
        return int(self.kind)

    @property
    def pipe(self) -> str | None:
        return self.kind.pipe
