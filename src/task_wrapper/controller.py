"""Controller callback interface.

A controller is whatever consumes a wrapped process: it receives decoded
output chunks and the lifecycle events. ``TaskWrapper`` calls it directly,
there is no global notification registry.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from typing import TextIO

__all__ = ["TaskController", "TerminalController"]

logger = logging.getLogger(__name__)


class TaskController(ABC):
    """Capability set required of anything driving a ``TaskWrapper``.

    Callbacks run on the event loop that started the wrapper and should not
    block. An exception raised from a callback is logged and otherwise
    ignored; it never stops a stream or the termination state machine.

    Call guarantees:
    - ``append_output`` / ``append_error``: any number of times, in stream order
    - ``process_started``: once, after a successful spawn
    - ``process_finished``: once, after the child exited and both output
      streams were drained; never before ``process_started``
    """

    @abstractmethod
    def append_output(self, text: str) -> None:
        """Decoded stdout chunk."""
        ...

    @abstractmethod
    def append_error(self, text: str) -> None:
        """Decoded stderr chunk."""
        ...

    @abstractmethod
    def process_started(self) -> None:
        ...

    @abstractmethod
    def process_finished(self, exit_code: int) -> None:
        """The child is fully finished.

        Args:
            exit_code: The child's return code. Negative values mean the
                child was terminated by that signal number (``-15`` for
                SIGTERM), following ``subprocess`` conventions.
        """
        ...

    def decode_failed(self, stream: str, data: bytes, error: UnicodeDecodeError) -> None:
        """A chunk could not be decoded; reading continues.

        Override to surface decode problems. The default only logs.
        None of the chunk's text is delivered, including any valid prefix.

        Args:
            stream: "stdout" or "stderr"
            data: The undecodable chunk, preceded by any incomplete
                sequence held over from the previous read
            error: The decoder error
        """
        logger.warning(f"Could not decode {len(data)} bytes from {stream}: {error}")


class TerminalController(TaskController):
    """Controller that mirrors the child's streams onto local text streams.

    Used by the command-line entry point.
    """

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self._out = out if out is not None else sys.stdout
        self._err = err if err is not None else sys.stderr
        self.exit_code: int | None = None

    def append_output(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    def append_error(self, text: str) -> None:
        self._err.write(text)
        self._err.flush()

    def process_started(self) -> None:
        logger.debug("Child process started")

    def process_finished(self, exit_code: int) -> None:
        self.exit_code = exit_code
        logger.debug(f"Child process finished exit_code={exit_code}")
