"""Termination detection for a wrapped child process.

A child is only finished when three independent things have happened:

- stdout reached EOF
- stderr reached EOF
- the OS reported the child's exit

Exit notification alone is not enough because buffered output can still be
in flight when the exit is reported; pipe EOF alone is not enough because
the exit status is unknown until the exit is observed. The coordinator
combines the three signals into a single ``finished`` event, fired exactly
once from one serialized evaluation step.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

__all__ = [
    "ProcessState",
    "TerminationState",
    "TerminationCoordinator",
]

logger = logging.getLogger(__name__)


class ProcessState(str, Enum):
    """Lifecycle of a wrapped process.

    NOT_STARTED -> RUNNING -> FINISHED; FINISHED is terminal.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass
class TerminationState:
    """The three completion flags plus the captured exit code.

    Flags only ever go from False to True. ``exit_code`` is meaningful
    once ``process_exited`` is True.
    """

    stdout_exhausted: bool = False
    stderr_exhausted: bool = False
    process_exited: bool = False
    exit_code: int | None = None

    @property
    def complete(self) -> bool:
        return self.stdout_exhausted and self.stderr_exhausted and self.process_exited


class TerminationCoordinator:
    """Turns the three completion flags into one ``finished`` event.

    Each flag has a single writer (a stream reader owns its exhaustion flag,
    the process monitor owns ``process_exited``). Every transition runs
    ``_evaluate`` under one lock, so concurrent completions cannot fire the
    event twice.

    Example:
        coordinator = TerminationCoordinator(on_finished=controller.process_finished)
        coordinator.mark_running()
        coordinator.mark_stream_exhausted("stdout")
        coordinator.mark_process_exited(0)
        coordinator.mark_stream_exhausted("stderr")  # fires on_finished(0)

    Args:
        on_finished: Called once with the exit code when all flags are set
        on_release: Called once after on_finished to release resources
    """

    def __init__(
        self,
        on_finished: Callable[[int], None],
        on_release: Callable[[], None] | None = None,
    ) -> None:
        self._on_finished = on_finished
        self._on_release = on_release
        self._lock = threading.Lock()
        self._state = ProcessState.NOT_STARTED
        self._flags = TerminationState()

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def flags(self) -> TerminationState:
        """Snapshot of the completion flags."""
        with self._lock:
            return TerminationState(
                stdout_exhausted=self._flags.stdout_exhausted,
                stderr_exhausted=self._flags.stderr_exhausted,
                process_exited=self._flags.process_exited,
                exit_code=self._flags.exit_code,
            )

    @property
    def exit_code(self) -> int | None:
        return self._flags.exit_code

    def mark_running(self) -> bool:
        """Enter RUNNING after a successful spawn.

        Returns:
            True if this call finished the process (all flags already set)

        Raises:
            RuntimeError: If the coordinator already left NOT_STARTED
        """
        with self._lock:
            if self._state is not ProcessState.NOT_STARTED:
                raise RuntimeError(f"cannot enter running from {self._state.value}")
            self._state = ProcessState.RUNNING
            logger.debug("Termination state -> running")
        return self._evaluate()

    def mark_stream_exhausted(self, stream: str) -> bool:
        """Record EOF on stdout or stderr.

        Must only be called after the stream's last chunk was delivered.

        Returns:
            True if this call finished the process
        """
        with self._lock:
            if stream == "stdout":
                already = self._flags.stdout_exhausted
                self._flags.stdout_exhausted = True
            elif stream == "stderr":
                already = self._flags.stderr_exhausted
                self._flags.stderr_exhausted = True
            else:
                raise ValueError(f"not an output stream: {stream!r}")
        if already:
            return False
        logger.debug(f"Termination flag set: {stream}_exhausted")
        return self._evaluate()

    def mark_process_exited(self, exit_code: int) -> bool:
        """Record the child's exit.

        Returns:
            True if this call finished the process
        """
        with self._lock:
            if self._flags.process_exited:
                logger.debug(f"Ignoring duplicate exit notification code={exit_code}")
                return False
            self._flags.exit_code = exit_code
            self._flags.process_exited = True
        logger.debug(f"Termination flag set: process_exited code={exit_code}")
        return self._evaluate()

    def _evaluate(self) -> bool:
        """Single mutation point for the RUNNING -> FINISHED transition."""
        with self._lock:
            if self._state is not ProcessState.RUNNING or not self._flags.complete:
                return False
            self._state = ProcessState.FINISHED
            exit_code = self._flags.exit_code

        logger.debug(f"Termination state -> finished exit_code={exit_code}")

        # Callbacks run outside the lock; the state change above already
        # guarantees only one caller gets here.
        try:
            self._on_finished(exit_code)
        except Exception:
            logger.exception("Error in process finished callback")

        if self._on_release is not None:
            try:
                self._on_release()
            except Exception:
                logger.exception("Error releasing process resources")

        return True
