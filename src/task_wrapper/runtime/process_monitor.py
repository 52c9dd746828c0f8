"""Child process spawning and exit observation.

task-wrapper runtime module v0.1.0

This module provides:
- Pipe creation with per-stream failure attribution (stdin/stdout/stderr)
- Spawning with session isolation (new session / process group)
- Exit observation through the event loop's child watcher (no polling)
- Termination signals

Key design points:
- Pipes are created before spawning; if one fails nothing is spawned
- The child's pipe ends are closed in this process right after the spawn,
  otherwise EOF would never be seen on the output pipes
- stop() only signals; the exit is reported through the normal exit path
"""

from __future__ import annotations

import asyncio
import logging
import signal
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..channels import Channel
from ..errors import ProcessStartError, StartErrorKind

__all__ = [
    "IS_WINDOWS",
    "ProcessMonitor",
    "ProcessSpec",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

_PIPE_ERROR_KINDS: dict[str, StartErrorKind] = {
    "stdin": StartErrorKind.STDIN_PIPE,
    "stdout": StartErrorKind.STDOUT_PIPE,
    "stderr": StartErrorKind.STDERR_PIPE,
}


@dataclass(frozen=True)
class ProcessSpec:
    """What to launch.

    Attributes:
        launch_path: Path (or PATH-resolved name) of the executable
        arguments: Arguments passed after the executable
        cwd: Working directory (None = inherit caller's)
        env: Environment variables (None = inherit caller's)
    """

    launch_path: str
    arguments: Sequence[str] = field(default_factory=tuple)
    cwd: Path | None = None
    env: Mapping[str, str] | None = None

    @property
    def argv(self) -> list[str]:
        return [self.launch_path, *self.arguments]


class ProcessMonitor:
    """Owns the child process from spawn to exit.

    Example:
        monitor = ProcessMonitor(spec, channels)
        process = await monitor.start()          # raises ProcessStartError
        monitor.watch_exit(coordinator.mark_process_exited)
        ...
        monitor.stop()                           # SIGTERM

    Args:
        spec: Launch parameters
        channels: stdin, stdout and stderr channels, in that order
        new_session: Spawn the child in its own session/process group
    """

    def __init__(
        self,
        spec: ProcessSpec,
        channels: Sequence[Channel],
        *,
        new_session: bool = True,
    ) -> None:
        self.spec = spec
        self._channels = list(channels)
        self._new_session = new_session
        self._process: asyncio.subprocess.Process | None = None
        self._exit_task: asyncio.Task[None] | None = None
        self.pid: int | None = None
        self.returncode: int | None = None

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._process

    @property
    def running(self) -> bool:
        return self._process is not None and self.returncode is None

    def create_pipes(self) -> None:
        """Create the internal pipes, in stdin, stdout, stderr order.

        Raises:
            ProcessStartError: Naming the stream whose pipe could not be
                created. Pipes created before the failure are closed.
        """
        for channel in self._channels:
            if not channel.is_pipe:
                continue
            try:
                channel.open_pipe()
            except OSError as e:
                logger.debug(f"Pipe creation failed for {channel.name}: {e}")
                self.close_channels()
                raise ProcessStartError(_PIPE_ERROR_KINDS[channel.name], str(e)) from e

    async def start(self) -> asyncio.subprocess.Process:
        """Create pipes and spawn the child.

        Returns:
            The spawned asyncio process

        Raises:
            ProcessStartError: If a pipe cannot be created or the
                executable cannot be launched
        """
        self.create_pipes()

        stdin, stdout, stderr = (channel.child_target() for channel in self._channels)
        kwargs = self._build_subprocess_kwargs()

        try:
            process = await asyncio.create_subprocess_exec(
                self.spec.launch_path,
                *self.spec.arguments,
                stdin=stdin,
                stdout=stdout,
                stderr=stderr,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            logger.debug(f"Spawn failed for {self.spec.launch_path}: {e}")
            self.close_channels()
            raise ProcessStartError(StartErrorKind.SPAWN, str(e)) from e

        # The child holds its own copies now
        for channel in self._channels:
            channel.close_child_end()

        self._process = process
        self.pid = process.pid
        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={self.spec.launch_path} cwd={self.spec.cwd}"
        )
        return process

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if self.spec.cwd is not None:
            kwargs["cwd"] = self.spec.cwd
        if self.spec.env is not None:
            kwargs["env"] = dict(self.spec.env)

        if self._new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                # POSIX: start_new_session (equivalent to setsid)
                kwargs["start_new_session"] = True

        return kwargs

    def watch_exit(self, on_exit: Callable[[int], Any]) -> None:
        """Report the child's exit code to on_exit, exactly once.

        Raises:
            RuntimeError: If the process has not been started
        """
        if self._process is None:
            raise RuntimeError("process not started")
        if self._exit_task is not None:
            return
        self._exit_task = asyncio.create_task(
            self._wait_exit(self._process, on_exit), name="task-wrapper-exit"
        )

    async def _wait_exit(
        self,
        process: asyncio.subprocess.Process,
        on_exit: Callable[[int], Any],
    ) -> None:
        returncode = await process.wait()
        self.returncode = returncode
        logger.debug(f"Subprocess exited pid={process.pid} returncode={returncode}")
        on_exit(returncode)

    def stop(self, force: bool = False) -> bool:
        """Send a termination signal to the child.

        SIGTERM by default, SIGKILL with force=True (on Windows both end in
        TerminateProcess). Does not wait and does not report completion.

        Returns:
            True if a signal was sent
        """
        process = self._process
        if process is None or process.returncode is not None:
            logger.debug("stop(): no running process")
            return False

        try:
            if force:
                process.kill()
                logger.debug(f"Sent SIGKILL to pid={process.pid}")
            elif IS_WINDOWS:
                process.terminate()
                logger.debug(f"Called terminate() on pid={process.pid}")
            else:
                process.send_signal(signal.SIGTERM)
                logger.debug(f"Sent SIGTERM to pid={process.pid}")
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={process.pid}")
            return False
        return True

    def close_channels(self) -> None:
        for channel in self._channels:
            channel.close()

    def release(self) -> None:
        """Drop the process handle and channels after the run finished."""
        if self._exit_task is not None and not self._exit_task.done():
            if self._exit_task is not asyncio.current_task():
                self._exit_task.cancel()
        self.close_channels()
        self._process = None
