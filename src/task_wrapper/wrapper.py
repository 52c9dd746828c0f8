"""TaskWrapper: run one child process and report when it is really done.

Example:
    class Printer(TaskController):
        def append_output(self, text): print(text, end="")
        def append_error(self, text): print(text, end="", file=sys.stderr)
        def process_started(self): ...
        def process_finished(self, exit_code): print("exit", exit_code)

    wrapper = TaskWrapper(Printer(), "/bin/echo", ["hello"])
    await wrapper.start()
    exit_code = await wrapper.wait()
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anyio

from .channels import Channel, ChannelMode, ChannelOption
from .config import Config, get_config
from .errors import ProcessStartError, TaskWrapperError
from .runtime.input_writer import InputWriter
from .runtime.process_monitor import ProcessMonitor, ProcessSpec
from .runtime.stream_reader import StreamReader
from .runtime.termination import ProcessState, TerminationCoordinator, TerminationState

__all__ = ["EncodingConfig", "TaskWrapper"]

logger = logging.getLogger(__name__)


def _normalize_encoding(name: str) -> str:
    try:
        return codecs.lookup(name).name
    except LookupError as e:
        raise ValueError(f"unknown encoding: {name}") from e


@dataclass
class EncodingConfig:
    """Text encodings for stdin and for stdout/stderr."""

    input_encoding: str = "utf-8"
    output_encoding: str = "utf-8"


class TaskWrapper:
    """Launches a child process, feeds it input and collects its output.

    Output chunks and lifecycle events go to the controller. The controller's
    ``process_finished`` is called exactly once, only after the child has
    exited *and* stdout and stderr have both reached EOF.

    Each standard stream is ``ChannelMode.PIPE`` (default; the wrapper
    creates and owns the pipe), ``ChannelMode.DEVNULL``, or an external
    handle (fd or file object) that is passed to the child and never closed
    here. Output streams that are not internal pipes count as drained from
    the start, since there is nothing for the wrapper to read.

    Args:
        controller: Receives output and lifecycle callbacks
        launch_path: Executable to run
        arguments: Arguments after the executable
        stdin: Channel option for the child's stdin
        stdout: Channel option for the child's stdout
        stderr: Channel option for the child's stderr
        env: Environment (None = inherit the caller's)
        cwd: Working directory (None = inherit the caller's)
        config: Overrides the global configuration
    """

    def __init__(
        self,
        controller: Any,
        launch_path: str | Path,
        arguments: Sequence[str] = (),
        *,
        stdin: ChannelOption = ChannelMode.PIPE,
        stdout: ChannelOption = ChannelMode.PIPE,
        stderr: ChannelOption = ChannelMode.PIPE,
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        config: Config | None = None,
    ) -> None:
        if isinstance(arguments, str):
            raise TypeError("arguments must be a sequence of strings, not a string")

        self._controller = controller
        self._config = config if config is not None else get_config()
        self.spec = ProcessSpec(
            launch_path=str(launch_path),
            arguments=tuple(str(arg) for arg in arguments),
            cwd=Path(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
        )
        self._channels = {
            "stdin": Channel.from_option("stdin", stdin),
            "stdout": Channel.from_option("stdout", stdout),
            "stderr": Channel.from_option("stderr", stderr),
        }
        self.encodings = EncodingConfig(
            input_encoding=self._config.input_encoding,
            output_encoding=self._config.output_encoding,
        )

        self._coordinator = TerminationCoordinator(
            on_finished=self._notify_finished,
            on_release=self._release,
        )
        self._monitor = ProcessMonitor(
            self.spec,
            list(self._channels.values()),
            new_session=self._config.new_session,
        )
        self._readers: dict[str, StreamReader] = {}
        self._writer: InputWriter | None = None
        self._start_attempted = False
        self._abandoned = False
        self._finished: asyncio.Event | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def controller(self) -> Any:
        return self._controller

    @property
    def state(self) -> ProcessState:
        return self._coordinator.state

    @property
    def termination(self) -> TerminationState:
        """Snapshot of the termination flags."""
        return self._coordinator.flags

    @property
    def pid(self) -> int | None:
        return self._monitor.pid

    @property
    def exit_code(self) -> int | None:
        """Exit code once the process is finished, else None."""
        if self.state is not ProcessState.FINISHED:
            return None
        return self._coordinator.exit_code

    # =========================================================================
    # Encodings
    # =========================================================================

    def set_input_encoding(self, encoding: str) -> None:
        """Set the encoding for text written to stdin. Only before start().

        Raises:
            ValueError: If the codec is unknown
        """
        name = _normalize_encoding(encoding)
        if self._start_attempted:
            logger.warning(f"set_input_encoding({encoding}) ignored: process already started")
            return
        self.encodings.input_encoding = name

    def set_output_encoding(self, encoding: str) -> None:
        """Set the encoding for stdout/stderr chunks. Only before start().

        Raises:
            ValueError: If the codec is unknown
        """
        name = _normalize_encoding(encoding)
        if self._start_attempted:
            logger.warning(f"set_output_encoding({encoding}) ignored: process already started")
            return
        self.encodings.output_encoding = name

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Spawn the child and begin collecting its output.

        A second call is a no-op, whether or not the first one succeeded;
        use a fresh TaskWrapper to try again.

        Raises:
            ProcessStartError: If a pipe could not be created (``.pipe``
                names the stream) or the executable could not be launched.
                Neither controller lifecycle callback fires in that case.
        """
        if self._start_attempted:
            logger.warning(f"start() ignored: {self.spec.launch_path} already started")
            return
        self._start_attempted = True
        self._finished = asyncio.Event()

        try:
            await self._monitor.start()
        except ProcessStartError as e:
            logger.debug(f"Start failed kind={e.kind.name} code={e.code:#x}: {e.message}")
            raise

        stdin = self._channels["stdin"]
        if stdin.is_pipe:
            self._writer = InputWriter(
                stdin.detach_parent_end(), encoding=self.encodings.input_encoding
            )
            await self._writer.open()

        for name in ("stdout", "stderr"):
            channel = self._channels[name]
            if channel.is_pipe:
                self._readers[name] = StreamReader(
                    name,
                    channel.detach_parent_end(),
                    self._controller,
                    self._coordinator,
                    encoding=self.encodings.output_encoding,
                    chunk_size=self._config.read_chunk_size,
                )
            else:
                # Nothing for us to drain
                self._coordinator.mark_stream_exhausted(name)

        self._coordinator.mark_running()

        try:
            self._controller.process_started()
        except Exception:
            logger.exception("Error in process started callback")

        for reader in self._readers.values():
            reader.start()
        self._monitor.watch_exit(self._coordinator.mark_process_exited)

    def stop(self, force: bool = False) -> None:
        """Ask the child to terminate (SIGTERM, or SIGKILL with force=True).

        In-flight reads continue; ``process_finished`` fires through the
        normal path once the child has exited and its pipes are drained.
        """
        self._monitor.stop(force=force)

    def write(self, text: str) -> None:
        """Send text to the child's stdin, encoded with the input encoding.

        Dropped with a warning if the process is not started, stdin is not
        an internal pipe, or stdin has been closed.
        """
        if self._writer is None:
            if not self._channels["stdin"].is_pipe:
                logger.warning("write() ignored: stdin is not a wrapper pipe")
            else:
                logger.warning("write() ignored: process not started")
            return
        self._writer.write(text)

    def close_input(self) -> None:
        """Close the child's stdin so it sees EOF."""
        if self._writer is not None:
            self._writer.close()

    async def wait(self, timeout: float | None = None) -> int:
        """Wait until the process is finished.

        Returns:
            The exit code passed to ``process_finished``

        Raises:
            RuntimeError: If the process was never started successfully
            TaskWrapperError: If the run was abandoned by aclose()
            TimeoutError: If timeout elapses first (the child keeps running)
        """
        if self._finished is None or self.state is ProcessState.NOT_STARTED:
            raise RuntimeError("process not started")
        with anyio.fail_after(timeout):
            await self._finished.wait()
        if self._abandoned:
            raise TaskWrapperError("run abandoned before the process finished")
        return self._coordinator.exit_code

    async def aclose(self) -> None:
        """Terminate the child if needed and wait for it to finish.

        SIGTERM, then SIGKILL after ``term_timeout``. If the run still has
        not finished after ``kill_timeout`` (typically a descendant holding
        the output pipes open) the run is abandoned: readers are cancelled,
        pipes closed, and ``process_finished`` is not called.
        """
        if self.state is not ProcessState.RUNNING:
            return
        # Cleanup must complete even if the caller is cancelled
        await asyncio.shield(self._shutdown())

    async def _shutdown(self) -> None:
        self.stop()
        if await self._wait_finished(self._config.term_timeout):
            return

        logger.debug(f"Force killing subprocess pid={self.pid}")
        self.stop(force=True)
        if await self._wait_finished(self._config.kill_timeout):
            return

        logger.warning(
            f"Subprocess pid={self.pid} not finished after kill "
            f"(flags={self.termination}); abandoning its pipes"
        )
        self._abandoned = True
        self._release()

    async def _wait_finished(self, timeout: float) -> bool:
        assert self._finished is not None
        with anyio.move_on_after(timeout):
            await self._finished.wait()
        return self._finished.is_set()

    async def __aenter__(self) -> "TaskWrapper":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Termination hooks
    # =========================================================================

    def _notify_finished(self, exit_code: int) -> None:
        logger.debug(f"Process finished pid={self.pid} exit_code={exit_code}")
        self._controller.process_finished(exit_code)

    def _release(self) -> None:
        """Close owned pipes, drop external handles and the process."""
        for reader in self._readers.values():
            reader.close()
        if self._writer is not None:
            self._writer.close()
        self._monitor.release()
        if self._finished is not None:
            self._finished.set()

    def __repr__(self) -> str:
        return (
            f"TaskWrapper(launch_path={self.spec.launch_path}, "
            f"pid={self.pid}, "
            f"state={self.state.value})"
        )
