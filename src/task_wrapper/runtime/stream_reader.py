"""Asynchronous reader for one of the child's output pipes."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .termination import TerminationCoordinator

__all__ = ["StreamReader"]

logger = logging.getLogger(__name__)


class StreamReader:
    """Drains one output pipe and forwards decoded text to the controller.

    Reading happens in its own asyncio task. Each chunk is decoded with an
    incremental decoder, so a multibyte character split across two reads is
    delivered intact. At EOF, or when the pipe breaks, the stream's
    exhaustion flag is set on the coordinator; that is always the last
    thing the reader does, so every chunk reaches the controller before the
    process can be reported finished.

    Args:
        stream: "stdout" or "stderr"
        fd: Our (read) end of the pipe; the reader takes ownership
        controller: Receives append_output/append_error and decode_failed
        coordinator: Termination coordinator to notify at EOF
        encoding: Codec name for decoding
        chunk_size: Maximum bytes per read
    """

    def __init__(
        self,
        stream: str,
        fd: int,
        controller: Any,
        coordinator: TerminationCoordinator,
        *,
        encoding: str = "utf-8",
        chunk_size: int = 4096,
    ) -> None:
        if stream == "stdout":
            self._sink: Callable[[str], None] = controller.append_output
        elif stream == "stderr":
            self._sink = controller.append_error
        else:
            raise ValueError(f"not an output stream: {stream!r}")

        self.stream = stream
        self._fd: int | None = fd
        self._controller = controller
        self._coordinator = coordinator
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
        self._chunk_size = chunk_size
        self._transport: asyncio.ReadTransport | None = None
        self._task: asyncio.Task[None] | None = None
        self.bytes_read = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the read task. Calling it again is a no-op."""
        if self._task is not None:
            logger.debug(f"{self.stream} reader already started")
            return
        self._task = asyncio.create_task(self._run(), name=f"task-wrapper-{self.stream}")

    async def _run(self) -> None:
        reader = await self._connect()
        if reader is not None:
            while True:
                try:
                    chunk = await reader.read(self._chunk_size)
                except OSError as e:
                    # Abrupt closure counts as exhaustion
                    logger.debug(f"{self.stream} pipe error, treating as EOF: {e}")
                    break
                if not chunk:
                    break
                self.bytes_read += len(chunk)
                self._deliver(self._decode(chunk))

            self._deliver(self._decode(b"", final=True))

        logger.debug(f"{self.stream} exhausted after {self.bytes_read} bytes")
        self._coordinator.mark_stream_exhausted(self.stream)

    async def _connect(self) -> asyncio.StreamReader | None:
        """Attach our pipe end to the event loop."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        fd, self._fd = self._fd, None
        pipe = os.fdopen(fd, "rb", buffering=0)
        try:
            self._transport, _ = await loop.connect_read_pipe(lambda: protocol, pipe)
        except OSError as e:
            logger.warning(f"Could not attach {self.stream} pipe fd={fd}: {e}")
            pipe.close()
            return None
        return reader

    def _decode(self, data: bytes, final: bool = False) -> str:
        try:
            return self._decoder.decode(data, final)
        except UnicodeDecodeError as e:
            # Bytes held over from the previous read belong to the bad chunk
            pending = self._decoder.getstate()[0]
            self._decoder.reset()
            self._report_decode_error(pending + data, e)
            return ""

    def _report_decode_error(self, data: bytes, error: UnicodeDecodeError) -> None:
        hook = getattr(self._controller, "decode_failed", None)
        if hook is None:
            logger.warning(f"Could not decode {len(data)} bytes from {self.stream}: {error}")
            return
        try:
            hook(self.stream, data, error)
        except Exception:
            logger.exception(f"Error in decode_failed callback ({self.stream})")

    def _deliver(self, text: str) -> None:
        if not text:
            return
        try:
            self._sink(text)
        except Exception:
            logger.exception(f"Error in {self.stream} callback")

    def close(self) -> None:
        """Stop reading and release the pipe end."""
        if self._task is not None and not self._task.done():
            if self._task is not asyncio.current_task():
                self._task.cancel()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError as e:
                logger.debug(f"Error closing {self.stream} fd={self._fd}: {e}")
            self._fd = None
