"""Writer for the child's stdin pipe."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable

__all__ = ["InputWriter"]

logger = logging.getLogger(__name__)


class _StdinProtocol(asyncio.BaseProtocol):
    """Tracks whether the stdin pipe is still usable."""

    def __init__(self, on_lost: Callable[[Exception | None], None]) -> None:
        self._on_lost = on_lost

    def connection_lost(self, exc: Exception | None) -> None:
        self._on_lost(exc)


class InputWriter:
    """Encodes text and writes it to the child's stdin.

    Writes are handed to the asyncio pipe transport, which buffers whatever
    the pipe cannot take immediately. There is no further flow control:
    feed very large input in pieces.

    Writing before ``open()``, after ``close()``, or after the child closed
    its end is not an error. The data is dropped and a warning logged.

    Args:
        fd: Our (write) end of the stdin pipe; the writer takes ownership
        encoding: Codec name for encoding text
    """

    def __init__(self, fd: int, encoding: str = "utf-8") -> None:
        self._fd: int | None = fd
        self.encoding = encoding
        self._transport: asyncio.WriteTransport | None = None
        self._closed = False
        self.bytes_written = 0

    @property
    def closed(self) -> bool:
        return self._closed or (self._transport is not None and self._transport.is_closing())

    async def open(self) -> None:
        """Attach the pipe to the running event loop."""
        if self._fd is None:
            return
        loop = asyncio.get_running_loop()
        fd, self._fd = self._fd, None
        pipe = os.fdopen(fd, "wb", buffering=0)
        try:
            self._transport, _ = await loop.connect_write_pipe(
                lambda: _StdinProtocol(self._connection_lost), pipe
            )
        except OSError as e:
            logger.warning(f"Could not attach stdin pipe fd={fd}: {e}")
            pipe.close()
            self._closed = True
        else:
            logger.debug(f"stdin pipe attached fd={fd}")

    def write(self, text: str) -> bool:
        """Encode and queue text for the child.

        Returns:
            True if the data was queued, False if it was dropped

        Raises:
            UnicodeEncodeError: If text cannot be represented in the input encoding
        """
        if self._transport is None:
            logger.warning(f"Dropped {len(text)} chars for stdin: pipe not open")
            return False
        if self.closed:
            logger.warning(f"Dropped {len(text)} chars for stdin: pipe closed")
            return False

        data = text.encode(self.encoding)
        self._transport.write(data)
        self.bytes_written += len(data)
        return True

    def close(self) -> None:
        """Send EOF to the child. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._transport is not None:
            # Flushes buffered data before closing
            self._transport.close()
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError as e:
                logger.debug(f"Error closing stdin fd={self._fd}: {e}")
            self._fd = None

    def _connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.debug(f"stdin pipe lost: {exc}")
        self._closed = True
