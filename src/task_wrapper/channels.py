"""Standard stream channels and their ownership.

Each of the child's standard streams is bound to one ``Channel``:

- ``ChannelMode.PIPE``: the wrapper creates an OS pipe, owns both ends and
  closes them on cleanup. Output pipes are read and forwarded to the
  controller; the stdin pipe backs ``TaskWrapper.write()``.
- ``ChannelMode.DEVNULL``: the child gets the null device.
- an external handle (an int file descriptor or an object with
  ``fileno()``): passed to the child as is. The caller keeps ownership;
  the wrapper only drops its reference.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Union

__all__ = [
    "ChannelMode",
    "ChannelOption",
    "Channel",
    "StreamName",
]

logger = logging.getLogger(__name__)

StreamName = Literal["stdin", "stdout", "stderr"]


class ChannelMode(str, Enum):
    """How the wrapper provides a standard stream."""

    PIPE = "pipe"
    DEVNULL = "devnull"


# What callers may pass for stdin/stdout/stderr
ChannelOption = Union[ChannelMode, int, Any]


@dataclass
class Channel:
    """Binding of one standard stream.

    Attributes:
        name: stdin, stdout or stderr
        mode: PIPE/DEVNULL, or None for an external handle
        handle: The external handle (only when mode is None)
        parent_fd: Our end of an internal pipe
        child_fd: The child's end of an internal pipe
    """

    name: StreamName
    mode: ChannelMode | None
    handle: Any = None
    parent_fd: int | None = None
    child_fd: int | None = None

    @classmethod
    def from_option(cls, name: StreamName, option: ChannelOption) -> "Channel":
        """Build a channel from a constructor option.

        Raises:
            TypeError: If option is neither a ChannelMode nor a file handle
        """
        if option is None:
            option = ChannelMode.PIPE
        if isinstance(option, ChannelMode):
            return cls(name=name, mode=option)
        if isinstance(option, int) and not isinstance(option, bool):
            if option < 0:
                raise TypeError(f"{name}: invalid file descriptor {option}")
            return cls(name=name, mode=None, handle=option)
        if callable(getattr(option, "fileno", None)):
            return cls(name=name, mode=None, handle=option)
        raise TypeError(
            f"{name}: expected ChannelMode, file descriptor or file object, "
            f"got {type(option).__name__}"
        )

    @property
    def is_pipe(self) -> bool:
        return self.mode is ChannelMode.PIPE

    @property
    def is_external(self) -> bool:
        return self.mode is None

    def open_pipe(self) -> None:
        """Create the OS pipe for this channel.

        For stdin the child reads and we write; for stdout/stderr the child
        writes and we read.

        Raises:
            OSError: If the pipe cannot be created
        """
        read_fd, write_fd = os.pipe()
        if self.name == "stdin":
            self.child_fd, self.parent_fd = read_fd, write_fd
        else:
            self.parent_fd, self.child_fd = read_fd, write_fd
        logger.debug(
            f"Created {self.name} pipe parent_fd={self.parent_fd} child_fd={self.child_fd}"
        )

    def child_target(self) -> Any:
        """Value to hand to the subprocess for this stream."""
        if self.is_pipe:
            return self.child_fd
        if self.mode is ChannelMode.DEVNULL:
            return subprocess.DEVNULL
        return self.handle

    def close_child_end(self) -> None:
        """Close the child's end in this process once it has been inherited."""
        if self.child_fd is not None:
            _close_fd(self.child_fd)
            self.child_fd = None

    def detach_parent_end(self) -> int:
        """Hand our end over to an asyncio transport, which will close it.

        Raises:
            RuntimeError: If there is no open parent end
        """
        if self.parent_fd is None:
            raise RuntimeError(f"{self.name} has no open pipe end")
        fd = self.parent_fd
        self.parent_fd = None
        return fd

    def close(self) -> None:
        """Release the channel.

        Owned pipe ends still held here are closed; external handles are
        only dropped.
        """
        self.close_child_end()
        if self.parent_fd is not None:
            _close_fd(self.parent_fd)
            self.parent_fd = None
        self.handle = None


def _close_fd(fd: int) -> None:
    try:
        os.close(fd)
    except OSError as e:
        logger.debug(f"Error closing fd={fd}: {e}")
