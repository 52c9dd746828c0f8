"""task-wrapper - run a child process and know when it has really finished.

Environment variables:
    TASKWRAP_INPUT_ENCODING / TASKWRAP_OUTPUT_ENCODING: default encodings (utf-8)
    TASKWRAP_READ_CHUNK_SIZE: bytes per pipe read (4096)
    TASKWRAP_NEW_SESSION: spawn children in a new session (true)
    TASKWRAP_LOG_DEBUG: CLI debug log to a temp file (false)

Usage:
    task-wrapper --timeout 30 -- make test
"""

__version__ = "0.1.0"

from .channels import ChannelMode
from .controller import TaskController, TerminalController
from .errors import ProcessStartError, StartErrorKind, TaskWrapperError
from .runtime import ProcessState, TerminationState
from .wrapper import EncodingConfig, TaskWrapper
from .app import main

__all__ = [
    "__version__",
    "ChannelMode",
    "EncodingConfig",
    "ProcessStartError",
    "ProcessState",
    "StartErrorKind",
    "TaskController",
    "TaskWrapper",
    "TaskWrapperError",
    "TerminalController",
    "TerminationState",
    "main",
]
