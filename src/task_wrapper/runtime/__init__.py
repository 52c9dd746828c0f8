"""Runtime module for child process lifecycle management.

This module provides pipe-backed process spawning, asynchronous stream
draining and the termination state machine that decides when a child is
really finished.
"""

from __future__ import annotations

from .input_writer import InputWriter
from .process_monitor import IS_WINDOWS, ProcessMonitor, ProcessSpec
from .stream_reader import StreamReader
from .termination import ProcessState, TerminationCoordinator, TerminationState

__all__ = [
    "IS_WINDOWS",
    "InputWriter",
    "ProcessMonitor",
    "ProcessSpec",
    "ProcessState",
    "StreamReader",
    "TerminationCoordinator",
    "TerminationState",
]
