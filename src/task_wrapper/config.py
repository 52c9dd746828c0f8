"""task-wrapper environment configuration.

Environment variables:
    TASKWRAP_INPUT_ENCODING: default encoding for text written to stdin
        - any codec name known to Python (default utf-8)
        - unknown names fall back to the default

    TASKWRAP_OUTPUT_ENCODING: default encoding for stdout/stderr chunks
        - same rules as TASKWRAP_INPUT_ENCODING

    TASKWRAP_READ_CHUNK_SIZE: bytes requested per pipe read
        - default 4096, clamped to 1..1048576

    TASKWRAP_NEW_SESSION: spawn the child in a new session
        - true/1/yes = on (default; Ctrl+C in the caller's terminal does not reach the child)
        - false/0/no = off

    TASKWRAP_TERM_TIMEOUT: seconds aclose() waits after SIGTERM (default 2.0)

    TASKWRAP_KILL_TIMEOUT: seconds aclose() waits after SIGKILL (default 1.0)

    TASKWRAP_LOG_DEBUG: debug logging for the command-line entry point
        - true/1/yes = on (logs go to a temp file at DEBUG level)
        - false/0/no = off (default, logs go to stderr)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_ENCODING = "utf-8"
DEFAULT_READ_CHUNK_SIZE = 4096
MAX_READ_CHUNK_SIZE = 1024 * 1024
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_encoding(value: str | None) -> str:
    """Parse an encoding name, falling back to utf-8 for unknown codecs."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


def _parse_chunk_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_CHUNK_SIZE
    return max(1, min(size, MAX_READ_CHUNK_SIZE))


def _parse_timeout(value: str | None, default: float) -> float:
    """Parse a timeout in seconds, limited to 0.1-60."""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


def _generate_log_file_path() -> str:
    """Build a timestamped debug log path under the system temp dir."""
    log_dir = Path(tempfile.gettempdir()) / "task-wrapper"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"taskwrap_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """task-wrapper configuration.

    Attributes:
        input_encoding: default encoding for stdin text
        output_encoding: default encoding for stdout/stderr chunks
        read_chunk_size: bytes requested per pipe read
        new_session: spawn children in a new session
        term_timeout: seconds to wait after SIGTERM during aclose()
        kill_timeout: seconds to wait after SIGKILL during aclose()
        log_debug: log to a temp file at DEBUG level (CLI only)
        log_file: debug log path (set when log_debug=True)
    """

    input_encoding: str = DEFAULT_ENCODING
    output_encoding: str = DEFAULT_ENCODING
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    new_session: bool = True
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(input_encoding={self.input_encoding}, "
            f"output_encoding={self.output_encoding}, "
            f"read_chunk_size={self.read_chunk_size}, "
            f"new_session={self.new_session}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("TASKWRAP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        input_encoding=_parse_encoding(os.environ.get("TASKWRAP_INPUT_ENCODING")),
        output_encoding=_parse_encoding(os.environ.get("TASKWRAP_OUTPUT_ENCODING")),
        read_chunk_size=_parse_chunk_size(os.environ.get("TASKWRAP_READ_CHUNK_SIZE")),
        new_session=_parse_bool(os.environ.get("TASKWRAP_NEW_SESSION"), default=True),
        term_timeout=_parse_timeout(
            os.environ.get("TASKWRAP_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("TASKWRAP_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Lazily loaded global instance
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the configuration (for tests)."""
    global _config
    _config = load_config()
    return _config
