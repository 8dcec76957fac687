"""Environment configuration.

Environment variables:
    SCRIPT_TERM_TIMEOUT: seconds to wait after the graceful stop signal
        - default 2.0, clamped to 0.1-60

    SCRIPT_KILL_TIMEOUT: seconds to wait after the forced kill
        - default 1.0, clamped to 0.1-60

    SCRIPT_DRAIN_TIMEOUT: seconds output may stay open after the script exited
        - default 1.0, clamped to 0.1-60; leftover background processes
          holding the pipes are killed afterwards

    SCRIPT_READ_SIZE: bytes requested per pipe read
        - default 4096

    SCRIPT_MAX_STDERR: stderr bytes kept for outcome classification
        - default 4 MiB, oldest data is dropped beyond it

    SCRIPT_ENCODING: encoding used to decode process output
        - default utf-8, undecodable bytes are replaced

    SCRIPT_LOG_DEBUG: debug logging
        - true/1/yes = DEBUG level, written to a temp file
        - false/0/no = INFO level on stderr (default)
"""

from __future__ import annotations

import codecs
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "setup_logging"]

LOGGER_NAMESPACE = "script_supervisor"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_DRAIN_TIMEOUT = 1.0
DEFAULT_READ_SIZE = 4096
DEFAULT_MAX_STDERR = 4 * 1024 * 1024  # 4MB
DEFAULT_ENCODING = "utf-8"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


def _parse_size(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        size = int(value)
    except ValueError:
        return default
    return size if size > 0 else default


def _parse_encoding(value: str | None) -> str:
    """Return a known codec name, falling back to utf-8."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


@dataclass
class Config:
    """Supervisor configuration.

    Attributes:
        term_timeout: Seconds to wait after SIGTERM before SIGKILL
        kill_timeout: Seconds to wait after SIGKILL
        drain_timeout: Seconds to keep reading output after the script exited
        read_size: Bytes per pipe read
        max_stderr_bytes: Stderr bytes kept for classification
        encoding: Output decoding
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug is on)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    read_size: int = DEFAULT_READ_SIZE
    max_stderr_bytes: int = DEFAULT_MAX_STDERR
    encoding: str = DEFAULT_ENCODING
    log_debug: bool = False
    log_file: str | None = None


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp dir."""
    log_dir = Path(tempfile.gettempdir()) / "script-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"supervisor_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("SCRIPT_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        term_timeout=_parse_timeout(
            os.environ.get("SCRIPT_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("SCRIPT_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        drain_timeout=_parse_timeout(
            os.environ.get("SCRIPT_DRAIN_TIMEOUT"), DEFAULT_DRAIN_TIMEOUT
        ),
        read_size=_parse_size(os.environ.get("SCRIPT_READ_SIZE"), DEFAULT_READ_SIZE),
        max_stderr_bytes=_parse_size(
            os.environ.get("SCRIPT_MAX_STDERR"), DEFAULT_MAX_STDERR
        ),
        encoding=_parse_encoding(os.environ.get("SCRIPT_ENCODING")),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config


def setup_logging(config: Config | None = None) -> logging.Handler:
    """Attach a handler to the package logger.

    Debug mode writes DEBUG records to config.log_file; otherwise INFO
    records go to stderr. Only the package namespace is touched, the
    root logger is left to the host application.

    Returns:
        The installed handler
    """
    config = config or get_config()
    package_logger = logging.getLogger(LOGGER_NAMESPACE)

    handler: logging.Handler
    if config.log_debug and config.log_file:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
        level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        level = logging.INFO

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return handler
