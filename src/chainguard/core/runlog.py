"""Run log for all operations.

Provides:
- Append-only, line-oriented log file
- Timestamped, leveled lines: ``2024-01-31 12:00:00 [INFO] message``
- Atomic appends with file locking so concurrent runs never interleave
"""

import fcntl
import os
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Generator, Optional


# Default paths
DEFAULT_LOG_PATH = Path("/var/log/chainguard/firewall.log")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogLevel(str, Enum):
    """Levels written to the run log."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    DEBUG = "DEBUG"


def format_line(level: LogLevel, message: str, when: Optional[datetime] = None) -> str:
    """Render one log line (without trailing newline).

    Embedded newlines are flattened so every entry stays on one line.
    """
    stamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
    flat = " ".join(message.splitlines())
    return f"{stamp} [{level.value}] {flat}"


class RunLog:
    """Append-only log file shared by every chainguard invocation.

    Features:
    - Directory created on first write
    - Exclusive flock around each append
    - Never raises: a broken log must not stop firewall work
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        enabled: bool = True,
    ) -> None:
        """Initialize run log.

        Args:
            log_path: Path to log file
            enabled: Whether logging is enabled
        """
        self.log_path = log_path or DEFAULT_LOG_PATH
        self.enabled = enabled
        self._broken = False

    @property
    def usable(self) -> bool:
        """Check if lines are still being written."""
        return self.enabled and not self._broken

    def _ensure_log_directory(self) -> bool:
        """Create log directory and file.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)

            if not self.log_path.exists():
                self.log_path.touch(mode=0o640)

            return True
        except OSError:
            return False

    def write(self, level: LogLevel, message: str) -> None:
        """Append one line to the log.

        Args:
            level: Line level
            message: Plain-text message (Rich markup already stripped)
        """
        if not self.usable:
            return

        if not self._ensure_log_directory():
            self._broken = True
            return

        try:
            with self._atomic_append() as f:
                f.write(format_line(level, message) + "\n")
        except OSError:
            self._broken = True

    @contextmanager
    def _atomic_append(self) -> Generator:
        """Context manager for atomic append with file locking."""
        fd = os.open(
            self.log_path,
            os.O_WRONLY | os.O_APPEND | os.O_CREAT,
            0o640,
        )
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            with os.fdopen(fd, "a") as f:
                yield f
                f.flush()
        except Exception:
            try:
                os.close(fd)
            except OSError:
                pass
            raise
