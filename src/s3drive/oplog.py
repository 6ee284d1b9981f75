"""Append-only operation log for s3drive.

One line per store operation outcome: ``<ISO-8601 UTC timestamp> <message>``.
The sink is created once at startup and handed to the components that need
it. Appends are serialized with a lock so concurrent requests never
interleave partial lines.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class OperationLog(Protocol):
    """Capability for appending a single timestamped line."""

    def append(self, message: str) -> None:
        """Append one line for ``message``."""
        ...


def format_line(message: str, when: datetime | None = None) -> str:
    """Render a log line with a UTC timestamp and a trailing newline."""
    when = when or datetime.now(timezone.utc)
    return f"{when.isoformat()} {message}\n"


class FileOperationLog:
    """Operation log backed by a file opened in append mode.

    Attributes:
        path: Filesystem path of the log file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._fh = None

    def open(self) -> None:
        """Open the log file, creating parent directories as needed."""
        if self._fh is not None:
            return
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "a", encoding="utf-8")
        logger.info("Operation log opened at %s", self.path)

    def append(self, message: str) -> None:
        line = format_line(message)
        with self._lock:
            if self._fh is None:
                self.open()
            self._fh.write(line)
            self._fh.flush()

    def close(self) -> None:
        """Flush and close the underlying file."""
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None
