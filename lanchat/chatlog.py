"""
Append-only chat transcript.

Every text line typed or received is written verbatim to a file named
after the time the log was opened, e.g. ``19Oct202614-05-09-chatlog.txt``.
Writing goes through a private logger with a bare formatter, so the file
holds exactly the text and nothing else. The logger is shared, so only
one transcript should be open at a time.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

log = logging.getLogger("lanchat.chatlog")

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def log_file_name(when: datetime) -> str:
    return (f"{when.day:02d}{_MONTHS[when.month - 1]}{when.year:04d}"
            f"{when.hour:02d}-{when.minute:02d}-{when.second:02d}-chatlog.txt")


class ChatLog:
    """Transcript file; ``enabled`` may be toggled at any time."""

    def __init__(self, directory: str | Path = ".", enabled: bool = True) -> None:
        self.directory = Path(directory)
        self.path: Path | None = None
        self.enabled = enabled
        self._handler: logging.FileHandler | None = None
        self._writer = logging.getLogger("lanchat.transcript")
        self._writer.propagate = False
        self._writer.setLevel(logging.INFO)

    def open(self, when: datetime | None = None) -> bool:
        if self._handler is not None:
            return True
        path = self.directory / log_file_name(when or datetime.now())
        try:
            handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        except OSError as e:
            log.error("I am unable to create log file [%s]: %s", path, e)
            return False
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler.terminator = ""
        self._writer.addHandler(handler)
        self._handler = handler
        self.path = path
        return True

    def write(self, text: str | bytes) -> None:
        if self._handler is None or not self.enabled:
            return
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        self._writer.info("%s", text)

    def close(self) -> None:
        if self._handler is None:
            return
        self._writer.removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    def __enter__(self) -> "ChatLog":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
