"""
Interactive console: the polling loop that drives a ChatSession.

Each pass of the loop polls the receive socket once, prints any chat text,
reads whatever the operator has typed so far (standard input is put in
non-blocking mode), dispatches a completed line, sweeps stale inbound
transfers and sleeps briefly.

Commands::

    exit            leave the program
    :send <path>    broadcast a file to every listener
    :get <path>     ask every listener for a file
    :log            toggle the chat transcript
    anything else   broadcast as chat text
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import Callable, TextIO

from .chatlog import ChatLog
from .progress import NullProgress, ProgressTracker
from .session import ChatSession, SendOutcome

log = logging.getLogger("lanchat.console")

MAX_CONSOLE_IN_SIZE: int = 1024
LOOP_DELAY: float = 0.005

COMMAND_EXIT = "exit"
COMMAND_SEND = ":send"
COMMAND_GET = ":get"
COMMAND_LOG = ":log"


class LineReader:
    """Accumulates non-blocking reads from *fd* until a line ending arrives."""

    def __init__(self, fd: int = 0, max_size: int = MAX_CONSOLE_IN_SIZE) -> None:
        self.fd = fd
        self.max_size = max_size
        self.eof = False
        self._buf = bytearray()

    def read_line(self) -> bytes | None:
        """Return a complete line (ending included) or None if still typing."""
        line = self._split()
        if line is not None:
            return line
        room = self.max_size - 1 - len(self._buf)
        if room > 0:
            try:
                data = os.read(self.fd, room)
            except BlockingIOError:
                return None
            if not data:
                self.eof = True
                return self._take(len(self._buf)) if self._buf else None
            self._buf += data
            line = self._split()
            if line is not None:
                return line
        if len(self._buf) >= self.max_size - 1:
            return self._take(len(self._buf))
        return None

    def _split(self) -> bytes | None:
        ends = [i for i in (self._buf.find(b"\n"), self._buf.find(b"\r")) if i >= 0]
        if not ends:
            return None
        end = min(ends) + 1
        if self._buf[end - 1:end + 1] == b"\r\n":
            end += 1
        return self._take(end)

    def _take(self, n: int) -> bytes:
        line = bytes(self._buf[:n])
        del self._buf[:n]
        return line


class Console:

    def __init__(
        self,
        session: ChatSession,
        chatlog: ChatLog | None = None,
        reader: LineReader | None = None,
        out: TextIO | None = None,
        progress_factory: Callable[[], ProgressTracker | NullProgress] = NullProgress,
        loop_delay: float = LOOP_DELAY,
    ) -> None:
        self.session = session
        self.chatlog = chatlog
        self.reader = reader or LineReader()
        self.out = out or sys.stdout
        self.progress_factory = progress_factory
        self.loop_delay = loop_delay

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.session.set_non_blocking(self.reader.fd)
        try:
            while self.step():
                time.sleep(self.loop_delay)
        except KeyboardInterrupt:
            pass
        finally:
            self.session.set_blocking(self.reader.fd)
        return 0

    def step(self) -> bool:
        """One pass of the loop. Returns False once the operator is done."""
        result = self.session.poll_once()
        if result.text:
            self._echo(result.text)
            self._log(result.text)

        keep_running = True
        line = self.reader.read_line()
        if line:
            keep_running = self.handle_line(line)

        self.session.sweep_timeouts()
        return keep_running and not self.reader.eof

    def handle_line(self, line: bytes) -> bool:
        text = line.decode("utf-8", errors="replace")
        word, _, rest = text.partition(" ")
        word = word.rstrip("\r\n")

        if word == COMMAND_EXIT:
            return False
        if word == COMMAND_SEND:
            self._send(rest)
        elif word == COMMAND_GET:
            self.session.get_file(rest)
            self._print(f"\nFile [{rest.strip()}] was requested\n")
        elif word == COMMAND_LOG:
            self._toggle_log()
        else:
            self.session.send_text(line)
            self._log(line)
        return True

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _send(self, path: str) -> None:
        with self.progress_factory() as tracker:
            outcome = self.session.send_file(path, progress=tracker)
        if outcome == SendOutcome.FILE_NOT_FOUND:
            self._print(f"\nFile [{path.strip()}] was not found\n")
        elif outcome != SendOutcome.SENT:
            self._print(f"\nFile [{path.strip()}] was not sent ({outcome.value})\n")

    def _toggle_log(self) -> None:
        if self.chatlog is None:
            self._print(" Logging is not available\n")
            return
        self.chatlog.enabled = not self.chatlog.enabled
        self._print(f" Logging has been turned {'ON' if self.chatlog.enabled else 'OFF'}\n")

    def _echo(self, text: bytes) -> None:
        self._print(text.decode("utf-8", errors="replace"))

    def _log(self, text: bytes) -> None:
        if self.chatlog is not None:
            self.chatlog.write(text)

    def _print(self, s: str) -> None:
        self.out.write(s)
        self.out.flush()
