"""
Progress rendering for outbound sends using rich progress bars.

Usage::

    with ProgressTracker() as tracker:
        session.send_file("video.mp4", progress=tracker)

ChatSession calls ``tracker.file(name, size)`` and advances the bar by the
length of every chunk it broadcasts. The bar is transient: it disappears
once the file is out, leaving the chat scrollback clean.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)

from .protocol import CHUNK_SIZE
from .transfer import chunk_count


class ChunkProgress:
    """One bar per file; counts datagrams as well as bytes."""

    def __init__(self, progress: Progress, task_id: TaskID, size: int) -> None:
        self._progress = progress
        self._task_id = task_id
        self.size = size
        self.sent = 0
        self.chunks = 0

    def advance(self, n: int) -> None:
        self.sent += n
        self.chunks += 1
        self._progress.update(self._task_id, advance=n, chunk=self.chunks)

    def finish(self) -> None:
        self._progress.update(self._task_id, completed=self.size)


class ProgressTracker:
    """Live display for broadcast sends, drawn on stderr."""

    def __init__(
        self,
        label: str = "↑ SEND",
        chunk_size: int = CHUNK_SIZE,
        console: Console | None = None,
    ) -> None:
        self.label = label
        self.chunk_size = chunk_size
        self._progress = Progress(
            TextColumn(f"[bold cyan]{label}[/] [bold]{{task.fields[filename]}}[/]"),
            BarColumn(bar_width=None),
            DownloadColumn(),
            TextColumn("[dim]chunk {task.fields[chunk]}/{task.fields[chunks]}"),
            TransferSpeedColumn(),
            console=console or Console(stderr=True),
            transient=True,
        )

    def __enter__(self) -> "ProgressTracker":
        self._progress.start()
        return self

    def __exit__(self, *exc) -> None:
        self._progress.stop()

    @contextmanager
    def file(self, filename: str, size: int) -> Generator[ChunkProgress, None, None]:
        task_id = self._progress.add_task(
            filename,
            total=max(size, 1),
            filename=filename,
            chunk=0,
            chunks=chunk_count(size, self.chunk_size),
        )
        bar = ChunkProgress(self._progress, task_id, size)
        try:
            yield bar
        finally:
            bar.finish()
            self._progress.remove_task(task_id)


class _Silent:
    def advance(self, n: int) -> None: ...


class NullProgress:
    """Used with --quiet: no output at all."""

    def __enter__(self) -> "NullProgress":
        return self

    def __exit__(self, *exc) -> None: ...

    @contextmanager
    def file(self, filename: str, size: int) -> Generator[_Silent, None, None]:
        yield _Silent()
