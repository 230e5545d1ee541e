"""
Inbound transfer registry: one control block per sending peer.

A peer gets a block when its SEND header arrives and loses it when the
announced byte count has been written, when it starts another transfer
(the old one is aborted), or when it goes quiet for longer than the
timeout. Only one inbound transfer per peer is ever open.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterator

from . import integrity
from .protocol import (
    MAX_NAME_ATTEMPTS,
    MAX_WRITE_RETRIES,
    TRANSFER_TIMEOUT,
    WRITE_RETRY_DELAY,
)
from .transfer import candidate_names, safe_name

log = logging.getLogger("lanchat.registry")


class StartOutcome(Enum):
    STARTED        = "started"
    IGNORED_EMPTY  = "ignored-empty"
    NAME_COLLISION = "name-collision"
    REJECTED_NAME  = "rejected-name"
    OPEN_FAILED    = "open-failed"


@dataclass
class ControlBlock:
    peer_id: str
    path: Path
    expected: int
    remaining: int
    output: BinaryIO | None
    last_activity: float
    receiving: bool = True
    lost: int = 0
    hasher: object = field(default_factory=integrity.new_hasher, repr=False)

    def close(self) -> None:
        self.receiving = False
        if self.output is not None:
            try:
                self.output.close()
            except OSError as e:
                log.warning("Closing %s failed: %s", self.path, e)
            self.output = None


class TransferRegistry:
    """Keyed by peer address; all access from the single polling thread."""

    def __init__(
        self,
        dest_dir: str | Path = ".",
        max_name_attempts: int = MAX_NAME_ATTEMPTS,
        write_retries: int = MAX_WRITE_RETRIES,
        write_retry_delay: float = WRITE_RETRY_DELAY,
        timeout: float = TRANSFER_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.dest_dir = Path(dest_dir)
        self.max_name_attempts = max_name_attempts
        self.write_retries = write_retries
        self.write_retry_delay = write_retry_delay
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._blocks: dict[str, ControlBlock] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find(self, peer_id: str) -> ControlBlock | None:
        return self._blocks.get(peer_id)

    def peers(self) -> list[str]:
        return list(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._blocks

    def __iter__(self) -> Iterator[ControlBlock]:
        return iter(list(self._blocks.values()))

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def start_receiving(self, peer_id: str, file_name: str, file_size: int) -> StartOutcome:
        """Open a new inbound transfer for *peer_id*; latest start wins."""
        if file_size == 0:
            log.debug("Ignoring empty transfer %r from %s", file_name, peer_id)
            return StartOutcome.IGNORED_EMPTY

        old = self._blocks.pop(peer_id, None)
        if old is not None and old.receiving:
            old.close()
            log.warning("Aborted previous file transfer from %s (%s, %d bytes missing)",
                        peer_id, old.path.name, old.remaining)

        name = safe_name(file_name)
        if name is None:
            log.warning("Rejected transfer from %s: unusable file name %r",
                        peer_id, file_name)
            return StartOutcome.REJECTED_NAME

        for path in candidate_names(self.dest_dir, name, self.max_name_attempts):
            try:
                output = open(path, "xb", buffering=0)
            except FileExistsError:
                continue
            except OSError as e:
                log.error("Unable to create %s: %s", path, e)
                return StartOutcome.OPEN_FAILED
            break
        else:
            # Later chunks from this peer are left for the caller as text.
            log.info("Dropped transfer of %s from %s: file name collision",
                     name, peer_id)
            return StartOutcome.NAME_COLLISION

        self._blocks[peer_id] = ControlBlock(
            peer_id=peer_id,
            path=path,
            expected=file_size,
            remaining=file_size,
            output=output,
            last_activity=self._clock(),
        )
        log.info("Inbound file: %s with %d bytes from %s", path.name, file_size, peer_id)
        return StartOutcome.STARTED

    def append_chunk(self, peer_id: str, data: bytes) -> bool:
        """
        Write *data* to the peer's open transfer. Returns False when the
        peer has no open transfer, True otherwise (even if the write gave up).
        """
        block = self._blocks.get(peer_id)
        if block is None or not block.receiving or block.output is None:
            return False

        accepted = data[:block.remaining]
        stored = self._write(block, accepted)
        block.hasher.update(accepted[:stored])
        block.lost += len(accepted) - stored
        block.remaining -= len(accepted)
        block.last_activity = self._clock()

        if block.remaining == 0:
            block.close()
            del self._blocks[peer_id]
            digest = integrity.short(block.hasher.hexdigest())
            if block.lost:
                log.warning("Received %s from %s incomplete: %d of %d bytes not stored, blake3 %s",
                            block.path.name, peer_id, block.lost, block.expected, digest)
            else:
                log.info("Received %s (%d bytes) from %s, blake3 %s",
                         block.path.name, block.expected, peer_id, digest)
        return True

    def sweep_timeouts(self, now: float | None = None, threshold: float | None = None) -> int:
        """Drop transfers idle for at least *threshold* seconds. Returns the count."""
        if now is None:
            now = self._clock()
        if threshold is None:
            threshold = self.timeout
        expired = [
            b for b in self._blocks.values()
            if now - b.last_activity >= threshold
        ]
        for block in expired:
            del self._blocks[block.peer_id]
            if block.output is not None:
                block.close()
                log.warning("Inbound file transfer timed out: %s from %s (%d of %d bytes)",
                            block.path.name, block.peer_id,
                            block.expected - block.remaining, block.expected)
            block.receiving = False
        return len(expired)

    def close_all(self) -> None:
        for block in self._blocks.values():
            block.close()
        self._blocks.clear()

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _write(self, block: ControlBlock, data: bytes) -> int:
        """Returns the number of bytes that reached the file."""
        view = memoryview(data)
        attempts = 0
        while view and attempts < self.write_retries:
            try:
                written = block.output.write(view)
            except OSError as e:
                log.debug("Write to %s failed: %s", block.path, e)
                written = 0
            if written:
                view = view[written:]
                attempts = 0
            else:
                attempts += 1
                self._sleep(self.write_retry_delay)
        if view:
            log.warning("Gave up writing %s: %d bytes not stored",
                        block.path.name, len(view))
        return len(data) - len(view)
