"""
lanchat session: text broadcast plus the file-transfer engine.

Outbound
--------
    send_text   one NUL-terminated datagram.
    send_file   SEND header, then the file in chunk_size datagrams.
                Nobody acknowledges anything.
    get_file    GET_REQUEST header; whoever holds the file answers
                with send_file(..., is_reply=True).

Inbound
-------
    poll_once reads at most one datagram and classifies it:
    transfer header → start a receive or answer a get;
    data from a peer with an open transfer → appended to its file;
    anything else → handed back to the caller as text.

Nothing here raises for network or disk trouble. Conditions the protocol
tolerates come back as outcome values and log records.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

from . import integrity
from .progress import NullProgress, ProgressTracker
from .protocol import (
    CHUNK_SIZE,
    HEADER_SIZE,
    MAX_FILE_SIZE,
    MalformedHeader,
    TransferKind,
    decode_header,
    decode_text,
    encode_header,
    encode_text,
    is_transfer_header,
)
from .registry import StartOutcome, TransferRegistry
from .transfer import base_name, chunk_file, clean_path
from .transport import Transport

log = logging.getLogger("lanchat.session")


class SendOutcome(Enum):
    SENT           = "sent"
    FILE_NOT_FOUND = "file-not-found"
    TOO_LARGE      = "too-large"
    READ_FAILED    = "read-failed"


@dataclass(frozen=True)
class PollResult:
    text: bytes | None = None
    peer_id: str | None = None

    @property
    def consumed(self) -> bool:
        return self.text is None


_NOTHING = PollResult()


class ChatSession:
    """
    Everything the console needs: send text, push or request files, poll
    the receive socket, sweep stale transfers. Single-threaded.
    """

    def __init__(
        self,
        transport: Transport,
        registry: TransferRegistry | None = None,
        chunk_size: int = CHUNK_SIZE,
        serve_gets: bool = True,
        progress: ProgressTracker | NullProgress | None = None,
    ) -> None:
        self.transport = transport
        self.registry = registry if registry is not None else TransferRegistry()
        self.chunk_size = chunk_size
        self.serve_gets = serve_gets
        self._progress = progress or NullProgress()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send_text(self, text: str | bytes) -> bool:
        return self.transport.send_datagram(encode_text(text))

    def send_file(
        self,
        path: str,
        is_reply: bool = False,
        progress: ProgressTracker | NullProgress | None = None,
    ) -> SendOutcome:
        """Broadcast the file at *path* to every listener."""
        path = clean_path(path)
        progress = progress or self._progress

        try:
            st = os.stat(path)
        except (OSError, ValueError):
            st = None
        if st is None or not os.path.isfile(path):
            if is_reply:
                log.debug("Get request for %r: not here", path)
            else:
                log.warning("File [%s] was not found", path)
            return SendOutcome.FILE_NOT_FOUND

        size = st.st_size
        if size > MAX_FILE_SIZE:
            log.warning("File [%s] is too large to send (%d bytes)", path, size)
            return SendOutcome.TOO_LARGE

        name = base_name(path)
        hasher = integrity.new_hasher()
        try:
            with open(path, "rb") as fh:
                self.transport.send_datagram(encode_header(name, size, TransferKind.SEND))
                log.info("Sending %s of %d bytes%s", name, size,
                         " (reply to get request)" if is_reply else "")
                with progress.file(name, size) as fp:
                    for block in chunk_file(fh, size, self.chunk_size):
                        self.transport.send_datagram(block)
                        hasher.update(block)
                        fp.advance(len(block))
        except OSError as e:
            log.warning("Reading %s failed: %s", path, e)
            return SendOutcome.READ_FAILED

        log.debug("Sent %s, blake3 %s", name, integrity.short(hasher.hexdigest()))
        return SendOutcome.SENT

    def get_file(self, path: str) -> None:
        """Ask every listener holding *path* to send it to us."""
        path = clean_path(path)
        self.transport.send_datagram(encode_header(path, 0, TransferKind.GET_REQUEST))
        log.info("File [%s] was requested", path)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def poll_once(self) -> PollResult:
        got = self.transport.receive_datagram()
        if got is None:
            return _NOTHING
        data, peer_id = got
        return self.on_datagram(data, peer_id)

    def on_datagram(self, data: bytes, peer_id: str) -> PollResult:
        if is_transfer_header(data):
            self._on_header(data, peer_id)
            return _NOTHING
        if self.registry.append_chunk(peer_id, data):
            return _NOTHING
        return PollResult(text=decode_text(data), peer_id=peer_id)

    def sweep_timeouts(self) -> int:
        return self.registry.sweep_timeouts()

    def set_blocking(self, handle) -> bool:
        return self.transport.set_blocking(handle)

    def set_non_blocking(self, handle) -> bool:
        return self.transport.set_non_blocking(handle)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.registry.close_all()
        self.transport.close()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _on_header(self, data: bytes, peer_id: str) -> None:
        try:
            header = decode_header(data)
        except MalformedHeader as e:
            log.warning("Bad transfer header from %s: %s", peer_id, e)
            return

        if header.kind == TransferKind.SEND:
            outcome = self.registry.start_receiving(peer_id, header.file_name, header.file_size)
            trailing = data[HEADER_SIZE:]
            if outcome == StartOutcome.STARTED and trailing:
                self.registry.append_chunk(peer_id, trailing)
        elif header.kind == TransferKind.GET_REQUEST:
            if not self.serve_gets:
                log.info("Ignoring get request for %r from %s", header.file_name, peer_id)
                return
            log.debug("Get request for %r from %s", header.file_name, peer_id)
            self.send_file(header.file_name, is_reply=True)
