"""
UDP broadcast transport for lanchat.

- One socket sends to the broadcast address; SO_BROADCAST enabled
- One socket is bound for receiving and kept non-blocking
- Ports come in a pair: base and base+1. The first instance on a host
  binds base+1 and sends to base; a second instance finds base+1 taken,
  binds base and sends to base+1, so two copies on one host hear each other
- Send errors are logged and swallowed; UDP never promised delivery

Usage::

    with Transport(base_port=5777) as tr:
        tr.send_datagram(b"hello\\x00")
        got = tr.receive_datagram()     # None or (data, "10.0.0.7")
"""

from __future__ import annotations

import errno
import logging
import os
import socket
import time

from .protocol import (
    BROADCAST_ADDRESS,
    DEFAULT_BASE_PORT,
    MAX_SEND_RETRIES,
    PACING_DELAY,
    RECV_BUFFER_SIZE,
)

log = logging.getLogger("lanchat.transport")

ERRORLEVEL_NO_SOCKET: int = 10
ERRORLEVEL_NO_BIND: int = 11

_TRANSIENT_ERRNOS = frozenset({errno.ENOBUFS, errno.EAGAIN, errno.EWOULDBLOCK})


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TransportError(OSError):
    """The transport cannot run; the process should exit with *exit_code*."""

    exit_code: int = 1


class SocketUnavailable(TransportError):
    exit_code = ERRORLEVEL_NO_SOCKET


class BindFailed(TransportError):
    exit_code = ERRORLEVEL_NO_BIND


# ---------------------------------------------------------------------------
# Blocking mode helpers
# ---------------------------------------------------------------------------

def _fd(handle) -> int:
    return handle if isinstance(handle, int) else handle.fileno()


def set_non_blocking(handle) -> bool:
    """Put *handle* (fd or object with fileno()) in non-blocking mode."""
    try:
        fd = _fd(handle)
        if fd < 0:
            return False
        os.set_blocking(fd, False)
    except (OSError, ValueError) as e:
        log.debug("set_non_blocking(%r) failed: %s", handle, e)
        return False
    return True


def set_blocking(handle) -> bool:
    """Put *handle* (fd or object with fileno()) back in blocking mode."""
    try:
        fd = _fd(handle)
        if fd < 0:
            return False
        os.set_blocking(fd, True)
    except (OSError, ValueError) as e:
        log.debug("set_blocking(%r) failed: %s", handle, e)
        return False
    return True


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class Transport:
    """Broadcast send socket plus a bound, non-blocking receive socket."""

    def __init__(
        self,
        base_port: int = DEFAULT_BASE_PORT,
        broadcast_address: str = BROADCAST_ADDRESS,
        pacing: float = PACING_DELAY,
        send_retries: int = MAX_SEND_RETRIES,
        bind_address: str = "",
    ) -> None:
        self.base_port = base_port
        self.broadcast_address = broadcast_address
        self.pacing = pacing
        self.send_retries = send_retries
        self.bind_address = bind_address
        self.send_port: int | None = None
        self.receive_port: int | None = None
        self._send_sock: socket.socket | None = None
        self._recv_sock: socket.socket | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def open(self) -> "Transport":
        """Create both sockets. Raises SocketUnavailable or BindFailed."""
        self._send_sock = self._make_send_socket()
        try:
            self._recv_sock = self._make_recv_socket()
        except TransportError:
            self._send_sock.close()
            self._send_sock = None
            raise
        log.info("Sending to %s:%d, receiving on port %d",
                 self.broadcast_address, self.send_port, self.receive_port)
        return self

    def close(self) -> None:
        for sock in (self._send_sock, self._recv_sock):
            if sock:
                try:
                    sock.close()
                except OSError:
                    pass
        self._send_sock = self._recv_sock = None

    @property
    def is_open(self) -> bool:
        return self._send_sock is not None and self._recv_sock is not None

    @property
    def is_primary(self) -> bool:
        """True when this is the first instance on the host."""
        return self.receive_port == self.base_port + 1

    def send_datagram(self, data: bytes) -> bool:
        """
        Broadcast *data*. Partial sends are paced and resumed; transient
        buffer exhaustion is retried up to send_retries times. Hard errors
        are logged and the rest of the payload is dropped.
        Returns True if every byte was handed to the socket.
        """
        if self._send_sock is None or not data:
            return False
        view = memoryview(data)
        dest = (self.broadcast_address, self.send_port)
        retries = 0
        while view:
            try:
                sent = self._send_sock.sendto(view, dest)
            except OSError as e:
                if e.errno in _TRANSIENT_ERRNOS and retries < self.send_retries:
                    retries += 1
                    time.sleep(self.pacing)
                    continue
                log.warning("Unable to send data: %s", e)
                return False
            view = view[sent:]
            if view:
                time.sleep(self.pacing)
        return True

    def receive_datagram(
        self, max_size: int = RECV_BUFFER_SIZE
    ) -> tuple[bytes, str] | None:
        """Non-blocking read. Returns (data, sender_ip) or None."""
        if self._recv_sock is None:
            return None
        try:
            data, addr = self._recv_sock.recvfrom(max_size)
        except BlockingIOError:
            return None
        except OSError as e:
            log.debug("Receive error: %s", e)
            return None
        if not data:
            return None
        return data, addr[0]

    set_blocking = staticmethod(set_blocking)
    set_non_blocking = staticmethod(set_non_blocking)

    # ------------------------------------------------------------------
    # Internal socket helpers
    # ------------------------------------------------------------------

    def _make_send_socket(self) -> socket.socket:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as e:
            raise SocketUnavailable(e.errno, f"Unable to acquire a socket: {e}") from e
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as e:
            log.debug("SO_BROADCAST not set: %s", e)
        return sock

    def _make_recv_socket(self) -> socket.socket:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as e:
            raise SocketUnavailable(e.errno, f"Unable to acquire a socket: {e}") from e

        # No SO_REUSEADDR here: a failed bind is how a second instance
        # on the same host learns that it must swap ports.
        primary = self.base_port + 1
        secondary = self.base_port
        for recv_port, send_port in ((primary, secondary), (secondary, primary)):
            try:
                sock.bind((self.bind_address, recv_port))
            except OSError as e:
                if e.errno == errno.EADDRINUSE and recv_port == primary:
                    log.debug("Port %d in use, swapping roles", primary)
                    continue
                sock.close()
                raise BindFailed(
                    e.errno, f"Unable to bind() the receive socket port {recv_port}: {e}"
                ) from e
            self.receive_port = recv_port
            self.send_port = send_port
            break
        sock.setblocking(False)
        return sock

    def __enter__(self) -> "Transport":
        if not self.is_open:
            self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
