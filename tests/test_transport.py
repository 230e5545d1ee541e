from __future__ import annotations

import errno
import os
import socket
import time

import pytest

from lanchat import transport as transport_mod
from lanchat.transport import (
    BindFailed,
    SocketUnavailable,
    Transport,
    TransportError,
    set_blocking,
    set_non_blocking,
)


def _free_port_pair() -> int:
    """A base port such that base and base+1 are both free on loopback."""
    for _ in range(50):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.bind(("127.0.0.1", 0))
            base = probe.getsockname()[1]
        if base >= 65535:
            continue
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as a, \
                 socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as b:
                a.bind(("127.0.0.1", base))
                b.bind(("127.0.0.1", base + 1))
        except OSError:
            continue
        return base
    pytest.skip("no free UDP port pair on loopback")


def _loopback(base: int) -> Transport:
    return Transport(base_port=base, broadcast_address="127.0.0.1", bind_address="127.0.0.1")


def _receive(tr: Transport, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        got = tr.receive_datagram()
        if got is not None:
            return got
        time.sleep(0.01)
    return None


def test_second_instance_swaps_ports_and_both_hear_each_other() -> None:
    base = _free_port_pair()
    with _loopback(base) as first, _loopback(base) as second:
        assert first.is_primary
        assert (first.receive_port, first.send_port) == (base + 1, base)
        assert not second.is_primary
        assert (second.receive_port, second.send_port) == (base, base + 1)

        assert first.send_datagram(b"from first\x00")
        assert _receive(second) == (b"from first\x00", "127.0.0.1")

        assert second.send_datagram(b"from second\x00")
        assert _receive(first) == (b"from second\x00", "127.0.0.1")


def test_receive_never_blocks() -> None:
    base = _free_port_pair()
    with _loopback(base) as tr:
        started = time.monotonic()
        assert tr.receive_datagram() is None
        assert time.monotonic() - started < 0.5


def test_third_instance_cannot_bind() -> None:
    base = _free_port_pair()
    with _loopback(base), _loopback(base):
        third = _loopback(base)
        with pytest.raises(BindFailed) as info:
            third.open()
    assert info.value.exit_code == 11
    assert isinstance(info.value, TransportError)
    assert isinstance(info.value, OSError)
    assert not third.is_open


def test_socket_failure_is_fatal(monkeypatch) -> None:
    def no_sockets(*a, **kw):
        raise OSError(errno.EMFILE, "Too many open files")

    monkeypatch.setattr(transport_mod.socket, "socket", no_sockets)

    with pytest.raises(SocketUnavailable) as info:
        Transport(base_port=5777).open()
    assert info.value.exit_code == 10


class _FakeSock:
    def __init__(self, script) -> None:
        self.script = list(script)
        self.calls: list[tuple[bytes, tuple]] = []

    def sendto(self, data, dest) -> int:
        self.calls.append((bytes(data), dest))
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def close(self) -> None:
        pass


def _with_fake_sock(script, **kwargs) -> tuple[Transport, _FakeSock]:
    tr = Transport(base_port=6000, broadcast_address="10.0.0.255", **kwargs)
    sock = _FakeSock(script)
    tr._send_sock = sock
    tr.send_port = 6000
    return tr, sock


def test_partial_send_is_paced_and_resumed(monkeypatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(transport_mod.time, "sleep", sleeps.append)
    tr, sock = _with_fake_sock([4, 3, 3], pacing=0.01)

    assert tr.send_datagram(b"0123456789") is True

    assert [c[0] for c in sock.calls] == [b"0123456789", b"456789", b"789"]
    assert all(c[1] == ("10.0.0.255", 6000) for c in sock.calls)
    assert sleeps == [0.01, 0.01]


def test_buffer_exhaustion_is_retried(monkeypatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(transport_mod.time, "sleep", sleeps.append)
    full = OSError(errno.ENOBUFS, "No buffer space available")
    tr, sock = _with_fake_sock([full, full, 5])

    assert tr.send_datagram(b"hello") is True
    assert len(sleeps) == 2


def test_retries_are_bounded(monkeypatch) -> None:
    monkeypatch.setattr(transport_mod.time, "sleep", lambda s: None)
    full = OSError(errno.ENOBUFS, "No buffer space available")
    tr, sock = _with_fake_sock([full] * 10, send_retries=3)

    assert tr.send_datagram(b"hello") is False
    assert len(sock.calls) == 4


def test_hard_send_error_gives_up_quietly() -> None:
    tr, sock = _with_fake_sock([OSError(errno.ENETUNREACH, "Network is unreachable")])

    assert tr.send_datagram(b"hello") is False
    assert len(sock.calls) == 1


def test_closed_transport_does_nothing() -> None:
    tr = Transport()

    assert tr.send_datagram(b"x") is False
    assert tr.receive_datagram() is None
    tr.close()


def test_blocking_toggles_on_a_pipe() -> None:
    r, w = os.pipe()
    try:
        assert set_non_blocking(r) is True
        assert os.get_blocking(r) is False
        assert set_blocking(r) is True
        assert os.get_blocking(r) is True
        assert Transport.set_non_blocking(r) is True
        assert os.get_blocking(r) is False
    finally:
        os.close(r)
        os.close(w)


def test_blocking_toggles_reject_bad_handles() -> None:
    assert set_non_blocking(-1) is False
    assert set_blocking(-1) is False
    r, w = os.pipe()
    os.close(r)
    os.close(w)
    assert set_non_blocking(r) is False
