"""Shared fixtures: an in-memory broadcast bus and a hand-driven clock."""
from __future__ import annotations

from collections import deque
from pathlib import Path

import pytest

from lanchat.registry import TransferRegistry
from lanchat.session import ChatSession


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BusTransport:
    """Stands in for Transport: every datagram reaches every other member."""

    def __init__(self, bus: "Bus", peer_id: str) -> None:
        self.bus = bus
        self.peer_id = peer_id
        self.inbox: deque[tuple[bytes, str]] = deque()
        self.sent: list[bytes] = []
        self.closed = False

    def send_datagram(self, data: bytes) -> bool:
        data = bytes(data)
        self.sent.append(data)
        self.bus.deliver(self, data)
        return True

    def receive_datagram(self, max_size: int = 2048):
        if not self.inbox:
            return None
        data, peer = self.inbox.popleft()
        return data[:max_size], peer

    def set_blocking(self, handle) -> bool:
        return True

    def set_non_blocking(self, handle) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


class Bus:
    def __init__(self) -> None:
        self.members: list[BusTransport] = []

    def join(self, peer_id: str) -> BusTransport:
        member = BusTransport(self, peer_id)
        self.members.append(member)
        return member

    def deliver(self, sender: BusTransport, data: bytes) -> None:
        for member in self.members:
            if member is not sender:
                member.inbox.append((data, sender.peer_id))


def drain(session: ChatSession) -> list[bytes]:
    """Poll until the inbox is empty; return any text handed back."""
    texts = []
    while session.transport.inbox:
        result = session.poll_once()
        if result.text is not None:
            texts.append(result.text)
    return texts


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def bus() -> Bus:
    return Bus()


@pytest.fixture
def make_peer(bus: Bus, tmp_path: Path, clock: ManualClock):
    """Build a ChatSession on the bus with its own download directory."""
    def _make(peer_id: str, **kwargs) -> ChatSession:
        dest = tmp_path / peer_id
        dest.mkdir()
        registry = TransferRegistry(dest_dir=dest, clock=clock, sleep=lambda s: None)
        return ChatSession(bus.join(peer_id), registry, **kwargs)
    return _make
