"""
lanchat wire format: transfer header and text frame encode/decode.

Two kinds of datagram share the broadcast channel:

  plain text       [text bytes][NUL]
  transfer header  [tag: 11s][file_name: 101s][file_size: I][kind: i]

The header is followed, optionally in the same datagram, by the first
chunk of file data. Data chunks are raw bytes with no framing; they are
attributed to the sending peer by address.

All header integers are little-endian. HEADER_SIZE = 120.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COMMAND_TAG: bytes = b":xfer:"
TAG_FIELD_SIZE: int = 11
NAME_FIELD_SIZE: int = 101
MAX_NAME_BYTES: int = NAME_FIELD_SIZE - 1        # room for the NUL
HEADER_FMT: str = f"<{TAG_FIELD_SIZE}s{NAME_FIELD_SIZE}sIi"
HEADER_SIZE: int = struct.calcsize(HEADER_FMT)    # = 120
MAX_FILE_SIZE: int = 0xFFFFFFFF

DEFAULT_BASE_PORT: int = 5777
BROADCAST_ADDRESS: str = "255.255.255.255"
CHUNK_SIZE: int = 1024
RECV_BUFFER_SIZE: int = 2 * 1024                 # larger than one header + chunk
PACING_DELAY: float = 0.010                      # partial-send holdoff
MAX_SEND_RETRIES: int = 20
MAX_WRITE_RETRIES: int = 20
WRITE_RETRY_DELAY: float = 1.0
MAX_NAME_ATTEMPTS: int = 20
TRANSFER_TIMEOUT: float = 10.0
NUL: bytes = b"\x00"


class TransferKind(IntEnum):
    SEND        = 1
    GET_REQUEST = 2


class MalformedHeader(ValueError):
    """Raised when a datagram carrying the command tag cannot be decoded."""


@dataclass
class TransferHeader:
    file_name: str
    file_size: int
    kind: TransferKind


# ---------------------------------------------------------------------------
# Transfer header
# ---------------------------------------------------------------------------

def is_transfer_header(data: bytes) -> bool:
    return data[:len(COMMAND_TAG)] == COMMAND_TAG


def encode_header(file_name: str, file_size: int, kind: TransferKind) -> bytes:
    """Build a fixed-size header; names past MAX_NAME_BYTES are truncated."""
    if not 0 <= file_size <= MAX_FILE_SIZE:
        raise ValueError(f"File size out of range: {file_size}")
    # Undecodable path bytes become "?"; the cut never splits a character.
    name = file_name.encode("utf-8", errors="replace")[:MAX_NAME_BYTES]
    name = name.decode("utf-8", errors="ignore").encode("utf-8")
    return struct.pack(HEADER_FMT, COMMAND_TAG, name, file_size, int(kind))


def decode_header(data: bytes) -> TransferHeader:
    if len(data) < HEADER_SIZE:
        raise MalformedHeader(
            f"Header needs {HEADER_SIZE} bytes, got {len(data)}"
        )
    tag, raw_name, file_size, raw_kind = struct.unpack_from(HEADER_FMT, data)
    if not is_transfer_header(tag):
        raise MalformedHeader(f"Bad command tag: {tag!r}")
    try:
        kind = TransferKind(raw_kind)
    except ValueError:
        raise MalformedHeader(f"Unknown transfer kind: {raw_kind}") from None
    name = raw_name.split(NUL, 1)[0].decode("utf-8", errors="replace")
    return TransferHeader(file_name=name, file_size=file_size, kind=kind)


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

def encode_text(text: str | bytes) -> bytes:
    if isinstance(text, str):
        text = text.encode("utf-8")
    return text + NUL


def decode_text(data: bytes) -> bytes:
    """Return the text up to the first NUL terminator."""
    return data.split(NUL, 1)[0]
