"""
Integrity helpers: BLAKE3 digests.

The wire protocol carries no checksum, so both ends log the digest of the
bytes they sent or wrote; operators compare them by eye.

new_hasher()    → incremental hasher (update/hexdigest)
hash_file(path) → hex digest of a file on disk
"""

from __future__ import annotations

from pathlib import Path

import blake3 as _b3

_READ_SIZE: int = 64 * 1024


def new_hasher() -> _b3.blake3:
    return _b3.blake3()


def hash_bytes(data: bytes) -> str:
    """Return the hex BLAKE3 digest of *data*."""
    return _b3.blake3(data).hexdigest()


def hash_file(path: Path | str) -> str:
    h = _b3.blake3()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_READ_SIZE), b""):
            h.update(block)
    return h.hexdigest()


def short(digest: str) -> str:
    return digest[:16]
