"""
Path cleanup and chunked file reading for outbound transfers.

clean_path(raw) → str
    Strips leading blanks and trailing line endings from operator input.

chunk_file(fh, size, chunk_size) → Iterator[bytes]
    Reads exactly *size* bytes from an open binary file in pieces of at
    most *chunk_size* bytes. Stops early if the file shrinks underneath.
"""

from __future__ import annotations

from pathlib import Path, PurePath
from typing import BinaryIO, Iterator

from .protocol import CHUNK_SIZE


def clean_path(raw: str) -> str:
    return raw.lstrip(" \t").rstrip("\r\n")


def base_name(path: str) -> str:
    """Final path component, the only part of a name that goes on the wire."""
    return PurePath(path).name or path


def safe_name(file_name: str) -> str | None:
    """
    Reduce a peer-supplied name to a bare file name. Returns None for
    names that would resolve to a directory (``""``, ``.``, ``..``).
    """
    name = PurePath(file_name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return None
    return name


def chunk_count(size: int, chunk_size: int = CHUNK_SIZE) -> int:
    return (size + chunk_size - 1) // chunk_size


def chunk_file(
    fh: BinaryIO,
    size: int,
    chunk_size: int = CHUNK_SIZE,
) -> Iterator[bytes]:
    remaining = size
    while remaining > 0:
        block = fh.read(min(chunk_size, remaining))
        if not block:
            break
        remaining -= len(block)
        yield block


def candidate_names(dest_dir: Path, name: str, attempts: int) -> Iterator[Path]:
    """The literal name first, then name1, name2, ... up to *attempts*."""
    yield dest_dir / name
    for n in range(1, attempts + 1):
        yield dest_dir / f"{name}{n}"
