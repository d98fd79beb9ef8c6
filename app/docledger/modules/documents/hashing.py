from __future__ import annotations

import base64
import hashlib
from pathlib import Path
from typing import BinaryIO

from app.docledger.errors import ContentReadError

CHUNK_SIZE = 1024 * 1024


def _encode(digest: bytes) -> str:
    # SHA-256, standard base64 (44 chars). Matches hashes already anchored on the ledger.
    return base64.b64encode(digest).decode("ascii")


def content_hash(data: bytes) -> str:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ContentReadError(f"Expected bytes, got {type(data).__name__}")
    return _encode(hashlib.sha256(data).digest())


def hash_stream(fileobj: BinaryIO, *, expected_size: int | None = None) -> str:
    """
    Hash a binary stream in chunks.

    If `expected_size` is given, a stream that ends early (or runs long) is
    treated as unreadable rather than hashed partially.
    """
    h = hashlib.sha256()
    read = 0
    try:
        while True:
            chunk = fileobj.read(CHUNK_SIZE)
            if not chunk:
                break
            h.update(chunk)
            read += len(chunk)
    except OSError as e:
        raise ContentReadError(f"Content could not be read: {e}") from e
    if expected_size is not None and read != expected_size:
        raise ContentReadError(f"Read {read} bytes, expected {expected_size}")
    return _encode(h.digest())


def hash_file(path: str | Path) -> str:
    p = Path(path)
    try:
        size = p.stat().st_size
        with p.open("rb") as f:
            return hash_stream(f, expected_size=size)
    except ContentReadError:
        raise
    except OSError as e:
        raise ContentReadError(f"Cannot read {p}: {e}") from e


def sha256_hex(data: bytes) -> str:
    """Hex digest used for blob-store addressing (path-safe, unlike base64)."""
    return hashlib.sha256(data).hexdigest()
