"""Canonical hashing helpers for content addressing and signing."""

from __future__ import annotations

import hashlib
import json
from typing import Any, BinaryIO

_CHUNK_SIZE = 1024 * 1024


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_stream(stream: BinaryIO) -> str:
    """Return the SHA-256 hex digest of everything left in *stream*."""
    h = hashlib.sha256()
    for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
        h.update(chunk)
    return h.hexdigest()


class HashingWriter:
    """File-like writer that hashes and counts bytes on their way to *target*.

    Used to compute an image's digest over its canonical export stream
    in the same pass that writes it to disk.
    """

    def __init__(self, target: BinaryIO) -> None:
        self._target = target
        self._hash = hashlib.sha256()
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        self._hash.update(data)
        self._target.write(data)
        self.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        self._target.flush()

    def digest(self) -> bytes:
        return self._hash.digest()

    def hexdigest(self) -> str:
        return self._hash.hexdigest()
