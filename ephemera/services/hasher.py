"""Incremental content digest and a tee writer to feed it alongside storage."""

from __future__ import annotations

import base64
import hashlib
from typing import Protocol


class Writer(Protocol):
    def write(self, data: bytes) -> int: ...


def encode_digest(digest: bytes) -> str:
    """Unpadded base64url, the form stored in Entry.sum and sent as the ETag."""
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class ContentHasher:
    """SHA-256 over every byte written to it; never holds more than one chunk."""

    def __init__(self) -> None:
        self._h = hashlib.sha256()

    def write(self, data: bytes) -> int:
        self._h.update(data)
        return len(data)

    def sum(self) -> str:
        return encode_digest(self._h.digest())


class MultiWriter:
    """Forwards each write to every sink, in order. A failing sink stops the write."""

    def __init__(self, *writers: Writer) -> None:
        self._writers = writers

    def write(self, data: bytes) -> int:
        for w in self._writers:
            w.write(data)
        return len(data)
