"""Filesystem blob store: write-once payloads addressed by slug."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional

from ephemera.errors import BlobExistsError, BlobNotFoundError


_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_TMP_DIR = ".incoming"


class BlobWriter:
    """
    A pending blob. Bytes go to a temporary file next to the final location and only
    become visible under a key once commit() links it into place.
    """

    def __init__(self, store: "FileSystemBlobStore", key: str) -> None:
        self._store = store
        self.key = key
        self.written = 0
        incoming = store.root / _TMP_DIR
        incoming.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=incoming, prefix=f"{key}.")
        self._tmp = Path(tmp)
        self._fh: Optional[BinaryIO] = os.fdopen(fd, "wb")
        self.committed = False

    def write(self, data: bytes) -> int:
        if self._fh is None:
            raise ValueError("write to a closed blob")
        self._fh.write(data)
        self.written += len(data)
        return len(data)

    def commit(self, key: Optional[str] = None) -> None:
        """
        Make the blob readable under `key` (defaults to the key it was created with).
        Raises BlobExistsError if the key is taken; the pending data is kept so the
        caller may commit again under another key.
        """
        if key is not None:
            self.key = key
        path = self._store.path_for(self.key)
        if self._fh is not None:
            self._fh.flush()
            os.fsync(self._fh.fileno())
            self._fh.close()
            self._fh = None
        try:
            os.link(self._tmp, path)
        except FileExistsError as e:
            raise BlobExistsError(self.key) from e
        self.committed = True
        self._discard()

    def abort(self) -> None:
        """Drop uncommitted data. Safe to call more than once."""
        if self._fh is not None:
            self._fh.close()
            self._fh = None
        self._discard()

    def _discard(self) -> None:
        try:
            self._tmp.unlink()
        except FileNotFoundError:
            pass


class FileSystemBlobStore:
    """
    Stores each blob as ``<root>/<key>``. Keys are URL-safe slugs; anything else is
    rejected so a key can never resolve outside the root.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        if not _KEY_RE.match(key or ""):
            raise ValueError(f"invalid blob key: {key!r}")
        return self._root / key

    def create(self, key: str) -> BlobWriter:
        self.path_for(key)
        return BlobWriter(self, key)

    def open(self, key: str) -> BinaryIO:
        """Open a committed blob for seekable reading."""
        try:
            path = self.path_for(key)
        except ValueError as e:
            raise BlobNotFoundError(key) from e
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e
