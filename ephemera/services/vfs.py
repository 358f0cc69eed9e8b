# ephemera/services/vfs.py
from __future__ import annotations
import os
import stat as stat_mod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, List, Protocol

from ephemera.models import Entry


@dataclass(frozen=True)
class FileInfo:
    name: str
    size: int
    mode: int
    mod_time: datetime
    is_dir: bool = False


class File(Protocol):
    """What the file server needs from anything it serves."""

    def read(self, n: int = -1) -> bytes: ...
    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int: ...
    def close(self) -> None: ...
    def readdir(self) -> List[FileInfo]: ...
    def stat(self) -> FileInfo: ...


class EntryFile:
    """
    An uploaded entry presented as a file: stat facts come from the metadata record,
    data from the open blob stream. Lives for one response.
    """

    def __init__(self, entry: Entry, stream: BinaryIO) -> None:
        self.entry = entry
        self._stream = stream

    def read(self, n: int = -1) -> bytes:
        return self._stream.read(n)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._stream.seek(offset, whence)

    def close(self) -> None:
        self._stream.close()

    def readdir(self) -> List[FileInfo]:
        return []

    def stat(self) -> FileInfo:
        return FileInfo(
            name=self.entry.name,
            size=self.entry.size,
            mode=0o600,
            mod_time=self.entry.timestamp,
        )


class LocalFile:
    """A regular file from the public root."""

    def __init__(self, fh: BinaryIO, name: str) -> None:
        self._fh = fh
        self._name = name

    @classmethod
    def open(cls, path: str | os.PathLike) -> "LocalFile":
        return cls(open(path, "rb"), os.path.basename(os.fspath(path)))

    def read(self, n: int = -1) -> bytes:
        return self._fh.read(n)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._fh.seek(offset, whence)

    def close(self) -> None:
        self._fh.close()

    def readdir(self) -> List[FileInfo]:
        return []

    def stat(self) -> FileInfo:
        st = os.fstat(self._fh.fileno())
        return FileInfo(
            name=self._name,
            size=st.st_size,
            mode=stat_mod.S_IMODE(st.st_mode),
            mod_time=datetime.fromtimestamp(st.st_mtime, timezone.utc),
            is_dir=stat_mod.S_ISDIR(st.st_mode),
        )
