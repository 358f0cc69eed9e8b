from __future__ import annotations
"""
Upload pipeline.

One multipart body in, one entry out:
  1) Reject on the declared Content-Length, then count bytes as they arrive.
  2) Parse the body incrementally until the part named "file".
  3) Tee the part's bytes into a pending blob and the hasher in a single pass.
  4) Commit the blob under a fresh slug, then insert the entry.
The entry is only written once the blob is committed, so a reader never sees
metadata without complete content behind it. If the insert fails the blob stays
behind as an orphan for an external reaper.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, Optional
from urllib.parse import quote

from fastapi import Request
from python_multipart.exceptions import FormParserError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect

from ephemera.errors import BlobExistsError, PayloadTooLargeError, UploadError
from ephemera.models import Entry
from ephemera.repositories import entries_repo
from ephemera.services.hasher import ContentHasher, MultiWriter
from ephemera.services.slugs import new_slug
from ephemera.storage.blobs import BlobWriter, FileSystemBlobStore
from ephemera.utils import file_ext

logger = logging.getLogger("uvicorn.error")

FORM_FIELD = b"file"
MAX_NAME_BYTES = 255
SLUG_ATTEMPTS = 3


@dataclass
class UploadResult:
    entry: Entry
    location: str


async def _bounded(chunks: AsyncIterator[bytes], limit: int) -> AsyncIterator[bytes]:
    total = 0
    async for chunk in chunks:
        total += len(chunk)
        if total > limit:
            raise PayloadTooLargeError(limit)
        yield chunk


def _part_filename(opts: Dict[bytes, bytes]) -> bytes:
    """Raw filename bytes, final path element only."""
    return opts.get(b"filename", b"").rsplit(b"/", 1)[-1]


class _FilePart:
    """
    Callbacks for python-multipart's MultipartParser. Parts are skipped until the one
    named "file"; its data is streamed into a pending blob and the hasher. Everything
    after it is ignored.
    """

    def __init__(self, blobs: FileSystemBlobStore) -> None:
        self._blobs = blobs
        self._field = bytearray()
        self._value = bytearray()
        self._headers: Dict[bytes, bytes] = {}
        self._active = False
        self._sink: Optional[MultiWriter] = None
        self.found = False
        self.done = False
        self.name = ""
        self.writer: Optional[BlobWriter] = None
        self.hasher = ContentHasher()

    def callbacks(self) -> Dict[str, Callable]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
        }

    def on_part_begin(self) -> None:
        self._headers = {}

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[bytes(self._field).strip().lower()] = bytes(self._value).strip()
        self._field.clear()
        self._value.clear()

    def on_headers_finished(self) -> None:
        if self.found:
            return
        disposition = self._headers.get(b"content-disposition")
        if not disposition:
            return
        _, opts = parse_options_header(disposition)
        if opts.get(b"name") != FORM_FIELD:
            return

        raw = _part_filename(opts)
        if len(raw) > MAX_NAME_BYTES:
            raise UploadError("invalid name")

        self.found = True
        self._active = True
        self.name = raw.decode("utf-8", "replace")
        self.writer = self._blobs.create(new_slug())
        self._sink = MultiWriter(self.writer, self.hasher)

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._active:
            self._sink.write(data[start:end])

    def on_part_end(self) -> None:
        if self._active:
            self._active = False
            self.done = True


def _commit_blob(writer: BlobWriter) -> str:
    """Commit under the writer's slug, drawing a fresh one on collision."""
    key = writer.key
    for _ in range(SLUG_ATTEMPTS):
        try:
            writer.commit(key)
            return key
        except BlobExistsError:
            logger.warning("slug collision on %s, drawing a new one", key)
            key = new_slug()
    raise BlobExistsError(f"no free slug after {SLUG_ATTEMPTS} attempts")


async def _receive(request: Request, part: _FilePart, limit: int) -> None:
    content_type, params = parse_options_header(request.headers.get("content-type", ""))
    boundary = params.get(b"boundary")
    if content_type.lower() != b"multipart/form-data" or not boundary:
        raise UploadError("request Content-Type isn't multipart/form-data")

    parser = MultipartParser(boundary, part.callbacks())
    try:
        async for chunk in _bounded(request.stream(), limit):
            if not chunk:
                continue
            parser.write(chunk)
            if part.done:
                return
    except FormParserError as e:
        raise UploadError(f"malformed multipart body: {e}") from e
    except ClientDisconnect as e:
        raise UploadError("client disconnected") from e

    if not part.found:
        raise UploadError("missing file part")
    raise UploadError("unexpected EOF")


async def receive_upload(
    request: Request,
    *,
    blobs: FileSystemBlobStore,
    limit: int,
    lifetime: Optional[timedelta],
) -> UploadResult:
    declared = request.headers.get("content-length")
    if declared and declared.strip().isdigit() and int(declared) > limit:
        raise PayloadTooLargeError(limit)

    part = _FilePart(blobs)
    try:
        await _receive(request, part, limit)
        # fsync + link
        slug = await asyncio.to_thread(_commit_blob, part.writer)
    finally:
        if part.writer is not None and not part.writer.committed:
            part.writer.abort()

    now = datetime.now(timezone.utc)
    entry = Entry(
        slug=slug,
        name=part.name,
        sum=part.hasher.sum(),
        size=part.writer.written,
        timestamp=now,
        lifetime=now + lifetime if lifetime else None,
    )
    try:
        await entries_repo.create_entry(entry)
    except Exception:
        logger.warning("blob %s orphaned: entry not recorded", slug)
        raise

    # Location must stay ASCII
    location = quote(f"/{slug}{file_ext(entry.name)}", safe="/")
    return UploadResult(entry=entry, location=location)
