"""
Content-type sniffing over a bounded prefix of a seekable stream.

Binary formats are recognised by their magic numbers (filetype). Markup and plain
text are classified here; anything else is application/octet-stream, in which case
the filename's extension gets a say.
"""

from __future__ import annotations

import codecs
import mimetypes
from typing import BinaryIO

import filetype

from ephemera.errors import ContentTypeError

SNIFF_LEN = 3072
OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain; charset=utf-8"

# Types some platforms' mime tables don't carry.
for _ctype, _ext in (
    ("text/markdown", ".md"),
    ("image/webp", ".webp"),
    ("image/avif", ".avif"),
    ("video/x-matroska", ".mkv"),
    ("audio/flac", ".flac"),
    ("application/wasm", ".wasm"),
    ("application/x-7z-compressed", ".7z"),
    ("text/x-go", ".go"),
    ("text/x-rust", ".rs"),
):
    mimetypes.add_type(_ctype, _ext)

_HTML_TAGS = (
    b"<!doctype html", b"<html", b"<head", b"<script", b"<iframe", b"<h1", b"<div",
    b"<font", b"<table", b"<a", b"<style", b"<title", b"<b", b"<body", b"<br", b"<p",
    b"<!--",
)
_TAG_END = b" >\t\n\r\x0c"

_BOMS = (
    (codecs.BOM_UTF8, "text/plain; charset=utf-8"),
    (codecs.BOM_UTF16_BE, "text/plain; charset=utf-16be"),
    (codecs.BOM_UTF16_LE, "text/plain; charset=utf-16le"),
)

# Control bytes that never appear in text.
_BINARY = frozenset(list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20)))


def _is_html(head: bytes) -> bool:
    data = head.lstrip(b" \t\n\r\x0c").lower()
    for tag in _HTML_TAGS:
        if data.startswith(tag) and len(data) > len(tag) and data[len(tag)] in _TAG_END:
            return True
    return False


def _is_utf8_text(head: bytes) -> bool:
    if any(b in _BINARY for b in head):
        return False
    try:
        # final=False tolerates a multi-byte sequence cut by the sniff window
        codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
    except UnicodeDecodeError:
        return False
    return True


def sniff(head: bytes) -> str:
    """Classify a prefix of file content. Never raises."""
    if not head:
        return TEXT_PLAIN
    kind = filetype.guess(head)
    if kind is not None:
        return kind.mime
    for bom, ctype in _BOMS:
        if head.startswith(bom):
            return ctype
    if _is_html(head):
        return "text/html; charset=utf-8"
    if head.lstrip(b" \t\n\r").startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    if _is_utf8_text(head):
        return TEXT_PLAIN
    return OCTET_STREAM


def type_by_extension(name: str) -> str:
    ctype, _ = mimetypes.guess_type(name, strict=False)
    return ctype or ""


def read_prefix(stream: BinaryIO, n: int = SNIFF_LEN) -> bytes:
    """Read up to n bytes, looping over short reads until n or EOF."""
    buf = bytearray()
    while len(buf) < n:
        chunk = stream.read(n - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


def detect_content_type(name: str, stream: BinaryIO) -> str:
    """
    Sniff up to the first 3072 bytes of `stream`, falling back to the extension of
    `name` if the content is not recognised. The stream is rewound to the start.
    """
    try:
        head = read_prefix(stream)
    except OSError as e:
        raise ContentTypeError(f"read: {e}") from e
    try:
        stream.seek(0)
    except (OSError, ValueError) as e:
        raise ContentTypeError("seeker can't seek") from e

    ctype = sniff(head)
    if ctype == OCTET_STREAM:
        return type_by_extension(name) or ctype
    return ctype
