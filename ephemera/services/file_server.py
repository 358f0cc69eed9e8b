# ephemera/services/file_server.py
"""
Serve anything with the vfs.File capability set over HTTP: conditional requests,
single byte ranges, HEAD. The caller supplies the representation headers
(Content-Type, Etag, caching); this module adds the transfer ones.
"""
from __future__ import annotations
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from fastapi import Request
from starlette.responses import Response, StreamingResponse

from ephemera.services.vfs import File
from ephemera.utils import http_date, parse_http_date

_CHUNK = 1024 * 64  # 64 KiB


class RangeNotSatisfiable(ValueError):
    pass


def _iter_file(f: File, start: int = 0, end_excl: Optional[int] = None) -> Iterator[bytes]:
    # Starlette runs sync iterators in a worker thread; closing the generator
    # (client went away) lands in the finally too.
    try:
        f.seek(start)
        remaining = None if end_excl is None else (end_excl - start)
        while True:
            read_size = _CHUNK if remaining is None else min(_CHUNK, remaining)
            if read_size <= 0:
                break
            data = f.read(read_size)
            if not data:
                break
            if remaining is not None:
                remaining -= len(data)
            yield data
    finally:
        f.close()


def _parse_range(range_header: str, total: int) -> Optional[Tuple[int, int]]:
    """
    (start, end_excl) for a single satisfiable range, None to ignore the header
    (malformed or multiple ranges), RangeNotSatisfiable when it cannot be met or
    ends before it starts.
    """
    if not range_header or not range_header.startswith("bytes="):
        return None
    val = range_header.split("=", 1)[1].strip()
    if "," in val or "-" not in val:
        return None
    start_s, end_s = (s.strip() for s in val.split("-", 1))
    if start_s == "" and end_s == "":
        return None
    try:
        start = int(start_s) if start_s else None
        end = int(end_s) if end_s else None
    except ValueError:
        return None
    if start is None:
        # suffix range: the last `end` bytes
        if end <= 0 or total == 0:
            raise RangeNotSatisfiable(range_header)
        return (max(total - end, 0), total)
    end_excl = total if end is None else end + 1
    if end_excl <= start or start >= total:
        raise RangeNotSatisfiable(range_header)
    return (start, min(end_excl, total))


def _opaque(tag: str) -> str:
    tag = tag.strip()
    return tag[2:] if tag.startswith("W/") else tag


def etag_matches(header: Optional[str], etag: Optional[str]) -> bool:
    """Weak comparison, as If-None-Match requires."""
    if not header or not etag:
        return False
    if header.strip() == "*":
        return True
    want = _opaque(etag)
    return any(_opaque(t) == want for t in header.split(","))


def _not_modified(request: Request, etag: Optional[str], mod_time: Optional[datetime]) -> bool:
    inm = request.headers.get("if-none-match")
    if inm is not None:
        return etag_matches(inm, etag)
    ims = parse_http_date(request.headers.get("if-modified-since"))
    if ims is None or mod_time is None:
        return False
    return mod_time.replace(microsecond=0) <= ims


def _range_applies(request: Request, etag: Optional[str], mod_time: Optional[datetime]) -> bool:
    if_range = request.headers.get("if-range")
    if not if_range:
        return True
    if_range = if_range.strip()
    if if_range.startswith('"') or if_range.startswith("W/"):
        # strong comparison only
        return bool(etag) and not if_range.startswith("W/") and not etag.startswith("W/") and if_range == etag
    when = parse_http_date(if_range)
    return when is not None and mod_time is not None and mod_time.replace(microsecond=0) == when


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    name = name.lower()
    for k, v in headers.items():
        if k.lower() == name:
            return v
    return None


def _without(headers: Dict[str, str], names: List[str]) -> Dict[str, str]:
    drop = {n.lower() for n in names}
    return {k: v for k, v in headers.items() if k.lower() not in drop}


def serve_file(request: Request, f: File, headers: Dict[str, str]) -> Response:
    """
    Build the response for `f`. Takes ownership of `f`: it is closed once the body has
    been streamed, or right away when no body is sent.
    """
    try:
        info = f.stat()
    except Exception:
        f.close()
        raise

    total = info.size
    etag = _header(headers, "etag")
    mod_time = info.mod_time
    resp_headers: Dict[str, str] = {
        **headers,
        "Accept-Ranges": "bytes",
    }
    if mod_time is not None and mod_time.timestamp() > 0:
        resp_headers["Last-Modified"] = http_date(mod_time)

    if _not_modified(request, etag, mod_time):
        f.close()
        return Response(status_code=304, headers=_without(resp_headers, ["content-type", "content-length"]))

    status = 200
    start, end_excl = 0, total
    range_header = request.headers.get("range")
    if range_header and _range_applies(request, etag, mod_time):
        try:
            rng = _parse_range(range_header, total)
        except RangeNotSatisfiable:
            f.close()
            return Response(
                "requested range not satisfiable\n",
                status_code=416,
                media_type="text/plain",
                headers={"Content-Range": f"bytes */{total}"},
            )
        if rng:
            start, end_excl = rng
            status = 206
            resp_headers["Content-Range"] = f"bytes {start}-{end_excl - 1}/{total}"

    resp_headers["Content-Length"] = str(end_excl - start)

    if request.method == "HEAD":
        f.close()
        return Response(status_code=status, headers=resp_headers)

    return StreamingResponse(
        _iter_file(f, start=start, end_excl=end_excl),
        status_code=status,
        headers=resp_headers,
    )
