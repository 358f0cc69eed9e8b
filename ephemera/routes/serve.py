# ephemera/routes/serve.py
from __future__ import annotations
import asyncio
import logging
import posixpath
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ephemera.config import Settings
from ephemera.deps import get_blob_store, get_config, get_metrics
from ephemera.errors import EntryNotFoundError
from ephemera.metrics import Metrics
from ephemera.repositories import entries_repo
from ephemera.services.content_type import detect_content_type, type_by_extension
from ephemera.services.file_server import serve_file
from ephemera.services.vfs import EntryFile, LocalFile
from ephemera.storage.blobs import FileSystemBlobStore
from ephemera.utils import build_content_disposition, http_date

logger = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["serve"])

CACHE_FOREVER = "max-age=31536000"  # ~ 1 year
_HTML = "text/html"


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Not Found")


def _static_lookup(root: Path, url_path: str) -> Optional[Tuple[Path, bool]]:
    """
    Resolve a URL path under the public root. Returns (file, cacheable), or None when
    nothing exists there. Directories serve their index.html (not cached).
    """
    clean = posixpath.normpath("/" + url_path).lstrip("/")
    try:
        base = root.resolve()
        candidate = (base / clean).resolve()
        candidate.relative_to(base)
        if candidate.is_dir():
            index = candidate / "index.html"
            if not index.is_file():
                raise _not_found()
            return index, False
        if candidate.is_file():
            return candidate, True
    except (ValueError, OSError):
        # outside the root, or a name the OS rejects (NUL bytes)
        return None
    return None


def _serve_static(request: Request, path: Path, cacheable: bool) -> Response:
    f = LocalFile.open(path)
    try:
        info = f.stat()
        ctype = type_by_extension(path.name) or detect_content_type(path.name, f)
    except Exception:
        f.close()
        raise
    headers = {"Content-Type": ctype}
    if cacheable:
        headers["Cache-Control"] = CACHE_FOREVER
        # nginx style weak Etag
        headers["Etag"] = f'W/"{int(info.mod_time.timestamp()):x}-{info.size:x}"'
    return serve_file(request, f, headers)


def allowed_methods(url_path: str) -> str:
    """Value for Allow and Access-Control-Allow-Methods; only / takes uploads."""
    if url_path == "/":
        return "GET, HEAD, OPTIONS, POST"
    return "GET, HEAD, OPTIONS"


def _safe_content_type(ctype: str) -> str:
    """Stored HTML must never render as HTML; keep any parameters (charset)."""
    if ctype.startswith(_HTML):
        return "text/plain" + ctype[len(_HTML):]
    return ctype


@router.api_route("/{path:path}", methods=["GET", "HEAD"], include_in_schema=False)
async def serve(
    request: Request,
    path: str,
    config: Settings = Depends(get_config),
    blobs: FileSystemBlobStore = Depends(get_blob_store),
    metrics: Metrics = Depends(get_metrics),
):
    static = _static_lookup(config.public_root, path)
    if static is not None:
        return await asyncio.to_thread(_serve_static, request, *static)

    directory, name = posixpath.split("/" + path)
    if directory != "/":
        raise _not_found()

    # extensions are cosmetic; the slug ends at the first "."
    slug = name.split(".", 1)[0]
    if not slug:
        raise _not_found()

    try:
        entry = await entries_repo.lookup_entry(slug)
    except EntryNotFoundError:
        metrics.lookups.labels("miss").inc()
        raise _not_found()
    except Exception as e:
        logger.exception("lookup %s", slug)
        raise HTTPException(status_code=500, detail=str(e) or type(e).__name__)

    now = datetime.now(timezone.utc)
    cache = CACHE_FOREVER
    if entry.lifetime is not None:
        if entry.expired(now):
            metrics.lookups.labels("expired").inc()
            raise _not_found()
        cache = f"public, must-revalidate, max-age={entry.remaining(now)}"
    metrics.lookups.labels("hit").inc()

    try:
        stream = await asyncio.to_thread(blobs.open, entry.slug)
    except Exception as e:
        logger.exception("open blob %s", entry.slug)
        raise HTTPException(status_code=500, detail=str(e) or type(e).__name__)

    try:
        ctype = await asyncio.to_thread(detect_content_type, entry.name, stream)
    except Exception as e:
        stream.close()
        logger.exception("detect content type of %s", entry.slug)
        raise HTTPException(status_code=500, detail=f"detect content type: {e}")

    headers = {
        "Cache-Control": cache,
        "Content-Disposition": build_content_disposition(entry.name),
        "Content-Type": _safe_content_type(ctype),
        "Etag": f'"{entry.sum}"',
        "X-Content-Type-Options": "nosniff",
    }
    if entry.lifetime is not None:
        headers["Expires"] = http_date(entry.lifetime)
    return serve_file(request, EntryFile(entry, stream), headers)


@router.api_route(
    "/{path:path}",
    methods=["POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"],
    include_in_schema=False,
)
async def other_methods(request: Request, path: str):
    allow = allowed_methods(request.url.path)
    if request.method == "OPTIONS":
        return Response(status_code=200, headers={"Access-Control-Allow-Methods": allow})
    raise HTTPException(status_code=405, detail="Method Not Allowed", headers={"Allow": allow})
