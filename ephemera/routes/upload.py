from __future__ import annotations
"""
Upload endpoint.

POST /  (multipart/form-data)
  form-data:
    - file: the content to store (exactly one part named "file"; others are ignored)

Responds 303 See Other to /<slug><ext>, with the same path as the text body.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from ephemera.config import Settings
from ephemera.deps import get_blob_store, get_config, get_metrics
from ephemera.errors import PayloadTooLargeError, UploadError
from ephemera.metrics import Metrics
from ephemera.services.upload_service import receive_upload
from ephemera.storage.blobs import FileSystemBlobStore

logger = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["upload"])


@router.post("/")
async def upload(
    request: Request,
    config: Settings = Depends(get_config),
    blobs: FileSystemBlobStore = Depends(get_blob_store),
    metrics: Metrics = Depends(get_metrics),
):
    try:
        result = await receive_upload(
            request,
            blobs=blobs,
            limit=config.upload_limit,
            lifetime=config.entry_lifetime,
        )
    except PayloadTooLargeError:
        metrics.uploads.labels("too_large").inc()
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Request Entity Too Large",
        )
    except UploadError as e:
        metrics.uploads.labels("bad_request").inc()
        logger.info("upload rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        metrics.uploads.labels("error").inc()
        logger.exception("upload failed")
        raise HTTPException(status_code=500, detail=str(e) or type(e).__name__)

    entry = result.entry
    metrics.uploads.labels("created").inc()
    metrics.upload_bytes.inc(entry.size)
    logger.info("created %s (%d bytes)", entry.slug, entry.size)

    return PlainTextResponse(
        result.location + "\n",
        status_code=status.HTTP_303_SEE_OTHER,
        headers={"Location": result.location},
    )
