import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from ephemera.deps import get_metrics
from ephemera.metrics import Metrics
from ephemera.repositories import entries_repo

logger = logging.getLogger("uvicorn.error")

router = APIRouter(tags=["health"])

PING_TIMEOUT_SECONDS = 1.0


@router.api_route("/healthz", methods=["GET", "HEAD"], include_in_schema=False)
async def healthz():
    try:
        await asyncio.wait_for(entries_repo.ping(), timeout=PING_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("ping: timed out after %ss", PING_TIMEOUT_SECONDS)
        raise HTTPException(status_code=500, detail="ping: timed out")
    except Exception as e:
        logger.warning("ping: %s", e)
        raise HTTPException(status_code=500, detail=str(e) or type(e).__name__)
    return Response(status_code=200)


@router.api_route("/varz", methods=["GET", "HEAD"], include_in_schema=False)
async def varz(metrics: Metrics = Depends(get_metrics)):
    try:
        body = metrics.exposition()
    except Exception as e:
        metrics.scrapes.labels("500").inc()
        logger.exception("metrics exposition failed")
        raise HTTPException(status_code=500, detail=str(e))
    metrics.scrapes.labels("200").inc()
    return Response(content=body, media_type=metrics.content_type)
