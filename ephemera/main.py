import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings
from .db.mongo import connect, disconnect
from .metrics import Metrics
from .storage.blobs import FileSystemBlobStore

from .routes.health import router as health_router
from .routes.upload import router as upload_router
# catch-all GET/HEAD and method fallback: must be included last
from .routes.serve import allowed_methods, router as serve_router


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await connect(config)
        try:
            yield
        finally:
            await disconnect()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config
    app.state.blobs = FileSystemBlobStore(config.blob_root)
    app.state.metrics = Metrics()

    # Errors go out as plain text, not FastAPI's JSON envelope
    @app.exception_handler(StarletteHTTPException)
    async def plain_text_errors(request, exc: StarletteHTTPException):
        headers = dict(getattr(exc, "headers", None) or {})
        if exc.status_code == 405:
            # router-level 405s only know the methods of the route they matched
            headers["Allow"] = allowed_methods(request.url.path)
        return PlainTextResponse(
            f"{exc.detail}\n",
            status_code=exc.status_code,
            headers=headers,
        )

    app.include_router(health_router)
    app.include_router(upload_router)
    app.include_router(serve_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    uvicorn.run(app, host=settings.app_host, port=settings.app_port, log_level=settings.log_level.lower())
