"""
Tubely API application.

Run with:
    uvicorn api.main:create_app --factory --port 8091
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_client import CONTENT_TYPE_LATEST
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.common import (
    NoCacheStaticFiles,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    check_health,
    limiter,
    rate_limit_exceeded_handler,
)
from api.database import MetadataStore, create_tables
from api.db_retry import DatabaseRetryableError
from api.errors import (
    database_retryable_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from api.ingest import ThumbnailIngestor, VideoIngestor
from api.metrics import get_metrics, init_app_info
from api.routes import router
from api.storage import ObjectStore
from config import Settings, load_settings
from media.inspector import FFprobeInspector
from media.repackager import FFmpegRepackager

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    metadata: Optional[MetadataStore] = None,
    objects: Optional[ObjectStore] = None,
    inspector=None,
    repackager=None,
) -> FastAPI:
    """
    Build the application. Components not passed in are built from settings.

    Raises:
        ConfigError: If settings is omitted and required environment variables are missing
    """
    settings = settings or load_settings()
    metadata = metadata or MetadataStore(settings.database_url)
    objects = objects or ObjectStore.from_settings(settings)
    inspector = inspector or FFprobeInspector(settings.ffprobe_path)
    repackager = repackager or FFmpegRepackager(settings.ffmpeg_path)

    # Mount targets must exist before StaticFiles is constructed
    settings.assets_root.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application startup and shutdown."""
        create_tables(settings.database_url)
        await metadata.connect()
        init_app_info(VERSION)
        logger.info(f"Serving on {settings.public_url}/app/ (platform={settings.platform})")
        yield
        await metadata.disconnect()

    app = FastAPI(title="Tubely", description="Video hosting backend", version=VERSION, lifespan=lifespan)

    app.state.settings = settings
    app.state.metadata = metadata
    app.state.objects = objects
    app.state.video_ingestor = VideoIngestor(settings, metadata, objects, inspector, repackager)
    app.state.thumbnail_ingestor = ThumbnailIngestor(settings, metadata, objects)

    # Register rate limiter with the app
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DatabaseRetryableError, database_retryable_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # If no origins are configured, allow same-origin only (no CORS headers)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=bool(settings.cors_origins),
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring and load balancers."""
        result = await check_health(metadata)
        return JSONResponse(
            status_code=result["status_code"],
            content={
                "status": "healthy" if result["healthy"] else "unhealthy",
                "checks": result["checks"],
            },
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)

    app.mount("/assets", NoCacheStaticFiles(directory=str(settings.assets_root)), name="assets")
    if settings.filepath_root.is_dir():
        app.mount("/app", StaticFiles(directory=str(settings.filepath_root), html=True), name="app")
    else:
        logger.warning(f"Frontend directory {settings.filepath_root} not found; /app will not be served")

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    port = load_settings().port
    uvicorn.run("api.main:create_app", factory=True, host="0.0.0.0", port=port)
