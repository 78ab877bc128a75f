"""
FastAPI application for the Thumbcache thumbnail service.
Serves resized thumbnails with a cache-aside Redis/Valkey store.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import unquote

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from thumbcache import __version__
from thumbcache.cache import create_cache_store
from thumbcache.config import Settings, load_settings
from thumbcache.errors import classify_error, log_classified
from thumbcache.mime import lookup_content_type
from thumbcache.orchestrator import ThumbnailService, parse_request
from thumbcache.schemas import HealthResponse, RootResponse
from thumbcache.sources import create_source
from thumbcache.transformer import ImageTransformer

logger = logging.getLogger("thumbcache")

# Global instances
_SETTINGS: Settings = load_settings()
_THUMBNAIL_SERVICE: ThumbnailService | None = None

CACHE_CONTROL = "public, max-age=3600"


def build_service(settings: Settings) -> ThumbnailService:
    """Construct and initialize the store, source and transformer handles."""
    store = create_cache_store(settings.store_backend, settings.store_url, settings.memory_max_items)
    source = create_source(settings.source_backend, settings.source_root)
    transformer = ImageTransformer(jpeg_quality=settings.jpeg_quality)

    store.init()
    source.init()
    transformer.init()

    return ThumbnailService(
        store,
        source,
        transformer,
        ttl_seconds=settings.ttl_seconds,
        single_flight=settings.single_flight,
    )


async def shutdown_service(service: ThumbnailService) -> None:
    """Flush pending write-backs, then release handles in reverse order."""
    await service.drain()
    service.transformer.shutdown()
    service.source.shutdown()
    service.store.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    # Startup
    global _THUMBNAIL_SERVICE

    _THUMBNAIL_SERVICE = build_service(_SETTINGS)
    if _THUMBNAIL_SERVICE.store.ping():
        logger.info(f"✓ Cache store ready ({_SETTINGS.store_backend})")
    else:
        logger.warning("Cache store unreachable; requests will be served uncached until it recovers")

    yield

    # Shutdown
    await shutdown_service(_THUMBNAIL_SERVICE)
    _THUMBNAIL_SERVICE = None


# Create FastAPI app
app = FastAPI(
    title="Thumbcache API",
    description="Cache-aside image thumbnail service",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------------------------------------------------------
# DEPENDENCY INJECTION
# -----------------------------------------------------------------------------

def get_settings() -> Settings:
    """Dependency: Get process settings."""
    return _SETTINGS


def get_thumbnail_service() -> ThumbnailService:
    """Dependency: Get the thumbnail service owned by the lifespan."""
    if _THUMBNAIL_SERVICE is None:
        raise HTTPException(status_code=503, detail="Thumbnail service unavailable")
    return _THUMBNAIL_SERVICE


# -----------------------------------------------------------------------------
# HEALTH CHECK
# -----------------------------------------------------------------------------

@app.get("/api/health")
async def health_check(
    settings: Settings = Depends(get_settings),
    service: ThumbnailService = Depends(get_thumbnail_service),
) -> HealthResponse:
    """
    Health check endpoint.
    Reports cache store connectivity; always 200 (service still works uncached).
    """
    loop = asyncio.get_event_loop()
    store_ok = await loop.run_in_executor(None, service.store.ping)
    return HealthResponse(
        status="ok" if store_ok else "degraded",
        version=__version__,
        store_backend=settings.store_backend,
        store_status="ok" if store_ok else "error: unreachable",
        source_backend=service.source.name,
        pending_writes=service.pending_writes,
    )


# -----------------------------------------------------------------------------
# ROOT ENDPOINT
# -----------------------------------------------------------------------------

@app.get("/")
async def root() -> RootResponse:
    """Root endpoint."""
    return RootResponse(message="Thumbcache API", version=__version__, docs="/docs", health="/api/health")


# -----------------------------------------------------------------------------
# THUMBNAILS
# -----------------------------------------------------------------------------

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.get("/api/image")
async def get_image(
    path: Optional[str] = Query(None, description="URL-encoded source identifier"),
    width: Optional[str] = Query(None, description="Maximum width in pixels (default 200)"),
    height: Optional[str] = Query(None, description="Maximum height in pixels"),
    settings: Settings = Depends(get_settings),
    service: ThumbnailService = Depends(get_thumbnail_service),
):
    """
    Get a resized thumbnail for a source image.

    Responds with the image bytes and X-Cache-Status: hit|miss, or a JSON
    {"error": ...} body with status 400, 404 or 500.
    """
    file_path = unquote(path) if path else path
    try:
        request = parse_request(file_path, width, height, default_width=settings.default_width)
        result = await service.get_thumbnail(request)
    except Exception as e:
        outcome = classify_error(e)
        log_classified(outcome, file_path, e)
        return error_response(outcome.status_code, outcome.message)

    return Response(
        content=result.data,
        media_type=lookup_content_type(request.source_id),
        headers={
            "Cache-Control": CACHE_CONTROL,
            "X-Cache-Status": result.cache_status,
        },
    )
