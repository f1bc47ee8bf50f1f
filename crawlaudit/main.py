"""
Crawl Audit Service - Main Application Entry Point
FastAPI application with lifespan management.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from crawlaudit.api.v1.routes import crawls, health
from crawlaudit.core.config import get_settings
from crawlaudit.core.logging import configure_logging
from crawlaudit.core.redis import get_redis_client
from crawlaudit.engines.audit import SiteAuditor
from crawlaudit.engines.clustering.snapshots import InMemorySnapshotStore, RedisSnapshotStore

logger = structlog.get_logger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Manage application lifecycle: startup and shutdown."""
    configure_logging()
    logger.info("Starting Crawl Audit Service", version=settings.APP_VERSION, env=settings.ENV)

    redis = None
    if settings.SNAPSHOT_BACKEND == "redis":
        redis = await get_redis_client()
        await redis.ping()
        logger.info("Redis connection verified")
        store = RedisSnapshotStore(redis)
    else:
        store = InMemorySnapshotStore()

    client = httpx.AsyncClient(headers={"User-Agent": settings.CRAWLER_USER_AGENT})
    app.state.auditor = SiteAuditor(client=client, snapshot_store=store)

    yield

    # Graceful shutdown
    await client.aclose()
    if redis is not None:
        await redis.aclose()
    logger.info("Application shutdown complete")


def create_application() -> FastAPI:
    app = FastAPI(
        title="Crawl Audit API",
        description="Budgeted crawlability audits: robots, sitemaps, indexability, template clusters.",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.ENV != "production" else None,
        redoc_url="/redoc" if settings.ENV != "production" else None,
        lifespan=lifespan,
    )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Routers
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(crawls.router, prefix="/api/v1/crawls", tags=["Crawls"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request.headers.get("x-request-id")},
        )

    return app


app = create_application()
