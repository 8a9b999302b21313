import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eventlens.config import settings
from eventlens.database import AsyncSessionLocal, Base, engine
from eventlens.exception_handlers import register_exception_handlers
from eventlens.middleware.logging import RequestLoggingMiddleware, setup_logging
from eventlens.middleware.rate_limit import configure_rate_limiting
from eventlens.routes import api_keys, events, feed, media, monitoring
from eventlens.routes import storage as storage_routes
from eventlens.services.event_bus import EventBus
from eventlens.services.multipart_uploader import MultipartUploader
from eventlens.services.rate_limit_service import RateLimiter, create_redis_client
from eventlens.storage.s3 import S3Storage, build_s3_client
from eventlens.utils.activity_log import AuditLogger
from eventlens.utils.metrics import set_app_info

setup_logging("DEBUG" if settings.debug else "INFO", json_format=settings.environment == "production")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the process-wide clients; anything injected by ``create_app`` is left alone."""
    logger.info("Starting %s (%s)", settings.app_name, settings.environment)
    state = app.state
    owned_http_client = None
    owned_redis = None

    if settings.debug:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")

    if getattr(state, "storage", None) is None:
        state.storage = S3Storage(
            build_s3_client(settings),
            settings.s3_bucket_name,
            public_url=settings.s3_public_url,
            presign_expiry=settings.presigned_url_expiry,
        )
    if getattr(state, "rate_limiter", None) is None:
        owned_redis = create_redis_client(settings.redis_url)
        state.rate_limiter = RateLimiter(owned_redis, fail_open=settings.rate_limit_fail_open)
    if getattr(state, "uploader", None) is None:
        owned_http_client = httpx.AsyncClient()
        state.uploader = MultipartUploader(
            state.storage,
            owned_http_client,
            part_size=settings.multipart_part_size,
            concurrency=settings.multipart_concurrency,
            presign_batch_size=settings.multipart_presign_batch,
        )

    yield

    logger.info("Shutting down %s", settings.app_name)
    if owned_http_client is not None:
        await owned_http_client.aclose()
    if owned_redis is not None:
        await owned_redis.aclose()


def create_app(
    storage=None,
    rate_limiter=None,
    uploader=None,
    session_factory=None,
) -> FastAPI:
    """Create the FastAPI application. Collaborators may be injected; missing ones are built at startup."""
    app = FastAPI(
        title=settings.app_name,
        description="Event photo and video sharing API",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.state.storage = storage
    app.state.rate_limiter = rate_limiter
    app.state.uploader = uploader
    app.state.events = EventBus()
    app.state.audit = AuditLogger(session_factory or AsyncSessionLocal)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    configure_rate_limiting(app)
    register_exception_handlers(app)

    app.include_router(monitoring.router)
    app.include_router(events.router, prefix="/api")
    app.include_router(feed.router, prefix="/api")
    app.include_router(media.router, prefix="/api")
    app.include_router(storage_routes.router, prefix="/api")
    app.include_router(api_keys.router, prefix="/api")

    set_app_info(settings.app_version, settings.environment)

    if settings.debug:
        logger.info("Running in %s mode", settings.environment)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
