"""
FastAPI dependencies for the clients owned by the application lifespan.

Clients are built once in ``main.create_app`` and stored on ``app.state``;
services are built per request around the request's database session.
"""

from datetime import timedelta

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.config import settings
from eventlens.database import get_db
from eventlens.media.validation import UploadLimits
from eventlens.services.api_key_service import APIKeyService
from eventlens.services.event_bus import EventBus
from eventlens.services.event_service import EventService
from eventlens.services.ghost_file_service import GhostFileService
from eventlens.services.ingest_service import MediaIngestService
from eventlens.storage.base import ObjectStorage
from eventlens.utils.activity_log import RequestMeta


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.events


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta.from_request(request)


def get_ingest_service(request: Request, db: AsyncSession = Depends(get_db)) -> MediaIngestService:
    state = request.app.state
    return MediaIngestService(
        db,
        state.storage,
        audit=state.audit,
        events=state.events,
        limits=UploadLimits.from_settings(settings),
        default_storage_limit=settings.default_storage_limit,
        uploader=getattr(state, "uploader", None),
        multipart_threshold=settings.multipart_threshold,
    )


def get_event_service(request: Request, db: AsyncSession = Depends(get_db)) -> EventService:
    state = request.app.state
    return EventService(
        db, state.storage, audit=state.audit, events=state.events, limits=UploadLimits.from_settings(settings)
    )


def get_ghost_file_service(request: Request, db: AsyncSession = Depends(get_db)) -> GhostFileService:
    return GhostFileService(
        db,
        request.app.state.storage,
        safety_threshold=timedelta(hours=settings.ghost_safety_threshold_hours),
        time_limit=settings.ghost_time_limit_seconds,
    )


def get_api_key_service(request: Request, db: AsyncSession = Depends(get_db)) -> APIKeyService:
    return APIKeyService(
        db,
        rate_limiter=getattr(request.app.state, "rate_limiter", None),
        rate_limit=settings.api_key_rate_limit,
        upload_rate_limit=settings.api_key_upload_rate_limit,
    )
