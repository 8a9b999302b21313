"""
Media Routes

Uploads (direct, presigned and multipart), media lookup, HEIC display
conversion and deletion.
"""

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status
from fastapi.responses import RedirectResponse

from eventlens.auth import get_current_actor, get_optional_actor, get_upload_actor
from eventlens.config import settings
from eventlens.dependencies import get_event_service, get_ingest_service, get_request_meta, get_storage
from eventlens.media.heic import convert_heic_to_jpeg
from eventlens.media.validation import is_heic
from eventlens.middleware.rate_limit import UPLOAD_LIMIT, limiter
from eventlens.policy import UserContext
from eventlens.schemas.media import (
    AbortMultipartRequest,
    BulkDeleteRequest,
    BulkDeleteResponse,
    CompleteMultipartRequest,
    FinalizeUploadRequest,
    MediaResponse,
    MultipartInitResponse,
    PresignedPart,
    PresignedUploadResponse,
    PresignPartsRequest,
    UploadRequest,
)
from eventlens.services.event_service import EventService
from eventlens.services.ingest_service import MediaIngestService
from eventlens.storage.base import ObjectStorage
from eventlens.utils.activity_log import RequestMeta

router = APIRouter(tags=["Media"])


# ── Uploads ───────────────────────────────────────────────────────────────────


@router.post("/events/{event_id}/media", response_model=MediaResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(UPLOAD_LIMIT)
async def upload_media(
    request: Request,
    event_id: str,
    file: UploadFile = File(...),
    caption: str | None = Form(None),
    actor: UserContext = Depends(get_upload_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Upload a photo or video to an event."""
    data = await file.read()
    media = await ingest.upload_media(
        actor,
        event_id,
        data,
        file.content_type or "application/octet-stream",
        file.filename or "upload",
        caption=caption,
        meta=meta,
    )
    return media


@router.post("/events/{event_id}/uploads/presign", response_model=PresignedUploadResponse)
@limiter.limit(UPLOAD_LIMIT)
async def presign_upload(
    request: Request,
    event_id: str,
    body: UploadRequest,
    actor: UserContext = Depends(get_upload_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
):
    """Get a presigned PUT URL; call ``/uploads/finalize`` once the object is written."""
    return await ingest.create_presigned_upload(actor, event_id, body.filename, body.content_type, body.size)


@router.post("/events/{event_id}/uploads/finalize", response_model=MediaResponse, status_code=status.HTTP_201_CREATED)
async def finalize_upload(
    event_id: str,
    body: FinalizeUploadRequest,
    actor: UserContext = Depends(get_upload_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await ingest.finalize_upload(
        actor, event_id, body.key, body.filename, body.content_type, caption=body.caption, meta=meta
    )


@router.post("/events/{event_id}/uploads/multipart", response_model=MultipartInitResponse)
@limiter.limit(UPLOAD_LIMIT)
async def initiate_multipart(
    request: Request,
    event_id: str,
    body: UploadRequest,
    actor: UserContext = Depends(get_upload_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
):
    session = await ingest.initiate_multipart(actor, event_id, body.filename, body.content_type, body.size)
    return MultipartInitResponse(
        media_id=session.media_id,
        upload_id=session.upload_id,
        key=session.key,
        thumbnail_key=session.thumbnail_key,
    )


@router.post("/uploads/multipart/parts", response_model=list[PresignedPart])
async def presign_parts(
    body: PresignPartsRequest,
    actor: UserContext = Depends(get_current_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
):
    return await ingest.presign_parts(body.key, body.upload_id, body.part_numbers)


@router.post(
    "/events/{event_id}/uploads/multipart/complete",
    response_model=MediaResponse,
    status_code=status.HTTP_201_CREATED,
)
async def complete_multipart(
    event_id: str,
    body: CompleteMultipartRequest,
    actor: UserContext = Depends(get_upload_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    return await ingest.complete_multipart(
        actor,
        event_id,
        body.key,
        body.upload_id,
        [p.model_dump() for p in body.parts],
        body.filename,
        body.content_type,
        meta=meta,
    )


@router.post("/uploads/multipart/abort", status_code=status.HTTP_204_NO_CONTENT)
async def abort_multipart(
    body: AbortMultipartRequest,
    actor: UserContext = Depends(get_current_actor),
    ingest: MediaIngestService = Depends(get_ingest_service),
):
    await ingest.abort_multipart(body.key, body.upload_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Media ─────────────────────────────────────────────────────────────────────


@router.get("/events/{event_id}/media")
async def list_event_media(
    event_id: str,
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
):
    """Media in an event, each flagged with ``can_delete`` for the caller."""
    return {"items": await service.list_event_media(actor, event_id)}


@router.get("/media/{media_id}")
async def get_media(
    media_id: str,
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
):
    media, can_delete = await service.get_media(actor, media_id)
    return {**media.to_dict(), "can_delete": can_delete}


@router.get("/media/{media_id}/display")
async def display_media(
    media_id: str,
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
    storage: ObjectStorage = Depends(get_storage),
):
    """A browser-displayable rendition: HEIC is converted to JPEG, anything else redirects to the original."""
    media, _ = await service.get_media(actor, media_id)
    if is_heic(media.mime_type):
        jpeg = await convert_heic_to_jpeg(storage, media.s3_key, timeout=settings.heic_conversion_timeout)
        return Response(
            content=jpeg,
            media_type="image/jpeg",
            headers={"Cache-Control": "public, max-age=31536000, immutable"},
        )
    return RedirectResponse(await storage.presign_get(media.s3_key), status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.delete("/media/{media_id}", response_model=BulkDeleteResponse)
async def delete_media(
    media_id: str,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    await service.get_media(actor, media_id)
    summary = await service.delete_media(actor, [media_id], meta)
    return BulkDeleteResponse(
        deleted=summary.deleted, deleted_ids=summary.deleted_ids, skipped=summary.skipped, failed=summary.failed
    )


@router.post("/media/bulk-delete", response_model=BulkDeleteResponse)
async def bulk_delete_media(
    body: BulkDeleteRequest,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Delete many media at once; items the caller may not delete are skipped."""
    summary = await service.delete_media(actor, body.media_ids, meta)
    return BulkDeleteResponse(
        deleted=summary.deleted, deleted_ids=summary.deleted_ids, skipped=summary.skipped, failed=summary.failed
    )
