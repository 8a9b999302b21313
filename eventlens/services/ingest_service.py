"""
Media Ingest Service

Runs every upload through the same strictly ordered steps:

    validate -> storage quota -> upload original -> derive -> persist

Validation and quota failures happen before any storage call. Derivation
(thumbnail, EXIF, video probe) is best effort: a failure is logged and the
row is written with empty metadata. If the row cannot be written, the
original and thumbnail are deleted again before the error is raised.

Two entry points share the derive/persist tail:
  * ``upload_media`` for bytes received by the server;
  * the presigned flows (``create_presigned_upload`` or
    ``initiate_multipart`` ... ``complete_multipart``) where the client
    writes to storage directly and the server then finalizes. Each presigned
    key is reserved for the caller and event it was issued to; only that
    reservation can be finalized, once.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.exceptions import (
    EventLensError,
    PersistError,
    ResourceNotFoundError,
    StorageError,
    ValidationError,
)
from eventlens.database import new_uuid
from eventlens.media.images import process_image
from eventlens.media.validation import UploadLimits, validate_media_file
from eventlens.media.video import extract_video_metadata, generate_video_thumbnail, temporary_video_file
from eventlens.models import Event, Media, PendingUpload
from eventlens.policy import Action, EventResource, PolicyEngine, ResourceType, UserContext
from eventlens.services.event_bus import EventBus
from eventlens.services.multipart_uploader import MultipartUploader
from eventlens.services.storage_quota_service import DEFAULT_STORAGE_LIMIT, StorageQuotaService
from eventlens.storage import keys
from eventlens.storage.base import ObjectStorage
from eventlens.utils.activity_log import AuditLogger, RequestMeta
from eventlens.utils.metrics import record_derivation_failure, record_upload

logger = logging.getLogger(__name__)

DEFAULT_MULTIPART_THRESHOLD = 100 * 1024 * 1024

_ORIGINAL_KEY = re.compile(r"^media/([0-9a-f-]{36})/original\.[A-Za-z0-9]{1,10}$")


def _naive_utc(value: datetime | None) -> datetime | None:
    """Media timestamps are stored as naive UTC; offsets are converted, not dropped."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class DerivedAssets:
    thumbnail_key: str | None = None
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    metadata: dict = field(default_factory=dict)
    taken_at: datetime | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class MultipartSession:
    media_id: str
    upload_id: str
    key: str
    thumbnail_key: str


class MediaIngestService:
    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        *,
        audit: AuditLogger | None = None,
        events: EventBus | None = None,
        limits: UploadLimits = UploadLimits(),
        default_storage_limit: int = DEFAULT_STORAGE_LIMIT,
        uploader: MultipartUploader | None = None,
        multipart_threshold: int = DEFAULT_MULTIPART_THRESHOLD,
    ) -> None:
        self.db = db
        self.storage = storage
        self.audit = audit
        self.events = events
        self.limits = limits
        self.quota = StorageQuotaService(db, default_storage_limit)
        self.policy = PolicyEngine(db)
        self.uploader = uploader
        self.multipart_threshold = multipart_threshold

    # ── Authorization helpers ─────────────────────────────────────────────────

    async def _authorize_upload(self, actor: UserContext | None, event_id: str) -> EventResource:
        """Resolve the target event; invisible events are reported as missing."""
        event = await self.db.get(Event, event_id)
        if event is None:
            raise ResourceNotFoundError("Event", event_id)
        resource = EventResource.from_model(event)
        if actor is not None and not await self.policy.can(actor, Action.VIEW, ResourceType.EVENT, resource):
            raise ResourceNotFoundError("Event", event_id)
        await self.policy.authorize(actor, Action.UPLOAD, ResourceType.EVENT, resource)
        return resource

    @staticmethod
    def _media_id_from_key(key: str) -> str:
        match = _ORIGINAL_KEY.match(key)
        if not match:
            raise ValidationError("Invalid storage key", field="key")
        return match.group(1)

    # ── Server-side upload ────────────────────────────────────────────────────

    async def upload_media(
        self,
        actor: UserContext | None,
        event_id: str,
        data: bytes,
        mime_type: str,
        filename: str,
        caption: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Media:
        """Authorize the actor for the event, then ingest."""
        await self._authorize_upload(actor, event_id)
        return await self.ingest(
            data,
            mime_type,
            actor.id,
            event_id,
            filename=filename,
            api_key_id=actor.api_key.id if actor.api_key else None,
            caption=caption,
            meta=meta,
        )

    async def ingest(
        self,
        data: bytes,
        mime_type: str,
        owner_id: str,
        event_id: str,
        *,
        filename: str | None = None,
        api_key_id: str | None = None,
        caption: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Media:
        """
        Store an uploaded file and create its media row.

        Raises:
            ValidationError: unsupported type or size; nothing was written
            QuotaExceededError: the owner is out of storage; nothing was written
            StorageError: the original could not be stored
            PersistError: the row could not be written; stored objects were removed
        """
        try:
            category = validate_media_file(mime_type, len(data), self.limits)
            await self.quota.ensure_within_limit(owner_id, len(data))
        except EventLensError:
            record_upload("rejected")
            raise

        media_id = new_uuid()
        key = keys.media_original_key(media_id, keys.file_extension(filename, mime_type))
        tags = {"eventId": event_id, "uploadedBy": owner_id}

        try:
            url = await self._store_original(data, key, mime_type, tags)
        except StorageError:
            record_upload("storage_error")
            raise
        derived = await self.derive(data, category, mime_type, media_id, tags)

        return await self._persist(
            Media(
                id=media_id,
                event_id=event_id,
                uploaded_by_id=owner_id,
                api_key_id=api_key_id,
                s3_key=key,
                s3_url=url,
                filename=filename or key.rsplit("/", 1)[-1],
                mime_type=mime_type,
                file_size=len(data),
                caption=caption,
            ),
            derived,
            meta,
        )

    async def _store_original(self, data: bytes, key: str, mime_type: str, tags: dict[str, str]) -> str:
        if self.uploader is not None and len(data) > self.multipart_threshold:
            return await self.uploader.upload(data, key, mime_type, tags)
        return await self.storage.put(data, key, mime_type, tags)

    # ── Derivation ────────────────────────────────────────────────────────────

    async def derive(
        self, data: bytes, category: str, mime_type: str, media_id: str, tags: dict[str, str]
    ) -> DerivedAssets:
        """Thumbnail and metadata; never raises."""
        try:
            if category == "image":
                return await self._derive_image(data, mime_type, media_id, tags)
            return await self._derive_video(data, mime_type, media_id, tags)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Derivation failed for media %s (%s): %s", media_id, mime_type, e)
            record_derivation_failure(category)
            return DerivedAssets()

    async def _derive_image(self, data: bytes, mime_type: str, media_id: str, tags: dict[str, str]) -> DerivedAssets:
        result = await asyncio.to_thread(process_image, data, mime_type, media_id)
        derived = DerivedAssets(width=result.width, height=result.height)
        derived.thumbnail_key = await self._store_thumbnail(result.thumbnail, media_id, tags)

        if result.exif is not None:
            derived.metadata = result.exif.to_dict()
            derived.taken_at = result.exif.taken_at
            derived.latitude = result.exif.gps_latitude
            derived.longitude = result.exif.gps_longitude
        derived.metadata.update({"width": result.width, "height": result.height})
        return derived

    async def _derive_video(self, data: bytes, mime_type: str, media_id: str, tags: dict[str, str]) -> DerivedAssets:
        derived = DerivedAssets()
        with temporary_video_file(data, suffix="." + keys.file_extension(None, mime_type)) as path:
            video_meta = await extract_video_metadata(path)
            thumbnail = await generate_video_thumbnail(path)

        if video_meta is not None:
            derived.width = video_meta.width
            derived.height = video_meta.height
            derived.duration = video_meta.duration
            derived.latitude = video_meta.latitude
            derived.longitude = video_meta.longitude
            derived.taken_at = video_meta.taken_at
            derived.metadata = video_meta.to_dict()
        if thumbnail:
            derived.thumbnail_key = await self._store_thumbnail(thumbnail, media_id, tags)
        return derived

    async def _store_thumbnail(self, thumbnail: bytes, media_id: str, tags: dict[str, str]) -> str | None:
        key = keys.media_thumbnail_key(media_id)
        try:
            await self.storage.put(thumbnail, key, "image/jpeg", tags)
        except StorageError as e:
            logger.warning("Thumbnail upload failed for %s: %s", key, e)
            return None
        return key

    # ── Persistence ───────────────────────────────────────────────────────────

    async def _persist(self, media: Media, derived: DerivedAssets, meta: RequestMeta | None) -> Media:
        media.thumbnail_s3_key = derived.thumbnail_key
        media.width = derived.width
        media.height = derived.height
        media.duration = derived.duration
        media.latitude = derived.latitude
        media.longitude = derived.longitude
        media.taken_at = _naive_utc(derived.taken_at)
        media.exif_data = derived.metadata or None

        try:
            self.db.add(media)
            await self.db.commit()
            await self.db.refresh(media)
        except Exception as e:
            logger.error("Failed to insert media %s; removing stored objects: %s", media.id, e)
            await self.db.rollback()
            await self._remove_objects([media.s3_key, derived.thumbnail_key])
            record_upload("persist_error")
            raise PersistError(media_id=media.id) from e

        logger.info("Stored media %s (%s, %d bytes) in event %s", media.id, media.mime_type, media.file_size, media.event_id)
        record_upload("stored", media.file_size)
        if self.audit is not None:
            await self.audit.log_activity(
                media.uploaded_by_id,
                "upload",
                "media",
                media.id,
                {"event_id": media.event_id, "filename": media.filename},
                meta,
            )
        if self.events is not None:
            self.events.emit("media.uploaded", {"media_id": media.id, "event_id": media.event_id})
        return media

    async def _remove_objects(self, object_keys: list[str | None]) -> None:
        for key in filter(None, object_keys):
            try:
                await self.storage.delete(key)
            except StorageError:
                logger.error("Rollback could not delete %s; left for the ghost-file sweep", key)

    # ── Direct upload reservations ────────────────────────────────────────────

    async def _reserve(
        self, media_id: str, key: str, event_id: str, owner_id: str, upload_id: str | None = None
    ) -> None:
        self.db.add(PendingUpload(id=media_id, s3_key=key, event_id=event_id, owner_id=owner_id, upload_id=upload_id))
        await self.db.commit()

    async def _pending_upload(self, actor: UserContext, event_id: str, key: str) -> PendingUpload:
        """The actor's open reservation for *key* in *event_id*; anything else is rejected before storage is touched."""
        media_id = self._media_id_from_key(key)
        existing = await self.db.execute(select(Media.id).where(or_(Media.id == media_id, Media.s3_key == key)))
        if existing.first() is not None:
            raise ValidationError("This upload has already been finalized", field="key")

        result = await self.db.execute(select(PendingUpload).where(PendingUpload.s3_key == key))
        pending = result.scalar_one_or_none()
        if pending is None or pending.id != media_id or pending.owner_id != actor.id or pending.event_id != event_id:
            logger.warning("Rejected finalize of unreserved key %s by %s", key, actor.id)
            raise ValidationError("No pending upload for this key", field="key")
        return pending

    async def _claim(self, pending: PendingUpload) -> None:
        """Consume the reservation; of two concurrent finalizes only one gets past here."""
        result = await self.db.execute(
            delete(PendingUpload).where(PendingUpload.id == pending.id, PendingUpload.owner_id == pending.owner_id)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ValidationError("This upload is already being finalized", field="key")
        await self.db.commit()

    async def _release(self, key: str, upload_id: str) -> None:
        await self.db.execute(
            delete(PendingUpload).where(PendingUpload.s3_key == key, PendingUpload.upload_id == upload_id)
        )
        await self.db.commit()

    # ── Presigned single-part upload ──────────────────────────────────────────

    async def create_presigned_upload(
        self, actor: UserContext | None, event_id: str, filename: str, mime_type: str, size: int
    ) -> dict:
        await self._authorize_upload(actor, event_id)
        validate_media_file(mime_type, size, self.limits)
        await self.quota.ensure_within_limit(actor.id, size)

        media_id = new_uuid()
        key = keys.media_original_key(media_id, keys.file_extension(filename, mime_type))
        await self._reserve(media_id, key, event_id, actor.id)
        return {
            "media_id": media_id,
            "key": key,
            "upload_url": await self.storage.presign_put(key, mime_type),
        }

    # ── Multipart upload sessions ─────────────────────────────────────────────

    async def initiate_multipart(
        self, actor: UserContext | None, event_id: str, filename: str, mime_type: str, size: int
    ) -> MultipartSession:
        await self._authorize_upload(actor, event_id)
        validate_media_file(mime_type, size, self.limits)
        await self.quota.ensure_within_limit(actor.id, size)

        media_id = new_uuid()
        key = keys.media_original_key(media_id, keys.file_extension(filename, mime_type))
        upload_id = await self.storage.create_multipart(key, mime_type, {"eventId": event_id, "uploadedBy": actor.id})
        await self._reserve(media_id, key, event_id, actor.id, upload_id)
        logger.info("Multipart upload %s initiated for %s by %s", upload_id, key, actor.id)
        return MultipartSession(
            media_id=media_id,
            upload_id=upload_id,
            key=key,
            thumbnail_key=keys.media_thumbnail_key(media_id),
        )

    async def presign_parts(self, key: str, upload_id: str, part_numbers: list[int]) -> list[dict]:
        self._media_id_from_key(key)
        if not part_numbers or any(n < 1 or n > 10000 for n in part_numbers):
            raise ValidationError("Part numbers must be between 1 and 10000", field="part_numbers")
        urls = await asyncio.gather(*(self.storage.presign_part(key, upload_id, n) for n in part_numbers))
        return [{"part_number": n, "url": url} for n, url in zip(part_numbers, urls)]

    async def abort_multipart(self, key: str, upload_id: str) -> None:
        """Idempotent: aborting twice, or before any part was sent, succeeds."""
        self._media_id_from_key(key)
        await self.storage.abort_multipart(key, upload_id)
        await self._release(key, upload_id)

    async def complete_multipart(
        self,
        actor: UserContext | None,
        event_id: str,
        key: str,
        upload_id: str,
        parts: list[dict],
        filename: str,
        mime_type: str,
        meta: RequestMeta | None = None,
    ) -> Media:
        """Assemble the parts, then finalize; a failed assembly aborts the upload."""
        await self._authorize_upload(actor, event_id)
        pending = await self._pending_upload(actor, event_id, key)
        if pending.upload_id != upload_id:
            raise ValidationError("Upload id does not match this key", field="upload_id")
        if not parts:
            await self.abort_multipart(key, upload_id)
            raise ValidationError("No parts were uploaded", field="parts")
        try:
            await self.storage.complete_multipart(key, upload_id, parts)
        except StorageError:
            await self.abort_multipart(key, upload_id)
            raise
        return await self.finalize_upload(actor, event_id, key, filename, mime_type, meta=meta, authorized=True)

    async def finalize_upload(
        self,
        actor: UserContext | None,
        event_id: str,
        key: str,
        filename: str,
        mime_type: str,
        caption: str | None = None,
        meta: RequestMeta | None = None,
        authorized: bool = False,
    ) -> Media:
        """
        Create the row for an object the client wrote directly. The stored
        size is re-read from the backend and validated again, so a client
        cannot under-declare its upload.

        Only a key reserved by this actor for this event is accepted, and the
        reservation is consumed before anything is written, so the rollback
        paths below can only ever remove this upload's own objects.
        """
        if not authorized:
            await self._authorize_upload(actor, event_id)
        pending = await self._pending_upload(actor, event_id, key)
        media_id = pending.id

        stored = await self.storage.head(key)
        if stored is None:
            raise ValidationError("Upload verification failed: file not found in storage", field="key")
        await self._claim(pending)

        try:
            category = validate_media_file(mime_type, stored.size, self.limits)
            await self.quota.ensure_within_limit(actor.id, stored.size)
        except Exception:
            await self._remove_objects([key])
            raise

        data = await self.storage.get(key)
        tags = {"eventId": event_id, "uploadedBy": actor.id}
        derived = await self.derive(data, category, mime_type, media_id, tags)

        return await self._persist(
            Media(
                id=media_id,
                event_id=event_id,
                uploaded_by_id=actor.id,
                api_key_id=actor.api_key.id if actor.api_key else None,
                s3_key=key,
                s3_url=self.storage.public_url(key),
                filename=filename,
                mime_type=mime_type,
                file_size=stored.size,
                caption=caption,
            ),
            derived,
            meta,
        )
