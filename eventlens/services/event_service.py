"""
Event Service

Authorized entry points for events, series and media lists: lookups that
hide what the actor may not see, membership changes, and the deletion call
sites that hand off to ``CascadeDeletionService``.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.exceptions import (
    AuthenticationError,
    AuthorizationError,
    PartialFailureError,
    ResourceNotFoundError,
    StorageError,
    ValidationError,
)
from eventlens.media.validation import UploadLimits, validate_banner_file
from eventlens.models import Event, EventParticipant, Media, Series, User
from eventlens.policy import (
    Action,
    EventResource,
    MediaResource,
    PolicyEngine,
    ResourceType,
    SeriesResource,
    UserContext,
    UserResource,
)
from eventlens.services.deletion_service import BulkDeleteSummary, CascadeDeletionService
from eventlens.services.event_bus import EventBus
from eventlens.storage import keys
from eventlens.storage.base import ObjectStorage
from eventlens.utils.activity_log import AuditLogger, RequestMeta

logger = logging.getLogger(__name__)

MAX_BULK_DELETE = 100


class EventService:
    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        audit: AuditLogger | None = None,
        events: EventBus | None = None,
        limits: UploadLimits | None = None,
    ) -> None:
        self.db = db
        self.storage = storage
        self.policy = PolicyEngine(db)
        self.audit = audit
        self.limits = limits or UploadLimits()
        self.deletion = CascadeDeletionService(db, storage, audit=audit, events=events)

    # ── Lookups ───────────────────────────────────────────────────────────────

    async def get_event(self, actor: UserContext | None, event_id: str) -> Event:
        """Return the event, or raise not-found when it is missing or hidden from *actor*."""
        event = await self.db.get(Event, event_id)
        if event is None or not await self.policy.can(actor, Action.VIEW, ResourceType.EVENT, EventResource.from_model(event)):
            raise ResourceNotFoundError("Event", event_id)
        return event

    async def get_series(self, actor: UserContext | None, series_id: str) -> Series:
        series = await self.db.get(Series, series_id)
        if series is None or not await self.policy.can(
            actor, Action.VIEW, ResourceType.SERIES, SeriesResource.from_model(series)
        ):
            raise ResourceNotFoundError("Series", series_id)
        return series

    async def list_events(self, actor: UserContext | None) -> list[Event]:
        """Events visible in listings, newest first. Banned actors see nothing."""
        if actor is not None and actor.is_banned:
            return []
        ids = await self.policy.get_accessible_event_ids_for_user(actor.id if actor else None)
        if not ids:
            return []
        result = await self.db.execute(select(Event).where(Event.id.in_(ids)))
        by_id = {e.id: e for e in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]

    async def get_media(self, actor: UserContext | None, media_id: str) -> tuple[Media, bool]:
        """Return the media and whether *actor* may delete it; hidden media is reported missing."""
        media = await self.db.get(Media, media_id)
        if media is None:
            raise ResourceNotFoundError("Media", media_id)
        event = await self.db.get(Event, media.event_id)
        resource = MediaResource.from_model(media, event)
        if not await self.policy.can(actor, Action.VIEW, ResourceType.MEDIA, resource):
            raise ResourceNotFoundError("Media", media_id)
        can_delete = actor is not None and await self.policy.can(actor, Action.DELETE, ResourceType.MEDIA, resource)
        return media, can_delete

    async def list_event_media(self, actor: UserContext | None, event_id: str) -> list[dict]:
        await self.get_event(actor, event_id)
        result = await self.db.execute(
            select(Media).where(Media.event_id == event_id).order_by(Media.uploaded_at.desc())
        )
        return await self.policy.augment_media_with_permissions(actor, result.scalars().all())

    # ── Membership ────────────────────────────────────────────────────────────

    async def join_event(
        self,
        actor: UserContext | None,
        event_id: str,
        invite_code: str | None = None,
        meta: RequestMeta | None = None,
    ) -> bool:
        """Join an event. Joining an event twice is a no-op. Returns True if a row was added."""
        if actor is None:
            raise AuthenticationError()
        event = await self.db.get(Event, event_id)
        if event is None:
            raise ResourceNotFoundError("Event", event_id)

        existing = await self.db.execute(
            select(EventParticipant.id).where(
                EventParticipant.event_id == event_id,
                EventParticipant.user_id == actor.id,
            )
        )
        if existing.first() is not None and not actor.is_banned:
            return False

        await self.policy.authorize(
            actor, Action.JOIN, ResourceType.EVENT, EventResource.from_model(event), invite_code=invite_code
        )
        self.db.add(EventParticipant(event_id=event_id, user_id=actor.id))
        await self.db.commit()
        logger.info("User %s joined event %s", actor.id, event_id)
        if self.audit is not None:
            await self.audit.log_activity(actor.id, "join", "event", event_id, None, meta)
        return True

    async def leave_event(self, actor: UserContext | None, event_id: str, meta: RequestMeta | None = None) -> int:
        """
        Leave an event, deleting the actor's own uploads to it first.

        Returns the number of media removed. If any upload could not be
        removed from storage the membership is kept and PartialFailureError
        is raised; the uploads that were removed stay removed.
        """
        event = await self.db.get(Event, event_id)
        if event is None:
            raise ResourceNotFoundError("Event", event_id)
        await self.policy.authorize(actor, Action.LEAVE, ResourceType.EVENT, EventResource.from_model(event))

        result = await self.db.execute(
            select(Media).where(Media.event_id == event_id, Media.uploaded_by_id == actor.id)
        )
        own_media = list(result.scalars().all())
        summary = await self.deletion.delete_media_bulk(own_media, own_media, actor.id, meta)
        if summary.failed:
            raise PartialFailureError(
                "Some of your uploads could not be deleted; you are still a participant",
                succeeded=summary.deleted,
                total=len(own_media),
                failed_ids=summary.failed_ids,
            )

        await self.db.execute(
            delete(EventParticipant).where(
                EventParticipant.event_id == event_id,
                EventParticipant.user_id == actor.id,
            )
        )
        await self.db.commit()
        logger.info("User %s left event %s (%d media removed)", actor.id, event_id, summary.deleted)
        if self.audit is not None:
            await self.audit.log_activity(actor.id, "leave", "event", event_id, None, meta)
        return summary.deleted

    # ── Banners ───────────────────────────────────────────────────────────────

    async def set_event_banner(
        self,
        actor: UserContext | None,
        event_id: str,
        data: bytes,
        mime_type: str,
        filename: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Event:
        event = await self.db.get(Event, event_id)
        if event is None:
            raise ResourceNotFoundError("Event", event_id)
        await self.policy.authorize(actor, Action.UPDATE, ResourceType.EVENT, EventResource.from_model(event))
        key = keys.event_banner_key(event_id, keys.file_extension(filename, mime_type))
        await self._replace_banner(event, key, data, mime_type, {"eventId": event_id})
        if self.audit is not None:
            await self.audit.log_activity(actor.id, "update_banner", "event", event_id, {"key": key}, meta)
        return event

    async def set_series_banner(
        self,
        actor: UserContext | None,
        series_id: str,
        data: bytes,
        mime_type: str,
        filename: str | None = None,
        meta: RequestMeta | None = None,
    ) -> Series:
        series = await self.db.get(Series, series_id)
        if series is None:
            raise ResourceNotFoundError("Series", series_id)
        await self.policy.authorize(actor, Action.UPDATE, ResourceType.SERIES, SeriesResource.from_model(series))
        key = keys.series_banner_key(series_id, keys.file_extension(filename, mime_type))
        await self._replace_banner(series, key, data, mime_type, {"seriesId": series_id})
        if self.audit is not None:
            await self.audit.log_activity(actor.id, "update_banner", "series", series_id, {"key": key}, meta)
        return series

    async def _replace_banner(self, owner: Event | Series, key: str, data: bytes, mime_type: str, tags: dict) -> None:
        """
        Store the new banner, point the row at it, then drop the previous
        object. A failed commit removes the new object again; a failed
        cleanup of the old one is left to the ghost-file sweep.
        """
        validate_banner_file(mime_type, len(data), self.limits)
        previous = owner.banner_s3_key
        await self.storage.put(data, key, mime_type, tags)

        owner.banner_s3_key = key
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            if key != previous:
                await self._delete_quietly(key)
            raise
        logger.info("Banner for %s %s stored at %s", type(owner).__name__.lower(), owner.id, key)

        if previous and previous != key:
            await self._delete_quietly(previous)

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self.storage.delete(key)
        except StorageError as e:
            logger.warning("Could not delete banner object %s: %s", key, e)

    # ── Deletion ──────────────────────────────────────────────────────────────

    async def delete_event(self, actor: UserContext | None, event_id: str, meta: RequestMeta | None = None) -> None:
        event = await self.db.get(Event, event_id)
        if event is None:
            raise ResourceNotFoundError("Event", event_id)
        await self.policy.authorize(actor, Action.DELETE, ResourceType.EVENT, EventResource.from_model(event))

        result = await self.deletion.delete_event(event, actor.id, meta)
        if not result.success:
            raise PartialFailureError(
                "Failed to delete some files from storage. Event was not deleted, "
                "but successfully deleted files were removed.",
                succeeded=len(result.successful_ids),
                total=result.total,
                failed_ids=result.failed_ids,
            )

    async def delete_series(self, actor: UserContext | None, series_id: str, meta: RequestMeta | None = None) -> None:
        series = await self.db.get(Series, series_id)
        if series is None:
            raise ResourceNotFoundError("Series", series_id)
        await self.policy.authorize(actor, Action.DELETE, ResourceType.SERIES, SeriesResource.from_model(series))

        result = await self.deletion.delete_series(series, actor.id, meta)
        if not result.success:
            raise StorageError("Failed to delete series banner from storage", key=series.banner_s3_key, operation="delete")

    async def delete_media(
        self, actor: UserContext | None, media_ids: list[str], meta: RequestMeta | None = None
    ) -> BulkDeleteSummary:
        """
        Delete the listed media the actor is allowed to delete.

        Raises PartialFailureError when none of the permitted items could be
        removed from storage; partial success is reported in the summary.
        """
        if actor is None:
            raise AuthenticationError()
        if not media_ids:
            raise ValidationError("media_ids must be a non-empty list", field="media_ids")
        if len(media_ids) > MAX_BULK_DELETE:
            raise ValidationError(f"At most {MAX_BULK_DELETE} items can be deleted at once", field="media_ids")

        result = await self.db.execute(select(Media).where(Media.id.in_(set(media_ids))))
        items = list(result.scalars().all())
        if not items:
            raise ResourceNotFoundError("Media")

        deletable = await self.policy.filter_deletable_media(actor, items)
        if not deletable:
            raise AuthorizationError("You do not have permission to delete any of the selected items")

        summary = await self.deletion.delete_media_bulk(items, deletable, actor.id, meta)
        if summary.deleted == 0:
            raise PartialFailureError(
                "All storage deletions failed. Database not modified.",
                succeeded=0,
                total=len(deletable),
                failed_ids=summary.failed_ids,
            )
        return summary

    async def delete_user(self, actor: UserContext | None, user_id: str, meta: RequestMeta | None = None) -> None:
        """Delete a user's content and anonymize the account (self-service or global admin)."""
        await self.policy.authorize(actor, Action.DELETE, ResourceType.USER, UserResource(id=user_id))
        if await self.db.get(User, user_id) is None:
            raise ResourceNotFoundError("User", user_id)

        result = await self.deletion.delete_user_content(user_id)
        if not result.anonymized:
            failed = result.media.failed_ids + result.events.failed_ids + result.series.failed_ids
            total = result.media.total + result.events.total + result.series.total
            raise PartialFailureError(
                "Some content could not be deleted; the account was kept",
                succeeded=total - len(failed),
                total=total,
                failed_ids=failed,
            )
        if self.audit is not None:
            await self.audit.log_activity(actor.id, "delete", "user", user_id, None, meta)
