"""
Cascade Deletion Service

Deletes entities together with the storage objects they own. Every call site
follows the same two-phase shape:

  1. delete each dependent's objects from storage, recording which succeeded;
  2. remove only the rows whose objects are confirmed gone.

A parent row (event, series, user) is removed only when all of its
dependents are gone. When nothing could be deleted from storage, the
database is left untouched so the operation can simply be retried.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.exceptions import StorageError
from eventlens.models import (
    DataExport,
    Event,
    EventAdmin,
    EventParticipant,
    Media,
    Report,
    ReportStatus,
    Series,
    SeriesAdmin,
    User,
)
from eventlens.services.event_bus import EventBus
from eventlens.storage.base import ObjectStorage
from eventlens.utils.activity_log import AuditLogger, RequestMeta
from eventlens.utils.metrics import record_cascade_failure

logger = logging.getLogger(__name__)

DELETED_USER_NAME = "Deleted User"
DELETED_EMAIL_DOMAIN = "deleted.invalid"


@dataclass
class CascadeResult:
    success: bool
    successful_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful_ids) + len(self.failed_ids)


@dataclass
class BulkDeleteSummary:
    deleted: int = 0
    deleted_ids: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)


@dataclass
class UserDeletionResult:
    anonymized: bool
    media: CascadeResult
    events: CascadeResult
    series: CascadeResult


class CascadeDeletionService:
    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        audit: AuditLogger | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.db = db
        self.storage = storage
        self.audit = audit
        self.events = events

    # ── Storage phase ─────────────────────────────────────────────────────────

    async def delete_batch_media(self, items: list[Media]) -> CascadeResult:
        """
        Delete the original and thumbnail of every item from storage.

        An item succeeds only if all of its keys were deleted; absent keys
        count as deleted. Rows are not touched here.
        """
        if not items:
            return CascadeResult(success=True)

        keys_by_item = {}
        for item in items:
            item_keys = [item.s3_key]
            if item.thumbnail_s3_key and item.thumbnail_s3_key != item.s3_key:
                item_keys.append(item.thumbnail_s3_key)
            keys_by_item[item.id] = item_keys

        outcome = await self.storage.delete_batch([k for ks in keys_by_item.values() for k in ks])

        result = CascadeResult(success=True)
        for media_id, item_keys in keys_by_item.items():
            if any(k in outcome.failed for k in item_keys):
                result.failed_ids.append(media_id)
            else:
                result.successful_ids.append(media_id)
        result.success = not result.failed_ids
        if result.failed_ids:
            logger.warning("Storage deletion failed for %d of %d media", len(result.failed_ids), len(items))
        return result

    async def _delete_object(self, key: str | None, what: str) -> bool:
        if not key:
            return True
        try:
            await self.storage.delete(key)
            return True
        except StorageError as e:
            logger.error("Failed to delete %s %s: %s", what, key, e)
            return False

    # ── Database phase ────────────────────────────────────────────────────────

    async def _remove_media_rows(self, media_ids: list[str], resolved_by_id: str | None = None) -> None:
        if not media_ids:
            return
        now = datetime.now(timezone.utc)
        await self.db.execute(
            update(Report)
            .where(Report.media_id.in_(media_ids), Report.status == ReportStatus.PENDING)
            .values(
                status=ReportStatus.RESOLVED,
                resolved_at=now,
                resolved_by_id=resolved_by_id,
                resolution_notes="Media deleted",
            )
        )
        await self.db.execute(delete(Media).where(Media.id.in_(media_ids)))

    async def _remove_event_rows(self, event_ids: list[str]) -> None:
        if not event_ids:
            return
        await self.db.execute(delete(EventParticipant).where(EventParticipant.event_id.in_(event_ids)))
        await self.db.execute(delete(EventAdmin).where(EventAdmin.event_id.in_(event_ids)))
        await self.db.execute(delete(Event).where(Event.id.in_(event_ids)))

    async def _remove_series_rows(self, series_ids: list[str]) -> None:
        if not series_ids:
            return
        await self.db.execute(update(Event).where(Event.series_id.in_(series_ids)).values(series_id=None))
        await self.db.execute(delete(SeriesAdmin).where(SeriesAdmin.series_id.in_(series_ids)))
        await self.db.execute(delete(Series).where(Series.id.in_(series_ids)))

    async def _media_for(self, *criteria) -> list[Media]:
        result = await self.db.execute(select(Media).where(*criteria))
        return list(result.scalars().all())

    def _emit_deleted(self, items: list[Media], deleted_ids: list[str]) -> None:
        if self.events is None:
            return
        deleted = set(deleted_ids)
        for item in items:
            if item.id in deleted:
                deleted.discard(item.id)
                self.events.emit("media.deleted", {"media_id": item.id, "event_id": item.event_id})

    async def _clear_event_banners(self, event_ids: list[str]) -> None:
        """Events that outlive a cascade must not point at a banner object that is already gone."""
        if event_ids:
            await self.db.execute(update(Event).where(Event.id.in_(event_ids)).values(banner_s3_key=None))

    # ── Call sites ────────────────────────────────────────────────────────────

    async def delete_media_bulk(
        self,
        items: list[Media],
        deletable: list[Media],
        actor_id: str | None = None,
        meta: RequestMeta | None = None,
    ) -> BulkDeleteSummary:
        """
        Delete the *deletable* subset of *items*. Items the actor may not
        delete are counted as skipped. If every storage deletion fails the
        database is not modified.
        """
        summary = BulkDeleteSummary(skipped=len(items) - len(deletable))
        if not deletable:
            return summary
        storage_result = await self.delete_batch_media(deletable)
        summary.failed_ids = storage_result.failed_ids
        summary.failed = len(storage_result.failed_ids)

        if not storage_result.successful_ids:
            record_cascade_failure("media_bulk")
            logger.warning("Bulk media delete: all %d storage deletions failed; database untouched", len(deletable))
            return summary

        await self._remove_media_rows(storage_result.successful_ids, actor_id)
        await self.db.commit()

        summary.deleted = len(storage_result.successful_ids)
        summary.deleted_ids = storage_result.successful_ids
        if self.audit is not None:
            await self.audit.log_activity(
                actor_id,
                "delete",
                "media_bulk",
                "bulk",
                {"count": summary.deleted, "ids": summary.deleted_ids},
                meta,
            )
        self._emit_deleted(deletable, summary.deleted_ids)
        return summary

    async def delete_event(self, event: Event, actor_id: str | None = None, meta: RequestMeta | None = None) -> CascadeResult:
        """
        Delete an event, its media and its banner.

        Media whose objects were deleted are removed even when others fail;
        the event row itself survives any failure.
        """
        event_id = event.id
        event_media = await self._media_for(Media.event_id == event_id)
        media_result = await self.delete_batch_media(event_media)
        banner_deleted = await self._delete_object(event.banner_s3_key, "event banner")

        await self._remove_media_rows(media_result.successful_ids, actor_id)
        if media_result.success and banner_deleted:
            await self._remove_event_rows([event_id])
        elif banner_deleted and event.banner_s3_key:
            await self._clear_event_banners([event_id])
        await self.db.commit()
        self._emit_deleted(event_media, media_result.successful_ids)

        if not (media_result.success and banner_deleted):
            record_cascade_failure("event")
            logger.warning(
                "Event %s kept: %d of %d media deleted, banner deleted=%s",
                event_id,
                len(media_result.successful_ids),
                len(event_media),
                banner_deleted,
            )
            return CascadeResult(
                success=False,
                successful_ids=media_result.successful_ids,
                failed_ids=media_result.failed_ids,
            )

        logger.info("Deleted event %s with %d media", event_id, len(event_media))
        if self.audit is not None:
            await self.audit.log_activity(actor_id, "delete", "event", event_id, {"media_count": len(event_media)}, meta)
        if self.events is not None:
            self.events.emit("event.deleted", {"event_id": event_id})
        return CascadeResult(success=True, successful_ids=media_result.successful_ids)

    async def delete_series(self, series: Series, actor_id: str | None = None, meta: RequestMeta | None = None) -> CascadeResult:
        """Delete a series and its banner. Its events are kept and detached."""
        series_id = series.id
        if not await self._delete_object(series.banner_s3_key, "series banner"):
            record_cascade_failure("series")
            return CascadeResult(success=False, failed_ids=[series_id])

        await self._remove_series_rows([series_id])
        await self.db.commit()
        logger.info("Deleted series %s", series_id)
        if self.audit is not None:
            await self.audit.log_activity(actor_id, "delete", "series", series_id, None, meta)
        return CascadeResult(success=True, successful_ids=[series_id])

    async def delete_user_content(self, user_id: str) -> UserDeletionResult:
        """
        Remove everything a user owns, then anonymize their row.

        The row is anonymized only if all media, events and series were
        removed; otherwise it is kept for manual follow-up, minus any
        avatar or banner keys whose objects are already gone.
        """
        own_media = await self._media_for(Media.uploaded_by_id == user_id)
        all_media = list(own_media)
        media_result = await self.delete_batch_media(own_media)
        orphaned_banners: list[str] = []

        events_result = CascadeResult(success=True)
        event_rows = await self.db.execute(select(Event).where(Event.created_by_id == user_id))
        for event in event_rows.scalars().all():
            banner_deleted = await self._delete_object(event.banner_s3_key, "event banner")
            event_media = await self._media_for(Media.event_id == event.id)
            all_media.extend(event_media)
            event_media_result = await self.delete_batch_media(event_media)
            media_result.successful_ids.extend(
                i for i in event_media_result.successful_ids if i not in media_result.successful_ids
            )
            if banner_deleted and event_media_result.success:
                events_result.successful_ids.append(event.id)
            else:
                events_result.failed_ids.append(event.id)
                if banner_deleted and event.banner_s3_key:
                    orphaned_banners.append(event.id)
        events_result.success = not events_result.failed_ids

        series_result = CascadeResult(success=True)
        series_rows = await self.db.execute(select(Series).where(Series.created_by_id == user_id))
        for series in series_rows.scalars().all():
            if await self._delete_object(series.banner_s3_key, "series banner"):
                series_result.successful_ids.append(series.id)
            else:
                series_result.failed_ids.append(series.id)
        series_result.success = not series_result.failed_ids

        user = await self.db.get(User, user_id)
        if user is not None and await self._delete_object(user.avatar_s3_key, "avatar"):
            user.avatar_s3_key = None
        export_rows = await self.db.execute(select(DataExport.s3_key).where(DataExport.user_id == user_id))
        for key in export_rows.scalars().all():
            await self._delete_object(key, "data export")

        await self._remove_media_rows(media_result.successful_ids)
        await self._remove_event_rows(events_result.successful_ids)
        await self._clear_event_banners(orphaned_banners)
        await self._remove_series_rows(series_result.successful_ids)
        await self.db.execute(delete(DataExport).where(DataExport.user_id == user_id))

        anonymized = False
        if user is not None and media_result.success and events_result.success and series_result.success:
            self._anonymize(user)
            anonymized = True
        else:
            record_cascade_failure("user")
            logger.warning(
                "Partial deletion for user %s; record preserved (failed media=%s events=%s series=%s)",
                user_id,
                media_result.failed_ids,
                events_result.failed_ids,
                series_result.failed_ids,
            )
        await self.db.commit()
        self._emit_deleted(all_media, media_result.successful_ids)

        return UserDeletionResult(
            anonymized=anonymized,
            media=media_result,
            events=events_result,
            series=series_result,
        )

    @staticmethod
    def _anonymize(user: User) -> None:
        now = datetime.now(timezone.utc)
        user.name = DELETED_USER_NAME
        user.preferred_name = None
        user.email = f"deleted-{user.id}@{DELETED_EMAIL_DOMAIN}"
        user.external_id = f"deleted-{user.id}"
        user.handle = f"deleted-{user.id}"
        user.bio = None
        user.avatar_s3_key = None
        user.social_links = None
        user.is_banned = False
        user.deleted_at = now
        user.updated_at = now
