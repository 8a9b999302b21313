"""
Ghost File Service

Finds storage objects that no database row references and deletes them.

A sweep walks the bucket listing page by page. On each page, objects older
than the safety threshold are checked against every column that can hold a
storage key; those referenced nowhere are deleted in one batch. The sweep
stops after ``time_limit`` seconds and returns the listing cursor, so callers
run it as a chain of short invocations until ``completed`` is true.

Objects younger than the threshold are never deleted: an upload is briefly
unreferenced between storing the original and inserting its row.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.models import DataExport, Event, Media, PendingUpload, Series, User
from eventlens.storage.base import ObjectStorage, StoredObject
from eventlens.utils.metrics import record_ghost_deletions

logger = logging.getLogger(__name__)

SAFETY_THRESHOLD = timedelta(hours=24)
TIME_LIMIT_SECONDS = 15.0
MAX_SAMPLE_KEYS = 100

# Every column that stores an object key.
REFERENCE_COLUMNS = (
    Media.s3_key,
    Media.thumbnail_s3_key,
    User.avatar_s3_key,
    Event.banner_s3_key,
    Series.banner_s3_key,
    DataExport.s3_key,
)


@dataclass
class SweepResult:
    checked: int = 0
    deleted: int = 0
    failed: int = 0
    completed: bool = False
    next_cursor: str | None = None
    sample_deleted_keys: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class GhostFileService:
    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        safety_threshold: timedelta = SAFETY_THRESHOLD,
        time_limit: float = TIME_LIMIT_SECONDS,
        clock=time.monotonic,
    ) -> None:
        self.db = db
        self.storage = storage
        self.safety_threshold = safety_threshold
        self.time_limit = time_limit
        self.clock = clock

    async def find_referenced_keys(self, keys: list[str]) -> set[str]:
        """Return the subset of *keys* referenced by any row, one query per column."""
        if not keys:
            return set()
        referenced: set[str] = set()
        for column in REFERENCE_COLUMNS:
            result = await self.db.execute(select(column).where(column.in_(keys)))
            referenced.update(k for k in result.scalars().all() if k)
        return referenced

    async def expire_reservations(self, cutoff: datetime) -> int:
        """Drop direct-upload reservations issued before *cutoff*; their objects become ordinary ghosts."""
        naive_cutoff = cutoff.astimezone(timezone.utc).replace(tzinfo=None)
        result = await self.db.execute(delete(PendingUpload).where(PendingUpload.created_at < naive_cutoff))
        await self.db.commit()
        if result.rowcount:
            logger.info("Expired %d abandoned upload reservations", result.rowcount)
        return result.rowcount

    def is_candidate(self, obj: StoredObject, cutoff: datetime) -> bool:
        last_modified = obj.last_modified
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)
        return last_modified < cutoff

    async def sweep(self, cursor: str | None = None, force: bool = False, now: datetime | None = None) -> SweepResult:
        """
        Run one time-boxed pass starting at *cursor*.

        With ``force`` the cutoff is *now* instead of now minus the safety
        threshold; only administrators trigger that mode.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now if force else now - self.safety_threshold
        started = self.clock()
        result = SweepResult()
        token = cursor

        logger.info("Ghost sweep starting (cursor=%s, force=%s, cutoff=%s)", cursor, force, cutoff.isoformat())
        if cursor is None:
            await self.expire_reservations(now - self.safety_threshold)

        while True:
            page = await self.storage.list(token)
            result.checked += len(page.objects)

            candidates = [o.key for o in page.objects if self.is_candidate(o, cutoff)]
            if candidates:
                referenced = await self.find_referenced_keys(candidates)
                ghosts = [k for k in candidates if k not in referenced]
                if ghosts:
                    await self._delete_ghosts(ghosts, result)

            token = page.next_token
            if not token:
                result.completed = True
                break
            if self.clock() - started >= self.time_limit:
                logger.info("Ghost sweep time limit reached after %d objects; resume at %s", result.checked, token)
                break

        result.next_cursor = None if result.completed else token
        logger.info(
            "Ghost sweep finished: checked=%d deleted=%d failed=%d completed=%s",
            result.checked,
            result.deleted,
            result.failed,
            result.completed,
        )
        return result

    async def _delete_ghosts(self, ghosts: list[str], result: SweepResult) -> None:
        outcome = await self.storage.delete_batch(ghosts)
        result.deleted += len(outcome.deleted)
        record_ghost_deletions(len(outcome.deleted))
        result.failed += len(outcome.failed)
        room = MAX_SAMPLE_KEYS - len(result.sample_deleted_keys)
        if room > 0:
            result.sample_deleted_keys.extend(outcome.deleted[:room])
        for key, code in outcome.failed.items():
            logger.warning("Could not delete ghost object %s: %s", key, code)
