"""
Storage Quota Service

Per-user storage limits. Usage is recomputed from the media table on every
check rather than kept in a counter, so concurrent uploads can overshoot a
limit by at most the size of the files in flight.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.exceptions import QuotaExceededError
from eventlens.models import Media, User

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_LIMIT = 20 * 1024 * 1024 * 1024
UNLIMITED_STORAGE = -1


@dataclass(frozen=True)
class StorageCheck:
    allowed: bool
    current_usage: int
    limit: int
    is_unlimited: bool


class StorageQuotaService:
    def __init__(self, db: AsyncSession, default_limit: int = DEFAULT_STORAGE_LIMIT) -> None:
        self.db = db
        self.default_limit = default_limit

    async def get_user_storage_usage(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Media.file_size), 0)).where(Media.uploaded_by_id == user_id)
        )
        return int(result.scalar_one())

    async def check_storage_limit(self, user_id: str, additional_bytes: int = 0) -> StorageCheck:
        """Report whether *user_id* may store *additional_bytes* more."""
        user = await self.db.get(User, user_id)
        if user is None or user.is_banned:
            return StorageCheck(allowed=False, current_usage=0, limit=0, is_unlimited=False)

        current_usage = await self.get_user_storage_usage(user_id)
        limit = user.storage_limit if user.storage_limit is not None else self.default_limit

        if user.is_global_admin or limit == UNLIMITED_STORAGE:
            return StorageCheck(allowed=True, current_usage=current_usage, limit=UNLIMITED_STORAGE, is_unlimited=True)

        return StorageCheck(
            allowed=current_usage + additional_bytes <= limit,
            current_usage=current_usage,
            limit=limit,
            is_unlimited=False,
        )

    async def ensure_within_limit(self, user_id: str, additional_bytes: int) -> StorageCheck:
        check = await self.check_storage_limit(user_id, additional_bytes)
        if not check.allowed:
            logger.info(
                "Upload of %d bytes rejected for %s: %d of %d used", additional_bytes, user_id, check.current_usage, check.limit
            )
            raise QuotaExceededError(current_usage=check.current_usage, limit=check.limit, requested=additional_bytes)
        return check
