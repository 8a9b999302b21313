"""
API Key Service

Creation, listing, revocation and validation of bearer API keys. Keys look
like ``evl_<prefix>_<secret>``; only a SHA-256 hash of the secret is stored.
Every successful validation counts against an hourly rate limit, with a
tighter limit for uploads.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.exceptions import (
    AuthenticationError,
    AuthorizationError,
    RateLimitExceededError,
    ResourceNotFoundError,
    ValidationError,
)
from eventlens.models import APIKey, User
from eventlens.models.api_key import API_KEY_PREFIX
from eventlens.policy import ApiKeyGrant
from eventlens.services.rate_limit_service import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 1000
UPLOAD_RATE_LIMIT = 100
RATE_LIMIT_WINDOW = 3600

MAX_KEYS_PER_USER = 10


def is_api_key(token: str | None) -> bool:
    return bool(token) and token.startswith(f"{API_KEY_PREFIX}_")


class APIKeyService:
    """Service for managing API keys."""

    def __init__(
        self,
        db: AsyncSession,
        rate_limiter: RateLimiter | None = None,
        rate_limit: int = DEFAULT_RATE_LIMIT,
        upload_rate_limit: int = UPLOAD_RATE_LIMIT,
    ):
        self.db = db
        self.rate_limiter = rate_limiter
        self.rate_limit = rate_limit
        self.upload_rate_limit = upload_rate_limit

    async def create_api_key(
        self, user_id: str, name: str | None = None, note: str | None = None, can_upload: bool = False
    ) -> dict:
        """
        Create a new API key.

        Returns:
            dict with key details; the full key is only ever returned here.
        """
        count = await self.db.scalar(
            select(func.count(APIKey.id)).where(APIKey.user_id == user_id, APIKey.is_revoked.is_(False))
        )
        if count >= MAX_KEYS_PER_USER:
            raise ValidationError(f"Maximum number of API keys ({MAX_KEYS_PER_USER}) reached.")

        full_key, prefix, secret = APIKey.generate_key()
        api_key = APIKey(
            name=name,
            note=note,
            key_prefix=prefix,
            key_hash=self._hash_secret(secret),
            user_id=user_id,
            can_upload=can_upload,
        )
        self.db.add(api_key)
        await self.db.commit()
        await self.db.refresh(api_key)

        logger.info("API key created for user %s: %s", user_id, prefix)
        return {
            **self._serialize(api_key),
            "key": full_key,
            "message": "Store this API key securely - it won't be shown again!",
        }

    async def get_user_keys(self, user_id: str) -> list[dict]:
        result = await self.db.execute(
            select(APIKey).where(APIKey.user_id == user_id).order_by(APIKey.created_at.desc())
        )
        return [self._serialize(k) for k in result.scalars().all()]

    async def revoke_api_key(self, key_id: str, user_id: str) -> None:
        api_key = await self.db.get(APIKey, key_id)
        if api_key is None or api_key.user_id != user_id:
            raise ResourceNotFoundError("API key", key_id)
        api_key.is_revoked = True
        await self.db.commit()
        logger.info("API key revoked: %s", api_key.key_prefix)

    async def validate_api_key(self, full_key: str, require_upload: bool = False) -> tuple[User, ApiKeyGrant]:
        """
        Resolve a bearer key to its owner.

        Raises:
            AuthenticationError: unknown, malformed or revoked key, or a missing owner
            AuthorizationError: banned owner, or an upload with a key lacking ``can_upload``
            RateLimitExceededError: the key's hourly budget is spent
        """
        parts = full_key.split("_", 2)
        if len(parts) != 3 or parts[0] != API_KEY_PREFIX:
            raise AuthenticationError("Invalid API key")
        prefix, secret = f"{parts[0]}_{parts[1]}", parts[2]

        result = await self.db.execute(select(APIKey).where(APIKey.key_prefix == prefix))
        api_key = result.scalar_one_or_none()
        if api_key is None or not self._verify_secret(secret, api_key.key_hash):
            raise AuthenticationError("Invalid API key")
        if api_key.is_revoked:
            raise AuthenticationError("API key has been revoked")

        user = await self.db.get(User, api_key.user_id)
        if user is None or user.deleted_at is not None:
            raise AuthenticationError("API key owner not found")
        if user.is_banned:
            raise AuthorizationError("User is banned")
        if require_upload and not api_key.can_upload:
            raise AuthorizationError("API key does not have upload permission")

        if self.rate_limiter is not None:
            limit = self.upload_rate_limit if require_upload else self.rate_limit
            bucket = "upload" if require_upload else "general"
            outcome = await self.rate_limiter.hit(
                f"api_key:{bucket}:{api_key.id}", limit, RATE_LIMIT_WINDOW, fail_open=False
            )
            if not outcome.success:
                raise RateLimitExceededError(retry_after=outcome.retry_after)

        api_key.last_used_at = datetime.now(timezone.utc)
        await self.db.commit()
        return user, ApiKeyGrant(id=api_key.id, can_upload=bool(api_key.can_upload))

    # ============== Private Methods ==============

    @staticmethod
    def _serialize(api_key: APIKey) -> dict:
        return {
            "id": api_key.id,
            "name": api_key.name,
            "note": api_key.note,
            "key_prefix": api_key.key_prefix,
            "can_upload": api_key.can_upload,
            "is_revoked": api_key.is_revoked,
            "last_used_at": api_key.last_used_at.isoformat() if api_key.last_used_at else None,
            "created_at": api_key.created_at.isoformat() if api_key.created_at else None,
        }

    def _hash_secret(self, secret: str) -> str:
        return hashlib.sha256(secret.encode()).hexdigest()

    def _verify_secret(self, secret: str, key_hash: str) -> bool:
        return hmac.compare_digest(self._hash_secret(secret), key_hash)
