"""
Tests for API Key functionality and the Redis-backed rate limiter.
"""

import time

import pytest

from eventlens.exceptions import AuthenticationError, AuthorizationError, RateLimitExceededError, ValidationError
from eventlens.models.api_key import APIKey
from eventlens.services.api_key_service import MAX_KEYS_PER_USER, APIKeyService, is_api_key
from eventlens.services.rate_limit_service import RateLimiter, RateLimitResult
from utils.mock_utils import create_test_user
from utils.mocks import FakeRedis


class TestAPIKeyModel:
    def test_generate_key(self):
        """Test API key generation."""
        full_key, prefix, secret = APIKey.generate_key()

        assert full_key.startswith("evl_")
        assert len(prefix) == 12  # evl_ + 8 hex chars
        assert len(secret) >= 32
        assert full_key == f"{prefix}_{secret}"

    def test_is_api_key(self):
        assert is_api_key("evl_1a2b3c4d_secret") is True
        assert is_api_key("eyJhbGciOiJIUzI1NiJ9.payload.sig") is False
        assert is_api_key(None) is False


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_counts_within_window(self):
        limiter = RateLimiter(FakeRedis())

        first = await limiter.hit("k", limit=2, window_seconds=60)
        second = await limiter.hit("k", limit=2, window_seconds=60)
        third = await limiter.hit("k", limit=2, window_seconds=60)

        assert (first.success, first.remaining) == (True, 1)
        assert (second.success, second.remaining) == (True, 0)
        assert third.success is False
        assert 0 < third.retry_after <= 61

    @pytest.mark.asyncio
    async def test_expiry_set_on_first_hit_only(self):
        redis = FakeRedis()
        limiter = RateLimiter(redis)
        await limiter.hit("k", limit=5, window_seconds=60)
        redis.ttls["rate_limit:k"] = 1234
        await limiter.hit("k", limit=5, window_seconds=60)
        assert redis.ttls["rate_limit:k"] == 1234

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_open", [True, False])
    async def test_backend_failure_follows_policy(self, fail_open):
        limiter = RateLimiter(FakeRedis(fail=True), fail_open=fail_open)
        result = await limiter.hit("k", limit=5, window_seconds=60)
        assert result.success is fail_open

    @pytest.mark.asyncio
    async def test_per_call_override(self):
        limiter = RateLimiter(None, fail_open=True)
        assert (await limiter.hit("k", 5, 60)).success is True
        assert (await limiter.hit("k", 5, 60, fail_open=False)).success is False

    def test_retry_after_never_negative(self):
        assert RateLimitResult(success=False, remaining=0, reset_at=time.time() - 100).retry_after == 0


class TestAPIKeyService:
    @pytest.mark.asyncio
    async def test_create_and_validate(self, test_db, test_user):
        service = APIKeyService(test_db)
        created = await service.create_api_key(test_user.id, name="Camera", can_upload=True)

        user, grant = await service.validate_api_key(created["key"], require_upload=True)

        assert user.id == test_user.id
        assert grant.id == created["id"]
        assert grant.can_upload is True
        key = await test_db.get(APIKey, created["id"])
        assert key.key_hash != created["key"]
        assert key.last_used_at is not None

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, test_db, test_user):
        service = APIKeyService(test_db)
        created = await service.create_api_key(test_user.id)
        with pytest.raises(AuthenticationError):
            await service.validate_api_key(created["key_prefix"] + "_not-the-secret")
        with pytest.raises(AuthenticationError):
            await service.validate_api_key("evl_garbage")

    @pytest.mark.asyncio
    async def test_revoked_key_rejected(self, test_db, test_user):
        service = APIKeyService(test_db)
        created = await service.create_api_key(test_user.id)
        await service.revoke_api_key(created["id"], test_user.id)
        with pytest.raises(AuthenticationError):
            await service.validate_api_key(created["key"])

    @pytest.mark.asyncio
    async def test_banned_owner_forbidden(self, test_db):
        banned = await create_test_user(test_db, "Banned", is_banned=True)
        service = APIKeyService(test_db)
        created = await service.create_api_key(banned.id)
        with pytest.raises(AuthorizationError):
            await service.validate_api_key(created["key"])

    @pytest.mark.asyncio
    async def test_upload_needs_grant(self, test_db, test_user):
        service = APIKeyService(test_db)
        created = await service.create_api_key(test_user.id, can_upload=False)
        await service.validate_api_key(created["key"])
        with pytest.raises(AuthorizationError):
            await service.validate_api_key(created["key"], require_upload=True)

    @pytest.mark.asyncio
    async def test_upload_budget_is_separate(self, test_db, test_user):
        service = APIKeyService(test_db, rate_limiter=RateLimiter(FakeRedis()), rate_limit=5, upload_rate_limit=1)
        created = await service.create_api_key(test_user.id, can_upload=True)

        await service.validate_api_key(created["key"], require_upload=True)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await service.validate_api_key(created["key"], require_upload=True)
        assert exc_info.value.retry_after > 0
        await service.validate_api_key(created["key"])

    @pytest.mark.asyncio
    async def test_fails_closed_without_redis(self, test_db, test_user):
        service = APIKeyService(test_db, rate_limiter=RateLimiter(FakeRedis(fail=True), fail_open=True))
        created = await service.create_api_key(test_user.id)
        with pytest.raises(RateLimitExceededError):
            await service.validate_api_key(created["key"])

    @pytest.mark.asyncio
    async def test_key_limit_per_user(self, test_db, test_user):
        service = APIKeyService(test_db)
        for _ in range(MAX_KEYS_PER_USER):
            await service.create_api_key(test_user.id)
        with pytest.raises(ValidationError):
            await service.create_api_key(test_user.id)

    @pytest.mark.asyncio
    async def test_listing_never_exposes_secret(self, test_db, test_user):
        service = APIKeyService(test_db)
        await service.create_api_key(test_user.id, name="Script")
        keys = await service.get_user_keys(test_user.id)
        assert len(keys) == 1
        assert "key" not in keys[0]
        assert keys[0]["name"] == "Script"
