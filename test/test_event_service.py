"""
Tests for the authorized event, membership and deletion entry points
"""

import pytest

from eventlens.exceptions import (
    AuthenticationError,
    AuthorizationError,
    PartialFailureError,
    ResourceNotFoundError,
    StorageError,
    ValidationError,
)
from eventlens.models import Media
from eventlens.models.enums import Visibility
from eventlens.services.event_service import EventService
from utils.mock_utils import (
    add_event_admin,
    add_participant,
    add_series_admin,
    create_test_event,
    create_test_media,
    create_test_series,
    create_test_user,
    jpeg_bytes,
)


@pytest.fixture
def service(test_db, storage, audit):
    return EventService(test_db, storage, audit=audit)


class TestLookups:
    @pytest.mark.asyncio
    async def test_hidden_event_is_not_found(self, test_db, service, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.UNLISTED)
        with pytest.raises(ResourceNotFoundError):
            await service.get_event(await actor_for(test_user), event.id)
        with pytest.raises(ResourceNotFoundError):
            await service.get_event(None, event.id)

    @pytest.mark.asyncio
    async def test_list_events_for_anonymous_and_members(self, test_db, service, test_user, other_user, actor_for):
        public = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        private = await create_test_event(test_db, other_user, Visibility.AUTH_REQUIRED)
        unlisted = await create_test_event(test_db, other_user, Visibility.UNLISTED)

        assert [e.id for e in await service.list_events(None)] == [public.id]

        await add_participant(test_db, unlisted, test_user)
        visible = {e.id for e in await service.list_events(await actor_for(test_user))}
        assert visible == {public.id, private.id, unlisted.id}

    @pytest.mark.asyncio
    async def test_banned_lists_nothing(self, test_db, service, other_user, actor_for):
        await create_test_event(test_db, other_user, Visibility.PUBLIC)
        banned = await create_test_user(test_db, "Banned", is_banned=True)
        assert await service.list_events(await actor_for(banned)) == []

    @pytest.mark.asyncio
    async def test_media_carries_can_delete(self, test_db, service, storage, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        own = await create_test_media(test_db, event, test_user, storage)
        theirs = await create_test_media(test_db, event, other_user, storage)
        actor = await actor_for(test_user)

        assert (await service.get_media(actor, own.id))[1] is True
        assert (await service.get_media(actor, theirs.id))[1] is False
        assert (await service.get_media(None, own.id))[1] is False

        items = {i["id"]: i["can_delete"] for i in await service.list_event_media(actor, event.id)}
        assert items == {own.id: True, theirs.id: False}


class TestMembership:
    @pytest.mark.asyncio
    async def test_join_twice_is_noop(self, test_db, service, audit, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        actor = await actor_for(test_user)

        assert await service.join_event(actor, event.id) is True
        assert await service.join_event(actor, event.id) is False
        assert len(audit.get_logs_for_action("join")) == 1

    @pytest.mark.asyncio
    async def test_join_requires_invite_code(self, test_db, service, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, requires_invite=True, invite_code="abc123")
        actor = await actor_for(test_user)

        with pytest.raises(AuthorizationError):
            await service.join_event(actor, event.id, "nope")
        assert await service.join_event(actor, event.id, "abc123") is True

    @pytest.mark.asyncio
    async def test_join_anonymous(self, test_db, service, other_user):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        with pytest.raises(AuthenticationError):
            await service.join_event(None, event.id)

    @pytest.mark.asyncio
    async def test_leave_deletes_own_media(self, test_db, service, storage, test_user, other_user, actor_for, row_exists):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)
        own = await create_test_media(test_db, event, test_user, storage)
        theirs = await create_test_media(test_db, event, other_user, storage)

        removed = await service.leave_event(await actor_for(test_user), event.id)

        assert removed == 1
        assert not await row_exists(Media, own.id)
        assert await row_exists(Media, theirs.id)
        assert not await service.policy._is_participant(test_user.id, event.id)

    @pytest.mark.asyncio
    async def test_leave_keeps_membership_on_storage_failure(
        self, test_db, service, storage, test_user, other_user, actor_for
    ):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)
        kept = await create_test_media(test_db, event, test_user, storage)
        removed = await create_test_media(test_db, event, test_user, storage)
        storage.fail_delete.add(kept.s3_key)

        with pytest.raises(PartialFailureError) as exc_info:
            await service.leave_event(await actor_for(test_user), event.id)

        assert exc_info.value.details["failed_ids"] == [kept.id]
        assert removed.s3_key not in storage.objects
        assert await service.policy._is_participant(test_user.id, event.id)

    @pytest.mark.asyncio
    async def test_leave_requires_membership(self, test_db, service, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        with pytest.raises(AuthorizationError):
            await service.leave_event(await actor_for(test_user), event.id)


class TestBanners:
    @pytest.mark.asyncio
    async def test_event_admin_sets_banner(self, test_db, service, storage, audit, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_event_admin(test_db, event, test_user)

        updated = await service.set_event_banner(await actor_for(test_user), event.id, jpeg_bytes(), "image/jpeg", "b.jpg")

        assert updated.banner_s3_key == f"events/{event.id}/banner.jpg"
        assert updated.banner_s3_key in storage.objects
        assert audit.get_logs_for_action("update_banner")[0]["resource_type"] == "event"

    @pytest.mark.asyncio
    async def test_replacing_banner_removes_previous_object(self, test_db, service, storage, test_admin, actor_for):
        event = await create_test_event(test_db, test_admin, Visibility.PUBLIC)
        actor = await actor_for(test_admin)
        await service.set_event_banner(actor, event.id, jpeg_bytes(), "image/jpeg", "b.jpg")

        updated = await service.set_event_banner(actor, event.id, b"\x89PNG", "image/png", "b.png")

        assert updated.banner_s3_key == f"events/{event.id}/banner.png"
        assert f"events/{event.id}/banner.jpg" not in storage.objects
        assert updated.banner_s3_key in storage.objects

    @pytest.mark.asyncio
    async def test_participant_cannot_set_banner(self, test_db, service, storage, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)

        with pytest.raises(AuthorizationError):
            await service.set_event_banner(await actor_for(test_user), event.id, jpeg_bytes(), "image/jpeg")
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_banner_type_and_size_checked(self, test_db, service, storage, test_admin, actor_for):
        event = await create_test_event(test_db, test_admin, Visibility.PUBLIC)
        actor = await actor_for(test_admin)

        with pytest.raises(ValidationError):
            await service.set_event_banner(actor, event.id, b"x", "image/heic")
        with pytest.raises(ValidationError):
            await service.set_event_banner(actor, event.id, b"\0" * (10 * 1024 * 1024 + 1), "image/jpeg")
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_series_admin_sets_series_banner(self, test_db, service, storage, test_user, other_user, actor_for):
        series = await create_test_series(test_db, other_user)
        await add_series_admin(test_db, series, test_user)

        updated = await service.set_series_banner(await actor_for(test_user), series.id, jpeg_bytes(), "image/jpeg", "s.jpg")

        assert updated.banner_s3_key == f"series/{series.id}/banner.jpg"
        assert updated.banner_s3_key in storage.objects

    @pytest.mark.asyncio
    async def test_missing_series(self, service, test_admin, actor_for):
        with pytest.raises(ResourceNotFoundError):
            await service.set_series_banner(await actor_for(test_admin), "missing", jpeg_bytes(), "image/jpeg")


class TestDeletion:
    @pytest.mark.asyncio
    async def test_delete_media_skips_foreign_items(self, test_db, service, storage, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        own = await create_test_media(test_db, event, test_user, storage)
        theirs = await create_test_media(test_db, event, other_user, storage)

        summary = await service.delete_media(await actor_for(test_user), [own.id, theirs.id])

        assert summary.deleted_ids == [own.id]
        assert summary.skipped == 1

    @pytest.mark.asyncio
    async def test_delete_media_nothing_permitted(self, test_db, service, storage, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        theirs = await create_test_media(test_db, event, other_user, storage)
        with pytest.raises(AuthorizationError):
            await service.delete_media(await actor_for(test_user), [theirs.id])

    @pytest.mark.asyncio
    async def test_delete_media_all_failed(self, test_db, service, storage, test_user, other_user, actor_for, row_exists):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        own = await create_test_media(test_db, event, test_user, storage)
        storage.fail_all_deletes = True

        with pytest.raises(PartialFailureError) as exc_info:
            await service.delete_media(await actor_for(test_user), [own.id])
        assert exc_info.value.status_code == 409
        assert await row_exists(Media, own.id)

    @pytest.mark.asyncio
    async def test_delete_media_limits(self, service, test_user, actor_for):
        actor = await actor_for(test_user)
        with pytest.raises(ValidationError):
            await service.delete_media(actor, [])
        with pytest.raises(ValidationError):
            await service.delete_media(actor, [str(i) for i in range(101)])
        with pytest.raises(ResourceNotFoundError):
            await service.delete_media(actor, [str(i) for i in range(100)])
        with pytest.raises(ResourceNotFoundError):
            await service.delete_media(actor, ["missing"])

    @pytest.mark.asyncio
    async def test_delete_event_partial_failure(self, test_db, service, storage, test_user, actor_for):
        event = await create_test_event(test_db, test_user, Visibility.PUBLIC)
        await add_event_admin(test_db, event, test_user)
        media = await create_test_media(test_db, event, test_user, storage)
        await create_test_media(test_db, event, test_user, storage)
        storage.fail_delete.add(media.thumbnail_s3_key)

        with pytest.raises(PartialFailureError) as exc_info:
            await service.delete_event(await actor_for(test_user), event.id)
        assert exc_info.value.details["succeeded"] == 1
        assert exc_info.value.details["total"] == 2

    @pytest.mark.asyncio
    async def test_delete_event_requires_admin(self, test_db, service, test_user, other_user, actor_for):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        with pytest.raises(AuthorizationError):
            await service.delete_event(await actor_for(test_user), event.id)

    @pytest.mark.asyncio
    async def test_delete_series_banner_failure(self, test_db, service, storage, test_admin, actor_for):
        series = await create_test_series(test_db, test_admin, banner_s3_key="series/s/banner.jpg")
        storage.fail_delete.add("series/s/banner.jpg")
        with pytest.raises(StorageError):
            await service.delete_series(await actor_for(test_admin), series.id)

    @pytest.mark.asyncio
    async def test_delete_user_self_service(self, test_db, service, audit, test_user, actor_for):
        await service.delete_user(await actor_for(test_user), test_user.id)
        assert test_user.deleted_at is not None
        assert audit.get_logs_for_action("delete")[-1]["resource_type"] == "user"

    @pytest.mark.asyncio
    async def test_delete_other_user_forbidden(self, service, test_user, other_user, actor_for):
        with pytest.raises(AuthorizationError):
            await service.delete_user(await actor_for(test_user), other_user.id)

    @pytest.mark.asyncio
    async def test_admin_deletes_user(self, test_db, service, storage, test_admin, other_user, actor_for, row_exists):
        event = await create_test_event(test_db, test_admin, Visibility.PUBLIC)
        await add_participant(test_db, event, other_user)
        media = await create_test_media(test_db, event, other_user, storage)

        await service.delete_user(await actor_for(test_admin), other_user.id)

        assert other_user.name == "Deleted User"
        assert not await row_exists(Media, media.id)
