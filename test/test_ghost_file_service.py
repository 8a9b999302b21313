"""
Tests for the ghost-file sweep
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from eventlens.models import DataExport, PendingUpload
from eventlens.models.enums import Visibility
from eventlens.services.ghost_file_service import GhostFileService
from utils.mock_utils import create_test_event, create_test_media

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
OLD = NOW - timedelta(days=2)
FRESH = NOW - timedelta(hours=1)


def stepping_clock(step: float):
    ticks = count()
    return lambda: next(ticks) * step


class TestGhostSweep:
    @pytest.mark.asyncio
    async def test_deletes_only_old_unreferenced_objects(self, test_db, storage, test_user):
        event = await create_test_event(test_db, test_user, Visibility.PUBLIC, banner_s3_key="events/e/banner.jpg")
        media = await create_test_media(test_db, event, test_user)
        test_user.avatar_s3_key = "users/avatars/alice.jpg"
        test_db.add(DataExport(user_id=test_user.id, status="completed", s3_key="exports/alice/1.zip"))
        await test_db.commit()

        for key in (
            media.s3_key,
            media.thumbnail_s3_key,
            "events/e/banner.jpg",
            "users/avatars/alice.jpg",
            "exports/alice/1.zip",
            "media/orphan/original.jpg",
        ):
            storage.add_object(key, last_modified=OLD)
        storage.add_object("media/in-flight/original.jpg", last_modified=FRESH)

        result = await GhostFileService(test_db, storage).sweep(now=NOW)

        assert result.completed is True
        assert result.next_cursor is None
        assert result.checked == 7
        assert result.deleted == 1
        assert result.sample_deleted_keys == ["media/orphan/original.jpg"]
        assert "media/in-flight/original.jpg" in storage.objects
        assert media.s3_key in storage.objects

    @pytest.mark.asyncio
    async def test_force_ignores_safety_threshold(self, test_db, storage):
        storage.add_object("media/in-flight/original.jpg", last_modified=FRESH)

        result = await GhostFileService(test_db, storage).sweep(force=True, now=NOW)

        assert result.deleted == 1
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_boundary_is_exclusive(self, test_db, storage):
        storage.add_object("media/edge/original.jpg", last_modified=NOW - timedelta(hours=24))
        result = await GhostFileService(test_db, storage).sweep(now=NOW)
        assert result.deleted == 0

    @pytest.mark.asyncio
    async def test_naive_timestamps_treated_as_utc(self, test_db, storage):
        storage.add_object("media/naive/original.jpg", last_modified=OLD.replace(tzinfo=None))
        result = await GhostFileService(test_db, storage).sweep(now=NOW)
        assert result.deleted == 1

    @pytest.mark.asyncio
    async def test_time_box_returns_cursor_and_resumes(self, test_db):
        from utils.mocks import InMemoryStorage

        storage = InMemoryStorage(page_size=2)
        for i in range(6):
            storage.add_object(f"media/{i}/original.jpg", last_modified=OLD)

        service = GhostFileService(test_db, storage, time_limit=15.0, clock=stepping_clock(10.0))
        first = await service.sweep(now=NOW)

        assert first.completed is False
        assert first.next_cursor is not None
        assert first.checked == 4

        second = await GhostFileService(test_db, storage).sweep(first.next_cursor, now=NOW)
        assert second.completed is True
        assert first.deleted + second.deleted == 6

    @pytest.mark.asyncio
    async def test_failed_deletes_are_counted(self, test_db, storage):
        storage.add_object("media/a/original.jpg", last_modified=OLD)
        storage.add_object("media/b/original.jpg", last_modified=OLD)
        storage.fail_delete.add("media/b/original.jpg")

        result = await GhostFileService(test_db, storage).sweep(now=NOW)

        assert (result.deleted, result.failed) == (1, 1)
        assert "media/b/original.jpg" in storage.objects

    @pytest.mark.asyncio
    async def test_sample_keys_are_capped(self, test_db, storage):
        for i in range(150):
            storage.add_object(f"media/{i:03d}/original.jpg", last_modified=OLD)

        result = await GhostFileService(test_db, storage).sweep(now=NOW)

        assert result.deleted == 150
        assert len(result.sample_deleted_keys) == 100

    @pytest.mark.asyncio
    async def test_empty_bucket(self, test_db, storage):
        result = await GhostFileService(test_db, storage).sweep(now=NOW)
        assert result.to_dict() == {
            "checked": 0,
            "deleted": 0,
            "failed": 0,
            "completed": True,
            "next_cursor": None,
            "sample_deleted_keys": [],
        }


class TestReservationExpiry:
    @pytest.mark.asyncio
    async def test_sweep_expires_stale_reservations(self, test_db, storage, test_user):
        event = await create_test_event(test_db, test_user, Visibility.PUBLIC)
        for media_id, issued in (("stale", OLD), ("recent", FRESH)):
            test_db.add(
                PendingUpload(
                    id=media_id,
                    s3_key=f"media/{media_id}/original.jpg",
                    event_id=event.id,
                    owner_id=test_user.id,
                    created_at=issued.replace(tzinfo=None),
                )
            )
        await test_db.commit()

        await GhostFileService(test_db, storage).sweep(now=NOW)

        assert await test_db.get(PendingUpload, "stale") is None
        assert await test_db.get(PendingUpload, "recent") is not None

    @pytest.mark.asyncio
    async def test_resumed_sweep_leaves_reservations(self, test_db, storage, test_user):
        event = await create_test_event(test_db, test_user, Visibility.PUBLIC)
        test_db.add(
            PendingUpload(
                id="stale",
                s3_key="media/stale/original.jpg",
                event_id=event.id,
                owner_id=test_user.id,
                created_at=OLD.replace(tzinfo=None),
            )
        )
        await test_db.commit()

        await GhostFileService(test_db, storage).sweep(cursor="media/", now=NOW)

        assert await test_db.get(PendingUpload, "stale") is not None
