"""
HTTP tests for the media, event, storage, API key and monitoring routes
"""

from datetime import datetime, timedelta, timezone

import pytest

from eventlens.config import settings
from eventlens.models.enums import Visibility
from eventlens.services.api_key_service import APIKeyService
from utils.mock_utils import add_participant, create_test_event, create_test_media, jpeg_bytes


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "eventlens_media_uploads" in response.text


class TestEventRoutes:
    @pytest.mark.asyncio
    async def test_hidden_event_is_404_with_error_body(self, client, test_db, test_user, other_user, auth_headers):
        event = await create_test_event(test_db, other_user, Visibility.UNLISTED)

        response = await client.get(f"/api/events/{event.id}", headers=auth_headers(test_user))

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["type"] == "Not Found"
        assert error["path"] == f"/api/events/{event.id}"

    @pytest.mark.asyncio
    async def test_list_events_anonymous(self, client, test_db, other_user):
        public = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await create_test_event(test_db, other_user, Visibility.AUTH_REQUIRED)

        response = await client.get("/api/events")

        assert response.status_code == 200
        assert [e["id"] for e in response.json()] == [public.id]

    @pytest.mark.asyncio
    async def test_join_and_leave(self, client, test_db, test_user, other_user, auth_headers):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        headers = auth_headers(test_user)

        joined = await client.post(f"/api/events/{event.id}/join", headers=headers)
        left = await client.post(f"/api/events/{event.id}/leave", headers=headers)

        assert joined.json() == {"success": True, "joined": True}
        assert left.json() == {"success": True, "media_deleted": 0}

    @pytest.mark.asyncio
    async def test_delete_event_partial_failure_is_409(self, client, test_db, storage, test_admin, auth_headers):
        event = await create_test_event(test_db, test_admin, Visibility.PUBLIC)
        media = await create_test_media(test_db, event, test_admin, storage)
        storage.fail_delete.add(media.s3_key)

        response = await client.delete(f"/api/events/{event.id}", headers=auth_headers(test_admin))

        assert response.status_code == 409
        assert response.json()["error"]["details"]["failed_ids"] == [media.id]

    @pytest.mark.asyncio
    async def test_set_event_banner(self, client, test_db, storage, test_admin, test_user, auth_headers):
        event = await create_test_event(test_db, test_admin, Visibility.PUBLIC)
        files = {"file": ("banner.jpg", jpeg_bytes(), "image/jpeg")}

        denied = await client.put(f"/api/events/{event.id}/banner", headers=auth_headers(test_user), files=files)
        response = await client.put(f"/api/events/{event.id}/banner", headers=auth_headers(test_admin), files=files)

        assert denied.status_code == 403
        assert response.status_code == 200
        assert response.json()["banner_s3_key"] == f"events/{event.id}/banner.jpg"
        assert f"events/{event.id}/banner.jpg" in storage.objects

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, client, test_user):
        from eventlens.auth import create_access_token

        token = create_access_token(test_user.id, expires_delta=timedelta(seconds=-1))
        response = await client.get("/api/events", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestMediaRoutes:
    @pytest.mark.asyncio
    async def test_upload(self, client, test_db, storage, test_user, other_user, auth_headers):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)

        response = await client.post(
            f"/api/events/{event.id}/media",
            headers=auth_headers(test_user),
            files={"file": ("party.jpg", jpeg_bytes(), "image/jpeg")},
            data={"caption": "hello"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["caption"] == "hello"
        assert body["thumbnail_s3_key"] in storage.objects

    @pytest.mark.asyncio
    async def test_upload_rejects_unsupported_type(self, client, test_db, storage, test_user, other_user, auth_headers):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)

        response = await client.post(
            f"/api/events/{event.id}/media",
            headers=auth_headers(test_user),
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_upload_with_api_key_needs_grant(self, client, test_db, session_factory, test_user, other_user):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)
        async with session_factory() as session:
            created = await APIKeyService(session).create_api_key(test_user.id, can_upload=False)

        response = await client.post(
            f"/api/events/{event.id}/media",
            headers={"Authorization": f"Bearer {created['key']}"},
            files={"file": ("a.jpg", jpeg_bytes(), "image/jpeg")},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_bulk_delete(self, client, test_db, storage, test_user, other_user, auth_headers):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        own = await create_test_media(test_db, event, test_user, storage)
        theirs = await create_test_media(test_db, event, other_user, storage)

        response = await client.post(
            "/api/media/bulk-delete",
            headers=auth_headers(test_user),
            json={"media_ids": [own.id, theirs.id]},
        )

        assert response.status_code == 200
        assert response.json() == {"deleted": 1, "deleted_ids": [own.id], "skipped": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_display_redirects_non_heic(self, client, test_db, storage, test_user):
        event = await create_test_event(test_db, test_user, Visibility.PUBLIC)
        media = await create_test_media(test_db, event, test_user, storage)

        response = await client.get(f"/api/media/{media.id}/display")

        assert response.status_code == 307
        assert response.headers["location"].endswith("signature=get")

    @pytest.mark.asyncio
    async def test_finalize_of_someone_elses_media_is_rejected(
        self, client, test_db, storage, test_user, other_user, auth_headers
    ):
        event = await create_test_event(test_db, other_user, Visibility.PUBLIC)
        await add_participant(test_db, event, test_user)
        existing = await create_test_media(test_db, event, other_user, storage)

        response = await client.post(
            f"/api/events/{event.id}/uploads/finalize",
            headers=auth_headers(test_user),
            json={"key": existing.s3_key, "filename": "mine.jpg", "content_type": "image/jpeg"},
        )

        assert response.status_code == 400
        assert existing.s3_key in storage.objects
        assert existing.thumbnail_s3_key in storage.objects


class TestStorageRoutes:
    @pytest.mark.asyncio
    async def test_cron_requires_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")

        missing = await client.post("/api/cron/cleanup-ghost-files")
        wrong = await client.post("/api/cron/cleanup-ghost-files", headers={"Authorization": "Bearer nope"})

        assert missing.status_code == 401
        assert wrong.status_code == 401

    @pytest.mark.asyncio
    async def test_cron_disabled_without_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)
        response = await client.post("/api/cron/cleanup-ghost-files", headers={"Authorization": "Bearer None"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_cron_sweep_ignores_force(self, client, storage, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        storage.add_object("media/fresh/original.jpg", last_modified=datetime.now(timezone.utc))
        storage.add_object("media/old/original.jpg", last_modified=datetime.now(timezone.utc) - timedelta(days=3))

        response = await client.post(
            "/api/cron/cleanup-ghost-files",
            headers={"Authorization": "Bearer s3cret"},
            json={"force": True},
        )

        assert response.status_code == 200
        assert response.json()["deleted"] == 1
        assert "media/fresh/original.jpg" in storage.objects

    @pytest.mark.asyncio
    async def test_admin_cleanup(self, client, storage, test_user, test_admin, auth_headers):
        storage.add_object("media/fresh/original.jpg", last_modified=datetime.now(timezone.utc))

        forbidden = await client.post("/api/storage/cleanup", headers=auth_headers(test_user), json={"force": True})
        allowed = await client.post("/api/storage/cleanup", headers=auth_headers(test_admin), json={"force": True})

        assert forbidden.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["deleted"] == 1

    @pytest.mark.asyncio
    async def test_storage_stats(self, client, storage, test_admin, auth_headers):
        storage.add_object("a", b"12345")
        storage.add_object("b", b"123")
        response = await client.get("/api/storage/stats", headers=auth_headers(test_admin))
        assert response.json() == {"object_count": 2, "total_size": 8}


class TestApiKeyRoutes:
    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        response = await client.get("/api/api-keys")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_create_list_revoke(self, client, test_user, other_user, auth_headers):
        headers = auth_headers(test_user)

        created = await client.post("/api/api-keys", headers=headers, json={"name": "Camera", "can_upload": True})
        assert created.status_code == 201
        key_id = created.json()["id"]

        listed = await client.get("/api/api-keys", headers=headers)
        assert [k["id"] for k in listed.json()] == [key_id]

        foreign = await client.delete(f"/api/api-keys/{key_id}", headers=auth_headers(other_user))
        assert foreign.status_code == 403

        revoked = await client.delete(f"/api/api-keys/{key_id}", headers=headers)
        assert revoked.status_code == 204

        rejected = await client.get("/api/events", headers={"Authorization": f"Bearer {created.json()['key']}"})
        assert rejected.status_code == 401
