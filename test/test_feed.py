"""
Tests for the live event feed stream
"""

import json

import pytest

from eventlens.models.enums import Visibility
from eventlens.routes.feed import _event_stream
from eventlens.services.deletion_service import CascadeDeletionService
from eventlens.services.event_bus import EventBus
from utils.mock_utils import create_test_event, create_test_media


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


def frame_data(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


class TestEventStream:
    @pytest.mark.asyncio
    async def test_connected_then_matching_events_only(self):
        bus = EventBus()
        stream = _event_stream(FakeRequest(), bus, "e1", keepalive=1.0)

        assert frame_data(await stream.__anext__())["type"] == "connected"
        assert bus.subscriber_count() == 1

        bus.emit("media.uploaded", {"media_id": "m0", "event_id": "other"})
        bus.emit("media.uploaded", {"media_id": "m1", "event_id": "e1"})
        frame = frame_data(await stream.__anext__())

        assert frame["type"] == "media.uploaded"
        assert frame["data"] == {"media_id": "m1", "event_id": "e1"}
        await stream.aclose()
        assert bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_keepalive_while_idle(self):
        bus = EventBus()
        stream = _event_stream(FakeRequest(), bus, "e1", keepalive=0.01)
        await stream.__anext__()

        assert await stream.__anext__() == ": keepalive\n\n"
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stream_ends_when_event_deleted(self):
        bus = EventBus()
        stream = _event_stream(FakeRequest(), bus, "e1", keepalive=1.0)
        await stream.__anext__()

        bus.emit("event.deleted", {"event_id": "e1"})
        assert frame_data(await stream.__anext__())["type"] == "event.deleted"
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_disconnect_unsubscribes(self):
        bus = EventBus()
        request = FakeRequest()
        stream = _event_stream(request, bus, "e1", keepalive=1.0)
        await stream.__anext__()

        request.disconnected = True
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_deletions_reach_the_event_feed(self, test_db, storage, test_user):
        bus = EventBus()
        event = await create_test_event(test_db, test_user, Visibility.PUBLIC)
        media = await create_test_media(test_db, event, test_user, storage)
        stream = _event_stream(FakeRequest(), bus, event.id, keepalive=1.0)
        await stream.__anext__()

        await CascadeDeletionService(test_db, storage, events=bus).delete_media_bulk([media], [media], test_user.id)

        frame = frame_data(await stream.__anext__())
        assert frame["type"] == "media.deleted"
        assert frame["data"] == {"media_id": media.id, "event_id": event.id}
        await stream.aclose()


class TestFeedRoute:
    @pytest.mark.asyncio
    async def test_hidden_event_feed_is_404(self, client, test_db, other_user):
        event = await create_test_event(test_db, other_user, Visibility.UNLISTED)

        response = await client.get(f"/api/events/{event.id}/feed")

        assert response.status_code == 404
