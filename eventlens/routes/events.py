"""
Event, Series and Account Routes
"""

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from eventlens.auth import get_current_actor, get_optional_actor
from eventlens.dependencies import get_event_service, get_request_meta
from eventlens.policy import UserContext
from eventlens.schemas.events import EventResponse, JoinEventRequest, SeriesResponse
from eventlens.services.event_service import EventService
from eventlens.utils.activity_log import RequestMeta

router = APIRouter(tags=["Events"])


@router.get("/events", response_model=list[EventResponse])
async def list_events(
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
):
    """Events the caller may see in listings. Unlisted events appear only to their members."""
    return await service.list_events(actor)


@router.get("/events/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: str,
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
):
    return await service.get_event(actor, event_id)


@router.post("/events/{event_id}/join")
async def join_event(
    event_id: str,
    body: JoinEventRequest | None = None,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    joined = await service.join_event(actor, event_id, body.invite_code if body else None, meta)
    return {"success": True, "joined": joined}


@router.post("/events/{event_id}/leave")
async def leave_event(
    event_id: str,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    removed = await service.leave_event(actor, event_id, meta)
    return {"success": True, "media_deleted": removed}


@router.put("/events/{event_id}/banner", response_model=EventResponse)
async def set_event_banner(
    event_id: str,
    file: UploadFile = File(...),
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Replace the event banner (event and series admins)."""
    data = await file.read()
    return await service.set_event_banner(
        actor, event_id, data, file.content_type or "application/octet-stream", file.filename, meta
    )


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: str,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    """Delete an event with all of its media. Responds 409 with counts when storage cleanup is incomplete."""
    await service.delete_event(actor, event_id, meta)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/series/{series_id}", response_model=SeriesResponse)
async def get_series(
    series_id: str,
    actor: UserContext | None = Depends(get_optional_actor),
    service: EventService = Depends(get_event_service),
):
    return await service.get_series(actor, series_id)


@router.put("/series/{series_id}/banner", response_model=SeriesResponse)
async def set_series_banner(
    series_id: str,
    file: UploadFile = File(...),
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    data = await file.read()
    return await service.set_series_banner(
        actor, series_id, data, file.content_type or "application/octet-stream", file.filename, meta
    )


@router.delete("/series/{series_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_series(
    series_id: str,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    await service.delete_series(actor, series_id, meta)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: str,
    actor: UserContext = Depends(get_current_actor),
    service: EventService = Depends(get_event_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    await service.delete_user(actor, user_id, meta)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
