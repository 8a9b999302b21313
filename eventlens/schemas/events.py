"""
Event Schemas
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from eventlens.models.enums import Visibility


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: str | None = None
    banner_s3_key: str | None = None
    series_id: str | None = None
    visibility: Visibility
    requires_invite: bool
    allow_public_sharing: bool
    event_date: datetime | None = None
    location: str | None = None
    created_by_id: str


class SeriesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: str | None = None
    banner_s3_key: str | None = None
    visibility: Visibility


class JoinEventRequest(BaseModel):
    invite_code: str | None = None
