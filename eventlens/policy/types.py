"""
Policy Types

The actor, the action verbs and the closed set of resource variants the
policy engine evaluates. Each variant carries exactly the fields its rule
reads; ``RESOURCE_TYPES`` maps every variant to its ``ResourceType`` so a
mismatched pair is rejected before any rule runs.
"""

import enum
from dataclasses import dataclass, field
from typing import NamedTuple, Union

from eventlens.models.enums import Visibility


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    JOIN = "join"
    LEAVE = "leave"
    BAN = "ban"
    PROMOTE = "promote"
    IMPERSONATE = "impersonate"
    INTERACT = "interact"


class ResourceType(str, enum.Enum):
    USER = "user"
    SERIES = "series"
    EVENT = "event"
    MEDIA = "media"
    COMMENT = "comment"
    REPORT = "report"
    ADMIN = "admin"
    TAG = "tag"
    API_KEY = "api_key"
    MENTION = "mention"
    SHARE_LINK = "share_link"
    STORAGE = "storage"


@dataclass(frozen=True)
class ApiKeyGrant:
    """The API key a request authenticated with, if any."""

    id: str
    can_upload: bool


@dataclass(frozen=True)
class UserContext:
    """
    The acting user for one request.

    Built once from the user row and the admin-membership rows; never
    persisted and never mutated while a decision is being made.
    """

    id: str
    is_global_admin: bool = False
    is_banned: bool = False
    series_admin_ids: frozenset = field(default_factory=frozenset)
    event_admin_ids: frozenset = field(default_factory=frozenset)
    api_key: ApiKeyGrant | None = None

    def with_api_key(self, grant: ApiKeyGrant) -> "UserContext":
        return UserContext(
            id=self.id,
            is_global_admin=self.is_global_admin,
            is_banned=self.is_banned,
            series_admin_ids=self.series_admin_ids,
            event_admin_ids=self.event_admin_ids,
            api_key=grant,
        )


# ── Resource variants ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EventResource:
    id: str
    visibility: Visibility
    created_by_id: str | None = None
    series_id: str | None = None
    requires_invite: bool = False
    invite_code: str | None = None
    allow_public_sharing: bool = True

    @classmethod
    def from_model(cls, event) -> "EventResource":
        return cls(
            id=event.id,
            visibility=Visibility(event.visibility),
            created_by_id=event.created_by_id,
            series_id=event.series_id,
            requires_invite=bool(event.requires_invite),
            invite_code=event.invite_code,
            allow_public_sharing=bool(event.allow_public_sharing),
        )


@dataclass(frozen=True)
class SeriesResource:
    id: str
    visibility: Visibility
    created_by_id: str | None = None

    @classmethod
    def from_model(cls, series) -> "SeriesResource":
        return cls(id=series.id, visibility=Visibility(series.visibility), created_by_id=series.created_by_id)


@dataclass(frozen=True)
class MediaResource:
    id: str
    uploaded_by_id: str
    event: EventResource

    @classmethod
    def from_model(cls, media, event) -> "MediaResource":
        return cls(id=media.id, uploaded_by_id=media.uploaded_by_id, event=EventResource.from_model(event))


@dataclass(frozen=True)
class CommentResource:
    id: str
    user_id: str
    media: MediaResource


@dataclass(frozen=True)
class MentionResource:
    media: MediaResource
    user_id: str | None = None  # the mentioned user


@dataclass(frozen=True)
class ShareLinkResource:
    media: MediaResource | None = None
    created_by_id: str | None = None
    token: str | None = None


@dataclass(frozen=True)
class ApiKeyResource:
    id: str
    user_id: str


@dataclass(frozen=True)
class ReportResource:
    id: str | None = None
    media: MediaResource | None = None


@dataclass(frozen=True)
class UserResource:
    id: str


@dataclass(frozen=True)
class TagResource:
    id: str | None = None


@dataclass(frozen=True)
class StorageResource:
    pass


@dataclass(frozen=True)
class AdminResource:
    pass


Resource = Union[
    EventResource,
    SeriesResource,
    MediaResource,
    CommentResource,
    MentionResource,
    ShareLinkResource,
    ApiKeyResource,
    ReportResource,
    UserResource,
    TagResource,
    StorageResource,
    AdminResource,
]

RESOURCE_TYPES: dict[type, ResourceType] = {
    EventResource: ResourceType.EVENT,
    SeriesResource: ResourceType.SERIES,
    MediaResource: ResourceType.MEDIA,
    CommentResource: ResourceType.COMMENT,
    MentionResource: ResourceType.MENTION,
    ShareLinkResource: ResourceType.SHARE_LINK,
    ApiKeyResource: ResourceType.API_KEY,
    ReportResource: ResourceType.REPORT,
    UserResource: ResourceType.USER,
    TagResource: ResourceType.TAG,
    StorageResource: ResourceType.STORAGE,
    AdminResource: ResourceType.ADMIN,
}


class EventCandidate(NamedTuple):
    """Minimal event projection for bulk visibility resolution."""

    id: str
    visibility: Visibility
    series_id: str | None = None
    created_by_id: str | None = None

    @classmethod
    def from_model(cls, event) -> "EventCandidate":
        return cls(event.id, Visibility(event.visibility), event.series_id, event.created_by_id)
