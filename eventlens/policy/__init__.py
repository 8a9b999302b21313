from .types import (
    Action,
    AdminResource,
    ApiKeyGrant,
    ApiKeyResource,
    CommentResource,
    EventCandidate,
    EventResource,
    MediaResource,
    MentionResource,
    ReportResource,
    Resource,
    ResourceType,
    SeriesResource,
    ShareLinkResource,
    StorageResource,
    TagResource,
    UserContext,
    UserResource,
)
from .engine import PolicyEngine

__all__ = [
    "Action",
    "AdminResource",
    "ApiKeyGrant",
    "ApiKeyResource",
    "CommentResource",
    "EventCandidate",
    "EventResource",
    "MediaResource",
    "MentionResource",
    "PolicyEngine",
    "ReportResource",
    "Resource",
    "ResourceType",
    "SeriesResource",
    "ShareLinkResource",
    "StorageResource",
    "TagResource",
    "UserContext",
    "UserResource",
]
