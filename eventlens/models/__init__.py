from .enums import Visibility
from .user import User
from .series import Series, SeriesAdmin
from .event import Event, EventAdmin, EventParticipant
from .api_key import APIKey
from .media import Media, PendingUpload
from .social import MediaComment, MediaMention, ShareLink, Tag, media_tags
from .data_export import DataExport
from .moderation import AuditLog, Report, ReportStatus

__all__ = [
    "Visibility",
    "User",
    "Series",
    "SeriesAdmin",
    "Event",
    "EventAdmin",
    "EventParticipant",
    "APIKey",
    "Media",
    "PendingUpload",
    "MediaComment",
    "MediaMention",
    "ShareLink",
    "Tag",
    "media_tags",
    "DataExport",
    "AuditLog",
    "Report",
    "ReportStatus",
]
