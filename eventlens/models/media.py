"""
Media Model

Represents uploaded photos and videos. A row exists only once the original
object has been durably written to storage.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from eventlens.database import Base, new_uuid


class Media(Base):
    """Media file model"""

    __tablename__ = "media"

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    uploaded_by_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    api_key_id = Column(String(36), ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True)

    s3_key = Column(String, nullable=False, unique=True)
    s3_url = Column(String, nullable=False)
    thumbnail_s3_key = Column(String, nullable=True)
    filename = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    file_size = Column(BigInteger, nullable=False)  # Size in bytes

    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    duration = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    exif_data = Column(JSON, nullable=True)
    taken_at = Column(DateTime, nullable=True)
    caption = Column(Text, nullable=True)

    uploaded_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_media_event_id", "event_id"),
        Index("ix_media_uploaded_by_id", "uploaded_by_id"),
        Index("ix_media_thumbnail_s3_key", "thumbnail_s3_key"),
    )

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "uploaded_by_id": self.uploaded_by_id,
            "s3_key": self.s3_key,
            "s3_url": self.s3_url,
            "thumbnail_s3_key": self.thumbnail_s3_key,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "exif_data": self.exif_data,
            "taken_at": self.taken_at.isoformat() if self.taken_at else None,
            "caption": self.caption,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<Media(id={self.id}, event_id={self.event_id}, mime_type={self.mime_type})>"


class PendingUpload(Base):
    """
    A storage key handed to a client for a direct (presigned or multipart)
    upload. Only the owner can finalize it, for the event it was issued for,
    and finalizing consumes it.
    """

    __tablename__ = "pending_uploads"

    id = Column(String(36), primary_key=True)  # the media id the upload will become
    s3_key = Column(String, nullable=False, unique=True)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    upload_id = Column(String, nullable=True)  # multipart sessions only
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (Index("ix_pending_uploads_created_at", "created_at"),)
