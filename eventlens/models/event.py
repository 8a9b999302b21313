from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Index, String, Text, UniqueConstraint

from eventlens.database import Base, new_uuid
from eventlens.models.enums import Visibility


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    banner_s3_key = Column(String, nullable=True)
    series_id = Column(String(36), ForeignKey("series.id", ondelete="SET NULL"), nullable=True)
    visibility = Column(
        Enum(Visibility, values_callable=lambda e: [v.value for v in e]),
        default=Visibility.AUTH_REQUIRED,
        nullable=False,
    )
    allow_public_sharing = Column(Boolean, default=True, nullable=False)
    requires_invite = Column(Boolean, default=False, nullable=False)
    invite_code = Column(String, unique=True, nullable=True)

    event_date = Column(DateTime, nullable=True)
    location = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_events_series_id", "series_id"),
        Index("ix_events_visibility", "visibility"),
    )

    def __repr__(self):
        return f"<Event(id={self.id}, slug={self.slug}, visibility={self.visibility})>"


class EventParticipant(Base):
    __tablename__ = "event_participants"

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participant"),
        Index("ix_event_participants_user_id", "user_id"),
    )


class EventAdmin(Base):
    __tablename__ = "event_admins"

    id = Column(String(36), primary_key=True, default=new_uuid)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    granted_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_admin"),
        Index("ix_event_admins_user_id", "user_id"),
    )
