from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, PrimaryKeyConstraint, String, Table, Text

from eventlens.database import Base, new_uuid

media_tags = Table(
    "media_tags",
    Base.metadata,
    Column("media_id", String(36), ForeignKey("media.id", ondelete="CASCADE"), nullable=False),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), nullable=False),
    PrimaryKeyConstraint("media_id", "tag_id"),
)


class Tag(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, unique=True, nullable=False)
    color = Column(String, default="blue")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)


class MediaMention(Base):
    __tablename__ = "media_mentions"

    media_id = Column(String(36), ForeignKey("media.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)


class MediaComment(Base):
    __tablename__ = "media_comments"

    id = Column(String(36), primary_key=True, default=new_uuid)
    media_id = Column(String(36), ForeignKey("media.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)


class ShareLink(Base):
    __tablename__ = "share_links"

    token = Column(String, primary_key=True)
    media_id = Column(String(36), ForeignKey("media.id", ondelete="CASCADE"), nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    views = Column(Integer, default=0, nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
