from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, JSON, String, Text

from eventlens.database import Base, new_uuid


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_uuid)
    external_id = Column(String, unique=True, nullable=True)
    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    preferred_name = Column(String, nullable=True)
    handle = Column(String, unique=True, nullable=True)
    bio = Column(Text, nullable=True)
    avatar_s3_key = Column(String, nullable=True)
    social_links = Column(JSON, nullable=True)

    is_global_admin = Column(Boolean, default=False, nullable=False)
    # -1 means unlimited; None falls back to the configured default
    storage_limit = Column(BigInteger, nullable=True)

    is_banned = Column(Boolean, default=False, nullable=False)
    banned_at = Column(DateTime, nullable=True)
    banned_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    ban_reason = Column(Text, nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<User(id={self.id}, handle={self.handle}, admin={self.is_global_admin})>"
