from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, String, Text, UniqueConstraint

from eventlens.database import Base, new_uuid
from eventlens.models.enums import Visibility


class Series(Base):
    """A recurring group of events sharing admins and a banner."""

    __tablename__ = "series"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    banner_s3_key = Column(String, nullable=True)
    visibility = Column(
        Enum(Visibility, values_callable=lambda e: [v.value for v in e]),
        default=Visibility.AUTH_REQUIRED,
        nullable=False,
    )
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self):
        return f"<Series(id={self.id}, slug={self.slug}, visibility={self.visibility})>"


class SeriesAdmin(Base):
    __tablename__ = "series_admins"

    id = Column(String(36), primary_key=True, default=new_uuid)
    series_id = Column(String(36), ForeignKey("series.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    granted_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        UniqueConstraint("series_id", "user_id", name="uq_series_admin"),
        Index("ix_series_admins_user_id", "user_id"),
    )
