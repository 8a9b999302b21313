from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String

from eventlens.database import Base, new_uuid


class DataExport(Base):
    """A user's personal-data archive; ``s3_key`` is set once the archive is written."""

    __tablename__ = "data_exports"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    s3_key = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    completed_at = Column(DateTime, nullable=True)
