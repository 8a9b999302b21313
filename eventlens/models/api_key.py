"""
API Key Model

Bearer credentials that let scripts and cameras act on behalf of a user.
"""

import secrets
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text

from eventlens.database import Base, new_uuid

API_KEY_PREFIX = "evl"


class APIKey(Base):
    """
    API Key model.

    Only a hash of the secret part is stored; the prefix identifies the row.
    Uploading requires ``can_upload`` in addition to the owner's own rights.
    """

    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)

    key_prefix = Column(String(16), unique=True, nullable=False, index=True)
    key_hash = Column(String(128), nullable=False)

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    is_revoked = Column(Boolean, default=False, nullable=False)
    can_upload = Column(Boolean, default=False, nullable=False)

    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (Index("ix_api_keys_user_id", "user_id"),)

    def __repr__(self) -> str:
        return f"<APIKey(id={self.id}, name={self.name}, prefix={self.key_prefix})>"

    @staticmethod
    def generate_key() -> tuple[str, str, str]:
        """
        Generate a new API key.

        Returns:
            tuple: (full_key, prefix, secret)
            - full_key: The complete key to show to user (only once!)
            - prefix: The visible prefix (e.g., "evl_1a2b3c4d")
            - secret: The secret part to hash and store
        """
        prefix = f"{API_KEY_PREFIX}_" + secrets.token_hex(4)
        secret = secrets.token_urlsafe(32)
        return f"{prefix}_{secret}", prefix, secret
