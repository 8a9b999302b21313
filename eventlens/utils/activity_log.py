from dataclasses import dataclass
from typing import Optional, Dict
from eventlens.models.moderation import AuditLog
import json
import logging
import re

logger = logging.getLogger(__name__)

_IPV4_TAIL = re.compile(r"\.\d+\.\d+$")


@dataclass(frozen=True)
class RequestMeta:
    """Caller network details, passed explicitly to anything that records them."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> "RequestMeta":
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded or (request.client.host if request.client else None)
        return cls(ip_address=ip, user_agent=request.headers.get("user-agent"))


def anonymize_ip(ip: Optional[str]) -> str:
    """Mask the host part: ``a.b.xxx.xxx`` for IPv4, first two groups for IPv6."""
    if not ip or ip == "unknown":
        return "unknown"
    if "," in ip:
        return ", ".join(anonymize_ip(part.strip()) for part in ip.split(","))
    if "." in ip:
        return _IPV4_TAIL.sub(".xxx.xxx", ip)
    if ":" in ip:
        parts = ip.split(":")
        if len(parts) > 2:
            return ":".join(parts[:2]) + ":xxxx:xxxx:xxxx:xxxx:xxxx:xxxx"
    return ip


class AuditLogger:
    """Writes audit rows in their own session so a failed write never touches the caller's transaction."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def log_activity(
        self,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict] = None,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        meta = meta or RequestMeta()
        try:
            async with self.session_factory() as session:
                session.add(
                    AuditLog(
                        user_id=user_id,
                        action=action,
                        resource_type=resource_type,
                        resource_id=str(resource_id) if resource_id is not None else None,
                        details=json.dumps(details, default=str) if details else None,
                        ip_address=anonymize_ip(meta.ip_address),
                        user_agent=meta.user_agent or "unknown",
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error("Failed to log activity %s %s:%s: %s", action, resource_type, resource_id, e)
