"""
IP rate limits for the HTTP surface.

Per-identity budgets (API keys) live in ``RateLimiter``; this slowapi limiter
only guards the expensive endpoints against floods from a single address.
"""

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from eventlens.config import settings

UPLOAD_LIMIT = "60/minute"
SWEEP_LIMIT = "10/minute"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["600/minute"],
    storage_uri=settings.rate_limit_storage_uri,
    headers_enabled=False,
    enabled=settings.rate_limit_enabled,
)


def configure_rate_limiting(app):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
