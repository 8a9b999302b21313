"""
Request Logging Middleware

One access-log line per request with a request id, timing and the acting
user. The request id is kept in a ContextVar so every log line emitted while
handling the request can carry it (see ``RequestIdFilter``).
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import datetime, timezone

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from eventlens.utils.activity_log import anonymize_ip

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

QUIET_PATHS = frozenset({"/health", "/metrics"})
_EXTRA_FIELDS = ("actor_id", "method", "path", "status_code", "duration_ms", "client_ip")


class RequestIdFilter(logging.Filter):
    """Attach the current request id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        return json.dumps(log_data)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, logger_name: str = "eventlens.access"):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception as e:
                self._log(request, 500, start, error=str(e))
                raise
            response.headers["X-Request-ID"] = request_id
            self._log(request, response.status_code, start)
            return response
        finally:
            request_id_var.reset(token)

    def _log(self, request: Request, status_code: int, start: float, error: str | None = None) -> None:
        if request.url.path in QUIET_PATHS:
            return

        duration_ms = (time.perf_counter() - start) * 1000
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        client = request.headers.get("X-Forwarded-For") or (request.client.host if request.client else None)
        extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "client_ip": anonymize_ip(client.split(",")[0].strip() if client else None),
        }
        actor_id = getattr(request.state, "actor_id", None)
        if actor_id:
            extra["actor_id"] = actor_id

        message = f"{request.method} {request.url.path} - {status_code} ({duration_ms:.2f}ms)"
        if error:
            message += f" - Error: {error}"
        self.logger.log(level, message, extra=extra)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """Configure the root logger: JSON lines in production, plain text otherwise."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper()))
    root.handlers.clear()

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s")
        )
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    for name in ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_request_id() -> str:
    return request_id_var.get("")
