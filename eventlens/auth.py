from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from eventlens.config import settings
from eventlens.database import get_db
from eventlens.exceptions import AuthenticationError
from eventlens.policy import PolicyEngine, UserContext
from eventlens.services.api_key_service import APIKeyService, is_api_key

# Initialize logging
logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7


# Function to create an access token with an expiration time
def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode(
        {"sub": user_id, "exp": expire},
        settings.secret_key,
        algorithm=settings.access_token_algorithm,
    )


# Function to decode an access token into the user id it was issued for
def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.access_token_algorithm])
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
        raise AuthenticationError("Token has expired")
    except JWTError as e:
        logger.warning("JWT decoding failed: %s", e)
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Token is missing 'sub' claim")
        raise AuthenticationError("Invalid token")
    return user_id


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get("access_token")


async def _resolve_actor(request: Request, db: AsyncSession, require_upload: bool) -> Optional[UserContext]:
    token = _bearer_token(request)
    if not token:
        return None

    policy = PolicyEngine(db)
    if is_api_key(token):
        service = APIKeyService(
            db,
            rate_limiter=getattr(request.app.state, "rate_limiter", None),
            rate_limit=settings.api_key_rate_limit,
            upload_rate_limit=settings.api_key_upload_rate_limit,
        )
        user, grant = await service.validate_api_key(token, require_upload=require_upload)
        actor = await policy.get_user_context(user.id)
        if actor is None:
            raise AuthenticationError("API key owner not found")
        request.state.actor_id = actor.id
        return actor.with_api_key(grant)

    actor = await policy.get_user_context(decode_access_token(token))
    if actor is None:
        raise AuthenticationError("Could not validate credentials")
    request.state.actor_id = actor.id
    return actor


async def get_optional_actor(request: Request, db: AsyncSession = Depends(get_db)) -> Optional[UserContext]:
    """The caller's context, or None for anonymous requests. Bad credentials are rejected, not ignored."""
    return await _resolve_actor(request, db, require_upload=False)


async def get_current_actor(request: Request, db: AsyncSession = Depends(get_db)) -> UserContext:
    actor = await _resolve_actor(request, db, require_upload=False)
    if actor is None:
        raise AuthenticationError()
    return actor


async def get_upload_actor(request: Request, db: AsyncSession = Depends(get_db)) -> UserContext:
    """Like ``get_current_actor`` but API keys are checked against the upload budget and grant."""
    actor = await _resolve_actor(request, db, require_upload=True)
    if actor is None:
        raise AuthenticationError()
    return actor
