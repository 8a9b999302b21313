"""
API Key Routes

Endpoints for managing the caller's own API keys.
"""

from fastapi import APIRouter, Depends, Request, Response, status

from eventlens.auth import get_current_actor
from eventlens.dependencies import get_api_key_service, get_request_meta
from eventlens.exceptions import ResourceNotFoundError
from eventlens.policy import Action, PolicyEngine, ResourceType, UserContext
from eventlens.schemas.api_keys import APIKeyCreate, APIKeyCreatedResponse, APIKeyResponse
from eventlens.services.api_key_service import APIKeyService
from eventlens.utils.activity_log import RequestMeta

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.post("", response_model=APIKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: APIKeyCreate,
    actor: UserContext = Depends(get_current_actor),
    service: APIKeyService = Depends(get_api_key_service),
):
    """Create a key. The full key is returned once and cannot be retrieved later."""
    await PolicyEngine(service.db).authorize(actor, Action.CREATE, ResourceType.API_KEY)
    return await service.create_api_key(actor.id, name=body.name, note=body.note, can_upload=body.can_upload)


@router.get("", response_model=list[APIKeyResponse])
async def list_api_keys(
    actor: UserContext = Depends(get_current_actor),
    service: APIKeyService = Depends(get_api_key_service),
):
    return await service.get_user_keys(actor.id)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_key(
    request: Request,
    key_id: str,
    actor: UserContext = Depends(get_current_actor),
    service: APIKeyService = Depends(get_api_key_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    policy = PolicyEngine(service.db)
    resource = await policy.load_resource(ResourceType.API_KEY, key_id)
    if resource is None:
        raise ResourceNotFoundError("API key", key_id)
    await policy.authorize(actor, Action.DELETE, ResourceType.API_KEY, resource)
    await service.revoke_api_key(key_id, resource.user_id)
    await request.app.state.audit.log_activity(actor.id, "revoke", "api_key", key_id, None, meta)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
