"""
Storage Maintenance Routes

Ghost-file sweeps, triggered either by a scheduler holding the cron secret
or by a global admin (who may also force a sweep without the age margin).
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Request

from eventlens.auth import get_current_actor
from eventlens.config import settings
from eventlens.database import get_db
from eventlens.dependencies import get_ghost_file_service, get_request_meta, get_storage
from eventlens.exceptions import AuthenticationError
from eventlens.middleware.rate_limit import SWEEP_LIMIT, limiter
from eventlens.policy import Action, PolicyEngine, ResourceType, StorageResource, UserContext
from eventlens.schemas.storage import SweepRequest, SweepResponse
from eventlens.services.ghost_file_service import GhostFileService
from eventlens.utils.activity_log import RequestMeta

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Storage"])


def verify_cron_secret(request: Request) -> None:
    expected = settings.cron_secret
    header = request.headers.get("authorization", "")
    if not expected or not hmac.compare_digest(header, f"Bearer {expected}"):
        logger.warning("Rejected ghost-file cron call with bad credentials")
        raise AuthenticationError()


@router.post("/cron/cleanup-ghost-files", response_model=SweepResponse, dependencies=[Depends(verify_cron_secret)])
async def cron_cleanup_ghost_files(
    body: SweepRequest | None = None,
    service: GhostFileService = Depends(get_ghost_file_service),
):
    """Scheduled sweep. ``force`` is ignored here; only admins may skip the safety margin."""
    result = await service.sweep(body.cursor if body else None)
    return result.to_dict()


@router.post("/storage/cleanup", response_model=SweepResponse)
@limiter.limit(SWEEP_LIMIT)
async def admin_cleanup_ghost_files(
    request: Request,
    body: SweepRequest | None = None,
    actor: UserContext = Depends(get_current_actor),
    service: GhostFileService = Depends(get_ghost_file_service),
    meta: RequestMeta = Depends(get_request_meta),
):
    body = body or SweepRequest()
    await PolicyEngine(service.db).authorize(actor, Action.MANAGE, ResourceType.STORAGE, StorageResource())
    result = await service.sweep(body.cursor, force=body.force)
    audit = request.app.state.audit
    await audit.log_activity(
        actor.id,
        "cleanup",
        "storage",
        None,
        {"force": body.force, "deleted": result.deleted, "checked": result.checked},
        meta,
    )
    return result.to_dict()


@router.get("/storage/stats")
async def storage_stats(
    actor: UserContext = Depends(get_current_actor),
    db=Depends(get_db),
    storage=Depends(get_storage),
):
    await PolicyEngine(db).authorize(actor, Action.VIEW, ResourceType.STORAGE, StorageResource())
    return await storage.get_storage_stats()
