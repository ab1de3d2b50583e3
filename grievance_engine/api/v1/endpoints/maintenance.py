import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from grievance_engine.api.deps import get_lifecycle, require_super_admin
from grievance_engine.lifecycle import Actor, GrievanceLifecycle
from grievance_engine.schemas import SweepRequest, SweepResult

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/sweep", response_model=SweepResult)
def sweep_attachments(
    body: Optional[SweepRequest] = Body(default=None),
    actor: Actor = Depends(require_super_admin),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    retention_hours = body.retention_hours if body else None
    logger.info("Manual attachment sweep requested by %s", actor.actor_id)
    return SweepResult(deleted=lifecycle.sweep_expired_attachments(retention_hours))
