from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from grievance_engine.api.deps import get_actor, get_lifecycle
from grievance_engine.lifecycle import Actor, GrievanceLifecycle
from grievance_engine.models import GrievanceStatus
from grievance_engine.schemas import (
    AttachmentClaimReportRead,
    AttachmentClaimRequest,
    GrievanceCreate,
    GrievanceCreated,
    GrievanceDetailRead,
    GrievanceRead,
    TrackingEntryRead,
    TransitionRequest,
)

router = APIRouter()


@router.post("", response_model=GrievanceCreated, status_code=status.HTTP_201_CREATED)
def create_grievance(
    body: GrievanceCreate,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    """
    File a grievance as the calling actor.

    Always 201 once the grievance exists; a PARTIAL_ACCEPT classification in
    ``attachments`` lists the uploads that could not be linked.
    """
    result = lifecycle.create(
        submitter_id=actor.actor_id,
        category=body.category,
        campus_id=body.campus_id,
        subject=body.subject,
        description=body.description,
        attachment_ids=body.attachment_ids,
    )
    return GrievanceCreated.model_validate(result)


@router.get("", response_model=list[GrievanceRead])
def list_grievances(
    status_filter: Optional[GrievanceStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    """Own grievances for students, the current work queue for admins."""
    views = lifecycle.list_for(actor, status=status_filter, limit=limit, offset=offset)
    return [GrievanceRead.model_validate(v) for v in views]


@router.get("/{ref}", response_model=GrievanceDetailRead)
def view_grievance(
    ref: str,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    return GrievanceDetailRead.model_validate(lifecycle.view(ref, actor=actor))


@router.get("/{ref}/history", response_model=list[TrackingEntryRead])
def grievance_history(
    ref: str,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    return [TrackingEntryRead.model_validate(e) for e in lifecycle.history_of(ref, actor=actor)]


@router.post("/{ref}/transitions", response_model=GrievanceRead)
def transition_grievance(
    ref: str,
    body: TransitionRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    view = lifecycle.transition(
        ref,
        actor,
        body.status,
        note=body.note,
        redirect_target=body.redirect_target,
        expected_status=body.expected_status,
    )
    return GrievanceRead.model_validate(view)


@router.post("/{ref}/attachments", response_model=AttachmentClaimReportRead)
def claim_attachments(
    ref: str,
    body: AttachmentClaimRequest,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    report = lifecycle.claim_attachments(ref, body.attachment_ids, actor.actor_id)
    return AttachmentClaimReportRead.model_validate(report)
