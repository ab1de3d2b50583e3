"""
schemas.py - Pydantic request/response models for the HTTP layer.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .attachments import ClaimFailureReason
from .errors import ResultClassification
from .models.enums import Department, GrievanceStatus


class GrievanceCreate(BaseModel):
    category: str
    campus_id: int
    subject: str
    description: str
    attachment_ids: list[int] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    status: GrievanceStatus
    note: Optional[str] = None
    redirect_target: Optional[Department] = None
    expected_status: Optional[GrievanceStatus] = None


class AttachmentClaimRequest(BaseModel):
    attachment_ids: list[int] = Field(..., min_length=1)


class SweepRequest(BaseModel):
    retention_hours: Optional[float] = Field(default=None, ge=0)


class GrievanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_code: str
    submitter_id: str
    campus_id: int
    category: str
    subject: str
    description: str
    has_attachments: bool
    status: GrievanceStatus
    created_at: datetime
    updated_at: datetime


class TrackingEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence_number: int
    from_status: Optional[GrievanceStatus] = None
    to_status: GrievanceStatus
    actor_id: str
    actor_role: Optional[str] = None
    note: str
    redirect_target: Optional[str] = None
    is_redirect: bool
    is_override: bool
    created_at: datetime


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    grievance_id: Optional[int] = None
    original_filename: str
    mime_type: str
    size_bytes: int
    uploaded_by: str
    uploaded_at: datetime
    claimed_at: Optional[datetime] = None


class ClaimFailureRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attachment_id: int
    reason: ClaimFailureReason


class AttachmentClaimReportRead(BaseModel):
    """PARTIAL_ACCEPT marks a creation that succeeded with unlinked attachments."""
    model_config = ConfigDict(from_attributes=True)

    classification: ResultClassification
    requested: list[int]
    linked_ids: list[int]
    linked_count: int
    failed_count: int
    failures: list[ClaimFailureRead]


class GrievanceCreated(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    grievance: GrievanceRead
    attachments: AttachmentClaimReportRead


class GrievanceSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_count: int
    redirections: int
    involved_actors: list[str]
    current_queue: Department
    resolution_seconds: Optional[float] = None


class GrievanceDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    grievance: GrievanceRead
    history: list[TrackingEntryRead]
    attachments: list[AttachmentRead]
    summary: GrievanceSummaryRead


class SweepResult(BaseModel):
    deleted: int
