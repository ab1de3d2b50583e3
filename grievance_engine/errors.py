"""
grievance_engine/errors.py - Error Taxonomy

Errors are contracts, not strings. Every failure surfaced by the engine
carries a stable code, a message and structured details.

Classes (HTTP status in brackets):
- ValidationError     [400] malformed or missing input, never mutates
- NotFoundError       [404] grievance/attachment missing or not visible
- AuthorizationError  [403] RedirectionPolicy denied the transition
- ConflictError       [409] stale ledger head or attachment already claimed
- StorageError        [503] durable store or blob store unavailable

Partial attachment linking is NOT an error: it is reported through
ResultClassification.PARTIAL_ACCEPT on the claim report.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ResultClassification(str, Enum):
    ACCEPT = "ACCEPT"
    PARTIAL_ACCEPT = "PARTIAL_ACCEPT"
    REJECT = "REJECT"


class GrievanceErrorCode(str, Enum):
    # ValidationError (400)
    MISSING_FIELDS = "GRIEVANCE_MISSING_FIELDS"
    INVALID_FIELD = "GRIEVANCE_INVALID_FIELD"
    UNKNOWN_CATEGORY = "GRIEVANCE_UNKNOWN_CATEGORY"
    INVALID_ATTACHMENTS = "GRIEVANCE_INVALID_ATTACHMENTS"
    ATTACHMENT_REJECTED = "ATTACHMENT_REJECTED"

    # NotFoundError (404)
    GRIEVANCE_NOT_FOUND = "GRIEVANCE_NOT_FOUND"
    ATTACHMENT_NOT_FOUND = "ATTACHMENT_NOT_FOUND"

    # AuthorizationError (403)
    TRANSITION_DENIED = "GRIEVANCE_TRANSITION_DENIED"
    ACCESS_DENIED = "GRIEVANCE_ACCESS_DENIED"

    # ConflictError (409)
    STALE_LEDGER = "LEDGER_STALE_HEAD"
    ATTACHMENT_CLAIMED = "ATTACHMENT_ALREADY_CLAIMED"
    WRITE_CONFLICT = "STORAGE_WRITE_CONFLICT"

    # StorageError (503)
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"


@dataclass(frozen=True)
class ErrorDetail:
    """Immutable error payload."""
    error_code: GrievanceErrorCode
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details or {},
        }


class GrievanceEngineError(Exception):
    """Base class for every error the engine raises on purpose."""

    http_status = 500

    def __init__(self, error: ErrorDetail):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> GrievanceErrorCode:
        return self.error.error_code

    def to_dict(self) -> Dict[str, Any]:
        return self.error.to_dict()


class ValidationError(GrievanceEngineError):
    http_status = 400


class NotFoundError(GrievanceEngineError):
    http_status = 404


class AuthorizationError(GrievanceEngineError):
    http_status = 403


class ConflictError(GrievanceEngineError):
    http_status = 409


class StorageError(GrievanceEngineError):
    http_status = 503


# --- Factories ---

def missing_fields(fields: List[str]) -> ValidationError:
    return ValidationError(ErrorDetail(
        error_code=GrievanceErrorCode.MISSING_FIELDS,
        message=f"Required fields are missing or empty: {', '.join(fields)}",
        details={"fields": fields},
    ))


def invalid_field(field: str, reason: str, value: Any = None) -> ValidationError:
    details: Dict[str, Any] = {"field": field, "reason": reason}
    if value is not None:
        details["received"] = value
    return ValidationError(ErrorDetail(
        error_code=GrievanceErrorCode.INVALID_FIELD,
        message=f"Invalid value for '{field}': {reason}",
        details=details,
    ))


def unknown_category(category: str) -> ValidationError:
    return ValidationError(ErrorDetail(
        error_code=GrievanceErrorCode.UNKNOWN_CATEGORY,
        message=f"Unknown or inactive issue category: {category}",
        details={"category": category},
    ))


def invalid_attachments(invalid_ids: List[int]) -> ValidationError:
    """
    Raised by the ownership/availability pre-check: the whole creation is
    rejected when any requested attachment is not an unclaimed upload of
    the submitter.
    """
    return ValidationError(ErrorDetail(
        error_code=GrievanceErrorCode.INVALID_ATTACHMENTS,
        message="Some attachments are not available to this submitter",
        details={"invalid_ids": invalid_ids},
    ))


def attachment_rejected(reason: str, **details: Any) -> ValidationError:
    return ValidationError(ErrorDetail(
        error_code=GrievanceErrorCode.ATTACHMENT_REJECTED,
        message=f"Attachment rejected: {reason}",
        details={"reason": reason, **details},
    ))


def grievance_not_found(ref: Any) -> NotFoundError:
    return NotFoundError(ErrorDetail(
        error_code=GrievanceErrorCode.GRIEVANCE_NOT_FOUND,
        message=f"Grievance {ref} not found",
        details={"grievance": str(ref)},
    ))


def attachment_not_found(attachment_id: int) -> NotFoundError:
    return NotFoundError(ErrorDetail(
        error_code=GrievanceErrorCode.ATTACHMENT_NOT_FOUND,
        message=f"Attachment {attachment_id} not found or access denied",
        details={"attachment_id": attachment_id},
    ))


def transition_denied(reason: str, **details: Any) -> AuthorizationError:
    return AuthorizationError(ErrorDetail(
        error_code=GrievanceErrorCode.TRANSITION_DENIED,
        message=reason,
        details=details,
    ))


def access_denied(reason: str) -> AuthorizationError:
    return AuthorizationError(ErrorDetail(
        error_code=GrievanceErrorCode.ACCESS_DENIED,
        message=reason,
        details={},
    ))


def stale_ledger(grievance_id: int, expected: Optional[str], actual: Optional[str]) -> ConflictError:
    return ConflictError(ErrorDetail(
        error_code=GrievanceErrorCode.STALE_LEDGER,
        message="Grievance state changed, please refresh",
        details={"grievance_id": grievance_id, "expected_status": expected, "current_status": actual},
    ))


def attachment_claimed(attachment_id: int) -> ConflictError:
    return ConflictError(ErrorDetail(
        error_code=GrievanceErrorCode.ATTACHMENT_CLAIMED,
        message=f"Attachment {attachment_id} is already linked to a grievance",
        details={"attachment_id": attachment_id},
    ))


def write_conflict(reason: str) -> ConflictError:
    return ConflictError(ErrorDetail(
        error_code=GrievanceErrorCode.WRITE_CONFLICT,
        message="Concurrent write conflict, please retry",
        details={"reason": reason},
    ))


def storage_unavailable(reason: str) -> StorageError:
    return StorageError(ErrorDetail(
        error_code=GrievanceErrorCode.STORAGE_UNAVAILABLE,
        message="Storage backend unavailable",
        details={"reason": reason},
    ))
