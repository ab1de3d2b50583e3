from .enums import AdminRole, Department, GrievanceStatus, SYSTEM_ACTOR
from .grievance import Grievance
from .tracking import LedgerMutationError, TrackingEntry
from .attachment import Attachment

__all__ = [
    "AdminRole",
    "Attachment",
    "Department",
    "Grievance",
    "GrievanceStatus",
    "LedgerMutationError",
    "SYSTEM_ACTOR",
    "TrackingEntry",
]
