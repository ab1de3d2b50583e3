from enum import Enum


class GrievanceStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    REDIRECTED = "REDIRECTED"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in (GrievanceStatus.RESOLVED, GrievanceStatus.REJECTED)


class AdminRole(str, Enum):
    DEPT_ADMIN = "DEPT_ADMIN"
    CAMPUS_ADMIN = "CAMPUS_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class Department(str, Enum):
    """Workflow queues a grievance can sit in."""

    ACADEMIC = "ACADEMIC"
    EXAM = "EXAM"
    CAMPUS = "CAMPUS"


# Actor id recorded on ledger entries the engine writes by itself.
SYSTEM_ACTOR = "SYSTEM"
