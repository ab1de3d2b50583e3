"""
policy.py - Redirection Policy

The single place where "who may move which grievance where" is decided.
Pure: no I/O, no database, no clock. Callers pass everything in.

RULES (first match wins):
1. Nobody may request SUBMITTED; only creation writes it.
2. Only administrators may change status.
3. SUPER_ADMIN may perform any transition. Leaving a terminal state, or
   any pair outside the normal table, is flagged as an override.
4. CAMPUS_ADMIN acts on its own campus, on non-ACADEMIC/EXAM categories,
   while the grievance sits in the CAMPUS queue; redirects go to ACADEMIC
   or EXAM only.
5. DEPT_ADMIN acts only while the grievance sits in its own department
   queue; may redirect to any other department.
6. RESOLVED and REJECTED are terminal.
7. The pair (current, requested) must be in TRANSITIONS.
8. REDIRECTED needs a target different from the current queue; no other
   status carries a target.

READS: administrators see grievances on their own campus (super admins
and unscoped department admins see every campus). A grievance is in an
administrator's working queue when rules 4 and 5 would let them act on it.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from .models.enums import AdminRole, Department, GrievanceStatus

TRANSITIONS: Dict[GrievanceStatus, FrozenSet[GrievanceStatus]] = {
    GrievanceStatus.SUBMITTED: frozenset({
        GrievanceStatus.IN_PROGRESS,
        GrievanceStatus.REDIRECTED,
        GrievanceStatus.REJECTED,
        GrievanceStatus.RESOLVED,
    }),
    GrievanceStatus.IN_PROGRESS: frozenset({
        GrievanceStatus.REDIRECTED,
        GrievanceStatus.REJECTED,
        GrievanceStatus.RESOLVED,
    }),
    GrievanceStatus.REDIRECTED: frozenset({
        GrievanceStatus.IN_PROGRESS,
        GrievanceStatus.REJECTED,
        GrievanceStatus.RESOLVED,
    }),
    GrievanceStatus.RESOLVED: frozenset(),
    GrievanceStatus.REJECTED: frozenset(),
}

DEPARTMENT_CATEGORIES = frozenset({Department.ACADEMIC.value, Department.EXAM.value})
CAMPUS_REDIRECT_TARGETS = frozenset({Department.ACADEMIC, Department.EXAM})


@dataclass(frozen=True)
class ActorScope:
    """Boundary an administrator acts within. None means unscoped."""
    department: Optional[Department] = None
    campus_id: Optional[int] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""
    resulting_status: Optional[GrievanceStatus] = None
    override: bool = False

    def __bool__(self) -> bool:
        return self.allowed


def _allow(status: GrievanceStatus, override: bool = False) -> Decision:
    reason = "override" if override else "allowed"
    return Decision(allowed=True, reason=reason, resulting_status=status, override=override)


def _deny(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)


def is_normal_transition(current: GrievanceStatus, requested: GrievanceStatus) -> bool:
    return requested in TRANSITIONS.get(current, frozenset())


def can_transition(
    actor_role: Optional[AdminRole],
    actor_scope: ActorScope,
    grievance_category: str,
    grievance_campus: int,
    current_status: GrievanceStatus,
    requested_status: GrievanceStatus,
    requested_target: Optional[Department] = None,
    current_queue: Optional[Department] = None,
) -> Decision:
    """
    Decide whether an actor may move a grievance to ``requested_status``.

    ``current_queue`` is the department currently owning the workflow slot
    (latest redirect target, else the category's home department). When
    omitted it is derived from the category.
    """
    category = (grievance_category or "").upper()
    if current_queue is None:
        current_queue = Department(category) if category in DEPARTMENT_CATEGORIES else Department.CAMPUS

    if requested_status == GrievanceStatus.SUBMITTED:
        return _deny("SUBMITTED is set only when a grievance is created")

    if actor_role is None:
        return _deny("Only administrators may change grievance status")

    target_problem = _check_target(requested_status, requested_target, current_queue)

    if actor_role == AdminRole.SUPER_ADMIN:
        if target_problem:
            return _deny(target_problem)
        override = current_status.is_terminal or not is_normal_transition(current_status, requested_status)
        return _allow(requested_status, override=override)

    if actor_role == AdminRole.CAMPUS_ADMIN:
        scope_problem = _check_campus_scope(actor_scope, category, grievance_campus, current_queue)
    elif actor_role == AdminRole.DEPT_ADMIN:
        scope_problem = _check_department_scope(actor_scope, grievance_campus, current_queue)
    else:
        scope_problem = f"Unknown administrator role: {actor_role}"
    if scope_problem:
        return _deny(scope_problem)

    if current_status.is_terminal:
        return _deny(
            f"Grievance is {current_status.value}; only a super admin may reopen it"
        )

    if not is_normal_transition(current_status, requested_status):
        return _deny(
            f"Cannot move a grievance from {current_status.value} to {requested_status.value}"
        )

    if target_problem:
        return _deny(target_problem)

    if (
        actor_role == AdminRole.CAMPUS_ADMIN
        and requested_status == GrievanceStatus.REDIRECTED
        and requested_target not in CAMPUS_REDIRECT_TARGETS
    ):
        return _deny("Campus admins can only redirect to the ACADEMIC or EXAM department")

    return _allow(requested_status)


def _check_target(
    requested_status: GrievanceStatus,
    requested_target: Optional[Department],
    current_queue: Department,
) -> Optional[str]:
    if requested_status == GrievanceStatus.REDIRECTED:
        if requested_target is None:
            return "A redirect needs a target department"
        if requested_target == current_queue:
            return f"Grievance is already in the {current_queue.value} queue"
        return None
    if requested_target is not None:
        return "Only a redirect may name a target department"
    return None


def _check_campus_scope(
    scope: ActorScope,
    category: str,
    grievance_campus: int,
    current_queue: Department,
) -> Optional[str]:
    if scope.campus_id is None or scope.campus_id != grievance_campus:
        return "Grievance belongs to a different campus"
    if category in DEPARTMENT_CATEGORIES:
        return f"{category} grievances are handled by the {category} department"
    if current_queue != Department.CAMPUS:
        return f"Grievance is routed to the {current_queue.value} department"
    return None


def _check_department_scope(
    scope: ActorScope,
    grievance_campus: int,
    current_queue: Department,
) -> Optional[str]:
    if scope.department is None:
        return "Department admin has no department"
    if scope.campus_id is not None and scope.campus_id != grievance_campus:
        return "Grievance belongs to a different campus"
    if scope.department != current_queue:
        return (
            f"Grievance is routed to {current_queue.value}, "
            f"not the {scope.department.value} department"
        )
    return None


def can_view(actor_role: Optional[AdminRole], actor_scope: ActorScope, grievance_campus: int) -> bool:
    """Campus read boundary for administrators. Students are never granted here."""
    if actor_role == AdminRole.SUPER_ADMIN:
        return True
    if actor_role == AdminRole.CAMPUS_ADMIN:
        return actor_scope.campus_id is not None and actor_scope.campus_id == grievance_campus
    if actor_role == AdminRole.DEPT_ADMIN:
        return actor_scope.campus_id is None or actor_scope.campus_id == grievance_campus
    return False


def in_working_queue(
    actor_role: Optional[AdminRole],
    actor_scope: ActorScope,
    grievance_category: str,
    grievance_campus: int,
    current_queue: Department,
) -> bool:
    if actor_role == AdminRole.SUPER_ADMIN:
        return True
    if actor_role == AdminRole.CAMPUS_ADMIN:
        category = (grievance_category or "").upper()
        return _check_campus_scope(actor_scope, category, grievance_campus, current_queue) is None
    if actor_role == AdminRole.DEPT_ADMIN:
        return _check_department_scope(actor_scope, grievance_campus, current_queue) is None
    return False
