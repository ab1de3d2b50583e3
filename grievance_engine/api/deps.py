"""
deps.py - FastAPI dependencies.

Identity comes from the upstream auth collaborator as request headers; the
engine trusts what it is told and does not re-verify credentials.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from grievance_engine.errors import access_denied, invalid_field
from grievance_engine.lifecycle import Actor, GrievanceLifecycle
from grievance_engine.models import AdminRole, Department
from grievance_engine.policy import ActorScope

STUDENT_ROLE = "STUDENT"


@lru_cache
def get_lifecycle() -> GrievanceLifecycle:
    return GrievanceLifecycle()


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: str = Header(default=STUDENT_ROLE),
    x_actor_department: Optional[str] = Header(default=None),
    x_actor_campus: Optional[str] = Header(default=None),
) -> Actor:
    if not x_actor_id or not x_actor_id.strip():
        raise access_denied("Missing actor identity")

    role_name = x_actor_role.strip().upper()
    if role_name == STUDENT_ROLE:
        role = None
    else:
        try:
            role = AdminRole(role_name)
        except ValueError:
            raise invalid_field("X-Actor-Role", "unknown role", x_actor_role) from None

    department = None
    if x_actor_department:
        try:
            department = Department(x_actor_department.strip().upper())
        except ValueError:
            raise invalid_field("X-Actor-Department", "unknown department", x_actor_department) from None

    campus_id = None
    if x_actor_campus:
        if not x_actor_campus.strip().isdigit():
            raise invalid_field("X-Actor-Campus", "must be an integer", x_actor_campus)
        campus_id = int(x_actor_campus)

    return Actor(
        actor_id=x_actor_id.strip(),
        role=role,
        scope=ActorScope(department=department, campus_id=campus_id),
    )


def require_super_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != AdminRole.SUPER_ADMIN:
        raise access_denied("Super admin role required")
    return actor
