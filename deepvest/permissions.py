"""Project role lookups and role management.

Roles are totally ordered: viewer < editor < admin < owner.  A role check
never raises: a missing row, a failed lookup and an insufficient rank all
deny the operation the same way.
"""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from deepvest.errors import NotFoundError, PermissionDeniedError, ValidationError
from deepvest.models import ProjectPermission, Role

log = logging.getLogger(__name__)

ROLE_RANK: dict[Role, int] = {
    Role.VIEWER: 1,
    Role.EDITOR: 2,
    Role.ADMIN: 3,
    Role.OWNER: 4,
}


def role_satisfies(held: Role, required: Role) -> bool:
    return ROLE_RANK[held] >= ROLE_RANK[required]


def _permission_row(session: Session, user_id: uuid.UUID, project_id: uuid.UUID) -> ProjectPermission | None:
    return session.execute(
        select(ProjectPermission).where(
            ProjectPermission.project_id == project_id,
            ProjectPermission.user_id == user_id,
        )
    ).scalars().first()


def get_user_role(session: Session, user_id: uuid.UUID | None, project_id: uuid.UUID) -> Role | None:
    if user_id is None:
        return None
    try:
        row = _permission_row(session, user_id, project_id)
    except SQLAlchemyError as exc:
        log.warning("Role lookup failed for user %s on project %s: %s", user_id, project_id, exc)
        return None
    return row.role if row else None


def check_role(
    session: Session, user_id: uuid.UUID | None, project_id: uuid.UUID, required_role: Role,
) -> bool:
    role = get_user_role(session, user_id, project_id)
    if role is None:
        return False
    return role_satisfies(role, required_role)


def require_role(
    session: Session, user_id: uuid.UUID, project_id: uuid.UUID, required_role: Role,
) -> None:
    if not check_role(session, user_id, project_id, required_role):
        raise PermissionDeniedError(
            f"Insufficient permissions. This action requires the {required_role.value} role or higher."
        )


# ---------------------------------------------------------------------------
# Role management (caller must commit)
# ---------------------------------------------------------------------------


def list_permissions(session: Session, project_id: uuid.UUID) -> list[ProjectPermission]:
    rows = session.execute(
        select(ProjectPermission)
        .where(ProjectPermission.project_id == project_id)
        .order_by(ProjectPermission.created_at)
    ).scalars().all()
    return sorted(rows, key=lambda p: -ROLE_RANK[p.role])


def grant_role(session: Session, project_id: uuid.UUID, user_id: uuid.UUID, role: Role) -> ProjectPermission:
    """Add *user_id* to the project, or change the role of an existing member."""
    existing = _permission_row(session, user_id, project_id)
    if existing is not None:
        return update_role(session, project_id, user_id, role)
    if role is Role.OWNER:
        raise ValidationError("A project can only have one owner; transfer ownership instead")
    perm = ProjectPermission(project_id=project_id, user_id=user_id, role=role)
    session.add(perm)
    return perm


def update_role(session: Session, project_id: uuid.UUID, user_id: uuid.UUID, role: Role) -> ProjectPermission:
    """Change a member's role.

    The owner cannot be demoted directly.  Promoting another member to owner
    transfers ownership: the previous owner becomes an admin, so the project
    always has exactly one owner.
    """
    perm = _permission_row(session, user_id, project_id)
    if perm is None:
        raise NotFoundError("User is not a member of this project")
    if perm.role is Role.OWNER:
        if role is not Role.OWNER:
            raise ValidationError("Cannot change the role of the project owner")
        return perm
    if role is Role.OWNER:
        current_owner = session.execute(
            select(ProjectPermission).where(
                ProjectPermission.project_id == project_id,
                ProjectPermission.role == Role.OWNER,
            )
        ).scalars().first()
        if current_owner is not None:
            current_owner.role = Role.ADMIN
            log.info("Ownership of project %s moved from %s to %s", project_id, current_owner.user_id, user_id)
    perm.role = role
    return perm


def revoke_role(session: Session, project_id: uuid.UUID, user_id: uuid.UUID) -> None:
    perm = _permission_row(session, user_id, project_id)
    if perm is None:
        raise NotFoundError("User is not a member of this project")
    if perm.role is Role.OWNER:
        raise ValidationError("Cannot remove the project owner")
    session.delete(perm)


def require_author_or_admin(
    session: Session, user_id: uuid.UUID, project_id: uuid.UUID, author_id: uuid.UUID | None,
) -> None:
    """Editors may change what they authored; admins and owners may change anything."""
    if author_id is not None and author_id == user_id and check_role(session, user_id, project_id, Role.EDITOR):
        return
    if not check_role(session, user_id, project_id, Role.ADMIN):
        raise PermissionDeniedError("Insufficient permissions")
