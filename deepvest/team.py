"""Team members of a project.  Deletion is a tombstone (``deleted_at``); every read filters it."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from deepvest.auth import AuthUser
from deepvest.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from deepvest.models import Role, Snapshot, TeamMember, TeamMemberStatus, utcnow
from deepvest.permissions import get_user_role, role_satisfies
from deepvest.utils import id_list

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "is_founder", "status")


def list_team_members(session: Session, project_id: uuid.UUID) -> list[TeamMember]:
    return list(session.execute(
        select(TeamMember).where(
            TeamMember.project_id == project_id,
            TeamMember.deleted_at.is_(None),
        ).order_by(TeamMember.is_founder.desc(), TeamMember.created_at)
    ).scalars().all())


def get_team_member(session: Session, project_id: uuid.UUID, member_id: uuid.UUID) -> TeamMember:
    member = session.execute(
        select(TeamMember).where(
            TeamMember.id == member_id,
            TeamMember.project_id == project_id,
            TeamMember.deleted_at.is_(None),
        )
    ).scalars().first()
    if member is None:
        raise NotFoundError("Team member not found")
    return member


def _check_email(session: Session, project_id: uuid.UUID, email: str | None, exclude_id: uuid.UUID | None = None):
    if not email:
        return
    stmt = select(TeamMember.id).where(
        TeamMember.project_id == project_id,
        TeamMember.email == email,
        TeamMember.deleted_at.is_(None),
    )
    if exclude_id is not None:
        stmt = stmt.where(TeamMember.id != exclude_id)
    if session.execute(stmt).first():
        raise ConflictError("A team member with this email already exists in this project")


def create_team_member(
    session: Session, project_id: uuid.UUID, author_id: uuid.UUID | None, data: dict[str, Any],
) -> TeamMember:
    """Add a member (caller must commit)."""
    _check_email(session, project_id, data.get("email"))
    member = TeamMember(project_id=project_id, author_id=author_id, **data)
    session.add(member)
    session.flush()
    return member


def create_ceo_member(session: Session, project_id: uuid.UUID, user: AuthUser) -> TeamMember:
    """The project creator as founder and CEO."""
    return create_team_member(session, project_id, user.id, {
        "name": user.display_name,
        "email": user.email,
        "is_founder": True,
        "positions": ["CEO"],
        "status": TeamMemberStatus.ACTIVE,
        "joined_at": utcnow(),
    })


def update_team_member(session: Session, member: TeamMember, updates: dict[str, Any]) -> TeamMember:
    if updates.get("email") and updates["email"] != member.email:
        _check_email(session, member.project_id, updates["email"], exclude_id=member.id)
    for key, value in updates.items():
        if value is None and key in REQUIRED_FIELDS:
            continue
        setattr(member, key, value)
    return member


def delete_team_member(member: TeamMember) -> None:
    member.deleted_at = utcnow()
    log.info("Soft-deleted team member %s of project %s", member.id, member.project_id)


BULK_STATUS = {
    "activate": TeamMemberStatus.ACTIVE,
    "deactivate": TeamMemberStatus.INACTIVE,
    "invite": TeamMemberStatus.INVITED,
}
BULK_ACTIONS = ("delete",) + tuple(BULK_STATUS)


def bulk_update_team_members(
    session: Session, project_id: uuid.UUID, user_id: uuid.UUID, member_ids: list[uuid.UUID], action: str,
) -> list[TeamMember]:
    """Delete or change the status of several members at once (caller must commit).

    All ids must name live members of the project.  Editors may only touch
    members they added; admins and owners may touch any.  Members referenced
    by a locked snapshot cannot be deleted.
    """
    if action not in BULK_ACTIONS:
        raise ValidationError("Invalid action")
    wanted = set(member_ids)
    members = list(session.execute(
        select(TeamMember).where(
            TeamMember.project_id == project_id,
            TeamMember.id.in_(wanted),
            TeamMember.deleted_at.is_(None),
        )
    ).scalars().all())
    if len(members) != len(wanted):
        raise NotFoundError("Some team members not found")

    role = get_user_role(session, user_id, project_id)
    is_admin = role is not None and role_satisfies(role, Role.ADMIN)
    if not is_admin and any(m.author_id != user_id for m in members):
        raise PermissionDeniedError("Insufficient permissions for some team members")

    if action == "delete":
        locked = session.execute(
            select(Snapshot.team_members).where(
                Snapshot.project_id == project_id,
                Snapshot.is_locked.is_(True),
            )
        ).scalars().all()
        referenced = {mid for ids in locked for mid in id_list(ids)}
        if referenced & wanted:
            raise ConflictError("Cannot delete team members: some are referenced in locked snapshots")
        now = utcnow()
        for member in members:
            member.deleted_at = now
    else:
        for member in members:
            member.status = BULK_STATUS[action]
    log.info("Bulk %s of %d team members in project %s", action, len(members), project_id)
    return members
