"""Shared business logic for the DeepVest API: projects, profiles, serializers."""
from __future__ import annotations

import logging
import re
import uuid
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from deepvest.auth import AuthUser
from deepvest.cache import revalidate
from deepvest.errors import APIError, ConflictError
from deepvest.models import (
    Project, ProjectContent, ProjectPermission, ProjectScoring, Role, ScoringStatus, Snapshot,
    TeamMember, UserProfile,
)
from deepvest.permissions import get_user_role, role_satisfies
from deepvest.publication import publication_state
from deepvest.scorer import FALLBACK_MODEL_VERSION
from deepvest.snapshots import create_snapshot, draft_snapshot, get_snapshot, sync_snapshot
from deepvest.team import create_ceo_member
from deepvest.utils import id_list

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

PROFILE_FIELDS = (
    "full_name", "nickname", "avatar_url", "cover_url", "bio", "professional_background",
    "startup_ecosystem_role", "country", "city", "website_url", "x_username",
    "linkedin_username", "github_username",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _enum_value(value) -> Any:
    return getattr(value, "value", value)


def serialize_snapshot(s: Snapshot | None) -> dict | None:
    if s is None:
        return None
    return {
        "id": str(s.id), "project_id": str(s.project_id), "version": s.version,
        "name": s.name, "slogan": s.slogan, "description": s.description,
        "status": _enum_value(s.status), "country": s.country, "city": s.city,
        "repository_urls": s.repository_urls or [], "website_urls": s.website_urls or [],
        "logo_url": s.logo_url, "banner_url": s.banner_url, "video_urls": s.video_urls or [],
        "contents": s.contents or [], "team_members": s.team_members or [],
        "is_locked": s.is_locked,
        "scoring_id": str(s.scoring_id) if s.scoring_id else None,
        "author_id": str(s.author_id) if s.author_id else None,
        "created_at": _iso(s.created_at), "updated_at": _iso(s.updated_at),
    }


def serialize_permission(p: ProjectPermission) -> dict:
    return {
        "id": str(p.id), "project_id": str(p.project_id), "user_id": str(p.user_id),
        "role": p.role.value, "created_at": _iso(p.created_at), "updated_at": _iso(p.updated_at),
    }


def serialize_team_member(m: TeamMember) -> dict:
    return {
        "id": str(m.id), "project_id": str(m.project_id), "name": m.name, "email": m.email,
        "positions": m.positions or [], "is_founder": m.is_founder,
        "equity_percent": m.equity_percent, "country": m.country, "city": m.city,
        "x_url": m.x_url, "github_url": m.github_url, "linkedin_url": m.linkedin_url,
        "status": _enum_value(m.status), "joined_at": _iso(m.joined_at),
        "departed_at": _iso(m.departed_at), "created_at": _iso(m.created_at),
    }


def serialize_document(d: ProjectContent) -> dict:
    return {
        "id": str(d.id), "project_id": str(d.project_id), "title": d.title, "slug": d.slug,
        "content_type": _enum_value(d.content_type), "content": d.content,
        "description": d.description, "file_urls": d.file_urls or [], "is_public": d.is_public,
        "author_id": str(d.author_id) if d.author_id else None,
        "created_at": _iso(d.created_at), "updated_at": _iso(d.updated_at),
    }


def serialize_profile(p: UserProfile) -> dict:
    return {"id": str(p.id), **{f: getattr(p, f) for f in PROFILE_FIELDS},
            "created_at": _iso(p.created_at), "updated_at": _iso(p.updated_at)}


def project_summary(session: Session, project: Project, role: Role | None = None) -> dict:
    """List-view shape: project flags plus the snapshot a caller with *role* may see."""
    shown = get_snapshot(session, project.public_snapshot_id)
    if role is not None:
        shown = draft_snapshot(session, project) or shown or get_snapshot(session, project.new_snapshot_id)
    return {
        "id": str(project.id), "slug": project.slug, "is_public": project.is_public,
        "is_archived": project.is_archived, "is_demo": project.is_demo,
        "public_snapshot_id": str(project.public_snapshot_id) if project.public_snapshot_id else None,
        "new_snapshot_id": str(project.new_snapshot_id) if project.new_snapshot_id else None,
        "publication_state": publication_state(project).value,
        "role": role.value if role else None,
        "snapshot": serialize_snapshot(shown),
        "created_at": _iso(project.created_at), "updated_at": _iso(project.updated_at),
    }


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def sync_quietly(session: Session, project_id: uuid.UUID, author_id: uuid.UUID | None) -> None:
    """Refresh the editable snapshot's id lists after a team or document change.

    Failures are logged and never undo the change that triggered them.
    """
    project = session.get(Project, project_id)
    if project is None:
        return
    try:
        sync_snapshot(session, project, author_id)
        session.commit()
    except (SQLAlchemyError, APIError) as exc:
        session.rollback()
        log.warning("Failed to sync snapshot data for project %s: %s", project_id, exc)
        return
    revalidate(f"/projects/{project_id}")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def is_slug_available(session: Session, slug: str, exclude_id: uuid.UUID | None = None) -> bool:
    stmt = select(Project.id).where(Project.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(Project.id != exclude_id)
    return session.execute(stmt).first() is None


def create_project(
    session: Session, user: AuthUser, name: str, slug: str,
    description: str = "", status=None, skip_auto_team: bool = False,
) -> tuple[Project, Snapshot]:
    """Create a project owned by *user* with a first draft snapshot (caller must commit).

    Unless ``skip_auto_team`` is set the creator is added to the team as
    founder and CEO, and the draft lists them.
    """
    if not is_slug_available(session, slug):
        raise ConflictError("Project URL is already taken. Please choose a different one.")

    project = Project(slug=slug, is_public=False)
    session.add(project)
    session.flush()
    session.add(ProjectPermission(project_id=project.id, user_id=user.id, role=Role.OWNER))

    fields: dict[str, Any] = {"name": name, "description": description}
    if status is not None:
        fields["status"] = status
    snapshot = create_snapshot(session, project, user.id, fields)

    if skip_auto_team:
        log.info("Skipping auto CEO creation for project %s", project.id)
    else:
        member = create_ceo_member(session, project.id, user)
        snapshot.team_members = [str(member.id)]
    log.info("Created project %s (%s) for user %s", project.id, slug, user.id)
    return project, snapshot


def list_visible_projects(session: Session, user: AuthUser | None) -> list[dict]:
    """Public, non-archived projects, plus every project the caller holds a role on."""
    roles: dict[uuid.UUID, Role] = {}
    if user is not None:
        for perm in session.execute(
            select(ProjectPermission).where(ProjectPermission.user_id == user.id)
        ).scalars():
            roles[perm.project_id] = perm.role

    visible = (Project.is_public.is_(True)) & (Project.is_archived.is_(False))
    stmt = select(Project)
    stmt = stmt.where(or_(visible, Project.id.in_(list(roles)))) if roles else stmt.where(visible)
    projects = session.execute(stmt.order_by(Project.created_at.desc())).scalars().all()
    return [project_summary(session, p, roles.get(p.id)) for p in projects]


def get_project_view(session: Session, user: AuthUser | None, project_id: uuid.UUID) -> dict | None:
    """Detail view: project, visible snapshot, public documents and team.

    Returns None when the project does not exist or is hidden from the caller.
    """
    project = session.get(Project, project_id)
    if project is None:
        return None
    role = get_user_role(session, user.id if user else None, project_id)
    if not project.is_public and (role is None or not role_satisfies(role, Role.VIEWER)):
        return None

    view = project_summary(session, project, role)
    shown = get_snapshot(session, project.public_snapshot_id) if role is None else None
    member_ids = id_list((shown.team_members if shown else None) or [])

    stmt = select(ProjectContent).where(
        ProjectContent.project_id == project_id, ProjectContent.deleted_at.is_(None),
    )
    if role is None:
        stmt = stmt.where(ProjectContent.is_public.is_(True))
    view["documents"] = [
        serialize_document(d) for d in session.execute(stmt.order_by(ProjectContent.created_at)).scalars()
    ]

    team_stmt = select(TeamMember).where(TeamMember.project_id == project_id, TeamMember.deleted_at.is_(None))
    if role is None:
        team_stmt = team_stmt.where(TeamMember.id.in_(member_ids))
    view["team_members"] = [
        serialize_team_member(m) for m in session.execute(
            team_stmt.order_by(TeamMember.is_founder.desc(), TeamMember.created_at)
        ).scalars()
    ]
    return view


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

_NICK_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")


def _default_nickname(session: Session, user: AuthUser) -> str:
    base = _NICK_UNSAFE_RE.sub("", (user.email or "").split("@")[0])[:24] or "user"
    if len(base) < 3:
        base = f"{base}user"
    nickname, n = base, 1
    while session.execute(select(UserProfile.id).where(UserProfile.nickname == nickname)).first():
        n += 1
        nickname = f"{base}{n}"
    return nickname


def get_or_create_profile(session: Session, user: AuthUser) -> UserProfile:
    """Profile of the caller; created from token claims on first access (caller must commit)."""
    profile = session.get(UserProfile, user.id)
    if profile is None:
        profile = UserProfile(
            id=user.id,
            full_name=str(user.user_metadata.get("full_name") or ""),
            nickname=_default_nickname(session, user),
        )
        session.add(profile)
        session.flush()
        log.info("Created profile for user %s", user.id)
    return profile


def update_profile(session: Session, profile: UserProfile, updates: dict[str, Any]) -> UserProfile:
    nickname = updates.get("nickname")
    if nickname and nickname != profile.nickname:
        taken = session.execute(
            select(UserProfile.id).where(UserProfile.nickname == nickname, UserProfile.id != profile.id)
        ).first()
        if taken:
            raise ConflictError("Nickname is already taken")
    apply_updates(profile, updates, PROFILE_FIELDS)
    return profile


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


def leaderboard(session: Session, page: int = 1, limit: int = 10, min_score: float | None = None) -> dict:
    """Public projects ranked by the AI score of their public snapshot.

    Fallback records carry mock numbers and are left out.
    """
    offset = (page - 1) * limit
    stmt = (
        select(Project, Snapshot, ProjectScoring)
        .join(Snapshot, Snapshot.id == Project.public_snapshot_id)
        .join(ProjectScoring, ProjectScoring.snapshot_id == Snapshot.id)
        .where(
            Project.is_public.is_(True),
            Project.is_archived.is_(False),
            ProjectScoring.status == ScoringStatus.COMPLETED,
            ProjectScoring.ai_model_version != FALLBACK_MODEL_VERSION,
            ProjectScoring.score.is_not(None),
        )
    )
    if min_score is not None:
        stmt = stmt.where(ProjectScoring.score >= min_score)
    rows = session.execute(
        stmt.order_by(ProjectScoring.score.desc(), ProjectScoring.created_at.asc())
        .offset(offset).limit(limit)
    ).all()
    projects = [
        {
            "project_id": str(project.id),
            "project_slug": project.slug,
            "project_name": snapshot.name,
            "project_slogan": snapshot.slogan,
            "project_status": _enum_value(snapshot.status),
            "score": scoring.score,
            "investment_rating": scoring.investment_rating,
            "market_potential": scoring.market_potential,
            "team_competency": scoring.team_competency,
            "tech_innovation": scoring.tech_innovation,
            "business_model": scoring.business_model,
            "execution_risk": scoring.execution_risk,
            "scoring_created_at": _iso(scoring.created_at),
            "snapshot_version": snapshot.version,
        }
        for project, snapshot, scoring in rows
    ]
    return {
        "projects": projects,
        "pagination": {"page": page, "limit": limit, "offset": offset, "hasMore": len(rows) == limit},
    }
