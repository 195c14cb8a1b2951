"""Snapshot store: versioned project display records.

A project points at up to two snapshots: ``public_snapshot_id`` (what
visitors see) and ``new_snapshot_id`` (the draft being edited).  Once a
snapshot is published it is locked and its content fields never change;
further edits go into a new snapshot.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from deepvest.errors import ConflictError, NotFoundError
from deepvest.models import Project, ProjectContent, Snapshot, TeamMember

log = logging.getLogger(__name__)

# Fields an editor may write on an unlocked snapshot
SNAPSHOT_FIELDS = (
    "name", "slogan", "description", "status", "country", "city",
    "repository_urls", "website_urls", "logo_url", "banner_url", "video_urls",
)


class SnapshotLockedError(ConflictError):
    def __init__(self, snapshot_id: uuid.UUID):
        super().__init__(f"Snapshot {snapshot_id} is locked and cannot be modified")


def assert_mutable(snapshot: Snapshot) -> None:
    if snapshot.is_locked:
        raise SnapshotLockedError(snapshot.id)


def get_snapshot(session: Session, snapshot_id: uuid.UUID | None) -> Snapshot | None:
    if snapshot_id is None:
        return None
    return session.get(Snapshot, snapshot_id)


def list_snapshots(session: Session, project_id: uuid.UUID) -> list[Snapshot]:
    return list(session.execute(
        select(Snapshot).where(Snapshot.project_id == project_id).order_by(Snapshot.version.desc())
    ).scalars().all())


def latest_snapshot(session: Session, project_id: uuid.UUID) -> Snapshot | None:
    return session.execute(
        select(Snapshot).where(Snapshot.project_id == project_id)
        .order_by(Snapshot.version.desc()).limit(1)
    ).scalars().first()


def next_version(session: Session, project_id: uuid.UUID) -> int:
    current = session.execute(
        select(func.max(Snapshot.version)).where(Snapshot.project_id == project_id)
    ).scalar()
    return (current or 0) + 1


def draft_snapshot(session: Session, project: Project) -> Snapshot | None:
    """The open draft, if ``new_snapshot_id`` points at something other than the public snapshot."""
    if project.new_snapshot_id is None or project.new_snapshot_id == project.public_snapshot_id:
        return None
    return get_snapshot(session, project.new_snapshot_id)


def apply_fields(snapshot: Snapshot, fields: dict[str, Any]) -> None:
    assert_mutable(snapshot)
    for key in SNAPSHOT_FIELDS:
        if key in fields:
            setattr(snapshot, key, fields[key])


def create_snapshot(
    session: Session, project: Project, author_id: uuid.UUID | None, fields: dict[str, Any],
) -> Snapshot:
    """Create the next version and make it the project's draft (caller must commit).

    Content and team id lists are carried over from the public snapshot, or
    from the latest snapshot when nothing is published.  The scoring
    reference is never copied.
    """
    source = get_snapshot(session, project.public_snapshot_id) or latest_snapshot(session, project.id)
    base: dict[str, Any] = {}
    if source is not None:
        base = {key: getattr(source, key) for key in SNAPSHOT_FIELDS}
    base.update({k: v for k, v in fields.items() if k in SNAPSHOT_FIELDS})
    snapshot = Snapshot(
        project_id=project.id,
        version=next_version(session, project.id),
        author_id=author_id,
        is_locked=False,
        contents=list(source.contents or []) if source else [],
        team_members=list(source.team_members or []) if source else [],
        **base,
    )
    session.add(snapshot)
    session.flush()
    project.new_snapshot_id = snapshot.id
    log.info("Created snapshot v%d for project %s", snapshot.version, project.id)
    return snapshot


def save_draft(
    session: Session, project: Project, author_id: uuid.UUID | None, fields: dict[str, Any],
) -> Snapshot:
    """Write *fields* into the open draft, creating one if needed (caller must commit)."""
    draft = draft_snapshot(session, project)
    if draft is not None and not draft.is_locked:
        apply_fields(draft, fields)
        return draft
    return create_snapshot(session, project, author_id, fields)


def update_draft(session: Session, project: Project, fields: dict[str, Any]) -> Snapshot:
    """Update the snapshot ``new_snapshot_id`` points at; it must be unlocked."""
    snapshot = get_snapshot(session, project.new_snapshot_id)
    if snapshot is None:
        raise NotFoundError("No active snapshot found for this project")
    apply_fields(snapshot, fields)
    return snapshot


def sync_snapshot(session: Session, project: Project, author_id: uuid.UUID | None) -> tuple[Snapshot, int, int]:
    """Refresh the editable snapshot's content and team id lists from live rows.

    Public, non-deleted documents and non-deleted team members are collected.
    If the target snapshot is locked a new version is created to receive them.
    Returns ``(snapshot, content_count, team_member_count)``; caller must commit.
    """
    content_ids = [str(i) for i in session.execute(
        select(ProjectContent.id).where(
            ProjectContent.project_id == project.id,
            ProjectContent.is_public.is_(True),
            ProjectContent.deleted_at.is_(None),
        ).order_by(ProjectContent.created_at)
    ).scalars().all()]
    member_ids = [str(i) for i in session.execute(
        select(TeamMember.id).where(
            TeamMember.project_id == project.id,
            TeamMember.deleted_at.is_(None),
        ).order_by(TeamMember.created_at)
    ).scalars().all()]

    target = draft_snapshot(session, project) or get_snapshot(session, project.public_snapshot_id)
    if target is None or target.is_locked:
        target = create_snapshot(session, project, author_id, {})
    target.contents = content_ids
    target.team_members = member_ids
    return target, len(content_ids), len(member_ids)
