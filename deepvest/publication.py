"""Publication state machine for projects.

States
------
- ``UNPUBLISHED``: no public snapshot yet.
- ``DRAFT_PENDING``: a public snapshot exists and ``new_snapshot_id`` points
  at a different, newer draft.
- ``PUBLISHED``: the public snapshot is the latest (no open draft).

The actions here are owner-only and behave like server actions: they never
raise, and always answer with an :class:`ActionResult`.  Authentication is
checked before anything is read; authorization failures are reported with a
message distinct from authentication failures.
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from deepvest.auth import AuthUser
from deepvest.cache import revalidate
from deepvest.models import Project, Role, Snapshot, utcnow
from deepvest.permissions import check_role
from deepvest.storage import StorageClient

log = logging.getLogger(__name__)

NOT_AUTHENTICATED = "User not authenticated"
UNEXPECTED_ERROR = "An unexpected error occurred"


class PublicationState(str, enum.Enum):
    UNPUBLISHED = "unpublished"
    DRAFT_PENDING = "draft_pending"
    PUBLISHED = "published"


def publication_state(project: Project) -> PublicationState:
    if project.public_snapshot_id is None:
        return PublicationState.UNPUBLISHED
    if project.new_snapshot_id is not None and project.new_snapshot_id != project.public_snapshot_id:
        return PublicationState.DRAFT_PENDING
    return PublicationState.PUBLISHED


@dataclass
class ActionResult:
    success: bool
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    # HTTP status when exposed as a route; not part of the body
    status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            out["error"] = self.error
        out.update(self.data)
        return out


def _db_error(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc)


def _guard_owner(session: Session, user: AuthUser | None, project_id: uuid.UUID, denied: str) -> ActionResult | None:
    if user is None:
        log.warning("Unauthenticated publication action on project %s", project_id)
        return ActionResult(False, NOT_AUTHENTICATED, status_code=401)
    if not check_role(session, user.id, project_id, Role.OWNER):
        log.warning("User %s is not owner of project %s", user.id, project_id)
        return ActionResult(False, denied, status_code=403)
    return None


def _page_paths(project_id: uuid.UUID) -> tuple[str, ...]:
    return (f"/projects/{project_id}", "/projects", "/profile")


# ---------------------------------------------------------------------------
# Atomic publish
# ---------------------------------------------------------------------------


def publish_project_draft(session: Session, project_id: uuid.UUID, snapshot_id: uuid.UUID) -> bool:
    """Point ``public_snapshot_id`` at *snapshot_id* and lock it, in one transaction.

    The project update is conditional on ``new_snapshot_id`` still being
    *snapshot_id*; if another request changed it first, nothing is written
    and False is returned.
    """
    try:
        result = session.execute(
            update(Project)
            .where(Project.id == project_id, Project.new_snapshot_id == snapshot_id)
            .values(public_snapshot_id=snapshot_id, updated_at=utcnow())
        )
        if result.rowcount != 1:
            session.rollback()
            return False
        session.execute(
            update(Snapshot)
            .where(Snapshot.id == snapshot_id, Snapshot.project_id == project_id)
            .values(is_locked=True, updated_at=utcnow())
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    return True


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def toggle_project_publication(
    session: Session, user: AuthUser | None, project_id: uuid.UUID, is_currently_public: bool,
) -> ActionResult:
    log.info("toggle_project_publication for %s (currently public: %s)", project_id, is_currently_public)
    try:
        denied = _guard_owner(session, user, project_id, "Only the project owner can perform this action")
        if denied:
            return denied

        project = session.get(Project, project_id)
        if project is None:
            return ActionResult(False, "Project not found")

        new_public = not is_currently_public
        values: dict[str, Any] = {"is_public": new_public, "updated_at": utcnow()}
        lock_snapshot: uuid.UUID | None = None
        if new_public and project.public_snapshot_id is None:
            if project.new_snapshot_id is None:
                return ActionResult(False, "Project has no snapshot to publish")
            # First publish: promote the draft in the same update
            values["public_snapshot_id"] = project.new_snapshot_id
            lock_snapshot = project.new_snapshot_id

        try:
            session.execute(update(Project).where(Project.id == project_id).values(**values))
            if lock_snapshot is not None:
                session.execute(update(Snapshot).where(Snapshot.id == lock_snapshot).values(is_locked=True))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            log.error("Publication update failed for %s: %s", project_id, exc)
            return ActionResult(False, _db_error(exc))

        try:
            stored = session.execute(select(Project.is_public).where(Project.id == project_id)).scalar()
        except SQLAlchemyError as exc:
            log.warning("Could not verify publication update for %s: %s", project_id, exc)
        else:
            if stored is not None and stored != new_public:
                log.error("Publication verification failed for %s: expected %s, got %s",
                          project_id, new_public, stored)
                return ActionResult(False, "Update verification failed")

        revalidate(*_page_paths(project_id))
        return ActionResult(True, data={"is_public": new_public})
    except Exception:
        log.exception("Unexpected error in toggle_project_publication")
        session.rollback()
        return ActionResult(False, UNEXPECTED_ERROR)


def publish_draft(session: Session, user: AuthUser | None, project_id: uuid.UUID) -> ActionResult:
    log.info("publish_draft for %s", project_id)
    try:
        denied = _guard_owner(session, user, project_id, "Only the project owner can publish drafts")
        if denied:
            return denied

        project = session.get(Project, project_id)
        if project is None:
            return ActionResult(False, "Project not found")

        if project.new_snapshot_id is None or project.new_snapshot_id == project.public_snapshot_id:
            return ActionResult(False, "No draft to publish")

        snapshot_id = project.new_snapshot_id
        try:
            published = publish_project_draft(session, project_id, snapshot_id)
        except SQLAlchemyError as exc:
            log.error("Publishing draft %s failed: %s", snapshot_id, exc)
            return ActionResult(False, "Failed to publish draft")
        if not published:
            log.warning("Draft of %s changed while publishing", project_id)
            return ActionResult(False, "Failed to publish draft")

        log.info("Published snapshot %s for project %s", snapshot_id, project_id)
        revalidate(*_page_paths(project_id))
        return ActionResult(True, data={"public_snapshot_id": str(snapshot_id)})
    except Exception:
        log.exception("Unexpected error in publish_draft")
        session.rollback()
        return ActionResult(False, UNEXPECTED_ERROR)


def publish_snapshot(
    session: Session, user: AuthUser | None, project_id: uuid.UUID, snapshot_id: uuid.UUID,
) -> ActionResult:
    """Make a specific snapshot of the project public (admin or owner)."""
    try:
        if user is None:
            return ActionResult(False, NOT_AUTHENTICATED, status_code=401)
        if not check_role(session, user.id, project_id, Role.ADMIN):
            return ActionResult(False, "Only project admins and owners can publish snapshots", status_code=403)

        snapshot = session.get(Snapshot, snapshot_id)
        if snapshot is None or snapshot.project_id != project_id:
            return ActionResult(False, "Snapshot not found")

        try:
            session.execute(
                update(Snapshot).where(Snapshot.id == snapshot_id).values(is_locked=True, updated_at=utcnow())
            )
            session.execute(
                update(Project).where(Project.id == project_id)
                .values(public_snapshot_id=snapshot_id, is_public=True, updated_at=utcnow())
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            return ActionResult(False, _db_error(exc))

        revalidate(*_page_paths(project_id))
        return ActionResult(True, data={"public_snapshot_id": str(snapshot_id)})
    except Exception:
        log.exception("Unexpected error in publish_snapshot")
        session.rollback()
        return ActionResult(False, UNEXPECTED_ERROR)


async def delete_project(
    session: Session, user: AuthUser | None, project_id: uuid.UUID, storage: StorageClient,
) -> ActionResult:
    log.info("delete_project for %s", project_id)
    try:
        denied = _guard_owner(session, user, project_id, "Only the project owner can delete this project")
        if denied:
            return denied

        project = session.get(Project, project_id)
        if project is None:
            return ActionResult(False, "Project not found")

        # Files first; a failure here must not keep the rows alive
        files_deleted, files_error = await storage.delete_project_files(project_id)
        if not files_deleted:
            log.error("Failed to delete files for project %s: %s", project_id, files_error)

        try:
            session.delete(project)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            log.error("Deleting project %s failed: %s", project_id, exc)
            return ActionResult(False, _db_error(exc))

        # The project's own page no longer exists
        revalidate("/projects", "/profile")
        return ActionResult(True)
    except Exception:
        log.exception("Unexpected error in delete_project")
        session.rollback()
        return ActionResult(False, UNEXPECTED_ERROR)
