"""Project documents (``project_content``), soft-deleted like team members."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from deepvest.errors import ConflictError, NotFoundError
from deepvest.models import ProjectContent, utcnow

log = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "slug", "content_type", "content", "is_public")


def list_documents(session: Session, project_id: uuid.UUID, public_only: bool = False) -> list[ProjectContent]:
    stmt = select(ProjectContent).where(
        ProjectContent.project_id == project_id,
        ProjectContent.deleted_at.is_(None),
    )
    if public_only:
        stmt = stmt.where(ProjectContent.is_public.is_(True))
    return list(session.execute(stmt.order_by(ProjectContent.created_at)).scalars().all())


def get_document(session: Session, project_id: uuid.UUID, document_id: uuid.UUID) -> ProjectContent:
    doc = session.execute(
        select(ProjectContent).where(
            ProjectContent.id == document_id,
            ProjectContent.project_id == project_id,
            ProjectContent.deleted_at.is_(None),
        )
    ).scalars().first()
    if doc is None:
        raise NotFoundError("Document not found")
    return doc


def is_document_slug_available(
    session: Session, project_id: uuid.UUID, slug: str, exclude_id: uuid.UUID | None = None,
) -> bool:
    stmt = select(ProjectContent.id).where(
        ProjectContent.project_id == project_id,
        ProjectContent.slug == slug,
        ProjectContent.deleted_at.is_(None),
    )
    if exclude_id is not None:
        stmt = stmt.where(ProjectContent.id != exclude_id)
    return session.execute(stmt).first() is None


def create_document(
    session: Session, project_id: uuid.UUID, author_id: uuid.UUID | None, data: dict[str, Any],
) -> ProjectContent:
    """Add a document (caller must commit)."""
    if not is_document_slug_available(session, project_id, data["slug"]):
        raise ConflictError("A document with this slug already exists in this project")
    doc = ProjectContent(project_id=project_id, author_id=author_id, **data)
    session.add(doc)
    session.flush()
    return doc


def update_document(session: Session, doc: ProjectContent, updates: dict[str, Any]) -> ProjectContent:
    """Apply a partial update.  ``None`` on a NOT NULL column means "leave as is"."""
    slug = updates.get("slug")
    if slug and slug != doc.slug and not is_document_slug_available(session, doc.project_id, slug, doc.id):
        raise ConflictError("A document with this slug already exists in this project")
    for key, value in updates.items():
        if value is None and key in REQUIRED_FIELDS:
            continue
        setattr(doc, key, value)
    return doc


def delete_document(doc: ProjectContent) -> None:
    doc.deleted_at = utcnow()
    log.info("Soft-deleted document %s of project %s", doc.id, doc.project_id)
