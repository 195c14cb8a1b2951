"""Scoring workflow: validate, gate, render, call the LLM, persist.

One scoring row exists per snapshot.  A second request for the same
snapshot is refused with a conflict unless ``force`` is set, in which case
the old row is replaced.  When the LLM is unavailable or its answer cannot
be parsed, a deterministic fallback record is stored instead and the error
is reported in the response metadata.
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictBool
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from deepvest.auth import AuthUser
from deepvest.errors import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError,
    PersistenceError, ValidationError,
)
from deepvest.markdown import render_project_markdown
from deepvest.models import (
    Project, ProjectContent, ProjectScoring, Role, ScoringStatus, Snapshot, TeamMember,
)
from deepvest.permissions import check_role
from deepvest.scorer import (
    FALLBACK_MODEL_VERSION, FALLBACK_SCORING, LLMCallError, LLMClient,
    build_scoring_prompt, parse_llm_response, scoring_fields,
)
from deepvest.utils import id_list, parse_uuid

log = logging.getLogger(__name__)


class ScoringRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    force: StrictBool = False


@dataclass
class LLMRun:
    fields: dict[str, Any]
    ai_enabled: bool
    model_version: str
    parse_mode: str
    error: str | None = None


@dataclass
class ScoringOutcome:
    scoring: ProjectScoring
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "data": serialize_scoring(self.scoring), "metadata": self.metadata}


def serialize_scoring(s: ProjectScoring) -> dict[str, Any]:
    return {
        "id": str(s.id),
        "snapshot_id": str(s.snapshot_id),
        "status": s.status.value,
        "ai_model_version": s.ai_model_version,
        "investment_rating": s.investment_rating,
        "market_potential": s.market_potential,
        "team_competency": s.team_competency,
        "tech_innovation": s.tech_innovation,
        "business_model": s.business_model,
        "execution_risk": s.execution_risk,
        "score": s.score,
        "summary": s.summary,
        "research": s.research,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


def fallback_status() -> ScoringStatus:
    """Status stored on fallback rows; ``SCORING_FALLBACK_STATUS=failed`` opts out of ``completed``."""
    value = os.environ.get("SCORING_FALLBACK_STATUS", "completed").strip().lower()
    return ScoringStatus.FAILED if value == "failed" else ScoringStatus.COMPLETED


def parse_scoring_request(body: Any) -> ScoringRequest:
    """Validate the request body; raw bytes are decoded first and an empty body means ``{}``."""
    if isinstance(body, (bytes, str)):
        if not body.strip():
            body = {}
        else:
            try:
                body = json.loads(body)
            except ValueError as exc:
                raise ValidationError("Invalid JSON in request body") from exc
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ValidationError("Invalid request body", detail={"details": [
            {"field": "body", "message": "Expected a JSON object"},
        ]})
    try:
        return ScoringRequest.model_validate(body)
    except PydanticValidationError as exc:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        fields = ", ".join(d["field"] for d in details)
        raise ValidationError(f"Invalid request body: {fields}", detail={"details": details}) from exc


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def load_public_contents(session: Session, project_id: uuid.UUID, snapshot: Snapshot) -> list[ProjectContent]:
    ids = id_list(snapshot.contents)
    if not ids:
        return []
    try:
        return list(session.execute(
            select(ProjectContent).where(
                ProjectContent.project_id == project_id,
                ProjectContent.id.in_(ids),
                ProjectContent.is_public.is_(True),
                ProjectContent.deleted_at.is_(None),
            ).order_by(ProjectContent.created_at.asc())
        ).scalars().all())
    except SQLAlchemyError as exc:
        log.error("Error fetching project content for %s: %s", project_id, exc)
        return []


def load_team_members(session: Session, project_id: uuid.UUID, snapshot: Snapshot) -> list[TeamMember]:
    ids = id_list(snapshot.team_members)
    if not ids:
        return []
    try:
        return list(session.execute(
            select(TeamMember).where(
                TeamMember.project_id == project_id,
                TeamMember.id.in_(ids),
                TeamMember.deleted_at.is_(None),
            ).order_by(TeamMember.is_founder.desc(), TeamMember.created_at.asc())
        ).scalars().all())
    except SQLAlchemyError as exc:
        log.error("Error fetching team members for %s: %s", project_id, exc)
        return []


def existing_scoring(session: Session, snapshot_id: uuid.UUID) -> ProjectScoring | None:
    return session.execute(
        select(ProjectScoring).where(ProjectScoring.snapshot_id == snapshot_id)
    ).scalars().first()


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------


async def run_llm(client: LLMClient | None, prompt: str) -> LLMRun:
    """Call the LLM and parse its answer; any failure yields the fallback record.

    A ``None`` client stands for a provider that could not be set up.
    """
    fallback = LLMRun(
        fields=dict(FALLBACK_SCORING), ai_enabled=False,
        model_version=FALLBACK_MODEL_VERSION, parse_mode="none",
    )
    if client is None:
        log.error("LLM provider misconfigured, using fallback data")
        fallback.error = "LLM provider misconfigured"
        return fallback
    if not client.configured:
        log.error("%s not configured, using fallback data", client.api_key_env)
        fallback.error = f"{client.api_key_env} not configured"
        return fallback
    try:
        text = await client.generate(prompt)
        result = parse_llm_response(text)
        if result is None:
            raise LLMCallError("Failed to parse LLM response")
    except LLMCallError as exc:
        log.error("LLM processing error: %s", exc)
        fallback.error = str(exc)
        return fallback
    return LLMRun(
        fields=scoring_fields(result.data), ai_enabled=True,
        model_version=client.model_version, parse_mode=result.mode,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _clear_existing(session: Session, snapshot: Snapshot) -> None:
    if snapshot.scoring_id is not None:
        snapshot.scoring_id = None
    rows = session.execute(
        select(ProjectScoring).where(ProjectScoring.snapshot_id == snapshot.id)
    ).scalars().all()
    for row in rows:
        log.info("Replacing scoring %s of snapshot %s", row.id, snapshot.id)
        session.delete(row)
    # The unique snapshot_id requires the delete to hit the DB before the insert
    session.flush()


def _link_snapshot(session: Session, snapshot: Snapshot, scoring: ProjectScoring) -> None:
    try:
        snapshot.scoring_id = scoring.id
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.error("Error updating snapshot %s with scoring_id: %s", snapshot.id, exc)


def persist_scoring(
    session: Session, snapshot: Snapshot, run: LLMRun, force: bool, metadata: dict[str, Any],
) -> ProjectScoring:
    status = ScoringStatus.COMPLETED if run.ai_enabled else fallback_status()
    try:
        if force:
            # Deleted after the LLM call, in the insert's transaction: a failed save keeps the old row
            _clear_existing(session, snapshot)
        scoring = ProjectScoring(
            snapshot_id=snapshot.id,
            status=status,
            ai_model_version=run.model_version,
            **run.fields,
        )
        session.add(scoring)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        log.warning("Concurrent scoring insert for snapshot %s: %s", snapshot.id, exc)
        raise ConflictError(
            "Scoring already exists for this project. Use force=true to regenerate.",
        ) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        log.error("Error saving scoring to database: %s", exc)
        message = str(getattr(exc, "orig", None) or exc)
        raise PersistenceError(
            f"Failed to save scoring to database: {message}", detail={"metadata": metadata},
        ) from exc

    _link_snapshot(session, snapshot, scoring)
    return scoring


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


async def generate_scoring(
    session: Session,
    user: AuthUser | None,
    project_id: str | uuid.UUID,
    body: Any,
    client: LLMClient | None,
    now: datetime | None = None,
) -> ScoringOutcome:
    """Generate (or with ``force``, regenerate) the scoring of a project's public snapshot.

    Raises an :class:`~deepvest.errors.APIError` subclass for every refusal;
    LLM failures are not errors and produce the fallback record.
    """
    started = time.monotonic()

    pid = parse_uuid(project_id)
    if pid is None:
        raise ValidationError("Invalid project ID format")
    request = parse_scoring_request(body)

    if user is None:
        raise AuthenticationError()
    if not check_role(session, user.id, pid, Role.ADMIN):
        raise PermissionDeniedError(
            "Insufficient permissions. Only project admins and owners can generate scoring."
        )

    project = session.get(Project, pid)
    if project is None:
        raise NotFoundError("Project not found")
    if project.public_snapshot_id is None:
        raise ValidationError("Project has no public snapshot available for scoring")
    snapshot = session.get(Snapshot, project.public_snapshot_id)
    if snapshot is None:
        raise NotFoundError("Project snapshot not found")

    contents = load_public_contents(session, pid, snapshot)
    team_members = load_team_members(session, pid, snapshot)
    markdown = render_project_markdown(project, snapshot, contents, team_members, now=now)

    existing = existing_scoring(session, snapshot.id)
    if existing is not None and not request.force:
        raise ConflictError(
            f"Scoring already exists for this project (ID: {existing.id}, status: {existing.status.value}, "
            f"created: {existing.created_at.isoformat() if existing.created_at else 'unknown'}). "
            "Use force=true to regenerate.",
            detail={"existingScoring": serialize_scoring(existing)},
        )

    prompt = build_scoring_prompt(markdown)
    metadata: dict[str, Any] = {
        "projectId": str(pid),
        "snapshotId": str(snapshot.id),
        "aiEnabled": False,
        "promptLength": len(prompt) if client is not None and client.configured else None,
        "contentSections": {
            "projectInfo": True,
            "snapshot": True,
            "content": len(contents),
            "teamMembers": len(team_members),
        },
    }

    run = await run_llm(client, prompt)
    metadata["aiEnabled"] = run.ai_enabled
    metadata["parseMode"] = run.parse_mode
    if run.error:
        metadata["llmError"] = run.error

    scoring = persist_scoring(session, snapshot, run, request.force, metadata)
    log.info("Scored snapshot %s of project %s (ai: %s, score: %s)", snapshot.id, pid, run.ai_enabled, scoring.score)

    metadata["processingTimeMs"] = int((time.monotonic() - started) * 1000)
    return ScoringOutcome(scoring=scoring, metadata=metadata)
