from __future__ import annotations

import logging
import re
import time
import uuid
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deepvest import documents, publication, services, snapshots, team
from deepvest.auth import AuthUser, optional_user, require_user, user_from_request
from deepvest.cache import revalidate, view_cache
from deepvest.db import get_session, init_db
from deepvest.errors import APIError, ConflictError, ValidationError
from deepvest.models import Project, Role
from deepvest.permissions import (
    check_role, get_user_role, grant_role, list_permissions, require_author_or_admin,
    require_role, revoke_role, update_role,
)
from deepvest.schemas import (
    DocumentCreate, DocumentTranscribe, DocumentUpdate, PermissionGrant, ProfileUpdate, ProjectCreate,
    PublicationToggle, SnapshotFields, TeamMemberBulk, TeamMemberCreate, TeamMemberUpdate, TranscribeRequest,
)
from deepvest.scorer import LLMClient
from deepvest.scoring import generate_scoring
from deepvest.storage import UPLOAD_RULES, StorageClient, StorageError, upload_path
from deepvest.transcribe import DEFAULT_PROMPT, transcribe_url, transcription_client

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="DeepVest",
    version="0.1.0",
    description=(
        "Project showcase and investment analysis API. Owners publish versioned "
        "project snapshots; admins request LLM investment scoring of the public "
        "snapshot. Authenticate with a bearer access token."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Projects", "description": "Create, browse, and delete projects."},
        {"name": "Publication", "description": "Publish drafts and toggle public visibility. Owner only."},
        {"name": "Snapshots", "description": "Versioned display records of a project."},
        {"name": "Permissions", "description": "Project roles: viewer, editor, admin, owner."},
        {"name": "Team", "description": "Team members of a project."},
        {"name": "Documents", "description": "Project documentation and file uploads."},
        {"name": "Scoring", "description": "LLM investment scoring. Requires an LLM API key, else fallback data."},
        {"name": "Leaderboard", "description": "Public projects ranked by AI score."},
        {"name": "Transcription", "description": "Turn uploaded files into text with Gemini."},
        {"name": "Profile", "description": "The caller's user profile."},
    ],
)

SCORING_PATH_RE = re.compile(r"^/api/projects/[^/]+/scoring/?$")


class SiteCORSMiddleware(CORSMiddleware):
    """CORS for every route but scoring, which answers its own preflight with narrower headers."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and SCORING_PATH_RE.match(scope["path"]):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


app.add_middleware(
    SiteCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "apikey", "content-type"],
)

SCORING_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, apikey, content-type",
}


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def _error_body(message: str, detail=None) -> dict:
    body = {"success": False, "error": message}
    if isinstance(detail, dict):
        body.update(detail)
    elif detail is not None:
        body["details"] = detail
    return body


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return JSONResponse(_error_body(exc.message, exc.detail), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(_error_body("Invalid request body", details), status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(_error_body("Internal server error"), status_code=500)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def storage_client() -> StorageClient:
    return StorageClient()


def llm_client() -> LLMClient | None:
    """The configured LLM client, or None when LLM_PROVIDER names no known provider."""
    try:
        return LLMClient()
    except ValueError as exc:
        log.error("LLM client misconfigured: %s", exc)
        return None


def transcriber() -> LLMClient:
    return transcription_client()


def _project_or_404(session: Session, project_id: uuid.UUID) -> Project:
    project = session.get(Project, project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    return project


def _readable_project(session: Session, user: AuthUser | None, project_id: uuid.UUID) -> Project:
    """Project visible to the caller: public, or the caller holds any role. Hidden reads as missing."""
    project = _project_or_404(session, project_id)
    if not project.is_public and not check_role(session, user.id if user else None, project_id, Role.VIEWER):
        raise HTTPException(404, "Project not found")
    return project


def _action_response(result: publication.ActionResult) -> JSONResponse:
    status = result.status_code or (200 if result.success else 400)
    return JSONResponse(result.to_dict(), status_code=status)


# ---------------------------------------------------------------------------
# Routes: Projects (static paths before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/projects", tags=["Projects"], summary="List public projects plus the caller's own")
async def list_projects(
    user: AuthUser | None = Depends(optional_user), session: Session = Depends(db_session),
):
    if user is None:
        cached = view_cache.get("/projects")
        if cached is not None:
            return cached
    items = {"items": services.list_visible_projects(session, user)}
    if user is None:
        view_cache.set("/projects", items)
    return items


@app.post("/api/projects", tags=["Projects"], status_code=201,
          summary="Create a project with an initial draft snapshot")
async def create_project(
    body: ProjectCreate, user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    try:
        project, _ = services.create_project(
            session, user, name=body.name, slug=body.slug, description=body.description,
            status=body.status, skip_auto_team=body.skip_auto_team,
        )
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("Project URL is already taken. Please choose a different one.") from exc
    revalidate("/projects", "/profile")
    return services.project_summary(session, project, Role.OWNER)


@app.get("/api/projects/check-slug", tags=["Projects"], summary="Check whether a project slug is free")
async def check_project_slug(
    slug: str = Query(..., min_length=1), exclude_id: uuid.UUID | None = Query(None),
    session: Session = Depends(db_session),
):
    return {"slug": slug, "available": services.is_slug_available(session, slug, exclude_id)}


@app.get("/api/projects/{project_id}", tags=["Projects"],
         summary="Project detail with visible snapshot, documents, and team")
async def get_project(
    project_id: uuid.UUID, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session),
):
    path = f"/projects/{project_id}"
    if user is None:
        cached = view_cache.get(path)
        if cached is not None:
            return cached
    view = services.get_project_view(session, user, project_id)
    if view is None:
        raise HTTPException(404, "Project not found")
    if user is None:
        view_cache.set(path, view)
    return view


@app.delete("/api/projects/{project_id}", tags=["Projects"],
            summary="Delete a project, its rows, and its stored files (owner only)")
async def delete_project(
    project_id: uuid.UUID, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session), storage: StorageClient = Depends(storage_client),
):
    return _action_response(await publication.delete_project(session, user, project_id, storage))


# ---------------------------------------------------------------------------
# Routes: Publication
# ---------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/publication", tags=["Publication"],
          summary="Toggle public visibility; the first publish promotes the draft")
async def toggle_publication(
    project_id: uuid.UUID, body: PublicationToggle, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session),
):
    result = publication.toggle_project_publication(session, user, project_id, body.is_currently_public)
    return _action_response(result)


@app.post("/api/projects/{project_id}/publish-draft", tags=["Publication"],
          summary="Publish the pending draft snapshot")
async def publish_draft(
    project_id: uuid.UUID, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session),
):
    return _action_response(publication.publish_draft(session, user, project_id))


# ---------------------------------------------------------------------------
# Routes: Snapshots
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/snapshots", tags=["Snapshots"], summary="List snapshots, newest first")
async def list_snapshots(
    project_id: uuid.UUID, user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.VIEWER)
    return [services.serialize_snapshot(s) for s in snapshots.list_snapshots(session, project_id)]


@app.post("/api/projects/{project_id}/snapshots", tags=["Snapshots"], status_code=201,
          summary="Create a new snapshot version as the project's draft")
async def create_snapshot(
    project_id: uuid.UUID, body: SnapshotFields, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    project = _project_or_404(session, project_id)
    snapshot = snapshots.create_snapshot(session, project, user.id, body.model_dump(exclude_none=True))
    session.commit()
    return services.serialize_snapshot(snapshot)


@app.put("/api/projects/{project_id}/snapshots", tags=["Snapshots"],
         summary="Update the current draft snapshot (refused once locked)")
async def update_snapshot(
    project_id: uuid.UUID, body: SnapshotFields, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    project = _project_or_404(session, project_id)
    snapshot = snapshots.update_draft(session, project, body.model_dump(exclude_none=True))
    session.commit()
    revalidate(f"/projects/{project_id}")
    return services.serialize_snapshot(snapshot)


@app.post("/api/projects/{project_id}/snapshots/{snapshot_id}/publish", tags=["Snapshots", "Publication"],
          summary="Make a specific snapshot public (admin or owner)")
async def publish_snapshot(
    project_id: uuid.UUID, snapshot_id: uuid.UUID, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session),
):
    return _action_response(publication.publish_snapshot(session, user, project_id, snapshot_id))


@app.post("/api/projects/{project_id}/sync-snapshot", tags=["Snapshots"],
          summary="Refresh the draft's document and team lists from live rows")
async def sync_snapshot(
    project_id: uuid.UUID, user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    project = _project_or_404(session, project_id)
    snapshot, content_count, member_count = snapshots.sync_snapshot(session, project, user.id)
    session.commit()
    return {
        "success": True, "message": "Snapshot synced successfully", "snapshot_id": str(snapshot.id),
        "content_count": content_count, "team_member_count": member_count,
    }


# ---------------------------------------------------------------------------
# Routes: Permissions
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/permissions/user", tags=["Permissions"],
         summary="The caller's role on the project")
async def my_permission(
    project_id: uuid.UUID, user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    role = get_user_role(session, user.id, project_id)
    return {"user_id": str(user.id), "role": role.value if role else None}


@app.get("/api/projects/{project_id}/permissions", tags=["Permissions"], summary="List project members")
async def get_permissions(
    project_id: uuid.UUID, user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.VIEWER)
    return [services.serialize_permission(p) for p in list_permissions(session, project_id)]


def _require_grant_rights(session: Session, user: AuthUser, project_id: uuid.UUID, role: Role) -> None:
    # Only the owner can hand out ownership
    require_role(session, user.id, project_id, Role.OWNER if role is Role.OWNER else Role.ADMIN)


@app.post("/api/projects/{project_id}/permissions", tags=["Permissions"], status_code=201,
          summary="Add a member or change an existing member's role")
async def add_permission(
    project_id: uuid.UUID, body: PermissionGrant, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    _require_grant_rights(session, user, project_id, body.role)
    perm = grant_role(session, project_id, body.user_id, body.role)
    session.commit()
    return services.serialize_permission(perm)


@app.put("/api/projects/{project_id}/permissions", tags=["Permissions"],
         summary="Change a member's role; promoting to owner transfers ownership")
async def change_permission(
    project_id: uuid.UUID, body: PermissionGrant, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    _require_grant_rights(session, user, project_id, body.role)
    perm = update_role(session, project_id, body.user_id, body.role)
    session.commit()
    return services.serialize_permission(perm)


@app.delete("/api/projects/{project_id}/permissions", tags=["Permissions"], summary="Remove a member")
async def remove_permission(
    project_id: uuid.UUID, user_id: uuid.UUID = Query(...), user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.ADMIN)
    revoke_role(session, project_id, user_id)
    session.commit()
    return {"success": True}


# ---------------------------------------------------------------------------
# Routes: Team
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/team-members", tags=["Team"], summary="List team members, founders first")
async def list_team_members(
    project_id: uuid.UUID, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session),
):
    _readable_project(session, user, project_id)
    return [services.serialize_team_member(m) for m in team.list_team_members(session, project_id)]


@app.post("/api/projects/{project_id}/team-members", tags=["Team"], status_code=201,
          summary="Add a team member (editor or higher)")
async def add_team_member(
    project_id: uuid.UUID, body: TeamMemberCreate, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    member = team.create_team_member(session, project_id, user.id, body.model_dump())
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return services.serialize_team_member(member)


@app.post("/api/projects/{project_id}/team-members/bulk", tags=["Team"],
          summary="Delete, activate, deactivate, or invite several team members")
async def bulk_team_members(
    project_id: uuid.UUID, body: TeamMemberBulk, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    members = team.bulk_update_team_members(session, project_id, user.id, body.team_member_ids, body.action)
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return {
        "success": True, "action": body.action, "affected_count": len(members),
        "team_members": [services.serialize_team_member(m) for m in members],
    }


@app.put("/api/projects/{project_id}/team-members/{member_id}", tags=["Team"],
         summary="Update a team member (author, admin, or owner)")
async def update_team_member(
    project_id: uuid.UUID, member_id: uuid.UUID, body: TeamMemberUpdate,
    user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    member = team.get_team_member(session, project_id, member_id)
    require_author_or_admin(session, user.id, project_id, member.author_id)
    team.update_team_member(session, member, body.model_dump(exclude_unset=True))
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return services.serialize_team_member(member)


@app.delete("/api/projects/{project_id}/team-members/{member_id}", tags=["Team"],
            summary="Remove a team member (soft delete)")
async def delete_team_member(
    project_id: uuid.UUID, member_id: uuid.UUID, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    member = team.get_team_member(session, project_id, member_id)
    require_author_or_admin(session, user.id, project_id, member.author_id)
    team.delete_team_member(member)
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Routes: Documents
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/documents/check-slug", tags=["Documents"],
         summary="Check whether a document slug is free within the project")
async def check_document_slug(
    project_id: uuid.UUID, slug: str | None = Query(None), exclude_id: uuid.UUID | None = Query(None),
    session: Session = Depends(db_session),
):
    if not slug:
        raise ValidationError("Slug parameter is required")
    return {"slug": slug, "available": documents.is_document_slug_available(session, project_id, slug, exclude_id)}


@app.get("/api/projects/{project_id}/documents", tags=["Documents"],
         summary="List documents; members see drafts, visitors only public ones")
async def list_documents(
    project_id: uuid.UUID, user: AuthUser | None = Depends(optional_user),
    session: Session = Depends(db_session),
):
    _readable_project(session, user, project_id)
    member = check_role(session, user.id if user else None, project_id, Role.VIEWER)
    return [services.serialize_document(d)
            for d in documents.list_documents(session, project_id, public_only=not member)]


@app.post("/api/projects/{project_id}/documents", tags=["Documents"], status_code=201,
          summary="Create a document (editor or higher)")
async def create_document(
    project_id: uuid.UUID, body: DocumentCreate, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    doc = documents.create_document(session, project_id, user.id, body.model_dump())
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return services.serialize_document(doc)


@app.put("/api/projects/{project_id}/documents/{document_id}", tags=["Documents"],
         summary="Update a document (author, admin, or owner)")
async def update_document(
    project_id: uuid.UUID, document_id: uuid.UUID, body: DocumentUpdate,
    user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    doc = documents.get_document(session, project_id, document_id)
    require_author_or_admin(session, user.id, project_id, doc.author_id)
    documents.update_document(session, doc, body.model_dump(exclude_unset=True))
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return services.serialize_document(doc)


@app.delete("/api/projects/{project_id}/documents/{document_id}", tags=["Documents"],
            summary="Delete a document (soft delete)")
async def delete_document(
    project_id: uuid.UUID, document_id: uuid.UUID, user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
):
    doc = documents.get_document(session, project_id, document_id)
    require_author_or_admin(session, user.id, project_id, doc.author_id)
    documents.delete_document(doc)
    session.commit()
    services.sync_quietly(session, project_id, user.id)
    return {"success": True}


@app.post("/api/projects/{project_id}/documents/{document_id}/transcribe", tags=["Documents", "Transcription"],
          summary="Transcribe the document's first file into its content")
async def transcribe_document(
    project_id: uuid.UUID, document_id: uuid.UUID, body: DocumentTranscribe | None = None,
    user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
    client: LLMClient = Depends(transcriber),
):
    doc = documents.get_document(session, project_id, document_id)
    require_author_or_admin(session, user.id, project_id, doc.author_id)
    if not doc.file_urls:
        raise ValidationError("Document has no file to transcribe")
    prompt = body.prompt if body and body.prompt else DEFAULT_PROMPT
    result = await transcribe_url(client, doc.file_urls[0], prompt)
    doc.content = result["result"]
    session.commit()
    revalidate(f"/projects/{project_id}")
    return {"success": True, "document": services.serialize_document(doc), "metadata": result["metadata"]}


@app.post("/api/projects/{project_id}/upload", tags=["Documents"],
          summary="Upload a logo, banner, or document file to project storage")
async def upload_file(
    project_id: uuid.UUID,
    file: UploadFile = File(...),
    upload_type: str = Form(..., alias="uploadType"),
    user: AuthUser = Depends(require_user),
    session: Session = Depends(db_session),
    storage: StorageClient = Depends(storage_client),
):
    require_role(session, user.id, project_id, Role.EDITOR)
    if upload_type not in UPLOAD_RULES:
        raise ValidationError("Invalid input.")
    accepted, max_size = UPLOAD_RULES[upload_type]
    if file.content_type not in accepted:
        raise ValidationError(f"Invalid file type. Accepted types: {', '.join(accepted)}")
    data = await file.read()
    if len(data) > max_size:
        raise ValidationError(f"File too large. Max size for {upload_type} is {max_size // (1024 * 1024)}MB.")

    path = upload_path(project_id, upload_type, file.filename or "upload", int(time.time() * 1000))
    try:
        stored = await storage.upload(path, data, file.content_type)
    except StorageError as exc:
        log.error("Upload of %s failed: %s", path, exc)
        raise APIError("Failed to upload file to storage.") from exc
    return {"success": True, "path": stored.path, "url": stored.public_url, "size": stored.size}


# ---------------------------------------------------------------------------
# Routes: Scoring
# ---------------------------------------------------------------------------


@app.options("/api/projects/{project_id}/scoring", tags=["Scoring"], include_in_schema=False)
async def scoring_preflight(project_id: str):
    return Response(status_code=200, headers=SCORING_CORS_HEADERS)


@app.post("/api/projects/{project_id}/scoring", tags=["Scoring"],
          summary="Generate investment scoring for the project's public snapshot (admin or owner)")
async def score_project(
    project_id: str,
    request: Request,
    session: Session = Depends(db_session),
    client: LLMClient | None = Depends(llm_client),
):
    started = time.monotonic()

    def elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        body = await request.body()
        outcome = await generate_scoring(session, user_from_request(request), project_id, body, client)
    except APIError as exc:
        content = _error_body(exc.message, exc.detail)
        content.setdefault("metadata", {})["processingTimeMs"] = elapsed()
        return JSONResponse(content, status_code=exc.status_code, headers=SCORING_CORS_HEADERS)
    except Exception:
        log.exception("Scoring request for %s failed", project_id)
        content = _error_body("Internal server error")
        content["metadata"] = {"processingTimeMs": elapsed()}
        return JSONResponse(content, status_code=500, headers=SCORING_CORS_HEADERS)
    return JSONResponse(outcome.to_dict(), headers=SCORING_CORS_HEADERS)


# ---------------------------------------------------------------------------
# Routes: Leaderboard & Transcription
# ---------------------------------------------------------------------------


@app.get("/api/leaderboard", tags=["Leaderboard"], summary="Public projects ranked by AI score, paginated")
async def get_leaderboard(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    min_score: float | None = Query(None, ge=0, le=100),
    session: Session = Depends(db_session),
):
    return {"success": True, **services.leaderboard(session, page, limit, min_score)}


@app.post("/api/transcribe", tags=["Transcription"], summary="Download a file by URL and transcribe it")
async def transcribe(
    body: TranscribeRequest, user: AuthUser = Depends(require_user), client: LLMClient = Depends(transcriber),
):
    return {"success": True, **await transcribe_url(client, body.url, body.prompt)}


# ---------------------------------------------------------------------------
# Routes: Profile
# ---------------------------------------------------------------------------


@app.get("/api/profile", tags=["Profile"], summary="The caller's profile (created on first access)")
async def get_profile(user: AuthUser = Depends(require_user), session: Session = Depends(db_session)):
    profile = services.get_or_create_profile(session, user)
    session.commit()
    return services.serialize_profile(profile)


@app.put("/api/profile", tags=["Profile"], summary="Update the caller's profile (null fields ignored)")
async def update_profile(
    body: ProfileUpdate, user: AuthUser = Depends(require_user), session: Session = Depends(db_session),
):
    profile = services.get_or_create_profile(session, user)
    services.update_profile(session, profile, body.model_dump())
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("Nickname is already taken") from exc
    revalidate("/profile")
    return services.serialize_profile(profile)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("deepvest.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
