"""Shared fixtures: in-memory SQLite database, seeded projects, access tokens."""
from __future__ import annotations

import time
import uuid

import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from deepvest.cache import view_cache
from deepvest.models import (
    Base, Project, ProjectContent, ProjectPermission, ProjectStatus, Role, Snapshot, TeamMember,
)

JWT_SECRET = "test-secret-with-enough-length-for-hs256"


@pytest.fixture()
def session_factory():
    """Sessionmaker on a fresh in-memory database.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture(autouse=True)
def _clear_view_cache():
    view_cache.clear()
    yield
    view_cache.clear()


@pytest.fixture()
def jwt_secret(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.delenv("SUPABASE_JWT_AUDIENCE", raising=False)
    return JWT_SECRET


def make_token(user_id: uuid.UUID, email: str | None = "founder@example.com", **claims) -> str:
    payload = {
        "sub": str(user_id),
        "aud": "authenticated",
        "email": email,
        "exp": int(time.time()) + 3600,
        "user_metadata": {"full_name": "Ada Founder"},
        **claims,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def auth_header(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def seed_project(
    session: Session,
    owner_id: uuid.UUID,
    *,
    slug: str = "acme-robotics",
    published: bool = False,
    is_public: bool | None = None,
    country: str | None = "Germany",
    city: str | None = "Munich",
) -> tuple[Project, Snapshot]:
    """Project with an owner and one snapshot, optionally published (locked and public)."""
    project = Project(slug=slug, is_public=published if is_public is None else is_public)
    session.add(project)
    session.flush()
    session.add(ProjectPermission(project_id=project.id, user_id=owner_id, role=Role.OWNER))
    snapshot = Snapshot(
        project_id=project.id, version=1, name="Acme Robotics", slogan="Robots for everyone",
        description="Warehouse automation with low-cost arms.", status=ProjectStatus.MVP,
        country=country, city=city, repository_urls=["https://github.com/acme/robot"],
        website_urls=["https://acme.example"], is_locked=published, author_id=owner_id,
        contents=[], team_members=[],
    )
    session.add(snapshot)
    session.flush()
    project.new_snapshot_id = snapshot.id
    if published:
        project.public_snapshot_id = snapshot.id
    session.commit()
    return project, snapshot


def seed_team_and_docs(session: Session, project: Project, snapshot: Snapshot) -> tuple[TeamMember, ProjectContent]:
    member = TeamMember(
        project_id=project.id, name="Ada Founder", email="ada@acme.example", positions=["CEO", "CTO"],
        is_founder=True, equity_percent=60.0, city="Munich", country="Germany",
        github_url="https://github.com/ada",
    )
    doc = ProjectContent(
        project_id=project.id, title="Pitch Deck", slug="pitch-deck", content="We build robots.",
        description="Seed round deck", is_public=True,
    )
    session.add_all([member, doc])
    session.flush()
    snapshot.team_members = [str(member.id)]
    snapshot.contents = [str(doc.id)]
    session.commit()
    return member, doc


def grant(session: Session, project: Project, user_id: uuid.UUID, role: Role) -> None:
    session.add(ProjectPermission(project_id=project.id, user_id=user_id, role=role))
    session.commit()
