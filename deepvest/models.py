from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON, Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class ProjectStatus(str, enum.Enum):
    IDEA = "idea"
    CONCEPT = "concept"
    PROTOTYPE = "prototype"
    MVP = "mvp"
    BETA = "beta"
    LAUNCHED = "launched"
    GROWING = "growing"
    SCALING = "scaling"
    ESTABLISHED = "established"
    ACQUIRED = "acquired"
    CLOSED = "closed"


class Role(str, enum.Enum):
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"
    OWNER = "owner"


class TeamMemberStatus(str, enum.Enum):
    GHOST = "ghost"
    INVITED = "invited"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ContentType(str, enum.Enum):
    PRESENTATION = "presentation"
    RESEARCH = "research"
    PITCH_DECK = "pitch_deck"
    WHITEPAPER = "whitepaper"
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    REPORT = "report"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    TABLE = "table"
    CHART = "chart"
    INFOGRAPHIC = "infographic"
    CASE_STUDY = "case_study"
    OTHER = "other"


class ScoringStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    # Store the lowercase values, not the member names
    return Enum(cls, name=name, values_callable=lambda e: [m.value for m in e], native_enum=False)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(60), unique=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    is_demo: Mapped[bool] = mapped_column(Boolean, default=False)
    # Snapshot pointers carry no FK: snapshots reference projects, not the reverse
    public_snapshot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    new_snapshot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    snapshots: Mapped[list[Snapshot]] = relationship(
        "Snapshot", back_populates="project", cascade="all, delete-orphan",
    )
    permissions: Mapped[list[ProjectPermission]] = relationship(
        "ProjectPermission", back_populates="project", cascade="all, delete-orphan",
    )
    team_members: Mapped[list[TeamMember]] = relationship(
        "TeamMember", back_populates="project", cascade="all, delete-orphan",
    )
    contents: Mapped[list[ProjectContent]] = relationship(
        "ProjectContent", back_populates="project", cascade="all, delete-orphan",
    )


class Snapshot(Base):
    __tablename__ = "snapshots"
    __table_args__ = (UniqueConstraint("project_id", "version", name="uq_snapshot_project_version"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slogan: Mapped[str | None] = mapped_column(String(300), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[ProjectStatus] = mapped_column(_enum(ProjectStatus, "project_status"), default=ProjectStatus.IDEA)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    repository_urls: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    website_urls: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    banner_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    video_urls: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    contents: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)  # ProjectContent ids
    team_members: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)  # TeamMember ids
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    scoring_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="snapshots")
    scoring: Mapped[ProjectScoring | None] = relationship(
        "ProjectScoring", back_populates="snapshot", cascade="all, delete-orphan", uselist=False,
    )


class ProjectPermission(Base):
    __tablename__ = "project_permissions"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_permission_project_user"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "project_role"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="permissions")


class TeamMember(Base):
    __tablename__ = "team_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    positions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_founder: Mapped[bool] = mapped_column(Boolean, default=False)
    equity_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    x_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    github_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    linkedin_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[TeamMemberStatus] = mapped_column(
        _enum(TeamMemberStatus, "team_member_status"), default=TeamMemberStatus.ACTIVE,
    )
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    departed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="team_members")


class ProjectContent(Base):
    __tablename__ = "project_content"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("projects.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    content_type: Mapped[ContentType] = mapped_column(_enum(ContentType, "content_type"), default=ContentType.DOCUMENT)
    content: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_urls: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    author_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    project: Mapped[Project] = relationship("Project", back_populates="contents")


class ProjectScoring(Base):
    __tablename__ = "project_scoring"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # unique: a second concurrent insert for the same snapshot fails instead of duplicating
    snapshot_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("snapshots.id"), unique=True, nullable=False)
    status: Mapped[ScoringStatus] = mapped_column(_enum(ScoringStatus, "scoring_status"), nullable=False)
    ai_model_version: Mapped[str] = mapped_column(String(100), default="")
    investment_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_potential: Mapped[float | None] = mapped_column(Float, nullable=True)
    team_competency: Mapped[float | None] = mapped_column(Float, nullable=True)
    tech_innovation: Mapped[float | None] = mapped_column(Float, nullable=True)
    business_model: Mapped[float | None] = mapped_column(Float, nullable=True)
    execution_risk: Mapped[float | None] = mapped_column(Float, nullable=True)  # lower is better
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    research: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    snapshot: Mapped[Snapshot] = relationship("Snapshot", back_populates="scoring")


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)  # auth user id
    full_name: Mapped[str] = mapped_column(String(200), default="")
    nickname: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cover_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    professional_background: Mapped[str | None] = mapped_column(Text, nullable=True)
    startup_ecosystem_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    x_username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    linkedin_username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    github_username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
