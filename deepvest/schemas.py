"""Pydantic request schemas for the DeepVest API."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deepvest.models import ContentType, ProjectStatus, Role, TeamMemberStatus
from deepvest.utils import DOCUMENT_SLUG_RE, PROJECT_SLUG_RE

NICKNAME_RE = r"^[a-zA-Z0-9_-]{3,30}$"


class ProjectCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=3, max_length=60)
    description: str = ""
    status: ProjectStatus = ProjectStatus.IDEA
    skip_auto_team: bool = Field(default=False, alias="skipAutoTeam")

    @field_validator("slug")
    @classmethod
    def slug_must_be_safe(cls, v: str) -> str:
        if not PROJECT_SLUG_RE.match(v):
            raise ValueError("slug must contain only lowercase letters, numbers, and hyphens")
        return v


class SnapshotFields(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    slogan: str | None = None
    description: str | None = None
    status: ProjectStatus | None = None
    country: str | None = None
    city: str | None = None
    repository_urls: list[str] | None = None
    website_urls: list[str] | None = None
    logo_url: str | None = None
    banner_url: str | None = None
    video_urls: list[str] | None = None


class PublicationToggle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_currently_public: bool = Field(alias="isCurrentlyPublic")


class PermissionGrant(BaseModel):
    user_id: uuid.UUID
    role: Role


class TeamMemberCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str | None = None
    positions: list[str] = []
    is_founder: bool = False
    equity_percent: float | None = Field(default=None, ge=0, le=100)
    country: str | None = None
    city: str | None = None
    x_url: str | None = None
    github_url: str | None = None
    linkedin_url: str | None = None
    status: TeamMemberStatus = TeamMemberStatus.ACTIVE
    joined_at: datetime | None = None


class TeamMemberUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = None
    positions: list[str] | None = None
    is_founder: bool | None = None
    equity_percent: float | None = Field(default=None, ge=0, le=100)
    country: str | None = None
    city: str | None = None
    x_url: str | None = None
    github_url: str | None = None
    linkedin_url: str | None = None
    status: TeamMemberStatus | None = None
    joined_at: datetime | None = None
    departed_at: datetime | None = None


class TeamMemberBulk(BaseModel):
    action: Literal["delete", "activate", "deactivate", "invite"]
    team_member_ids: list[uuid.UUID] = Field(min_length=1)


class DocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=100)
    content_type: ContentType = ContentType.DOCUMENT
    content: str = ""
    description: str | None = None
    file_urls: list[str] = []
    is_public: bool = False

    @field_validator("slug")
    @classmethod
    def slug_must_be_safe(cls, v: str) -> str:
        if not DOCUMENT_SLUG_RE.match(v):
            raise ValueError("slug must contain only lowercase letters, numbers, hyphens, and underscores")
        return v


class DocumentUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    slug: str | None = None
    content_type: ContentType | None = None
    content: str | None = None
    description: str | None = None
    file_urls: list[str] | None = None
    is_public: bool | None = None

    @field_validator("slug")
    @classmethod
    def slug_must_be_safe(cls, v: str | None) -> str | None:
        if v is not None and not DOCUMENT_SLUG_RE.match(v):
            raise ValueError("slug must contain only lowercase letters, numbers, hyphens, and underscores")
        return v


class TranscribeRequest(BaseModel):
    url: str = Field(min_length=1)
    prompt: str = Field(min_length=1, max_length=2000)


class DocumentTranscribe(BaseModel):
    prompt: str | None = Field(default=None, min_length=1, max_length=2000)


class ProfileUpdate(BaseModel):
    full_name: str | None = None
    nickname: str | None = Field(default=None, pattern=NICKNAME_RE)
    avatar_url: str | None = None
    cover_url: str | None = None
    bio: str | None = None
    professional_background: str | None = None
    startup_ecosystem_role: str | None = None
    country: str | None = None
    city: str | None = None
    website_url: str | None = None
    x_username: str | None = None
    linkedin_username: str | None = None
    github_username: str | None = None
