"""Markdown rendering of a project's public snapshot for investment analysis.

The output is the ``{project_data}`` payload of the scoring prompt.  The
only field that depends on anything but the arguments is the analysis date,
which callers (and tests) can pin with ``now``.
"""
from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any, Sequence

from deepvest.models import Project, ProjectContent, Snapshot, TeamMember


def _yes_no(flag: bool | None) -> str:
    return "Yes" if flag else "No"


def _text(value: Any) -> str:
    if isinstance(value, enum.Enum):
        return str(value.value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _bullets(lines: list[str], label: str, urls: Sequence[str] | None) -> None:
    if urls:
        lines.append(f"**{label}:**")
        lines.extend(f"- {url}" for url in urls)


def _header(lines: list[str], project: Project) -> None:
    lines += [
        "# Project Investment Analysis",
        "",
        f"**Project ID:** {project.id}",
        f"**Project Slug:** {project.slug}",
        f"**Public Status:** {_yes_no(project.is_public)}",
        f"**Archived:** {_yes_no(project.is_archived)}",
        "",
    ]


def _overview(lines: list[str], snapshot: Snapshot) -> None:
    lines += ["## Project Overview", "", f"**Name:** {snapshot.name}"]
    if snapshot.slogan:
        lines.append(f"**Slogan:** {snapshot.slogan}")
    lines += [
        f"**Version:** {snapshot.version}",
        f"**Status:** {_text(snapshot.status)}",
        "**Description:**",
        snapshot.description or "No description available",
        "",
    ]

    if snapshot.country or snapshot.city:
        lines.append("### Location")
        if snapshot.country:
            lines.append(f"**Country:** {snapshot.country}")
        if snapshot.city:
            lines.append(f"**City:** {snapshot.city}")
        lines.append("")

    if snapshot.repository_urls or snapshot.website_urls:
        lines.append("### Links and Resources")
        _bullets(lines, "Repository URLs", snapshot.repository_urls)
        _bullets(lines, "Website URLs", snapshot.website_urls)
        lines.append("")

    if snapshot.logo_url or snapshot.banner_url or snapshot.video_urls:
        lines.append("### Media Assets")
        if snapshot.logo_url:
            lines.append(f"**Logo:** {snapshot.logo_url}")
        if snapshot.banner_url:
            lines.append(f"**Banner:** {snapshot.banner_url}")
        _bullets(lines, "Videos", snapshot.video_urls)
        lines.append("")


def _documentation(lines: list[str], contents: Sequence[ProjectContent]) -> None:
    if not contents:
        lines += ["## Project Documentation", "No public documentation available.", ""]
        return
    lines += ["## Project Documentation", ""]
    for i, item in enumerate(contents, 1):
        lines += [
            f"### {i}. {item.title}",
            f"**Type:** {_text(item.content_type)}",
            f"**Slug:** {item.slug}",
        ]
        if item.description:
            lines.append(f"**Description:** {item.description}")
        if item.content:
            lines += ["**Content:**", item.content]
        _bullets(lines, "File URLs", item.file_urls)
        lines.append("")


def _member(lines: list[str], index: int, member: TeamMember) -> None:
    lines.append(f"#### {index}. {member.name}")
    if member.email:
        lines.append(f"**Email:** {member.email}")
    if member.positions:
        lines.append(f"**Positions:** {', '.join(member.positions)}")
    if member.equity_percent is not None:
        lines.append(f"**Equity:** {_text(member.equity_percent)}%")
    if member.city or member.country:
        lines.append(f"**Location:** {', '.join(p for p in (member.city, member.country) if p)}")
    if member.status:
        lines.append(f"**Status:** {_text(member.status)}")
    social = [
        f"[{label}]({url})"
        for label, url in (("X/Twitter", member.x_url), ("GitHub", member.github_url), ("LinkedIn", member.linkedin_url))
        if url
    ]
    if social:
        lines.append(f"**Social:** {' | '.join(social)}")
    lines.append("")


def _team(lines: list[str], team_members: Sequence[TeamMember]) -> None:
    if not team_members:
        lines += ["## Team Members", "No public team information available.", ""]
        return
    lines += ["## Team Members", ""]
    founders = [m for m in team_members if m.is_founder]
    others = [m for m in team_members if not m.is_founder]
    for title, group in (("Founders", founders), ("Team Members", others)):
        if not group:
            continue
        lines.append(f"### {title}")
        for i, member in enumerate(group, 1):
            _member(lines, i, member)


def render_project_markdown(
    project: Project,
    snapshot: Snapshot,
    contents: Sequence[ProjectContent],
    team_members: Sequence[TeamMember],
    now: datetime | None = None,
) -> str:
    """Render the snapshot, its public documents and its team as one markdown document."""
    lines: list[str] = []
    _header(lines, project)
    _overview(lines, snapshot)
    _documentation(lines, contents)
    _team(lines, team_members)
    lines += [
        "## Analysis Context",
        "",
        f"**Snapshot Locked:** {_yes_no(snapshot.is_locked)}",
        f"**Content Sections:** {len(contents)}",
        f"**Team Size:** {len(team_members)}",
        f"**Founders Count:** {sum(1 for m in team_members if m.is_founder)}",
        f"**Analysis Date:** {(now or datetime.now(UTC)).isoformat()}",
        "",
    ]
    return "\n".join(lines)
