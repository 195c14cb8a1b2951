"""Shared utility functions used across DeepVest modules."""
from __future__ import annotations

import re
import uuid

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE,
)
PROJECT_SLUG_RE = re.compile(r"^[a-z0-9-]+$")
DOCUMENT_SLUG_RE = re.compile(r"^[a-z0-9_-]+$")


def parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    """Return a UUID for a well-formed string, else None."""
    if isinstance(value, uuid.UUID):
        return value
    if not value or not UUID_RE.match(value):
        return None
    return uuid.UUID(value)


def id_list(values: list[str] | None) -> list[uuid.UUID]:
    """Convert a stored JSON id list into UUIDs, skipping malformed entries."""
    return [u for u in (parse_uuid(v) for v in values or []) if u is not None]


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))
