"""Blob storage client for project files (Supabase Storage REST API).

Objects live under ``{project_id}/...`` in a single bucket.  The client uses
the service-role key, which is user-independent configuration, so one client
can be shared; per-user authorization happens before any call reaches here.
"""
from __future__ import annotations

import logging
import os
import re
import uuid
from dataclasses import dataclass

import httpx

log = logging.getLogger(__name__)

DEFAULT_BUCKET = "project-files"
LIST_LIMIT = 1000
DELETE_BATCH_SIZE = 100


class StorageError(Exception):
    """Storage API call failed."""


@dataclass
class StoredFile:
    path: str
    public_url: str
    size: int
    content_type: str


class StorageClient:
    def __init__(
        self,
        base_url: str | None = None,
        service_key: str | None = None,
        bucket: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or os.environ.get("SUPABASE_URL", "")).rstrip("/")
        self._service_key = service_key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
        self.bucket = bucket or os.environ.get("STORAGE_BUCKET", DEFAULT_BUCKET)
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self._service_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/storage/v1",
            headers={
                "Authorization": f"Bearer {self._service_key}",
                "apikey": self._service_key,
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload(self, path: str, data: bytes, content_type: str) -> StoredFile:
        if not self.configured:
            raise StorageError("Storage is not configured")
        async with self._client() as client:
            resp = await client.post(
                f"/object/{self.bucket}/{path}",
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
        if resp.status_code >= 400:
            raise StorageError(f"Upload failed ({resp.status_code}): {resp.text[:200]}")
        return StoredFile(path=path, public_url=self.public_url(path), size=len(data), content_type=content_type)

    async def _list(self, client: httpx.AsyncClient, prefix: str, limit: int = LIST_LIMIT) -> list[dict]:
        resp = await client.post(
            f"/object/list/{self.bucket}",
            json={
                "prefix": prefix,
                "limit": limit,
                "offset": 0,
                "sortBy": {"column": "name", "order": "asc"},
            },
        )
        if resp.status_code >= 400:
            raise StorageError(f"List failed for {prefix!r} ({resp.status_code}): {resp.text[:200]}")
        return resp.json() or []

    async def list_files(self, prefix: str) -> list[str]:
        """Recursively list every object path under *prefix*."""
        async with self._client() as client:
            return await self._list_recursive(client, prefix)

    async def _list_recursive(self, client: httpx.AsyncClient, prefix: str) -> list[str]:
        paths: list[str] = []
        for item in await self._list(client, prefix):
            item_path = f"{prefix}/{item['name']}" if prefix else item["name"]
            # Folders are returned without an object id
            if item.get("id") is None:
                paths.extend(await self._list_recursive(client, item_path))
            else:
                paths.append(item_path)
        return paths

    async def remove(self, paths: list[str]) -> None:
        async with self._client() as client:
            for start in range(0, len(paths), DELETE_BATCH_SIZE):
                batch = paths[start:start + DELETE_BATCH_SIZE]
                resp = await client.request("DELETE", f"/object/{self.bucket}", json={"prefixes": batch})
                if resp.status_code >= 400:
                    raise StorageError(
                        f"Failed to delete files (batch {start // DELETE_BATCH_SIZE + 1}): {resp.text[:200]}"
                    )

    async def delete_project_files(self, project_id: uuid.UUID) -> tuple[bool, str | None]:
        """Delete everything stored for a project.  Returns ``(success, error)``; never raises."""
        if not self.configured:
            log.info("Storage not configured, no files to delete for project %s", project_id)
            return True, None
        try:
            paths = await self.list_files(str(project_id))
            if paths:
                await self.remove(paths)
            log.info("Deleted %d stored files for project %s", len(paths), project_id)
            return True, None
        except (StorageError, httpx.HTTPError) as exc:
            log.warning("Deleting files for project %s failed: %s", project_id, exc)
            return False, str(exc)


# ---------------------------------------------------------------------------
# Upload rules
# ---------------------------------------------------------------------------

IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")
DOCUMENT_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/markdown",
)

UPLOAD_RULES: dict[str, tuple[tuple[str, ...], int]] = {
    "logo": (IMAGE_TYPES, 2 * 1024 * 1024),
    "banner": (IMAGE_TYPES, 5 * 1024 * 1024),
    "document": (DOCUMENT_TYPES + IMAGE_TYPES, 10 * 1024 * 1024),
}

_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")


def upload_path(project_id: uuid.UUID, upload_type: str, filename: str, timestamp_ms: int) -> str:
    """Object path for an upload; documents keep a sanitized form of their original name."""
    stem, _, ext = filename.rpartition(".")
    if not stem:
        stem, ext = ext, ""
    suffix = f".{ext}" if ext else ""
    if upload_type == "document":
        return f"{project_id}/documents/{_UNSAFE_NAME_RE.sub('_', stem)}_{timestamp_ms}{suffix}"
    return f"{project_id}/{upload_type}_{timestamp_ms}{suffix}"
