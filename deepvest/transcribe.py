"""File transcription: download a document and have Gemini turn it into text.

Downloads are capped at :data:`MAX_FILE_SIZE` and limited to the MIME types in
:data:`SUPPORTED_MIME_TYPES`.  Gemini answers with 429 or a 502-504 are retried
with a linear backoff; every other failure is reported at once.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from deepvest.errors import APIError, RequestTimeoutError, ValidationError
from deepvest.scorer import RETRYABLE_STATUS, LLMCallError, LLMClient, LLMTimeoutError

log = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = {
    "application/pdf": "PDF",
    "image/jpeg": "JPEG",
    "image/jpg": "JPG",
    "image/png": "PNG",
    "image/webp": "WebP",
    "image/gif": "GIF",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "DOCX",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "PPTX",
    "application/msword": "DOC",
    "application/vnd.ms-powerpoint": "PPT",
    "text/plain": "TXT",
    "text/markdown": "MD",
}
MAX_FILE_SIZE = 10 * 1024 * 1024
TRANSCRIBE_TIMEOUT_SECONDS = 120.0
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0
USER_AGENT = "DeepVest-Transcription-Service/1.0"

DEFAULT_PROMPT = (
    "Transcribe this document to Markdown. Keep headings, lists and tables. "
    "Output only the transcription."
)


@dataclass
class DownloadedFile:
    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


def transcription_client() -> LLMClient:
    """Gemini client for transcription; ``TRANSCRIBE_MODEL`` overrides the model."""
    return LLMClient(
        provider="gemini",
        model=os.environ.get("TRANSCRIBE_MODEL") or LLMClient.DEFAULT_MODELS["gemini"],
        timeout=TRANSCRIBE_TIMEOUT_SECONDS,
    )


async def download_file(
    url: str,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = TRANSCRIBE_TIMEOUT_SECONDS,
) -> DownloadedFile:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Only HTTP and HTTPS URLs are supported")

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
            async with client.stream("GET", url, headers={"User-Agent": USER_AGENT}) as resp:
                if resp.status_code >= 400:
                    raise ValidationError(f"Failed to download file: {resp.status_code} {resp.reason_phrase}")
                mime_type = resp.headers.get("content-type", "").split(";")[0].strip()
                if mime_type not in SUPPORTED_MIME_TYPES:
                    raise ValidationError(f"Unsupported file type: {mime_type}")
                length = resp.headers.get("content-length")
                if length and length.isdigit() and int(length) > MAX_FILE_SIZE:
                    raise ValidationError(f"File too large: {length} bytes (max: {MAX_FILE_SIZE} bytes)")
                data = await resp.aread()
    except httpx.TimeoutException as exc:
        raise RequestTimeoutError("File download timeout") from exc
    except httpx.HTTPError as exc:
        raise ValidationError(f"File download failed: {exc}") from exc

    if len(data) > MAX_FILE_SIZE:
        raise ValidationError(f"File too large: {len(data)} bytes (max: {MAX_FILE_SIZE} bytes)")
    return DownloadedFile(data=data, mime_type=mime_type)


async def transcribe_with_retry(
    client: LLMClient,
    prompt: str,
    file: DownloadedFile,
    max_retries: int = MAX_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
) -> str:
    for attempt in range(max_retries + 1):
        try:
            return await client.transcribe(prompt, file.data, file.mime_type)
        except LLMCallError as exc:
            if attempt == max_retries or exc.status_code not in RETRYABLE_STATUS:
                raise
            delay = base_delay * (attempt + 1)
            log.warning("Gemini attempt %d failed, retrying in %.1fs: %s", attempt + 1, delay, exc)
            await asyncio.sleep(delay)
    raise APIError("Failed after all retries")


async def transcribe_url(
    client: LLMClient,
    url: str,
    prompt: str = DEFAULT_PROMPT,
    transport: httpx.AsyncBaseTransport | None = None,
    base_delay: float = RETRY_BASE_DELAY,
) -> dict[str, Any]:
    """Download *url* and transcribe it.

    Returns ``{"result": text, "metadata": {...}}``.  Failures raise
    :class:`~deepvest.errors.APIError`: 400 for a bad download, 408 for a
    timeout, 500 when Gemini is unconfigured or fails.
    """
    if not client.configured:
        raise APIError("Transcription service not configured")

    file = await download_file(url, transport=transport)
    try:
        text = await transcribe_with_retry(client, prompt, file, base_delay=base_delay)
    except LLMTimeoutError as exc:
        raise RequestTimeoutError("Gemini API request timeout") from exc
    except LLMCallError as exc:
        log.error("Transcription of %s failed: %s", url, exc)
        raise APIError(str(exc)) from exc

    log.info("Transcribed %s (%s, %d bytes)", url, file.mime_type, file.size)
    return {
        "result": text,
        "metadata": {"fileSize": file.size, "mimeType": file.mime_type, "model": client.model},
    }
