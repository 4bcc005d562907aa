"""Async client for the per-clip video creation (render) service.

Provides:
- Multipart submission of one VideoJobSpec (speech, music, images + JSON
  caption data and presentation options) -> correlation id
- Status query normalized to ReadyStatus / PendingStatus / ErrorStatus

The service signals completion by answering the status URL with the video
itself (``content-type: video/mp4``); anything else is a progress document
or an error. Every error is reported as transient so the poller's attempt
budget decides when to give up.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import httpx

from promptvid.schemas.jobs import ErrorStatus, PendingStatus, ReadyStatus, VideoJobSpec
from promptvid.services.base import RenderBackend

logger = logging.getLogger(__name__)

_VIDEO_CONTENT_TYPES = ("video/mp4",)
_MIME_BY_SUFFIX = {
    ".aac": "audio/aac",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def _mime_for(path: Path) -> str:
    return _MIME_BY_SUFFIX.get(path.suffix.lower(), "application/octet-stream")


def _read_files(spec: VideoJobSpec) -> list[tuple[str, tuple[str, bytes, str]]]:
    files = [
        ("speech_file", (spec.speech_path.name, spec.speech_path.read_bytes(), _mime_for(spec.speech_path))),
        ("music_file", (spec.music_path.name, spec.music_path.read_bytes(), _mime_for(spec.music_path))),
    ]
    for image_path in spec.image_paths:
        files.append(
            ("image_files", (image_path.name, image_path.read_bytes(), _mime_for(image_path)))
        )
    return files


def build_form_data(spec: VideoJobSpec) -> dict[str, str]:
    """Non-file form fields for a render submission."""
    text_data = [
        {"word": word.text, "start": word.start, "end": word.end}
        for word in spec.words
    ]
    return {
        "text_data": json.dumps(text_data, ensure_ascii=False),
        "video_size": json.dumps(list(spec.video_size)),
        "text_config": spec.text_config.model_dump_json(),
        "fps": str(spec.fps),
        "duration": str(spec.duration),
    }


class RenderClient(RenderBackend):
    """HTTP client for the video creation API.

    Args:
        api_url: Collection URL; status lives at ``{api_url}{correlation_id}``.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_url: str,
        *,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url if api_url.endswith("/") else f"{api_url}/"
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout, connect=30.0),
                transport=self._transport,
            )
        return self._client

    async def submit(self, spec: VideoJobSpec) -> str:
        """Upload one clip's media and options. Returns the correlation id.

        Raises:
            httpx.HTTPStatusError: Non-2xx response.
            ValueError: Response carries no correlation id.
        """
        files = await asyncio.to_thread(_read_files, spec)
        logger.info(
            f"POST {self.api_url} clip={spec.clip_index} "
            f"images={len(spec.image_paths)} words={len(spec.words)} "
            f"duration={spec.duration:.3f}"
        )
        response = await self.client.post(
            self.api_url, data=build_form_data(spec), files=files,
        )
        logger.info(f"  submit response: HTTP {response.status_code}")
        response.raise_for_status()
        correlation_id = response.json().get("correlation_id")
        if not correlation_id:
            raise ValueError("Render service returned no correlation_id")
        return str(correlation_id)

    async def status(self, correlation_id: str):
        try:
            response = await self.client.get(f"{self.api_url}{correlation_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            return ErrorStatus(message=f"{type(e).__name__}: {e}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type in _VIDEO_CONTENT_TYPES:
            logger.debug(
                f"GET {self.api_url}{correlation_id}: "
                f"video ready ({len(response.content)} bytes)"
            )
            return ReadyStatus(payload=response.content)

        try:
            body = response.json()
        except ValueError:
            return PendingStatus()
        if not isinstance(body, dict):
            return PendingStatus()
        if body.get("error"):
            return ErrorStatus(message=str(body["error"]))

        progress = body.get("progress")
        if isinstance(progress, (int, float)) and 0 <= progress <= 100:
            return PendingStatus(progress=progress)
        return PendingStatus()

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
