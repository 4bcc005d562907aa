"""Async client for the bilingual podcast (content + audio) generation service.

Provides:
- Health check
- Podcast job creation (prompt + language pair)
- Status polling via the shared poll_until loop
- Boundary validation of the finished body into GenerationResponse

Usage:
    client = PodcastClient("https://podcasts.example.com")
    if await client.check_health():
        response = await client.generate_content("Make a podcast about AI.")
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from promptvid.schemas.content import GenerationResponse
from promptvid.schemas.jobs import ErrorStatus, PendingStatus, ReadyStatus
from promptvid.services.base import ContentGenerator
from promptvid.services.job_poller import JobFailedError, JobTimeoutError, poll_until

logger = logging.getLogger(__name__)


class PodcastClient(ContentGenerator):
    """HTTP client for the podcast service.

    Args:
        base_url: Service root URL.
        languages: (first, second) language codes for the bilingual pair.
        poll_interval: Seconds between status queries.
        poll_max: Status queries before giving up.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        *,
        languages: tuple[str, str] = ("vi", "en"),
        poll_interval: float = 5.0,
        poll_max: int = 120,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.languages = languages
        self.poll_interval = poll_interval
        self.poll_max = poll_max
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout, connect=30.0),
                transport=self._transport,
            )
        return self._client

    async def check_health(self) -> bool:
        try:
            response = await self.client.get("/health")
        except httpx.HTTPError as e:
            logger.error(f"Podcast service health check failed: {type(e).__name__}: {e}")
            return False
        healthy = response.status_code == 200
        if not healthy:
            logger.error(f"Podcast service unhealthy: HTTP {response.status_code}")
        return healthy

    async def create_podcast(self, prompt: str) -> str:
        """Submit a podcast job. Returns the correlation id.

        Raises:
            httpx.HTTPStatusError: Non-2xx response.
            ValueError: No correlation id in the response.
        """
        logger.info(f"POST {self.base_url}/api/podcasts languages={list(self.languages)}")
        response = await self.client.post(
            "/api/podcasts",
            json={"prompt": prompt, "languages": list(self.languages)},
        )
        response.raise_for_status()
        correlation_id = response.json().get("correlationId")
        if not correlation_id:
            raise ValueError("Failed to retrieve correlationId")
        logger.info(f"  podcast correlation id: {correlation_id}")
        return correlation_id

    async def get_status(self, correlation_id: str):
        """Query one podcast job and map the body to a JobStatus variant."""
        try:
            response = await self.client.get(f"/api/podcasts/{correlation_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            return ErrorStatus(message=f"{type(e).__name__}: {e}")

        data = response.json()
        if data.get("error"):
            return ErrorStatus(message=str(data["error"]), fatal=True)
        if data.get("choices"):
            return ReadyStatus(payload=data)
        return PendingStatus(progress=data.get("progress"))

    async def generate_content(self, prompt: str) -> Optional[GenerationResponse]:
        """Create a podcast job and wait for it.

        Returns None when the job fails, times out, or its body does not
        validate. Each call is an independent job.
        """
        try:
            correlation_id = await self.create_podcast(prompt)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error creating podcast: {type(e).__name__}: {e}")
            return None

        async def _fetch():
            return await self.get_status(correlation_id)

        def _progress(attempt: int, progress: Optional[float]) -> None:
            logger.info(
                f"Podcast {correlation_id} not ready (attempt {attempt}/{self.poll_max}, "
                f"progress={progress})"
            )

        try:
            ready = await poll_until(
                _fetch,
                max_attempts=self.poll_max,
                delay=self.poll_interval,
                correlation_id=correlation_id,
                on_progress=_progress,
            )
        except (JobTimeoutError, JobFailedError) as e:
            logger.error(f"Podcast generation error: {e}")
            return None

        try:
            return GenerationResponse.from_upstream(ready.payload)
        except (ValidationError, ValueError) as e:
            logger.error(f"Podcast {correlation_id} returned an invalid body: {e}")
            return None

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
