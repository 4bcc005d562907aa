"""Async client for the best-keyword extraction service.

The service either answers synchronously (a JSON string or ``{"data": ...}``
body) or accepts the request as a job (``{"correlation_id": ...}``) that is
then polled until it carries a keyword or the timeout elapses.
"""

import logging
import math
import re
from typing import Any, Optional

import httpx

from promptvid.schemas.jobs import ErrorStatus, PendingStatus, ReadyStatus
from promptvid.services.base import KeywordExtractor
from promptvid.services.job_poller import JobFailedError, JobTimeoutError, poll_until

logger = logging.getLogger(__name__)

_QUOTED = re.compile(r'^"(.*)"$', re.DOTALL)


def clean_keyword(raw: Any) -> str:
    """Trim whitespace and one pair of surrounding double quotes."""
    if not isinstance(raw, str):
        return ""
    return _QUOTED.sub(r"\1", raw.strip()).strip()


def _parse_body(response: httpx.Response) -> Any:
    """JSON body when there is one, plain text otherwise."""
    try:
        return response.json()
    except ValueError:
        return response.text


def _keyword_from_body(body: Any) -> Optional[str]:
    if isinstance(body, str):
        return body
    if isinstance(body, dict):
        for key in ("keyword", "data"):
            if isinstance(body.get(key), str):
                return body[key]
    return None


class KeywordClient(KeywordExtractor):
    """HTTP client for ``/v1/find-best-keyword``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def _status(self, correlation_id: str):
        try:
            response = await self.client.get(f"/v1/find-best-keyword/{correlation_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            return ErrorStatus(message=f"{type(e).__name__}: {e}")
        body = _parse_body(response)
        if isinstance(body, dict) and body.get("error"):
            return ErrorStatus(message=str(body["error"]), fatal=True)
        keyword = _keyword_from_body(body)
        if keyword is not None:
            return ReadyStatus(payload=keyword)
        return PendingStatus()

    async def extract_keyword(self, prompt: str, poll_interval: float, timeout: float) -> str:
        """Return the best image-search keyword for ``prompt`` ("" on failure)."""
        try:
            response = await self.client.post("/v1/find-best-keyword", json={"prompt": prompt})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Error in find_best_keyword: {type(e).__name__}: {e}")
            return ""
        body = _parse_body(response)

        keyword = _keyword_from_body(body)
        if keyword is not None:
            logger.info(f"Retrieved best keyword: {keyword!r}")
            return clean_keyword(keyword)

        correlation_id = body.get("correlation_id") if isinstance(body, dict) else None
        if not correlation_id:
            logger.warning(f"Unexpected keyword response: {body!r}")
            return ""

        max_attempts = max(1, math.ceil(timeout / poll_interval)) if poll_interval > 0 else 1
        try:
            ready = await poll_until(
                lambda: self._status(correlation_id),
                max_attempts=max_attempts,
                delay=poll_interval,
                correlation_id=correlation_id,
            )
        except (JobTimeoutError, JobFailedError) as e:
            logger.error(f"Keyword extraction failed: {e}")
            return ""

        logger.info(f"Retrieved best keyword: {ready.payload!r}")
        return clean_keyword(ready.payload)

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
