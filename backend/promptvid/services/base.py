"""Abstract interfaces for the pipeline's external collaborators.

The orchestrator depends only on these async interfaces, so HTTP clients,
storage backends and message buses can be swapped (or faked in tests)
without touching pipeline code.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from promptvid.schemas.content import GenerationResponse
from promptvid.schemas.jobs import VideoJobSpec


class ContentGenerator(ABC):
    """Bilingual text + audio generation service."""

    @abstractmethod
    async def check_health(self) -> bool:
        """Return True when the service can accept work."""
        ...

    @abstractmethod
    async def generate_content(self, prompt: str) -> Optional[GenerationResponse]:
        """Generate content for a prompt.

        Returns:
            The validated response, or None when generation produced nothing.
        """
        ...


class KeywordExtractor(ABC):
    """Extracts the best image-search keyword from a prompt."""

    @abstractmethod
    async def extract_keyword(
        self, prompt: str, poll_interval: float, timeout: float,
    ) -> str:
        """Return the keyword, or an empty string when none was found."""
        ...


class ImageSearcher(ABC):
    """Finds images for a query."""

    @abstractmethod
    async def search_images(self, query: str, count: int) -> list[bytes]:
        """Return up to ``count`` image payloads, in ranking order."""
        ...


class RenderBackend(ABC):
    """Per-clip video render service."""

    @abstractmethod
    async def submit(self, spec: VideoJobSpec) -> str:
        """Submit one render job and return its correlation id."""
        ...

    @abstractmethod
    async def status(self, correlation_id: str) -> Any:
        """Return a JobStatus variant (ReadyStatus payload is video bytes)."""
        ...


class ObjectStorage(ABC):
    """Blob storage for final artifacts."""

    @abstractmethod
    async def upload_file(self, key: str, local_path: Path) -> str:
        """Upload a file and return its storage key."""
        ...


MessageHandler = Callable[[Any], Awaitable[None]]


class MessageBus(ABC):
    """Opaque publish/consume primitive. The wire protocol lives elsewhere."""

    @abstractmethod
    async def publish(self, topic: str, message: dict) -> None:
        ...

    @abstractmethod
    async def consume(self, topic: str, group_id: str, handler: MessageHandler) -> None:
        """Deliver every message on ``topic`` to ``handler`` until stopped."""
        ...
