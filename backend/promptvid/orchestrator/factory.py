"""Wire the production collaborators into a PipelineOrchestrator.

Usage:
    from promptvid.orchestrator.factory import build_orchestrator, close_orchestrator

    orchestrator = build_orchestrator()
    try:
        result = await orchestrator.run_prompt("Make a podcast about AI.")
    finally:
        await close_orchestrator(orchestrator)
"""

import inspect
import logging
from typing import Optional

from promptvid.config import Settings, settings as default_settings
from promptvid.orchestrator.pipeline import PipelineOrchestrator
from promptvid.services.file_manager import FileManager
from promptvid.services.image_search import PexelsImageSearcher
from promptvid.services.keyword_client import KeywordClient
from promptvid.services.podcast_client import PodcastClient
from promptvid.services.render_client import RenderClient
from promptvid.services.storage import S3Storage

logger = logging.getLogger(__name__)


def build_orchestrator(config: Optional[Settings] = None) -> PipelineOrchestrator:
    """Return an orchestrator backed by the HTTP clients and S3 storage."""
    config = config or default_settings
    services = config.services
    pipeline_cfg = config.pipeline

    logger.debug(
        f"Building orchestrator (podcast={services.podcast_url}, "
        f"keyword={services.keyword_url}, render={services.render_url}, "
        f"bucket={config.storage.bucket})"
    )
    return PipelineOrchestrator(
        content=PodcastClient(
            services.podcast_url,
            languages=services.languages,
            poll_interval=pipeline_cfg.podcast_poll_interval,
            poll_max=pipeline_cfg.podcast_poll_max,
            timeout=services.http_timeout,
        ),
        keywords=KeywordClient(services.keyword_url),
        images=PexelsImageSearcher(
            services.image_search_url, services.image_search_api_key,
        ),
        renderer=RenderClient(services.render_url, timeout=services.http_timeout),
        storage=S3Storage(config.storage),
        file_mgr=FileManager(config.storage.work_dir),
        config=config,
    )


async def close_orchestrator(orchestrator: PipelineOrchestrator) -> None:
    """Close every collaborator that holds an HTTP client."""
    collaborators = (
        orchestrator.content,
        orchestrator.keywords,
        orchestrator.images,
        orchestrator.poller.backend,
    )
    for collaborator in collaborators:
        close = getattr(collaborator, "close", None)
        if close is None:
            continue
        result = close()
        if inspect.isawaitable(result):
            await result
