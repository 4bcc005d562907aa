"""Main pipeline orchestrator: prompt in, uploaded bilingual video out.

Coordinates the full prompt-to-video pipeline with:
- Strictly ordered, one-directional stage transitions
- Bounded content-generation retries
- Per-clip rendering through JobPoller with an explicit failure policy
- Step, failure and completion events delivered to subscribed observers
- A failure boundary: run() never raises, it returns None after emitting
  a FailureEvent
"""

import asyncio
import logging
import time
import traceback
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from promptvid.config import Settings, settings as default_settings
from promptvid.orchestrator.events import EventNotifier, Observer
from promptvid.orchestrator.state import TERMINAL_STAGES, check_transition, stage_label
from promptvid.pipeline.clips import AssemblyPlan, ClipAssembler, extract_clips
from promptvid.pipeline.stitcher import StitchError, merge_clips
from promptvid.schemas.content import GenerationResponse
from promptvid.schemas.task import (
    CompletedEvent,
    FailureEvent,
    FailureRecord,
    PipelineResult,
    StepEvent,
    Task,
)
from promptvid.services.base import (
    ContentGenerator,
    ImageSearcher,
    KeywordExtractor,
    ObjectStorage,
    RenderBackend,
)
from promptvid.services.file_manager import FileManager
from promptvid.services.job_poller import (
    BatchSubmissionError,
    JobPoller,
    PollConfig,
    retry_until,
)

logger = logging.getLogger(__name__)

FAILURE_KINDS = {
    "ServiceUnavailable": "Content service health check failed",
    "QueryExtractionFailed": "Could not extract an image search keyword",
    "ImageSearchFailed": "Image search returned no images",
    "ContentGenerationFailed": "Content generation produced no result",
    "NoClipsFound": "Content generation produced no clips",
    "VideoCompilationFailed": "No video job specs could be compiled",
    "RenderingFailed": "Clip rendering failed",
    "UploadFailed": "Final video upload failed",
    "UnexpectedError": "Unexpected internal error",
}

RENDER_FAILURE_POLICIES = ("fatal", "tolerate")

MergeFunc = Callable[[list[Path], Path], Awaitable[Path]]


class PipelineFailure(Exception):
    """Terminal pipeline failure of a known kind."""

    def __init__(
        self,
        kind: str,
        message: str,
        technical_detail: str = "",
        debug_payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.technical_detail = technical_detail
        self.debug_payload = debug_payload


class PipelineOrchestrator:
    """Drive one task at a time through the prompt-to-video stages.

    Args:
        content: Bilingual content/audio generation service.
        keywords: Keyword extraction service.
        images: Image search service.
        renderer: Per-clip render service (wrapped by JobPoller).
        storage: Object storage for the final video.
        file_mgr: Working-directory manager (defaults to settings.storage.work_dir).
        config: Settings (defaults to the module singleton).
        render_failure_policy: "fatal" or "tolerate"; overrides config.
        merge: Coroutine merging clip videos into the final file.
    """

    def __init__(
        self,
        *,
        content: ContentGenerator,
        keywords: KeywordExtractor,
        images: ImageSearcher,
        renderer: RenderBackend,
        storage: ObjectStorage,
        file_mgr: Optional[FileManager] = None,
        config: Optional[Settings] = None,
        render_failure_policy: Optional[str] = None,
        merge: MergeFunc = merge_clips,
    ):
        self.config = config or default_settings
        self.content = content
        self.keywords = keywords
        self.images = images
        self.storage = storage
        self.file_mgr = file_mgr or FileManager(self.config.storage.work_dir)
        self.assembler = ClipAssembler(self.file_mgr, self.config.presentation)
        self.poller = JobPoller(
            renderer, submit_attempts=self.config.pipeline.submit_retry_attempts,
        )
        self.merge = merge

        policy = render_failure_policy or self.config.pipeline.render_failure_policy
        if policy not in RENDER_FAILURE_POLICIES:
            raise ValueError(
                f"Unknown render failure policy {policy!r}; "
                f"expected one of {RENDER_FAILURE_POLICIES}"
            )
        self.render_failure_policy = policy

        self.events = EventNotifier()
        self.active_tasks: dict[str, Task] = {}

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an event observer; returns its unsubscribe callable."""
        return self.events.subscribe(observer)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_prompt(
        self,
        prompt: str,
        *,
        task_id: Optional[str] = None,
        account_id: str = "",
    ) -> Optional[PipelineResult]:
        """Create a Task for ``prompt`` and run it."""
        task = Task(prompt=prompt, account_id=account_id)
        if task_id:
            task.id = task_id
        return await self.run(task)

    async def run(self, task: Task) -> Optional[PipelineResult]:
        """Execute the full pipeline for ``task``.

        Returns:
            PipelineResult on success, None on any terminal failure (a
            FailureEvent has already been emitted by then).
        """
        logger.info(f"Starting pipeline for task {task.id}: {task.prompt!r}")
        self.active_tasks[task.id] = task
        pipeline_start = time.monotonic()
        task.stage_timestamps.setdefault(task.stage, pipeline_start)

        try:
            result = await self._execute(task)
            logger.info(
                f"Pipeline completed for task {task.id} in "
                f"{time.monotonic() - pipeline_start:.2f}s"
            )
            return result

        except PipelineFailure as failure:
            self._fail(task, failure)
            return None

        except Exception as e:
            failure = PipelineFailure(
                "UnexpectedError",
                f"Unexpected error during {task.stage}: {type(e).__name__}: {e}",
                technical_detail=traceback.format_exc(),
                debug_payload={"exception_type": type(e).__name__, "stage": task.stage},
            )
            self._fail(task, failure)
            return None

        finally:
            # Terminal notification emitted (or cancelled): release the task
            self.active_tasks.pop(task.id, None)

    # ------------------------------------------------------------------
    # Stage machinery
    # ------------------------------------------------------------------

    def _enter(self, task: Task, stage: str) -> None:
        check_transition(task.stage, stage)
        now = time.monotonic()
        last = task.stage_timestamps.get(task.stage, now)
        elapsed = now - last

        task.stage = stage
        task.stage_timestamps[stage] = now
        logger.info(f"Task {task.id}: {stage} ({elapsed:.2f}s since last step)")

        self.events.emit(StepEvent(
            task_id=task.id,
            step=stage,
            label=stage_label(stage),
            elapsed_since_last_step=elapsed,
        ))

    def _fail(self, task: Task, failure: PipelineFailure) -> None:
        failed_stage = task.stage
        logger.error(
            f"Pipeline failed for task {task.id} at {failed_stage}: "
            f"{failure.kind}: {failure.message}"
        )
        if failure.technical_detail:
            logger.debug(f"Task {task.id} failure detail: {failure.technical_detail}")

        if task.stage not in TERMINAL_STAGES:
            task.stage = "failed"
            task.stage_timestamps["failed"] = time.monotonic()
        task.failure = FailureRecord(
            kind=failure.kind,
            message=failure.message,
            technical_detail=failure.technical_detail,
            debug_payload=failure.debug_payload,
        )
        self.events.emit(FailureEvent(
            task_id=task.id,
            kind=failure.kind,
            message=failure.message,
            technical_detail=failure.technical_detail,
            debug_payload=failure.debug_payload,
        ))

    async def _execute(self, task: Task) -> PipelineResult:
        self._enter(task, "health_check")
        await self._check_health()

        self._enter(task, "keyword_extraction")
        keyword = await self._extract_keyword(task)

        self._enter(task, "content_generation")
        response = await self._generate_content(task)

        self._enter(task, "clip_assembly")
        image_paths = await self._prepare_images(task, keyword)
        clips = extract_clips(task.id, response)

        self._enter(task, "spec_compilation")
        plan = await asyncio.to_thread(self.assembler.assemble, task.id, clips, image_paths)
        if not plan.specs and not plan.outputs:
            raise PipelineFailure(
                "VideoCompilationFailed",
                f"No video job specs compiled from {len(clips)} clip(s)",
                technical_detail=f"Clips dropped for corrupt timings: {plan.corrupt}",
            )

        self._enter(task, "rendering")
        rendered = await self._render(task, plan)

        self._enter(task, "finalizing")
        storage_key = await self._finalize(task, rendered)

        result = PipelineResult(
            task_id=task.id,
            account_id=task.account_id,
            downloads=[storage_key],
            content=response.content,
        )
        self._enter(task, "completed")
        task.result = result
        self.events.emit(CompletedEvent(
            task_id=task.id,
            downloads=result.downloads,
            content=result.content,
        ))
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _check_health(self) -> None:
        try:
            healthy = await self.content.check_health()
        except Exception as e:
            raise PipelineFailure(
                "ServiceUnavailable",
                FAILURE_KINDS["ServiceUnavailable"],
                technical_detail=f"{type(e).__name__}: {e}",
            ) from e
        if not healthy:
            raise PipelineFailure(
                "ServiceUnavailable",
                FAILURE_KINDS["ServiceUnavailable"],
                technical_detail="check_health() returned False",
            )

    async def _extract_keyword(self, task: Task) -> str:
        pipeline_cfg = self.config.pipeline
        keyword = await self.keywords.extract_keyword(
            task.prompt,
            pipeline_cfg.keyword_poll_interval,
            pipeline_cfg.keyword_timeout,
        )
        keyword = (keyword or "").strip().strip('"').strip()
        if not keyword:
            raise PipelineFailure(
                "QueryExtractionFailed",
                FAILURE_KINDS["QueryExtractionFailed"],
                technical_detail=f"Empty keyword for prompt {task.prompt!r}",
            )
        logger.info(f"Task {task.id}: image search keyword {keyword!r}")
        return keyword

    async def _generate_content(self, task: Task) -> GenerationResponse:
        pipeline_cfg = self.config.pipeline

        async def _attempt() -> Optional[GenerationResponse]:
            return await self.content.generate_content(task.prompt)

        def _accept(response: Optional[GenerationResponse]) -> bool:
            return response is not None and len(response.clips) > 0

        response, attempts = await retry_until(
            _attempt,
            _accept,
            max_attempts=pipeline_cfg.content_generation_attempts,
            delay=pipeline_cfg.content_generation_delay,
            label=f"Task {task.id} content generation",
        )

        if response is None:
            raise PipelineFailure(
                "ContentGenerationFailed",
                FAILURE_KINDS["ContentGenerationFailed"],
                technical_detail=f"No result after {attempts} attempt(s)",
            )
        if not response.clips:
            raise PipelineFailure(
                "NoClipsFound",
                FAILURE_KINDS["NoClipsFound"],
                technical_detail=f"Zero clips after {attempts} attempt(s)",
                debug_payload=response.model_dump(exclude={"audio_base64"}),
            )
        logger.info(
            f"Task {task.id}: generated {len(response.clips)} clip(s) "
            f"on attempt {attempts}"
        )
        return response

    async def _prepare_images(self, task: Task, keyword: str) -> list[Path]:
        count = self.config.pipeline.image_count
        images = await self.images.search_images(keyword, count)
        if not images:
            raise PipelineFailure(
                "ImageSearchFailed",
                FAILURE_KINDS["ImageSearchFailed"],
                technical_detail=f"No images for query {keyword!r}",
            )

        paths = []
        for index, data in enumerate(images):
            path = await asyncio.to_thread(self.file_mgr.save_image, task.id, index, data)
            paths.append(path)
        logger.info(f"Task {task.id}: saved {len(paths)} image(s) for {keyword!r}")
        return paths

    async def _render(self, task: Task, plan: AssemblyPlan) -> list[Path]:
        if not plan.specs:
            logger.info(f"Task {task.id}: every clip already rendered, nothing to submit")
            return list(plan.outputs)

        try:
            ids = await self.poller.submit_batch(plan.specs)
        except BatchSubmissionError as e:
            raise PipelineFailure(
                "RenderingFailed",
                "Render job submission failed",
                technical_detail=str(e),
            ) from e

        failures: dict[int, str] = {}

        def _on_progress(index: int, attempt: int, progress: Optional[float]) -> None:
            if progress is not None:
                logger.debug(
                    f"Task {task.id}: clip {plan.specs[index].clip_index} "
                    f"{progress:.0f}% (attempt {attempt})"
                )

        def _on_success(index: int, path: Path) -> None:
            logger.info(f"Task {task.id}: clip {plan.specs[index].clip_index} rendered at {path}")

        def _on_error(index: int, error: BaseException) -> None:
            failures[index] = f"{type(error).__name__}: {error}"

        pipeline_cfg = self.config.pipeline
        await self.poller.poll_batch(
            ids,
            [spec.output_path for spec in plan.specs],
            PollConfig(
                max_attempts_per_item=pipeline_cfg.render_poll_max_attempts,
                delay_per_attempt=pipeline_cfg.render_poll_delay,
                on_progress=_on_progress,
                on_success=_on_success,
                on_error=_on_error,
            ),
        )

        detail = ""
        if failures:
            detail = "; ".join(
                f"clip {plan.specs[i].clip_index}: {msg}"
                for i, msg in sorted(failures.items())
            )
            if self.render_failure_policy == "fatal":
                raise PipelineFailure(
                    "RenderingFailed",
                    f"{len(failures)} of {len(plan.specs)} clip render(s) failed",
                    technical_detail=detail,
                    debug_payload={"correlation_ids": [ids[i] for i in sorted(failures)]},
                )
            logger.warning(f"Task {task.id}: continuing without failed clips: {detail}")

        failed_paths = {plan.specs[i].output_path for i in failures}
        outputs = [path for path in plan.outputs if path not in failed_paths]
        if not outputs:
            raise PipelineFailure(
                "RenderingFailed",
                "No clip rendered successfully",
                technical_detail=detail,
            )
        return outputs

    async def _finalize(self, task: Task, clip_paths: list[Path]) -> str:
        output_path = self.file_mgr.get_output_path(task.id)
        try:
            await self.merge(clip_paths, output_path)
        except StitchError as e:
            raise PipelineFailure(
                "RenderingFailed",
                "Final video merge failed",
                technical_detail=str(e),
            ) from e

        account = task.account_id or "anonymous"
        key = f"{self.config.storage.key_prefix}/{account}/{task.id}.mp4"
        try:
            storage_key = await self.storage.upload_file(key, output_path)
        except Exception as e:
            raise PipelineFailure(
                "UploadFailed",
                FAILURE_KINDS["UploadFailed"],
                technical_detail=f"{type(e).__name__}: {e}",
            ) from e
        logger.info(f"Task {task.id}: uploaded {output_path} as {storage_key}")
        return storage_key
