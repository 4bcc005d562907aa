"""Bulk asynchronous-job engine: submit many, poll many.

Provides:
- JobPoller: submit a batch of render specs, then poll every correlation id
  on its own lane with a bounded attempt budget and per-lane callbacks
- poll_until(): the single-job poll loop shared by lanes and by the
  content-generation and keyword clients
- retry_until(): bounded independent re-invocation of an operation until its
  result is accepted (used by the content-generation stage)

Lane isolation: a lane never raises. Its outcome is reported through
on_success/on_error only, so one slow or broken job cannot reject the batch.

Usage:
    poller = JobPoller(render_client)
    ids = await poller.submit_batch(specs)
    await poller.poll_batch(
        ids,
        [spec.output_path for spec in specs],
        PollConfig(max_attempts_per_item=1200, delay_per_attempt=1.0,
                   on_error=lambda i, exc: failures.append(i)),
    )
"""

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from promptvid.schemas.jobs import (
    ErrorStatus,
    JobRecord,
    PendingStatus,
    ReadyStatus,
    VideoJobSpec,
)
from promptvid.services.base import RenderBackend

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, Optional[float]], Any]
SuccessCallback = Callable[[int, Path], Any]
ErrorCallback = Callable[[int, BaseException], Any]


class JobTimeoutError(TimeoutError):
    """Attempt budget exhausted before the job became ready."""

    def __init__(self, correlation_id: str, attempts: int):
        super().__init__(
            f"Job {correlation_id} not ready after {attempts} attempt(s)"
        )
        self.correlation_id = correlation_id
        self.attempts = attempts


class JobFailedError(RuntimeError):
    """Upstream reported a fatal error for the job."""

    def __init__(self, correlation_id: str, message: str):
        super().__init__(f"Job {correlation_id} failed: {message}")
        self.correlation_id = correlation_id


class BatchSubmissionError(RuntimeError):
    """Submitting one item of a batch failed, so the whole batch failed."""

    def __init__(self, index: int, cause: BaseException):
        super().__init__(
            f"Submission failed for item {index}: {type(cause).__name__}: {cause}"
        )
        self.index = index


class PollConfig(BaseModel):
    """Per-batch polling parameters.

    Both budgets are per item; poll_batch multiplies them by the batch size
    so the aggregate request rate stays roughly constant however wide the
    batch is.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_attempts_per_item: int
    delay_per_attempt: float
    on_progress: Optional[ProgressCallback] = None
    on_success: Optional[SuccessCallback] = None
    on_error: Optional[ErrorCallback] = None


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """Call a sync or async callback."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


# ---------------------------------------------------------------------------
# Shared loops
# ---------------------------------------------------------------------------

async def poll_until(
    fetch: Callable[[], Awaitable[Any]],
    *,
    max_attempts: int,
    delay: float,
    correlation_id: str = "",
    on_progress: Optional[Callable[[int, Optional[float]], Any]] = None,
) -> ReadyStatus:
    """Poll one job until it is ready or the attempt budget runs out.

    Pending and transient errors (ErrorStatus with fatal=False, or any
    exception raised by fetch) each consume one attempt and sleep ``delay``.

    Args:
        fetch: Coroutine function returning a JobStatus variant.
        max_attempts: Total status queries allowed.
        delay: Seconds to sleep between attempts.
        correlation_id: Used in logs and errors only.
        on_progress: Called as ``on_progress(attempt, progress)`` for pending.

    Returns:
        The ReadyStatus carrying the job payload.

    Raises:
        JobTimeoutError: Budget exhausted.
        JobFailedError: Upstream reported a fatal error.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            status = await fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Job {correlation_id} attempt {attempt}/{max_attempts}: "
                f"status query failed: {type(e).__name__}: {e}"
            )
        else:
            if isinstance(status, ReadyStatus):
                logger.debug(f"Job {correlation_id} ready after {attempt} attempt(s)")
                return status
            if isinstance(status, PendingStatus):
                await _invoke(on_progress, attempt, status.progress)
            elif isinstance(status, ErrorStatus):
                if status.fatal:
                    raise JobFailedError(correlation_id, status.message)
                logger.warning(
                    f"Job {correlation_id} attempt {attempt}/{max_attempts}: "
                    f"transient error: {status.message}"
                )
            else:
                raise TypeError(f"Unexpected job status: {status!r}")

        if attempt < max_attempts:
            await asyncio.sleep(delay)

    raise JobTimeoutError(correlation_id, max_attempts)


async def retry_until(
    operation: Callable[[], Awaitable[Any]],
    accept: Callable[[Any], bool],
    *,
    max_attempts: int,
    delay: float = 0.0,
    label: str = "operation",
) -> tuple[Any, int]:
    """Re-invoke ``operation`` until ``accept(result)`` holds.

    Each attempt is independent; nothing carries over between attempts.
    Exceptions from the operation propagate to the caller unchanged.

    Returns:
        (last_result, attempts_made). The result was accepted only if
        ``accept(last_result)`` is true.
    """
    attempts = 0
    last_result: Any = None

    def _rejected(result: Any) -> bool:
        return not accept(result)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay),
        retry=retry_if_result(_rejected),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                logger.info(f"{label}: attempt {attempts}/{max_attempts}")
                last_result = await operation()
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(last_result)
    except RetryError:
        logger.error(f"{label}: rejected after {attempts} attempt(s)")

    return last_result, attempts


# ---------------------------------------------------------------------------
# Submission retry (guards transient 429/5xx/connection errors)
# ---------------------------------------------------------------------------

def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx)."""
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return True
    return False


# ---------------------------------------------------------------------------
# JobPoller
# ---------------------------------------------------------------------------

class JobPoller:
    """Submit a batch of render jobs and poll each on an independent lane.

    Args:
        backend: Render collaborator exposing submit(spec) and status(id).
        submit_attempts: Attempts per submission for transient HTTP errors.
        submit_backoff: Base seconds for exponential backoff between
            submission attempts.
    """

    def __init__(
        self,
        backend: RenderBackend,
        *,
        submit_attempts: int = 3,
        submit_backoff: float = 1.0,
    ):
        self.backend = backend
        self.submit_attempts = submit_attempts
        self.submit_backoff = submit_backoff

    async def _submit_one(self, spec: VideoJobSpec) -> str:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.submit_attempts),
            wait=wait_exponential(multiplier=self.submit_backoff, max=30),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self.backend.submit(spec)

    async def submit_batch(self, specs: Sequence[VideoJobSpec]) -> list[str]:
        """Submit every spec; return correlation ids in input order.

        Raises:
            BatchSubmissionError: Any single item failed to submit.
        """
        ids: list[str] = []
        for index, spec in enumerate(specs):
            try:
                correlation_id = await self._submit_one(spec)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Batch submission failed at item {index}: {type(e).__name__}: {e}"
                )
                raise BatchSubmissionError(index, e) from e
            logger.info(f"Submitted clip {spec.clip_index}: correlation id {correlation_id}")
            ids.append(correlation_id)
        return ids

    async def poll_batch(
        self,
        ids: Sequence[str],
        destinations: Sequence[Path],
        config: PollConfig,
    ) -> None:
        """Poll every id concurrently until each lane terminates.

        Never raises because of a lane's failure; lane outcomes are only
        observable through the config callbacks.

        Raises:
            ValueError: ids and destinations differ in length, or ids repeat.
        """
        if len(ids) != len(destinations):
            raise ValueError(
                f"{len(ids)} ids but {len(destinations)} destinations"
            )
        if len(set(ids)) != len(ids):
            raise ValueError("Correlation ids must be unique within a batch")
        if not ids:
            return

        width = len(ids)
        max_attempts = config.max_attempts_per_item * width
        delay = config.delay_per_attempt * width
        logger.info(
            f"Polling {width} job(s): {max_attempts} attempts per lane, "
            f"{delay:.2f}s between attempts"
        )

        records = [
            JobRecord(index=i, correlation_id=cid, destination=Path(dest))
            for i, (cid, dest) in enumerate(zip(ids, destinations))
        ]
        await asyncio.gather(*[
            self._run_lane(record, config, max_attempts, delay)
            for record in records
        ])

        succeeded = sum(1 for r in records if r.status == "succeeded")
        logger.info(f"Batch finished: {succeeded}/{width} lane(s) succeeded")

    async def _run_lane(
        self,
        record: JobRecord,
        config: PollConfig,
        max_attempts: int,
        delay: float,
    ) -> None:
        record.status = "polling"

        async def _fetch():
            record.attempts += 1
            return await self.backend.status(record.correlation_id)

        async def _progress(attempt: int, progress: Optional[float]) -> None:
            await _invoke(config.on_progress, record.index, attempt, progress)

        try:
            ready = await poll_until(
                _fetch,
                max_attempts=max_attempts,
                delay=delay,
                correlation_id=record.correlation_id,
                on_progress=_progress,
            )
            await asyncio.to_thread(_persist, record.destination, ready.payload)
        except asyncio.CancelledError:
            raise
        except JobTimeoutError as e:
            record.status = "timed_out"
            record.error = str(e)
            await self._report_error(record, config, e)
            return
        except Exception as e:
            record.status = "failed"
            record.error = f"{type(e).__name__}: {e}"
            await self._report_error(record, config, e)
            return

        record.status = "succeeded"
        logger.info(
            f"[Lane {record.index}] {record.correlation_id} saved to "
            f"{record.destination} after {record.attempts} attempt(s)"
        )
        try:
            await _invoke(config.on_success, record.index, record.destination)
        except Exception:
            logger.exception(f"[Lane {record.index}] on_success callback raised")

    async def _report_error(
        self,
        record: JobRecord,
        config: PollConfig,
        failure: BaseException,
    ) -> None:
        logger.error(f"[Lane {record.index}] {record.correlation_id}: {record.error}")
        try:
            await _invoke(config.on_error, record.index, failure)
        except Exception:
            logger.exception(f"[Lane {record.index}] on_error callback raised")


def _persist(destination: Path, payload: Any) -> None:
    """Write the payload next to ``destination`` then rename it into place.

    The destination only ever appears complete; a partial write never
    leaves a file there for a later run to mistake as rendered.
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise TypeError(
            f"Ready payload must be bytes, got {type(payload).__name__}"
        )
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(f"{destination.name}.part")
    try:
        partial.write_bytes(payload)
        os.replace(partial, destination)
    finally:
        if partial.exists():
            partial.unlink()
