"""Schemas for asynchronous jobs: render specs, status variants, job records.

Upstream status responses are loosely shaped (a video body, a JSON progress
document, an HTTP error). Clients translate them into exactly one of the
tagged JobStatus variants before they reach the poller.
"""

from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

JOB_STATES = {
    "pending": "Submitted, not yet polled",
    "polling": "Lane is actively polling",
    "succeeded": "Payload persisted to destination",
    "failed": "Lane terminated by a non-timeout error",
    "timed_out": "Attempt budget exhausted",
}


class Word(BaseModel):
    """Caption word, clip-relative seconds after normalization."""

    text: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


class TextConfig(BaseModel):
    font_color: str = "white"
    background_color: str = "black"


class VideoJobSpec(BaseModel):
    """Everything the render service needs to produce one clip video."""

    clip_index: int
    speech_path: Path
    music_path: Path
    image_paths: list[Path]
    words: list[Word]
    fps: int = 24
    video_size: tuple[int, int] = (1920, 1080)
    duration: float
    text_config: TextConfig = Field(default_factory=TextConfig)
    output_path: Path


class ReadyStatus(BaseModel):
    kind: Literal["ready"] = "ready"
    payload: Any = None


class PendingStatus(BaseModel):
    kind: Literal["pending"] = "pending"
    progress: Optional[float] = Field(default=None, ge=0, le=100)


class ErrorStatus(BaseModel):
    """Upstream reported an error.

    fatal=False marks a transient error that only consumes an attempt;
    fatal=True ends polling immediately.
    """

    kind: Literal["error"] = "error"
    message: str = ""
    fatal: bool = False


JobStatus = Annotated[
    Union[ReadyStatus, PendingStatus, ErrorStatus],
    Field(discriminator="kind"),
]


class JobRecord(BaseModel):
    """Per-lane bookkeeping owned by exactly one polling lane."""

    index: int
    correlation_id: str
    destination: Path
    attempts: int = 0
    status: Literal["pending", "polling", "succeeded", "failed", "timed_out"] = "pending"
    error: Optional[str] = None
