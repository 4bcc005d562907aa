"""Clip extraction and render-spec assembly.

extract_clips() decodes the generation response's audio once and hands every
clip a borrowed AudioView into that buffer. ClipAssembler then turns clips
into VideoJobSpecs:

- clips whose render destination already exists are skipped (resume)
- clips with corrupt word timings are dropped without affecting siblings
- everything else gets speech audio written and a spec built

Usage:
    clips = extract_clips(task.id, response)
    plan = ClipAssembler(file_mgr).assemble(task.id, clips, image_paths)
    ids = await poller.submit_batch(plan.specs)
"""

import base64
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from promptvid.config import PresentationConfig, settings
from promptvid.pipeline.words import TimingCorruptionError, clip_duration, normalize_words
from promptvid.schemas.content import GenerationResponse, RawSegment
from promptvid.schemas.jobs import TextConfig, VideoJobSpec
from promptvid.services.file_manager import FileManager

logger = logging.getLogger(__name__)


class AudioView:
    """Read-only window (offset, length) into a task's decoded audio buffer.

    The buffer is immutable bytes owned by the task; view() returns a
    memoryview slice, so no clip ever copies or mutates it.
    """

    __slots__ = ("_buffer", "offset", "length")

    def __init__(self, buffer: bytes, offset: int = 0, length: Optional[int] = None):
        if length is None:
            length = len(buffer) - offset
        if offset < 0 or length < 0 or offset + length > len(buffer):
            raise ValueError(
                f"Audio view [{offset}, {offset + length}) outside buffer of "
                f"{len(buffer)} bytes"
            )
        self._buffer = buffer
        self.offset = offset
        self.length = length

    def view(self) -> memoryview:
        return memoryview(self._buffer)[self.offset:self.offset + self.length]

    def shares_buffer(self, other: "AudioView") -> bool:
        return self._buffer is other._buffer

    def __len__(self) -> int:
        return self.length

    def __repr__(self) -> str:
        return f"AudioView(offset={self.offset}, length={self.length})"


class Clip(BaseModel):
    """One bounded audio+caption segment of generated content."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    task_id: str
    index: int
    start_time: float
    end_time: float
    audio: AudioView
    segments: list[RawSegment] = Field(default_factory=list)


class AssemblyPlan(BaseModel):
    """Outcome of assembling a task's clips.

    specs: only the clips that still need rendering.
    outputs: every clip video expected for the final merge, in clip order
        (already-rendered and to-be-rendered alike).
    skipped: indices reused from a previous run.
    corrupt: indices dropped for corrupt word timings.
    """

    specs: list[VideoJobSpec] = Field(default_factory=list)
    outputs: list[Path] = Field(default_factory=list)
    skipped: list[int] = Field(default_factory=list)
    corrupt: list[int] = Field(default_factory=list)


def extract_clips(task_id: str, response: GenerationResponse) -> list[Clip]:
    """Split a generation response into clips sharing one decoded buffer.

    Line-wrapped base64 (MIME style) is accepted. A boundary whose audio
    window falls outside the buffer is dropped; the remaining clips keep
    their positional index.

    Raises:
        ValueError: If the audio is not valid base64.
    """
    encoded = "".join((response.audio_base64 or "").split())
    audio = base64.b64decode(encoded, validate=True)
    clips = []
    for position, boundary in enumerate(response.clips, start=1):
        try:
            view = AudioView(audio, boundary.audio_offset or 0, boundary.audio_length)
        except ValueError as e:
            logger.error(f"Task {task_id}: dropping clip {position}: {e}")
            continue
        clips.append(Clip(
            task_id=task_id,
            index=position,
            start_time=boundary.start_time,
            end_time=boundary.end_time,
            audio=view,
            segments=boundary.segments,
        ))
    logger.debug(f"Task {task_id}: extracted {len(clips)} clip(s) from {len(audio)} audio bytes")
    return clips


class ClipAssembler:
    """Build render specs for the clips of one task."""

    def __init__(
        self,
        file_mgr: FileManager,
        presentation: Optional[PresentationConfig] = None,
    ):
        self.file_mgr = file_mgr
        self.presentation = presentation or settings.presentation

    def assemble(
        self,
        task_id: str,
        clips: list[Clip],
        image_paths: list[Path],
    ) -> AssemblyPlan:
        plan = AssemblyPlan()
        for clip in clips:
            output_path = self.file_mgr.clip_path(task_id, clip.index)

            if output_path.exists():
                logger.warning(f"Clip {clip.index} already rendered at {output_path}, skipping")
                plan.skipped.append(clip.index)
                plan.outputs.append(output_path)
                continue

            try:
                spec = self._build_spec(task_id, clip, image_paths, output_path)
            except TimingCorruptionError as e:
                logger.error(f"Task {task_id}: dropping clip {clip.index}: {e}")
                plan.corrupt.append(clip.index)
                continue

            plan.specs.append(spec)
            plan.outputs.append(output_path)

        logger.info(
            f"Task {task_id}: {len(plan.specs)} clip(s) to render, "
            f"{len(plan.skipped)} reused, {len(plan.corrupt)} dropped"
        )
        return plan

    def _build_spec(
        self,
        task_id: str,
        clip: Clip,
        image_paths: list[Path],
        output_path: Path,
    ) -> VideoJobSpec:
        words = normalize_words(clip.segments, clip_index=clip.index)
        speech_path = self.file_mgr.save_speech(task_id, clip.index, clip.audio.view())

        duration = clip_duration(words) or max(clip.end_time - clip.start_time, 0.0)
        return VideoJobSpec(
            clip_index=clip.index,
            speech_path=speech_path,
            music_path=self.presentation.music_path,
            image_paths=image_paths,
            words=words,
            fps=self.presentation.fps,
            video_size=self.presentation.video_size,
            duration=duration,
            text_config=TextConfig(
                font_color=self.presentation.font_color,
                background_color=self.presentation.background_color,
            ),
            output_path=output_path,
        )
