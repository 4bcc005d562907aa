"""Shared in-memory collaborators for orchestrator and consumer tests."""

import base64
from pathlib import Path

import pytest

from promptvid.config import PipelineConfig, PresentationConfig, Settings, StorageConfig
from promptvid.orchestrator.pipeline import PipelineOrchestrator
from promptvid.schemas.content import GenerationResponse
from promptvid.schemas.jobs import ErrorStatus, ReadyStatus
from promptvid.services.base import (
    ContentGenerator,
    ImageSearcher,
    KeywordExtractor,
    ObjectStorage,
    RenderBackend,
)
from promptvid.services.file_manager import FileManager

CONTENT_PAIRS = [
    {"original": "Công nghệ nano là gì?", "translated": "What is nanotechnology?"},
    {"original": "Nó rất nhỏ.", "translated": "It is very small."},
]


def make_response(clip_count: int = 3, corrupt: bool = False) -> GenerationResponse:
    """Generation response with ``clip_count`` clips of 100 audio bytes each."""
    audio = bytes(100 * max(clip_count, 1))
    clips = []
    for i in range(clip_count):
        start = float(i * 2)
        words = [
            {"word": "Xin", "start": start, "end": start + 0.4},
            {"word": "chào.", "start": start + 0.4, "end": start + 1.0},
        ]
        if corrupt:
            words[1]["end"] = start
        clips.append({
            "start_time": start,
            "end_time": start + 1.0,
            "audio_offset": i * 100,
            "audio_length": 100,
            "segments": [{"words": words}],
        })
    return GenerationResponse.from_upstream({
        "choices": [{
            "message": {
                "content": CONTENT_PAIRS,
                "audio": {"data": base64.b64encode(audio).decode(), "trimmed": clips},
            },
        }],
    })


class FakeContent(ContentGenerator):
    def __init__(self, responses=None, healthy=True):
        # Each call pops the next response; the last one repeats
        self.responses = list(responses) if responses is not None else [make_response()]
        self.healthy = healthy
        self.calls = 0

    async def check_health(self):
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy

    async def generate_content(self, prompt):
        step = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step


class FakeKeywords(KeywordExtractor):
    def __init__(self, keyword='"nano technology"'):
        self.keyword = keyword
        self.prompts = []

    async def extract_keyword(self, prompt, poll_interval, timeout):
        self.prompts.append(prompt)
        return self.keyword


class FakeImages(ImageSearcher):
    def __init__(self, count=2):
        self.count = count
        self.queries = []

    async def search_images(self, query, count):
        self.queries.append(query)
        return [f"image-{i}".encode() for i in range(min(self.count, count))]


class FakeRenderer(RenderBackend):
    """Every job is ready on the first poll unless its clip index is in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.submitted = []

    async def submit(self, spec):
        self.submitted.append(spec.clip_index)
        return f"render-{spec.clip_index}"

    async def status(self, correlation_id):
        clip_index = int(correlation_id.rsplit("-", 1)[1])
        if clip_index in self.failing:
            return ErrorStatus(message="render crashed", fatal=True)
        return ReadyStatus(payload=f"clip-{clip_index}".encode())


class FakeStorage(ObjectStorage):
    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    async def upload_file(self, key, local_path):
        if self.error is not None:
            raise self.error
        self.uploads.append((key, Path(local_path).read_bytes()))
        return key


class FakeMerge:
    """Concatenate clip bytes instead of running ffmpeg."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def __call__(self, clip_paths, output_path):
        self.calls.append(list(clip_paths))
        if self.error is not None:
            raise self.error
        output_path.write_bytes(b"|".join(p.read_bytes() for p in clip_paths))
        return output_path


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        pipeline=PipelineConfig(
            content_generation_attempts=5,
            content_generation_delay=0,
            keyword_poll_interval=0,
            render_poll_max_attempts=3,
            render_poll_delay=0,
            submit_retry_attempts=1,
        ),
        presentation=PresentationConfig(music_path=tmp_path / "music.mp3"),
        storage=StorageConfig(work_dir=tmp_path / "work", key_prefix="videos"),
    )


@pytest.fixture
def make_orchestrator(test_settings):
    """Build an orchestrator; any collaborator can be overridden by keyword."""

    def _make(**overrides):
        parts = {
            "content": FakeContent(),
            "keywords": FakeKeywords(),
            "images": FakeImages(),
            "renderer": FakeRenderer(),
            "storage": FakeStorage(),
            "merge": FakeMerge(),
        }
        parts.update(overrides)
        orchestrator = PipelineOrchestrator(
            file_mgr=FileManager(test_settings.storage.work_dir),
            config=test_settings,
            **parts,
        )
        return orchestrator, parts

    return _make
