"""Clip extraction and render-spec assembly tests.

Usage:
    cd <repo-root>
    python -m pytest backend/tests/test_clips.py -v
"""

import base64

import pytest

from promptvid.config import PresentationConfig
from promptvid.pipeline.clips import AudioView, ClipAssembler, extract_clips
from promptvid.schemas.content import GenerationResponse
from promptvid.services.file_manager import FileManager

AUDIO = bytes(range(256)) * 4


def _boundary(start, offset, length, words):
    return {
        "startTime": start,
        "endTime": start + 1.0,
        "audio_offset": offset,
        "audio_length": length,
        "segments": [{"words": [{"word": w, "start": s, "end": e} for w, s, e in words]}],
    }


def _response(boundaries) -> GenerationResponse:
    return GenerationResponse.from_upstream({
        "choices": [{
            "message": {
                "content": [{"original": "Xin chào", "translated": "Hello"}],
                "audio": {
                    "data": base64.b64encode(AUDIO).decode(),
                    "trimmed": boundaries,
                },
            },
        }],
    })


@pytest.fixture
def file_mgr(tmp_path):
    return FileManager(tmp_path / "work")


@pytest.fixture
def presentation(tmp_path):
    return PresentationConfig(fps=30, video_size=(1280, 720), music_path=tmp_path / "music.mp3")


@pytest.fixture
def images(tmp_path):
    paths = [tmp_path / f"image_{i}.jpg" for i in range(3)]
    for path in paths:
        path.write_bytes(b"jpg")
    return paths


# ---------------------------------------------------------------------------
# extract_clips
# ---------------------------------------------------------------------------

def test_clips_borrow_one_shared_buffer():
    response = _response([
        _boundary(0.0, 0, 100, [("a", 0.0, 0.5)]),
        _boundary(1.0, 100, 200, [("b", 1.0, 1.5)]),
        _boundary(2.0, 300, 50, [("c", 2.0, 2.5)]),
    ])
    clips = extract_clips("task-1", response)

    assert [c.index for c in clips] == [1, 2, 3]
    assert all(c.audio.shares_buffer(clips[0].audio) for c in clips)
    view = clips[1].audio.view()
    assert isinstance(view, memoryview)
    assert view.readonly
    assert bytes(view) == AUDIO[100:300]
    assert len(clips[2].audio) == 50


def test_clip_without_offsets_borrows_whole_buffer():
    response = _response([{"start_time": 0, "end_time": 1, "segments": []}])
    clips = extract_clips("task-1", response)

    assert clips[0].audio.offset == 0
    assert len(clips[0].audio) == len(AUDIO)


def test_audio_view_outside_buffer_is_rejected():
    with pytest.raises(ValueError):
        AudioView(b"1234", offset=2, length=10)


def test_invalid_base64_is_rejected():
    response = GenerationResponse(audio_base64="not base64!!", clips=[])
    with pytest.raises(ValueError):
        extract_clips("task-1", response)


def test_line_wrapped_base64_is_accepted():
    response = GenerationResponse(
        audio_base64=base64.encodebytes(AUDIO).decode(),
        clips=_response([_boundary(0.0, 10, 90, [("a", 0.0, 0.5)])]).clips,
    )
    clips = extract_clips("task-1", response)

    assert bytes(clips[0].audio.view()) == AUDIO[10:100]


def test_boundary_outside_buffer_is_dropped():
    response = _response([
        _boundary(0.0, 0, 100, [("a", 0.0, 0.5)]),
        _boundary(1.0, len(AUDIO) + 10, 100, [("b", 1.0, 1.5)]),
        _boundary(2.0, 100, 100, [("c", 2.0, 2.5)]),
    ])
    clips = extract_clips("task-1", response)

    assert [c.index for c in clips] == [1, 3]
    assert bytes(clips[1].audio.view()) == AUDIO[100:200]


# ---------------------------------------------------------------------------
# ClipAssembler
# ---------------------------------------------------------------------------

def test_assemble_builds_spec_per_clip(file_mgr, presentation, images):
    response = _response([
        _boundary(10.0, 0, 64, [("Xin", 10.0, 10.3), ("chào.", 10.3, 10.9)]),
        _boundary(11.0, 64, 64, [("Hello", 11.0, 11.4)]),
    ])
    clips = extract_clips("task-1", response)

    plan = ClipAssembler(file_mgr, presentation).assemble("task-1", clips, images)

    assert [s.clip_index for s in plan.specs] == [1, 2]
    spec = plan.specs[0]
    assert spec.speech_path.read_bytes() == AUDIO[:64]
    assert spec.music_path == presentation.music_path
    assert spec.image_paths == images
    assert [(w.text, w.start, w.end) for w in spec.words] == [("Xin", 0.0, 0.3), ("chào.", 0.3, 0.9)]
    assert spec.duration == 0.9
    assert spec.fps == 30
    assert spec.video_size == (1280, 720)
    assert spec.output_path == file_mgr.clip_path("task-1", 1)
    assert plan.outputs == [file_mgr.clip_path("task-1", 1), file_mgr.clip_path("task-1", 2)]


def test_already_rendered_clip_is_skipped(file_mgr, presentation, images):
    response = _response([
        _boundary(0.0, 0, 10, [("a", 0.0, 0.5)]),
        _boundary(1.0, 10, 10, [("b", 1.0, 1.5)]),
        _boundary(2.0, 20, 10, [("c", 2.0, 2.5)]),
    ])
    assembler = ClipAssembler(file_mgr, presentation)
    file_mgr.clip_path("task-1", 2).write_bytes(b"rendered earlier")

    plan = assembler.assemble("task-1", extract_clips("task-1", response), images)

    assert [s.clip_index for s in plan.specs] == [1, 3]
    assert plan.skipped == [2]
    assert len(plan.outputs) == 3

    # A second run after everything rendered submits nothing
    for spec in plan.specs:
        spec.output_path.write_bytes(b"done")
    rerun = assembler.assemble("task-1", extract_clips("task-1", response), images)
    assert rerun.specs == []
    assert rerun.skipped == [1, 2, 3]


def test_corrupt_clip_is_dropped_without_affecting_siblings(file_mgr, presentation, images):
    response = _response([
        _boundary(0.0, 0, 10, [("ok", 0.0, 0.5)]),
        _boundary(1.0, 10, 10, [("bad", 1.5, 1.0)]),
        _boundary(2.0, 20, 10, [("fine", 2.0, 2.5)]),
    ])

    plan = ClipAssembler(file_mgr, presentation).assemble(
        "task-1", extract_clips("task-1", response), images,
    )

    assert [s.clip_index for s in plan.specs] == [1, 3]
    assert plan.corrupt == [2]
    assert file_mgr.clip_path("task-1", 2) not in plan.outputs


def test_clip_without_words_uses_boundary_length(file_mgr, presentation, images):
    response = _response([_boundary(4.0, 0, 10, [])])

    plan = ClipAssembler(file_mgr, presentation).assemble(
        "task-1", extract_clips("task-1", response), images,
    )

    assert plan.specs[0].words == []
    assert plan.specs[0].duration == 1.0
