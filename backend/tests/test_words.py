"""Word-timing normalization tests.

Covers rebasing, degenerate-interval widening, corruption detection and the
short-fragment merge pass.

Usage:
    cd <repo-root>
    python -m pytest backend/tests/test_words.py -v
"""

import pytest

from promptvid.pipeline.words import (
    EPSILON,
    TimingCorruptionError,
    clip_duration,
    normalize_words,
)
from promptvid.schemas.content import RawSegment, RawWord


def _segments(*groups):
    """Build segments from groups of (text, start, end) tuples."""
    return [
        RawSegment(words=[RawWord(word=t, start=s, end=e) for t, s, e in group])
        for group in groups
    ]


def _as_tuples(words):
    return [(w.text, w.start, w.end) for w in words]


# ---------------------------------------------------------------------------
# Rebasing and flattening
# ---------------------------------------------------------------------------

def test_rebases_to_first_word_and_flattens_segments():
    segments = _segments(
        [("Xin", 12.5, 12.8), ("chào", 12.8, 13.2)],
        [("Hello", 13.4, 13.9)],
    )
    words = normalize_words(segments)

    assert _as_tuples(words) == [
        ("Xin", 0.0, 0.3),
        ("chào", 0.3, 0.7),
        ("Hello", 0.9, 1.4),
    ]


def test_rounds_to_milliseconds():
    words = normalize_words(_segments([("one", 1.0, 1.2), ("two", 1.3334, 1.66666)]))

    assert words[0].start == 0.0
    assert words[0].end == 0.2
    assert words[1].start == 0.333
    assert words[1].end == 0.667


def test_empty_input():
    assert normalize_words([]) == []
    assert normalize_words(_segments([])) == []
    assert clip_duration([]) == 0.0


def test_accepts_text_alias_for_word():
    segment = RawSegment.model_validate({"words": [{"text": "hi", "start": 2, "end": 2.5}]})
    words = normalize_words([segment])

    assert _as_tuples(words) == [("hi", 0.0, 0.5)]


# ---------------------------------------------------------------------------
# Degenerate intervals and corruption
# ---------------------------------------------------------------------------

def test_degenerate_interval_is_widened_by_epsilon():
    words = normalize_words(_segments([("first", 0.0, 0.5), ("blip", 1.2, 1.2)]))

    assert words[1].start == 1.2
    assert words[1].end == 1.201
    assert EPSILON == 0.001


def test_inverted_word_raises_scoped_error():
    with pytest.raises(TimingCorruptionError) as exc_info:
        normalize_words(_segments([("ok", 0.0, 0.5), ("bad", 0.9, 0.7)]), clip_index=4)

    assert exc_info.value.clip_index == 4
    assert "Clip 4" in str(exc_info.value)


def test_out_of_order_start_raises():
    with pytest.raises(TimingCorruptionError):
        normalize_words(_segments([("a", 0.0, 0.5), ("b", 1.0, 1.5), ("c", 0.6, 0.9)]))


def test_timing_corruption_is_a_value_error():
    assert issubclass(TimingCorruptionError, ValueError)


# ---------------------------------------------------------------------------
# Short-fragment merge
# ---------------------------------------------------------------------------

def test_short_fragment_after_sentence_end_merges_with_next_word():
    segments = _segments([("Hello.", 0.0, 0.5), ("a", 0.5, 0.55), ("world", 0.55, 0.9)])
    words = normalize_words(segments)

    assert _as_tuples(words) == [("Hello.", 0.0, 0.5), ("a world", 0.5, 0.9)]
    assert len(words) == 2


def test_short_fragment_without_sentence_end_is_kept():
    segments = _segments([("Hello", 0.0, 0.5), ("a", 0.5, 0.55), ("world", 0.55, 0.9)])

    assert len(normalize_words(segments)) == 3


def test_long_word_after_sentence_end_is_kept():
    segments = _segments([("Hi!", 0.0, 0.5), ("there", 0.5, 0.8), ("friend", 0.8, 1.2)])

    assert len(normalize_words(segments)) == 3


def test_trailing_short_fragment_is_kept():
    words = normalize_words(_segments([("Done.", 0.0, 0.5), ("ok", 0.5, 0.55)]))

    assert _as_tuples(words) == [("Done.", 0.0, 0.5), ("ok", 0.5, 0.55)]


def test_non_latin_sentence_terminal_triggers_merge():
    segments = _segments([("你好。", 0.0, 0.4), ("我", 0.4, 0.45), ("们", 0.45, 0.7)])

    assert [w.text for w in normalize_words(segments)] == ["你好。", "我 们"]


# ---------------------------------------------------------------------------
# Output invariants
# ---------------------------------------------------------------------------

def test_normalized_output_invariants():
    segments = _segments(
        [("Chào.", 3.0, 3.4), ("x", 3.4, 3.45), ("bạn", 3.45, 3.8), ("zero", 3.9, 3.9)],
        [("Good", 4.0, 4.3), ("morning.", 4.3, 4.8), ("y", 4.8, 4.85), ("all", 4.85, 5.1)],
    )
    words = normalize_words(segments)

    assert words[0].start == 0
    assert all(w.start < w.end for w in words)
    starts = [w.start for w in words]
    assert starts == sorted(starts)
    assert clip_duration(words) == words[-1].end == 2.1
