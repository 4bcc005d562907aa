"""Word-timing normalization for per-clip captions.

Turns one clip's nested per-segment word timestamps (absolute stream time)
into the caption sequence the render service expects:

1. flatten segments in source order
2. rebase to the first word's start, rounded to milliseconds
3. widen zero-width words by EPSILON
4. reject anything still inverted or out of order (TimingCorruptionError)
5. merge a short fragment that follows a sentence end into the next word

Usage:
    from promptvid.pipeline.words import normalize_words, clip_duration

    words = normalize_words(boundary.segments, clip_index=3)
    duration = clip_duration(words)
"""

import logging
from typing import Iterable, Optional

from promptvid.schemas.content import RawSegment, RawWord
from promptvid.schemas.jobs import Word

logger = logging.getLogger(__name__)

EPSILON = 0.001
SHORT_FRAGMENT_SECONDS = 0.11
SENTENCE_TERMINALS = (".", "!", "?", "…", "。", "！", "？")


class TimingCorruptionError(ValueError):
    """A clip's word timings cannot be repaired.

    Scoped to a single clip: callers drop that clip and keep going.
    """

    def __init__(self, message: str, clip_index: Optional[int] = None):
        super().__init__(message)
        self.clip_index = clip_index


def _ms(value: float) -> float:
    return round(value, 3)


def _flatten(segments: Iterable[RawSegment]) -> list[RawWord]:
    return [word for segment in segments for word in segment.words]


def _rebase(raw_words: list[RawWord]) -> list[Word]:
    origin = raw_words[0].start
    return [
        Word(
            text=raw.word,
            start=_ms(raw.start - origin),
            end=_ms(raw.end - origin),
        )
        for raw in raw_words
    ]


def _widen_degenerate(words: list[Word]) -> None:
    for word in words:
        if word.start == word.end:
            word.end = _ms(word.end + EPSILON)


def _validate(words: list[Word], clip_index: Optional[int]) -> None:
    previous_start = 0.0
    for position, word in enumerate(words):
        if word.start >= word.end:
            raise TimingCorruptionError(
                f"Clip {clip_index}: word {position} {word.text!r} has "
                f"start {word.start} >= end {word.end}",
                clip_index,
            )
        if word.start < previous_start:
            raise TimingCorruptionError(
                f"Clip {clip_index}: word {position} {word.text!r} starts at "
                f"{word.start} before its predecessor ({previous_start})",
                clip_index,
            )
        previous_start = word.start


def _ends_sentence(text: str) -> bool:
    return text.rstrip().endswith(SENTENCE_TERMINALS)


def _merge_short_fragments(words: list[Word]) -> list[Word]:
    merged: list[Word] = []
    i = 0
    while i < len(words):
        word = words[i]
        has_next = i + 1 < len(words)
        if (
            has_next
            and merged
            and word.duration < SHORT_FRAGMENT_SECONDS
            and _ends_sentence(merged[-1].text)
        ):
            following = words[i + 1]
            merged.append(Word(
                text=f"{word.text} {following.text}",
                start=word.start,
                end=following.end,
            ))
            i += 2
            continue
        merged.append(word)
        i += 1
    return merged


def normalize_words(
    segments: Iterable[RawSegment],
    clip_index: Optional[int] = None,
) -> list[Word]:
    """Normalize one clip's raw word timings into a zero-based caption list.

    Args:
        segments: The clip's segments, each holding absolute-time words.
        clip_index: Used only to scope error messages.

    Returns:
        Ordered words; first start is 0 and every word has start < end.

    Raises:
        TimingCorruptionError: If timings are inverted or out of order
            after the degenerate-interval fix-up.
    """
    raw_words = _flatten(segments)
    if not raw_words:
        return []

    words = _rebase(raw_words)
    _widen_degenerate(words)
    _validate(words, clip_index)

    merged = _merge_short_fragments(words)
    if len(merged) != len(words):
        logger.debug(
            f"Clip {clip_index}: merged "
            f"{len(words) - len(merged)} short fragment(s)"
        )
    return merged


def clip_duration(words: list[Word]) -> float:
    """Clip duration is the last caption word's end (0.0 for no words)."""
    return words[-1].end if words else 0.0
