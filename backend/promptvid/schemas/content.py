"""Pydantic schemas for the content-generation (bilingual podcast) service.

The upstream service answers with a chat-completion shaped body:
``{"choices": [{"message": {"content": [...], "audio": {"data": ..., "trimmed": [...]}}}]}``.
GenerationResponse.from_upstream() flattens that shape into the fields the
pipeline actually consumes, so nothing downstream touches raw dicts.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class ContentPair(BaseModel):
    """One line of bilingual content: the original text and its translation."""

    original: str
    translated: str


class RawWord(BaseModel):
    """Word timestamp as produced upstream (absolute stream time, seconds)."""

    word: str = Field(validation_alias=AliasChoices("word", "text"))
    start: float
    end: float


class RawSegment(BaseModel):
    words: list[RawWord] = Field(default_factory=list)


class ClipBoundary(BaseModel):
    """Cut boundary for one clip of the generated stream.

    audio_offset/audio_length locate the clip's bytes inside the shared
    decoded audio buffer. When absent the clip borrows the whole buffer.
    """

    start_time: float = Field(validation_alias=AliasChoices("start_time", "startTime"))
    end_time: float = Field(validation_alias=AliasChoices("end_time", "endTime"))
    audio_offset: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("audio_offset", "audioOffset"),
    )
    audio_length: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("audio_length", "audioLength"),
    )
    segments: list[RawSegment] = Field(default_factory=list)


class GenerationResponse(BaseModel):
    """Validated result of one content-generation run."""

    content: list[ContentPair] = Field(default_factory=list)
    audio_base64: str = ""
    clips: list[ClipBoundary] = Field(default_factory=list)

    @classmethod
    def from_upstream(cls, body: dict[str, Any]) -> "GenerationResponse":
        """Build from the upstream ``choices[0].message`` shape.

        Raises:
            ValueError: If the body carries no choices.
        """
        choices = body.get("choices") or []
        if not choices:
            raise ValueError("Generation response has no choices")
        message = choices[0].get("message") or {}
        audio = message.get("audio") or {}
        return cls.model_validate({
            "content": message.get("content") or [],
            "audio_base64": audio.get("data") or "",
            "clips": audio.get("trimmed") or [],
        })
