"""Task model, pipeline events and message-bus payloads."""

import uuid
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from promptvid.schemas.content import ContentPair


class PipelineResult(BaseModel):
    """Successful outcome of one task: uploaded keys plus the generated text."""

    task_id: str
    account_id: str
    downloads: list[str]
    content: list[ContentPair]


class FailureRecord(BaseModel):
    kind: str
    message: str
    technical_detail: str = ""
    debug_payload: Optional[Any] = None


class Task(BaseModel):
    """One prompt-to-video request tracked through the pipeline.

    stage_timestamps maps each entered stage to the monotonic clock reading
    at entry, so elapsed time between steps can be reported.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    prompt: str
    account_id: str = ""
    stage: str = "pending"
    stage_timestamps: dict[str, float] = Field(default_factory=dict)
    result: Optional[PipelineResult] = None
    failure: Optional[FailureRecord] = None


# ---------------------------------------------------------------------------
# Observer events
# ---------------------------------------------------------------------------

class StepEvent(BaseModel):
    type: Literal["step"] = "step"
    task_id: str
    step: str
    label: str
    elapsed_since_last_step: float


class FailureEvent(BaseModel):
    type: Literal["failure"] = "failure"
    task_id: str
    kind: str
    message: str
    technical_detail: str = ""
    debug_payload: Optional[Any] = None


class CompletedEvent(BaseModel):
    type: Literal["completed"] = "completed"
    task_id: str
    downloads: list[str]
    content: list[ContentPair]


# ---------------------------------------------------------------------------
# Message bus payloads
# ---------------------------------------------------------------------------

class TaskPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt: str = Field(min_length=1)


class InboundTaskMessage(BaseModel):
    """Dispatch message: ``{taskId, accountId, payload: {prompt, ...}}``."""

    task_id: str = Field(validation_alias=AliasChoices("taskId", "task_id"))
    account_id: str = Field(
        default="", validation_alias=AliasChoices("accountId", "account_id"),
    )
    payload: TaskPayload


class ProgressMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parent_task_id: str = Field(serialization_alias="parentTaskId")
    current_step: str = Field(serialization_alias="currentStep")


class ResultMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    downloads: list[str]
    content: list[ContentPair]
    task_id: str = Field(serialization_alias="taskId")
    account_id: str = Field(serialization_alias="accountId")


class FailureMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(serialization_alias="taskId")
    account_id: str = Field(serialization_alias="accountId")
    kind: str
    message: str
