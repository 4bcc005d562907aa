"""Stage transition and event notifier tests."""

from typing import get_args

import pytest

from promptvid.orchestrator.events import EventNotifier
from promptvid.orchestrator.state import (
    STAGE_ORDER,
    InvalidTransition,
    can_transition,
    check_transition,
    stage_label,
)
from promptvid.schemas.jobs import JOB_STATES, JobRecord
from promptvid.schemas.task import StepEvent


def test_stages_only_move_forward_one_step():
    for current, following in zip(STAGE_ORDER, STAGE_ORDER[1:]):
        assert can_transition(current, following)
    assert not can_transition("rendering", "clip_assembly")
    assert not can_transition("health_check", "content_generation")


def test_any_active_stage_can_fail():
    for stage in STAGE_ORDER[:-1]:
        assert can_transition(stage, "failed")


def test_terminal_stages_never_move():
    assert not can_transition("failed", "health_check")
    assert not can_transition("completed", "failed")
    with pytest.raises(InvalidTransition):
        check_transition("failed", "pending")


def test_stage_label_falls_back_to_name():
    assert stage_label("rendering") == "Rendering clip videos"
    assert stage_label("mystery") == "mystery"


def test_notifier_delivers_in_order_and_isolates_failures():
    notifier = EventNotifier()
    received = []

    def broken(event):
        raise ValueError("nope")

    notifier.subscribe(lambda e: received.append(("first", e.step)))
    notifier.subscribe(broken)
    notifier.subscribe(lambda e: received.append(("second", e.step)))

    for step in ("health_check", "keyword_extraction"):
        notifier.emit(StepEvent(task_id="t", step=step, label=step, elapsed_since_last_step=0))

    assert received == [
        ("first", "health_check"),
        ("second", "health_check"),
        ("first", "keyword_extraction"),
        ("second", "keyword_extraction"),
    ]
    assert len(notifier) == 3


def test_job_record_statuses_are_documented():
    statuses = set(get_args(JobRecord.model_fields["status"].annotation))

    assert statuses == set(JOB_STATES)
