"""TaskConsumer tests against an in-memory message bus.

Usage:
    cd <repo-root>
    python -m pytest backend/tests/test_consumer.py -v
"""

import json

import pytest

from conftest import FakeStorage
from promptvid.bus.consumer import TaskConsumer, decode_message
from promptvid.config import BusConfig
from promptvid.services.base import MessageBus

BUS = BusConfig(
    dispatch_topic="dispatch",
    group_id="group",
    progress_topic="progress",
    result_topic="result",
)


class InMemoryBus(MessageBus):
    def __init__(self, inbound=()):
        self.inbound = list(inbound)
        self.published: list[tuple[str, dict]] = []
        self.consumed_with = None

    async def publish(self, topic, message):
        self.published.append((topic, message))

    async def consume(self, topic, group_id, handler):
        self.consumed_with = (topic, group_id)
        for message in self.inbound:
            await handler(message)


def _dispatch(task_id="task-bus", prompt="Explain nano technology"):
    return {"taskId": task_id, "accountId": "acct-9", "payload": {"prompt": prompt, "voice": "x"}}


def test_decode_message_accepts_bytes_str_and_dict():
    raw = _dispatch()
    for form in (raw, json.dumps(raw), json.dumps(raw).encode()):
        message = decode_message(form)
        assert message.task_id == "task-bus"
        assert message.account_id == "acct-9"
        assert message.payload.prompt == "Explain nano technology"


@pytest.mark.asyncio
async def test_successful_run_publishes_progress_then_result(make_orchestrator):
    orchestrator, _ = make_orchestrator()
    bus = InMemoryBus()

    result = await TaskConsumer(orchestrator, bus, BUS).handle(_dispatch())

    assert result is not None
    topics = [topic for topic, _ in bus.published]
    assert topics[-1] == "result"
    assert topics[:-1] == ["progress"] * (len(topics) - 1)
    assert len(topics) - 1 >= 6

    progress = bus.published[0][1]
    assert progress["parentTaskId"] == "task-bus"
    assert progress["currentStep"]

    final = bus.published[-1][1]
    assert final["taskId"] == "task-bus"
    assert final["accountId"] == "acct-9"
    assert final["downloads"] == ["videos/acct-9/task-bus.mp4"]
    assert final["content"][0]["translated"] == "What is nanotechnology?"
    assert len(orchestrator.events) == 0


@pytest.mark.asyncio
async def test_failed_run_publishes_failure(make_orchestrator):
    orchestrator, _ = make_orchestrator(storage=FakeStorage(error=OSError("denied")))
    bus = InMemoryBus()

    result = await TaskConsumer(orchestrator, bus, BUS).handle(_dispatch())

    assert result is None
    topic, failure = bus.published[-1]
    assert topic == "result"
    assert failure["kind"] == "UploadFailed"
    assert failure["taskId"] == "task-bus"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [b"not json", {"taskId": "t"}, {"taskId": "t", "payload": {"prompt": ""}}])
async def test_malformed_message_is_dropped(make_orchestrator, raw):
    orchestrator, parts = make_orchestrator()
    bus = InMemoryBus()

    assert await TaskConsumer(orchestrator, bus, BUS).handle(raw) is None
    assert bus.published == []
    assert parts["content"].calls == 0


@pytest.mark.asyncio
async def test_start_consumes_dispatch_topic(make_orchestrator):
    orchestrator, _ = make_orchestrator()
    bus = InMemoryBus([_dispatch("task-a"), b"{}", _dispatch("task-b")])

    await TaskConsumer(orchestrator, bus, BUS).start()

    assert bus.consumed_with == ("dispatch", "group")
    results = [msg["taskId"] for topic, msg in bus.published if topic == "result"]
    assert results == ["task-a", "task-b"]
