"""Message-bus consumer: one dispatch message -> one orchestrator run.

The bus itself is an opaque MessageBus primitive; this module only decodes
the inbound dispatch message, runs the pipeline, and publishes progress and
result messages in the order the orchestrator emits them.

Usage:
    consumer = TaskConsumer(orchestrator, bus)
    await consumer.start()      # blocks, consuming the dispatch topic
"""

import asyncio
import json
import logging
from typing import Any, Optional

from pydantic import ValidationError

from promptvid.config import BusConfig, settings
from promptvid.orchestrator.events import PipelineEvent
from promptvid.orchestrator.pipeline import PipelineOrchestrator
from promptvid.schemas.task import (
    FailureMessage,
    InboundTaskMessage,
    PipelineResult,
    ProgressMessage,
    ResultMessage,
    Task,
)
from promptvid.services.base import MessageBus

logger = logging.getLogger(__name__)

_DONE = object()


def decode_message(raw: Any) -> InboundTaskMessage:
    """Decode bytes/str/dict into an InboundTaskMessage.

    Raises:
        ValueError: Not JSON, or not a valid dispatch message.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        raw = json.loads(raw)
    return InboundTaskMessage.model_validate(raw)


class TaskConsumer:
    """Bridge between the message bus and a PipelineOrchestrator."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        bus: MessageBus,
        config: Optional[BusConfig] = None,
    ):
        self.orchestrator = orchestrator
        self.bus = bus
        self.config = config or settings.bus

    async def start(self) -> None:
        """Consume the dispatch topic until the bus stops delivering."""
        logger.info(
            f"Listening for messages on topic {self.config.dispatch_topic} "
            f"(group {self.config.group_id})"
        )
        await self.bus.consume(self.config.dispatch_topic, self.config.group_id, self.handle)

    async def handle(self, raw: Any) -> Optional[PipelineResult]:
        """Run the pipeline for one dispatch message.

        Malformed messages are logged and dropped (returns None).
        """
        try:
            message = decode_message(raw)
        except (ValueError, ValidationError) as e:
            logger.error(f"Dropping malformed dispatch message: {e}")
            return None

        task = Task(
            id=message.task_id,
            prompt=message.payload.prompt,
            account_id=message.account_id,
        )
        outbox: asyncio.Queue = asyncio.Queue()

        def _observer(event: PipelineEvent) -> None:
            if event.task_id != task.id:
                return
            if event.type == "step":
                outbox.put_nowait((
                    self.config.progress_topic,
                    ProgressMessage(parent_task_id=task.id, current_step=event.label),
                ))
            elif event.type == "completed":
                outbox.put_nowait((
                    self.config.result_topic,
                    ResultMessage(
                        downloads=event.downloads,
                        content=event.content,
                        task_id=task.id,
                        account_id=task.account_id,
                    ),
                ))
            elif event.type == "failure":
                outbox.put_nowait((
                    self.config.result_topic,
                    FailureMessage(
                        task_id=task.id,
                        account_id=task.account_id,
                        kind=event.kind,
                        message=event.message,
                    ),
                ))

        publisher = asyncio.create_task(self._drain(outbox))
        unsubscribe = self.orchestrator.subscribe(_observer)
        try:
            result = await self.orchestrator.run(task)
        finally:
            unsubscribe()
            outbox.put_nowait(_DONE)
            await publisher
        return result

    async def _drain(self, outbox: asyncio.Queue) -> None:
        """Publish queued messages one by one, preserving emission order."""
        while True:
            item = await outbox.get()
            if item is _DONE:
                return
            topic, message = item
            try:
                await self.bus.publish(topic, message.model_dump(mode="json", by_alias=True))
            except Exception:
                logger.exception(f"Failed to publish {type(message).__name__} to {topic}")
