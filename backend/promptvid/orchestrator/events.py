"""Observer list for pipeline events.

Each orchestrator owns its own EventNotifier; there is no process-wide
emitter. Delivery is synchronous and in emission order. An observer that
raises is logged and skipped so it cannot starve the others.
"""

import logging
from typing import Callable, Union

from promptvid.schemas.task import CompletedEvent, FailureEvent, StepEvent

logger = logging.getLogger(__name__)

PipelineEvent = Union[StepEvent, FailureEvent, CompletedEvent]
Observer = Callable[[PipelineEvent], None]


class EventNotifier:
    """Ordered list of independent subscribers."""

    def __init__(self) -> None:
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def emit(self, event: PipelineEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception(
                    f"Observer {observer!r} failed on {event.type} event for task {event.task_id}"
                )

    def __len__(self) -> int:
        return len(self._observers)
