"""Synchronous event multicast for orchestrator observers."""

from typing import Callable, List

import structlog

from rlm_orchestration.types import RLMEvent

logger = structlog.get_logger()

EventHandler = Callable[[RLMEvent], None]


class EventBus:
    """Delivers each event to every registered handler, in registration order.

    A handler that raises is logged and skipped; it never interrupts delivery
    to the remaining handlers or the caller.
    """

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []

    def on(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def off(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, event: RLMEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    event_type=event.type.value,
                    execution_id=event.execution.id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )

    def __len__(self) -> int:
        return len(self._handlers)
