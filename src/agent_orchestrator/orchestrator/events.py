"""Synchronous progress events emitted by the orchestrator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agent_orchestrator.orchestrator.models import TaskResult, utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Lifecycle events, named as they appear on the wire to UI consumers."""

    WAVE_START = "wave:start"
    TASK_START = "task:start"
    TASK_COMPLETE = "task:complete"
    TASK_ERROR = "task:error"
    TASK_SKIPPED = "task:skipped"
    WORKFLOW_COMPLETE = "workflow:complete"
    WORKFLOW_CANCELLED = "workflow:cancelled"


@dataclass(slots=True)
class ProgressEvent:
    """One progress notification."""

    type: EventType
    task_id: str | None = None
    agent_id: str | None = None
    task_ids: tuple[str, ...] = ()
    result: TaskResult | None = None
    data: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utc_now)

    def describe(self) -> str:
        """Human-readable single line for CLI progress output."""

        if self.type is EventType.WAVE_START:
            return f"[{self.type.value}] admitted: {', '.join(self.task_ids)}"
        if self.type is EventType.TASK_START:
            return f"[{self.type.value}] {self.task_id} ({self.agent_id})"
        if self.type is EventType.TASK_COMPLETE and self.result is not None:
            return (
                f"[{self.type.value}] {self.task_id} "
                f"tokens={self.result.tokens_used} duration={self.result.duration_ms}ms"
            )
        if self.type in (EventType.TASK_ERROR, EventType.TASK_SKIPPED) and self.result:
            return f"[{self.type.value}] {self.task_id}: {self.result.error}"
        summary = " ".join(f"{key}={value}" for key, value in self.data.items())
        return f"[{self.type.value}] {summary}".rstrip()


EventHandler = Callable[[ProgressEvent], None]


class EventEmitter:
    """Dispatches events to subscribers in registration order.

    A subscriber that raises is logged and skipped; the exception never
    reaches the caller of :meth:`emit`.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[EventHandler]] = {}
        self._any_handlers: list[EventHandler] = []

    def on(self, event_type: EventType | str, handler: EventHandler) -> None:
        self._handlers.setdefault(EventType(event_type), []).append(handler)

    def on_any(self, handler: EventHandler) -> None:
        self._any_handlers.append(handler)

    def off(self, event_type: EventType | str | None, handler: EventHandler) -> None:
        """Remove a handler registered with :meth:`on` (or :meth:`on_any` when type is None)."""

        handlers = (
            self._any_handlers
            if event_type is None
            else self._handlers.get(EventType(event_type), [])
        )
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: ProgressEvent) -> None:
        for handler in [*self._handlers.get(event.type, []), *self._any_handlers]:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Progress subscriber %r failed on %s",
                    handler,
                    event.type.value,
                )

    def clear(self) -> None:
        self._handlers.clear()
        self._any_handlers.clear()
