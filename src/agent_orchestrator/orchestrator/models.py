"""Domain models for agent tasks, results and inter-agent messages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

BROADCAST = "*"
DEFAULT_PRIORITY = 5


class TaskStatus(str, Enum):
    """Per-run task lifecycle states."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED})

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.READY, TaskStatus.SKIPPED}),
    TaskStatus.READY: frozenset({TaskStatus.RUNNING, TaskStatus.SKIPPED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}


class ContextStrategy(str, Enum):
    """How much prior output a task's execution context includes."""

    ISOLATED = "isolated"
    SHARED = "shared"


class FailurePolicy(str, Enum):
    """What happens to dependents of a failed task."""

    SKIP_DEPENDENTS = "skip_dependents"
    RUN_ON_PARTIAL = "run_on_partial"


class MessageKind(str, Enum):
    """Message intent, carried for consumers; delivery ignores it."""

    DATA = "data"
    REQUEST = "request"
    RESPONSE = "response"
    BROADCAST = "broadcast"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class AgentTask:
    """One unit of orchestrated work, bound to an agent role.

    Definitions are immutable. Status is tracked per run by the task graph,
    so the same task list can be orchestrated any number of times.
    """

    id: str
    agent_id: str
    description: str
    prompt: str
    dependencies: tuple[str, ...] = ()
    priority: int = DEFAULT_PRIORITY
    context: Mapping[str, Any] = field(default_factory=dict)
    max_tokens: int | None = None
    model: str | None = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("Task id must be a non-empty string.")
        if not self.agent_id or not self.agent_id.strip():
            raise ValueError(f"Task {self.id!r} requires an agent_id.")
        if not isinstance(self.dependencies, tuple):
            object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass(slots=True)
class TaskOutput:
    """Successful executor outcome for one task."""

    output: str
    tokens_used: int = 0
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskResult:
    """Terminal record of one task in a run.

    ``error`` is set iff ``success`` is false. Skipped tasks carry the id of
    the failed ancestor (or ``None`` for cancellation) in ``blocked_by``.
    """

    task_id: str
    agent_id: str
    success: bool
    output: str
    tokens_used: int
    duration_ms: int
    status: TaskStatus
    error: str | None = None
    error_kind: str | None = None
    blocked_by: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON reports."""

        return {
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "success": self.success,
            "status": self.status.value,
            "output": self.output,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "error_kind": self.error_kind,
            "blocked_by": self.blocked_by,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class Message:
    """Message exchanged between agent roles during a run."""

    sender: str
    recipient: str
    content: Any
    sequence: int
    kind: MessageKind = MessageKind.DATA
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient == BROADCAST
