"""Executor interface the orchestrator dispatches agent tasks to."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from agent_orchestrator.orchestrator.models import AgentTask, TaskOutput
from agent_orchestrator.orchestrator.results import ExecutionContext


@runtime_checkable
class AgentExecutor(Protocol):
    """Protocol implemented by anything that performs a task's actual work.

    Implementations return a :class:`TaskOutput` or raise one of
    ``RateLimitedError``, ``ExecutorTimeoutError``, ``ProviderError`` or
    ``InvalidResponseError``. Retries, backoff and timeouts are the
    implementation's own concern. ``run`` is called from worker threads.
    """

    def run(self, task: AgentTask, context: ExecutionContext) -> TaskOutput:
        """Execute one task and return its output."""
