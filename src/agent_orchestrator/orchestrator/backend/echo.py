"""Deterministic in-process executor for demos and tests."""

from __future__ import annotations

import time
from collections.abc import Mapping

from agent_orchestrator.orchestrator.errors import EXECUTOR_ERRORS_BY_KIND
from agent_orchestrator.orchestrator.models import AgentTask, TaskOutput
from agent_orchestrator.orchestrator.results import ExecutionContext


def estimate_tokens(text: str) -> int:
    """Rough token estimate (four characters per token)."""

    return max(1, len(text) // 4) if text else 0


class EchoExecutor:
    """Echo each task's prompt back together with the ids it was given context from.

    ``failures`` maps task ids to an executor error kind (``rate_limited``,
    ``timeout``, ``provider_error``, ``invalid_response``); those tasks raise
    the matching error instead of producing output. ``delay_seconds``
    simulates provider latency.
    """

    def __init__(
        self,
        *,
        failures: Mapping[str, str] | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        unknown = {kind for kind in (failures or {}).values() if kind not in EXECUTOR_ERRORS_BY_KIND}
        if unknown:
            raise ValueError(f"Unknown executor error kind(s): {sorted(unknown)}")
        self._failures = dict(failures or {})
        self._delay_seconds = delay_seconds

    def run(self, task: AgentTask, context: ExecutionContext) -> TaskOutput:
        if self._delay_seconds > 0:
            time.sleep(self._delay_seconds)

        kind = self._failures.get(task.id)
        if kind is not None:
            raise EXECUTOR_ERRORS_BY_KIND[kind](
                f"Simulated {kind} for task {task.id}",
                details={"agent_id": task.agent_id},
            )

        lines = [f"# {task.description}", "", task.prompt.strip()]
        if context.prior_results:
            lines.append("")
            lines.append("Built on: " + ", ".join(context.prior_results))
        output = "\n".join(lines)
        return TaskOutput(
            output=output,
            tokens_used=estimate_tokens(task.prompt) + estimate_tokens(output),
            metadata={"executor": "echo", "context_strategy": context.strategy.value},
        )
