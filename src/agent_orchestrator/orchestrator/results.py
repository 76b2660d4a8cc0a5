"""Result storage and per-task execution context assembly."""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agent_orchestrator.orchestrator.errors import SchedulingError
from agent_orchestrator.orchestrator.models import AgentTask, ContextStrategy, TaskResult

if TYPE_CHECKING:
    from agent_orchestrator.orchestrator.graph import TaskGraph
    from agent_orchestrator.orchestrator.messaging import MessageBus

DEFAULT_CONTEXT_MAX_CHARS = 2_000
_PRUNED_MARKER = "\n\n... [content pruned] ...\n\n"


def prune_text(text: str, max_chars: int) -> str:
    """Clamp ``text`` to roughly ``max_chars`` keeping its head and tail."""

    if max_chars <= 0 or len(text) <= max_chars:
        return text
    half = max_chars // 2 - 50
    if half <= 0:
        return text[:max_chars]
    return f"{text[:half]}{_PRUNED_MARKER}{text[-half:]}"


@dataclass(slots=True)
class ExecutionContext:
    """What a task gets to see when it runs.

    ``prior_results`` holds successful upstream results only: direct
    dependencies for the isolated strategy, every completed ancestor for the
    shared one. ``message_bus`` is set only when communication is enabled.
    """

    task_id: str
    strategy: ContextStrategy
    prior_results: dict[str, TaskResult] = field(default_factory=dict)
    task_context: Mapping[str, Any] = field(default_factory=dict)
    message_bus: MessageBus | None = None
    max_chars_per_result: int = DEFAULT_CONTEXT_MAX_CHARS

    @property
    def communication_enabled(self) -> bool:
        return self.message_bus is not None

    def outputs(self) -> dict[str, str]:
        return {task_id: result.output for task_id, result in self.prior_results.items()}

    def render(self) -> str:
        """Textual context block handed to prompt-based executors."""

        parts: list[str] = []
        if self.task_context:
            parts.append(
                "### Task Context\n"
                + json.dumps(dict(self.task_context), indent=2, ensure_ascii=False, default=str),
            )
        if self.prior_results:
            heading = (
                "### Dependency Results"
                if self.strategy is ContextStrategy.ISOLATED
                else "### Shared Context"
            )
            section = [heading]
            for task_id, result in self.prior_results.items():
                section.append(f"\n**Task {task_id} ({result.agent_id}):**")
                section.append(prune_text(result.output, self.max_chars_per_result))
            parts.append("\n".join(section))
        return "\n\n".join(parts)


class ResultStore:
    """Append-only record of task results for one run.

    Writes come from the scheduling loop; reads may come from executor
    threads, so all access is serialized.
    """

    def __init__(self) -> None:
        self._results: dict[str, TaskResult] = {}
        self._lock = threading.Lock()

    def record(self, result: TaskResult) -> None:
        with self._lock:
            if result.task_id in self._results:
                raise SchedulingError(f"Result already recorded for task {result.task_id!r}")
            self._results[result.task_id] = result

    def get(self, task_id: str) -> TaskResult | None:
        with self._lock:
            return self._results.get(task_id)

    def completed_ids(self) -> set[str]:
        with self._lock:
            return {task_id for task_id, result in self._results.items() if result.success}

    def snapshot(self) -> dict[str, TaskResult]:
        """Copy of all results in recording order."""

        with self._lock:
            return dict(self._results)

    def ordered(self, task_ids: Iterable[str]) -> dict[str, TaskResult]:
        """Results re-keyed in the given order, skipping ids without a result."""

        with self._lock:
            return {
                task_id: self._results[task_id] for task_id in task_ids if task_id in self._results
            }

    def total_tokens(self) -> int:
        with self._lock:
            return sum(result.tokens_used for result in self._results.values())

    def build_context(  # noqa: PLR0913
        self,
        task: AgentTask,
        graph: TaskGraph,
        strategy: ContextStrategy,
        *,
        message_bus: MessageBus | None = None,
        max_chars_per_result: int = DEFAULT_CONTEXT_MAX_CHARS,
    ) -> ExecutionContext:
        """Assemble the execution context for ``task`` from stored results."""

        if strategy is ContextStrategy.ISOLATED:
            source_ids = list(dict.fromkeys(task.dependencies))
        else:
            source_ids = graph.ancestors(task.id)
        with self._lock:
            prior = {
                task_id: self._results[task_id]
                for task_id in source_ids
                if task_id in self._results and self._results[task_id].success
            }
        return ExecutionContext(
            task_id=task.id,
            strategy=strategy,
            prior_results=prior,
            task_context=dict(task.context),
            message_bus=message_bus,
            max_chars_per_result=max_chars_per_result,
        )

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._results

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
