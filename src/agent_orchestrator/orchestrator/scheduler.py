"""Dependency-aware, bounded-parallel scheduling loop for agent tasks.

The loop runs on the caller's thread. Executor calls run on a thread pool
sized to ``max_parallel_agents``; every status change, result write and
progress event happens on the scheduling thread, so subscribers observe a
consistent order. Admission is continuous: whenever a slot frees up, the
ready set is recomputed and the best candidates start immediately, without
waiting for the rest of a "wave".
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from agent_orchestrator.orchestrator.backend.base import AgentExecutor
from agent_orchestrator.orchestrator.errors import (
    CancellationError,
    DeadlockError,
    ExecutorError,
    InvalidResponseError,
    OrchestratorError,
    ProviderError,
    SchedulingError,
)
from agent_orchestrator.orchestrator.events import (
    EventEmitter,
    EventHandler,
    EventType,
    ProgressEvent,
)
from agent_orchestrator.orchestrator.graph import TaskGraph
from agent_orchestrator.orchestrator.messaging import DEFAULT_HISTORY_LIMIT, MessageBus
from agent_orchestrator.orchestrator.models import (
    AgentTask,
    ContextStrategy,
    FailurePolicy,
    TaskOutput,
    TaskResult,
    TaskStatus,
)
from agent_orchestrator.orchestrator.results import (
    DEFAULT_CONTEXT_MAX_CHARS,
    ExecutionContext,
    ResultStore,
)

logger = logging.getLogger(__name__)

_WAIT_POLL_SECONDS = 0.05
_SKIPPED_DEPENDENCY = "skipped_dependency"


@dataclass(slots=True)
class OrchestratorConfig:
    """Run configuration. The first three fields have no implicit defaults."""

    max_parallel_agents: int
    context_strategy: ContextStrategy
    enable_communication: bool
    on_progress: EventHandler | None = None
    failure_policy: FailurePolicy = FailurePolicy.SKIP_DEPENDENTS
    message_history_limit: int = DEFAULT_HISTORY_LIMIT
    context_max_chars: int = DEFAULT_CONTEXT_MAX_CHARS

    def __post_init__(self) -> None:
        if isinstance(self.max_parallel_agents, bool) or self.max_parallel_agents < 1:
            raise ValueError(
                f"max_parallel_agents must be an integer >= 1, got {self.max_parallel_agents!r}",
            )
        self.context_strategy = ContextStrategy(self.context_strategy)
        self.failure_policy = FailurePolicy(self.failure_policy)
        if self.message_history_limit < 1:
            raise ValueError("message_history_limit must be >= 1.")
        if self.context_max_chars < 0:
            raise ValueError("context_max_chars must be >= 0.")


@dataclass(slots=True)
class _Outcome:
    output: TaskOutput | None
    error: ExecutorError | None
    elapsed_ms: int


@dataclass(slots=True)
class _Dispatch:
    task: AgentTask
    order: int


class Orchestrator:
    """Drives a task set to completion against an :class:`AgentExecutor`.

    One instance performs one run; call :meth:`reset` to reuse it.
    """

    def __init__(self, config: OrchestratorConfig, *, events: EventEmitter | None = None) -> None:
        self.config = config
        self.events = events or EventEmitter()
        if config.on_progress is not None:
            self.events.on_any(config.on_progress)
        self.message_bus = MessageBus(history_limit=config.message_history_limit)
        self._store = ResultStore()
        self._graph: TaskGraph | None = None
        self._cancel_requested = threading.Event()
        self._cancel_applied = False
        self._started = False
        self._dispatch_counter = 0

    # -- public API -----------------------------------------------------------

    def run(self, tasks: Iterable[AgentTask], executor: AgentExecutor) -> dict[str, TaskResult]:
        """Execute ``tasks`` and return one result per task, keyed by id in input order.

        Raises ``GraphError`` before anything executes when the task set is
        invalid, and ``SchedulingError`` if the loop can make no progress.
        """

        if self._started:
            raise OrchestratorError("Orchestrator already ran; call reset() before reusing it.")
        self._started = True

        graph = TaskGraph.build(tasks)
        graph.validate()
        self._graph = graph
        topo = graph.topological_order()

        logger.info(
            "Orchestration started: tasks=%d max_parallel_agents=%d context=%s policy=%s",
            len(graph),
            self.config.max_parallel_agents,
            self.config.context_strategy.value,
            self.config.failure_policy.value,
        )
        started_monotonic = time.monotonic()
        running: dict[Future[_Outcome], _Dispatch] = {}

        with ThreadPoolExecutor(
            max_workers=self.config.max_parallel_agents,
            thread_name_prefix="agent-task",
        ) as pool:
            while True:
                if not self._cancel_applied:
                    self._admit(graph, pool, running, executor)
                if self._cancel_requested.is_set() and not self._cancel_applied:
                    self._apply_cancellation(graph)
                if graph.all_terminal():
                    break
                if not running:
                    raise DeadlockError(graph.unresolved())

                done, _ = wait(running, timeout=_WAIT_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda item: running[item].order):
                    dispatch = running.pop(future)
                    self._settle(graph, dispatch.task, future.result())
                if done and self.config.failure_policy is FailurePolicy.RUN_ON_PARTIAL:
                    self._skip_unsatisfiable(graph, topo)

        results = self._store.ordered(task.id for task in graph)
        if len(results) != len(graph):
            missing = [task.id for task in graph if task.id not in results]
            raise SchedulingError(f"Run finished without results for: {', '.join(missing)}")

        counts = graph.status_counts()
        elapsed_ms = int((time.monotonic() - started_monotonic) * 1000)
        if self._cancel_applied:
            self._emit(EventType.WORKFLOW_CANCELLED, data=dict(counts))
        self._emit(
            EventType.WORKFLOW_COMPLETE,
            data={
                "total": len(results),
                "completed": counts[TaskStatus.COMPLETED.value],
                "failed": counts[TaskStatus.FAILED.value],
                "skipped": counts[TaskStatus.SKIPPED.value],
                "tokens": self._store.total_tokens(),
                "duration_ms": elapsed_ms,
            },
        )
        logger.info(
            "Orchestration finished: completed=%d failed=%d skipped=%d elapsed=%.1fs",
            counts[TaskStatus.COMPLETED.value],
            counts[TaskStatus.FAILED.value],
            counts[TaskStatus.SKIPPED.value],
            elapsed_ms / 1000,
        )
        return results

    def cancel(self) -> None:
        """Stop admitting tasks; in-flight executor calls are allowed to finish."""

        if not self._cancel_requested.is_set():
            logger.info("Cancellation requested")
        self._cancel_requested.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    @property
    def graph(self) -> TaskGraph | None:
        return self._graph

    def results(self) -> dict[str, TaskResult]:
        """Results recorded so far, in recording order."""

        return self._store.snapshot()

    def status(self) -> dict[str, int]:
        """Per-status task counts for the current (or last) run."""

        if self._graph is None:
            return {status.value: 0 for status in TaskStatus}
        return self._graph.status_counts()

    def reset(self) -> None:
        """Discard run state so the instance can run another task set."""

        self.message_bus.clear()
        self._store = ResultStore()
        self._graph = None
        self._cancel_requested.clear()
        self._cancel_applied = False
        self._started = False
        self._dispatch_counter = 0

    # -- scheduling steps -----------------------------------------------------

    def _admit(
        self,
        graph: TaskGraph,
        pool: ThreadPoolExecutor,
        running: dict[Future[_Outcome], _Dispatch],
        executor: AgentExecutor,
    ) -> None:
        candidates = graph.ready_set(self._satisfied_ids(graph))
        for task in candidates:
            if graph.status(task.id) is TaskStatus.PENDING:
                graph.mark(task.id, TaskStatus.READY)

        free = self.config.max_parallel_agents - len(running)
        selected = candidates[: max(free, 0)]
        if not selected or self._cancel_requested.is_set():
            return

        self._emit(EventType.WAVE_START, task_ids=tuple(task.id for task in selected))
        for task in selected:
            if self._cancel_requested.is_set():
                break
            graph.mark(task.id, TaskStatus.RUNNING)
            self._emit(EventType.TASK_START, task_id=task.id, agent_id=task.agent_id)
            context = self._store.build_context(
                task,
                graph,
                self.config.context_strategy,
                message_bus=self.message_bus if self.config.enable_communication else None,
                max_chars_per_result=self.config.context_max_chars,
            )
            logger.debug("Dispatching task %s to agent %s", task.id, task.agent_id)
            future = pool.submit(_execute, executor, task, context)
            self._dispatch_counter += 1
            running[future] = _Dispatch(task=task, order=self._dispatch_counter)

    def _settle(self, graph: TaskGraph, task: AgentTask, outcome: _Outcome) -> None:
        if outcome.output is not None:
            output = outcome.output
            result = TaskResult(
                task_id=task.id,
                agent_id=task.agent_id,
                success=True,
                output=output.output,
                tokens_used=output.tokens_used,
                duration_ms=(
                    output.duration_ms if output.duration_ms is not None else outcome.elapsed_ms
                ),
                status=TaskStatus.COMPLETED,
                metadata=dict(output.metadata),
            )
            self._store.record(result)
            graph.mark(task.id, TaskStatus.COMPLETED)
            logger.info("Task %s completed in %dms", task.id, result.duration_ms)
            self._emit(
                EventType.TASK_COMPLETE,
                task_id=task.id,
                agent_id=task.agent_id,
                result=result,
            )
            return

        error = outcome.error or ProviderError("Executor returned neither output nor error")
        result = TaskResult(
            task_id=task.id,
            agent_id=task.agent_id,
            success=False,
            output="",
            tokens_used=0,
            duration_ms=outcome.elapsed_ms,
            status=TaskStatus.FAILED,
            error=str(error),
            error_kind=error.kind,
            metadata=dict(error.details),
        )
        self._store.record(result)
        graph.mark(task.id, TaskStatus.FAILED)
        logger.warning("Task %s failed (%s): %s", task.id, error.kind, error)
        self._emit(EventType.TASK_ERROR, task_id=task.id, agent_id=task.agent_id, result=result)

        if self.config.failure_policy is FailurePolicy.SKIP_DEPENDENTS:
            for dependent_id in graph.descendants(task.id):
                if graph.status(dependent_id) in (TaskStatus.PENDING, TaskStatus.READY):
                    self._skip(
                        graph,
                        dependent_id,
                        error=f"Skipped: dependency {task.id!r} failed: {error}",
                        error_kind=_SKIPPED_DEPENDENCY,
                        blocked_by=task.id,
                    )

    def _skip_unsatisfiable(self, graph: TaskGraph, topo: list[AgentTask]) -> None:
        """Partial policy: skip pending tasks whose dependencies all ended without success."""

        for task in topo:
            if not task.dependencies:
                continue
            if graph.status(task.id) not in (TaskStatus.PENDING, TaskStatus.READY):
                continue
            statuses = [graph.status(dependency_id) for dependency_id in task.dependencies]
            if not all(status.is_terminal for status in statuses):
                continue
            if TaskStatus.COMPLETED in statuses:
                continue
            origin = self._failure_origin(task.dependencies)
            origin_result = self._store.get(origin)
            self._skip(
                graph,
                task.id,
                error=(
                    f"Skipped: no dependency completed; originating failure {origin!r}: "
                    f"{origin_result.error if origin_result else 'unknown'}"
                ),
                error_kind=_SKIPPED_DEPENDENCY,
                blocked_by=origin,
            )

    def _apply_cancellation(self, graph: TaskGraph) -> None:
        self._cancel_applied = True
        cancelled = graph.ids_with_status(TaskStatus.PENDING, TaskStatus.READY)
        logger.info("Cancelling run: %d task(s) not started will be skipped", len(cancelled))
        for task_id in cancelled:
            self._skip(
                graph,
                task_id,
                error=str(CancellationError("Run cancelled before task started")),
                error_kind=CancellationError.kind,
                blocked_by=None,
            )

    def _skip(
        self,
        graph: TaskGraph,
        task_id: str,
        *,
        error: str,
        error_kind: str,
        blocked_by: str | None,
    ) -> None:
        task = graph.get(task_id)
        result = TaskResult(
            task_id=task.id,
            agent_id=task.agent_id,
            success=False,
            output="",
            tokens_used=0,
            duration_ms=0,
            status=TaskStatus.SKIPPED,
            error=error,
            error_kind=error_kind,
            blocked_by=blocked_by,
        )
        self._store.record(result)
        graph.mark(task_id, TaskStatus.SKIPPED)
        logger.warning("Task %s skipped: %s", task_id, error)
        self._emit(EventType.TASK_SKIPPED, task_id=task.id, agent_id=task.agent_id, result=result)

    def _satisfied_ids(self, graph: TaskGraph) -> set[str]:
        if self.config.failure_policy is FailurePolicy.RUN_ON_PARTIAL:
            return set(
                graph.ids_with_status(TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED),
            )
        return set(graph.ids_with_status(TaskStatus.COMPLETED))

    def _failure_origin(self, dependency_ids: Iterable[str]) -> str:
        first = ""
        for dependency_id in dependency_ids:
            result = self._store.get(dependency_id)
            if result is None:
                continue
            origin = result.blocked_by or dependency_id
            if result.status is TaskStatus.FAILED:
                return dependency_id
            first = first or origin
        return first

    def _emit(self, event_type: EventType, **payload: object) -> None:
        self.events.emit(ProgressEvent(type=event_type, **payload))  # type: ignore[arg-type]


def _execute(executor: AgentExecutor, task: AgentTask, context: ExecutionContext) -> _Outcome:
    """Worker-thread body: call the executor and capture its outcome."""

    started = time.monotonic()
    try:
        output = executor.run(task, context)
        if not isinstance(output, TaskOutput):
            raise InvalidResponseError(
                f"Executor returned {type(output).__name__} instead of TaskOutput",
            )
    except ExecutorError as error:
        return _Outcome(output=None, error=error, elapsed_ms=_elapsed_ms(started))
    except Exception as error:  # noqa: BLE001
        logger.debug("Executor raised untyped error for task %s", task.id, exc_info=True)
        wrapped = ProviderError(f"{type(error).__name__}: {error}")
        return _Outcome(output=None, error=wrapped, elapsed_ms=_elapsed_ms(started))
    return _Outcome(output=output, error=None, elapsed_ms=_elapsed_ms(started))


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
