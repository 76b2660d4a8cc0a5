"""Exception taxonomy for graph validation, execution and scheduling."""

from __future__ import annotations

from collections.abc import Sequence


class OrchestratorError(RuntimeError):
    """Base class for every error raised by the orchestrator package."""


# -- graph validation ---------------------------------------------------------


class GraphError(OrchestratorError):
    """Task graph is structurally invalid; the run is rejected before execution."""


class DuplicateIdError(GraphError):
    """Two tasks share the same id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Duplicate task id: {task_id!r}")
        self.task_id = task_id


class UnknownDependencyError(GraphError):
    """A task depends on an id that is not part of the graph."""

    def __init__(self, task_id: str, dependency_id: str) -> None:
        super().__init__(
            f"Task {task_id!r} depends on unknown task {dependency_id!r}",
        )
        self.task_id = task_id
        self.dependency_id = dependency_id


class CycleDetectedError(GraphError):
    """Dependency relation contains a cycle.

    ``cycle`` is the closed path of task ids, e.g. ``("a", "b", "a")``.
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__("Circular dependency detected: " + " -> ".join(self.cycle))


# -- executor failures --------------------------------------------------------


class ExecutorError(OrchestratorError):
    """Typed failure returned by an agent executor for a single task."""

    kind = "provider_error"

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class RateLimitedError(ExecutorError):
    """Provider refused the request because of rate limits or quota."""

    kind = "rate_limited"


class ExecutorTimeoutError(ExecutorError):
    """Executor gave up waiting for the provider."""

    kind = "timeout"


class ProviderError(ExecutorError):
    """Provider or transport failure not covered by a narrower class."""

    kind = "provider_error"


class InvalidResponseError(ExecutorError):
    """Provider answered, but the answer is unusable."""

    kind = "invalid_response"


EXECUTOR_ERRORS_BY_KIND: dict[str, type[ExecutorError]] = {
    cls.kind: cls
    for cls in (RateLimitedError, ExecutorTimeoutError, ProviderError, InvalidResponseError)
}


# -- scheduling ---------------------------------------------------------------


class SchedulingError(OrchestratorError):
    """Orchestrator reached an inconsistent state; the whole run is aborted."""


class DeadlockError(SchedulingError):
    """Tasks remain unresolved but none can become ready and nothing is running."""

    def __init__(self, unresolved: Sequence[str]) -> None:
        self.unresolved = tuple(unresolved)
        super().__init__(
            "Deadlock detected: no task can become ready, unresolved tasks: "
            + ", ".join(self.unresolved),
        )


class InvalidTransitionError(SchedulingError):
    """A task status change that does not move forward along the lifecycle."""

    def __init__(self, task_id: str, status_from: str, status_to: str) -> None:
        super().__init__(
            f"Invalid status transition for task {task_id!r}: {status_from} -> {status_to}",
        )
        self.task_id = task_id
        self.status_from = status_from
        self.status_to = status_to


class CancellationError(OrchestratorError):
    """Marks tasks skipped because the run was cancelled; never raised to callers."""

    kind = "cancelled"


# -- workflow definitions -----------------------------------------------------


class WorkflowValidationError(OrchestratorError):
    """Workflow definition or its parameters cannot produce concrete tasks."""

    def __init__(self, message: str, *, problems: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.problems = tuple(problems)
