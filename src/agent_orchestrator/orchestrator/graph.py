"""Task dependency graph: indexing, validation and ready-set computation."""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Collection, Iterable, Iterator

from agent_orchestrator.orchestrator.errors import (
    CycleDetectedError,
    DuplicateIdError,
    InvalidTransitionError,
    UnknownDependencyError,
)
from agent_orchestrator.orchestrator.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    AgentTask,
    TaskStatus,
)

logger = logging.getLogger(__name__)

_ADMISSIBLE = frozenset({TaskStatus.PENDING, TaskStatus.READY})


class TaskGraph:
    """Indexed task set with per-run status tracking.

    Build with :meth:`build`, then call :meth:`check_acyclic` before
    scheduling. Edges point from a task to the tasks it depends on.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, AgentTask] = {}
        self._order: dict[str, int] = {}
        self._dependents: dict[str, list[str]] = {}
        self._status: dict[str, TaskStatus] = {}

    @classmethod
    def build(cls, tasks: Iterable[AgentTask]) -> TaskGraph:
        """Index tasks by id and verify every dependency resolves."""

        graph = cls()
        for task in tasks:
            if task.id in graph._tasks:
                raise DuplicateIdError(task.id)
            graph._order[task.id] = len(graph._tasks)
            graph._tasks[task.id] = task
            graph._dependents[task.id] = []
            graph._status[task.id] = TaskStatus.PENDING

        for task in graph._tasks.values():
            seen: set[str] = set()
            for dependency_id in task.dependencies:
                if dependency_id not in graph._tasks:
                    raise UnknownDependencyError(task.id, dependency_id)
                if dependency_id in seen:
                    continue
                seen.add(dependency_id)
                graph._dependents[dependency_id].append(task.id)
        return graph

    def check_acyclic(self) -> None:
        """Depth-first search with a recursion stack; raise on the first back-edge."""

        visited: set[str] = set()
        for root in self._tasks:
            if root in visited:
                continue
            path: list[str] = [root]
            on_path: dict[str, int] = {root: 0}
            stack: list[tuple[str, Iterator[str]]] = [
                (root, iter(self._tasks[root].dependencies)),
            ]
            visited.add(root)
            while stack:
                node, pending = stack[-1]
                for dependency_id in pending:
                    if dependency_id in on_path:
                        cycle = [*path[on_path[dependency_id] :], dependency_id]
                        raise CycleDetectedError(cycle)
                    if dependency_id in visited:
                        continue
                    visited.add(dependency_id)
                    on_path[dependency_id] = len(path)
                    path.append(dependency_id)
                    stack.append(
                        (dependency_id, iter(self._tasks[dependency_id].dependencies)),
                    )
                    break
                else:
                    stack.pop()
                    path.pop()
                    del on_path[node]

    def validate(self) -> None:
        """Full structural validation (ids and dependencies are checked by build)."""

        self.check_acyclic()
        logger.debug("Task graph validated: %d task(s)", len(self._tasks))

    # -- scheduling queries ---------------------------------------------------

    def ready_set(self, completed_ids: Collection[str]) -> list[AgentTask]:
        """Tasks whose dependencies are all in ``completed_ids`` and that have not started.

        Ordered by descending priority, ties broken by insertion order.
        """

        completed = set(completed_ids)
        ready = [
            task
            for task_id, task in self._tasks.items()
            if self._status[task_id] in _ADMISSIBLE
            and all(dependency_id in completed for dependency_id in task.dependencies)
        ]
        ready.sort(key=self._admission_key)
        return ready

    def descendants(self, task_id: str) -> list[str]:
        """All tasks that transitively depend on ``task_id``, in insertion order."""

        self._require(task_id)
        found: set[str] = set()
        queue = deque(self._dependents[task_id])
        while queue:
            current = queue.popleft()
            if current in found:
                continue
            found.add(current)
            queue.extend(self._dependents[current])
        return sorted(found, key=self._order.__getitem__)

    def ancestors(self, task_id: str) -> list[str]:
        """All tasks ``task_id`` transitively depends on, in insertion order."""

        self._require(task_id)
        found: set[str] = set()
        queue = deque(self._tasks[task_id].dependencies)
        while queue:
            current = queue.popleft()
            if current in found:
                continue
            found.add(current)
            queue.extend(self._tasks[current].dependencies)
        return sorted(found, key=self._order.__getitem__)

    def dependents(self, task_id: str) -> list[str]:
        """Direct dependents of ``task_id``."""

        self._require(task_id)
        return list(self._dependents[task_id])

    def roots(self) -> list[AgentTask]:
        return [task for task in self._tasks.values() if not task.dependencies]

    def topological_order(self) -> list[AgentTask]:
        """Kahn ordering using the same priority tie-break as admission."""

        remaining = {task_id: len(set(task.dependencies)) for task_id, task in self._tasks.items()}
        available = sorted(
            (task for task_id, task in self._tasks.items() if remaining[task_id] == 0),
            key=self._admission_key,
        )
        ordered: list[AgentTask] = []
        while available:
            task = available.pop(0)
            ordered.append(task)
            for dependent_id in self._dependents[task.id]:
                remaining[dependent_id] -= 1
                if remaining[dependent_id] == 0:
                    available.append(self._tasks[dependent_id])
            available.sort(key=self._admission_key)
        if len(ordered) != len(self._tasks):
            self.check_acyclic()
        return ordered

    # -- status tracking ------------------------------------------------------

    def status(self, task_id: str) -> TaskStatus:
        self._require(task_id)
        return self._status[task_id]

    def statuses(self) -> dict[str, TaskStatus]:
        return dict(self._status)

    def mark(self, task_id: str, status: TaskStatus) -> None:
        """Move a task forward along its lifecycle."""

        current = self.status(task_id)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(task_id, current.value, status.value)
        self._status[task_id] = status

    def ids_with_status(self, *statuses: TaskStatus) -> list[str]:
        wanted = set(statuses)
        return [task_id for task_id, status in self._status.items() if status in wanted]

    def unresolved(self) -> list[str]:
        return [
            task_id for task_id, status in self._status.items() if status not in TERMINAL_STATUSES
        ]

    def all_terminal(self) -> bool:
        return not self.unresolved()

    def status_counts(self) -> dict[str, int]:
        counts = Counter(status.value for status in self._status.values())
        return {status.value: counts.get(status.value, 0) for status in TaskStatus}

    # -- presentation ---------------------------------------------------------

    def render_tree(self) -> str:
        """ASCII dependency tree rooted at tasks without dependencies."""

        lines = ["Workflow Dependency Graph:", ""]
        printed: set[str] = set()

        def _walk(task_id: str, depth: int) -> None:
            if task_id in printed:
                return
            printed.add(task_id)
            task = self._tasks[task_id]
            prefix = "  " * depth + ("└─ " if depth else "")
            lines.append(f"{prefix}[{task.id}] {task.agent_id}: {task.description}")
            for dependent_id in self._dependents[task_id]:
                _walk(dependent_id, depth + 1)

        for root in self.roots():
            _walk(root.id, 0)
        return "\n".join(lines)

    # -- container protocol ---------------------------------------------------

    def get(self, task_id: str) -> AgentTask:
        self._require(task_id)
        return self._tasks[task_id]

    @property
    def tasks(self) -> list[AgentTask]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[AgentTask]:
        return iter(self._tasks.values())

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def _admission_key(self, task: AgentTask) -> tuple[int, int]:
        return (-task.priority, self._order[task.id])

    def _require(self, task_id: str) -> None:
        if task_id not in self._tasks:
            raise KeyError(f"Unknown task id: {task_id!r}")
