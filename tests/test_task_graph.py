from __future__ import annotations

import allure
import pytest

from agent_orchestrator.orchestrator.errors import (
    CycleDetectedError,
    DuplicateIdError,
    InvalidTransitionError,
    UnknownDependencyError,
)
from agent_orchestrator.orchestrator.graph import TaskGraph
from agent_orchestrator.orchestrator.models import AgentTask, TaskStatus

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Task Graph"),
]


def _task(task_id: str, *deps: str, priority: int = 5) -> AgentTask:
    return AgentTask(
        id=task_id,
        agent_id=f"{task_id}-agent",
        description=f"Task {task_id}",
        prompt=f"do {task_id}",
        dependencies=deps,
        priority=priority,
    )


def test_build_rejects_duplicate_ids() -> None:
    with pytest.raises(DuplicateIdError, match="'a'"):
        TaskGraph.build([_task("a"), _task("a")])


def test_build_rejects_unknown_dependency() -> None:
    with pytest.raises(UnknownDependencyError) as excinfo:
        TaskGraph.build([_task("a"), _task("b", "missing")])

    assert excinfo.value.task_id == "b"
    assert excinfo.value.dependency_id == "missing"


def test_check_acyclic_reports_closed_cycle() -> None:
    graph = TaskGraph.build([_task("a", "c"), _task("b", "a"), _task("c", "b")])

    with pytest.raises(CycleDetectedError) as excinfo:
        graph.check_acyclic()

    cycle = excinfo.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}
    assert "Circular dependency detected" in str(excinfo.value)


def test_check_acyclic_detects_self_dependency() -> None:
    graph = TaskGraph.build([_task("solo", "solo")])

    with pytest.raises(CycleDetectedError) as excinfo:
        graph.validate()

    assert excinfo.value.cycle == ("solo", "solo")


def test_check_acyclic_accepts_diamond() -> None:
    graph = TaskGraph.build([_task("a"), _task("b", "a"), _task("c", "a"), _task("d", "b", "c")])

    graph.validate()


def test_ready_set_requires_all_dependencies_completed() -> None:
    graph = TaskGraph.build([_task("a"), _task("b"), _task("c", "a", "b")])

    assert [task.id for task in graph.ready_set(set())] == ["a", "b"]
    assert [task.id for task in graph.ready_set({"a"})] == ["a", "b"]
    assert "c" in [task.id for task in graph.ready_set({"a", "b"})]


def test_ready_set_orders_by_priority_then_insertion() -> None:
    graph = TaskGraph.build(
        [
            _task("low", priority=1),
            _task("high-first", priority=9),
            _task("mid", priority=5),
            _task("high-second", priority=9),
        ],
    )

    assert [task.id for task in graph.ready_set(set())] == [
        "high-first",
        "high-second",
        "mid",
        "low",
    ]


def test_ready_set_excludes_started_tasks() -> None:
    graph = TaskGraph.build([_task("a"), _task("b")])
    graph.mark("a", TaskStatus.READY)
    graph.mark("a", TaskStatus.RUNNING)

    assert [task.id for task in graph.ready_set(set())] == ["b"]


def test_descendants_and_ancestors_are_transitive_in_insertion_order() -> None:
    graph = TaskGraph.build(
        [_task("a"), _task("b", "a"), _task("c", "b"), _task("d"), _task("e", "c", "d")],
    )

    assert graph.descendants("a") == ["b", "c", "e"]
    assert graph.ancestors("e") == ["a", "b", "c", "d"]
    assert graph.dependents("c") == ["e"]
    assert [task.id for task in graph.roots()] == ["a", "d"]


def test_topological_order_respects_dependencies_and_priority() -> None:
    graph = TaskGraph.build(
        [_task("d", "b", "c"), _task("a"), _task("b", "a", priority=1), _task("c", "a", priority=8)],
    )

    assert [task.id for task in graph.topological_order()] == ["a", "c", "b", "d"]


def test_mark_allows_only_forward_transitions() -> None:
    graph = TaskGraph.build([_task("a")])
    graph.mark("a", TaskStatus.READY)
    graph.mark("a", TaskStatus.RUNNING)
    graph.mark("a", TaskStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError, match="completed -> running"):
        graph.mark("a", TaskStatus.RUNNING)


def test_mark_rejects_skipping_a_running_task() -> None:
    graph = TaskGraph.build([_task("a")])
    graph.mark("a", TaskStatus.READY)
    graph.mark("a", TaskStatus.RUNNING)

    with pytest.raises(InvalidTransitionError):
        graph.mark("a", TaskStatus.SKIPPED)


def test_status_counts_and_terminal_tracking() -> None:
    graph = TaskGraph.build([_task("a"), _task("b", "a")])
    graph.mark("a", TaskStatus.READY)
    graph.mark("a", TaskStatus.RUNNING)
    graph.mark("a", TaskStatus.FAILED)
    graph.mark("b", TaskStatus.SKIPPED)

    assert graph.all_terminal()
    assert graph.status_counts()["failed"] == 1
    assert graph.status_counts()["skipped"] == 1
    assert graph.status_counts()["pending"] == 0


def test_render_tree_draws_dependents_under_roots() -> None:
    graph = TaskGraph.build([_task("a"), _task("b", "a"), _task("c", "b")])

    assert graph.render_tree().splitlines() == [
        "Workflow Dependency Graph:",
        "",
        "[a] a-agent: Task a",
        "  └─ [b] b-agent: Task b",
        "    └─ [c] c-agent: Task c",
    ]


def test_unknown_task_lookup_raises_key_error() -> None:
    graph = TaskGraph.build([_task("a")])

    with pytest.raises(KeyError):
        graph.get("nope")
