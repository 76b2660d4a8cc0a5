from __future__ import annotations

import allure
import pytest

from agent_orchestrator.orchestrator.errors import (
    CycleDetectedError,
    DeadlockError,
    OrchestratorError,
    ProviderError,
    RateLimitedError,
    UnknownDependencyError,
)
from agent_orchestrator.orchestrator.events import EventType
from agent_orchestrator.orchestrator.graph import TaskGraph
from agent_orchestrator.orchestrator.models import (
    ContextStrategy,
    FailurePolicy,
    TaskOutput,
    TaskStatus,
)
from agent_orchestrator.orchestrator.scheduler import Orchestrator, OrchestratorConfig

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Orchestrator"),
]


def _config(
    max_parallel: int = 3,
    *,
    strategy: ContextStrategy = ContextStrategy.SHARED,
    communication: bool = False,
    policy: FailurePolicy = FailurePolicy.SKIP_DEPENDENTS,
    on_progress=None,
) -> OrchestratorConfig:
    return OrchestratorConfig(
        max_parallel_agents=max_parallel,
        context_strategy=strategy,
        enable_communication=communication,
        on_progress=on_progress,
        failure_policy=policy,
    )


def _diamond(make_task):
    return [
        make_task("a"),
        make_task("b", "a"),
        make_task("c", "a"),
        make_task("d", "b", "c"),
    ]


def test_serial_chain_runs_in_dependency_order(make_task, recording_executor_factory, event_log):
    events, record = event_log
    executor = recording_executor_factory()
    orchestrator = Orchestrator(_config(1, on_progress=record))

    results = orchestrator.run(
        [make_task("a"), make_task("b", "a"), make_task("c", "b")],
        executor,
    )

    assert executor.calls == ["a", "b", "c"]
    assert all(result.status is TaskStatus.COMPLETED for result in results.values())
    lifecycle = [
        (event.type, event.task_id)
        for event in events
        if event.type in (EventType.TASK_START, EventType.TASK_COMPLETE)
    ]
    assert lifecycle == [
        (EventType.TASK_START, "a"),
        (EventType.TASK_COMPLETE, "a"),
        (EventType.TASK_START, "b"),
        (EventType.TASK_COMPLETE, "b"),
        (EventType.TASK_START, "c"),
        (EventType.TASK_COMPLETE, "c"),
    ]
    assert events[-1].type is EventType.WORKFLOW_COMPLETE
    assert events[-1].data["completed"] == 3


def test_single_slot_runs_independent_tasks_one_at_a_time(
    make_task,
    recording_executor_factory,
    event_log,
):
    events, record = event_log
    executor = recording_executor_factory(delays={"a": 0.02, "b": 0.02, "c": 0.02})

    results = Orchestrator(_config(1, on_progress=record)).run(
        [make_task("a"), make_task("b"), make_task("c")],
        executor,
    )

    assert executor.max_active == 1
    assert all(result.status is TaskStatus.COMPLETED for result in results.values())
    lifecycle = [
        (event.type, event.task_id)
        for event in events
        if event.type in (EventType.TASK_START, EventType.TASK_COMPLETE)
    ]
    assert lifecycle == [
        (EventType.TASK_START, "a"),
        (EventType.TASK_COMPLETE, "a"),
        (EventType.TASK_START, "b"),
        (EventType.TASK_COMPLETE, "b"),
        (EventType.TASK_START, "c"),
        (EventType.TASK_COMPLETE, "c"),
    ]


def test_diamond_admits_siblings_together(make_task, recording_executor_factory, event_log):
    events, record = event_log
    orchestrator = Orchestrator(_config(2, on_progress=record))

    orchestrator.run(_diamond(make_task), recording_executor_factory())

    waves = [event.task_ids for event in events if event.type is EventType.WAVE_START]
    assert waves == [("a",), ("b", "c"), ("d",)]


def test_results_are_keyed_in_input_order(make_task, recording_executor_factory):
    tasks = [make_task("z"), make_task("y", "z"), make_task("x", priority=9)]

    results = Orchestrator(_config(3)).run(tasks, recording_executor_factory())

    assert list(results) == ["z", "y", "x"]


def test_admission_prefers_priority_then_input_order(make_task, recording_executor_factory):
    executor = recording_executor_factory()
    tasks = [
        make_task("low", priority=1),
        make_task("first-high", priority=9),
        make_task("mid"),
        make_task("second-high", priority=9),
    ]

    Orchestrator(_config(1)).run(tasks, executor)

    assert executor.calls == ["first-high", "second-high", "mid", "low"]


def test_repeated_runs_are_deterministic(make_task, recording_executor_factory):
    tasks = _diamond(make_task) + [make_task("e", "d"), make_task("f")]
    runs = []
    for _ in range(3):
        executor = recording_executor_factory(fail={"c": ProviderError("nope")})
        results = Orchestrator(_config(1)).run(tasks, executor)
        runs.append(
            (executor.calls, [(task_id, result.status) for task_id, result in results.items()]),
        )

    assert runs[0] == runs[1] == runs[2]


def test_concurrency_never_exceeds_bound(make_task, recording_executor_factory):
    tasks = [make_task(f"t{index}") for index in range(6)]
    executor = recording_executor_factory(delays={task.id: 0.05 for task in tasks})

    results = Orchestrator(_config(2)).run(tasks, executor)

    assert executor.max_active <= 2
    assert sorted(executor.calls) == sorted(task.id for task in tasks)
    assert all(result.success for result in results.values())


def test_failure_skips_every_descendant(make_task, recording_executor_factory):
    class AlwaysFails:
        def run(self, task, context):
            raise ProviderError(f"provider down for {task.id}")

    results = Orchestrator(_config(3)).run(_diamond(make_task), AlwaysFails())

    assert results["a"].status is TaskStatus.FAILED
    assert results["a"].error_kind == "provider_error"
    assert results["a"].error == "provider down for a"
    for task_id in ("b", "c", "d"):
        assert results[task_id].status is TaskStatus.SKIPPED
        assert results[task_id].blocked_by == "a"
        assert results[task_id].error_kind == "skipped_dependency"
        assert "provider down for a" in results[task_id].error


def test_failure_does_not_stop_independent_branches(make_task, recording_executor_factory):
    executor = recording_executor_factory(fail={"b": RateLimitedError("slow down")})

    results = Orchestrator(_config(2)).run(
        [*_diamond(make_task), make_task("solo")],
        executor,
    )

    assert results["b"].status is TaskStatus.FAILED
    assert results["b"].error_kind == "rate_limited"
    assert results["c"].status is TaskStatus.COMPLETED
    assert results["d"].status is TaskStatus.SKIPPED
    assert results["solo"].status is TaskStatus.COMPLETED
    assert "d" not in executor.calls


def test_every_result_has_error_iff_not_successful(make_task, recording_executor_factory):
    executor = recording_executor_factory(fail={"b": ProviderError("x")})

    results = Orchestrator(_config(2)).run(_diamond(make_task), executor)

    for result in results.values():
        assert result.success == (result.error is None)
        assert result.success == (result.status is TaskStatus.COMPLETED)


def test_untyped_executor_exception_becomes_provider_error(make_task, recording_executor_factory):
    executor = recording_executor_factory(fail={"a": RuntimeError("boom")})

    results = Orchestrator(_config(1)).run([make_task("a")], executor)

    assert results["a"].status is TaskStatus.FAILED
    assert results["a"].error_kind == "provider_error"
    assert results["a"].error == "RuntimeError: boom"


def test_non_task_output_is_invalid_response(make_task):
    class ReturnsString:
        def run(self, task, context):
            return "not a TaskOutput"

    results = Orchestrator(_config(1)).run([make_task("a")], ReturnsString())

    assert results["a"].error_kind == "invalid_response"
    assert "str" in results["a"].error


def test_executor_reported_duration_wins(make_task):
    class Timed:
        def run(self, task, context):
            return TaskOutput(output="ok", tokens_used=3, duration_ms=1234)

    results = Orchestrator(_config(1)).run([make_task("a")], Timed())

    assert results["a"].duration_ms == 1234
    assert results["a"].tokens_used == 3


def test_shared_context_includes_all_completed_ancestors(make_task, recording_executor_factory):
    executor = recording_executor_factory()
    tasks = [make_task("a"), make_task("b", "a"), make_task("c", "b")]

    Orchestrator(_config(1, strategy=ContextStrategy.SHARED)).run(tasks, executor)

    assert list(executor.contexts["c"].prior_results) == ["a", "b"]
    assert executor.contexts["a"].prior_results == {}


def test_isolated_context_includes_direct_dependencies_only(make_task, recording_executor_factory):
    executor = recording_executor_factory()
    tasks = [make_task("a"), make_task("b", "a"), make_task("c", "b")]

    Orchestrator(_config(1, strategy=ContextStrategy.ISOLATED)).run(tasks, executor)

    assert list(executor.contexts["c"].prior_results) == ["b"]
    assert executor.contexts["c"].outputs() == {"b": "output of b"}


def test_message_bus_handed_out_only_with_communication(make_task, recording_executor_factory):
    executor = recording_executor_factory()
    orchestrator = Orchestrator(_config(1, communication=True))
    orchestrator.run([make_task("a")], executor)
    assert executor.contexts["a"].message_bus is orchestrator.message_bus

    executor = recording_executor_factory()
    Orchestrator(_config(1, communication=False)).run([make_task("a")], executor)
    assert executor.contexts["a"].message_bus is None


def test_agents_can_exchange_messages_during_run(make_task):
    received = []

    class Chatty:
        def run(self, task, context):
            if task.id == "a":
                context.message_bus.subscribe("b-agent", received.append)
                context.message_bus.send("a-agent", "b-agent", {"hint": "use pytest"})
            return TaskOutput(output=task.id)

    orchestrator = Orchestrator(_config(1, communication=True))
    orchestrator.run([make_task("a"), make_task("b", "a")], Chatty())

    assert [message.content for message in received] == [{"hint": "use pytest"}]
    assert len(orchestrator.message_bus.history()) == 1


def test_cancel_skips_tasks_not_yet_started(make_task, recording_executor_factory, event_log):
    events, record = event_log
    orchestrator = Orchestrator(_config(1, on_progress=record))
    executor = recording_executor_factory(
        on_call=lambda task: orchestrator.cancel() if task.id == "a" else None,
    )

    results = orchestrator.run(
        [make_task("a", priority=9), make_task("b"), make_task("c")],
        executor,
    )

    assert executor.calls == ["a"]
    assert results["a"].status is TaskStatus.COMPLETED
    for task_id in ("b", "c"):
        assert results[task_id].status is TaskStatus.SKIPPED
        assert results[task_id].error_kind == "cancelled"
        assert results[task_id].blocked_by is None
    assert orchestrator.cancelled
    types = [event.type for event in events]
    assert types[-2:] == [EventType.WORKFLOW_CANCELLED, EventType.WORKFLOW_COMPLETE]


def test_cancel_from_task_start_handler_stops_the_same_admission(
    make_task,
    recording_executor_factory,
):
    executor = recording_executor_factory()
    orchestrator: Orchestrator

    def cancel_on_first_start(event) -> None:
        if event.type is EventType.TASK_START and event.task_id == "a":
            orchestrator.cancel()

    orchestrator = Orchestrator(_config(3, on_progress=cancel_on_first_start))

    results = orchestrator.run([make_task("a"), make_task("b"), make_task("c")], executor)

    assert executor.calls == ["a"]
    assert results["a"].status is TaskStatus.COMPLETED
    assert [results[task_id].error_kind for task_id in ("b", "c")] == ["cancelled", "cancelled"]


def test_cancel_from_wave_start_handler_runs_nothing(make_task, recording_executor_factory):
    executor = recording_executor_factory()
    orchestrator: Orchestrator

    def cancel_on_wave(event) -> None:
        if event.type is EventType.WAVE_START:
            orchestrator.cancel()

    orchestrator = Orchestrator(_config(2, on_progress=cancel_on_wave))

    results = orchestrator.run([make_task("a"), make_task("b", "a")], executor)

    assert executor.calls == []
    assert {task_id: result.status for task_id, result in results.items()} == {
        "a": TaskStatus.SKIPPED,
        "b": TaskStatus.SKIPPED,
    }


def test_invalid_graph_is_rejected_before_execution(make_task, recording_executor_factory):
    executor = recording_executor_factory()

    with pytest.raises(CycleDetectedError):
        Orchestrator(_config()).run([make_task("a", "b"), make_task("b", "a")], executor)
    with pytest.raises(UnknownDependencyError):
        Orchestrator(_config()).run([make_task("a", "ghost")], executor)

    assert executor.calls == []


def test_deadlock_raises_scheduling_error(make_task, recording_executor_factory, monkeypatch):
    monkeypatch.setattr(TaskGraph, "ready_set", lambda self, completed_ids: [])

    with pytest.raises(DeadlockError) as excinfo:
        Orchestrator(_config()).run([make_task("a"), make_task("b")], recording_executor_factory())

    assert excinfo.value.unresolved == ("a", "b")


def test_empty_task_list_completes_immediately(recording_executor_factory, event_log):
    events, record = event_log

    results = Orchestrator(_config(on_progress=record)).run([], recording_executor_factory())

    assert results == {}
    assert [event.type for event in events] == [EventType.WORKFLOW_COMPLETE]
    assert events[0].data["total"] == 0


def test_run_on_partial_runs_dependents_with_some_successful_inputs(
    make_task,
    recording_executor_factory,
):
    executor = recording_executor_factory(fail={"a": ProviderError("a broke")})
    tasks = [
        make_task("a"),
        make_task("d"),
        make_task("b", "a"),
        make_task("c", "a", "d"),
        make_task("e", "b"),
    ]

    results = Orchestrator(_config(2, policy=FailurePolicy.RUN_ON_PARTIAL)).run(tasks, executor)

    assert results["a"].status is TaskStatus.FAILED
    assert results["c"].status is TaskStatus.COMPLETED
    assert list(executor.contexts["c"].prior_results) == ["d"]
    assert results["b"].status is TaskStatus.SKIPPED
    assert results["b"].blocked_by == "a"
    assert results["e"].status is TaskStatus.SKIPPED
    assert results["e"].blocked_by == "a"
    assert "b" not in executor.calls
    assert "e" not in executor.calls


def test_failing_progress_subscriber_does_not_break_run(make_task, recording_executor_factory):
    def explode(event):
        raise RuntimeError("subscriber bug")

    results = Orchestrator(_config(on_progress=explode)).run(
        [make_task("a")],
        recording_executor_factory(),
    )

    assert results["a"].success


def test_orchestrator_is_single_use_until_reset(make_task, recording_executor_factory):
    orchestrator = Orchestrator(_config())
    orchestrator.run([make_task("a")], recording_executor_factory())

    with pytest.raises(OrchestratorError, match="reset"):
        orchestrator.run([make_task("a")], recording_executor_factory())

    orchestrator.reset()
    assert orchestrator.results() == {}
    assert orchestrator.status()["completed"] == 0
    results = orchestrator.run([make_task("b")], recording_executor_factory())
    assert list(results) == ["b"]
    assert orchestrator.status()["completed"] == 1


def test_workflow_complete_event_reports_totals(make_task, recording_executor_factory, event_log):
    events, record = event_log
    executor = recording_executor_factory(fail={"b": ProviderError("x")})

    Orchestrator(_config(2, on_progress=record)).run(_diamond(make_task), executor)

    summary = events[-1]
    assert summary.type is EventType.WORKFLOW_COMPLETE
    assert summary.data["total"] == 4
    assert summary.data["completed"] == 2
    assert summary.data["failed"] == 1
    assert summary.data["skipped"] == 1
    assert summary.data["tokens"] == 20


@pytest.mark.parametrize("value", [0, -1, True])
def test_config_rejects_invalid_parallelism(value):
    with pytest.raises(ValueError, match="max_parallel_agents"):
        OrchestratorConfig(
            max_parallel_agents=value,
            context_strategy=ContextStrategy.SHARED,
            enable_communication=False,
        )


def test_config_accepts_enum_values_as_strings():
    config = OrchestratorConfig(
        max_parallel_agents=2,
        context_strategy="isolated",
        enable_communication=True,
        failure_policy="run_on_partial",
    )

    assert config.context_strategy is ContextStrategy.ISOLATED
    assert config.failure_policy is FailurePolicy.RUN_ON_PARTIAL
