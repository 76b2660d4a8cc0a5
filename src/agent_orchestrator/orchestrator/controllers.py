"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from agent_orchestrator.config import Settings
from agent_orchestrator.orchestrator.backend.base import AgentExecutor
from agent_orchestrator.orchestrator.backend.cli_backend import CliAgentExecutor
from agent_orchestrator.orchestrator.backend.echo import EchoExecutor
from agent_orchestrator.orchestrator.errors import OrchestratorError, WorkflowValidationError
from agent_orchestrator.orchestrator.events import ProgressEvent
from agent_orchestrator.orchestrator.graph import TaskGraph
from agent_orchestrator.orchestrator.models import AgentTask, TaskResult, TaskStatus
from agent_orchestrator.orchestrator.reporting import (
    estimate_results_cost,
    estimate_workflow_cost,
    estimate_workflow_duration,
    format_report,
    summarize_results,
)
from agent_orchestrator.orchestrator.scheduler import Orchestrator
from agent_orchestrator.orchestrator.workflows import (
    WorkflowDefinition,
    get_workflow,
    list_workflows,
    load_workflow_file,
    search_workflows,
    workflows_by_category,
)

logger = logging.getLogger(__name__)

EXECUTOR_CHOICES = ("echo", "cli")
_SENTINEL = object()


@dataclass(slots=True)
class WorkflowListCommand:
    """Input for workflow listing."""

    category: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(slots=True)
class WorkflowShowCommand:
    """Input for showing one workflow."""

    workflow_ref: str


@dataclass(slots=True)
class WorkflowEstimateCommand:
    """Input for cost/duration estimation."""

    workflow_ref: str
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class RunCommand:
    """Input for running a workflow."""

    workflow_ref: str
    parameters: dict[str, str] = field(default_factory=dict)
    max_parallel_agents: int | None = None
    context_strategy: str | None = None
    failure_policy: str | None = None
    executor: str = "echo"
    report_path: Path | None = None
    simulate_failures: dict[str, str] = field(default_factory=dict)
    fail_on_error: bool = True


class OrchestratorCliController:
    """Coordinates workflow catalogue and run CLI operations."""

    def list_workflows(self, command: WorkflowListCommand) -> list[str]:
        if command.category:
            workflows = workflows_by_category(command.category)
        else:
            workflows = list_workflows()
        if command.tags:
            tagged = {workflow.id for workflow in search_workflows(command.tags)}
            workflows = [workflow for workflow in workflows if workflow.id in tagged]

        lines = [f"Workflows: {len(workflows)}"]
        for workflow in workflows:
            lines.append(
                f"  {workflow.id} category={workflow.category} "
                f"complexity={workflow.complexity} tasks={len(workflow.tasks)} "
                f"tags={','.join(workflow.tags) or '-'}",
            )
        return lines

    def show_workflow(self, command: WorkflowShowCommand) -> list[str]:
        workflow = resolve_workflow_ref(command.workflow_ref)
        lines = [
            f"Workflow: {workflow.id}",
            f"Name: {workflow.name}",
            f"Category: {workflow.category}",
            f"Complexity: {workflow.complexity}",
            f"Tags: {', '.join(workflow.tags) or '-'}",
            f"Description: {workflow.description or '-'}",
            f"Parameters: {len(workflow.parameters)}",
        ]
        for spec in workflow.parameters:
            requirement = "required" if spec.required else f"default={spec.default!r}"
            lines.append(f"  {spec.name} ({requirement}) {spec.description}".rstrip())
        lines.append("")
        lines.extend(TaskGraph.build(_template_tasks(workflow)).render_tree().splitlines())
        return lines

    def estimate(self, command: WorkflowEstimateCommand) -> list[str]:
        workflow = resolve_workflow_ref(command.workflow_ref)
        tasks = workflow.resolve(command.parameters)
        cost = estimate_workflow_cost(tasks)
        duration = estimate_workflow_duration(tasks)
        return [
            f"Workflow: {workflow.id}",
            f"Tasks: {len(tasks)}",
            f"Estimated cost: ${cost:.4f}",
            f"Estimated duration: ~{duration}s",
        ]

    def run(self, command: RunCommand) -> Iterator[str]:
        """Run a workflow, yielding progress lines followed by the report."""

        settings = _settings_for(command)
        workflow = resolve_workflow_ref(command.workflow_ref)
        tasks = workflow.resolve(command.parameters)
        executor = _build_executor(command, settings)

        progress_q: queue.Queue[str | object] = queue.Queue()

        def _on_progress(event: ProgressEvent) -> None:
            progress_q.put(event.describe())

        orchestrator = Orchestrator(settings.orchestrator_config(on_progress=_on_progress))
        result_holder: list[dict[str, TaskResult]] = []
        error_holder: list[Exception] = []

        def _run() -> None:
            try:
                result_holder.append(orchestrator.run(tasks, executor))
            except Exception as exc:  # noqa: BLE001
                error_holder.append(exc)
            finally:
                progress_q.put(_SENTINEL)

        yield (
            f"Running workflow {workflow.id}: tasks={len(tasks)} "
            f"max_parallel_agents={settings.orchestrator.max_parallel_agents} "
            f"executor={command.executor}"
        )
        worker_thread = threading.Thread(target=_run, name="orchestrator-run", daemon=True)
        worker_thread.start()

        while True:
            try:
                item = progress_q.get()
            except KeyboardInterrupt:
                orchestrator.cancel()
                yield "Cancelling: waiting for running tasks to finish..."
                continue
            if item is _SENTINEL:
                break
            yield str(item)

        worker_thread.join(timeout=10)
        if error_holder:
            raise error_holder[0]

        results = result_holder[0]
        report = format_report(
            results,
            title=workflow.name,
            workflow_id=workflow.id,
            category=workflow.category,
        )
        if command.report_path is not None:
            command.report_path.parent.mkdir(parents=True, exist_ok=True)
            command.report_path.write_text(report, "utf-8")
            yield f"Report written to {command.report_path}"
        else:
            yield ""
            yield from report.splitlines()

        summary = summarize_results(results)
        cost = estimate_results_cost(results, pricing=settings.executor.pricing)
        yield (
            f"Summary: completed={summary.completed} failed={summary.failed} "
            f"skipped={summary.skipped} tokens={summary.total_tokens} "
            f"cost={'-' if cost is None else f'${cost:.4f}'}"
        )
        if command.fail_on_error and summary.completed != summary.total:
            not_completed = [
                task_id
                for task_id, result in results.items()
                if result.status is not TaskStatus.COMPLETED
            ]
            raise OrchestratorError(
                f"{len(not_completed)} task(s) did not complete: {', '.join(not_completed)}",
            )


def resolve_workflow_ref(reference: str) -> WorkflowDefinition:
    """A built-in workflow id or a path to a JSON workflow file."""

    path = Path(reference)
    if path.suffix.lower() == ".json" or path.is_file():
        definition = load_workflow_file(path)
        logger.info("Loaded workflow %s from %s", definition.id, path)
        return definition
    workflow = get_workflow(reference)
    if workflow is None:
        known = ", ".join(item.id for item in list_workflows())
        raise WorkflowValidationError(
            f"Unknown workflow {reference!r}. Known workflows: {known}",
            problems=[f"unknown workflow {reference!r}"],
        )
    return workflow


def _settings_for(command: RunCommand) -> Settings:
    settings = Settings.from_env()
    if command.max_parallel_agents is not None:
        settings.orchestrator.max_parallel_agents = command.max_parallel_agents
    if command.context_strategy is not None:
        settings.orchestrator.context_strategy = command.context_strategy
    if command.failure_policy is not None:
        settings.orchestrator.failure_policy = command.failure_policy
    settings.validate()
    return settings


def _build_executor(command: RunCommand, settings: Settings) -> AgentExecutor:
    if command.executor == "cli":
        return CliAgentExecutor(settings.executor)
    if command.executor == "echo":
        return EchoExecutor(failures=command.simulate_failures)
    raise ValueError(
        f"Unknown executor {command.executor!r}; expected one of {', '.join(EXECUTOR_CHOICES)}",
    )


def _template_tasks(workflow: WorkflowDefinition) -> list[AgentTask]:
    """Unresolved tasks, good enough for graph rendering."""

    return [
        AgentTask(
            id=template.id,
            agent_id=template.agent_id,
            description=template.description,
            prompt=template.prompt,
            dependencies=template.dependencies,
            priority=template.priority,
        )
        for template in workflow.tasks
    ]


def parse_key_values(values: tuple[str, ...] | list[str], *, option: str) -> dict[str, str]:
    """Parse repeated ``key=value`` CLI options."""

    parsed: dict[str, str] = {}
    for raw in values:
        key, separator, value = raw.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"Invalid {option} value {raw!r}; expected key=value.")
        parsed[key.strip()] = value.strip()
    return parsed

