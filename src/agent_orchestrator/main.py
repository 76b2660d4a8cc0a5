"""CLI entrypoint for agent-orchestrator."""

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

import rich_click as click

from agent_orchestrator import __version__
from agent_orchestrator.orchestrator.controllers import (
    EXECUTOR_CHOICES,
    OrchestratorCliController,
    RunCommand,
    WorkflowEstimateCommand,
    WorkflowListCommand,
    WorkflowShowCommand,
    parse_key_values,
)
from agent_orchestrator.orchestrator.errors import OrchestratorError
from agent_orchestrator.orchestrator.models import ContextStrategy, FailurePolicy

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="agent-orchestrator")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for orchestrator internals (written to stderr).",
)
def agent_orchestrator(log_level: str) -> None:
    """Dependency-aware orchestration of agent task workflows."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_orchestrator.group()
def workflows() -> None:
    """Workflow catalogue commands."""


@workflows.command("list")
@click.option("--category", default=None, help="Only workflows in this category.")
@click.option("--tag", "tags", multiple=True, help="Only workflows with this tag. Can be repeated.")
def workflows_list(category: str | None, tags: tuple[str, ...]) -> None:
    """List built-in workflows."""

    _emit_lines(
        ORCHESTRATOR_CONTROLLER.list_workflows(
            WorkflowListCommand(category=category, tags=tags),
        ),
    )


@workflows.command("show")
@click.argument("workflow_ref")
def workflows_show(workflow_ref: str) -> None:
    """Show a workflow's parameters and dependency tree (id or JSON file)."""

    _guarded(lambda: ORCHESTRATOR_CONTROLLER.show_workflow(WorkflowShowCommand(workflow_ref)))


@workflows.command("estimate")
@click.argument("workflow_ref")
@click.option("--param", "params", multiple=True, help="Workflow parameter as key=value.")
def workflows_estimate(workflow_ref: str, params: tuple[str, ...]) -> None:
    """Estimate cost and duration of a workflow before running it."""

    _guarded(
        lambda: ORCHESTRATOR_CONTROLLER.estimate(
            WorkflowEstimateCommand(
                workflow_ref=workflow_ref,
                parameters=parse_key_values(params, option="--param"),
            ),
        ),
    )


@agent_orchestrator.command("run")
@click.argument("workflow_ref")
@click.option("--param", "params", multiple=True, help="Workflow parameter as key=value.")
@click.option(
    "--max-parallel",
    type=click.IntRange(min=1),
    default=None,
    help="Concurrency bound. Defaults to AGENT_ORCHESTRATOR_MAX_PARALLEL_AGENTS.",
)
@click.option(
    "--context-strategy",
    type=click.Choice([item.value for item in ContextStrategy]),
    default=None,
    help="What upstream results each task sees.",
)
@click.option(
    "--failure-policy",
    type=click.Choice([item.value for item in FailurePolicy]),
    default=None,
    help="How a failure affects tasks downstream of it.",
)
@click.option(
    "--executor",
    type=click.Choice(EXECUTOR_CHOICES),
    default="echo",
    show_default=True,
    help="`echo` runs in-process; `cli` invokes the configured CLI agents.",
)
@click.option(
    "--simulate-failure",
    "simulate_failures",
    multiple=True,
    help="Echo executor only: task_id=kind (rate_limited, timeout, provider_error, ...).",
)
@click.option(
    "--report",
    "report_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Write the markdown report here instead of printing it.",
)
@click.option(
    "--fail-on-error/--no-fail-on-error",
    default=True,
    show_default=True,
    help="Exit non-zero when any task does not complete.",
)
def run(  # noqa: PLR0913
    workflow_ref: str,
    params: tuple[str, ...],
    max_parallel: int | None,
    context_strategy: str | None,
    failure_policy: str | None,
    executor: str,
    simulate_failures: tuple[str, ...],
    report_path: Path | None,
    fail_on_error: bool,
) -> None:
    """Run a workflow (built-in id or JSON file) and print progress and a report."""

    def _lines() -> Iterable[str]:
        return ORCHESTRATOR_CONTROLLER.run(
            RunCommand(
                workflow_ref=workflow_ref,
                parameters=parse_key_values(params, option="--param"),
                max_parallel_agents=max_parallel,
                context_strategy=context_strategy,
                failure_policy=failure_policy,
                executor=executor,
                report_path=report_path,
                simulate_failures=parse_key_values(simulate_failures, option="--simulate-failure"),
                fail_on_error=fail_on_error,
            ),
        )

    _guarded(_lines)


def _guarded(produce: Callable[[], Iterable[str]]) -> None:
    """Emit controller output, turning domain and configuration errors into CLI errors."""

    try:
        _emit_lines(produce())
    except (OrchestratorError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: Iterable[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_orchestrator()
