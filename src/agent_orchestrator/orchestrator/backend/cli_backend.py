"""Subprocess-based executor for CLI coding agents (claude, codex, gemini)."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from agent_orchestrator.config import ExecutorSettings
from agent_orchestrator.orchestrator.backend.echo import estimate_tokens
from agent_orchestrator.orchestrator.errors import (
    ExecutorTimeoutError,
    InvalidResponseError,
    ProviderError,
)
from agent_orchestrator.orchestrator.failure_classifier import classify_executor_failure
from agent_orchestrator.orchestrator.models import AgentTask, TaskOutput
from agent_orchestrator.orchestrator.pricing import estimate_cost_usd
from agent_orchestrator.orchestrator.results import ExecutionContext
from agent_orchestrator.orchestrator.sanitization import sanitize_preview
from agent_orchestrator.orchestrator.usage import extract_usage

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_ERROR_PREVIEW_CHARS = 500

_OUTPUT_CONVENTION = """\
Respond with the deliverable only.
Put code in fenced blocks tagged with their language (```python).
Precede each code block with a line `File: <relative path>` naming its target file."""


@dataclass(slots=True)
class ResolvedRoute:
    """CLI agent, model and command template chosen for one task."""

    agent: str
    model: str
    command_template: str


@dataclass(slots=True)
class _ProcessOutcome:
    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str


class CliAgentExecutor:
    """Run each task through a CLI agent resolved from the task's role.

    Routing: ``AGENT_ROUTES`` maps a role (``AgentTask.agent_id``) to a CLI
    agent and optional model; unrouted roles use the default agent. A model
    set on the task itself wins over both.
    """

    def __init__(self, settings: ExecutorSettings, *, os_name: str | None = None) -> None:
        self._settings = settings
        self._os_name = os_name or os.name

    def resolve_route(self, task: AgentTask) -> ResolvedRoute:
        route = self._settings.agent_routes.get(task.agent_id)
        agent = route.agent if route is not None else self._settings.default_agent
        template = self._settings.command_templates.get(agent, "").strip()
        if not template:
            raise ProviderError(
                f"No command template configured for agent {agent!r}",
                details={"agent_id": task.agent_id, "agent": agent},
            )
        model = task.model or (route.model if route is not None else None) or (
            self._settings.models.get(agent, "")
        )
        return ResolvedRoute(agent=agent, model=model, command_template=template)

    def run(self, task: AgentTask, context: ExecutionContext) -> TaskOutput:
        route = self.resolve_route(task)
        prompt = build_agent_prompt(task, context)
        started = time.monotonic()

        with tempfile.TemporaryDirectory(prefix="agent-task-") as workdir:
            prompt_file = Path(workdir) / "prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            run_args, command_head = build_run_args(
                command_template=route.command_template,
                model=route.model,
                prompt=prompt,
                prompt_file=prompt_file,
                os_name=self._os_name,
            )
            env = os.environ.copy()
            env["AGENT_ORCHESTRATOR_TASK_ID"] = task.id
            env["AGENT_ORCHESTRATOR_AGENT_ID"] = task.agent_id
            env["AGENT_ORCHESTRATOR_LLM_MODEL"] = route.model

            logger.info(
                "Running task %s via %s (model=%s)",
                task.id,
                route.agent,
                route.model,
            )
            try:
                outcome = _run_subprocess(
                    run_args=run_args,
                    env=env,
                    workdir=Path(workdir),
                    timeout_seconds=self._settings.timeout_seconds,
                )
            except FileNotFoundError as error:
                raise ProviderError(
                    f"CLI agent command not found: {command_head}",
                    details={"agent": route.agent, "transient": False},
                ) from error
            except OSError as error:
                raise ProviderError(
                    f"CLI agent failed to start: {error}",
                    details={"agent": route.agent, "transient": True},
                ) from error

        duration_ms = int((time.monotonic() - started) * 1000)
        details: dict[str, object] = {
            "agent": route.agent,
            "model": route.model,
            "exit_code": outcome.exit_code,
        }
        if outcome.timed_out:
            raise ExecutorTimeoutError(
                f"CLI agent {route.agent} timed out after {self._settings.timeout_seconds}s",
                details=details,
            )
        if outcome.exit_code != 0:
            classification = classify_executor_failure(
                agent=route.agent,
                exit_code=outcome.exit_code,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                transient_exit_codes=self._settings.transient_exit_codes,
            )
            excerpt = sanitize_preview(
                outcome.stderr or outcome.stdout,
                max_chars=_ERROR_PREVIEW_CHARS,
            )
            raise classification.to_error(
                f"CLI agent {route.agent} exited with code {outcome.exit_code}: {excerpt}",
                agent=route.agent,
                model=route.model,
            )
        if not outcome.stdout.strip():
            raise InvalidResponseError(
                f"CLI agent {route.agent} produced no output",
                details={**details, "stderr": sanitize_preview(outcome.stderr)},
            )

        usage = extract_usage(agent=route.agent, stdout=outcome.stdout, stderr=outcome.stderr)
        tokens_used = (
            usage.total_tokens
            if usage.total_tokens is not None
            else estimate_tokens(prompt) + estimate_tokens(outcome.stdout)
        )
        cost = estimate_cost_usd(
            agent=route.agent,
            model=route.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=tokens_used,
            pricing=self._settings.pricing,
        )
        return TaskOutput(
            output=outcome.stdout.strip(),
            tokens_used=tokens_used,
            duration_ms=duration_ms,
            metadata={**details, **usage.to_metadata(), "cost_usd": cost},
        )


def build_agent_prompt(task: AgentTask, context: ExecutionContext) -> str:
    """Wrap the task prompt with upstream context and the output convention."""

    sections = [f"## Task: {task.description}", task.prompt.strip()]
    rendered = context.render()
    if rendered:
        sections.append(rendered)
    sections.append(_OUTPUT_CONVENTION)
    return "\n\n".join(sections) + "\n"


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
    os_name: str | None = None,
) -> tuple[str | list[str], str]:
    """Render a command template into subprocess arguments and the command head."""

    stripped = command_template.strip()
    if not stripped:
        raise ProviderError("CLI agent command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise ProviderError("CLI agent command template must include {prompt} or {prompt_file}.")

    quote = subprocess.list2cmdline if (os_name or os.name) == "nt" else None
    values = {"model": model, "prompt": prompt, "prompt_file": str(prompt_file)}
    try:
        if quote is not None:
            rendered = stripped.format(**{key: quote([value]) for key, value in values.items()})
            if not rendered.strip():
                raise ProviderError("CLI agent command template rendered empty command.")
            return rendered, rendered.split(maxsplit=1)[0]
        rendered = stripped.format(**{key: shlex.quote(value) for key, value in values.items()})
    except KeyError as error:
        raise ProviderError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise ProviderError("CLI agent command template rendered empty command.")
    return argv, argv[0]


def _run_subprocess(
    *,
    run_args: str | list[str],
    env: dict[str, str],
    workdir: Path,
    timeout_seconds: int,
) -> _ProcessOutcome:
    stdout_path = workdir / "stdout.txt"
    stderr_path = workdir / "stderr.txt"
    with (
        stdout_path.open("w", encoding="utf-8") as stdout_handle,
        stderr_path.open("w", encoding="utf-8") as stderr_handle,
    ):
        process = subprocess.Popen(  # noqa: S603
            run_args,
            env=env,
            cwd=workdir,
            stdout=stdout_handle,
            stderr=stderr_handle,
            text=True,
        )
        try:
            exit_code = process.wait(timeout=timeout_seconds)
            timed_out = False
        except subprocess.TimeoutExpired:
            _terminate_process(process)
            exit_code = TIMEOUT_EXIT_CODE
            timed_out = True

    return _ProcessOutcome(
        exit_code=exit_code,
        timed_out=timed_out,
        stdout=stdout_path.read_text("utf-8", errors="replace"),
        stderr=stderr_path.read_text("utf-8", errors="replace"),
    )


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
