"""Shared test fixtures."""

from __future__ import annotations

import sys
import threading
import time
from collections.abc import Callable

import pytest

from agent_orchestrator.config import ExecutorSettings
from agent_orchestrator.orchestrator.events import ProgressEvent
from agent_orchestrator.orchestrator.models import AgentTask, TaskOutput
from agent_orchestrator.orchestrator.results import ExecutionContext

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m agent_orchestrator.orchestrator.backend.echo_agent "
    "--model {model} --prompt-file {prompt_file}"
)

_AGENT_ENV_SUFFIXES = (
    "MAX_PARALLEL_AGENTS",
    "CONTEXT_STRATEGY",
    "ENABLE_COMMUNICATION",
    "FAILURE_POLICY",
    "MESSAGE_HISTORY_LIMIT",
    "CONTEXT_MAX_CHARS",
    "DEFAULT_AGENT",
    "EXECUTOR_TIMEOUT_SECONDS",
    "AGENT_ROUTES",
    "TRANSIENT_EXIT_CODES",
    "LLM_PRICING",
    "CLAUDE_COMMAND_TEMPLATE",
    "CODEX_COMMAND_TEMPLATE",
    "GEMINI_COMMAND_TEMPLATE",
    "CLAUDE_MODEL",
    "CODEX_MODEL",
    "GEMINI_MODEL",
)


@pytest.fixture(autouse=True)
def _clean_orchestrator_env(monkeypatch):
    """Keep developer environment variables out of settings-driven tests."""
    for suffix in _AGENT_ENV_SUFFIXES:
        monkeypatch.delenv(f"AGENT_ORCHESTRATOR_{suffix}", raising=False)


@pytest.fixture()
def echo_agent(monkeypatch):
    """Route every CLI agent to the bundled echo agent script."""
    for agent in ("CLAUDE", "CODEX", "GEMINI"):
        monkeypatch.setenv(
            f"AGENT_ORCHESTRATOR_{agent}_COMMAND_TEMPLATE",
            ECHO_AGENT_COMMAND_TEMPLATE,
        )


@pytest.fixture()
def echo_agent_command() -> str:
    return ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def echo_executor_settings() -> ExecutorSettings:
    return ExecutorSettings(
        default_agent="codex",
        timeout_seconds=30,
        command_templates={
            "claude": ECHO_AGENT_COMMAND_TEMPLATE,
            "codex": ECHO_AGENT_COMMAND_TEMPLATE,
            "gemini": ECHO_AGENT_COMMAND_TEMPLATE,
        },
    )


@pytest.fixture()
def make_task() -> Callable[..., AgentTask]:
    def _make(task_id: str, *deps: str, priority: int = 5, **kwargs) -> AgentTask:
        return AgentTask(
            id=task_id,
            agent_id=kwargs.pop("agent_id", f"{task_id}-agent"),
            description=kwargs.pop("description", f"Task {task_id}"),
            prompt=kwargs.pop("prompt", f"Do {task_id}"),
            dependencies=deps,
            priority=priority,
            **kwargs,
        )

    return _make


class RecordingExecutor:
    """Executor double that records calls and the contexts it was given.

    ``fail`` maps task ids to exceptions to raise; ``delays`` maps task ids
    to seconds to sleep before answering.
    """

    def __init__(
        self,
        *,
        fail: dict[str, Exception] | None = None,
        delays: dict[str, float] | None = None,
        on_call: Callable[[AgentTask], None] | None = None,
    ) -> None:
        self.fail = dict(fail or {})
        self.delays = dict(delays or {})
        self.on_call = on_call
        self.calls: list[str] = []
        self.contexts: dict[str, ExecutionContext] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run(self, task: AgentTask, context: ExecutionContext) -> TaskOutput:
        with self._lock:
            self.calls.append(task.id)
            self.contexts[task.id] = context
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.on_call is not None:
                self.on_call(task)
            time.sleep(self.delays.get(task.id, 0.0))
            if task.id in self.fail:
                raise self.fail[task.id]
            return TaskOutput(output=f"output of {task.id}", tokens_used=10)
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture()
def recording_executor_factory() -> Callable[..., RecordingExecutor]:
    return RecordingExecutor


@pytest.fixture()
def event_log() -> tuple[list[ProgressEvent], Callable[[ProgressEvent], None]]:
    events: list[ProgressEvent] = []
    lock = threading.Lock()

    def _record(event: ProgressEvent) -> None:
        with lock:
            events.append(event)

    return events, _record
