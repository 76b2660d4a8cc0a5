"""Runtime configuration for orchestration runs and CLI agent executors."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from agent_orchestrator.orchestrator.events import EventHandler
from agent_orchestrator.orchestrator.models import ContextStrategy, FailurePolicy
from agent_orchestrator.orchestrator.pricing import ModelPricing, parse_pricing
from agent_orchestrator.orchestrator.scheduler import OrchestratorConfig

ENV_PREFIX = "AGENT_ORCHESTRATOR_"
SUPPORTED_AGENTS = ("claude", "codex", "gemini")

DEFAULT_COMMAND_TEMPLATES = {
    "claude": (
        "claude -p --model {model} --permission-mode dontAsk "
        '--allowed-tools "Read,Write,Edit" -- {prompt}'
    ),
    "codex": "codex exec --sandbox workspace-write --model {model} {prompt}",
    "gemini": "gemini --model {model} --approval-mode auto_edit --prompt {prompt}",
}
DEFAULT_MODELS = {
    "claude": "sonnet",
    "codex": "gpt-5-codex",
    "gemini": "gemini-2.5-pro",
}


@dataclass(slots=True)
class AgentRoute:
    """CLI agent (and optionally model) serving one agent role."""

    agent: str
    model: str | None = None


@dataclass(slots=True)
class OrchestratorSettings:
    """Scheduling settings."""

    max_parallel_agents: int = 3
    context_strategy: str = ContextStrategy.SHARED.value
    enable_communication: bool = True
    failure_policy: str = FailurePolicy.SKIP_DEPENDENTS.value
    message_history_limit: int = 100
    context_max_chars: int = 2_000


@dataclass(slots=True)
class ExecutorSettings:
    """CLI agent executor settings."""

    default_agent: str = "claude"
    timeout_seconds: int = 600
    command_templates: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_COMMAND_TEMPLATES),
    )
    models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODELS))
    agent_routes: dict[str, AgentRoute] = field(default_factory=dict)
    transient_exit_codes: tuple[int, ...] = (75,)
    pricing: dict[tuple[str, str], ModelPricing] = field(default_factory=dict)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``AGENT_ORCHESTRATOR_*`` environment variables."""

        return cls(
            orchestrator=OrchestratorSettings(
                max_parallel_agents=_env_int("MAX_PARALLEL_AGENTS", 3),
                context_strategy=_env("CONTEXT_STRATEGY", "shared").strip().lower(),
                enable_communication=_env_bool(
                    f"{ENV_PREFIX}ENABLE_COMMUNICATION",
                    default=True,
                ),
                failure_policy=_env("FAILURE_POLICY", "skip_dependents").strip().lower(),
                message_history_limit=_env_int("MESSAGE_HISTORY_LIMIT", 100),
                context_max_chars=_env_int("CONTEXT_MAX_CHARS", 2_000),
            ),
            executor=ExecutorSettings(
                default_agent=_env("DEFAULT_AGENT", "claude").strip().lower(),
                timeout_seconds=_env_int("EXECUTOR_TIMEOUT_SECONDS", 600),
                command_templates={
                    agent: _env(f"{agent.upper()}_COMMAND_TEMPLATE", template)
                    for agent, template in DEFAULT_COMMAND_TEMPLATES.items()
                },
                models={
                    agent: _env(f"{agent.upper()}_MODEL", model)
                    for agent, model in DEFAULT_MODELS.items()
                },
                agent_routes=_parse_agent_routes(_env("AGENT_ROUTES", "")),
                transient_exit_codes=_parse_exit_codes(_env("TRANSIENT_EXIT_CODES", "75")),
                pricing=parse_pricing(_env("LLM_PRICING", "")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        orchestrator = self.orchestrator
        if orchestrator.max_parallel_agents < 1:
            raise ValueError(f"{ENV_PREFIX}MAX_PARALLEL_AGENTS must be >= 1.")
        if orchestrator.context_strategy not in {item.value for item in ContextStrategy}:
            raise ValueError(
                f"{ENV_PREFIX}CONTEXT_STRATEGY must be one of "
                f"{', '.join(item.value for item in ContextStrategy)}; "
                f"got {orchestrator.context_strategy!r}.",
            )
        if orchestrator.failure_policy not in {item.value for item in FailurePolicy}:
            raise ValueError(
                f"{ENV_PREFIX}FAILURE_POLICY must be one of "
                f"{', '.join(item.value for item in FailurePolicy)}; "
                f"got {orchestrator.failure_policy!r}.",
            )
        if orchestrator.message_history_limit < 1:
            raise ValueError(f"{ENV_PREFIX}MESSAGE_HISTORY_LIMIT must be >= 1.")
        if orchestrator.context_max_chars < 0:
            raise ValueError(f"{ENV_PREFIX}CONTEXT_MAX_CHARS must be >= 0.")

        executor = self.executor
        if executor.timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}EXECUTOR_TIMEOUT_SECONDS must be > 0.")
        if executor.default_agent not in SUPPORTED_AGENTS:
            raise ValueError(
                f"{ENV_PREFIX}DEFAULT_AGENT must be one of {', '.join(SUPPORTED_AGENTS)}; "
                f"got {executor.default_agent!r}.",
            )
        for agent in SUPPORTED_AGENTS:
            template = executor.command_templates.get(agent, "")
            if not template.strip():
                raise ValueError(f"{ENV_PREFIX}{agent.upper()}_COMMAND_TEMPLATE is empty.")
            if "{prompt}" not in template and "{prompt_file}" not in template:
                raise ValueError(
                    f"{ENV_PREFIX}{agent.upper()}_COMMAND_TEMPLATE must include "
                    "{prompt} or {prompt_file}.",
                )
            if not executor.models.get(agent, "").strip():
                raise ValueError(f"{ENV_PREFIX}{agent.upper()}_MODEL is empty.")
        for role, route in executor.agent_routes.items():
            if route.agent not in SUPPORTED_AGENTS:
                raise ValueError(
                    f"{ENV_PREFIX}AGENT_ROUTES maps role {role!r} to unsupported "
                    f"agent {route.agent!r}.",
                )

    def orchestrator_config(self, on_progress: EventHandler | None = None) -> OrchestratorConfig:
        """Build the run configuration from validated settings."""

        orchestrator = self.orchestrator
        return OrchestratorConfig(
            max_parallel_agents=orchestrator.max_parallel_agents,
            context_strategy=ContextStrategy(orchestrator.context_strategy),
            enable_communication=orchestrator.enable_communication,
            on_progress=on_progress,
            failure_policy=FailurePolicy(orchestrator.failure_policy),
            message_history_limit=orchestrator.message_history_limit,
            context_max_chars=orchestrator.context_max_chars,
        )


def _parse_agent_routes(raw: str) -> dict[str, AgentRoute]:
    """Parse ``role=agent[:model]`` entries separated by commas."""

    routes: dict[str, AgentRoute] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ValueError(
                f"Invalid {ENV_PREFIX}AGENT_ROUTES entry: {token!r}. "
                "Expected format '<role>=<agent>[:<model>]'.",
            )
        role, target = (item.strip() for item in token.split("=", 1))
        agent, _, model = target.partition(":")
        if not role or not agent.strip():
            raise ValueError(f"Invalid {ENV_PREFIX}AGENT_ROUTES entry: {token!r}.")
        routes[role] = AgentRoute(agent=agent.strip().lower(), model=model.strip() or None)
    return routes


def _parse_exit_codes(raw: str) -> tuple[int, ...]:
    codes: list[int] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            codes.append(int(token))
        except ValueError as error:
            raise ValueError(
                f"Invalid {ENV_PREFIX}TRANSIENT_EXIT_CODES value: {token!r}",
            ) from error
    return tuple(codes)


def _env(suffix: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{suffix}", default)


def _env_int(suffix: str, default: int) -> int:
    name = f"{ENV_PREFIX}{suffix}"
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
