"""Parameterised workflow definitions and the built-in workflow registry."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_orchestrator.orchestrator.backend.base import AgentExecutor
from agent_orchestrator.orchestrator.errors import WorkflowValidationError
from agent_orchestrator.orchestrator.models import DEFAULT_PRIORITY, AgentTask, TaskResult
from agent_orchestrator.orchestrator.scheduler import Orchestrator, OrchestratorConfig

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
ANY_PLACEHOLDER_RE = re.compile(r"\{\{.*?\}\}")
COMPLEXITY_LEVELS = ("simple", "moderate", "complex")


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """One workflow parameter."""

    name: str
    description: str = ""
    required: bool = False
    default: Any = None


@dataclass(frozen=True, slots=True)
class TaskTemplate:
    """Task blueprint whose description and prompt may contain ``{{parameter}}``."""

    id: str
    agent_id: str
    description: str
    prompt: str
    dependencies: tuple[str, ...] = ()
    priority: int = DEFAULT_PRIORITY
    max_tokens: int | None = None
    model: str | None = None
    context: Mapping[str, Any] = field(default_factory=dict)

    def placeholders(self) -> set[str]:
        return set(PLACEHOLDER_RE.findall(self.description)) | set(
            PLACEHOLDER_RE.findall(self.prompt),
        )

    def malformed_placeholders(self) -> list[str]:
        """``{{...}}`` markers that are not a parameter name, such as ``{{project-name}}``."""

        return [
            marker
            for text in (self.description, self.prompt)
            for marker in ANY_PLACEHOLDER_RE.findall(text)
            if not PLACEHOLDER_RE.fullmatch(marker)
        ]


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """A reusable, parameterised task set."""

    id: str
    name: str
    description: str
    category: str
    tasks: tuple[TaskTemplate, ...]
    parameters: tuple[ParameterSpec, ...] = ()
    tags: tuple[str, ...] = ()
    complexity: str = "moderate"
    estimated_duration_seconds: int | None = None

    def parameter(self, name: str) -> ParameterSpec | None:
        return next((spec for spec in self.parameters if spec.name == name), None)

    def resolve(self, parameters: Mapping[str, Any] | None = None) -> list[AgentTask]:
        """Substitute parameters into every template, once, and return concrete tasks.

        Missing required parameters, unknown parameters and placeholders that
        name no declared parameter are reported together in one
        ``WorkflowValidationError``.
        """

        supplied = dict(parameters or {})
        declared = {spec.name for spec in self.parameters}
        problems = [f"Unknown parameter {name!r}" for name in supplied if name not in declared]

        values: dict[str, str] = {}
        for spec in self.parameters:
            if spec.name in supplied and supplied[spec.name] is not None:
                values[spec.name] = render_value(supplied[spec.name])
            elif spec.required:
                problems.append(f"Missing required parameter {spec.name!r}")
            else:
                values[spec.name] = render_value(spec.default)

        for template in self.tasks:
            for name in sorted(template.placeholders() - declared):
                problems.append(f"Unresolved placeholder {{{{{name}}}}} in task {template.id!r}")
            for marker in template.malformed_placeholders():
                problems.append(f"Unresolved placeholder {marker} in task {template.id!r}")

        if problems:
            raise WorkflowValidationError(
                f"Workflow {self.id!r} cannot be resolved: {'; '.join(problems)}",
                problems=problems,
            )

        def substitute(text: str) -> str:
            return PLACEHOLDER_RE.sub(lambda match: values[match.group(1)], text)

        return [
            AgentTask(
                id=template.id,
                agent_id=template.agent_id,
                description=substitute(template.description),
                prompt=substitute(template.prompt),
                dependencies=template.dependencies,
                priority=template.priority,
                context=dict(template.context),
                max_tokens=template.max_tokens,
                model=template.model,
            )
            for template in self.tasks
        ]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowDefinition:
        """Build a definition from its JSON form, collecting every structural problem."""

        problems: list[str] = []
        for key in ("id", "name"):
            if not isinstance(data.get(key), str) or not data[key].strip():
                problems.append(f"'{key}' must be a non-empty string")
        raw_tasks = data.get("tasks")
        if not isinstance(raw_tasks, list) or not raw_tasks:
            problems.append("'tasks' must be a non-empty list")
            raw_tasks = []
        raw_parameters = data.get("parameters", [])
        if not isinstance(raw_parameters, list):
            problems.append("'parameters' must be a list")
            raw_parameters = []

        parameters: list[ParameterSpec] = []
        for index, raw in enumerate(raw_parameters):
            if not isinstance(raw, Mapping) or not isinstance(raw.get("name"), str):
                problems.append(f"parameters[{index}] must be an object with a 'name'")
                continue
            parameters.append(
                ParameterSpec(
                    name=raw["name"],
                    description=str(raw.get("description", "")),
                    required=bool(raw.get("required", False)),
                    default=raw.get("default"),
                ),
            )

        tasks: list[TaskTemplate] = []
        for index, raw in enumerate(raw_tasks):
            template = _task_template_from_dict(raw, index=index, problems=problems)
            if template is not None:
                tasks.append(template)

        complexity = str(data.get("complexity", "moderate"))
        if complexity not in COMPLEXITY_LEVELS:
            problems.append(f"'complexity' must be one of {', '.join(COMPLEXITY_LEVELS)}")

        if problems:
            raise WorkflowValidationError(
                f"Malformed workflow definition: {'; '.join(problems)}",
                problems=problems,
            )

        estimated = data.get("estimated_duration_seconds")
        return cls(
            id=data["id"].strip(),
            name=data["name"].strip(),
            description=str(data.get("description", "")),
            category=str(data.get("category", "custom")),
            tasks=tuple(tasks),
            parameters=tuple(parameters),
            tags=tuple(str(tag) for tag in data.get("tags", [])),
            complexity=complexity,
            estimated_duration_seconds=int(estimated) if estimated is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "complexity": self.complexity,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "parameters": [
                {
                    "name": spec.name,
                    "description": spec.description,
                    "required": spec.required,
                    "default": spec.default,
                }
                for spec in self.parameters
            ],
            "tasks": [
                {
                    "id": template.id,
                    "agent_id": template.agent_id,
                    "description": template.description,
                    "prompt": template.prompt,
                    "dependencies": list(template.dependencies),
                    "priority": template.priority,
                    "max_tokens": template.max_tokens,
                    "model": template.model,
                    "context": dict(template.context),
                }
                for template in self.tasks
            ],
        }


def render_value(value: Any) -> str:
    """Text form of a parameter value as it appears inside prompts."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ", ".join(render_value(item) for item in value)
    if isinstance(value, Mapping):
        return json.dumps(dict(value), ensure_ascii=False, sort_keys=True)
    return str(value)


def load_workflow_file(path: Path | str) -> WorkflowDefinition:
    """Read a JSON workflow definition from disk."""

    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise WorkflowValidationError(
            f"Workflow file {file_path} is not valid JSON: {error}",
            problems=[str(error)],
        ) from error
    if not isinstance(data, Mapping):
        raise WorkflowValidationError(
            f"Workflow file {file_path} must contain a JSON object",
            problems=["top-level value is not an object"],
        )
    return WorkflowDefinition.from_dict(data)


def _task_template_from_dict(
    raw: Any,
    *,
    index: int,
    problems: list[str],
) -> TaskTemplate | None:
    if not isinstance(raw, Mapping):
        problems.append(f"tasks[{index}] must be an object")
        return None
    agent_id = raw.get("agent_id", raw.get("agent"))
    missing = [
        key
        for key, value in (
            ("id", raw.get("id")),
            ("agent_id", agent_id),
            ("prompt", raw.get("prompt")),
        )
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        problems.append(f"tasks[{index}] is missing {', '.join(missing)}")
        return None
    dependencies = raw.get("dependencies", [])
    if not isinstance(dependencies, list) or not all(isinstance(dep, str) for dep in dependencies):
        problems.append(f"tasks[{index}].dependencies must be a list of task ids")
        return None
    priority = raw.get("priority", DEFAULT_PRIORITY)
    if isinstance(priority, bool) or not isinstance(priority, int):
        problems.append(f"tasks[{index}].priority must be an integer")
        return None
    context = raw.get("context", {})
    if not isinstance(context, Mapping):
        problems.append(f"tasks[{index}].context must be an object")
        return None
    max_tokens = raw.get("max_tokens")
    return TaskTemplate(
        id=raw["id"],
        agent_id=agent_id,
        description=str(raw.get("description", raw["id"])),
        prompt=raw["prompt"],
        dependencies=tuple(dependencies),
        priority=priority,
        max_tokens=int(max_tokens) if max_tokens is not None else None,
        model=raw.get("model"),
        context=dict(context),
    )


# -- registry -----------------------------------------------------------------

_REGISTRY: dict[str, WorkflowDefinition] = {}
_builtins_loaded = False


def register_workflow(definition: WorkflowDefinition) -> None:
    _ensure_builtins()
    if definition.id in _REGISTRY:
        raise WorkflowValidationError(
            f"Workflow {definition.id!r} is already registered",
            problems=[f"duplicate workflow id {definition.id!r}"],
        )
    _REGISTRY[definition.id] = definition


def get_workflow(workflow_id: str) -> WorkflowDefinition | None:
    _ensure_builtins()
    return _REGISTRY.get(workflow_id)


def list_workflows() -> list[WorkflowDefinition]:
    _ensure_builtins()
    return list(_REGISTRY.values())


def workflows_by_category(category: str) -> list[WorkflowDefinition]:
    wanted = category.strip().lower()
    return [workflow for workflow in list_workflows() if workflow.category.lower() == wanted]


def search_workflows(tags: list[str] | tuple[str, ...]) -> list[WorkflowDefinition]:
    """Workflows carrying at least one of ``tags`` (case-insensitive)."""

    wanted = {tag.strip().lower() for tag in tags if tag.strip()}
    return [
        workflow
        for workflow in list_workflows()
        if wanted & {tag.lower() for tag in workflow.tags}
    ]


def _ensure_builtins() -> None:
    global _builtins_loaded  # noqa: PLW0603
    if _builtins_loaded:
        return
    _builtins_loaded = True
    from agent_orchestrator.orchestrator.catalogue import BUILTIN_WORKFLOWS  # noqa: PLC0415

    for definition in BUILTIN_WORKFLOWS:
        _REGISTRY.setdefault(definition.id, definition)


# -- execution ----------------------------------------------------------------


def run_workflow(
    definition: WorkflowDefinition,
    parameters: Mapping[str, Any] | None,
    executor: AgentExecutor,
    config: OrchestratorConfig,
    *,
    orchestrator: Orchestrator | None = None,
) -> dict[str, TaskResult]:
    """Resolve ``definition`` and run it to completion."""

    tasks = definition.resolve(parameters)
    logger.info("Running workflow %s with %d task(s)", definition.id, len(tasks))
    runner = orchestrator or Orchestrator(config)
    return runner.run(tasks, executor)
