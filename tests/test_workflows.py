from __future__ import annotations

import json

import allure
import pytest

from agent_orchestrator.orchestrator import workflows
from agent_orchestrator.orchestrator.backend.echo import EchoExecutor
from agent_orchestrator.orchestrator.errors import WorkflowValidationError
from agent_orchestrator.orchestrator.graph import TaskGraph
from agent_orchestrator.orchestrator.models import ContextStrategy, TaskStatus
from agent_orchestrator.orchestrator.scheduler import OrchestratorConfig
from agent_orchestrator.orchestrator.workflows import (
    ParameterSpec,
    TaskTemplate,
    WorkflowDefinition,
    get_workflow,
    list_workflows,
    load_workflow_file,
    register_workflow,
    render_value,
    run_workflow,
    search_workflows,
    workflows_by_category,
)

pytestmark = [
    allure.epic("Workflows"),
    allure.feature("Definitions and Registry"),
]

BUILTIN_IDS = ["fullstack-dev", "security-audit", "testing-suite", "code-review"]


@pytest.fixture()
def fresh_registry(monkeypatch):
    monkeypatch.setattr(workflows, "_REGISTRY", {})
    monkeypatch.setattr(workflows, "_builtins_loaded", False)


def _definition(**overrides) -> WorkflowDefinition:
    fields = {
        "id": "greeting",
        "name": "Greeting",
        "description": "Say hello",
        "category": "demo",
        "tasks": (
            TaskTemplate(
                id="draft",
                agent_id="writer",
                description="Draft for {{ audience }}",
                prompt="Write a {{tone}} greeting for {{audience}}.",
            ),
            TaskTemplate(
                id="polish",
                agent_id="editor",
                description="Polish",
                prompt="Polish it. Keep it {{tone}}.",
                dependencies=("draft",),
            ),
        ),
        "parameters": (
            ParameterSpec("audience", required=True),
            ParameterSpec("tone", default="warm"),
        ),
        "tags": ("Demo", "writing"),
    }
    fields.update(overrides)
    return WorkflowDefinition(**fields)


def test_resolve_substitutes_supplied_and_default_values() -> None:
    tasks = _definition().resolve({"audience": "new users"})

    assert [task.id for task in tasks] == ["draft", "polish"]
    assert tasks[0].description == "Draft for new users"
    assert tasks[0].prompt == "Write a warm greeting for new users."
    assert tasks[1].dependencies == ("draft",)


def test_resolve_reports_every_problem_at_once() -> None:
    definition = _definition(
        tasks=(
            TaskTemplate(id="x", agent_id="writer", description="x", prompt="{{undeclared}}"),
        ),
    )

    with pytest.raises(WorkflowValidationError) as excinfo:
        definition.resolve({"bogus": 1})

    assert excinfo.value.problems == (
        "Unknown parameter 'bogus'",
        "Missing required parameter 'audience'",
        "Unresolved placeholder {{undeclared}} in task 'x'",
    )


def test_resolve_is_single_pass() -> None:
    tasks = _definition().resolve({"audience": "{{tone}}"})

    assert tasks[0].prompt == "Write a warm greeting for {{tone}}."


def test_resolve_rejects_placeholders_that_are_not_parameter_names() -> None:
    definition = _definition(
        tasks=(
            TaskTemplate(
                id="x",
                agent_id="writer",
                description="Plan {{ target path }}",
                prompt="Scaffold {{project-name}} for {{audience}}.",
            ),
        ),
    )

    with pytest.raises(WorkflowValidationError) as excinfo:
        definition.resolve({"audience": "ops"})

    assert excinfo.value.problems == (
        "Unresolved placeholder {{ target path }} in task 'x'",
        "Unresolved placeholder {{project-name}} in task 'x'",
    )


def test_optional_parameter_without_default_renders_empty() -> None:
    definition = _definition(parameters=(ParameterSpec("audience"), ParameterSpec("tone")))

    tasks = definition.resolve({})

    assert tasks[0].prompt == "Write a  greeting for ."


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ""),
        ("text", "text"),
        (80, "80"),
        (["auth", "billing"], "auth, billing"),
        ({"b": 1, "a": 2}, '{"a": 2, "b": 1}'),
    ],
)
def test_render_value(value, expected) -> None:
    assert render_value(value) == expected


def test_from_dict_accepts_agent_alias_and_defaults() -> None:
    definition = WorkflowDefinition.from_dict(
        {
            "id": "docs",
            "name": "Docs",
            "tasks": [
                {"id": "outline", "agent": "writer", "prompt": "Outline {{topic}}"},
                {
                    "id": "write",
                    "agent_id": "writer",
                    "prompt": "Write it",
                    "dependencies": ["outline"],
                    "priority": 8,
                },
            ],
            "parameters": [{"name": "topic", "required": True}],
        },
    )

    assert definition.category == "custom"
    assert definition.complexity == "moderate"
    assert definition.tasks[0].agent_id == "writer"
    assert definition.tasks[0].description == "outline"
    assert definition.tasks[1].priority == 8
    assert definition.parameter("topic").required


def test_from_dict_collects_structural_problems() -> None:
    with pytest.raises(WorkflowValidationError) as excinfo:
        WorkflowDefinition.from_dict(
            {
                "id": "",
                "name": "Broken",
                "tasks": [
                    {"id": "a", "prompt": "p"},
                    {"id": "b", "agent_id": "x", "prompt": "p", "priority": "high"},
                ],
                "complexity": "epic",
            },
        )

    problems = excinfo.value.problems
    assert "'id' must be a non-empty string" in problems
    assert "tasks[0] is missing agent_id" in problems
    assert "tasks[1].priority must be an integer" in problems
    assert any(problem.startswith("'complexity' must be one of") for problem in problems)


def test_to_dict_round_trips_through_from_dict() -> None:
    definition = _definition()

    assert WorkflowDefinition.from_dict(definition.to_dict()) == definition


def test_load_workflow_file(tmp_path) -> None:
    path = tmp_path / "workflow.json"
    path.write_text(json.dumps(_definition().to_dict()), "utf-8")

    assert load_workflow_file(path).id == "greeting"


def test_load_workflow_file_rejects_bad_json(tmp_path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", "utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[]", "utf-8")

    with pytest.raises(WorkflowValidationError, match="not valid JSON"):
        load_workflow_file(broken)
    with pytest.raises(WorkflowValidationError, match="JSON object"):
        load_workflow_file(listing)


def test_builtin_catalogue_is_registered(fresh_registry) -> None:
    assert [workflow.id for workflow in list_workflows()] == BUILTIN_IDS
    assert get_workflow("missing") is None
    assert [workflow.id for workflow in workflows_by_category("SECURITY")] == ["security-audit"]
    assert [workflow.id for workflow in search_workflows(["TDD", "nothing"])] == ["testing-suite"]


@pytest.mark.parametrize("workflow_id", BUILTIN_IDS)
def test_builtin_workflows_resolve_to_valid_graphs(fresh_registry, workflow_id) -> None:
    definition = get_workflow(workflow_id)
    parameters = {
        spec.name: "sample" for spec in definition.parameters if spec.required
    }

    tasks = definition.resolve(parameters)

    TaskGraph.build(tasks).validate()
    assert all("{{" not in task.prompt for task in tasks)


def test_fullstack_requires_features(fresh_registry) -> None:
    definition = get_workflow("fullstack-dev")

    with pytest.raises(WorkflowValidationError, match="features"):
        definition.resolve({})

    tasks = definition.resolve({"features": ["auth", "billing"]})
    assert "auth, billing" in tasks[0].prompt


def test_register_rejects_duplicate_ids(fresh_registry) -> None:
    register_workflow(_definition())

    assert get_workflow("greeting") is not None
    with pytest.raises(WorkflowValidationError, match="already registered"):
        register_workflow(_definition())
    with pytest.raises(WorkflowValidationError):
        register_workflow(_definition(id="code-review"))


def test_run_workflow_executes_resolved_tasks() -> None:
    config = OrchestratorConfig(
        max_parallel_agents=2,
        context_strategy=ContextStrategy.ISOLATED,
        enable_communication=False,
    )

    results = run_workflow(_definition(), {"audience": "team"}, EchoExecutor(), config)

    assert list(results) == ["draft", "polish"]
    assert all(result.status is TaskStatus.COMPLETED for result in results.values())
    assert "Write a warm greeting for team." in results["draft"].output
    assert "Built on: draft" in results["polish"].output
