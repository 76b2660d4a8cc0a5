"""Run reports, cost/duration estimates and code extraction.

Output convention
-----------------
``TaskResult.output`` is treated as markdown-ish text. Code an agent
produces is expected in fenced blocks tagged with a language::

    File: src/app/models.py
    ```python
    ...
    ```

An optional ``File:``, ``Path:`` or ``Create:`` line before a block names
its target file. :func:`extract_code_blocks` relies on this convention;
blocks without a hint are named ``<task id>.<language>``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from agent_orchestrator.orchestrator.models import AgentTask, TaskResult, TaskStatus, utc_now
from agent_orchestrator.orchestrator.pricing import (
    TIER_PRICING,
    ModelPricing,
    PricingTable,
    estimate_cost_usd,
    model_tier,
)

ESTIMATED_INPUT_TOKENS = 4_000
DEFAULT_MAX_TOKENS = 16_000
TIER_DURATION_SECONDS = {"haiku": 10, "sonnet": 20, "opus": 40}
PARALLELIZATION_FACTOR = 0.4
OUTPUT_PREVIEW_CHARS = 1_000

_CODE_BLOCK_RE = re.compile(r"```(\w+)\n(.*?)```", re.DOTALL)
_PATH_HINT_RE = re.compile(r"(?:File|Path|Create):\s*`?([^\s`]+)`?", re.IGNORECASE)
_STATUS_MARKERS = {
    TaskStatus.COMPLETED: "✅",
    TaskStatus.FAILED: "❌",
    TaskStatus.SKIPPED: "⏭️",
}


@dataclass(slots=True)
class ResultSummary:
    """Aggregate numbers for one run."""

    total: int
    completed: int
    failed: int
    skipped: int
    total_tokens: int
    total_duration_ms: int

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.total if self.total else 0.0

    @property
    def success_rate(self) -> float:
        return self.completed / self.total if self.total else 0.0


@dataclass(slots=True)
class CodeBlock:
    """A fenced code block found in a task's output."""

    task_id: str
    path: str
    language: str
    content: str


def summarize_results(results: Mapping[str, TaskResult]) -> ResultSummary:
    values = list(results.values())
    return ResultSummary(
        total=len(values),
        completed=sum(1 for result in values if result.status is TaskStatus.COMPLETED),
        failed=sum(1 for result in values if result.status is TaskStatus.FAILED),
        skipped=sum(1 for result in values if result.status is TaskStatus.SKIPPED),
        total_tokens=sum(result.tokens_used for result in values),
        total_duration_ms=sum(result.duration_ms for result in values),
    )


def format_report(
    results: Mapping[str, TaskResult],
    *,
    title: str = "Workflow",
    workflow_id: str | None = None,
    category: str | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Render a markdown execution report."""

    summary = summarize_results(results)
    lines = [
        f"# {title} - Execution Report",
        "",
        f"**Date:** {(generated_at or utc_now()).isoformat()}",
    ]
    if workflow_id:
        lines.append(f"**Workflow ID:** {workflow_id}")
    if category:
        lines.append(f"**Category:** {category}")
    lines.extend(
        [
            "",
            "## Summary",
            "",
            f"- **Total Tasks:** {summary.total}",
            f"- **Successful:** {summary.completed}",
            f"- **Failed:** {summary.failed}",
            f"- **Skipped:** {summary.skipped}",
            f"- **Total Tokens:** {summary.total_tokens:,}",
            f"- **Total Duration:** {summary.total_duration_ms / 1000:.2f}s",
            f"- **Average Duration:** {summary.average_duration_ms / 1000:.2f}s per task",
            "",
            "## Task Results",
            "",
        ],
    )
    for result in results.values():
        marker = _STATUS_MARKERS.get(result.status, "•")
        lines.append(f"### {marker} {result.agent_id} - {result.task_id}")
        lines.append("")
        lines.append(f"**Status:** {result.status.value}")
        lines.append(f"**Duration:** {result.duration_ms / 1000:.2f}s")
        lines.append(f"**Tokens Used:** {result.tokens_used:,}")
        if result.error:
            lines.append(f"**Error:** {result.error}")
        else:
            output = result.output
            if len(output) > OUTPUT_PREVIEW_CHARS:
                output = output[:OUTPUT_PREVIEW_CHARS] + "..."
            lines.extend(["", "**Output:**", "````", output, "````"])
        lines.append("")
    return "\n".join(lines)


def merge_results(*result_sets: Mapping[str, TaskResult]) -> dict[str, TaskResult]:
    """Combine result mappings; later mappings win on id collisions."""

    merged: dict[str, TaskResult] = {}
    for results in result_sets:
        merged.update(results)
    return merged


def extract_code_blocks(results: Mapping[str, TaskResult]) -> list[CodeBlock]:
    """Collect fenced code blocks from successful results.

    The path hint is searched in the text between the previous block and
    the current one, so each block keeps its own ``File:`` line.
    """

    blocks: list[CodeBlock] = []
    for result in results.values():
        if not result.success:
            continue
        previous_end = 0
        defaults_used: dict[str, int] = {}
        for match in _CODE_BLOCK_RE.finditer(result.output):
            language = match.group(1)
            hints = list(_PATH_HINT_RE.finditer(result.output, previous_end, match.start()))
            if hints:
                path = hints[-1].group(1)
            else:
                path = f"{result.task_id}.{language}"
                defaults_used[path] = defaults_used.get(path, 0) + 1
                if defaults_used[path] > 1:
                    path = f"{result.task_id}-{defaults_used[path]}.{language}"
            blocks.append(
                CodeBlock(
                    task_id=result.task_id,
                    path=path,
                    language=language,
                    content=match.group(2),
                ),
            )
            previous_end = match.end()
    return blocks


def estimate_workflow_cost(
    tasks: Iterable[AgentTask],
    pricing: Mapping[str, ModelPricing] | None = None,
) -> float:
    """Up-front USD estimate: 4000 input tokens and ``max_tokens`` output per task."""

    tiers = pricing or TIER_PRICING
    total = 0.0
    for task in tasks:
        rate = tiers[model_tier(task.model)]
        total += rate.cost(ESTIMATED_INPUT_TOKENS, task.max_tokens or DEFAULT_MAX_TOKENS)
    return total


def estimate_workflow_duration(tasks: Iterable[AgentTask]) -> int:
    """Up-front wall-clock estimate in seconds assuming parallel execution."""

    sequential = 0.0
    for task in tasks:
        base = TIER_DURATION_SECONDS[model_tier(task.model)]
        sequential += base * (task.max_tokens or DEFAULT_MAX_TOKENS) / DEFAULT_MAX_TOKENS
    return math.ceil(sequential * PARALLELIZATION_FACTOR)


def estimate_results_cost(
    results: Mapping[str, TaskResult],
    *,
    pricing: PricingTable | None = None,
) -> float | None:
    """Cost of a finished run from actual token usage.

    Uses the agent/model recorded in result metadata by executors and the
    configured pricing table. Returns ``None`` when no result could be priced.
    """

    total = 0.0
    priced = False
    for result in results.values():
        if result.tokens_used <= 0:
            continue
        metadata = result.metadata
        recorded = metadata.get("cost_usd")
        if isinstance(recorded, (int, float)):
            total += float(recorded)
            priced = True
            continue
        cost = estimate_cost_usd(
            agent=str(metadata.get("agent", result.agent_id)),
            model=str(metadata.get("model", "*")),
            prompt_tokens=_optional_int(metadata.get("prompt_tokens")),
            completion_tokens=_optional_int(metadata.get("completion_tokens")),
            total_tokens=result.tokens_used,
            pricing=pricing,
        )
        if cost is not None:
            total += cost
            priced = True
    return total if priced else None


def _optional_int(value: object) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None
