"""Best-effort token usage extraction from CLI agent output."""

from __future__ import annotations

import re
from dataclasses import dataclass

USAGE_PARSER_VERSION = "v2"

# Structured markers as emitted in JSON output modes.
_JSON_PROMPT = re.compile(r'"(?:prompt_tokens|input_tokens)"\s*:\s*(\d+)', re.IGNORECASE)
_JSON_COMPLETION = re.compile(r'"(?:completion_tokens|output_tokens)"\s*:\s*(\d+)', re.IGNORECASE)
_JSON_TOTAL = re.compile(r'"total_tokens"\s*:\s*(\d+)', re.IGNORECASE)

# Plain-text summaries printed by interactive CLIs.
_TEXT_PROMPT = re.compile(r"(?:input|prompt)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_TEXT_COMPLETION = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_TEXT_TOTAL = re.compile(r"total[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_CODEX_TOKENS_USED = re.compile(r"tokens used\s*[:\r\n ]+\s*([\d,]+)", re.IGNORECASE)


@dataclass(slots=True)
class UsageExtraction:
    """Token usage found in an agent's output streams."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None
    usage_status: str
    usage_source: str
    parser_version: str = USAGE_PARSER_VERSION

    @property
    def found(self) -> bool:
        return self.total_tokens is not None

    def to_metadata(self) -> dict[str, object]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "usage_status": self.usage_status,
            "usage_source": self.usage_source,
            "usage_parser_version": self.parser_version,
        }


def extract_usage(*, agent: str, stdout: str, stderr: str) -> UsageExtraction:
    """Extract usage, preferring structured markers over textual summaries.

    ``usage_status`` is ``reported`` when the agent printed a total,
    ``estimated`` when the total was summed from prompt/completion parts
    and ``unknown`` when nothing was found.
    """

    for source, text in (("stdout", stdout), ("stderr", stderr)):
        found = _scan(text, _JSON_PROMPT, _JSON_COMPLETION, _JSON_TOTAL, source=source)
        if found is not None:
            return found

    for source, text in (("stderr", stderr), ("stdout", stdout)):
        found = _scan(text, _TEXT_PROMPT, _TEXT_COMPLETION, _TEXT_TOTAL, source=source)
        if found is not None:
            return found
        if agent == "codex":
            total = _extract_int(_CODEX_TOKENS_USED, text)
            if total is not None:
                return UsageExtraction(
                    prompt_tokens=None,
                    completion_tokens=None,
                    total_tokens=total,
                    usage_status="reported",
                    usage_source=source,
                )

    return UsageExtraction(
        prompt_tokens=None,
        completion_tokens=None,
        total_tokens=None,
        usage_status="unknown",
        usage_source="none",
    )


def _scan(
    text: str,
    prompt_pattern: re.Pattern[str],
    completion_pattern: re.Pattern[str],
    total_pattern: re.Pattern[str],
    *,
    source: str,
) -> UsageExtraction | None:
    prompt = _extract_int(prompt_pattern, text)
    completion = _extract_int(completion_pattern, text)
    total = _extract_int(total_pattern, text)
    if prompt is None and completion is None and total is None:
        return None
    reported = total is not None
    if total is None:
        total = sum(value for value in (prompt, completion) if value is not None)
    return UsageExtraction(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        usage_status="reported" if reported else "estimated",
        usage_source=source,
    )


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    raw = match.group(1).replace(",", "").strip()
    return int(raw) if raw.isdigit() else None
