"""Redaction for agent stderr/stdout excerpts that end up in task results.

Error messages built from CLI agent output are shown in progress lines and
written to reports, so credentials that agents echo (API keys, bearer
tokens, signed URLs) are masked before the text leaves the executor.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_PREVIEW_CHARS = 2_000
TRUNCATION_MARKER = " ...[truncated]"

_Replacement = str | Callable[[re.Match[str]], str]


@dataclass(frozen=True, slots=True)
class RedactionRule:
    name: str
    pattern: re.Pattern[str]
    replacement: _Replacement


REDACTION_RULES: tuple[RedactionRule, ...] = (
    RedactionRule(
        "bearer_token",
        re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-]{8,}\b"),
        r"\1 [redacted-token]",
    ),
    RedactionRule(
        "provider_key",
        re.compile(r"(?i)\b(?:sk-(?:ant-|proj-)?|ghp_|AIza)[a-z0-9\-_]{8,}\b"),
        "[redacted-token]",
    ),
    RedactionRule(
        "env_secret",
        re.compile(
            r"(?i)\b(?:agent_orchestrator|openai|anthropic|gemini|google|github)[a-z0-9_]*"
            r"_(?:api_)?(?:key|token)\b\s*[:=]\s*['\"]?[^'\" \n\r\t]+['\"]?",
        ),
        "[redacted-secret]",
    ),
    RedactionRule(
        "url_credential",
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=)[^&\s]+"),
        lambda match: match.group(1) + "[redacted]",
    ),
    RedactionRule(
        "email",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "[redacted-email]",
    ),
)


def redact(text: str) -> tuple[str, list[str]]:
    """Apply every redaction rule; return the text and the names of rules that fired."""

    fired: list[str] = []
    for rule in REDACTION_RULES:
        text, count = rule.pattern.subn(rule.replacement, text)
        if count:
            fired.append(rule.name)
    return text, fired


def sanitize_preview(text: str, *, max_chars: int = DEFAULT_PREVIEW_CHARS) -> str:
    """Redacted, whitespace-trimmed excerpt of at most ``max_chars`` plus a truncation marker."""

    redacted, _ = redact(text.strip())
    if len(redacted) <= max_chars:
        return redacted
    return redacted[:max_chars] + TRUNCATION_MARKER
