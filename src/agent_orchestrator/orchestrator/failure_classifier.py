"""Deterministic classification of failed CLI agent runs into executor errors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from agent_orchestrator.orchestrator.errors import (
    ExecutorError,
    InvalidResponseError,
    ProviderError,
    RateLimitedError,
)

FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    """Why an agent run failed, as far as its output tells."""

    RATE_LIMITED = "rate_limited"
    CONTEXT_TOO_LARGE = "context_too_large"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"


@dataclass(frozen=True, slots=True)
class _Rule:
    failure_class: FailureClass
    patterns: tuple[str, ...]
    error_type: type[ExecutorError]


# First matching rule wins. Context overflow precedes billing because both
# mention "exceeded".
_RULES: tuple[_Rule, ...] = (
    _Rule(
        FailureClass.RATE_LIMITED,
        ("too many requests", "rate limit", "rate_limit", "429", "overloaded", "try again later"),
        RateLimitedError,
    ),
    _Rule(
        FailureClass.CONTEXT_TOO_LARGE,
        (
            "prompt is too long",
            "context length",
            "context window",
            "maximum context",
            "too many tokens",
        ),
        InvalidResponseError,
    ),
    _Rule(
        FailureClass.BILLING_OR_QUOTA,
        (
            "quota",
            "resource_exhausted",
            "insufficient",
            "billing",
            "payment",
            "credits",
            "usage limit",
            "exceeded",
        ),
        RateLimitedError,
    ),
    _Rule(
        FailureClass.ACCESS_OR_AUTH,
        (
            "unauthorized",
            "forbidden",
            "permission denied",
            "invalid api key",
            "authentication",
            "not logged in",
            "restricted token",
        ),
        ProviderError,
    ),
    _Rule(
        FailureClass.MODEL_NOT_AVAILABLE,
        (
            "model not found",
            "unknown model",
            "unsupported model",
            "invalid model",
            "model is not available",
            "not available in your region",
        ),
        ProviderError,
    ),
    _Rule(
        FailureClass.TRANSIENT,
        (
            "temporarily unavailable",
            "temporary failure",
            "connection reset",
            "network error",
            "could not resolve host",
            "dns",
        ),
        ProviderError,
    ),
)

_ERROR_TYPES: dict[FailureClass, type[ExecutorError]] = {
    rule.failure_class: rule.error_type for rule in _RULES
}


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def transient(self) -> bool:
        return self.failure_class in (FailureClass.RATE_LIMITED, FailureClass.TRANSIENT)

    def details(self, *, agent: str, model: str) -> dict[str, object]:
        """Classifier diagnostics attached to the raised error."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "resolved_agent": agent,
            "resolved_model": model,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
            "transient": self.transient,
        }

    def to_error(self, message: str, *, agent: str, model: str) -> ExecutorError:
        """Build the executor error the orchestrator records for this failure.

        Rate limits and exhausted quotas surface as ``RateLimitedError``, an
        oversized prompt as ``InvalidResponseError``, everything else as
        ``ProviderError``.
        """

        error_type = _ERROR_TYPES.get(self.failure_class, ProviderError)
        return error_type(message, details=self.details(agent=agent, model=model))


def classify_executor_failure(
    *,
    agent: str,
    exit_code: int,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = (),
) -> FailureClassification:
    """Classify a non-timeout CLI agent failure from its exit code and output."""

    haystack = f"{stderr}\n{stdout}".lower()

    for rule in _RULES:
        pattern = next((item for item in rule.patterns if item in haystack), None)
        if pattern is not None:
            return _classification(agent, rule.failure_class, rule.failure_class.value, pattern)

    if exit_code in transient_exit_codes:
        return _classification(agent, FailureClass.TRANSIENT, "transient_exit_code", None)
    return _classification(agent, FailureClass.NON_RETRYABLE, "fallback_non_retryable", None)


def _classification(
    agent: str,
    failure_class: FailureClass,
    matched_rule: str,
    matched_pattern: str | None,
) -> FailureClassification:
    return FailureClassification(
        failure_class=failure_class,
        reason_code=f"{agent}_{failure_class.value}",
        matched_rule=matched_rule,
        matched_pattern=matched_pattern,
    )
