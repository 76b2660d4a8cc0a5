"""Token pricing: model tiers for up-front estimates, configured rates for actual usage."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PRICING_ENV = "AGENT_ORCHESTRATOR_LLM_PRICING"
DEFAULT_TIER = "sonnet"


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens / 1_000_000) * self.input_per_1m + (
            completion_tokens / 1_000_000
        ) * self.output_per_1m


TIER_PRICING: dict[str, ModelPricing] = {
    "haiku": ModelPricing(input_per_1m=0.25, output_per_1m=1.25),
    "sonnet": ModelPricing(input_per_1m=3.0, output_per_1m=15.0),
    "opus": ModelPricing(input_per_1m=15.0, output_per_1m=75.0),
}

PricingTable = Mapping[tuple[str, str], ModelPricing]


def model_tier(model: str | None) -> str:
    """Map a model name onto a pricing tier (``sonnet`` unless it names haiku/opus)."""

    name = (model or DEFAULT_TIER).lower()
    if "haiku" in name:
        return "haiku"
    if "opus" in name:
        return "opus"
    return DEFAULT_TIER


def estimate_cost_usd(  # noqa: PLR0913
    *,
    agent: str,
    model: str,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_tokens: int | None,
    pricing: PricingTable | None = None,
) -> float | None:
    """Estimate cost in USD from token usage and configured pricing.

    Returns ``None`` when no rate is configured for the agent/model pair.
    A bare total is charged at the input rate.
    """

    table = pricing if pricing is not None else load_pricing()
    rate = lookup_pricing(table, agent=agent, model=model)
    if rate is None:
        return None

    if prompt_tokens is not None and completion_tokens is not None:
        return rate.cost(prompt_tokens, completion_tokens)

    if total_tokens is not None:
        return (total_tokens / 1_000_000) * rate.input_per_1m
    return None


def lookup_pricing(table: PricingTable, *, agent: str, model: str) -> ModelPricing | None:
    key_agent = agent.strip().lower()
    for candidate in ((key_agent, model.strip()), (key_agent, "*"), ("*", "*")):
        rate = table.get(candidate)
        if rate is not None:
            return rate
    return None


def load_pricing() -> dict[tuple[str, str], ModelPricing]:
    return parse_pricing(os.getenv(PRICING_ENV, ""))


def parse_pricing(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse a pricing mapping.

    Format:
    - `agent:model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` is a wildcard for agent or model
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 4:  # noqa: PLR2004
            logger.warning("Ignoring malformed pricing entry %r", value)
            continue
        agent, model, input_price, output_price = parts
        try:
            rate = ModelPricing(input_per_1m=float(input_price), output_per_1m=float(output_price))
        except ValueError:
            logger.warning("Ignoring pricing entry with non-numeric rates %r", value)
            continue
        parsed[(agent.lower(), model)] = rate
    return parsed
