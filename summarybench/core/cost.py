"""Token pricing and cost estimation for generation backends."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from summarybench.domain.jobs import UsageStats


CHARS_PER_TOKEN = 4


@dataclass(slots=True, frozen=True)
class ModelPricing:
    model_id: str
    name: str
    provider: str
    input_per_million: float
    output_per_million: float


CONTROL_MODEL = "casemark/default"
JUDGE_MODEL = "openai/gpt-5.2"

MODEL_PRICING: dict[str, ModelPricing] = {
    pricing.model_id: pricing
    for pricing in (
        ModelPricing(CONTROL_MODEL, "CaseMark Default", "casemark", 0.30, 2.50),
        ModelPricing("google/gemini-2.5-flash", "Gemini 2.5 Flash", "google", 0.30, 2.50),
        ModelPricing("google/gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite", "google", 0.15, 1.25),
        ModelPricing("google/gemini-3-flash", "Gemini 3 Flash", "google", 0.50, 3.00),
        ModelPricing("openai/gpt-4.1-nano", "GPT-4.1 Nano", "openai", 0.10, 0.40),
        ModelPricing("openai/gpt-4o-mini", "GPT-4o Mini", "openai", 0.15, 0.60),
        ModelPricing("openai/gpt-5-nano", "GPT-5 Nano", "openai", 0.10, 0.40),
        ModelPricing(JUDGE_MODEL, "GPT-5.2 (judge)", "openai", 2.50, 10.00),
    )
}


def get_pricing(model: str) -> ModelPricing | None:
    return MODEL_PRICING.get(model)


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    input_per_million: float,
    output_per_million: float,
) -> float:
    """Return the USD cost of a call given per-million-token prices."""

    return (input_tokens / 1_000_000) * input_per_million + (output_tokens / 1_000_000) * output_per_million


def estimate_tokens(chars: int) -> int:
    if chars <= 0:
        return 0
    return math.ceil(chars / CHARS_PER_TOKEN)


def estimate_usage(
    model: str,
    input_chars: int,
    output_chars: int,
    duration_ms: int | None = None,
) -> UsageStats:
    """Derive usage from character counts when the service reported none.

    Unknown models get token estimates but no cost.
    """

    input_tokens = estimate_tokens(input_chars)
    output_tokens = estimate_tokens(output_chars)
    pricing = get_pricing(model)
    cost = (
        calculate_cost(input_tokens, output_tokens, pricing.input_per_million, pricing.output_per_million)
        if pricing
        else None
    )
    return UsageStats(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cost_usd=cost,
        duration_ms=duration_ms,
        estimated=True,
    )


@dataclass(slots=True)
class UsageBucket:
    records: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0

    def add(self, stats: UsageStats) -> None:
        self.records += 1
        self.input_tokens += stats.input_tokens
        self.output_tokens += stats.output_tokens
        self.total_tokens += stats.total_tokens
        self.cost_usd += stats.cost_usd or 0.0

    def to_dict(self) -> dict[str, float | int]:
        return {
            "records": self.records,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(slots=True)
class UsageSummary:
    measured: UsageBucket
    estimated: UsageBucket

    @property
    def mixed(self) -> bool:
        return self.measured.records > 0 and self.estimated.records > 0

    @property
    def comparable_cost(self) -> float | None:
        """Single total cost, or None when measured and estimated figures would blend."""

        if self.mixed:
            return None
        bucket = self.estimated if self.estimated.records else self.measured
        return round(bucket.cost_usd, 6)

    def to_dict(self) -> dict[str, object]:
        return {
            "measured": self.measured.to_dict(),
            "estimated": self.estimated.to_dict(),
            "mixed": self.mixed,
            "comparable_cost": self.comparable_cost,
        }


def summarise_usage(stats: Iterable[UsageStats | None]) -> UsageSummary:
    summary = UsageSummary(measured=UsageBucket(), estimated=UsageBucket())
    for item in stats:
        if item is None:
            continue
        bucket = summary.estimated if item.estimated else summary.measured
        bucket.add(item)
    return summary


__all__ = [
    "CONTROL_MODEL",
    "JUDGE_MODEL",
    "MODEL_PRICING",
    "ModelPricing",
    "UsageSummary",
    "calculate_cost",
    "estimate_tokens",
    "estimate_usage",
    "get_pricing",
    "summarise_usage",
]
