"""Token estimation and LLM cost accounting."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

# USD per 1000 tokens
MODEL_COSTS: dict[str, dict[str, float]] = {
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
    "gpt-4-turbo-preview": {"input": 0.01, "output": 0.03},
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-4o": {"input": 0.005, "output": 0.015},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    "o1-preview": {"input": 0.015, "output": 0.06},
    "o1-mini": {"input": 0.003, "output": 0.012},
    "claude-3-opus": {"input": 0.015, "output": 0.075},
    "claude-3-sonnet": {"input": 0.003, "output": 0.015},
    "claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    "gemini-pro": {"input": 0.00025, "output": 0.0005},
    "llama-3.1-70b": {"input": 0.00059, "output": 0.00079},
    "llama-3.1-8b": {"input": 0.00005, "output": 0.00008},
    "mixtral-8x7b": {"input": 0.00027, "output": 0.00027},
    "text-embedding-3-small": {"input": 0.00002, "output": 0.0},
    "text-embedding-3-large": {"input": 0.00013, "output": 0.0},
}

DEFAULT_COST_MODEL = "gpt-3.5-turbo"


@dataclass(slots=True)
class TokenUsage:
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class CostBreakdown:
    model: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


def estimate_tokens(text: str) -> int:
    """Average of a chars/4 estimate and a words*1.3 estimate, rounded up."""
    if not text:
        return 0
    char_estimate = len(text) / 4
    word_estimate = len(text.split()) * 1.3
    return math.ceil((char_estimate + word_estimate) / 2)


def _rates_for(model: str) -> dict[str, float]:
    # OpenRouter ids look like "openai/gpt-4o-mini"
    short = model.split("/", 1)[-1]
    rates = MODEL_COSTS.get(model) or MODEL_COSTS.get(short)
    if rates is None:
        logger.warning(f"Unknown model for cost accounting: {model}, using {DEFAULT_COST_MODEL} pricing")
        rates = MODEL_COSTS[DEFAULT_COST_MODEL]
    return rates


def calculate_cost(usage: TokenUsage) -> CostBreakdown:
    rates = _rates_for(usage.model)
    return CostBreakdown(
        model=usage.model,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        input_cost=(usage.input_tokens / 1000) * rates["input"],
        output_cost=(usage.output_tokens / 1000) * rates["output"],
    )


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return f"${cost:.4f}"
    if cost < 1:
        return f"${cost:.3f}"
    return f"${cost:.2f}"


@dataclass
class CostTracker:
    """Running total of LLM spend for one research run."""

    costs: list[CostBreakdown] = field(default_factory=list)

    def add(self, usage: TokenUsage) -> CostBreakdown:
        cost = calculate_cost(usage)
        self.costs.append(cost)
        return cost

    @property
    def total_cost(self) -> float:
        return sum(cost.total_cost for cost in self.costs)

    @property
    def total_tokens(self) -> int:
        return sum(cost.input_tokens + cost.output_tokens for cost in self.costs)

    def cost_by_model(self) -> dict[str, float]:
        by_model: dict[str, float] = {}
        for cost in self.costs:
            by_model[cost.model] = by_model.get(cost.model, 0.0) + cost.total_cost
        return by_model

    def summary(self) -> dict[str, Any]:
        requests = len(self.costs)
        return {
            "total_cost": self.total_cost,
            "input_tokens": sum(cost.input_tokens for cost in self.costs),
            "output_tokens": sum(cost.output_tokens for cost in self.costs),
            "total_tokens": self.total_tokens,
            "cost_by_model": self.cost_by_model(),
            "request_count": requests,
            "average_cost_per_request": self.total_cost / requests if requests else 0.0,
        }

    def reset(self) -> None:
        self.costs.clear()
