"""Token and cost accounting for one document run.

Every successful completion call is recorded by the invocation layer. The
orchestrator reads the totals back as the ``token_usage`` block of the
ExtractionResult and forwards them to the cost-ledger sink.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# USD per 1M tokens (input, output), used when litellm has no price.
FALLBACK_PRICES: dict[str, tuple[float, float]] = {
    "gpt-4o": (2.00, 8.00),
    "gpt-4o-mini": (0.40, 1.60),
}

_unpriced: set[str] = set()


def price(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Cost in USD from litellm's price table, else FALLBACK_PRICES, else 0."""
    bare = model.rsplit("/", 1)[-1]
    try:
        from litellm import cost_per_token

        prompt_cost, completion_cost = cost_per_token(
            model=bare,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
        return prompt_cost + completion_cost
    except Exception:
        rates = FALLBACK_PRICES.get(bare)
        if rates is not None:
            return (prompt_tokens * rates[0] + completion_tokens * rates[1]) / 1_000_000
        if model not in _unpriced:
            _unpriced.add(model)
            logger.warning("No price for model %r; its calls are counted as $0", model)
        return 0.0


def estimate_tokens(text: str) -> int:
    """Token estimate for unsent text: mean of chars/4 and words*1.3."""
    if not text:
        return 0
    return round((len(text) / 4 + len(text.split()) * 1.3) / 2)


def _token_counts(usage: Any) -> tuple[int, int]:
    """(prompt, completion) from a litellm Usage object or an input/output dict."""
    if isinstance(usage, dict):
        prompt = usage.get("input_tokens", usage.get("prompt_tokens"))
        completion = usage.get("output_tokens", usage.get("completion_tokens"))
    else:
        prompt = getattr(usage, "prompt_tokens", None)
        if prompt is None:
            prompt = getattr(usage, "input_tokens", None)
        completion = getattr(usage, "completion_tokens", None)
        if completion is None:
            completion = getattr(usage, "output_tokens", None)
    return int(prompt or 0), int(completion or 0)


@dataclass
class CallUsage:
    """One completion call."""

    model: str
    prompt_tokens: int
    completion_tokens: int
    agent: str = ""  # pass name

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def cost(self) -> float:
        return price(self.model, self.prompt_tokens, self.completion_tokens)


@dataclass
class CostTracker:
    """Calls made while extracting one document."""

    calls: list[CallUsage] = field(default_factory=list)

    def record(self, model: str, usage: Any, agent: str = "") -> CallUsage | None:
        """Add one call. ``usage`` of None (no usage reported) records nothing."""
        if usage is None:
            return None
        prompt, completion = _token_counts(usage)
        call = CallUsage(model=model, prompt_tokens=prompt, completion_tokens=completion, agent=agent)
        self.calls.append(call)
        return call

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def total_prompt_tokens(self) -> int:
        return sum(c.prompt_tokens for c in self.calls)

    @property
    def total_completion_tokens(self) -> int:
        return sum(c.completion_tokens for c in self.calls)

    @property
    def total_tokens(self) -> int:
        return sum(c.total_tokens for c in self.calls)

    @property
    def total_cost(self) -> float:
        return sum(c.cost for c in self.calls)

    @property
    def models(self) -> list[str]:
        """Models in the order they were first called."""
        return list(dict.fromkeys(c.model for c in self.calls))

    def by_agent(self) -> dict[str, dict[str, Any]]:
        """Calls, tokens and cost per pass."""
        per_pass: dict[str, dict[str, Any]] = {}
        for call in self.calls:
            row = per_pass.setdefault(
                call.agent or "unknown",
                {"calls": 0, "prompt_tokens": 0, "completion_tokens": 0, "cost": 0.0},
            )
            row["calls"] += 1
            row["prompt_tokens"] += call.prompt_tokens
            row["completion_tokens"] += call.completion_tokens
            row["cost"] += call.cost
        return per_pass

    def token_usage(self) -> dict[str, Any]:
        """The ExtractionResult.token_usage block."""
        return {
            "input_tokens": self.total_prompt_tokens,
            "output_tokens": self.total_completion_tokens,
            "total_tokens": self.total_tokens,
            "estimated_cost": round(self.total_cost, 6),
            "model": ", ".join(self.models) or None,
        }

    def summary(self) -> str:
        rule = "=" * 50
        lines = [
            rule,
            "COST SUMMARY",
            rule,
            f"Model calls: {self.call_count}",
            f"Tokens: {self.total_tokens:,} "
            f"(input {self.total_prompt_tokens:,}, output {self.total_completion_tokens:,})",
            f"Cost: ${self.total_cost:.4f}",
            "",
            "By pass:",
        ]
        for name, row in sorted(self.by_agent().items()):
            tokens = row["prompt_tokens"] + row["completion_tokens"]
            lines.append(f"  {name}: {row['calls']} calls, {tokens:,} tokens, ${row['cost']:.4f}")
        lines.append(rule)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "calls": self.call_count,
            **self.token_usage(),
            "by_pass": self.by_agent(),
        }
