"""Cost tracking for vision model calls.

Every vision call is recorded as an immutable ``CostEntry``. Totals are never
stored separately: ``get_summary()`` recomputes them from the entry log, so
``total_cost`` always equals the sum of the entries.
"""

import json
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Literal, Optional

import structlog

logger = structlog.get_logger()

CostOperation = Literal["find", "action", "assert", "analyze"]


@dataclass(frozen=True)
class Pricing:
    """USD prices per 1,000 tokens and per image."""

    input_token_price: float
    output_token_price: float
    image_price: float


# Pricing per provider (USD per 1K tokens / per image)
DEFAULT_PRICING: dict[str, Pricing] = {
    "anthropic": Pricing(0.003, 0.015, 0.0048),
    "openai": Pricing(0.005, 0.015, 0.00765),
    "volcengine": Pricing(0.0008, 0.002, 0.001),
    "doubao": Pricing(0.0008, 0.002, 0.001),
    "default": Pricing(0.003, 0.015, 0.005),
}


@dataclass(frozen=True)
class CostEntry:
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    images: int
    cost_usd: float
    timestamp_ms: int
    operation: CostOperation


@dataclass
class CostSummary:
    total_cost: float = 0.0
    total_calls: int = 0
    by_provider: dict[str, float] = field(default_factory=dict)
    by_operation: dict[str, float] = field(default_factory=dict)
    entries: list[CostEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_cost": self.total_cost,
            "total_calls": self.total_calls,
            "by_provider": self.by_provider,
            "by_operation": self.by_operation,
            "entries": [asdict(entry) for entry in self.entries],
        }


class CostTracker:
    """Records vision model usage against a pricing table.

    Example:
        tracker = CostTracker()
        tracker.track("anthropic", "claude-sonnet-4-20250514", 2000, 1000, operation="find")
        print(tracker.get_summary().total_cost)  # 0.0258
    """

    def __init__(self, custom_pricing: Optional[dict[str, Pricing]] = None):
        self._entries: list[CostEntry] = []
        self._custom_pricing: dict[str, Pricing] = dict(custom_pricing or {})
        self.log = logger.bind(component="cost_tracker")

    def set_pricing(self, provider: str, pricing: Pricing) -> None:
        """Override the price table for a provider."""
        self._custom_pricing[provider] = pricing

    def get_pricing(self, provider: str) -> Pricing:
        """Custom override, then built-in table, then the default entry."""
        if provider in self._custom_pricing:
            return self._custom_pricing[provider]
        return DEFAULT_PRICING.get(provider, DEFAULT_PRICING["default"])

    def _compute(self, provider: str, input_tokens: int, output_tokens: int, images: int) -> float:
        pricing = self.get_pricing(provider)
        return (
            (input_tokens / 1000) * pricing.input_token_price
            + (output_tokens / 1000) * pricing.output_token_price
            + images * pricing.image_price
        )

    def track(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        images: Optional[int] = None,
        operation: CostOperation = "analyze",
    ) -> CostEntry:
        """Record one call and return its entry. ``images`` defaults to 1."""
        images = 1 if images is None else images
        entry = CostEntry(
            provider=provider,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            images=images,
            cost_usd=self._compute(provider, input_tokens, output_tokens, images),
            timestamp_ms=int(time.time() * 1000),
            operation=operation,
        )
        self._entries.append(entry)

        self.log.debug(
            "Vision call tracked",
            provider=provider,
            model=model,
            operation=operation,
            cost_usd=round(entry.cost_usd, 6),
        )
        return entry

    def estimate(self, provider: str, input_tokens: int, output_tokens: int, images: int = 1) -> float:
        """Cost of a call without recording it."""
        return self._compute(provider, input_tokens, output_tokens, images)

    @property
    def total_cost(self) -> float:
        return sum(entry.cost_usd for entry in self._entries)

    def get_summary(self) -> CostSummary:
        by_provider: dict[str, float] = defaultdict(float)
        by_operation: dict[str, float] = defaultdict(float)
        for entry in self._entries:
            by_provider[entry.provider] += entry.cost_usd
            by_operation[entry.operation] += entry.cost_usd

        return CostSummary(
            total_cost=sum(entry.cost_usd for entry in self._entries),
            total_calls=len(self._entries),
            by_provider=dict(by_provider),
            by_operation=dict(by_operation),
            entries=list(self._entries),
        )

    def get_recent_entries(self, count: int = 10) -> list[CostEntry]:
        if count <= 0:
            return []
        return list(self._entries[-count:])

    def reset(self) -> None:
        """Drop all entries. Custom pricing is kept."""
        self._entries.clear()

    def to_json(self) -> str:
        return json.dumps(self.get_summary().to_dict(), indent=2)

    def log_summary(self) -> None:
        summary = self.get_summary()
        self.log.info(
            "Vision cost summary",
            total_cost_usd=round(summary.total_cost, 4),
            total_calls=summary.total_calls,
            by_provider={k: round(v, 4) for k, v in summary.by_provider.items()},
            by_operation={k: round(v, 4) for k, v in summary.by_operation.items()},
        )
