"""
Cost Tracking & Budget Monitoring
Prices token usage and watches spend against hourly/daily budgets.
"""
import datetime as dt
from dataclasses import dataclass, field
from typing import Dict
from loguru import logger
from leadify.config import get_settings


@dataclass
class ModelPricing:
    """Pricing per 1M tokens (USD)."""
    input_cost: float
    output_cost: float


PRICING: Dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input_cost=2.50, output_cost=10.00),
    "gpt-4o-mini": ModelPricing(input_cost=0.15, output_cost=0.60),
    "gpt-4.1": ModelPricing(input_cost=2.00, output_cost=8.00),
    "gpt-4.1-mini": ModelPricing(input_cost=0.40, output_cost=1.60),
    "gpt-3.5-turbo": ModelPricing(input_cost=0.50, output_cost=1.50),
    "text-embedding-3-small": ModelPricing(input_cost=0.02, output_cost=0.0),
    "text-embedding-3-large": ModelPricing(input_cost=0.13, output_cost=0.0),
}

FALLBACK_MODEL = "gpt-4o"


def model_name(model: str) -> str:
    """Strip the provider prefix ("openai:gpt-4o" -> "gpt-4o")."""
    return model.split(":")[-1] if ":" in model else model


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """USD cost of one call. Unknown models are priced at gpt-4o rates."""
    name = model_name(model)
    pricing = PRICING.get(name)
    if not pricing:
        logger.warning(f"⚠️ Unknown model pricing: {name}, assuming {FALLBACK_MODEL} rates")
        pricing = PRICING[FALLBACK_MODEL]

    return (
        (prompt_tokens / 1_000_000) * pricing.input_cost +
        (completion_tokens / 1_000_000) * pricing.output_cost
    )


@dataclass
class UsageWindow:
    """Tracks usage over a time window."""
    total_cost: float = 0.0
    total_tokens: int = 0
    call_count: int = 0
    window_start: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.UTC))


class CostTracker:
    """
    In-process spend tracking at hourly and daily granularity.

    Budgets are advisory: crossing one is logged loudly but never blocks a
    conversation. The ledger remains the source of truth for accounting.
    """

    def __init__(self):
        self.settings = get_settings()
        self.hourly_usage = UsageWindow()
        self.daily_usage = UsageWindow()
        self.lifetime_usage = UsageWindow()
        self.per_operation_costs: Dict[str, float] = {}

    def _reset_window_if_needed(self, window: UsageWindow, hours: int) -> UsageWindow:
        now = dt.datetime.now(dt.UTC)
        elapsed = (now - window.window_start).total_seconds() / 3600

        if elapsed >= hours:
            logger.debug(f"Resetting {hours}h usage window")
            return UsageWindow()
        return window

    def track(self, operation_type: str, total_tokens: int, cost: float) -> None:
        self.hourly_usage = self._reset_window_if_needed(self.hourly_usage, 1)
        self.daily_usage = self._reset_window_if_needed(self.daily_usage, 24)

        for usage_window in [self.hourly_usage, self.daily_usage, self.lifetime_usage]:
            usage_window.total_cost += cost
            usage_window.total_tokens += total_tokens
            usage_window.call_count += 1

        self.per_operation_costs[operation_type] = self.per_operation_costs.get(operation_type, 0.0) + cost

        self._check_budget_limits()

    def _check_budget_limits(self) -> None:
        if self.settings.environment == "test":
            return

        for label, window, limit in (
            ("Hourly", self.hourly_usage, self.settings.hourly_cost_limit_usd),
            ("Daily", self.daily_usage, self.settings.daily_cost_limit_usd),
        ):
            pct = (window.total_cost / limit) * 100 if limit else 0
            if pct >= 100:
                logger.error(f"🚨 {label.upper()} BUDGET EXCEEDED: ${window.total_cost:.2f} / ${limit:.2f}")
            elif pct >= 80:
                logger.warning(f"⚠️ {label} budget at {pct:.0f}%: ${window.total_cost:.2f} / ${limit:.2f}")

    def get_summary(self) -> Dict[str, object]:
        return {
            "hourly": {
                "cost_usd": round(self.hourly_usage.total_cost, 4),
                "tokens": self.hourly_usage.total_tokens,
                "calls": self.hourly_usage.call_count,
                "limit_usd": self.settings.hourly_cost_limit_usd,
            },
            "daily": {
                "cost_usd": round(self.daily_usage.total_cost, 4),
                "tokens": self.daily_usage.total_tokens,
                "calls": self.daily_usage.call_count,
                "limit_usd": self.settings.daily_cost_limit_usd,
            },
            "lifetime": {
                "cost_usd": round(self.lifetime_usage.total_cost, 2),
                "tokens": self.lifetime_usage.total_tokens,
                "calls": self.lifetime_usage.call_count
            },
            "per_operation": {k: round(v, 4) for k, v in self.per_operation_costs.items()}
        }


_cost_tracker: CostTracker | None = None


def get_cost_tracker() -> CostTracker:
    """Get the global cost tracker instance (singleton)."""
    global _cost_tracker
    if _cost_tracker is None:
        _cost_tracker = CostTracker()
    return _cost_tracker
