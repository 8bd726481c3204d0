"""
Pricing calculations for hosted models.

Rates are per 1K tokens in USD. Unknown models are priced with their
provider's default row.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

from .token_counter import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1k: Decimal
    output_cost_per_1k: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for one provider."""
    prices: Dict[str, ModelPricing]
    default_model: str

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model, falling back to the default row."""
        return self.prices.get(model, self.prices[self.default_model])


OPENAI_PRICING = PricingTable(
    prices={
        "gpt-4": ModelPricing(Decimal("0.03"), Decimal("0.06")),
        "gpt-4-turbo": ModelPricing(Decimal("0.01"), Decimal("0.03")),
        "gpt-3.5-turbo": ModelPricing(Decimal("0.0015"), Decimal("0.002")),
        "o1-preview": ModelPricing(Decimal("0.015"), Decimal("0.06")),
        "o1-mini": ModelPricing(Decimal("0.003"), Decimal("0.012")),
    },
    default_model="gpt-4",
)

ANTHROPIC_PRICING = PricingTable(
    prices={
        "claude-3-sonnet": ModelPricing(Decimal("0.003"), Decimal("0.015")),
        "claude-3-opus": ModelPricing(Decimal("0.015"), Decimal("0.075")),
        "claude-3-haiku": ModelPricing(Decimal("0.00025"), Decimal("0.00125")),
        "claude-3-5-sonnet": ModelPricing(Decimal("0.003"), Decimal("0.015")),
    },
    default_model="claude-3-sonnet",
)


def calculate_cost(table: PricingTable, model: str, usage: TokenUsage) -> float:
    """Calculate the cost of a call.

    Args:
        table: Provider pricing table
        model: Model identifier
        usage: Token usage data

    Returns:
        Total cost rounded to 6 decimal places
    """
    pricing = table.get_pricing(model)

    input_cost = (Decimal(usage.input_tokens) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(usage.output_tokens) / Decimal("1000")) * pricing.output_cost_per_1k

    total_cost = (input_cost + output_cost).quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)
    return float(total_cost)
