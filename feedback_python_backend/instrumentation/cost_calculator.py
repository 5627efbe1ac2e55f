"""
Cost calculation utilities for oracle calls.

Supports pricing for:
- Google Gemini models routed through the gateway (flash-lite, flash, pro)
- Anthropic models (Claude Opus, Sonnet, Haiku)
- OpenAI models (GPT-4o, GPT-4o-mini)

Gateway model ids carry a provider prefix ("google/gemini-2.5-flash"); the
prefix is ignored when looking up prices.
"""

from typing import Dict, Optional, Tuple
from decimal import Decimal
from dataclasses import dataclass


@dataclass
class ModelPricing:
    """Pricing information for a specific model."""
    input_cost_per_1k: Decimal  # Cost per 1000 input tokens
    output_cost_per_1k: Decimal  # Cost per 1000 output tokens
    provider: str
    model_name: str


# Pricing data (USD per 1K tokens)
MODEL_PRICING: Dict[str, ModelPricing] = {
    # Google Models
    "gemini-2.5-flash-lite": ModelPricing(
        input_cost_per_1k=Decimal("0.0001"),
        output_cost_per_1k=Decimal("0.0004"),
        provider="google",
        model_name="gemini-2.5-flash-lite"
    ),
    "gemini-2.5-flash": ModelPricing(
        input_cost_per_1k=Decimal("0.0003"),
        output_cost_per_1k=Decimal("0.0025"),
        provider="google",
        model_name="gemini-2.5-flash"
    ),
    "gemini-2.5-pro": ModelPricing(
        input_cost_per_1k=Decimal("0.00125"),
        output_cost_per_1k=Decimal("0.01"),
        provider="google",
        model_name="gemini-2.5-pro"
    ),

    # Anthropic Models
    "claude-opus-4-1-20250805": ModelPricing(
        input_cost_per_1k=Decimal("0.015"),
        output_cost_per_1k=Decimal("0.075"),
        provider="anthropic",
        model_name="claude-opus-4.1"
    ),
    "claude-sonnet-4-5-20250929": ModelPricing(
        input_cost_per_1k=Decimal("0.003"),
        output_cost_per_1k=Decimal("0.015"),
        provider="anthropic",
        model_name="claude-sonnet-4.5"
    ),
    "claude-3-5-haiku-20241022": ModelPricing(
        input_cost_per_1k=Decimal("0.0008"),
        output_cost_per_1k=Decimal("0.004"),
        provider="anthropic",
        model_name="claude-3.5-haiku"
    ),

    # OpenAI Models
    "gpt-4o": ModelPricing(
        input_cost_per_1k=Decimal("0.0025"),
        output_cost_per_1k=Decimal("0.01"),
        provider="openai",
        model_name="gpt-4o"
    ),
    "gpt-4o-mini": ModelPricing(
        input_cost_per_1k=Decimal("0.00015"),
        output_cost_per_1k=Decimal("0.0006"),
        provider="openai",
        model_name="gpt-4o-mini"
    ),
}


def get_model_pricing(model: str) -> Optional[ModelPricing]:
    """
    Get pricing information for a specific model.

    Args:
        model: Model identifier (e.g., "google/gemini-2.5-flash", "claude-sonnet-4-5-20250929")

    Returns:
        ModelPricing object or None if model not found
    """
    bare = model.split("/", 1)[-1]

    # Try exact match first
    if bare in MODEL_PRICING:
        return MODEL_PRICING[bare]

    # Try fuzzy match (handle versioned model names)
    model_lower = bare.lower()

    # Gemini variants
    if "flash-lite" in model_lower:
        return MODEL_PRICING["gemini-2.5-flash-lite"]
    elif "gemini" in model_lower and "flash" in model_lower:
        return MODEL_PRICING["gemini-2.5-flash"]
    elif "gemini" in model_lower and "pro" in model_lower:
        return MODEL_PRICING["gemini-2.5-pro"]

    # Claude variants
    if "opus" in model_lower:
        return MODEL_PRICING["claude-opus-4-1-20250805"]
    elif "sonnet" in model_lower:
        return MODEL_PRICING["claude-sonnet-4-5-20250929"]
    elif "haiku" in model_lower:
        return MODEL_PRICING["claude-3-5-haiku-20241022"]

    # GPT variants
    if "gpt-4o-mini" in model_lower:
        return MODEL_PRICING["gpt-4o-mini"]
    elif "gpt-4o" in model_lower:
        return MODEL_PRICING["gpt-4o"]

    return None


def calculate_cost_breakdown(
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> Tuple[float, float, float]:
    """
    Calculate cost with breakdown of input and output costs.

    Args:
        model: Model identifier
        input_tokens: Number of input tokens
        output_tokens: Number of output tokens

    Returns:
        Tuple of (input_cost, output_cost, total_cost) in USD

    Raises:
        ValueError: If model pricing is not found

    Example:
        >>> calculate_cost_breakdown("gpt-4o", 1000, 500)
        (0.0025, 0.005, 0.0075)
    """
    pricing = get_model_pricing(model)

    if pricing is None:
        raise ValueError(
            f"Pricing not found for model '{model}'. "
            f"Supported models: {', '.join(MODEL_PRICING.keys())}"
        )

    # Decimal for precision, float for the database
    input_cost = (Decimal(input_tokens) / Decimal(1000)) * pricing.input_cost_per_1k
    output_cost = (Decimal(output_tokens) / Decimal(1000)) * pricing.output_cost_per_1k
    total_cost = input_cost + output_cost

    return (float(input_cost), float(output_cost), float(total_cost))


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> float:
    """Calculate the total USD cost of one oracle call."""
    return calculate_cost_breakdown(model, input_tokens, output_tokens)[2]
