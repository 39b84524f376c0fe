# =============================================================================
# Provider Pricing Registry — Cost Accounting for LLM-Backed Providers
# =============================================================================
#
# Maps (client type, model) → USD per million tokens. Used by the LLM answer
# client to fill ProviderReply.cost_cents, which the /providers/metrics
# endpoint sums per provider.
#
# Unknown models yield None from estimate_cost_usd() and 0.0 from
# estimate_cost_cents(): provider_replies.cost_cents is NOT NULL, and an
# unpriced call is recorded as free rather than dropped.
#
# Update this table when list prices change.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelPricing:
    """List price for a model, in USD per one million tokens."""

    input_per_million: float
    output_per_million: float
    vendor: str


# ---------------------------------------------------------------------------
# Pricing Registry
# ---------------------------------------------------------------------------
# Keys are (client_type, model). client_type matches the prefix of a
# provider's client spec: "anthropic" or "openai_compatible".
# ---------------------------------------------------------------------------

PRICING_REGISTRY: dict[tuple[str, str], ModelPricing] = {
    ("anthropic", "claude-sonnet-4-6"): ModelPricing(3.00, 15.00, "Anthropic"),
    ("anthropic", "claude-haiku-4-5"): ModelPricing(0.80, 4.00, "Anthropic"),
    ("openai_compatible", "gpt-4o"): ModelPricing(2.50, 10.00, "OpenAI"),
    ("openai_compatible", "gpt-4o-mini"): ModelPricing(0.15, 0.60, "OpenAI"),
    ("openai_compatible", "deepseek-chat"): ModelPricing(0.14, 0.28, "DeepSeek"),
    ("openai_compatible", "qwen-plus"): ModelPricing(0.11, 0.44, "Alibaba Cloud"),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_pricing(client_type: str, model: str) -> ModelPricing | None:
    """Look up pricing for a client type + model combination."""
    return PRICING_REGISTRY.get((client_type, model))


def estimate_cost_usd(
    client_type: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> float | None:
    """
    Estimated cost in USD of one completion, or None for unpriced models.
    """
    pricing = get_pricing(client_type, model)
    if pricing is None:
        return None
    return (
        pricing.input_per_million * input_tokens
        + pricing.output_per_million * output_tokens
    ) / 1_000_000


def estimate_cost_cents(
    client_type: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> float:
    """Estimated cost in US cents, rounded to 4 places. Unpriced → 0.0."""
    usd = estimate_cost_usd(client_type, model, input_tokens, output_tokens)
    if usd is None:
        return 0.0
    return round(usd * 100, 4)
