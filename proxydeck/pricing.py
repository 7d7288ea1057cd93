"""
Request cost estimation.

Rates come from an ordered substring table in constants.PRICING_RULES;
family+tier rules (claude+opus) are listed before bare family rules so the
most specific match wins.
"""

from __future__ import annotations

from .constants import DEFAULT_PRICING, PRICING_RULES, TOKENS_PER_PRICING_UNIT


def get_rates(model: str) -> tuple[float, float]:
    """Return (input, output) USD rates per 1M tokens for a model name."""
    m = (model or "").lower()
    for substrings, rates in PRICING_RULES:
        if all(s in m for s in substrings):
            return rates
    return DEFAULT_PRICING


def estimate_request_cost(model: str, tokens_in: int, tokens_out: int) -> float:
    """Estimate the USD cost of a request."""
    input_rate, output_rate = get_rates(model)
    input_cost = tokens_in / TOKENS_PER_PRICING_UNIT * input_rate
    output_cost = tokens_out / TOKENS_PER_PRICING_UNIT * output_rate
    return input_cost + output_cost
