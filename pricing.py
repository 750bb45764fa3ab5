"""Per-model token pricing used by the usage ledger."""

import json
import math
from typing import Dict, Optional, Tuple

# {"gpt-4o-mini": {"inputPer1K": 0.015, "outputPer1K": 0.06}}
PricingMap = Dict[str, Dict[str, float]]


def load_pricing(raw: Optional[str]) -> PricingMap:
    """Parse the AI_PRICING_JSON setting.

    Entries without finite inputPer1K/outputPer1K values are dropped; invalid
    JSON yields an empty map so billing degrades to "pricingMissing" instead of
    failing.
    """
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}

    pricing: PricingMap = {}
    for model, value in parsed.items():
        if not isinstance(value, dict):
            continue
        try:
            input_per_1k = float(value.get("inputPer1K"))
            output_per_1k = float(value.get("outputPer1K"))
        except (TypeError, ValueError):
            continue
        if math.isfinite(input_per_1k) and math.isfinite(output_per_1k):
            pricing[model] = {"inputPer1K": input_per_1k, "outputPer1K": output_per_1k}
    return pricing


def calculate_cost_cents(
    pricing: PricingMap,
    model: Optional[str],
    prompt_tokens: int,
    completion_tokens: int,
) -> Tuple[int, bool]:
    """Return (cost in cents, pricing_found) for a completion."""
    entry = pricing.get(model or "")
    if not entry:
        return 0, False
    input_cost = (prompt_tokens / 1000) * entry["inputPer1K"]
    output_cost = (completion_tokens / 1000) * entry["outputPer1K"]
    return int(math.floor(input_cost + output_cost + 0.5)), True
