"""Pipeline configuration - passed explicitly to every entry point.

Nothing in the pure pipeline stages reads environment variables; callers build a
PipelineConfig once (usually via load_pipeline_config) and thread it through.
"""

import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional

import pytz
from dotenv import load_dotenv

from pricing import PricingMap, load_pricing
from validation_config import (
    DEFAULT_ROUNDING,
    DEFAULT_TOLERANCES,
    NutritionMathTolerances,
    RoundingConfig,
)

DEFAULT_TIMEZONE = "Europe/Madrid"
DEFAULT_MODEL_NAME = "gpt-4o-mini"
SUPPORTED_LOCALES = ("es", "en")
RECIPE_FALLBACK_STRATEGIES = ("first", "rotate")


@dataclass(frozen=True)
class PipelineConfig:
    """Settings shared by the extractor, normalizer, validator and ledger."""

    tolerances: NutritionMathTolerances = DEFAULT_TOLERANCES
    rounding: RoundingConfig = DEFAULT_ROUNDING
    locale: str = "es"
    timezone: str = DEFAULT_TIMEZONE
    paid_tier: str = "PRO"
    currency: str = "usd"
    pricing: PricingMap = field(default_factory=dict)
    # Retry malformed-but-balanced JSON through json_repair before giving up
    repair_json: bool = False
    recipe_fallback: str = "first"
    model_name: str = DEFAULT_MODEL_NAME

    def __post_init__(self):
        if self.locale not in SUPPORTED_LOCALES:
            raise ValueError(
                f"Unsupported locale '{self.locale}' (expected one of {SUPPORTED_LOCALES})"
            )
        if self.recipe_fallback not in RECIPE_FALLBACK_STRATEGIES:
            raise ValueError(
                f"Unknown recipe fallback '{self.recipe_fallback}' "
                f"(expected one of {RECIPE_FALLBACK_STRATEGIES})"
            )
        # Fail fast on typos instead of at the first default_start_date() call
        pytz.timezone(self.timezone)


DEFAULT_CONFIG = PipelineConfig()


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_pipeline_config(env: Optional[Dict[str, str]] = None) -> PipelineConfig:
    """Build a PipelineConfig from environment variables (.env supported).

    Args:
        env: Optional mapping used instead of os.environ (tests)

    Environment:
        PLAN_DAILY_KCAL_TOLERANCE_PCT, PLAN_MACRO_TOLERANCE_G,
        PLAN_TWO_MEAL_TOLERANCE_KCAL, PLAN_GRAMS_DECIMALS, PLAN_LOCALE,
        PLAN_TIMEZONE, PLAN_PAID_TIER, PLAN_REPAIR_JSON, PLAN_RECIPE_FALLBACK,
        AI_PRICING_JSON, OPENAI_MODEL_NAME
    """
    if env is None:
        load_dotenv()
        env = dict(os.environ)

    def get(name: str, default: str) -> str:
        return env.get(name) or default

    tolerances = NutritionMathTolerances(
        daily_kcal_relative=float(
            get("PLAN_DAILY_KCAL_TOLERANCE_PCT", str(DEFAULT_TOLERANCES.daily_kcal_relative))
        ),
        macro_grams_absolute=float(
            get("PLAN_MACRO_TOLERANCE_G", str(DEFAULT_TOLERANCES.macro_grams_absolute))
        ),
        two_meal_split_kcal_absolute=float(
            get(
                "PLAN_TWO_MEAL_TOLERANCE_KCAL",
                str(DEFAULT_TOLERANCES.two_meal_split_kcal_absolute),
            )
        ),
    )
    rounding = RoundingConfig(
        kcal_decimals=DEFAULT_ROUNDING.kcal_decimals,
        grams_decimals=int(get("PLAN_GRAMS_DECIMALS", str(DEFAULT_ROUNDING.grams_decimals))),
    )

    return PipelineConfig(
        tolerances=tolerances,
        rounding=rounding,
        locale=get("PLAN_LOCALE", "es"),
        timezone=get("PLAN_TIMEZONE", DEFAULT_TIMEZONE),
        paid_tier=get("PLAN_PAID_TIER", "PRO"),
        pricing=load_pricing(env.get("AI_PRICING_JSON")),
        repair_json=_is_truthy(env.get("PLAN_REPAIR_JSON")),
        recipe_fallback=get("PLAN_RECIPE_FALLBACK", "first"),
        model_name=get("OPENAI_MODEL_NAME", DEFAULT_MODEL_NAME),
    )


def default_start_date(config: PipelineConfig, now: Optional[datetime] = None) -> date:
    """Today's date in the configured timezone.

    Used by callers that did not receive an explicit plan start date.
    """
    tz = pytz.timezone(config.timezone)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).date()
