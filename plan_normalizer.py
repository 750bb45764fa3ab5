"""Reshape parsed nutrition plans into a fixed calendar with consistent math.

The model's own numbers are never trusted: meal calories are always re-derived
from the rounded macros, and plan-level daily values are recomputed from the
meals. Everything here returns new objects; inputs are never mutated.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, List, Tuple, Union

from pydantic import ValidationError

from observability import setup_structured_logger
from pipeline_config import DEFAULT_CONFIG, PipelineConfig
from plan_errors import PlanSchemaError, safe_validation_issues
from schemas import AlignmentIssue, MealMacros, NutritionDay, NutritionPlan, TrainingPlan
from validation_config import (
    DEFAULT_ROUNDING,
    RoundingConfig,
    calories_from_macros,
    round_half_up,
)

logger = setup_structured_logger("pipeline.normalizer")

WEEKDAY_LABELS = {
    "es": ("Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado", "Domingo"),
    "en": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
}


@dataclass(frozen=True)
class NormalizationResult:
    """Normalized plan plus date alignment diagnostics."""

    plan: NutritionPlan
    alignment_issues: List[AlignmentIssue] = field(default_factory=list)


def weekday_label(day: date, locale: str = "es") -> str:
    return WEEKDAY_LABELS[locale][day.weekday()]


def as_date(value: Union[date, datetime, str]) -> date:
    """Accept a date, a datetime or an ISO string (YYYY-MM-DD...)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def coerce_nutrition_plan(raw: Any) -> NutritionPlan:
    """Validate an untyped parsed tree into a NutritionPlan.

    Raises:
        PlanSchemaError: when the tree does not have a plan shape
    """
    if isinstance(raw, NutritionPlan):
        return raw
    if not isinstance(raw, dict):
        raise PlanSchemaError("nutrition", [{"path": "", "message": "Invalid type"}])
    try:
        return NutritionPlan.model_validate(raw)
    except ValidationError as e:
        raise PlanSchemaError("nutrition", safe_validation_issues(e)) from e


def coerce_training_plan(raw: Any) -> TrainingPlan:
    """Validate an untyped parsed tree into a TrainingPlan.

    Raises:
        PlanSchemaError: when the tree does not have a plan shape
    """
    if isinstance(raw, TrainingPlan):
        return raw
    if not isinstance(raw, dict):
        raise PlanSchemaError("training", [{"path": "", "message": "Invalid type"}])
    try:
        return TrainingPlan.model_validate(raw)
    except ValidationError as e:
        raise PlanSchemaError("training", safe_validation_issues(e)) from e


# ============================================================================
# Macro Normalization
# ============================================================================


def _normalize_meal_macros(macros: MealMacros, rounding: RoundingConfig) -> MealMacros:
    protein = round_half_up(macros.protein, rounding.grams_decimals)
    carbs = round_half_up(macros.carbs, rounding.grams_decimals)
    fats = round_half_up(macros.fats, rounding.grams_decimals)
    return MealMacros(
        calories=calories_from_macros(protein, carbs, fats, rounding.kcal_decimals),
        protein=protein,
        carbs=carbs,
        fats=fats,
    )


def normalize_plan_macros(
    plan: NutritionPlan, rounding: RoundingConfig = DEFAULT_ROUNDING
) -> NutritionPlan:
    """Round macros, re-derive calories and recompute plan daily averages."""
    days: List[NutritionDay] = []
    totals = {"calories": 0.0, "protein": 0.0, "carbs": 0.0, "fats": 0.0}

    for day in plan.days:
        meals = []
        for meal in day.meals:
            macros = _normalize_meal_macros(meal.macros, rounding)
            meals.append(
                meal.model_copy(
                    update={
                        "macros": macros,
                        "ingredients": (
                            [ingredient.model_copy() for ingredient in meal.ingredients]
                            if meal.ingredients is not None
                            else None
                        ),
                    }
                )
            )
            totals["calories"] += macros.calories
            totals["protein"] += macros.protein
            totals["carbs"] += macros.carbs
            totals["fats"] += macros.fats
        days.append(day.model_copy(update={"meals": meals}))

    day_count = max(1, len(days))
    return plan.model_copy(
        deep=True,
        update={
            "days": days,
            "daily_calories": round_half_up(totals["calories"] / day_count, rounding.kcal_decimals),
            "protein_g": round_half_up(totals["protein"] / day_count, rounding.grams_decimals),
            "carbs_g": round_half_up(totals["carbs"] / day_count, rounding.grams_decimals),
            "fat_g": round_half_up(totals["fats"] / day_count, rounding.grams_decimals),
        },
    )


# ============================================================================
# Day / Date Normalization
# ============================================================================


def ensure_day_count(days: List[NutritionDay], days_count: int) -> List[NutritionDay]:
    """Return exactly `days_count` days by cycling the existing ones.

    A 3-day plan requested for 7 days becomes days 1,2,3,1,2,3,1.
    An empty list stays empty (there is nothing to cycle).
    """
    if not days or len(days) == days_count:
        return [day.model_copy(deep=True) for day in days]
    return [days[i % len(days)].model_copy(deep=True) for i in range(days_count)]


def normalize_plan_days(
    plan: NutritionPlan,
    start_date: Union[date, datetime, str],
    days_count: int,
    locale: str = "es",
) -> Tuple[NutritionPlan, List[AlignmentIssue]]:
    """Align days to start_date + index and relabel them with weekday names."""
    start = as_date(start_date)
    alignment_issues: List[AlignmentIssue] = []
    days: List[NutritionDay] = []

    for index, day in enumerate(ensure_day_count(plan.days, days_count)):
        expected = start + timedelta(days=index)
        expected_iso = expected.isoformat()
        if day.date != expected_iso:
            alignment_issues.append(
                AlignmentIssue(index=index, incoming_date=day.date, expected_date=expected_iso)
            )
        days.append(
            day.model_copy(update={"date": expected_iso, "day_label": weekday_label(expected, locale)})
        )

    normalized = plan.model_copy(
        deep=True, update={"start_date": start.isoformat(), "days": days}
    )
    return normalized, alignment_issues


def normalize_nutrition_plan(
    raw: Any,
    start_date: Union[date, datetime, str],
    days_count: int,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> NormalizationResult:
    """Full normalization: day count, calendar alignment, then macro math.

    Args:
        raw: Parsed model output (dict) or an existing NutritionPlan
        start_date: First calendar day of the plan
        days_count: Number of days the caller asked for
        config: Pipeline settings (rounding, weekday locale)

    Raises:
        PlanSchemaError: when `raw` does not have the shape of a plan
    """
    plan = coerce_nutrition_plan(raw)
    aligned, alignment_issues = normalize_plan_days(plan, start_date, days_count, config.locale)
    normalized = normalize_plan_macros(aligned, config.rounding)

    if alignment_issues:
        logger.warning(
            "Nutrition plan dates realigned",
            extra={
                "extra_fields": {
                    "alignment_issues": [
                        issue.model_dump(by_alias=True) for issue in alignment_issues
                    ],
                    "incoming_days": len(plan.days),
                    "days_count": days_count,
                }
            },
        )

    return NormalizationResult(plan=normalized, alignment_issues=alignment_issues)
