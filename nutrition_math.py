"""Check normalized nutrition plans against calorie and macro targets.

Checks run in a fixed order and stop at the first violation:

1. Plan daily calories vs target (+/-5%)          DAILY_CALORIES_MISMATCH
2. Plan protein / carbs / fats vs targets (+/-5g) DAILY_MACROS_MISMATCH
3. Per day: meal count (opt-in), day calories, day macros, and for exactly
   two meals per day each meal vs half the target (+/-80 kcal)
                                                   TWO_MEAL_SPLIT_MISMATCH
"""

from typing import List, Optional, Tuple

from schemas import MathConstraints, NutritionDiff, NutritionPlan, ValidationResult
from validation_config import (
    DEFAULT_ROUNDING,
    DEFAULT_TOLERANCES,
    NutritionMathTolerances,
    RoundingConfig,
    round_half_up,
)

DAILY_CALORIES_MISMATCH = "DAILY_CALORIES_MISMATCH"
DAILY_MACROS_MISMATCH = "DAILY_MACROS_MISMATCH"
TWO_MEAL_SPLIT_MISMATCH = "TWO_MEAL_SPLIT_MISMATCH"
MEALS_PER_DAY_MISMATCH = "MEALS_PER_DAY_MISMATCH"

PLAN_LOCATION = "plan"


def build_diff(actual: float, expected: float, tolerance: float, decimals: int) -> NutritionDiff:
    """Round both sides, then compare inclusively (|delta| <= tolerance)."""
    rounded_actual = round_half_up(actual, decimals)
    rounded_expected = round_half_up(expected, decimals)
    delta = round_half_up(rounded_actual - rounded_expected, decimals)
    rounded_tolerance = round_half_up(tolerance, decimals)
    return NutritionDiff(
        expected=rounded_expected,
        actual=rounded_actual,
        delta=delta,
        abs_delta=abs(delta),
        tolerance=rounded_tolerance,
        within_tolerance=abs(delta) <= rounded_tolerance,
    )


def _issue(
    reason: str,
    location: str,
    actual: float,
    expected: float,
    tolerance: float,
    decimals: int,
    **extra,
) -> Optional[ValidationResult]:
    diff = build_diff(actual, expected, tolerance, decimals)
    if diff.within_tolerance:
        return None
    return ValidationResult(reason=reason, location=location, diff=diff, **extra)


def _macro_checks(
    totals: Tuple[float, float, float],
    constraints: MathConstraints,
) -> List[Tuple[str, float, float]]:
    targets = constraints.macro_targets
    if targets is None:
        return []
    protein, carbs, fats = totals
    return [
        ("protein", protein, targets.protein_g),
        ("carbs", carbs, targets.carbs_g),
        ("fats", fats, targets.fats_g),
    ]


def validate_nutrition_math(
    plan: NutritionPlan,
    constraints: MathConstraints,
    tolerances: NutritionMathTolerances = DEFAULT_TOLERANCES,
    rounding: RoundingConfig = DEFAULT_ROUNDING,
) -> Optional[ValidationResult]:
    """Return None when the plan satisfies the targets, else the first violation.

    Args:
        plan: A normalized plan (see plan_normalizer.normalize_nutrition_plan)
        constraints: Daily kcal target, meals per day and optional macro targets
        tolerances: Tolerance settings (defaults: 5%, 5g, 80 kcal)
        rounding: Decimal places used when comparing values
    """
    kcal_tolerance = tolerances.daily_kcal_tolerance(constraints.target_kcal)
    grams_tolerance = tolerances.macro_grams_absolute
    kcal_decimals = rounding.kcal_decimals
    grams_decimals = rounding.grams_decimals

    issue = _issue(
        DAILY_CALORIES_MISMATCH,
        PLAN_LOCATION,
        plan.daily_calories,
        constraints.target_kcal,
        kcal_tolerance,
        kcal_decimals,
    )
    if issue:
        return issue

    for macro, actual, expected in _macro_checks(
        (plan.protein_g, plan.carbs_g, plan.fat_g), constraints
    ):
        issue = _issue(
            DAILY_MACROS_MISMATCH,
            PLAN_LOCATION,
            actual,
            expected,
            grams_tolerance,
            grams_decimals,
            macro=macro,
        )
        if issue:
            return issue

    for day in plan.days:
        label = day.day_label

        if constraints.enforce_meal_count and len(day.meals) != constraints.meals_per_day:
            delta = len(day.meals) - constraints.meals_per_day
            return ValidationResult(
                reason=MEALS_PER_DAY_MISMATCH,
                location=label,
                day_label=label,
                diff=NutritionDiff(
                    expected=constraints.meals_per_day,
                    actual=len(day.meals),
                    delta=delta,
                    abs_delta=abs(delta),
                    tolerance=0,
                    within_tolerance=False,
                ),
            )

        calories = sum(meal.macros.calories for meal in day.meals)
        protein = sum(meal.macros.protein for meal in day.meals)
        carbs = sum(meal.macros.carbs for meal in day.meals)
        fats = sum(meal.macros.fats for meal in day.meals)

        issue = _issue(
            DAILY_CALORIES_MISMATCH,
            label,
            calories,
            constraints.target_kcal,
            kcal_tolerance,
            kcal_decimals,
            day_label=label,
        )
        if issue:
            return issue

        for macro, actual, expected in _macro_checks((protein, carbs, fats), constraints):
            issue = _issue(
                DAILY_MACROS_MISMATCH,
                label,
                actual,
                expected,
                grams_tolerance,
                grams_decimals,
                day_label=label,
                macro=macro,
            )
            if issue:
                return issue

        # Literal special case: the tighter per-meal check only exists for two meals/day
        if constraints.meals_per_day == 2:
            expected_meal_kcal = constraints.target_kcal / 2
            for meal in day.meals:
                issue = _issue(
                    TWO_MEAL_SPLIT_MISMATCH,
                    label,
                    meal.macros.calories,
                    expected_meal_kcal,
                    tolerances.two_meal_split_kcal_absolute,
                    kcal_decimals,
                    day_label=label,
                    meal_title=meal.title,
                )
                if issue:
                    return issue

    return None
