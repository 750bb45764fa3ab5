"""Centralized tolerance and rounding settings for nutrition math checks.

Single source of truth for the values used by:
- plan_normalizer (macro rounding)
- nutrition_math (daily / macro / two-meal split checks)
- retry_feedback (standing per-meal guidance)
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class NutritionMathTolerances:
    """Tolerances for plan math validation.

    Boundaries are inclusive: a deviation exactly equal to the tolerance passes.
    """

    daily_kcal_relative: float = 0.05  # +/- 5% of the daily calorie target
    macro_grams_absolute: float = 5  # +/- 5g per macro
    # Only applied when the plan has exactly two meals per day
    two_meal_split_kcal_absolute: float = 80  # +/- 80 kcal per meal

    def daily_kcal_tolerance(self, target_kcal: float) -> float:
        return abs(target_kcal) * self.daily_kcal_relative


@dataclass(frozen=True)
class RoundingConfig:
    """Decimal places kept for calories and macro grams."""

    kcal_decimals: int = 0
    grams_decimals: int = 0


DEFAULT_TOLERANCES = NutritionMathTolerances()
DEFAULT_ROUNDING = RoundingConfig()

# Atwater factors (kcal per gram)
KCAL_PER_GRAM_PROTEIN = 4
KCAL_PER_GRAM_CARBS = 4
KCAL_PER_GRAM_FAT = 9


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round with halves going up (1199.5 -> 1200, 2.5 -> 3), unlike round()."""
    factor = 10 ** decimals
    rounded = math.floor(value * factor + 0.5) / factor
    if decimals == 0:
        return float(int(rounded))
    return rounded


def calories_from_macros(
    protein: float, carbs: float, fats: float, decimals: int = 0
) -> float:
    """Derive calories as round(4*protein + 4*carbs + 9*fats)."""
    return round_half_up(
        protein * KCAL_PER_GRAM_PROTEIN
        + carbs * KCAL_PER_GRAM_CARBS
        + fats * KCAL_PER_GRAM_FAT,
        decimals,
    )


def format_tolerances_for_prompt(
    tolerances: NutritionMathTolerances = DEFAULT_TOLERANCES,
) -> str:
    """Format tolerances as a string for generation prompts."""
    t = tolerances
    return (
        "NUTRITION MATH TOLERANCES (boundary values pass):\n"
        f"- Daily calories: +/-{t.daily_kcal_relative:.0%} of target\n"
        f"- Protein / carbs / fats: +/-{t.macro_grams_absolute:g}g each\n"
        f"- Two meals per day: each meal within +/-{t.two_meal_split_kcal_absolute:g} kcal "
        "of half the daily target\n"
        "- Meal calories must equal 4*protein + 4*carbs + 9*fats"
    )
