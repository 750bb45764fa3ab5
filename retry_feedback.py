"""Turn math validation failures into instructions for the next generation attempt.

Provides:
- build_retry_feedback: generic "{reason} en {day}: expected=..., actual=..." line
- build_two_meal_split_retry_instruction: surgical instruction that only touches
  the offending meal
- compose_retry_feedback: picks the right one for a failure
- build_meal_kcal_guidance: standing per-meal budget for the initial prompt

The retry loop itself belongs to the caller; nothing here counts attempts.
"""

import math
from typing import Any, Dict, Optional, Union

from nutrition_math import TWO_MEAL_SPLIT_MISMATCH
from schemas import ValidationResult
from validation_config import round_half_up

UNKNOWN_DAY = "día desconocido"
UNKNOWN_MEAL = "comida desconocida"

RetryContext = Union[ValidationResult, Dict[str, Any]]


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _as_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _read_context(context: RetryContext) -> Dict[str, Any]:
    """Flatten a ValidationResult or a loose dict into one shape."""
    if isinstance(context, ValidationResult):
        return {
            "reason": context.reason,
            "day_label": context.day_label,
            "meal_title": context.meal_title,
            "expected": context.diff.expected,
            "actual": context.diff.actual,
            "tolerance": context.diff.tolerance,
        }

    diff = context.get("diff") or {}
    if hasattr(diff, "model_dump"):
        diff = diff.model_dump()

    def pick(key: str) -> Optional[float]:
        direct = _as_number(context.get(key))
        return direct if direct is not None else _as_number(diff.get(key))

    return {
        "reason": _as_text(context.get("reason")),
        "day_label": _as_text(context.get("dayLabel", context.get("day_label"))),
        "meal_title": _as_text(context.get("mealTitle", context.get("meal_title"))),
        "expected": pick("expected"),
        "actual": pick("actual"),
        "tolerance": pick("tolerance"),
    }


def build_retry_feedback(context: RetryContext) -> str:
    """Generic feedback line; "" when reason or numbers are missing."""
    data = _read_context(context)
    reason, expected, actual = data["reason"], data["expected"], data["actual"]
    if not reason or expected is None or actual is None:
        return ""

    day_label = data["day_label"] or UNKNOWN_DAY
    feedback = (
        f"{reason} en {day_label}: expected={_format_number(expected)}, "
        f"actual={_format_number(actual)}"
    )
    if data["tolerance"] is not None:
        feedback += f", tolerance=±{_format_number(data['tolerance'])}"
    return feedback


def build_two_meal_split_retry_instruction(context: RetryContext) -> str:
    """Instruction to fix only the meal that broke the two-meal split.

    Returns "" for any other reason, or when the day, meal or numbers are not
    known (a vague retry would destabilize meals that already pass).
    """
    data = _read_context(context)
    if data["reason"] != TWO_MEAL_SPLIT_MISMATCH:
        return ""

    day_label, meal_title = data["day_label"], data["meal_title"]
    expected, actual, tolerance = data["expected"], data["actual"], data["tolerance"]
    if not day_label or not meal_title:
        return ""
    if expected is None or actual is None or tolerance is None:
        return ""

    return (
        f"REINTENTO FOCALIZADO {TWO_MEAL_SPLIT_MISMATCH}: dayLabel={day_label}, "
        f"mealTitle={meal_title}, expected={_format_number(expected)}, "
        f"actual={_format_number(actual)}, tolerance=±{_format_number(tolerance)}. "
        "Ajusta SOLO esa comida para que sus calorías queden dentro del rango "
        "permitido y mantén el resto del plan intacto."
    )


def compose_retry_feedback(context: RetryContext) -> str:
    """Instruction to append to the follow-up generation request."""
    if _read_context(context)["reason"] == TWO_MEAL_SPLIT_MISMATCH:
        return build_two_meal_split_retry_instruction(context)
    return build_retry_feedback(context)


def build_meal_kcal_guidance(target_kcal: float, meals_per_day: int, tolerance: float) -> str:
    """Standing per-meal calorie budget for the *initial* prompt."""
    expected_per_meal = _format_number(round_half_up(target_kcal / meals_per_day))
    target = _format_number(target_kcal)
    tol = _format_number(tolerance)

    if meals_per_day == 2:
        return (
            f"OBJETIVO POR COMIDA (2 comidas/día): targetKcal total={target}, "
            f"expected por comida={expected_per_meal} kcal (round(targetKcal/mealsPerDay)), "
            f"tolerancia por comida=±{tol} kcal. "
            "REGLA DURA: cada comida debe quedar dentro de tolerancia."
        )

    return (
        f"OBJETIVO POR COMIDA: targetKcal total={target}, mealsPerDay={meals_per_day}, "
        f"expected por comida≈{expected_per_meal} kcal, tolerancia por comida=±{tol} kcal. "
        "REGLA DURA: cada comida debe quedar dentro de tolerancia."
    )
