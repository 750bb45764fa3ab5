"""Unit tests for nutrition plan normalization."""

from datetime import date, datetime, timedelta

import pytest

from pipeline_config import PipelineConfig
from plan_errors import PlanSchemaError
from plan_normalizer import (
    as_date,
    coerce_nutrition_plan,
    coerce_training_plan,
    ensure_day_count,
    normalize_nutrition_plan,
    normalize_plan_macros,
    weekday_label,
)
from schemas import NutritionPlan
from validation_config import RoundingConfig, calories_from_macros


@pytest.mark.priority_high
@pytest.mark.unit
class TestNormalizeNutritionPlan:
    def test_days_cycled_to_requested_count(self, nutrition_payload, plan_start):
        result = normalize_nutrition_plan(nutrition_payload, plan_start, 7)

        assert len(result.plan.days) == 7
        titles = [day.meals[0].title for day in result.plan.days]
        assert titles == ["Pollo con arroz"] * 7

    def test_cycled_days_keep_source_order(self, nutrition_payload, plan_start):
        assert len(nutrition_payload["days"]) == 3
        for number, day in enumerate(nutrition_payload["days"], start=1):
            day["meals"][0]["title"] = f"Comida {number}"

        result = normalize_nutrition_plan(nutrition_payload, plan_start, 7)

        titles = [day.meals[0].title for day in result.plan.days]
        assert titles == [
            "Comida 1", "Comida 2", "Comida 3", "Comida 1", "Comida 2", "Comida 3", "Comida 1",
        ]

    def test_extra_days_truncated_in_order(self, nutrition_payload, plan_start):
        for number, day in enumerate(nutrition_payload["days"], start=1):
            day["meals"][0]["title"] = f"Comida {number}"

        result = normalize_nutrition_plan(nutrition_payload, plan_start, 2)

        assert [day.meals[0].title for day in result.plan.days] == ["Comida 1", "Comida 2"]

    def test_dates_follow_start_date(self, nutrition_payload, plan_start):
        result = normalize_nutrition_plan(nutrition_payload, plan_start, 7)

        expected = [(plan_start + timedelta(days=i)).isoformat() for i in range(7)]
        assert [day.date for day in result.plan.days] == expected
        assert result.plan.start_date == plan_start.isoformat()

    def test_weekday_labels(self, nutrition_payload, plan_start):
        result = normalize_nutrition_plan(nutrition_payload, plan_start, 7)

        assert [day.day_label for day in result.plan.days] == [
            "Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado", "Domingo",
        ]

    def test_english_labels(self, nutrition_payload, plan_start):
        result = normalize_nutrition_plan(
            nutrition_payload, plan_start, 2, PipelineConfig(locale="en")
        )
        assert [day.day_label for day in result.plan.days] == ["Monday", "Tuesday"]

    def test_alignment_issues_reported(self, nutrition_payload, plan_start):
        result = normalize_nutrition_plan(nutrition_payload, plan_start, 7)

        assert len(result.alignment_issues) == 7
        first = result.alignment_issues[0]
        assert first.index == 0
        assert first.incoming_date == "2030-01-01"
        assert first.expected_date == "2030-01-07"

    def test_meal_calories_rederived_from_macros(self, nutrition_payload, plan_start):
        result = normalize_nutrition_plan(nutrition_payload, plan_start, 7)

        for day in result.plan.days:
            for meal in day.meals:
                macros = meal.macros
                assert macros.calories == calories_from_macros(
                    macros.protein, macros.carbs, macros.fats
                )
                assert macros.calories == 1040

    def test_plan_daily_values_recomputed(self, nutrition_payload, plan_start):
        plan = normalize_nutrition_plan(nutrition_payload, plan_start, 7).plan

        assert plan.daily_calories == 2080
        assert plan.protein_g == 132
        assert plan.carbs_g == 262
        assert plan.fat_g == 56

    def test_idempotent(self, nutrition_payload, plan_start):
        once = normalize_nutrition_plan(nutrition_payload, plan_start, 7)
        twice = normalize_nutrition_plan(once.plan, plan_start, 7)

        assert twice.plan == once.plan
        assert twice.alignment_issues == []

    def test_input_not_mutated(self, nutrition_payload, plan_start):
        plan = coerce_nutrition_plan(nutrition_payload)
        snapshot = plan.model_copy(deep=True)

        normalize_nutrition_plan(plan, plan_start, 7)

        assert plan == snapshot

    def test_invalid_shape_raises(self, plan_start):
        with pytest.raises(PlanSchemaError) as exc_info:
            normalize_nutrition_plan({"days": [{"meals": [{"macros": {}}]}]}, plan_start, 7)

        issues = exc_info.value.issues
        assert {"path": "days.0.meals.0.title", "message": "Required"} in issues

    def test_non_object_payload_raises(self, plan_start):
        with pytest.raises(PlanSchemaError):
            normalize_nutrition_plan([1, 2, 3], plan_start, 7)


@pytest.mark.priority_medium
@pytest.mark.unit
class TestNormalizerHelpers:
    def test_ensure_day_count_truncates(self, nutrition_payload):
        days = coerce_nutrition_plan(nutrition_payload).days
        assert len(ensure_day_count(days, 2)) == 2

    def test_ensure_day_count_empty(self):
        assert ensure_day_count([], 7) == []

    def test_rounding_half_up_on_grams(self):
        plan = NutritionPlan.model_validate(
            {
                "days": [
                    {
                        "meals": [
                            {"title": "x", "macros": {"protein": 10.5, "carbs": 20.4, "fats": 5.5}}
                        ]
                    }
                ]
            }
        )
        macros = normalize_plan_macros(plan).days[0].meals[0].macros

        assert (macros.protein, macros.carbs, macros.fats) == (11, 20, 6)
        assert macros.calories == 11 * 4 + 20 * 4 + 6 * 9

    def test_decimal_grams(self):
        plan = NutritionPlan.model_validate(
            {"days": [{"meals": [{"title": "x", "macros": {"protein": 10.25}}]}]}
        )
        macros = normalize_plan_macros(plan, RoundingConfig(grams_decimals=1)).days[0].meals[0].macros

        assert macros.protein == 10.3
        assert macros.calories == 41

    def test_empty_plan_averages_are_zero(self):
        plan = normalize_plan_macros(NutritionPlan())
        assert plan.daily_calories == 0

    def test_as_date_variants(self):
        assert as_date("2030-01-07T10:00:00Z") == date(2030, 1, 7)
        assert as_date(datetime(2030, 1, 7, 23, 0)) == date(2030, 1, 7)
        assert as_date(date(2030, 1, 7)) == date(2030, 1, 7)

    def test_weekday_label(self):
        assert weekday_label(date(2030, 1, 13)) == "Domingo"

    def test_coerce_training_plan(self, training_payload):
        plan = coerce_training_plan(training_payload)
        assert plan.days[0].exercises[1].exercise_id == "ex-dominadas"

    def test_coerce_training_plan_rejects_list(self):
        with pytest.raises(PlanSchemaError) as exc_info:
            coerce_training_plan([])
        assert exc_info.value.plan_kind == "training"
