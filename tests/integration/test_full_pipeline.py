"""Integration tests: caller-owned retry loops around the pipeline stages.

Model calls are replaced by scripted completions; everything else (parsing,
normalization, validation, resolution, billing) runs for real.
"""

import json

import pytest

from plan_errors import RECOVERABLE_ERRORS, UnresolvedCatalogReference
from plan_pipeline import (
    accept_nutrition_plan,
    accept_training_plan,
    fallback_training_plan,
    prepare_nutrition_candidate,
    retry_context_for,
)
from schemas import FallbackInput, MathConstraints, ModelResult, NutritionRequest, TokenUsage
from usage_ledger import charge_ai_usage

MAX_ATTEMPTS = 3


class ScriptedModel:
    """Returns canned completions in order and records every prompt."""

    def __init__(self, completions):
        self.completions = list(completions)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        text = self.completions.pop(0)
        return ModelResult(
            text=text,
            model="gpt-4o-mini",
            usage=TokenUsage(prompt_tokens=1, completion_tokens=1, total_tokens=1),
            request_id=f"req-{len(self.prompts)}",
        )


def generate_nutrition_plan(model, store, user, request, recipes, config):
    """Bounded retry loop as an API handler would write it."""
    prompt = "Genera el plan"
    last_error = None
    for _ in range(MAX_ATTEMPTS):
        charge = charge_ai_usage(
            store, user, "nutrition_plan", lambda: model(prompt), config=config
        )
        user = user.model_copy(update={"token_balance": charge.balance_after})
        try:
            candidate = prepare_nutrition_candidate(model.last_text, request, config)
            return accept_nutrition_plan(candidate, recipes, config), user
        except RECOVERABLE_ERRORS as e:
            last_error = e
            prompt = "Genera el plan\n" + retry_context_for(e)
    raise last_error


def generate_training_plan(model, catalog, fallback_input, config):
    prompt = "Genera el entrenamiento"
    for _ in range(MAX_ATTEMPTS):
        result = model(prompt)
        try:
            return accept_training_plan(result.text, catalog, config)
        except RECOVERABLE_ERRORS + (UnresolvedCatalogReference,) as e:
            prompt = "Genera el entrenamiento\n" + retry_context_for(e)
    return fallback_training_plan(fallback_input, catalog)


class RecordingModel(ScriptedModel):
    def __call__(self, prompt):
        result = super().__call__(prompt)
        self.last_text = result.text
        return result


@pytest.mark.priority_high
@pytest.mark.integration
class TestNutritionRetryLoop:
    @pytest.mark.timeout(30)
    def test_recovers_after_split_mismatch(
        self, unbalanced_payload, nutrition_payload, recipe_catalog, ledger_store, pro_user, config, plan_start
    ):
        request = NutritionRequest(
            start_date=plan_start,
            days_count=1,
            constraints=MathConstraints(target_kcal=2100, meals_per_day=2),
        )
        model = RecordingModel(
            ["no tengo JSON", json.dumps(unbalanced_payload), json.dumps(nutrition_payload)]
        )
        user = pro_user.model_copy(update={"token_balance": 10})
        ledger_store.balances[user.id] = 10

        accepted, user = generate_nutrition_plan(
            model, ledger_store, user, request, recipe_catalog, config
        )

        assert len(model.prompts) == 3
        assert "JSON válido" in model.prompts[1]
        assert "REINTENTO FOCALIZADO TWO_MEAL_SPLIT_MISMATCH" in model.prompts[2]
        assert "mealTitle=Ensalada ligera" in model.prompts[2]
        assert accepted.plan.days[0].day_label == "Lunes"
        assert len(ledger_store.entries) == 3
        assert ledger_store.balances[user.id] == 7

    @pytest.mark.timeout(30)
    def test_budget_exhausted_surfaces_last_error(
        self, unbalanced_payload, recipe_catalog, ledger_store, pro_user, config, plan_start
    ):
        request = NutritionRequest(
            start_date=plan_start,
            days_count=1,
            constraints=MathConstraints(target_kcal=2100, meals_per_day=2),
        )
        model = RecordingModel([json.dumps(unbalanced_payload)] * MAX_ATTEMPTS)
        user = pro_user.model_copy(update={"token_balance": 10})
        ledger_store.balances[user.id] = 10

        with pytest.raises(RECOVERABLE_ERRORS):
            generate_nutrition_plan(model, ledger_store, user, request, recipe_catalog, config)

        assert len(model.prompts) == MAX_ATTEMPTS


@pytest.mark.priority_high
@pytest.mark.integration
class TestTrainingRetryLoop:
    @pytest.mark.timeout(30)
    def test_falls_back_after_unresolved_exercises(
        self, training_payload_with_unknown, exercise_catalog, config, plan_start
    ):
        model = ScriptedModel([json.dumps(training_payload_with_unknown)] * MAX_ATTEMPTS)
        fallback_input = FallbackInput(days_per_week=3, start_date=plan_start, equipment="home")

        plan = generate_training_plan(model, exercise_catalog, fallback_input, config)

        assert len(model.prompts) == MAX_ATTEMPTS
        assert plan.title == "Plan de entrenamiento (fallback biblioteca)"
        assert all(exercise.exercise_id for day in plan.days for exercise in day.exercises)

    @pytest.mark.timeout(30)
    def test_accepts_on_second_attempt(self, training_payload, exercise_catalog, config, plan_start):
        model = ScriptedModel(["```json\n{roto", "```json\n" + json.dumps(training_payload) + "\n```"])
        fallback_input = FallbackInput(days_per_week=3, start_date=plan_start)

        plan = generate_training_plan(model, exercise_catalog, fallback_input, config)

        assert plan.title == "Plan fuerza"
        assert len(model.prompts) == 2
