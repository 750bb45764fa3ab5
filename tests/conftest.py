"""Shared test fixtures for the plan pipeline tests."""
import copy
import os
from datetime import date

import pytest

# Keep test runs from writing structured logs next to real ones
os.environ.setdefault("LOG_DIR", "/tmp/plan_pipeline_test_logs")

from fixtures.plans import (  # noqa: E402
    EXERCISE_CATALOG,
    NUTRITION_COMPLETION,
    NUTRITION_PLAN_PAYLOAD,
    RECIPE_CATALOG,
    TRAINING_PLAN_PAYLOAD,
    TRAINING_PLAN_WITH_UNKNOWN,
    UNBALANCED_PLAN_PAYLOAD,
)
from pipeline_config import PipelineConfig  # noqa: E402
from schemas import (  # noqa: E402
    CatalogItem,
    MathConstraints,
    NutritionRequest,
    RecipeCatalogItem,
    UsageUser,
)
from usage_ledger import InMemoryLedgerStore  # noqa: E402


@pytest.fixture
def exercise_catalog():
    """Exercise catalog with mixed equipment tags."""
    return [CatalogItem.model_validate(item) for item in EXERCISE_CATALOG]


@pytest.fixture
def recipe_catalog():
    return [RecipeCatalogItem.model_validate(item) for item in RECIPE_CATALOG]


@pytest.fixture
def nutrition_payload():
    """Fresh copy so tests can mutate it freely."""
    return copy.deepcopy(NUTRITION_PLAN_PAYLOAD)


@pytest.fixture
def unbalanced_payload():
    return copy.deepcopy(UNBALANCED_PLAN_PAYLOAD)


@pytest.fixture
def nutrition_completion():
    return NUTRITION_COMPLETION


@pytest.fixture
def training_payload():
    return copy.deepcopy(TRAINING_PLAN_PAYLOAD)


@pytest.fixture
def training_payload_with_unknown():
    return copy.deepcopy(TRAINING_PLAN_WITH_UNKNOWN)


@pytest.fixture
def plan_start():
    """A Monday."""
    return date(2030, 1, 7)


@pytest.fixture
def two_meal_constraints():
    """2100 kcal in two meals; the fixture plan lands at 2080 kcal."""
    return MathConstraints(
        target_kcal=2100,
        meals_per_day=2,
        macro_targets={"protein_g": 130, "carbs_g": 260, "fats_g": 58},
    )


@pytest.fixture
def nutrition_request(plan_start, two_meal_constraints):
    return NutritionRequest(start_date=plan_start, days_count=7, constraints=two_meal_constraints)


@pytest.fixture
def config():
    return PipelineConfig(pricing={"gpt-4o-mini": {"inputPer1K": 0.5, "outputPer1K": 1.5}})


@pytest.fixture
def pro_user():
    return UsageUser(id="user-1", plan_tier="PRO", token_balance=5)


@pytest.fixture
def ledger_store(pro_user):
    return InMemoryLedgerStore({pro_user.id: pro_user.token_balance})
