"""Pydantic models for plans, catalogs, validation results and usage billing."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field

# Plan models accept the camelCase keys models emit as well as snake_case names.
PLAN_MODEL_CONFIG = {"populate_by_name": True, "extra": "ignore"}


# ============================================================================
# Nutrition Plan Schemas
# ============================================================================


class MealMacros(BaseModel):
    """Macro tuple for a single meal."""

    model_config = PLAN_MODEL_CONFIG

    calories: float = Field(default=0, description="Meal calories (kcal)")
    protein: float = Field(default=0, description="Protein in grams")
    carbs: float = Field(default=0, description="Carbohydrates in grams")
    fats: float = Field(
        default=0,
        validation_alias=AliasChoices("fats", "fat"),
        description="Fat in grams",
    )


class Ingredient(BaseModel):
    """Ingredient with its weight in grams."""

    name: str = Field(..., description="Ingredient name")
    grams: float = Field(default=0, description="Quantity in grams")


class Meal(BaseModel):
    """A meal entry within a nutrition day."""

    model_config = PLAN_MODEL_CONFIG

    type: str = Field(default="meal", description="breakfast, lunch, dinner, snack")
    title: str = Field(..., description="Meal title as written by the model")
    description: Optional[str] = Field(default=None)
    recipe_id: Optional[str] = Field(
        default=None, alias="recipeId", description="Recipe catalog identifier"
    )
    macros: MealMacros = Field(default_factory=MealMacros)
    ingredients: Optional[List[Ingredient]] = Field(default=None)


class NutritionDay(BaseModel):
    """One calendar day of a nutrition plan."""

    model_config = PLAN_MODEL_CONFIG

    date: Optional[str] = Field(default=None, description="ISO date (YYYY-MM-DD)")
    day_label: str = Field(default="", alias="dayLabel", description="Weekday label")
    meals: List[Meal] = Field(default_factory=list)


class NutritionPlan(BaseModel):
    """Nutrition plan with per-day meals and plan-level daily averages."""

    model_config = PLAN_MODEL_CONFIG

    title: str = Field(default="Plan de nutrición")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    daily_calories: float = Field(default=0, alias="dailyCalories")
    protein_g: float = Field(default=0, alias="proteinG")
    carbs_g: float = Field(default=0, alias="carbsG")
    fat_g: float = Field(default=0, alias="fatG")
    days: List[NutritionDay] = Field(default_factory=list)
    shopping_list: Optional[List[Ingredient]] = Field(default=None, alias="shoppingList")


class AlignmentIssue(BaseModel):
    """A day whose incoming date did not match the expected calendar date."""

    model_config = PLAN_MODEL_CONFIG

    index: int
    incoming_date: Optional[str] = Field(default=None, alias="incomingDate")
    expected_date: str = Field(..., alias="expectedDate")


# ============================================================================
# Training Plan Schemas
# ============================================================================


class TrainingExercise(BaseModel):
    """An exercise slot within a training day."""

    model_config = PLAN_MODEL_CONFIG

    name: str = Field(..., description="Exercise name")
    exercise_id: Optional[str] = Field(
        default=None, alias="exerciseId", description="Exercise catalog identifier"
    )
    media: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("media", "imageUrl"),
        description="Image/video reference copied from the catalog",
    )
    sets: int = Field(default=3)
    reps: Union[int, str] = Field(default="8-12")
    tempo: Optional[str] = Field(default=None)
    rest: Optional[Union[int, str]] = Field(default=None, description="Rest in seconds")
    notes: Optional[str] = Field(default=None)


class TrainingDay(BaseModel):
    """One training session."""

    model_config = PLAN_MODEL_CONFIG

    date: Optional[str] = Field(default=None, description="ISO date (YYYY-MM-DD)")
    label: str = Field(default="")
    focus: Optional[str] = Field(default=None)
    duration: Optional[int] = Field(default=None, description="Session length in minutes")
    exercises: List[TrainingExercise] = Field(default_factory=list)


class TrainingPlan(BaseModel):
    """Training plan as persisted."""

    model_config = PLAN_MODEL_CONFIG

    title: str = Field(default="Plan de entrenamiento")
    notes: Optional[str] = Field(default=None)
    start_date: Optional[str] = Field(default=None, alias="startDate")
    days: List[TrainingDay] = Field(default_factory=list)


# ============================================================================
# Catalog Schemas
# ============================================================================


class CatalogItem(BaseModel):
    """Read-only item from the external exercise/recipe catalog."""

    model_config = PLAN_MODEL_CONFIG

    id: str = Field(..., description="Stable catalog identifier")
    name: str = Field(..., description="Display name")
    equipment: Optional[str] = Field(default=None, description="e.g. Bodyweight, Barbell")
    media: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("media", "imageUrl")
    )


class RecipeCatalogItem(CatalogItem):
    """Recipe catalog item; macros are per serving."""

    description: Optional[str] = Field(default=None)
    calories: float = Field(default=0)
    protein: float = Field(default=0)
    carbs: float = Field(default=0)
    fat: float = Field(default=0)
    ingredients: List[Ingredient] = Field(default_factory=list)


UnresolvedReason = Literal["MISSING_REFERENCE", "UNKNOWN_REFERENCE_ID"]


class UnresolvedReference(BaseModel):
    """A plan entry that could not be mapped to a catalog item."""

    day: str = Field(..., description="Day label")
    entry: str = Field(..., description="Exercise name or meal type")
    title: str = Field(..., description="Entry title as written by the model")
    reference: Optional[str] = Field(default=None, description="Supplied catalog id")
    reason: UnresolvedReason


# ============================================================================
# Validation Schemas
# ============================================================================


class MacroTargets(BaseModel):
    """Daily macro targets in grams."""

    model_config = PLAN_MODEL_CONFIG

    protein_g: float = Field(..., alias="proteinG")
    carbs_g: float = Field(..., alias="carbsG")
    fats_g: float = Field(..., alias="fatsG")


class MathConstraints(BaseModel):
    """Caller targets a nutrition plan is validated against."""

    model_config = PLAN_MODEL_CONFIG

    target_kcal: float = Field(..., alias="targetKcal", gt=0)
    meals_per_day: int = Field(..., alias="mealsPerDay", ge=1)
    macro_targets: Optional[MacroTargets] = Field(default=None, alias="macroTargets")
    enforce_meal_count: bool = Field(
        default=False,
        alias="enforceMealCount",
        description="Also reject days whose meal count differs from meals_per_day",
    )


class NutritionDiff(BaseModel):
    """Expected vs actual comparison for one check."""

    model_config = PLAN_MODEL_CONFIG

    expected: float
    actual: float
    delta: float
    abs_delta: float = Field(..., alias="absDelta")
    tolerance: float
    within_tolerance: bool = Field(..., alias="withinTolerance")


class ValidationResult(BaseModel):
    """First math violation found in a plan. Never persisted."""

    model_config = PLAN_MODEL_CONFIG

    reason: str = Field(..., description="DAILY_CALORIES_MISMATCH, ...")
    location: str = Field(..., description="'plan' or the day label")
    day_label: Optional[str] = Field(default=None, alias="dayLabel")
    meal_title: Optional[str] = Field(default=None, alias="mealTitle")
    macro: Optional[str] = Field(default=None, description="protein, carbs or fats")
    diff: NutritionDiff


class NutritionRequest(BaseModel):
    """What the caller asked for when generating a nutrition plan."""

    model_config = PLAN_MODEL_CONFIG

    start_date: date = Field(..., alias="startDate")
    days_count: int = Field(..., alias="daysCount", ge=1)
    constraints: MathConstraints


# ============================================================================
# Fallback Schemas
# ============================================================================


class FallbackInput(BaseModel):
    """Inputs of the deterministic training fallback."""

    model_config = PLAN_MODEL_CONFIG

    days_per_week: int = Field(..., alias="daysPerWeek", ge=1, le=7)
    level: Literal["beginner", "intermediate", "advanced"] = "beginner"
    goal: Literal["cut", "maintain", "bulk"] = "maintain"
    start_date: date = Field(..., alias="startDate")
    equipment: Literal["gym", "home", "minimal"] = "gym"


# ============================================================================
# Usage Billing Schemas
# ============================================================================


class TokenUsage(BaseModel):
    """Usage counters reported by the model provider (all optional)."""

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ModelResult(BaseModel):
    """Output of one model invocation."""

    model_config = PLAN_MODEL_CONFIG

    text: str = Field(default="", description="Raw completion text")
    payload: Optional[Dict[str, Any]] = Field(default=None)
    model: Optional[str] = Field(default=None)
    usage: Optional[TokenUsage] = Field(default=None)
    request_id: Optional[str] = Field(default=None, alias="requestId")


class UsageUser(BaseModel):
    """Billing view of the user at request time."""

    model_config = PLAN_MODEL_CONFIG

    id: str
    plan_tier: str = Field(..., alias="planTier")
    token_balance: int = Field(..., alias="tokenBalance")


class UsageLedgerEntry(BaseModel):
    """Audit row written together with the balance debit. Immutable."""

    model_config = {"frozen": True}

    user_id: str
    feature: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_cents: int = 0
    currency: str = "usd"
    request_id: Optional[str] = None
    meta: Dict[str, bool] = Field(
        default_factory=dict, description="usageMissing / pricingMissing / overdraw"
    )


class UsageCharge(BaseModel):
    """Outcome of charging one generation to a user."""

    payload: Optional[Dict[str, Any]] = None
    tokens_spent: int
    cost_cents: int
    balance_before: int
    balance_after: int
    overdrawn: bool = False
    idempotent_replay: bool = False
    entry: Optional[UsageLedgerEntry] = None
