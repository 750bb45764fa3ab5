"""Map plan entries to stable catalog identifiers.

Resolution order per entry:
1. Catalog id supplied by the model and present in the catalog
2. Exact match on the normalized name (accents, case and punctuation ignored)
3. Exercises: left unresolved and reported (the caller rejects the plan)
   Recipes: fallback recipe applied and reported (the plan stays usable)

An empty catalog skips resolution entirely and is reported as
catalog_available=False, so "nothing matched" and "nothing to match against"
stay distinguishable.
"""

import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from observability import setup_structured_logger
from plan_normalizer import normalize_plan_macros
from schemas import (
    CatalogItem,
    Ingredient,
    Meal,
    MealMacros,
    NutritionPlan,
    RecipeCatalogItem,
    TrainingPlan,
    UnresolvedReference,
)
from validation_config import (
    DEFAULT_ROUNDING,
    RoundingConfig,
    calories_from_macros,
    round_half_up,
)

logger = setup_structured_logger("pipeline.catalog")

MISSING_REFERENCE = "MISSING_REFERENCE"
UNKNOWN_REFERENCE_ID = "UNKNOWN_REFERENCE_ID"

NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")

ItemT = TypeVar("ItemT", bound=CatalogItem)


def normalize_catalog_name(value: Optional[str]) -> str:
    """Lowercase, strip accents, collapse punctuation/whitespace to single spaces.

    " Remo  con barra!!! " -> "remo con barra"
    """
    decomposed = unicodedata.normalize("NFD", value or "")
    without_accents = "".join(char for char in decomposed if not unicodedata.combining(char))
    return NON_ALPHANUMERIC.sub(" ", without_accents.lower()).strip()


def index_catalog(catalog: Iterable[ItemT]) -> Tuple[Dict[str, ItemT], Dict[str, ItemT]]:
    """Build (by_id, by_normalized_name) lookups; the first item wins on duplicate names."""
    by_id: Dict[str, ItemT] = {}
    by_name: Dict[str, ItemT] = {}
    for item in catalog:
        by_id.setdefault(item.id, item)
        key = normalize_catalog_name(item.name)
        if key:
            by_name.setdefault(key, item)
    return by_id, by_name


def match_catalog_item(
    reference: Optional[str],
    name: Optional[str],
    by_id: Dict[str, ItemT],
    by_name: Dict[str, ItemT],
) -> Optional[ItemT]:
    candidate = (reference or "").strip()
    if candidate and candidate in by_id:
        return by_id[candidate]
    key = normalize_catalog_name(name)
    if key:
        return by_name.get(key)
    return None


def _unresolved_reason(reference: Optional[str]) -> str:
    return UNKNOWN_REFERENCE_ID if (reference or "").strip() else MISSING_REFERENCE


def _log_unresolved(catalog: str, unresolved: List[UnresolvedReference]) -> None:
    if not unresolved:
        return
    logger.warning(
        f"Unresolved {catalog} references",
        extra={
            "extra_fields": {
                "catalog": catalog,
                "count": len(unresolved),
                "unresolved": [item.model_dump() for item in unresolved],
            }
        },
    )


# ============================================================================
# Exercises
# ============================================================================


@dataclass(frozen=True)
class ExerciseResolution:
    plan: TrainingPlan
    unresolved: List[UnresolvedReference] = field(default_factory=list)
    catalog_available: bool = True


def resolve_exercise_references(
    plan: TrainingPlan, catalog: Sequence[CatalogItem]
) -> ExerciseResolution:
    """Attach catalog ids (and canonical names/media) to every exercise.

    Unresolved exercises keep their name, get exercise_id=None and are reported
    with MISSING_REFERENCE or UNKNOWN_REFERENCE_ID.
    """
    if not catalog:
        return ExerciseResolution(
            plan=plan.model_copy(deep=True), unresolved=[], catalog_available=False
        )

    by_id, by_name = index_catalog(catalog)
    unresolved: List[UnresolvedReference] = []
    days = []

    for day in plan.days:
        exercises = []
        for exercise in day.exercises:
            item = match_catalog_item(exercise.exercise_id, exercise.name, by_id, by_name)
            if item is None:
                name = exercise.name.strip()
                unresolved.append(
                    UnresolvedReference(
                        day=day.label,
                        entry=name,
                        title=name,
                        reference=(exercise.exercise_id or "").strip() or None,
                        reason=_unresolved_reason(exercise.exercise_id),
                    )
                )
                exercises.append(
                    exercise.model_copy(update={"name": name, "exercise_id": None, "media": None})
                )
                continue

            exercises.append(
                exercise.model_copy(
                    update={"name": item.name, "exercise_id": item.id, "media": item.media}
                )
            )
        days.append(day.model_copy(update={"exercises": exercises}))

    _log_unresolved("exercise", unresolved)
    return ExerciseResolution(
        plan=plan.model_copy(deep=True, update={"days": days}),
        unresolved=unresolved,
        catalog_available=True,
    )


def find_invalid_exercise_references(
    plan: TrainingPlan, catalog: Sequence[CatalogItem]
) -> List[UnresolvedReference]:
    """Audit the ids the model supplied, without any name matching."""
    valid_ids = {item.id for item in catalog}
    issues: List[UnresolvedReference] = []
    for day in plan.days:
        for exercise in day.exercises:
            candidate = (exercise.exercise_id or "").strip()
            if candidate in valid_ids:
                continue
            issues.append(
                UnresolvedReference(
                    day=day.label,
                    entry=exercise.name.strip(),
                    title=exercise.name.strip(),
                    reference=candidate or None,
                    reason=_unresolved_reason(candidate),
                )
            )
    return issues


# ============================================================================
# Recipes
# ============================================================================


@dataclass(frozen=True)
class RecipeResolution:
    plan: NutritionPlan
    invalid_references: List[UnresolvedReference] = field(default_factory=list)
    catalog_available: bool = True
    fallback_applied: bool = False


def _round_to_nearest_5(value: float) -> float:
    return max(0.0, round_half_up(value / 5) * 5)


def scale_recipe(
    recipe: RecipeCatalogItem,
    target_calories: float,
    rounding: RoundingConfig = DEFAULT_ROUNDING,
) -> Tuple[MealMacros, List[Ingredient]]:
    """Scale a recipe serving to a meal's calorie target.

    Calories are re-derived from the scaled, rounded macros so the meal keeps
    the 4/4/9 invariant. Ingredient grams are rounded to the nearest 5g.
    """
    safe_target = (
        target_calories
        if math.isfinite(target_calories) and target_calories > 0
        else recipe.calories
    )
    scale = safe_target / recipe.calories if recipe.calories > 0 else 1

    protein = round_half_up(recipe.protein * scale, rounding.grams_decimals)
    carbs = round_half_up(recipe.carbs * scale, rounding.grams_decimals)
    fats = round_half_up(recipe.fat * scale, rounding.grams_decimals)
    macros = MealMacros(
        calories=calories_from_macros(protein, carbs, fats, rounding.kcal_decimals),
        protein=protein,
        carbs=carbs,
        fats=fats,
    )
    ingredients = [
        Ingredient(name=ingredient.name, grams=_round_to_nearest_5(ingredient.grams * scale))
        for ingredient in recipe.ingredients
    ]
    return macros, ingredients


def _apply_recipe(
    meal: Meal, recipe: RecipeCatalogItem, rounding: RoundingConfig, rescale: bool
) -> Meal:
    macros, ingredients = scale_recipe(recipe, meal.macros.calories, rounding)
    if not rescale:
        macros = meal.macros
    return meal.model_copy(
        update={
            "recipe_id": recipe.id,
            "title": recipe.name,
            "description": recipe.description or meal.description,
            "macros": macros,
            "ingredients": ingredients,
        }
    )


def resolve_recipe_references(
    plan: NutritionPlan,
    catalog: Sequence[RecipeCatalogItem],
    *,
    fallback: str = "first",
    rounding: RoundingConfig = DEFAULT_ROUNDING,
    rescale: bool = True,
) -> RecipeResolution:
    """Attach a catalog recipe to every meal; never leaves a meal unresolved.

    Args:
        plan: Normalized nutrition plan
        catalog: Recipe catalog
        fallback: "first" uses catalog[0] for unmatched meals, "rotate" uses
            catalog[(day_index + meal_index) % len(catalog)] for variety
        rounding: Rounding used for scaled macros
        rescale: When False each meal keeps its own macros; only the
            ingredient grams follow the recipe
    """
    if not catalog:
        return RecipeResolution(
            plan=plan.model_copy(deep=True),
            invalid_references=[],
            catalog_available=False,
            fallback_applied=False,
        )

    by_id, by_name = index_catalog(catalog)
    invalid: List[UnresolvedReference] = []
    days = []

    for day_index, day in enumerate(plan.days):
        meals = []
        for meal_index, meal in enumerate(day.meals):
            recipe = match_catalog_item(meal.recipe_id, meal.title, by_id, by_name)
            if recipe is None:
                invalid.append(
                    UnresolvedReference(
                        day=day.day_label,
                        entry=meal.type,
                        title=meal.title,
                        reference=(meal.recipe_id or "").strip() or None,
                        reason=_unresolved_reason(meal.recipe_id),
                    )
                )
                position = (day_index + meal_index) % len(catalog) if fallback == "rotate" else 0
                recipe = catalog[position]
            meals.append(_apply_recipe(meal, recipe, rounding, rescale))
        days.append(day.model_copy(update={"meals": meals}))

    _log_unresolved("recipe", invalid)
    resolved = normalize_plan_macros(plan.model_copy(update={"days": days}), rounding)
    return RecipeResolution(
        plan=resolved,
        invalid_references=invalid,
        catalog_available=True,
        fallback_applied=bool(invalid),
    )
