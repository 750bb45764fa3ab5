"""Acceptance contract for generated plans.

Each function is one transition of the generate -> parse -> normalize ->
validate -> resolve flow. The retry loop and its attempt budget belong to the
caller:

    try:
        candidate = prepare_nutrition_candidate(result.text, request, config)
        accepted = accept_nutrition_plan(candidate, recipes, config)
    except RECOVERABLE_ERRORS as e:
        prompt += "\\n" + retry_context_for(e)   # then call the model again

When the budget is exhausted on the training flow, fallback_training_plan()
builds a catalog-only plan instead of surfacing an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from catalog_resolution import resolve_exercise_references, resolve_recipe_references
from fallback_builder import build_fallback_training_plan
from json_extraction import parse_largest_json_from_text, unnest_json_strings
from nutrition_math import validate_nutrition_math
from observability import log_payload, log_stage, setup_structured_logger
from pipeline_config import DEFAULT_CONFIG, PipelineConfig
from plan_errors import (
    CatalogUnavailableError,
    ParseError,
    PlanSchemaError,
    UnresolvedCatalogReference,
    ValidationFailure,
)
from plan_normalizer import coerce_training_plan, normalize_nutrition_plan
from retry_feedback import build_meal_kcal_guidance, compose_retry_feedback
from schemas import (
    AlignmentIssue,
    CatalogItem,
    FallbackInput,
    MathConstraints,
    NutritionPlan,
    NutritionRequest,
    RecipeCatalogItem,
    TrainingPlan,
    UnresolvedReference,
    ValidationResult,
)
from validation_config import format_tolerances_for_prompt

logger = setup_structured_logger("pipeline.acceptance")

PARSE_RETRY_INSTRUCTION = (
    "La respuesta anterior no contenía JSON válido. Responde únicamente con el "
    "objeto JSON del plan, sin texto adicional ni bloques de código."
)
SCHEMA_RETRY_INSTRUCTION = (
    "La respuesta anterior no cumplía el esquema del plan. Corrige estos campos: {fields}."
)


@dataclass(frozen=True)
class NutritionCandidate:
    """Normalized nutrition plan plus the outcome of the math checks."""

    plan: NutritionPlan
    alignment_issues: List[AlignmentIssue] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    constraints: Optional[MathConstraints] = None

    @property
    def is_valid(self) -> bool:
        return self.validation is None


@dataclass(frozen=True)
class AcceptedNutritionPlan:
    plan: NutritionPlan
    alignment_issues: List[AlignmentIssue] = field(default_factory=list)
    invalid_recipe_references: List[UnresolvedReference] = field(default_factory=list)
    recipe_catalog_available: bool = True
    recipe_fallback_applied: bool = False
    recipe_macros_applied: bool = True


def extract_plan_payload(raw_text: str, config: PipelineConfig = DEFAULT_CONFIG) -> Any:
    """Parse the largest JSON value in a completion, unwrapping {"plan": {...}}.

    Raises:
        ParseError: when the text holds no parseable JSON
    """
    payload = unnest_json_strings(parse_largest_json_from_text(raw_text, repair=config.repair_json))
    if isinstance(payload, dict) and isinstance(payload.get("plan"), dict):
        return payload["plan"]
    return payload


def build_nutrition_prompt_guidance(
    request: NutritionRequest, config: PipelineConfig = DEFAULT_CONFIG
) -> str:
    """Standing math rules to include in the initial nutrition prompt."""
    constraints = request.constraints
    return "\n".join(
        [
            format_tolerances_for_prompt(config.tolerances),
            build_meal_kcal_guidance(
                constraints.target_kcal,
                constraints.meals_per_day,
                config.tolerances.two_meal_split_kcal_absolute,
            ),
        ]
    )


def prepare_nutrition_candidate(
    raw_text: str,
    request: NutritionRequest,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> NutritionCandidate:
    """Parse, normalize and validate one nutrition completion.

    Raises:
        ParseError: no JSON in the completion
        PlanSchemaError: JSON is not a nutrition plan
    """
    with log_stage(
        logger,
        "prepare_nutrition_candidate",
        days_count=request.days_count,
        target_kcal=request.constraints.target_kcal,
    ):
        payload = extract_plan_payload(raw_text, config)
        normalized = normalize_nutrition_plan(
            payload, request.start_date, request.days_count, config
        )
        validation = validate_nutrition_math(
            normalized.plan, request.constraints, config.tolerances, config.rounding
        )

    if validation is not None:
        log_payload(logger, "Nutrition math violation", validation, level=logging.WARNING)

    return NutritionCandidate(
        plan=normalized.plan,
        alignment_issues=normalized.alignment_issues,
        validation=validation,
        constraints=request.constraints,
    )


def accept_nutrition_plan(
    candidate: NutritionCandidate,
    recipe_catalog: Sequence[RecipeCatalogItem],
    config: PipelineConfig = DEFAULT_CONFIG,
) -> AcceptedNutritionPlan:
    """Gate a candidate on its math, then attach catalog recipes.

    Rescaled recipe macros are kept only when the resolved plan still passes
    the candidate's constraints; otherwise every meal keeps the macros it was
    validated with and only takes the recipe's identity and ingredients.

    Raises:
        ValidationFailure: the candidate (or the resolved plan) failed a math check
    """
    if candidate.validation is not None:
        raise ValidationFailure(candidate.validation)

    def _recheck(plan: NutritionPlan) -> Optional[ValidationResult]:
        if candidate.constraints is None:
            return None
        return validate_nutrition_math(
            plan, candidate.constraints, config.tolerances, config.rounding
        )

    with log_stage(logger, "accept_nutrition_plan", catalog_size=len(recipe_catalog)):
        resolution = resolve_recipe_references(
            candidate.plan,
            recipe_catalog,
            fallback=config.recipe_fallback,
            rounding=config.rounding,
        )
        macros_applied = resolution.catalog_available
        drift = _recheck(resolution.plan)
        if drift is not None:
            log_payload(
                logger, "Recipe macros drift from validated plan", drift, level=logging.WARNING
            )
            resolution = resolve_recipe_references(
                candidate.plan,
                recipe_catalog,
                fallback=config.recipe_fallback,
                rounding=config.rounding,
                rescale=False,
            )
            macros_applied = False
            drift = _recheck(resolution.plan)
            if drift is not None:
                raise ValidationFailure(drift)

    return AcceptedNutritionPlan(
        plan=resolution.plan,
        alignment_issues=candidate.alignment_issues,
        invalid_recipe_references=resolution.invalid_references,
        recipe_catalog_available=resolution.catalog_available,
        recipe_fallback_applied=resolution.fallback_applied,
        recipe_macros_applied=macros_applied,
    )


def accept_training_plan(
    raw: Any,
    exercise_catalog: Sequence[CatalogItem],
    config: PipelineConfig = DEFAULT_CONFIG,
) -> TrainingPlan:
    """Parse a training completion and bind every exercise to the catalog.

    Args:
        raw: Completion text, an already-parsed dict or a TrainingPlan
        exercise_catalog: Exercise catalog
        config: Pipeline settings

    Raises:
        ParseError / PlanSchemaError: unusable completion
        CatalogUnavailableError: there is no catalog to resolve against
        UnresolvedCatalogReference: at least one exercise has no catalog match
    """
    with log_stage(logger, "accept_training_plan", catalog_size=len(exercise_catalog)):
        payload = extract_plan_payload(raw, config) if isinstance(raw, str) else raw
        plan = coerce_training_plan(payload)
        resolution = resolve_exercise_references(plan, exercise_catalog)

        if not resolution.catalog_available:
            raise CatalogUnavailableError("Exercise catalog is empty")
        if resolution.unresolved:
            raise UnresolvedCatalogReference("exercise", resolution.unresolved)

    return resolution.plan


def retry_context_for(error: Exception) -> str:
    """Instruction to append to the next prompt after a recoverable failure."""
    if isinstance(error, ValidationFailure):
        return compose_retry_feedback(error.to_context())
    if isinstance(error, ParseError):
        return PARSE_RETRY_INSTRUCTION
    if isinstance(error, PlanSchemaError):
        fields = ", ".join(issue["path"] or "(raíz)" for issue in error.issues)
        return SCHEMA_RETRY_INSTRUCTION.format(fields=fields)
    return ""


def fallback_training_plan(
    fallback_input: FallbackInput, catalog: Sequence[CatalogItem]
) -> TrainingPlan:
    """Catalog-only training plan for when generation keeps failing."""
    with log_stage(
        logger,
        "fallback_training_plan",
        days_per_week=fallback_input.days_per_week,
        catalog_size=len(catalog),
    ):
        return build_fallback_training_plan(fallback_input, catalog)
