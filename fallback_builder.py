"""Catalog-only training plan used when generation is unavailable.

No model call is involved: equal input and catalog always produce an equal
plan, and every exercise slot carries a catalog id.
"""

from datetime import timedelta
from typing import Dict, List, Sequence, Tuple

from catalog_resolution import normalize_catalog_name
from exercise_picker import pick_exercises_for_focus
from observability import setup_structured_logger
from plan_errors import CatalogEmptyError
from schemas import CatalogItem, FallbackInput, TrainingDay, TrainingExercise, TrainingPlan

logger = setup_structured_logger("pipeline.fallback")

FALLBACK_TITLE = "Plan de entrenamiento (fallback biblioteca)"
FALLBACK_NOTES = "Generado automáticamente desde biblioteca local por fallo temporal de IA."
EXERCISE_NOTES = "Prioriza técnica y rango completo."
TEMPO = "2-0-2"

DAY_FOCUS_ORDER = (
    "Pierna + Core",
    "Empuje (Pecho/Hombro/Tríceps)",
    "Tirón (Espalda/Bíceps)",
    "Pierna posterior + Glúteo",
    "Torso mixto",
    "Condicionamiento + Core",
    "Full body técnico",
)

# Day offsets from start_date for each number of sessions per week
WEEKLY_CADENCE: Dict[int, Tuple[int, ...]] = {
    1: (0,),
    2: (0, 3),
    3: (0, 2, 4),
    4: (0, 2, 4, 6),
    5: (0, 1, 3, 4, 6),
    6: (0, 1, 2, 4, 5, 6),
    7: (0, 1, 2, 3, 4, 5, 6),
}

LEVEL_SETTINGS = {
    # level: (sets, exercises per day, duration minutes)
    "beginner": (3, 3, 50),
    "intermediate": (3, 4, 60),
    "advanced": (4, 5, 70),
}

GOAL_SETTINGS = {
    # goal: (reps, rest seconds)
    "cut": ("10-15", 60),
    "maintain": ("8-12", 90),
    "bulk": ("6-10", 120),
}

EQUIPMENT_TAGS = {
    "home": ("bodyweight",),
    "minimal": ("bodyweight", "dumbbell", "band"),
}


def filter_catalog_by_equipment(
    catalog: Sequence[CatalogItem], equipment: str
) -> List[CatalogItem]:
    """Keep items usable with the given equipment profile; "gym" keeps everything."""
    allowed = EQUIPMENT_TAGS.get(equipment)
    if allowed is None:
        return list(catalog)
    return [item for item in catalog if normalize_catalog_name(item.equipment) in allowed]


def build_fallback_training_plan(
    fallback_input: FallbackInput, catalog: Sequence[CatalogItem]
) -> TrainingPlan:
    """Build a training plan from the catalog alone.

    Raises:
        CatalogEmptyError: when no catalog item survives the equipment filter
    """
    available = filter_catalog_by_equipment(catalog, fallback_input.equipment)
    if not available:
        raise CatalogEmptyError(
            "No catalog exercise matches the equipment profile",
            debug={"equipment": fallback_input.equipment, "catalog_size": len(catalog)},
        )

    sets, exercise_count, duration = LEVEL_SETTINGS[fallback_input.level]
    reps, rest = GOAL_SETTINGS[fallback_input.goal]
    offsets = WEEKLY_CADENCE[fallback_input.days_per_week]

    days: List[TrainingDay] = []
    for index, offset in enumerate(offsets):
        focus = DAY_FOCUS_ORDER[index % len(DAY_FOCUS_ORDER)]
        picked = pick_exercises_for_focus(available, focus, exercise_count)
        days.append(
            TrainingDay(
                date=(fallback_input.start_date + timedelta(days=offset)).isoformat(),
                label=f"Día {index + 1}",
                focus=focus,
                duration=duration,
                exercises=[
                    TrainingExercise(
                        name=item.name,
                        exercise_id=item.id,
                        media=item.media,
                        sets=sets,
                        reps=reps,
                        tempo=TEMPO,
                        rest=rest,
                        notes=EXERCISE_NOTES,
                    )
                    for item in picked
                ],
            )
        )

    logger.warning(
        "Deterministic training fallback built",
        extra={
            "extra_fields": {
                "days_per_week": fallback_input.days_per_week,
                "level": fallback_input.level,
                "goal": fallback_input.goal,
                "equipment": fallback_input.equipment,
                "catalog_size": len(available),
            }
        },
    )

    return TrainingPlan(
        title=FALLBACK_TITLE,
        notes=FALLBACK_NOTES,
        start_date=fallback_input.start_date.isoformat(),
        days=days,
    )
