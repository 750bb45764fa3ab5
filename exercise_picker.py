"""Deterministic exercise selection for a training day focus."""

from typing import Dict, List, Sequence, Tuple

from catalog_resolution import normalize_catalog_name
from plan_errors import CatalogEmptyError
from schemas import CatalogItem

FOCUS_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "pierna": (
        "sentadilla", "prensa", "zancada", "lunge", "femoral", "cuadricep",
        "quad", "glute", "pantorr", "hip thrust", "peso muerto",
    ),
    "empuje": (
        "press", "flexion", "fondo", "tricep", "hombro", "militar", "apertura",
        "elevacion lateral",
    ),
    "tiron": ("remo", "dominada", "jalon", "curl", "bicep", "espalda", "face pull"),
    "core": ("plancha", "abdominal", "crunch", "core", "russian twist", "hollow"),
}

# First match wins, so "Pierna + Core" picks leg patterns.
FOCUS_KEYWORDS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("pierna",), "pierna"),
    (("empu", "push"), "empuje"),
    (("tiron", "pull"), "tiron"),
    (("core", "abs"), "core"),
)


def patterns_for_focus(focus: str) -> Tuple[str, ...]:
    normalized = normalize_catalog_name(focus)
    for keywords, group in FOCUS_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return FOCUS_PATTERNS[group]
    return ()


def pick_exercises_for_focus(
    catalog: Sequence[CatalogItem], focus: str, count: int
) -> List[CatalogItem]:
    """Pick `count` catalog exercises for a day focus.

    Exercises whose name matches the focus patterns come first, then the rest
    of the catalog, both in (normalized name, id) order. When the catalog has
    fewer distinct items than `count`, the selection is cycled.

    Raises:
        CatalogEmptyError: when the catalog has nothing to pick from
    """
    ordered = sorted(catalog, key=lambda item: (normalize_catalog_name(item.name), item.id))
    patterns = patterns_for_focus(focus)

    primary = [
        item
        for item in ordered
        if any(pattern in normalize_catalog_name(item.name) for pattern in patterns)
    ]
    primary_ids = {item.id for item in primary}
    rest = [item for item in ordered if item.id not in primary_ids]

    seen = set()
    selection: List[CatalogItem] = []
    for item in primary + rest:
        if item.id in seen:
            continue
        seen.add(item.id)
        selection.append(item)
        if len(selection) == count:
            break

    if not selection:
        raise CatalogEmptyError(
            "No catalog exercise available", debug={"focus": focus, "count": count}
        )

    return [selection[i % len(selection)] for i in range(count)]
