"""Extract JSON values from noisy model output.

Models wrap JSON in markdown fences, surround it with prose, or emit a small
unrelated fragment before the real payload. Both entry points scan the text for
balanced `{...}` / `[...]` candidates (ignoring brackets inside string
literals) and parse them:

- parse_json_from_text: first candidate that parses
- parse_largest_json_from_text: candidate with the most characters
"""

import json
import re
from typing import Any, Iterator, List, Optional, Tuple

import json_repair

from plan_errors import ParseError

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
OPENERS = {"{": "}", "[": "]"}
CLOSERS = {"}", "]"}


def strip_code_fences(text: str) -> str:
    """Remove ``` and ```json markers anywhere in the text."""
    return CODE_FENCE_PATTERN.sub("", text)


def find_balanced_json(text: str, start: int) -> Optional[str]:
    """Return the balanced JSON substring starting at `start`, or None.

    Brackets inside string literals are ignored (backslash escapes respected).
    A closer that does not match the innermost opener abandons the candidate.
    """
    stack: List[str] = []
    in_string = False
    escape = False

    for i in range(start, len(text)):
        char = text[i]

        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
            continue

        if char in OPENERS:
            stack.append(OPENERS[char])
            continue

        if char in CLOSERS:
            if not stack or stack[-1] != char:
                return None
            stack.pop()
            if not stack:
                return text[start : i + 1]

    return None


def iter_json_candidates(text: str) -> Iterator[Tuple[int, str]]:
    """Yield (start, substring) for every balanced candidate, left to right.

    Every opener is a candidate start, including openers nested inside an
    earlier candidate; that is what lets a parse failure fall through to an
    inner value.
    """
    for i, char in enumerate(text):
        if char not in OPENERS:
            continue
        candidate = find_balanced_json(text, i)
        if candidate is not None:
            yield i, candidate


def _clean(text: str) -> str:
    cleaned = strip_code_fences(text or "").strip()
    if not cleaned:
        raise ParseError(ParseError.EMPTY_RESPONSE, text or "")
    return cleaned


def _repair(candidate: str) -> Optional[Any]:
    repaired = json_repair.repair_json(candidate, return_objects=True)
    # json_repair returns "" when nothing salvageable was found
    if isinstance(repaired, (dict, list)) and repaired:
        return repaired
    return None


def parse_json_from_text(text: str, *, repair: bool = False) -> Any:
    """Parse the first balanced JSON object or array found in `text`.

    Args:
        text: Raw model output
        repair: When no candidate parses strictly, retry each balanced
            candidate through json_repair before failing

    Raises:
        ParseError: EMPTY_RESPONSE for blank text, NO_VALID_JSON otherwise
    """
    cleaned = _clean(text)

    balanced: List[str] = []
    for _, candidate in iter_json_candidates(cleaned):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            balanced.append(candidate)
            continue

    if repair:
        for candidate in balanced:
            repaired = _repair(candidate)
            if repaired is not None:
                return repaired

    raise ParseError(ParseError.NO_VALID_JSON, text)


def parse_largest_json_from_text(text: str, *, repair: bool = False) -> Any:
    """Parse the largest balanced JSON value in `text`.

    Used when the response is expected to hold one big composite object that
    may be preceded by an unrelated smaller fragment. Ties keep the earliest.

    Raises:
        ParseError: EMPTY_RESPONSE for blank text, NO_VALID_JSON otherwise
    """
    cleaned = _clean(text)

    best: Optional[Tuple[int, Any]] = None
    failed: List[str] = []
    i = 0
    while i < len(cleaned):
        if cleaned[i] not in OPENERS:
            i += 1
            continue
        candidate = find_balanced_json(cleaned, i)
        if candidate is None:
            i += 1
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            failed.append(candidate)
            i += 1
            continue
        if best is None or len(candidate) > best[0]:
            best = (len(candidate), value)
        # Anything starting inside a parsed candidate is nested and smaller
        i += len(candidate)

    if repair:
        # Only a repaired candidate larger than the best strict parse can win
        best_size = best[0] if best is not None else 0
        for candidate in sorted(failed, key=len, reverse=True):
            if len(candidate) <= best_size:
                break
            repaired = _repair(candidate)
            if repaired is not None:
                return repaired

    if best is not None:
        return best[1]

    raise ParseError(ParseError.NO_VALID_JSON, text)


def unnest_json_strings(value: Any) -> Any:
    """Recursively parse string values that are themselves JSON objects/arrays.

    Example:
        {"plan": "{\\"days\\": []}"} -> {"plan": {"days": []}}
    """
    if isinstance(value, dict):
        return {key: unnest_json_strings(item) for key, item in value.items()}
    if isinstance(value, list):
        return [unnest_json_strings(item) for item in value]
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in OPENERS:
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                return value
            if isinstance(parsed, (dict, list)):
                return unnest_json_strings(parsed)
    return value
