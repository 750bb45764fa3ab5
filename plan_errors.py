"""Error taxonomy for the plan generation pipeline.

Every error carries a stable ``code`` so the HTTP layer (and logs) can map it
without string matching on messages.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PlanPipelineError(Exception):
    """Base class for all pipeline errors."""

    code = "PLAN_PIPELINE_ERROR"

    def __init__(self, message: str, debug: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.debug = debug or {}


class ParseError(PlanPipelineError):
    """No usable JSON could be extracted from the model output."""

    code = "AI_PARSE_ERROR"

    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    NO_VALID_JSON = "NO_VALID_JSON"

    def __init__(self, kind: str, raw: str):
        message = "Empty response" if kind == self.EMPTY_RESPONSE else "No valid JSON found"
        super().__init__(message, debug={"kind": kind, "raw_length": len(raw or "")})
        self.kind = kind
        self.raw = raw


class PlanSchemaError(PlanPipelineError):
    """Extracted JSON does not have the shape of a plan.

    ``issues`` only contains paths and generic messages, never raw values.
    """

    code = "INVALID_AI_OUTPUT"

    def __init__(self, plan_kind: str, issues: List[Dict[str, str]]):
        super().__init__(f"Invalid {plan_kind} plan output", debug={"issues": issues})
        self.plan_kind = plan_kind
        self.issues = issues


class ValidationFailure(PlanPipelineError):
    """Plan math violates the caller's targets; recoverable through a retry."""

    code = "NUTRITION_MATH_MISMATCH"

    def __init__(self, result):
        super().__init__(
            f"{result.reason} at {result.location}",
            debug=result.model_dump(mode="json"),
        )
        self.result = result

    @property
    def reason(self) -> str:
        return self.result.reason

    @property
    def diff(self):
        return self.result.diff

    def to_context(self) -> Dict[str, Any]:
        """Flat context dict accepted by the retry feedback builders."""
        return {
            "reason": self.result.reason,
            "dayLabel": self.result.day_label,
            "mealTitle": self.result.meal_title,
            "diff": self.result.diff.model_dump(),
        }


class UnresolvedCatalogReference(PlanPipelineError):
    """One or more plan entries could not be mapped to a catalog item."""

    code = "UNRESOLVED_CATALOG_REFERENCE"

    def __init__(self, catalog: str, unresolved: list):
        super().__init__(
            f"{len(unresolved)} unresolved {catalog} reference(s)",
            debug={
                "catalog": catalog,
                "unresolved": [item.model_dump(mode="json") for item in unresolved],
            },
        )
        self.catalog = catalog
        self.unresolved = unresolved


class CatalogUnavailableError(PlanPipelineError):
    """There was no catalog to resolve against."""

    code = "EXERCISE_CATALOG_UNAVAILABLE"


class CatalogEmptyError(PlanPipelineError):
    """The (filtered) catalog has no item to fill a slot with."""

    code = "EXERCISE_CATALOG_EMPTY"


class AuthorizationError(PlanPipelineError):
    """User is not allowed to spend tokens; raised before any model call."""

    code = "NOT_AUTHORIZED"

    def __init__(self, code: str, status_code: int, debug: Optional[Dict[str, Any]] = None):
        super().__init__(code, debug=debug)
        self.code = code
        self.status_code = status_code


class LedgerWriteFailure(PlanPipelineError):
    """The atomic balance debit + usage log write failed and was rolled back."""

    code = "LEDGER_WRITE_FAILED"


def _safe_issue_message(error_type: str) -> str:
    if error_type == "missing":
        return "Required"
    if error_type == "literal_error" or error_type == "enum":
        return "Invalid option"
    if error_type.startswith(("greater_than", "too_short")):
        return "Value is too small"
    if error_type.startswith(("less_than", "too_long")):
        return "Value is too large"
    if error_type.endswith(("_type", "_parsing")):
        return "Invalid type"
    return "Invalid value"


def safe_validation_issues(error) -> List[Dict[str, str]]:
    """Summarize a pydantic ValidationError as [{path, message}] without input values."""
    return [
        {
            "path": ".".join(str(part) for part in issue["loc"]),
            "message": _safe_issue_message(issue["type"]),
        }
        for issue in error.errors()
    ]


RECOVERABLE_ERRORS = (ParseError, PlanSchemaError, ValidationFailure)


def is_recoverable(error: BaseException) -> bool:
    """True for errors the caller should answer with a bounded retry."""
    return isinstance(error, RECOVERABLE_ERRORS)


def classify_pipeline_error(error: BaseException) -> Dict[str, Any]:
    """Map a pipeline error to an HTTP-friendly classification.

    Returns:
        Dict with status_code, error (stable code) and error_kind
    """
    if isinstance(error, AuthorizationError):
        return {
            "status_code": error.status_code,
            "error": error.code,
            "error_kind": "authorization_error",
        }

    if isinstance(
        error,
        (
            ParseError,
            PlanSchemaError,
            ValidationFailure,
            UnresolvedCatalogReference,
            CatalogUnavailableError,
            CatalogEmptyError,
        ),
    ):
        return {
            "status_code": 422,
            "error": error.code,
            "error_kind": "validation_error",
        }

    if isinstance(error, PlanPipelineError):
        return {
            "status_code": 500,
            "error": error.code,
            "error_kind": "internal_error",
        }

    return {
        "status_code": 500,
        "error": "INTERNAL_ERROR",
        "error_kind": "internal_error",
    }
