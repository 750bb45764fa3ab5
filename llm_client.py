"""Thin litellm wrapper producing ModelResult objects for the pipeline.

The pipeline stages never call the model themselves; callers pass
complete_plan_prompt (or their own callable) to charge_ai_usage.
"""

import os
from typing import Any, Dict, List, Optional

import litellm

from observability import log_stage, setup_structured_logger
from pipeline_config import DEFAULT_CONFIG, PipelineConfig
from schemas import ModelResult, TokenUsage

logger = setup_structured_logger("pipeline.llm")

DEFAULT_SYSTEM_PROMPT = (
    "Eres un asistente que genera planes en JSON válido. "
    "Responde únicamente con el objeto JSON solicitado."
)


def _field(obj: Any, name: str) -> Any:
    """Read a field from a litellm response object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def model_result_from_response(response: Any, requested_model: Optional[str] = None) -> ModelResult:
    """Map a chat completion response to a ModelResult.

    Missing usage stays None so the ledger can flag it instead of guessing.
    """
    choices = _field(response, "choices") or []
    text = ""
    if choices:
        message = _field(choices[0], "message")
        text = _field(message, "content") or ""

    raw_usage = _field(response, "usage")
    usage = None
    if raw_usage is not None:
        usage = TokenUsage(
            prompt_tokens=_as_int(_field(raw_usage, "prompt_tokens")),
            completion_tokens=_as_int(_field(raw_usage, "completion_tokens")),
            total_tokens=_as_int(_field(raw_usage, "total_tokens")),
        )

    return ModelResult(
        text=text,
        model=_field(response, "model") or requested_model,
        usage=usage,
        request_id=_field(response, "id"),
    )


def build_messages(prompt: str, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def complete_plan_prompt(
    prompt: str,
    config: PipelineConfig = DEFAULT_CONFIG,
    *,
    system_prompt: Optional[str] = None,
    **completion_kwargs: Any,
) -> ModelResult:
    """Run one completion for a plan prompt.

    Args:
        prompt: User prompt (including any retry instruction)
        config: Pipeline settings (model name)
        system_prompt: Overrides DEFAULT_SYSTEM_PROMPT
        **completion_kwargs: Forwarded to litellm.completion
    """
    api_base = os.getenv("OPENAI_API_BASE")
    if api_base and "api_base" not in completion_kwargs:
        completion_kwargs["api_base"] = api_base

    with log_stage(logger, "plan_completion", model=config.model_name, prompt_chars=len(prompt)):
        response = litellm.completion(
            model=config.model_name,
            messages=build_messages(prompt, system_prompt),
            **completion_kwargs,
        )

    return model_result_from_response(response, requested_model=config.model_name)
