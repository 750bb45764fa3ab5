"""Structured JSON-lines logging for the pipeline stages.

Every pipeline module gets its logger from setup_structured_logger(). Records
are one JSON object per line, with anything passed as
extra={"extra_fields": {...}} merged into the top level, so a stage's
context (days_count, catalog_size, error_code, ...) can be filtered on
directly.
"""

import json
import logging
import logging.handlers
import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOG_DIR = Path(os.getenv("LOG_DIR", "/tmp/plan_pipeline_logs"))
# Rotated files kept by the midnight rotation
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "7"))
STRUCTURED_LOG_LEVEL = os.getenv("STRUCTURED_LOG_LEVEL", "INFO").upper()

MAX_LOGGED_CHARS = 5000


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str, ensure_ascii=False)


def _build_handler(name: str) -> logging.Handler:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"⚠️  Structured log dir unavailable ({e}), using stderr", file=sys.stderr)
        return logging.StreamHandler(sys.stderr)

    # delay: the file is only opened on the first record
    return logging.handlers.TimedRotatingFileHandler(
        filename=LOG_DIR / f"{name}.jsonl",
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
        delay=True,
    )


def setup_structured_logger(name: str) -> logging.Logger:
    """Return the named pipeline logger, attaching the JSON handler once.

    Args:
        name: Logger name, e.g. "pipeline.acceptance"
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, STRUCTURED_LOG_LEVEL, logging.INFO))

    if logger.handlers:
        return logger

    handler = _build_handler(name)
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    return logger


@contextmanager
def log_stage(logger: logging.Logger, stage: str, **context):
    """Log start/complete/error for one pipeline stage, with its duration.

    Errors are re-raised; pipeline errors contribute their stable `code`.

    Example:
        with log_stage(logger, "accept_training_plan", catalog_size=42):
            ...
    """
    started = time.perf_counter()
    logger.info(
        f"Stage started: {stage}",
        extra={"extra_fields": {"stage": stage, "phase": "start", **context}},
    )

    try:
        yield
    except Exception as e:
        logger.error(
            f"Stage failed: {stage}",
            extra={
                "extra_fields": {
                    "stage": stage,
                    "phase": "error",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(e).__name__,
                    "error_code": getattr(e, "code", None),
                    "error": str(e),
                    **context,
                }
            },
        )
        raise

    logger.info(
        f"Stage completed: {stage}",
        extra={
            "extra_fields": {
                "stage": stage,
                "phase": "complete",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                **context,
            }
        },
    )


def log_payload(
    logger: logging.Logger,
    message: str,
    payload: Any,
    level: int = logging.DEBUG,
    **context,
) -> None:
    """Log a pydantic model, dict/list or raw completion text.

    Models are dumped with their wire aliases. Serialized payloads longer than
    MAX_LOGGED_CHARS are cut and flagged with `truncated` and `full_size`.
    """
    if not logger.isEnabledFor(level):
        return

    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json", by_alias=True)

    if isinstance(payload, (dict, list)):
        serialized = json.dumps(payload, default=str, ensure_ascii=False)
    else:
        serialized = str(payload)

    fields: Dict[str, Optional[Any]] = {"truncated": False, **context}
    if len(serialized) > MAX_LOGGED_CHARS:
        fields.update(truncated=True, full_size=len(serialized))
        serialized = serialized[:MAX_LOGGED_CHARS]
    fields["payload"] = serialized

    logger.log(level, message, extra={"extra_fields": fields})
