"""Structured output extraction from generated text."""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import BaseModel, ValidationError

from castor.errors import MalformedResponseError

_FENCE_RE = re.compile(r"^\s*```[\w-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence such as ```` ```json ````."""
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def parse_json_text(
    text: str,
    schema_model: type[BaseModel] | None = None,
    *,
    model: str | None = None,
) -> Any:
    """Decode *text* as JSON, validating against *schema_model* when given.

    Returns a model instance when a schema class is passed, else the decoded
    value. Every failure surfaces as MalformedResponseError.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        raise MalformedResponseError(
            "Empty response text; expected JSON",
            model=model,
            phase="parse",
        )
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            f"Response is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})",
            hint="The model ignored the JSON response format; retry or tighten the prompt.",
            model=model,
            phase="parse",
        ) from e

    if schema_model is None:
        return payload
    try:
        return schema_model.model_validate(payload)
    except ValidationError as e:
        raise MalformedResponseError(
            f"Response does not match {schema_model.__name__}: "
            f"{e.error_count()} validation error(s)",
            model=model,
            phase="parse",
        ) from e
