"""JSON extraction and validation for generator outputs.

Generators are free-form processes; their answer may wrap the JSON object in
Markdown fences or surround it with prose. This module isolates the JSON
object, parses it and checks required fields before the phase runner uses it.
"""

import json
import re
from logging import Logger
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ParseResult(BaseModel, Generic[T]):
    """Outcome of a parse: either ``data`` or an ``error`` message."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "ParseResult[T]":
        return cls(success=True, data=data, error=None)

    @classmethod
    def fail(cls, error: str) -> "ParseResult[T]":
        return cls(success=False, data=None, error=error)


# Matches ```json\n...\n``` or ```\n...\n``` anywhere in the string
_MARKDOWN_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)


def extract_json_text(output: str) -> str:
    """Strip Markdown code fences and surrounding prose from JSON output.

    Args:
        output: Raw output that may contain Markdown fences or prose

    Returns:
        The extracted JSON text, or the stripped input when no object is found
    """
    stripped = output.strip()

    match = _MARKDOWN_FENCE_PATTERN.search(stripped)
    if match:
        return match.group(1).strip()

    first_brace = stripped.find("{")
    last_brace = stripped.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        return stripped[first_brace : last_brace + 1]

    return stripped


def _type_name(expected: type) -> str:
    return getattr(expected, "__name__", str(expected))


def parse_json_object(
    output: Optional[str],
    required_fields: Mapping[str, type],
    logger: Logger,
    source: Optional[str] = None,
) -> ParseResult[Dict[str, Any]]:
    """Parse a JSON object and validate its required fields.

    Args:
        output: Raw output text
        required_fields: Field name -> expected type (e.g. ``{"content": str}``)
        logger: Logger used for diagnostics
        source: Optional label prefixed to error messages

    Returns:
        ParseResult with the parsed dict on success, or an error message
    """
    prefix = f"[{source}] " if source else ""
    raw_output = output.strip() if output else ""

    if not raw_output:
        logger.error(f"{prefix}Empty output received")
        return ParseResult.fail(f"{prefix}Empty output received")

    candidate = extract_json_text(raw_output)
    logger.debug(f"{prefix}Extracted JSON: {candidate[:200]}...")

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.error(f"{prefix}JSON decode failed: {exc} | raw={raw_output[:200]}...")
        return ParseResult.fail(
            f"{prefix}Invalid JSON: {exc}. Output starts with: {raw_output[:100]}..."
        )

    if not isinstance(parsed, dict):
        logger.error(f"{prefix}Expected dict, got {type(parsed).__name__}")
        return ParseResult.fail(f"{prefix}Expected JSON object, got {type(parsed).__name__}")

    for field_name, expected_type in required_fields.items():
        if field_name not in parsed:
            logger.error(f"{prefix}Missing required field: '{field_name}'")
            return ParseResult.fail(f"{prefix}Missing required field: '{field_name}'")

        value = parsed[field_name]
        # bool is a subclass of int
        wrong_bool = expected_type is int and isinstance(value, bool)
        if wrong_bool or not isinstance(value, expected_type):
            message = (
                f"{prefix}Field '{field_name}' has wrong type: "
                f"expected {_type_name(expected_type)}, got {type(value).__name__}"
            )
            logger.error(message)
            return ParseResult.fail(message)

    return ParseResult.ok(parsed)
