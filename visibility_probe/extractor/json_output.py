"""
Decoding of JSON returned by helper models.

Models are asked to "only return JSON" but often wrap it in prose or code
fences, and OpenAI function calls arrive serialized as
{"_function_call": {"name", "arguments", "call_id"}} in answer_text.
"""

import json
import re
from typing import Any

_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


def decode_function_call(text: str, function_name: str) -> dict[str, Any] | None:
    """
    Return the arguments of a serialized function call, or None if the text
    is not a function call.

    Raises:
        ValueError: If a different function was called
    """
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None

    if not isinstance(parsed, dict) or "_function_call" not in parsed:
        return None

    call = parsed["_function_call"] or {}
    if call.get("name") != function_name:
        raise ValueError(f"Unexpected function called: {call.get('name')}")

    arguments = call.get("arguments")
    return arguments if isinstance(arguments, dict) else {}


def extract_json(text: str, expect: type = dict) -> Any:
    """
    Decode the first JSON object (or array) embedded in text.

    Args:
        text: Raw model output
        expect: dict for an object, list for an array

    Returns:
        Decoded value of the expected type

    Raises:
        ValueError: If no JSON of the expected type can be decoded
    """
    if not text or text.isspace():
        raise ValueError("Model returned empty output")

    pattern = _OBJECT_PATTERN if expect is dict else _ARRAY_PATTERN
    match = pattern.search(text)
    candidate = match.group(0) if match else text

    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"Model output is not valid JSON: {e}") from e

    if not isinstance(value, expect):
        raise ValueError(
            f"Expected JSON {expect.__name__}, got {type(value).__name__}"
        )
    return value
