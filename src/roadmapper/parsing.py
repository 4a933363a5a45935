from __future__ import annotations

import json
import re
from typing import Any

from roadmapper.errors import ResponseParseError

FENCED_BLOCK_PATTERN = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)```", re.S)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = FENCED_BLOCK_PATTERN.search(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def first_balanced_object(text: str) -> str | None:
    """Return the first ``{...}`` span whose braces balance, ignoring braces in strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for position in range(start, len(text)):
        char = text[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : position + 1]
    return None


def parse_json_response(text: str) -> dict[str, Any]:
    candidate = first_balanced_object(strip_code_fence(text))
    if candidate is None:
        raise ResponseParseError("Could not find a JSON object in the model response.")
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"The model returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ResponseParseError("The model response JSON is not an object.")
    return payload
