from __future__ import annotations

import json
from typing import Any


def find_first_json_object(text: str) -> str | None:
    """
    Returns the first balanced ``{...}`` span of ``text`` or None.

    Braces inside JSON string literals are ignored, so prose before or after
    the object (and code fences) do not matter.
    """
    if not text:
        return None

    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def parse_first_json_object(text: str) -> dict[str, Any]:
    span = find_first_json_object(text)
    if span is None:
        raise ValueError("No JSON object found in response")
    data = json.loads(span)
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data
