"""
Result extraction from heterogeneous execution payloads.

Capability providers return results in inconsistent shapes. Extraction
first tries the handful of shapes text-producing providers are known to
return, then resolves the descriptor path against a list of candidate
roots. Finding nothing is not an error: callers get ``None`` and treat it
as a failed attempt.
"""

import re
from collections.abc import Mapping
from typing import Any

from loguru import logger

from src.capabilities.registry import ExtractionDescriptor, ValueType

RESPONSE_KEYS = ("response_payload", "responsePayload")

_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def first_string(value: Any) -> str | None:
    """
    Coerce a value into a trimmed string.

    A string is trimmed. A list yields its first element when that is a
    string, otherwise the ``text`` field of its first element.

    Example:
        >>> first_string(["  a caption "])
        'a caption'
        >>> first_string([{"text": "b"}])
        'b'
    """
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list) and value:
        head = value[0]
        if isinstance(head, str):
            return head.strip()
        if isinstance(head, Mapping) and isinstance(head.get("text"), str):
            return head["text"].strip()
    return None


def _child(obj: Any, key: str) -> Any:
    """Look up a mapping key or a list index; None when absent."""
    if isinstance(obj, Mapping):
        return obj.get(key)
    if isinstance(obj, (list, tuple)) and key.isdigit():
        index = int(key)
        return obj[index] if index < len(obj) else None
    return None


def resolve_path(obj: Any, path: str) -> Any:
    """
    Resolve a dot/bracket accessor such as ``data.items[0].value``.

    Returns:
        The resolved value, or None if any segment is missing.
    """
    if obj is None:
        return None

    parts = [p for p in _INDEX_PATTERN.sub(r".\1", path).split(".") if p]
    current = obj
    for part in parts:
        if current is None:
            return None
        current = _child(current, part)
    return current


def _response_of(payload: Any) -> Any:
    """Raw provider response carried on the payload, if any."""
    if isinstance(payload, Mapping):
        for key in RESPONSE_KEYS:
            if key in payload:
                return payload[key]
    return None


def _known_text_shapes(payload: Any) -> str | None:
    """Try the result shapes text-producing capabilities commonly return."""
    response = _response_of(payload)
    if response is None:
        response = payload

    candidates: list[Any] = []

    # {"result": "caption"}
    if isinstance(response, Mapping) and response.get("result"):
        candidates.append(response["result"])

    if isinstance(response, list) and response and isinstance(response[0], Mapping):
        head = response[0]
        # [{"type": "text", "data": {"text": ["caption"]}}]
        data = head.get("data")
        if isinstance(data, Mapping) and data.get("text"):
            candidates.append(data["text"])
        # [{"type": "text", "text": "caption"}]
        if head.get("text"):
            candidates.append(head["text"])

    # {"text": "caption"}, then outputs.text, then a top-level text field
    if isinstance(response, Mapping) and response.get("text"):
        candidates.append(response["text"])
    outputs = _child(payload, "outputs")
    if isinstance(outputs, Mapping) and outputs.get("text"):
        candidates.append(outputs["text"])
    if response is not payload and isinstance(payload, Mapping) and payload.get("text"):
        candidates.append(payload["text"])

    for candidate in candidates:
        text = first_string(candidate)
        if text:
            return text
    return None


def _candidate_roots(payload: Any) -> list[Any]:
    """Ordered roots the descriptor path is resolved against."""
    outputs = _child(payload, "outputs")
    response = _response_of(payload)
    first_item = response[0] if isinstance(response, list) and response else response

    return [
        payload,
        outputs,
        _child(outputs, "data"),
        response,
        first_item,
        _child(first_item, "data"),
        _child(payload, "result"),
    ]


def _coerce(value: Any, value_type: ValueType) -> str | None:
    if value_type == ValueType.TEXT:
        return first_string(value) or None
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value and isinstance(value[0], str):
        return value[0]
    return None


def extract_result(payload: Any, descriptor: ExtractionDescriptor | None) -> str | None:
    """
    Extract a typed value from an execution result payload.

    Args:
        payload: Result payload of arbitrary shape.
        descriptor: Extraction rule (path and value type).

    Returns:
        The extracted value, or None when nothing matched.

    Example:
        >>> extract_result(
        ...     {"outputs": {"data": {"value": "http://x/y.png"}}},
        ...     ExtractionDescriptor(path="data.value", value_type="url"),
        ... )
        'http://x/y.png'
    """
    if descriptor is None or payload is None:
        return None

    if descriptor.path == "text" and descriptor.value_type == ValueType.TEXT:
        text = _known_text_shapes(payload)
        if text:
            return text

    for root in _candidate_roots(payload):
        if root is None:
            continue
        value = resolve_path(root, descriptor.path)
        if value is None:
            continue
        coerced = _coerce(value, descriptor.value_type)
        if coerced:
            return coerced

    logger.warning(f'No value found for path="{descriptor.path}" in execution result')
    return None
