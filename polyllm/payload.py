"""Boundary validation helpers for native backend payloads.

Response parsers use these helpers to check payload shape before reading
fields, so a malformed body fails with :class:`ResponseShapeError` instead of
producing partially populated results.
"""

from __future__ import annotations

import collections.abc as cabc
import json
import typing as typ

from polyllm.domain import TokenUsage
from polyllm.errors import ResponseShapeError

if typ.TYPE_CHECKING:
    from polyllm.domain import JsonMapping


def is_string_keyed_mapping(value: object) -> bool:
    """Check whether a value is a mapping with string keys."""
    return isinstance(value, cabc.Mapping) and all(
        isinstance(candidate_key, str) for candidate_key in value
    )


def is_non_negative_int(value: object) -> bool:
    """Check whether a value is an integer token count."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def require_mapping(payload: object, context: str) -> JsonMapping:
    """Return ``payload`` as a mapping or raise :class:`ResponseShapeError`."""
    if not is_string_keyed_mapping(payload):
        msg = f"Invalid {context}: expected a JSON object."
        raise ResponseShapeError(msg)
    return typ.cast("JsonMapping", payload)


def require_field(payload: JsonMapping, field: str, context: str) -> object:
    """Return a required field, failing when it is absent."""
    if field not in payload:
        msg = f"Invalid {context}: missing required field {field!r}."
        raise ResponseShapeError(msg)
    return payload[field]


def require_list(payload: JsonMapping, field: str, context: str) -> list[object]:
    """Return a required list field."""
    value = require_field(payload, field, context)
    if not isinstance(value, list):
        msg = f"Invalid {context}: field {field!r} must be a list."
        raise ResponseShapeError(msg)
    return typ.cast("list[object]", value)


def require_str(payload: JsonMapping, field: str, context: str) -> str:
    """Return a required string field."""
    value = require_field(payload, field, context)
    if not isinstance(value, str):
        msg = f"Invalid {context}: field {field!r} must be a string."
        raise ResponseShapeError(msg)
    return value


def optional_str(payload: JsonMapping, field: str, context: str) -> str | None:
    """Return an optional string field, allowing ``null``."""
    value = payload.get(field)
    if value is None or isinstance(value, str):
        return value
    msg = f"Invalid {context}: field {field!r} must be a string or null."
    raise ResponseShapeError(msg)


def require_vector(value: object, context: str) -> tuple[float, ...]:
    """Return an embedding vector of numbers."""
    if not isinstance(value, list) or not all(
        isinstance(item, (int, float)) and not isinstance(item, bool)
        for item in value
    ):
        msg = f"Invalid {context}: embedding must be a list of numbers."
        raise ResponseShapeError(msg)
    return tuple(float(item) for item in value)


def decode_json_event(data: str, context: str) -> JsonMapping:
    """Decode one streamed JSON event payload."""
    try:
        payload = json.loads(data)
    except ValueError as exc:
        msg = f"Invalid {context}: event data is not valid JSON."
        raise ResponseShapeError(msg) from exc
    return require_mapping(payload, context)


def _token_count(value: object, field: str, context: str) -> int | None:
    if value is None:
        return None
    if not is_non_negative_int(value):
        msg = f"Invalid {context}: {field!r} must be a non-negative integer."
        raise ResponseShapeError(msg)
    return typ.cast("int", value)


def build_token_usage(
    prompt_tokens: object,
    completion_tokens: object,
    total_tokens: object = None,
    *,
    context: str = "usage payload",
) -> TokenUsage | None:
    """Normalize backend-reported token counts.

    Parameters
    ----------
    prompt_tokens, completion_tokens, total_tokens : object
        Raw counts as found in the payload; ``None`` means not reported.
    context : str, optional
        Payload description used in error messages.

    Returns
    -------
    TokenUsage | None
        ``None`` when the backend reported no counts at all. Missing
        component counts are treated as zero and a missing total is derived.

    Raises
    ------
    ResponseShapeError
        If a count is not a non-negative integer, or the reported total
        disagrees with the reported components.
    """
    prompt = _token_count(prompt_tokens, "prompt_tokens", context)
    completion = _token_count(completion_tokens, "completion_tokens", context)
    total = _token_count(total_tokens, "total_tokens", context)
    if prompt is None and completion is None and total is None:
        return None

    prompt = prompt or 0
    completion = completion or 0
    if total is None:
        total = prompt + completion
    elif prompt + completion != total:
        msg = (
            f"Invalid {context}: prompt ({prompt}) and completion ({completion}) "
            f"tokens do not add up to the reported total ({total})."
        )
        raise ResponseShapeError(msg)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
    )


__all__ = [
    "build_token_usage",
    "decode_json_event",
    "is_non_negative_int",
    "is_string_keyed_mapping",
    "optional_str",
    "require_field",
    "require_list",
    "require_mapping",
    "require_str",
    "require_vector",
]
