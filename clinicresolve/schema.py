from typing import Any, Dict, List, Sequence

from .errors import MalformedResponse
from .identity import record_id

DEFAULT_ENVELOPE_KEYS = ("data",)


def validate_candidate(data: Any) -> List[str]:
    """
    Returns a list of validation error messages for a backend record.
    Empty list means the record can be used as a resolution candidate.
    """
    errors: List[str] = []
    if not isinstance(data, dict):
        return [f"Record must be a JSON object, got {type(data).__name__}"]

    if record_id(data) is None:
        errors.append("Missing required field: _id or id")

    for f in ("name", "code"):
        if f in data and data[f] is not None and not isinstance(data[f], (str, int)):
            errors.append(f"Field '{f}' must be a string if provided")

    return errors


def unwrap_collection(payload: Any, envelope_keys: Sequence[str] = DEFAULT_ENVELOPE_KEYS) -> List[Any]:
    """Return the item list of a bare array or an envelope like ``{"data": [...]}``.

    None means "nothing". Anything else that is not a list is malformed.
    """
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in envelope_keys:
            if key in payload:
                inner = payload[key]
                if inner is None:
                    return []
                if isinstance(inner, list):
                    return inner
                raise MalformedResponse(f"Envelope key '{key}' does not hold an array")
        raise MalformedResponse(f"Expected an array or an envelope with one of {list(envelope_keys)}")
    raise MalformedResponse(f"Expected a JSON array, got {type(payload).__name__}")


def as_candidates(payload: Any) -> List[Dict[str, Any]]:
    """Normalize a probe result (object, array, envelope or nothing) to candidates.

    Single-object lookups sometimes come wrapped as ``{"patient": {...}}`` or
    ``{"data": {...}}``; those are unwrapped too.
    """
    if payload is None or payload == {} or payload == []:
        return []
    if isinstance(payload, dict):
        if record_id(payload) is None:
            for key in ("data", "patient", "doctor", "appointment", "items"):
                inner = payload.get(key)
                if isinstance(inner, (dict, list)):
                    return as_candidates(inner)
        items = [payload]
    elif isinstance(payload, list):
        items = payload
    else:
        raise MalformedResponse(f"Expected a JSON object or array, got {type(payload).__name__}")

    for item in items:
        errors = validate_candidate(item)
        if errors:
            raise MalformedResponse("; ".join(errors))
    return items
