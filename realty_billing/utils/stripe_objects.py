"""
Helpers for reading Stripe payloads.

Webhook payloads arrive as ``stripe.StripeObject`` trees, while tests and
replay tooling pass plain dicts; these helpers read both the same way.
"""

from typing import Any


def get_value(obj: Any, attr: str) -> Any:
    """
    Safely extract a field from a Stripe object (dict-like or attribute-based).

    Item access is tried first so keys such as ``items`` are not shadowed by
    the mapping methods of the same name.
    """
    if obj is None:
        return None

    try:
        return obj[attr]
    except (KeyError, TypeError, IndexError, AttributeError):
        pass

    if isinstance(obj, dict):
        return None
    return getattr(obj, attr, None)


def get_path(obj: Any, *path: str) -> Any:
    """Follow nested fields, returning None at the first missing level."""
    for attr in path:
        obj = get_value(obj, attr)
        if obj is None:
            return None
    return obj


def get_id(value: Any) -> str | None:
    """Return the id of an expandable reference, which may be an id string or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    ref = get_value(value, "id")
    return ref if isinstance(ref, str) else None


def metadata_to_dict(metadata: Any) -> dict[str, Any]:
    """Convert Stripe metadata object into a plain dictionary."""
    if metadata is None:
        return {}
    if isinstance(metadata, dict):
        return dict(metadata)
    to_dict = getattr(metadata, "to_dict", None)
    if callable(to_dict):
        try:
            return dict(to_dict())
        except (TypeError, ValueError):
            pass
    try:
        return dict(metadata)
    except (TypeError, ValueError):
        return {}


def coerce_to_int(value: Any) -> int | None:
    """
    Convert Stripe values (str, float) into an int representation.
    Returns None when conversion is not possible.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int | float):
        return int(value)

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(float(stripped))
        except ValueError:
            return None

    return None


def coerce_to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)
