"""Host/guest value conversion over {null, bool, number, string, list, map}."""

import math
from collections.abc import Mapping, Set
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

MAX_DICT_KEYS = 100_000
MAX_DEPTH = 200


def host_to_guest(value: Any, _depth: int = 0) -> Any:
    """Deep-copy a host value into plain guest data so scripts cannot alias host state."""
    if _depth > MAX_DEPTH:
        raise ValueError("Input nesting is too deep to pass to a script")
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): host_to_guest(item, _depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, Set)):
        return [host_to_guest(item, _depth + 1) for item in value]
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _looks_like_mapping(value: Any) -> bool:
    return callable(getattr(value, "keys", None)) and hasattr(value, "__getitem__")


def guest_to_host(value: Any, max_keys: int = MAX_DICT_KEYS, _depth: int = 0) -> Any:
    """Convert a guest result into plain host data.

    Handles primitives, sequences, mappings and dict-like objects (``keys`` +
    ``__getitem__``; at most ``max_keys`` keys are read), and falls back to the
    public, non-callable members of arbitrary objects.
    """
    if _depth > MAX_DEPTH:
        return str(value)
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) or math.isinf(value) else value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Mapping) or _looks_like_mapping(value):
        result = {}
        for index, key in enumerate(value.keys()):
            if index >= max_keys:
                break
            result[str(key)] = guest_to_host(value[key], max_keys, _depth + 1)
        return result
    if isinstance(value, (list, tuple, Set, frozenset)):
        return [guest_to_host(item, max_keys, _depth + 1) for item in value]
    if callable(value):
        return None
    members = {}
    for name in dir(value):
        if name.startswith("_"):
            continue
        try:
            member = getattr(value, name)
        except Exception:
            continue
        if callable(member):
            continue
        members[name] = guest_to_host(member, max_keys, _depth + 1)
    return members
