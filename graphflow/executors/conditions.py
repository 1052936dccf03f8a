"""Condition evaluation shared by the If and Switch executors.

A condition is a map ``{"field": "a.b", "operator": "gt", "value": 80}``.
``field`` is a dot path into the input (a missing path yields None). Operator
names are case-insensitive. Unknown operators evaluate to False, never raise.
Numeric comparisons treat None or unparseable operands as equal.
"""

import re
from typing import Any, Callable, Dict, List, Optional

from ..core.logging import get_logger

logger = get_logger(__name__)


def get_path(data: Any, path: Optional[str]) -> Any:
    """Look up a dot path in nested dicts; list segments may be integer indexes."""
    if not path:
        return None
    current = data
    for part in str(path).split('.'):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.lstrip('-').isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value).strip())


def compare_numbers(actual: Any, expected: Any) -> int:
    """Three-way numeric compare; None or non-numeric operands compare as equal."""
    if actual is None or expected is None:
        return 0
    try:
        left = _to_float(actual)
        right = _to_float(expected)
    except (TypeError, ValueError):
        return 0
    return (left > right) - (left < right)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, dict, tuple, set)):
        return len(value) == 0
    return str(value) == ""


def _contains(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, (list, tuple, set)):
        return expected in actual
    if isinstance(actual, dict):
        return expected in actual
    return str(expected) in str(actual)


def _as_collection(expected: Any) -> Optional[List[Any]]:
    if isinstance(expected, (list, tuple, set)):
        return list(expected)
    if isinstance(expected, str):
        return [item.strip() for item in expected.split(',')]
    return None


def _in(actual: Any, expected: Any) -> bool:
    options = _as_collection(expected)
    if options is None:
        return False
    return actual in options or (actual is not None and str(actual) in [str(o) for o in options])


def _not_in(actual: Any, expected: Any) -> bool:
    if _as_collection(expected) is None:
        return True
    return not _in(actual, expected)


def _matches(actual: Any, expected: Any) -> bool:
    if actual is None or expected is None:
        return False
    return re.fullmatch(str(expected), str(actual)) is not None


def _equals(actual: Any, expected: Any) -> bool:
    return actual == expected


def _not_equals(actual: Any, expected: Any) -> bool:
    return actual != expected


def _not_contains(actual: Any, expected: Any) -> bool:
    return not _contains(actual, expected)


def _starts_with(actual: Any, expected: Any) -> bool:
    return actual is not None and str(actual).startswith(str(expected))


def _ends_with(actual: Any, expected: Any) -> bool:
    return actual is not None and str(actual).endswith(str(expected))


def _greater(actual: Any, expected: Any) -> bool:
    return compare_numbers(actual, expected) > 0


def _greater_or_equal(actual: Any, expected: Any) -> bool:
    return compare_numbers(actual, expected) >= 0


def _less(actual: Any, expected: Any) -> bool:
    return compare_numbers(actual, expected) < 0


def _less_or_equal(actual: Any, expected: Any) -> bool:
    return compare_numbers(actual, expected) <= 0


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals, "eq": _equals, "==": _equals, "equal": _equals,
    "notequals": _not_equals, "neq": _not_equals, "ne": _not_equals, "!=": _not_equals,
    "notequal": _not_equals,
    "contains": _contains,
    "notcontains": _not_contains,
    "startswith": _starts_with,
    "endswith": _ends_with,
    "matches": _matches, "regex": _matches,
    "gt": _greater, ">": _greater, "greaterthan": _greater,
    "gte": _greater_or_equal, ">=": _greater_or_equal, "greaterthanorequal": _greater_or_equal,
    "lt": _less, "<": _less, "lessthan": _less,
    "lte": _less_or_equal, "<=": _less_or_equal, "lessthanorequal": _less_or_equal,
    "isempty": lambda actual, expected: is_empty(actual),
    "isnotempty": lambda actual, expected: not is_empty(actual),
    "isnull": lambda actual, expected: actual is None,
    "isnotnull": lambda actual, expected: actual is not None,
    "in": _in,
    "notin": _not_in,
}


def _normalize_operator(operator: Any) -> str:
    return str(operator or "equals").strip().lower().replace('_', '')


def evaluate_condition(condition: Dict[str, Any], data: Dict[str, Any]) -> bool:
    operator = _normalize_operator(condition.get("operator"))
    func = OPERATORS.get(operator)
    if func is None:
        logger.debug(f"Unknown condition operator '{condition.get('operator')}', evaluating to false")
        return False

    actual = get_path(data, condition.get("field"))
    try:
        return bool(func(actual, condition.get("value")))
    except (TypeError, ValueError, re.error) as e:
        logger.debug(f"Condition {condition!r} failed to evaluate: {e}")
        return False


def evaluate_conditions(conditions: List[Dict[str, Any]], data: Dict[str, Any],
                        combine_with: str = "and") -> bool:
    """Combine conditions with AND (default) or OR. An empty list is true."""
    if not conditions:
        return True

    use_and = str(combine_with or "and").strip().lower() != "or"
    for condition in conditions:
        result = evaluate_condition(condition, data)
        if use_and and not result:
            return False
        if not use_and and result:
            return True
    return use_and
