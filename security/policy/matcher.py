"""
In-process evaluation of compiled rule conditions.

Conditions use a small document-query vocabulary:

  {"status": "active"}                      implicit equality
  {"ownerId": {"$in": ["u1", "u2"]}}        operator mapping
  {"owner": {"id": "u1"}}                   nested sub-query
  {"$or": [{"public": True}, {"ownerId": "u1"}]}

Field lookup reads a literal key first (a flat field named "owner.id"),
then falls back to walking the dot path through nested objects.
"""

import re
from typing import Any, Callable, Dict, Mapping, Sequence

from security.policy.conditions import ConditionCompileError

_MISSING = object()


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _read(instance: Any, key: str) -> Any:
    if instance is None:
        return _MISSING
    if isinstance(instance, Mapping):
        return instance.get(key, _MISSING)
    if _is_sequence(instance):
        return _MISSING
    return getattr(instance, key, _MISSING)


def get_field(instance: Any, field: str) -> Any:
    """Return the value of ``field`` on ``instance`` or a missing marker."""
    value = _read(instance, field)
    if value is not _MISSING or "." not in field:
        return value

    current = instance
    for part in field.split("."):
        if _is_sequence(current) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            current = _read(current, part)
        if current is _MISSING:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


# ==================== OPERATORS ====================

def _equals(actual: Any, expected: Any) -> bool:
    if actual is _MISSING:
        return expected is None
    if _is_sequence(actual) and not _is_sequence(expected):
        return any(_equals(item, expected) for item in actual)
    if isinstance(actual, bool) or isinstance(expected, bool):
        # True == 1 in Python; booleans only equal booleans
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    return actual == expected


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def _check(actual: Any, expected: Any) -> bool:
        if actual is _MISSING or actual is None:
            return False
        candidates = actual if _is_sequence(actual) else [actual]
        for candidate in candidates:
            try:
                if op(candidate, expected):
                    return True
            except TypeError:
                continue
        return False

    return _check


def _in(actual: Any, expected: Any) -> bool:
    if not _is_sequence(expected):
        raise ConditionCompileError("$in expects a list")
    return any(_equals(actual, option) for option in expected)


def _exists(actual: Any, expected: Any) -> bool:
    return (actual is not _MISSING) == bool(expected)


def _regex(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str):
        return False
    return re.search(expected, actual) is not None


def _all(actual: Any, expected: Any) -> bool:
    if not _is_sequence(actual) or not _is_sequence(expected):
        return False
    return all(item in actual for item in expected)


def _size(actual: Any, expected: Any) -> bool:
    return _is_sequence(actual) and len(actual) == expected


def _elem_match(actual: Any, expected: Any) -> bool:
    if not _is_sequence(actual):
        return False
    return any(matches_conditions(expected, item) for item in actual)


FIELD_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$eq": _equals,
    "$ne": lambda actual, expected: not _equals(actual, expected),
    "$in": _in,
    "$nin": lambda actual, expected: not _in(actual, expected),
    "$gt": _compare(lambda a, b: a > b),
    "$gte": _compare(lambda a, b: a >= b),
    "$lt": _compare(lambda a, b: a < b),
    "$lte": _compare(lambda a, b: a <= b),
    "$exists": _exists,
    "$regex": _regex,
    "$all": _all,
    "$size": _size,
    "$elemMatch": _elem_match,
}


def _is_operator_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        isinstance(key, str) and key.startswith("$") for key in value
    )


def _match_value(actual: Any, expected: Any) -> bool:
    if _is_operator_mapping(expected):
        for op, operand in expected.items():
            if op == "$not":
                if _match_value(actual, operand):
                    return False
                continue
            handler = FIELD_OPERATORS.get(op)
            if handler is None:
                raise ConditionCompileError(f"Unsupported condition operator: {op}")
            if not handler(actual, operand):
                return False
        return True

    if isinstance(expected, Mapping):
        # Plain nested mapping: a sub-query against the related object(s)
        if actual is _MISSING or actual is None:
            return False
        if _is_sequence(actual):
            return any(matches_conditions(expected, item) for item in actual)
        return matches_conditions(expected, actual)

    return _equals(actual, expected)


def matches_conditions(conditions: Mapping[str, Any], instance: Any) -> bool:
    """
    Return True when ``instance`` satisfies every entry of ``conditions``.

    Raises ConditionCompileError for operators outside the supported set.
    """
    for key, expected in conditions.items():
        if key == "$and":
            if not all(matches_conditions(sub, instance) for sub in expected):
                return False
        elif key == "$or":
            if not any(matches_conditions(sub, instance) for sub in expected):
                return False
        elif key == "$nor":
            if any(matches_conditions(sub, instance) for sub in expected):
                return False
        elif key == "$not":
            if matches_conditions(expected, instance):
                return False
        elif key.startswith("$"):
            raise ConditionCompileError(f"Unsupported condition operator: {key}")
        elif not _match_value(get_field(instance, key), expected):
            return False
    return True


__all__ = ["FIELD_OPERATORS", "get_field", "is_missing", "matches_conditions"]
