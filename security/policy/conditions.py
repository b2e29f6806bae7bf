"""
Condition interpolation and compilation for stored ability rules.

Stored conditions are plain JSON trees. Leaves may be placeholders such as
"${user.id}" that are resolved against a variable bag at build time, or the
strings "true"/"false" which are coerced to booleans.

The same tree is compiled into two shapes:
  - generic form: keys are kept verbatim ("owner.id" stays a flat key)
  - storage form: dotted keys are expanded into nested mappings
    ({"owner": {"id": ...}}) so they can be pushed down as relation filters

Functions:
  - resolve_path: Look up a dot path in a variable bag
  - interpolate_value: Resolve a single leaf
  - compile_conditions: Walk a whole condition tree
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger

# Recursive condition value: Null | Bool | Number | String | List | Map
ConditionValue = Union[None, bool, int, float, str, List["ConditionValue"], Dict[str, "ConditionValue"]]

PLACEHOLDER_PREFIX = "${"
PLACEHOLDER_SUFFIX = "}"

_MISSING = object()


class UndefinedVariableReference(LookupError):
    """Raised when a condition placeholder points at nothing in the variable bag."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f'Variable "{path}" is not defined')


class ConditionCompileError(ValueError):
    """Raised when a condition tree cannot be compiled or evaluated safely."""


# ==================== INTERPOLATION ====================

def _step(current: Any, part: str) -> Any:
    if current is None:
        return _MISSING
    if isinstance(current, Mapping):
        return current.get(part, _MISSING)
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        if part.isdigit() and int(part) < len(current):
            return current[int(part)]
        return _MISSING
    return getattr(current, part, _MISSING)


def resolve_path(variables: Any, path: str) -> Any:
    """
    Resolve a dot path ("user.id", "user.teams.0") against a variable bag.

    Mappings are read by key, sequences by integer index and any other
    object by attribute. Raises UndefinedVariableReference when any segment
    is missing. A segment holding None is a real value, only traversing
    *through* None is undefined.
    """
    if not path:
        raise UndefinedVariableReference(path)

    current = variables
    for part in path.split("."):
        current = _step(current, part)
        if current is _MISSING:
            raise UndefinedVariableReference(path)
    return current


def is_placeholder(value: Any) -> bool:
    return (
        isinstance(value, str)
        and value.startswith(PLACEHOLDER_PREFIX)
        and value.endswith(PLACEHOLDER_SUFFIX)
    )


def interpolate_value(value: Any, variables: Mapping[str, Any]) -> Any:
    """Resolve one condition leaf against the variable bag."""
    if isinstance(value, str):
        if is_placeholder(value):
            key = value[len(PLACEHOLDER_PREFIX):-len(PLACEHOLDER_SUFFIX)]
            return resolve_path(variables, key)

        lowered = value.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return value


# ==================== COMPILATION ====================

def _merge_into(target: Dict[str, Any], key: str, value: Any, source_key: str) -> None:
    if key not in target:
        target[key] = value
        return

    existing = target[key]
    if isinstance(existing, dict) and isinstance(value, Mapping):
        for sub_key, sub_value in value.items():
            _merge_into(existing, sub_key, sub_value, source_key)
        return

    raise ConditionCompileError(
        f'Condition key "{source_key}" conflicts with another value at "{key}"'
    )


def _copy_mapping(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _copy_mapping(v) for k, v in value.items()}
    return value


def expand_dotted_keys(node: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Rewrite dotted keys of one mapping level into nested mappings.

    {"owner.id": 1, "owner.team.id": 2} -> {"owner": {"id": 1, "team": {"id": 2}}}
    """
    expanded: Dict[str, Any] = {}

    for key, value in node.items():
        if "." not in key:
            _merge_into(expanded, key, _copy_mapping(value), key)
            continue

        parts = key.split(".")
        if any(not part for part in parts):
            raise ConditionCompileError(f'Condition key "{key}" has an empty path segment')

        current = expanded
        for part in parts[:-1]:
            child = current.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConditionCompileError(
                    f'Condition key "{key}" conflicts with another value at "{part}"'
                )
            current = child
        _merge_into(current, parts[-1], _copy_mapping(value), key)

    return expanded


def compile_conditions(
    node: Any,
    variables: Mapping[str, Any],
    expand_dot_paths: bool = False,
) -> ConditionValue:
    """
    Compile a raw condition tree.

    Args:
        node: Raw condition (mapping, list or scalar)
        variables: Variable bag used for placeholder interpolation
        expand_dot_paths: Expand dotted keys into nested mappings (storage form)

    Returns:
        A new tree, the input is left untouched.
    """
    if isinstance(node, Mapping):
        entries = expand_dotted_keys(node) if expand_dot_paths else node
        return {
            key: compile_conditions(value, variables, expand_dot_paths)
            for key, value in entries.items()
        }

    if isinstance(node, (list, tuple)):
        return [compile_conditions(item, variables, expand_dot_paths) for item in node]

    return interpolate_value(node, variables)


def compile_both(
    conditions: Optional[Mapping[str, Any]],
    variables: Mapping[str, Any],
) -> tuple:
    """Return (generic, storage) compiled trees for one rule's conditions."""
    if not conditions:
        return None, None

    generic = compile_conditions(conditions, variables)
    storage = compile_conditions(conditions, variables, expand_dot_paths=True)
    logger.debug(f"[CONDITIONS] Compiled {len(conditions)} condition key(s)")
    return generic, storage


__all__ = [
    "ConditionCompileError",
    "ConditionValue",
    "UndefinedVariableReference",
    "compile_both",
    "compile_conditions",
    "expand_dotted_keys",
    "interpolate_value",
    "is_placeholder",
    "resolve_path",
]
