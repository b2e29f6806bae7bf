"""
Storage predicates: scope SQLAlchemy queries to the records an ability allows.

The storage ability holds conditions with dot paths already expanded into
nested mappings, so `{"owner": {"id": "u1"}}` compiles to
`Customer.owner.has(User.id == "u1")`.

Functions:
  - rules_to_query: Fold an ability's rules into one condition document
  - accessible_by: Turn that document into a SQLAlchemy clause
"""

from typing import Any, Dict, List, Mapping, Optional

from loguru import logger
from sqlalchemy import and_, false, inspect, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from security.policy.abac import Ability


class StoragePredicateError(ValueError):
    """Raised when conditions cannot be expressed against a model."""


# ==================== RULE FOLDING ====================

def rules_to_query(storage_ability: Ability, action: str, subject_type: Any) -> Optional[Dict[str, Any]]:
    """
    Combine the rules for (action, subject_type) into a condition document.

    Conditional grants are OR-ed, conditional denials are AND-ed as $not.
    An unconditional grant ends the walk with everything visible except the
    denials already collected; an unconditional denial ends it too, hiding
    every lower-priority grant.

    Returns:
        None when nothing is granted, {} when everything is, otherwise a
        mapping with "$or" and optionally "$and" keys.
    """
    query: Dict[str, List[Any]] = {}

    for rule in storage_ability.rules_for(action, subject_type):
        if not rule.conditions:
            if rule.inverted:
                break
            query.pop("$or", None)
            return query

        if rule.inverted:
            query.setdefault("$and", []).append({"$not": rule.conditions})
        else:
            query.setdefault("$or", []).append(rule.conditions)

    return query if "$or" in query else None


# ==================== CLAUSE COMPILATION ====================

def _is_operator_mapping(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        isinstance(key, str) and key.startswith("$") for key in value
    )


def _require_list(op: str, operand: Any) -> List[Any]:
    if not isinstance(operand, (list, tuple)):
        raise StoragePredicateError(f"{op} expects a list")
    return list(operand)


def _column_clause(column: Any, expected: Any) -> ColumnElement:
    if not _is_operator_mapping(expected):
        if isinstance(expected, Mapping):
            raise StoragePredicateError(f"Nested conditions are not supported on column '{column.key}'")
        return column.is_(None) if expected is None else column == expected

    clauses = []
    for op, operand in expected.items():
        if op == "$eq":
            clauses.append(column.is_(None) if operand is None else column == operand)
        elif op == "$ne":
            clauses.append(
                column.isnot(None) if operand is None
                else or_(column != operand, column.is_(None))
            )
        elif op == "$in":
            clauses.append(column.in_(_require_list(op, operand)))
        elif op == "$nin":
            clauses.append(or_(not_(column.in_(_require_list(op, operand))), column.is_(None)))
        elif op == "$gt":
            clauses.append(column > operand)
        elif op == "$gte":
            clauses.append(column >= operand)
        elif op == "$lt":
            clauses.append(column < operand)
        elif op == "$lte":
            clauses.append(column <= operand)
        elif op == "$exists":
            clauses.append(column.isnot(None) if operand else column.is_(None))
        elif op == "$not":
            clauses.append(not_(_column_clause(column, operand)))
        else:
            raise StoragePredicateError(f"Operator {op} cannot be pushed down to storage")
    return and_(*clauses)


def compile_clause(model: Any, conditions: Mapping[str, Any]) -> ColumnElement:
    """Compile one condition document against a mapped model class."""
    mapper = inspect(model)
    columns = mapper.column_attrs
    relationships = mapper.relationships
    clauses = []

    for key, expected in conditions.items():
        if key in ("$and", "$or", "$nor"):
            parts = [compile_clause(model, sub) for sub in _require_list(key, expected)]
            if key == "$and":
                clauses.append(and_(*parts))
            elif key == "$or":
                clauses.append(or_(*parts))
            else:
                clauses.append(not_(or_(*parts)))
        elif key == "$not":
            clauses.append(not_(compile_clause(model, expected)))
        elif key in columns:
            clauses.append(_column_clause(getattr(model, key), expected))
        elif key in relationships:
            relationship = relationships[key]
            if not isinstance(expected, Mapping) or _is_operator_mapping(expected):
                raise StoragePredicateError(f"Relationship '{key}' needs a nested condition mapping")
            inner = compile_clause(relationship.mapper.class_, expected)
            attribute = getattr(model, key)
            clauses.append(attribute.any(inner) if relationship.uselist else attribute.has(inner))
        else:
            raise StoragePredicateError(f"Unknown attribute '{key}' on {mapper.class_.__name__}")

    return and_(*clauses) if clauses else true()


def accessible_by(storage_ability: Ability, action: str, model: Any) -> ColumnElement:
    """
    Build a WHERE clause limiting `model` rows to those `action` is allowed on.

    Usage:
        session.query(Customer).filter(accessible_by(ability, "read", Customer))
    """
    query = rules_to_query(storage_ability, action, model)
    if query is None:
        logger.debug(f"[ABILITY] No '{action}' grant on {model.__name__}, query scoped to nothing")
        return false()
    if not query:
        return true()
    return compile_clause(model, query)


__all__ = ["StoragePredicateError", "accessible_by", "compile_clause", "rules_to_query"]
