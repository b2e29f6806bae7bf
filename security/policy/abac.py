"""
Attribute-Based Access Control (ABAC) engine.

Rules are declarative records: an action, a subject type, optional
conditions over the subject's attributes, optional field restrictions and
an `inverted` flag turning a grant into an explicit denial.

Evaluation:
  - Rules are scanned last-declared first
  - A rule is relevant when its action equals the requested action (or is
    "manage") and its subject equals the subject type (or is "all")
  - The first relevant rule whose conditions and fields match decides
  - No matching rule means denied

Example:
  builder = AbilityBuilder()
  builder.can("read", "Customer", {"ownerId": "u1"})
  builder.cannot("delete", "Customer")
  ability = builder.build()
  ability.can("read", subject("Customer", {"ownerId": "u1"}))  # True

Classes:
  - RawRule: Cleaned-up ability record
  - Rule: Compiled rule with matching helpers
  - Ability: Ordered rule set answering can/cannot
  - AbilityBuilder: Fluent construction of an Ability
  - AbilityBundle: Server ability, storage ability and serialized rules

Functions:
  - normalize_records / compile_rules / normalize: Record -> rule pipeline
  - build_from_rules: Build everything a request needs from records
"""

import re
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from loguru import logger

from security.policy.conditions import compile_both
from security.policy.matcher import matches_conditions

MANAGE = "manage"
ALL = "all"

ActionSpec = Union[str, List[str]]
SubjectSpec = Union[str, List[str]]


class ForbiddenAbility(Exception):
    """Raised by Ability.ensure_can when an action is not permitted."""

    def __init__(self, action: str, subject_type: str, field: Optional[str] = None,
                 reason: Optional[str] = None):
        self.action = action
        self.subject_type = subject_type
        self.field = field
        self.reason = reason
        message = reason or f'Cannot execute "{action}" on "{subject_type}"'
        super().__init__(message)


# ==================== SUBJECTS ====================

class TaggedSubject(dict):
    """Plain attribute mapping that carries its subject type."""

    def __init__(self, subject_type: str, attrs: Optional[Mapping[str, Any]] = None):
        super().__init__(attrs or {})
        self.subject_type = subject_type


def subject(type_name: str, attrs: Optional[Mapping[str, Any]] = None) -> TaggedSubject:
    """Tag a mapping so the engine can evaluate conditions against it."""
    return TaggedSubject(type_name, attrs)


def detect_subject_type(value: Any) -> str:
    """
    Return the subject type name for a type name, model class or instance.

    Instances and classes use their `__subject__` attribute when present,
    otherwise the class name.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, TaggedSubject):
        return value.subject_type
    if isinstance(value, type):
        return getattr(value, "__subject__", None) or value.__name__
    return getattr(value, "__subject__", None) or type(value).__name__


def is_subject_type(value: Any) -> bool:
    return isinstance(value, (str, type))


# ==================== RULES ====================

@dataclass
class RawRule:
    """Ability record after cleanup, before or after condition compilation."""
    action: ActionSpec
    subject: SubjectSpec
    conditions: Optional[Dict[str, Any]] = None
    fields: Optional[List[str]] = None
    inverted: bool = False
    reason: Optional[str] = None


@dataclass
class CompiledRules:
    """Generic (in-process) and storage (dot paths expanded) rule lists."""
    generic_rules: List[RawRule] = dataclass_field(default_factory=list)
    storage_rules: List[RawRule] = dataclass_field(default_factory=list)


def _as_list(value: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(value, str):
        return [value]
    return list(value)


def _field_pattern(pattern: str) -> "re.Pattern":
    escaped = re.escape(pattern).replace(r"\*\*", ".*").replace(r"\*", "[^.]*")
    return re.compile(f"^{escaped}$")


class Rule:
    """One compiled rule. Matching helpers never raise for plain values."""

    def __init__(self, raw: RawRule, priority: int):
        self.raw = raw
        self.priority = priority
        self.actions = _as_list(raw.action)
        self.subjects = _as_list(raw.subject)
        self.conditions = raw.conditions
        self.fields = raw.fields
        self.inverted = raw.inverted
        self.reason = raw.reason
        self._field_patterns = (
            [_field_pattern(f) for f in raw.fields] if raw.fields else None
        )

    def matches_action(self, action: str) -> bool:
        return MANAGE in self.actions or action in self.actions

    def matches_subject_type(self, subject_type: str) -> bool:
        return ALL in self.subjects or subject_type in self.subjects

    def matches_conditions(self, instance: Any) -> bool:
        if not self.conditions:
            return True
        if instance is None or is_subject_type(instance):
            # Type-level check: a conditional grant might apply, a conditional denial does not
            return not self.inverted
        return matches_conditions(self.conditions, instance)

    def matches_field(self, field: Optional[str]) -> bool:
        if not self._field_patterns:
            return True
        if field is None:
            return not self.inverted
        return any(pattern.match(field) for pattern in self._field_patterns)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "action": self.raw.action,
            "subject": self.raw.subject,
            "inverted": self.inverted,
        }
        if self.conditions:
            data["conditions"] = self.conditions
        if self.fields:
            data["fields"] = list(self.fields)
        return data

    def __repr__(self) -> str:
        kind = "cannot" if self.inverted else "can"
        return f"<Rule {kind} {self.actions} {self.subjects} priority={self.priority}>"


# ==================== ABILITY ====================

class Ability:
    """Ordered rule set. Later rules take precedence over earlier ones."""

    def __init__(self, rules: Optional[Iterable[Any]] = None):
        raw_rules = normalize_records(rules or [])
        self.rules: List[Rule] = [Rule(raw, index) for index, raw in enumerate(raw_rules)]

    def possible_rules_for(self, action: str, subject_type: Any) -> List[Rule]:
        """Rules relevant to (action, subject type), highest priority first."""
        subject_type = detect_subject_type(subject_type)
        return [
            rule for rule in reversed(self.rules)
            if rule.matches_action(action) and rule.matches_subject_type(subject_type)
        ]

    def rules_for(self, action: str, subject_type: Any, field: Optional[str] = None) -> List[Rule]:
        return [
            rule for rule in self.possible_rules_for(action, subject_type)
            if rule.matches_field(field)
        ]

    def relevant_rule_for(self, action: str, subject: Any, field: Optional[str] = None) -> Optional[Rule]:
        """Return the rule that decides the check, or None when nothing matches."""
        for rule in self.rules_for(action, subject, field):
            if rule.matches_conditions(subject):
                return rule
        return None

    def can(self, action: str, subject: Any, field: Optional[str] = None) -> bool:
        rule = self.relevant_rule_for(action, subject, field)
        return rule is not None and not rule.inverted

    def cannot(self, action: str, subject: Any, field: Optional[str] = None) -> bool:
        return not self.can(action, subject, field)

    def ensure_can(self, action: str, subject: Any, field: Optional[str] = None) -> None:
        rule = self.relevant_rule_for(action, subject, field)
        if rule is not None and not rule.inverted:
            return
        raise ForbiddenAbility(
            action,
            detect_subject_type(subject),
            field,
            rule.reason if rule is not None else None,
        )

    def permitted_fields(self, action: str, subject: Any, fields: Iterable[str]) -> List[str]:
        """Filter candidate field names down to those the action may touch."""
        return [name for name in fields if self.can(action, subject, name)]

    def serialize(self) -> List[Dict[str, Any]]:
        """Rule list in declaration order, in the shape clients consume."""
        return [rule.to_dict() for rule in self.rules]

    def __len__(self) -> int:
        return len(self.rules)

    def __repr__(self) -> str:
        return f"<Ability rules={len(self.rules)}>"


class AbilityBuilder:
    """Collect can/cannot declarations and build an Ability."""

    def __init__(self):
        self._rules: List[RawRule] = []

    def can(self, action: ActionSpec, subject: SubjectSpec,
            conditions: Optional[Dict[str, Any]] = None,
            fields: Optional[List[str]] = None) -> "AbilityBuilder":
        self._rules.append(RawRule(action, subject, conditions or None, fields or None, False))
        return self

    def cannot(self, action: ActionSpec, subject: SubjectSpec,
               conditions: Optional[Dict[str, Any]] = None,
               fields: Optional[List[str]] = None,
               reason: Optional[str] = None) -> "AbilityBuilder":
        self._rules.append(RawRule(action, subject, conditions or None, fields or None, True, reason))
        return self

    @property
    def rules(self) -> List[RawRule]:
        return list(self._rules)

    def build(self) -> Ability:
        return Ability(self._rules)


# ==================== NORMALIZATION ====================

def _read(record: Any, key: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(key, default)
    return getattr(record, key, default)


def normalize_records(records: Iterable[Any]) -> List[RawRule]:
    """
    Clean up ability records without touching condition values.

    Accepts mappings, RawRule instances or ORM records. Empty fields become
    None, a missing `inverted` becomes False, empty conditions become None.
    """
    cleaned: List[RawRule] = []
    for record in records:
        fields = _read(record, "fields")
        conditions = _read(record, "conditions")
        cleaned.append(RawRule(
            action=_read(record, "action"),
            subject=_read(record, "subject"),
            conditions=dict(conditions) if conditions else None,
            fields=list(fields) if fields else None,
            inverted=bool(_read(record, "inverted", False)),
            reason=_read(record, "reason") or None,
        ))
    return cleaned


def compile_rules(raw_rules: Iterable[RawRule], variables: Mapping[str, Any]) -> CompiledRules:
    """
    Interpolate and compile every rule twice (generic and storage form).

    Raises UndefinedVariableReference / ConditionCompileError; a failure on
    any rule aborts the whole compilation.
    """
    compiled = CompiledRules()
    for raw in raw_rules:
        generic_conditions, storage_conditions = compile_both(raw.conditions, variables)

        compiled.generic_rules.append(RawRule(
            raw.action, raw.subject, generic_conditions, raw.fields, raw.inverted, raw.reason,
        ))
        compiled.storage_rules.append(RawRule(
            raw.action, raw.subject, storage_conditions, raw.fields, raw.inverted, raw.reason,
        ))
    return compiled


def normalize(records: Iterable[Any], variables: Mapping[str, Any]) -> CompiledRules:
    """Cleanup plus compilation. Output order matches input order."""
    return compile_rules(normalize_records(records), variables)


# ==================== BUNDLE ====================

@dataclass
class AbilityBundle:
    """Everything a request needs after its ability has been built."""
    ability: Ability
    storage_ability: Ability
    serialized_rules: List[Dict[str, Any]]


def build_from_rules(rules: Any, variables: Mapping[str, Any]) -> AbilityBundle:
    """
    Build server and storage abilities from ability records.

    Args:
        rules: Raw records, RawRule instances or an already compiled CompiledRules
        variables: Variable bag, minimally {"user": actor_record}
    """
    if isinstance(rules, CompiledRules):
        compiled = rules
    else:
        compiled = normalize(rules, variables)

    ability = Ability(compiled.generic_rules)
    storage_ability = Ability(compiled.storage_rules)
    logger.debug(f"[ABILITY] Built ability with {len(ability)} rule(s)")

    return AbilityBundle(
        ability=ability,
        storage_ability=storage_ability,
        serialized_rules=ability.serialize(),
    )


__all__ = [
    "ALL",
    "MANAGE",
    "Ability",
    "AbilityBuilder",
    "AbilityBundle",
    "CompiledRules",
    "ForbiddenAbility",
    "RawRule",
    "Rule",
    "TaggedSubject",
    "build_from_rules",
    "compile_rules",
    "detect_subject_type",
    "normalize",
    "normalize_records",
    "subject",
]
