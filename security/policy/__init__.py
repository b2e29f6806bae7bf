from security.policy import abac
from security.policy import client
from security.policy import conditions
from security.policy import matcher
from security.policy import rbac

from security.policy.abac import (ALL, MANAGE, Ability, AbilityBuilder,
                                  AbilityBundle, CompiledRules,
                                  ForbiddenAbility, RawRule, Rule,
                                  TaggedSubject, build_from_rules,
                                  compile_rules, detect_subject_type,
                                  normalize, normalize_records, subject,)
from security.policy.client import (AbilityClient, ClientAbility,)
from security.policy.conditions import (ConditionCompileError, ConditionValue,
                                        UndefinedVariableReference,
                                        compile_conditions,
                                        expand_dotted_keys,
                                        interpolate_value, resolve_path,)
from security.policy.matcher import (matches_conditions,)
from security.policy.rbac import (BuiltinRole, build_from_role,)

__all__ = ['ALL', 'Ability', 'AbilityBuilder', 'AbilityBundle',
           'AbilityClient', 'BuiltinRole', 'ClientAbility', 'CompiledRules',
           'ConditionCompileError', 'ConditionValue', 'ForbiddenAbility',
           'MANAGE', 'RawRule', 'Rule', 'TaggedSubject',
           'UndefinedVariableReference', 'abac', 'build_from_role',
           'build_from_rules', 'client', 'compile_conditions',
           'compile_rules', 'conditions', 'detect_subject_type',
           'expand_dotted_keys', 'interpolate_value', 'matcher',
           'matches_conditions', 'normalize', 'normalize_records', 'rbac',
           'resolve_path', 'subject']
