import copy

import pytest

from security.policy.conditions import (ConditionCompileError,
                                        UndefinedVariableReference,
                                        compile_both, compile_conditions,
                                        expand_dotted_keys, interpolate_value,
                                        resolve_path)

VARIABLES = {
    "user": {
        "id": "u1",
        "email": "u1@example.com",
        "teams": ["red", "blue"],
        "manager": None,
    }
}


def test_placeholder_resolves_against_variables():
    assert interpolate_value("${user.id}", VARIABLES) == "u1"


def test_placeholder_resolves_sequence_index():
    assert interpolate_value("${user.teams.1}", VARIABLES) == "blue"


def test_placeholder_resolving_to_none_is_a_value():
    assert interpolate_value("${user.manager}", VARIABLES) is None


def test_undefined_placeholder_raises_with_path():
    with pytest.raises(UndefinedVariableReference) as exc_info:
        interpolate_value("${user.missing}", VARIABLES)
    assert exc_info.value.path == "user.missing"


def test_traversing_through_none_is_undefined():
    with pytest.raises(UndefinedVariableReference):
        resolve_path(VARIABLES, "user.manager.id")


def test_resolve_path_reads_object_attributes():
    class Actor:
        id = "a1"

    assert resolve_path({"user": Actor()}, "user.id") == "a1"


def test_boolean_strings_are_coerced():
    assert interpolate_value("true", VARIABLES) is True
    assert interpolate_value("FALSE", VARIABLES) is False
    assert interpolate_value("yes", VARIABLES) == "yes"


def test_other_scalars_pass_through():
    assert interpolate_value(42, VARIABLES) == 42
    assert interpolate_value(None, VARIABLES) is None
    assert interpolate_value("plain", VARIABLES) == "plain"


def test_compile_interpolates_every_leaf():
    conditions = {"ownerId": "${user.id}", "tags": {"$in": ["${user.teams.0}", "x"]}}
    assert compile_conditions(conditions, VARIABLES) == {
        "ownerId": "u1",
        "tags": {"$in": ["red", "x"]},
    }


def test_generic_form_keeps_dotted_keys():
    assert compile_conditions({"owner.id": "${user.id}"}, VARIABLES) == {"owner.id": "u1"}


def test_storage_form_expands_dotted_keys():
    compiled = compile_conditions(
        {"owner.id": "${user.id}", "owner.team.name": "red", "status": "open"},
        VARIABLES,
        expand_dot_paths=True,
    )
    assert compiled == {
        "owner": {"id": "u1", "team": {"name": "red"}},
        "status": "open",
    }


def test_expansion_merges_with_existing_mapping():
    assert expand_dotted_keys({"owner": {"name": "n"}, "owner.id": 1}) == {
        "owner": {"name": "n", "id": 1}
    }


def test_expansion_conflict_fails_closed():
    with pytest.raises(ConditionCompileError):
        compile_conditions({"owner": "u1", "owner.id": "u1"}, VARIABLES, expand_dot_paths=True)


def test_expansion_applies_inside_lists():
    compiled = compile_conditions(
        {"$or": [{"owner.id": "${user.id}"}, {"public": "true"}]},
        VARIABLES,
        expand_dot_paths=True,
    )
    assert compiled == {"$or": [{"owner": {"id": "u1"}}, {"public": True}]}


def test_compile_does_not_mutate_input():
    conditions = {"owner.id": "${user.id}", "tags": ["${user.teams.0}"]}
    snapshot = copy.deepcopy(conditions)
    compile_conditions(conditions, VARIABLES, expand_dot_paths=True)
    assert conditions == snapshot


def test_compile_both_returns_none_for_empty_conditions():
    assert compile_both(None, VARIABLES) == (None, None)
    assert compile_both({}, VARIABLES) == (None, None)


def test_compile_both_returns_generic_and_storage_forms():
    generic, storage = compile_both({"owner.id": "${user.id}"}, VARIABLES)
    assert generic == {"owner.id": "u1"}
    assert storage == {"owner": {"id": "u1"}}
