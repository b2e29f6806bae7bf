import pytest

from admin.models import Customer
from auth.models import User, get_db_session
from security.policy.abac import AbilityBuilder, build_from_rules
from storage.relational.predicates import (StoragePredicateError, accessible_by,
                                           rules_to_query)


@pytest.fixture
def session(database):
    session = get_db_session()
    yield session
    session.close()


@pytest.fixture
def customers(session):
    alice = User(email="alice@example.com", name="Alice")
    bob = User(email="bob@example.com", name="Bob")
    session.add_all([alice, bob])
    session.flush()

    session.add_all([
        Customer(name="Acme", owner=alice),
        Customer(name="Globex", owner=bob),
        Customer(name="Initech", owner=None, is_active=False),
    ])
    session.commit()
    return {"alice": alice, "bob": bob}


def _names(session, storage_ability, action="read"):
    rows = session.query(Customer).filter(accessible_by(storage_ability, action, Customer)).all()
    return sorted(customer.name for customer in rows)


# ==================== RULE FOLDING ====================

def test_unconditional_grant_yields_empty_query():
    ability = AbilityBuilder().can("read", "Customer").build()
    assert rules_to_query(ability, "read", "Customer") == {}


def test_no_grant_yields_none():
    ability = AbilityBuilder().can("read", "User").build()
    assert rules_to_query(ability, "read", "Customer") is None
    assert rules_to_query(AbilityBuilder().cannot("read", "Customer").build(), "read", "Customer") is None


def test_conditional_grants_are_ored():
    ability = (
        AbilityBuilder()
        .can("read", "Customer", {"name": "Acme"})
        .can("read", "Customer", {"name": "Globex"})
        .build()
    )
    assert rules_to_query(ability, "read", "Customer") == {
        "$or": [{"name": "Globex"}, {"name": "Acme"}]
    }


def test_denials_after_unconditional_grant_are_kept():
    ability = (
        AbilityBuilder()
        .can("read", "Customer")
        .cannot("read", "Customer", {"is_active": False})
        .build()
    )
    assert rules_to_query(ability, "read", "Customer") == {
        "$and": [{"$not": {"is_active": False}}]
    }


def test_unconditional_denial_hides_earlier_grants():
    ability = (
        AbilityBuilder()
        .can("read", "Customer", {"name": "Acme"})
        .cannot("read", "Customer")
        .build()
    )
    assert rules_to_query(ability, "read", "Customer") is None


# ==================== CLAUSES ====================

def test_owner_scoped_query(session, customers):
    alice = customers["alice"]
    bundle = build_from_rules(
        [{"action": "manage", "subject": "Customer", "conditions": {"owner.id": "${user.id}"}}],
        {"user": {"id": alice.id}},
    )
    assert _names(session, bundle.storage_ability) == ["Acme"]
    assert _names(session, bundle.storage_ability, "delete") == ["Acme"]


def test_grant_all_except_denied(session, customers):
    ability = (
        AbilityBuilder()
        .can("read", "Customer")
        .cannot("read", "Customer", {"is_active": False})
        .build()
    )
    assert _names(session, ability) == ["Acme", "Globex"]


def test_nothing_granted_returns_no_rows(session, customers):
    assert _names(session, AbilityBuilder().build()) == []


def test_everything_granted_returns_all_rows(session, customers):
    ability = AbilityBuilder().can("manage", "all").build()
    assert _names(session, ability) == ["Acme", "Globex", "Initech"]


def test_column_operators(session, customers):
    ability = (
        AbilityBuilder()
        .can("read", "Customer", {"name": {"$in": ["Acme", "Initech"]}})
        .cannot("read", "Customer", {"owner_id": {"$exists": False}})
        .build()
    )
    assert _names(session, ability) == ["Acme"]


def test_unknown_attribute_fails_closed(session, customers):
    ability = AbilityBuilder().can("read", "Customer", {"region": "EU"}).build()
    with pytest.raises(StoragePredicateError):
        accessible_by(ability, "read", Customer)


def test_unsupported_operator_fails_closed(session, customers):
    ability = AbilityBuilder().can("read", "Customer", {"name": {"$regex": "^A"}}).build()
    with pytest.raises(StoragePredicateError):
        accessible_by(ability, "read", Customer)
