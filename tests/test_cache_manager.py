from datetime import datetime, timedelta

from auth.auth_manager import auth_manager
from auth.cache_manager import AbilityCache, ability_cache
from auth.models import AbilityRecord, Role, RoleAbility, get_db_session
from security.policy.abac import RawRule, normalize_records

RULES = [RawRule("read", "User"), RawRule("update", "Settings", inverted=True)]


def test_store_and_get_by_version():
    cache = AbilityCache(ttl=60)
    cache.store_rules("r1", 1, RULES)

    assert cache.get_rules("r1", 1) == RULES
    assert cache.get_rules("r1", 2) is None
    assert cache.stats()["hits"] == 1


def test_storing_a_new_version_replaces_the_old_one():
    cache = AbilityCache(ttl=60)
    cache.store_rules("r1", 1, RULES)
    cache.store_rules("r1", 2, RULES[:1])

    assert cache.get_rules("r1", 1) is None
    assert cache.get_rules("r1", 2) == RULES[:1]
    assert cache.stats()["entries"] == 1


def test_expired_entries_are_dropped():
    cache = AbilityCache(ttl=60)
    cache.store_rules("r1", 1, RULES)
    rules, _ = cache.entries[("r1", 1)]
    cache.entries[("r1", 1)] = (rules, datetime.utcnow() - timedelta(seconds=1))

    assert cache.get_rules("r1", 1) is None
    assert ("r1", 1) not in cache.entries


def test_evict_role():
    cache = AbilityCache(ttl=60)
    cache.store_rules("r1", 1, RULES)
    cache.store_rules("r2", 1, RULES)
    cache.evict_role("r1")

    assert cache.get_rules("r1", 1) is None
    assert cache.get_rules("r2", 1) == RULES


def test_zero_ttl_disables_caching():
    cache = AbilityCache(ttl=0)
    cache.store_rules("r1", 1, RULES)
    assert not cache.enabled
    assert cache.get_rules("r1", 1) is None


def _user_role():
    session = get_db_session()
    try:
        return session.query(Role).filter_by(name="user").one()
    finally:
        session.close()


def test_ability_changes_bump_version_and_evict(database):
    role = _user_role()
    session = get_db_session()
    try:
        auth_manager.get_role_rules(session, role)
    finally:
        session.close()
    assert ability_cache.get_rules(role.id, role.ruleset_version) is not None

    result = auth_manager.add_ability("user", {"action": "read", "subject": "Role"})
    assert result["success"]

    updated = _user_role()
    assert updated.ruleset_version == role.ruleset_version + 1
    assert ability_cache.get_rules(role.id, role.ruleset_version) is None


def test_removing_an_ability_bumps_version(database):
    before = _user_role()
    session = get_db_session()
    try:
        role = session.query(Role).filter_by(name="user").one()
        ability_id = role.abilities[0].id
    finally:
        session.close()

    result = auth_manager.remove_ability("user", ability_id)
    assert result["success"]

    after = _user_role()
    assert after.ruleset_version == before.ruleset_version + 1
    assert ability_id not in [link.ability_id for link in _links("user")]


def _links(role_name):
    session = get_db_session()
    try:
        role = session.query(Role).filter_by(name=role_name).one()
        return list(role.ability_links)
    finally:
        session.close()


def _first_user_ability(session):
    role = session.query(Role).filter_by(name="user").one()
    return role.abilities[0]


def test_interleaved_edits_never_leave_a_stale_grant_cached(database, make_actor):
    user_id, _ = make_actor("user")
    start = _user_role().ruleset_version

    session_a = get_db_session()
    session_b = get_db_session()
    try:
        record_a = _first_user_ability(session_a)
        record_b = _first_user_ability(session_b)
        assert (record_b.action, record_b.subject, record_b.inverted) == ("read", "User", False)

        record_a.reason = "Everyone can see the team"
        session_a.commit()

        # A request loads the ruleset between the two commits...
        session_r = get_db_session()
        try:
            role = session_r.query(Role).filter_by(name="user").one()
            seen_version = role.ruleset_version
            seen_rules = normalize_records(role.abilities)
        finally:
            session_r.close()

        record_b.inverted = True
        session_b.commit()
    finally:
        session_a.close()
        session_b.close()

    # ...and stores it only after the second commit evicted the role
    ability_cache.store_rules(role.id, seen_version, seen_rules)

    assert seen_version == start + 1
    assert _user_role().ruleset_version == start + 2

    context = auth_manager.load_actor_context(user_id)
    bundle = auth_manager.build_ability(context["actor"], context["rules"])
    assert not bundle.ability.can("read", "User")


def test_long_subject_ids_fit_the_column(database):
    subject = "S" * 100
    first = auth_manager.add_ability("user", {"action": "archive", "subject": subject})
    second = auth_manager.add_ability("user", {"action": "archive", "subject": subject})

    limit = AbilityRecord.__table__.c.id.type.length
    assert first["ability"]["id"] != second["ability"]["id"]
    assert len(second["ability"]["id"]) <= limit
    assert RoleAbility.__table__.c.ability_id.type.length == limit
