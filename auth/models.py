"""
SQLAlchemy models for actors, roles and ability records.

Tables:
  - users: Actors, each with at most one role
  - roles: Role definitions with a ruleset version
  - abilities: Ability records (action, subject, conditions, fields, inverted)
  - role_abilities: Ordered role -> ability links
  - audit_logs: Role assignment and ability mutation history

Every change to a role's ability set bumps `Role.ruleset_version` in the
same flush and evicts the role from the ruleset cache after commit.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger
from sqlalchemy import (JSON, Boolean, Column, DateTime, ForeignKey, Integer,
                        String, Text, create_engine, event, inspect)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from auth.cache_manager import ability_cache
from auth.config import get_config

Base = declarative_base()

# Global engine instance (singleton)
_engine = None
_SessionLocal = None

TOUCHED_ROLES_KEY = "touched_role_ids"
PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Actor accounts. Authentication itself happens elsewhere."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    image = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role = relationship("Role", back_populates="users")

    def to_actor(self) -> Dict[str, Any]:
        """Variable-bag record used for condition interpolation"""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.name if self.role else None,
            "image": self.image,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class Role(Base):
    """Roles (user, admin, super_admin, ...)"""
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(String(255))
    ruleset_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    users = relationship("User", back_populates="role")
    ability_links = relationship(
        "RoleAbility",
        back_populates="role",
        order_by="RoleAbility.position",
        cascade="all, delete-orphan",
    )

    @property
    def abilities(self) -> List["AbilityRecord"]:
        """Ability records in declaration order"""
        return [link.ability for link in self.ability_links]


class AbilityRecord(Base):
    """One grant or denial"""
    __tablename__ = "abilities"

    id = Column(String(255), primary_key=True, default=_new_id)
    action = Column(String(50), nullable=False)  # create, read, update, delete, manage, assign, archive
    subject = Column(String(100), nullable=False)  # model name or "all"
    conditions = Column(JSON, nullable=True)
    fields = Column(JSON, nullable=True)
    inverted = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role_links = relationship("RoleAbility", back_populates="ability", cascade="all, delete-orphan")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "subject": self.subject,
            "conditions": self.conditions,
            "fields": self.fields,
            "inverted": bool(self.inverted),
            "reason": self.reason,
        }


class RoleAbility(Base):
    """Association object for the ordered Role-Ability link"""
    __tablename__ = "role_abilities"

    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    ability_id = Column(String(255), ForeignKey("abilities.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    role = relationship("Role", back_populates="ability_links")
    ability = relationship("AbilityRecord", back_populates="role_links")


class AuditLog(Base):
    """Audit log for role and ability changes"""
    __tablename__ = "audit_logs"

    audit_id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    event_type = Column(String(50), nullable=False)  # role_assigned, ability_added, ability_removed
    event_details = Column(Text)  # JSON string
    status = Column(String(20), default="success")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    @property
    def details(self) -> Dict[str, Any]:
        return json.loads(self.event_details or "{}")


# ==================== RULESET VERSIONING ====================

def _roles_touched_by(session: Session, obj: Any) -> List[Role]:
    if isinstance(obj, RoleAbility):
        role = obj.role
        if role is None and obj.role_id:
            role = session.get(Role, obj.role_id)
        return [role] if role is not None else []
    if isinstance(obj, AbilityRecord):
        return [link.role for link in obj.role_links if link.role is not None]
    if isinstance(obj, Role):
        # Links removed from the collection only become orphans during the flush
        if inspect(obj).attrs.ability_links.history.has_changes():
            return [obj]
    return []


@event.listens_for(Session, "before_flush")
def _bump_ruleset_versions(session, flush_context, instances):
    """Bump the version of every role whose ability set changes in this flush"""
    touched: Dict[int, Role] = {}

    with session.no_autoflush:
        candidates = list(session.new) + list(session.deleted)
        candidates += [obj for obj in session.dirty if session.is_modified(obj)]
        for obj in candidates:
            for role in _roles_touched_by(session, obj):
                touched[id(role)] = role

        deleted_roles = [obj for obj in session.deleted if isinstance(obj, Role)]

    role_ids = session.info.setdefault(TOUCHED_ROLES_KEY, set())
    for role in touched.values():
        if role in session.deleted:
            continue
        if role not in session.new:
            # Incremented in SQL so concurrent sessions never write the same version.
            # The attribute expires after the flush and reloads on access.
            role.ruleset_version = Role.ruleset_version + 1
        if role.id:
            role_ids.add(role.id)
    role_ids.update(role.id for role in deleted_roles if role.id)


@event.listens_for(Session, "after_commit")
def _evict_touched_roles(session):
    for role_id in session.info.pop(TOUCHED_ROLES_KEY, set()):
        ability_cache.evict_role(role_id)


@event.listens_for(Session, "after_rollback")
def _forget_touched_roles(session):
    session.info.pop(TOUCHED_ROLES_KEY, None)


# ==================== ENGINE / SESSIONS ====================

def get_engine():
    """Get SQLAlchemy engine (created on first use from DATABASE_URL)"""
    global _engine

    if _engine is not None:
        return _engine

    config = get_config()
    url = config.database_url

    if config.is_sqlite:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(url, echo=config.db_echo, **kwargs)
    else:
        _engine = create_engine(
            url,
            echo=config.db_echo,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_pre_ping=True,
        )

    logger.info(f"Database engine created ({_engine.dialect.name})")
    return _engine


def get_db_session() -> Session:
    """Get database session"""
    global _SessionLocal

    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)

    return _SessionLocal()


def get_db():
    """FastAPI dependency: one session per request"""
    session = get_db_session()
    try:
        yield session
    finally:
        session.close()


def reset_engine():
    """Dispose the engine and session factory (tests, config reloads)"""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def init_database():
    """
    Initialize database schema safely (IDEMPOTENT).
    Creates missing tables and seeds default roles.
    """
    # Registers Settings/Customer on the shared metadata
    import admin.models  # noqa: F401

    try:
        engine = get_engine()
        existing_tables = set(inspect(engine).get_table_names())
        missing = [name for name in Base.metadata.tables if name not in existing_tables]

        Base.metadata.create_all(engine, checkfirst=True)
        if missing:
            logger.info(f"Created tables: {sorted(missing)}")

        _create_default_roles()
        logger.info("✓ Database initialization completed successfully")

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {type(e).__name__}: {e}")
        raise


# ==================== ROLE SEEDING ====================

def _resolve_seed_path(path: str) -> Path:
    seed_path = Path(path)
    if not seed_path.is_absolute() and not seed_path.exists():
        seed_path = PROJECT_ROOT / seed_path
    return seed_path


def _builtin_seed_data() -> List[Dict[str, Any]]:
    """Seed data derived from the built-in role definitions"""
    from security.policy.rbac import BuiltinRole, build_from_role

    roles = []
    for builtin in BuiltinRole:
        ability = build_from_role(builtin.value)
        roles.append({
            "name": builtin.value,
            "description": f"Built-in {builtin.value} role",
            "abilities": [rule.to_dict() for rule in ability.rules],
        })
    return roles


def load_role_seeds(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Load role seeds from YAML.

    Falls back to the built-in role definitions when the file is missing.
    """
    seed_path = _resolve_seed_path(path or get_config().role_seed_path)
    if not seed_path.exists():
        logger.warning(f"[ROLE] Seed file not found: {seed_path}, using built-in roles")
        return _builtin_seed_data()

    with open(seed_path, "r") as f:
        data = yaml.safe_load(f) or {}

    roles = data.get("roles", [])
    logger.debug(f"[ROLE] Loaded {len(roles)} role seed(s) from {seed_path}")
    return roles


def _expand_actions(ability: Dict[str, Any]) -> List[Dict[str, Any]]:
    actions = ability["action"]
    if isinstance(actions, str):
        actions = [actions]
    return [{**ability, "action": action} for action in actions]


def seed_role_abilities(session: Session, role: Role, abilities: List[Dict[str, Any]]):
    """
    Replace a role's abilities with freshly created records.

    Each (role, subject, action) gets its own record with id
    "{role_id}-{subject}-{action}".
    """
    for link in list(role.ability_links):
        ability = link.ability
        role.ability_links.remove(link)
        if ability is not None and len(ability.role_links) <= 1:
            session.delete(ability)
    session.flush()

    used_ids = set()
    position = 0
    for raw in abilities:
        for entry in _expand_actions(raw):
            ability_id = f"{role.id}-{entry['subject']}-{entry['action']}"
            if ability_id in used_ids:
                ability_id = f"{ability_id}-{position}"
            used_ids.add(ability_id)

            record = AbilityRecord(
                id=ability_id,
                action=entry["action"],
                subject=entry["subject"],
                conditions=entry.get("conditions") or None,
                fields=entry.get("fields") or None,
                inverted=bool(entry.get("inverted", False)),
                reason=entry.get("reason"),
            )
            role.ability_links.append(RoleAbility(ability=record, position=position))
            position += 1

    logger.debug(f"[ROLE] Seeded {position} ability record(s) for role '{role.name}'")


def seed_roles(session: Session, roles: List[Dict[str, Any]], replace: bool = False) -> List[str]:
    """
    Create missing roles from seed data.

    Args:
        session: Open session (caller commits)
        roles: Seed entries {name, description, abilities}
        replace: Also rewrite the abilities of roles that already exist

    Returns:
        Names of the roles that were created or rewritten
    """
    existing = {role.name: role for role in session.query(Role).all()}
    changed = []

    for role_data in roles:
        role = existing.get(role_data["name"])
        if role is None:
            role = Role(id=_new_id(), name=role_data["name"], description=role_data.get("description"))
            session.add(role)
        elif not replace:
            continue
        else:
            role.description = role_data.get("description", role.description)

        seed_role_abilities(session, role, role_data.get("abilities", []))
        changed.append(role.name)

    return changed


def _create_default_roles():
    """Create default roles if they don't exist"""
    session = get_db_session()
    try:
        created = seed_roles(session, load_role_seeds())
        if created:
            session.commit()
            logger.info(f"✓ Created default roles: {created}")
        else:
            logger.info("✓ Default roles already exist")
    except Exception as e:
        logger.error(f"⚠ Error managing default roles: {e}")
        session.rollback()
        raise
    finally:
        session.close()
