"""
Authorization manager: tokens, actor loading, role and ability management.
"""

import json
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import jwt
from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from auth.cache_manager import ability_cache
from auth.config import get_config
from auth.models import AbilityRecord, AuditLog, Role, RoleAbility, User, get_db_session
from security.policy.abac import AbilityBundle, RawRule, build_from_rules, normalize_records

ABILITY_ACTIONS = ("create", "read", "update", "delete", "manage", "assign", "archive")


class AuthManager:
    """Authorization manager"""

    def __init__(self):
        config = get_config()
        self.jwt_secret = config.jwt_secret
        self.jwt_algorithm = config.jwt_algorithm
        self.jwt_expiry = config.jwt_expiry
        logger.info("AuthManager initialized")

    # ==================== TOKENS ====================

    def issue_token(self, user_id: str, email: str, expires_in: Optional[int] = None) -> str:
        """Issue a signed bearer token for an actor"""
        now = datetime.utcnow()
        payload = {
            "sub": user_id,
            "email": email,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in or self.jwt_expiry),
            "jti": secrets.token_hex(8),
        }
        token = jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)
        logger.debug(f"[TOKEN] Issued token for user: {user_id}")
        return token

    def verify_token(self, token: str) -> Optional[dict]:
        """Verify JWT token and return payload"""
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=[self.jwt_algorithm])
            logger.debug(f"[TOKEN_VERIFY] Token verified for user: {payload.get('sub')}")
            return payload
        except jwt.ExpiredSignatureError:
            logger.warning("[TOKEN_VERIFY] Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"[TOKEN_VERIFY] Invalid token: {e}")
            return None

    # ==================== ACTORS ====================

    def create_user(self, email: str, name: str, role_name: Optional[str] = None,
                    image: Optional[str] = None) -> dict:
        """Create an actor, optionally with a role"""
        session = get_db_session()
        try:
            if session.query(User).filter_by(email=email).first():
                logger.warning(f"[USER] Email already exists: {email}")
                return {"error": "Email already registered", "status_code": 409}

            role = None
            if role_name:
                role = session.query(Role).filter_by(name=role_name).first()
                if not role:
                    return {"error": f"Role '{role_name}' not found", "status_code": 404}

            user = User(email=email, name=name, image=image, role=role)
            session.add(user)
            session.commit()

            logger.info(f"[USER] Created user {email} with role {role_name}")
            return {"success": True, "user_id": user.id}
        except Exception as e:
            logger.error(f"[USER] Error creating user: {type(e).__name__}: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    def get_role_rules(self, session: Session, role: Role) -> List[RawRule]:
        """Normalized rules of a role, served from the ruleset cache when fresh"""
        cached = ability_cache.get_rules(role.id, role.ruleset_version)
        if cached is not None:
            logger.debug(f"[CACHE] Hit for role {role.name} v{role.ruleset_version}")
            return cached

        links = (
            session.query(RoleAbility)
            .filter(RoleAbility.role_id == role.id)
            .order_by(RoleAbility.position)
            .all()
        )
        rules = normalize_records(link.ability for link in links)
        ability_cache.store_rules(role.id, role.ruleset_version, rules)
        return rules

    def load_actor_context(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Load an actor record with its role name and ordered rules.

        Returns None when the user does not exist or is inactive. Database
        errors propagate.
        """
        session = get_db_session()
        try:
            user = session.get(User, user_id)
            if not user or not user.is_active:
                logger.warning(f"[GATE] User not found or inactive: {user_id}")
                return None

            role = user.role
            rules = self.get_role_rules(session, role) if role else []
            return {
                "actor": user.to_actor(),
                "role": role.name if role else None,
                "rules": rules,
            }
        finally:
            session.close()

    def build_ability(self, actor: Dict[str, Any], rules: List[RawRule]) -> AbilityBundle:
        """Interpolate the rules against the actor and build the abilities"""
        return build_from_rules(rules, {"user": actor})

    # ==================== ROLES ====================

    def list_roles(self) -> List[dict]:
        """All roles with their abilities in declaration order"""
        session = get_db_session()
        try:
            roles = session.query(Role).order_by(Role.name).all()
            return [
                {
                    "id": role.id,
                    "name": role.name,
                    "description": role.description,
                    "ruleset_version": role.ruleset_version,
                    "abilities": [ability.to_dict() for ability in role.abilities],
                }
                for role in roles
            ]
        finally:
            session.close()

    def assign_role(self, user_id: str, role_name: str, admin_id: Optional[str] = None) -> dict:
        """Give a user a role (replacing the previous one)"""
        session = get_db_session()
        try:
            user = session.get(User, user_id)
            if not user:
                logger.warning(f"[ROLE] User not found: {user_id}")
                return {"error": "User not found", "status_code": 404}

            role = session.query(Role).filter_by(name=role_name).first()
            if not role:
                logger.warning(f"[ROLE] Role not found: {role_name}")
                return {"error": f"Role '{role_name}' not found", "status_code": 404}

            previous = user.role.name if user.role else None
            user.role = role
            session.commit()

            self.log_audit_event(admin_id, "role_assigned",
                {"user_id": user_id, "role": role_name, "previous_role": previous})

            logger.info(f"[ROLE] User {user_id} role changed: {previous} -> {role_name}")
            return {"success": True, "message": f"Role {role_name} assigned",
                    "user_id": user_id, "role": role_name}
        except Exception as e:
            logger.error(f"[ROLE] Error assigning role: {type(e).__name__}: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    def add_ability(self, role_name: str, ability_data: Dict[str, Any],
                    admin_id: Optional[str] = None) -> dict:
        """Append an ability record to a role (it takes the highest priority)"""
        session = get_db_session()
        try:
            role = session.query(Role).filter_by(name=role_name).first()
            if not role:
                logger.warning(f"[ROLE] Role not found: {role_name}")
                return {"error": f"Role '{role_name}' not found", "status_code": 404}

            ability_id = f"{role.id}-{ability_data['subject']}-{ability_data['action']}"
            if session.get(AbilityRecord, ability_id) is not None:
                ability_id = f"{ability_id}-{secrets.token_hex(4)}"

            last_position = (
                session.query(func.max(RoleAbility.position))
                .filter(RoleAbility.role_id == role.id)
                .scalar()
            )
            record = AbilityRecord(
                id=ability_id,
                action=ability_data["action"],
                subject=ability_data["subject"],
                conditions=ability_data.get("conditions") or None,
                fields=ability_data.get("fields") or None,
                inverted=bool(ability_data.get("inverted", False)),
                reason=ability_data.get("reason"),
            )
            position = 0 if last_position is None else last_position + 1
            role.ability_links.append(RoleAbility(ability=record, position=position))
            session.commit()

            self.log_audit_event(admin_id, "ability_added",
                {"role": role_name, "ability": record.to_dict()})

            logger.info(f"[ROLE] Ability {ability_id} added to {role_name} at position {position}")
            return {"success": True, "ability": record.to_dict(),
                    "ruleset_version": role.ruleset_version}
        except Exception as e:
            logger.error(f"[ROLE] Error adding ability: {type(e).__name__}: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    def remove_ability(self, role_name: str, ability_id: str, admin_id: Optional[str] = None) -> dict:
        """Unlink an ability from a role, deleting the record once unused"""
        session = get_db_session()
        try:
            role = session.query(Role).filter_by(name=role_name).first()
            if not role:
                logger.warning(f"[ROLE] Role not found: {role_name}")
                return {"error": f"Role '{role_name}' not found", "status_code": 404}

            link = next((l for l in role.ability_links if l.ability_id == ability_id), None)
            if link is None:
                return {"error": f"Ability '{ability_id}' not found on role '{role_name}'",
                        "status_code": 404}

            ability = link.ability
            role.ability_links.remove(link)
            if ability is not None and len(ability.role_links) <= 1:
                session.delete(ability)
            session.commit()

            self.log_audit_event(admin_id, "ability_removed",
                {"role": role_name, "ability_id": ability_id})

            logger.info(f"[ROLE] Ability {ability_id} removed from {role_name}")
            return {"success": True, "message": f"Ability {ability_id} removed",
                    "ruleset_version": role.ruleset_version}
        except Exception as e:
            logger.error(f"[ROLE] Error removing ability: {type(e).__name__}: {e}")
            session.rollback()
            raise
        finally:
            session.close()

    # ==================== AUDIT LOGGING ====================

    def log_audit_event(self, user_id: Optional[str], event_type: str, event_details: dict = None,
                        status: str = "success"):
        """Log audit event"""
        logger.debug(f"[AUDIT] Logging audit event - user: {user_id}, event: {event_type}, status: {status}")

        session = get_db_session()
        try:
            audit_log = AuditLog(
                user_id=user_id,
                event_type=event_type,
                event_details=json.dumps(event_details or {}, default=str),
                status=status,
            )
            session.add(audit_log)
            session.commit()

            logger.info(f"[AUDIT] {event_type} by user {user_id} - {status}")
        except Exception as e:
            logger.error(f"[AUDIT] Error logging audit event: {type(e).__name__}: {e}")
            session.rollback()
        finally:
            session.close()


# Global instance
auth_manager = AuthManager()
