"""
Authorization gate dependencies for FastAPI.

Request flow:
  get_optional_actor -> authorize_request -> require_actor -> require_permission

authorize_request builds the actor's abilities once per request and stores
them on request.state (ability, storage_ability, serialized_rules,
current_actor). Handlers read them back through the accessors below.
"""

from typing import Any, Dict, List, Optional

from fastapi import Depends, Header, Request
from loguru import logger

from auth.auth_manager import auth_manager
from auth.errors import (AbilityNotInitialized, AuthorizationFailure, Forbidden,
                         NoRoleAssigned, Unauthorized)
from security.policy.abac import Ability

# ==================== AUTHENTICATION ====================

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


async def get_optional_actor(authorization: str = Header(None)) -> Optional[dict]:
    """
    Optional dependency: token payload if authenticated, otherwise None.
    """
    token = _bearer_token(authorization)
    if token is None:
        return None
    return auth_manager.verify_token(token)


# ==================== ABILITY CONSTRUCTION ====================

async def authorize_request(
    request: Request,
    payload: Optional[dict] = Depends(get_optional_actor),
) -> Optional[Dict[str, Any]]:
    """
    Dependency: build the actor's abilities and attach them to the request.

    Unauthenticated requests pass through with None so public handlers can
    run. Authenticated requests either end up with an ability or are
    rejected.
    """
    if payload is None:
        return None

    if getattr(request.state, "ability", None) is not None:
        return request.state.current_actor

    user_id = payload.get("sub")
    context = auth_manager.load_actor_context(user_id) if user_id else None
    if context is None:
        raise Unauthorized("User not found")

    if context["role"] is None:
        logger.warning(f"[GATE] User {user_id} has no role assigned")
        raise NoRoleAssigned()

    try:
        bundle = auth_manager.build_ability(context["actor"], context["rules"])
    except Exception as e:
        logger.error(f"[GATE] Building ability failed for user {user_id}: {type(e).__name__}: {e}")
        raise AuthorizationFailure() from e

    request.state.ability = bundle.ability
    request.state.storage_ability = bundle.storage_ability
    request.state.serialized_rules = bundle.serialized_rules
    request.state.current_actor = context["actor"]

    logger.debug(f"[GATE] Ability ready for user {user_id} (role {context['role']})")
    return context["actor"]


async def require_actor(actor: Optional[dict] = Depends(authorize_request)) -> dict:
    """
    Dependency: reject unauthenticated requests.
    """
    if actor is None:
        raise Unauthorized()
    return actor


def require_permission(action: str, subject: str):
    """
    Dependency factory: require `action` on the `subject` type.

    The check runs before the handler; instance-level checks happen inside
    handlers through get_ability(request).
    """
    async def _require_permission(request: Request, actor: dict = Depends(require_actor)) -> dict:
        ability = get_ability(request)

        if not ability.can(action, subject):
            logger.warning(
                f"[GATE] User {actor['id']} ({actor.get('role')}) denied {action} {subject}"
            )
            raise Forbidden(action, subject)

        return actor

    return _require_permission


# ==================== ACCESSORS ====================

def get_ability(request: Request) -> Ability:
    ability = getattr(request.state, "ability", None)
    if ability is None:
        raise AbilityNotInitialized()
    return ability


def get_storage_ability(request: Request) -> Ability:
    ability = getattr(request.state, "storage_ability", None)
    if ability is None:
        raise AbilityNotInitialized()
    return ability


def get_serialized_rules(request: Request) -> List[Dict[str, Any]]:
    rules = getattr(request.state, "serialized_rules", None)
    if rules is None:
        raise AbilityNotInitialized()
    return rules


def get_current_actor(request: Request) -> Dict[str, Any]:
    actor = getattr(request.state, "current_actor", None)
    if actor is None:
        raise AbilityNotInitialized()
    return actor
