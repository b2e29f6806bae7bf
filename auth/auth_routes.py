"""
FastAPI endpoints for abilities and role management.
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from auth.auth_manager import ABILITY_ACTIONS, auth_manager
from auth.rbac_dependencies import get_serialized_rules, require_actor, require_permission

router = APIRouter(prefix="/api", tags=["authorization"])

# ==================== REQUEST / RESPONSE MODELS ====================

class SerializedRule(BaseModel):
    action: Union[str, List[str]]
    subject: Union[str, List[str]]
    inverted: bool = False
    conditions: Optional[Dict[str, Any]] = None
    fields: Optional[List[str]] = None


class ActorSummary(BaseModel):
    id: str
    email: str
    name: str
    role: Optional[str] = None


class AbilitiesResponse(BaseModel):
    rules: List[SerializedRule]
    role: Optional[str] = None
    user: ActorSummary


class RoleAssignmentRequest(BaseModel):
    role_name: str


class AbilityRecordRequest(BaseModel):
    action: str
    subject: str = Field(..., min_length=1, max_length=100)
    conditions: Optional[Dict[str, Any]] = None
    fields: Optional[List[str]] = None
    inverted: bool = False
    reason: Optional[str] = None

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if v not in ABILITY_ACTIONS:
            raise ValueError(f"Invalid action. Must be one of: {', '.join(ABILITY_ACTIONS)}")
        return v


def _raise_for_error(result: dict):
    if "error" in result:
        raise HTTPException(status_code=result.get("status_code", 400), detail=result["error"])


# ==================== ABILITIES ====================

@router.get("/abilities", response_model=AbilitiesResponse, response_model_exclude_none=True)
async def get_abilities(request: Request, actor: dict = Depends(require_actor)):
    """
    Rules of the current actor for the client-side ability mirror.
    """
    return {
        "rules": get_serialized_rules(request),
        "role": actor.get("role"),
        "user": {
            "id": actor["id"],
            "email": actor["email"],
            "name": actor["name"],
            "role": actor.get("role"),
        },
    }


# ==================== ROLE MANAGEMENT ====================

@router.get("/roles")
async def list_roles(actor: dict = Depends(require_permission("read", "Role"))):
    """
    List roles with their ordered abilities.
    """
    return {"roles": auth_manager.list_roles()}


@router.put("/users/{user_id}/role")
async def assign_role(user_id: str, data: RoleAssignmentRequest,
                      actor: dict = Depends(require_permission("assign", "User"))):
    """
    Assign a role to a user (replaces the current one).
    """
    result = auth_manager.assign_role(user_id, data.role_name, actor["id"])
    _raise_for_error(result)
    return result


@router.post("/roles/{role_name}/abilities", status_code=status.HTTP_201_CREATED)
async def add_ability(role_name: str, data: AbilityRecordRequest,
                      actor: dict = Depends(require_permission("create", "Role"))):
    """
    Append an ability to a role. New abilities take precedence over older ones.
    """
    try:
        result = auth_manager.add_ability(role_name, data.model_dump(), actor["id"])
        _raise_for_error(result)
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Add ability error: {type(e).__name__}: {e}")
        raise HTTPException(status_code=500, detail="Adding ability failed")


@router.delete("/roles/{role_name}/abilities/{ability_id}")
async def remove_ability(role_name: str, ability_id: str,
                         actor: dict = Depends(require_permission("delete", "Role"))):
    """
    Remove an ability from a role.
    """
    try:
        result = auth_manager.remove_ability(role_name, ability_id, actor["id"])
        _raise_for_error(result)
        return result
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Remove ability error: {type(e).__name__}: {e}")
        raise HTTPException(status_code=500, detail="Removing ability failed")
