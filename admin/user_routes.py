"""
User management endpoints guarded by the User subject.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from auth.errors import Forbidden
from auth.models import Role, User, get_db
from auth.rbac_dependencies import get_ability, require_permission

router = APIRouter(prefix="/api/users", tags=["users"])

# ==================== REQUEST MODELS ====================

class UserCreateRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    image: Optional[str] = None
    role_name: Optional[str] = None


class UserUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    image: Optional[str] = None
    is_active: Optional[bool] = None


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "is_active": user.is_active,
        "role": user.role.name if user.role else None,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


# ==================== ENDPOINTS ====================

@router.get("")
async def list_users(actor: dict = Depends(require_permission("read", "User")),
                     session: Session = Depends(get_db)):
    users = session.query(User).order_by(User.created_at.desc()).all()
    return [_user_to_dict(user) for user in users]


@router.get("/{user_id}")
async def get_user(user_id: str, request: Request,
                   actor: dict = Depends(require_permission("read", "User")),
                   session: Session = Depends(get_db)):
    user = session.query(User).filter_by(id=user_id).one()
    get_ability(request).ensure_can("read", user)
    return _user_to_dict(user)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(data: UserCreateRequest, request: Request,
                      actor: dict = Depends(require_permission("create", "User")),
                      session: Session = Depends(get_db)):
    """
    Create a user. Giving the new user a role also needs `assign User`.
    """
    role = None
    if data.role_name:
        get_ability(request).ensure_can("assign", "User")
        role = session.query(Role).filter_by(name=data.role_name).first()
        if not role:
            raise HTTPException(status_code=404, detail=f"Role '{data.role_name}' not found")

    user = User(email=data.email, name=data.name, image=data.image, role=role)
    session.add(user)
    session.commit()

    logger.info(f"User {data.email} created by {actor['id']}")
    return _user_to_dict(user)


@router.put("/{user_id}")
async def update_user(user_id: str, data: UserUpdateRequest, request: Request,
                      actor: dict = Depends(require_permission("update", "User")),
                      session: Session = Depends(get_db)):
    """
    Update a user. Every submitted field must be permitted for the actor.
    """
    user = session.query(User).filter_by(id=user_id).one()
    changes = data.model_dump(exclude_unset=True)

    ability = get_ability(request)
    permitted = set(ability.permitted_fields("update", user, changes.keys()))
    denied = sorted(set(changes) - permitted)
    if denied:
        logger.warning(f"[GATE] User {actor['id']} denied update of User fields {denied}")
        raise Forbidden("update", "User")

    for field, value in changes.items():
        setattr(user, field, value)
    session.commit()

    return _user_to_dict(user)


@router.delete("/{user_id}")
async def delete_user(user_id: str, request: Request,
                      actor: dict = Depends(require_permission("delete", "User")),
                      session: Session = Depends(get_db)):
    user = session.query(User).filter_by(id=user_id).one()
    get_ability(request).ensure_can("delete", user)

    session.delete(user)
    session.commit()

    logger.info(f"User {user_id} deleted by {actor['id']}")
    return {"success": True}
