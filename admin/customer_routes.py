"""
Customer endpoints guarded by the Customer subject.

Queries are scoped with accessible_by, so a role whose grant is conditional
(e.g. only customers it owns) never sees other rows; a row outside the
scope answers 404 like a missing one.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from loguru import logger
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from admin.models import Customer
from auth.models import User, get_db
from auth.rbac_dependencies import get_ability, get_storage_ability, require_permission
from storage.relational.predicates import accessible_by

router = APIRouter(prefix="/api/customers", tags=["customers"])


class CustomerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True

    @field_validator("email", "phone", "company", "address", "city", "country",
                     "postal_code", "notes", mode="before")
    @classmethod
    def empty_string_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


def _scoped_customer(session: Session, request: Request, action: str, customer_id: int) -> Customer:
    return (
        session.query(Customer)
        .filter(accessible_by(get_storage_ability(request), action, Customer))
        .filter(Customer.id == customer_id)
        .one()
    )


@router.get("")
async def list_customers(request: Request,
                         actor: dict = Depends(require_permission("read", "Customer")),
                         session: Session = Depends(get_db)):
    customers = (
        session.query(Customer)
        .filter(accessible_by(get_storage_ability(request), "read", Customer))
        .order_by(Customer.created_at.desc(), Customer.id.desc())
        .all()
    )
    return [customer.to_dict() for customer in customers]


@router.get("/{customer_id}")
async def get_customer(customer_id: int, request: Request,
                       actor: dict = Depends(require_permission("read", "Customer")),
                       session: Session = Depends(get_db)):
    return _scoped_customer(session, request, "read", customer_id).to_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(data: CustomerRequest, request: Request,
                          actor: dict = Depends(require_permission("create", "Customer")),
                          session: Session = Depends(get_db)):
    """
    Create a customer owned by the current actor.
    """
    customer = Customer(**data.model_dump())
    customer.owner = session.get(User, actor["id"])
    get_ability(request).ensure_can("create", customer)

    session.add(customer)
    session.commit()

    logger.info(f"Customer {customer.id} created by {actor['id']}")
    return customer.to_dict()


@router.put("/{customer_id}")
async def update_customer(customer_id: int, data: CustomerRequest, request: Request,
                          actor: dict = Depends(require_permission("update", "Customer")),
                          session: Session = Depends(get_db)):
    customer = _scoped_customer(session, request, "update", customer_id)

    for field, value in data.model_dump().items():
        setattr(customer, field, value)
    session.commit()

    return customer.to_dict()


@router.delete("/{customer_id}")
async def delete_customer(customer_id: int, request: Request,
                          actor: dict = Depends(require_permission("delete", "Customer")),
                          session: Session = Depends(get_db)):
    customer = _scoped_customer(session, request, "delete", customer_id)

    session.delete(customer)
    session.commit()

    logger.info(f"Customer {customer_id} deleted by {actor['id']}")
    return {"success": True}
