"""
Site settings endpoints guarded by the Settings subject.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from admin.models import Settings
from auth.models import get_db
from auth.rbac_dependencies import require_permission

router = APIRouter(prefix="/api/settings", tags=["settings"])

DEFAULT_SETTINGS = {
    "site_name": "My Application",
    "site_description": "",
    "theme": "system",
    "email_notifications": True,
    "maintenance_mode": False,
}


class SettingsRequest(BaseModel):
    site_name: str = Field(..., min_length=1, max_length=255)
    site_description: Optional[str] = None
    theme: Literal["light", "dark", "system"] = "system"
    email_notifications: bool = True
    maintenance_mode: bool = False


@router.get("")
async def get_settings(actor: dict = Depends(require_permission("read", "Settings")),
                       session: Session = Depends(get_db)):
    """
    Current settings, or the defaults when none were saved yet.
    """
    setting = session.query(Settings).order_by(Settings.id).first()
    if setting is None:
        return dict(DEFAULT_SETTINGS)
    return setting.to_dict()


@router.put("")
async def update_settings(data: SettingsRequest,
                          actor: dict = Depends(require_permission("update", "Settings")),
                          session: Session = Depends(get_db)):
    setting = session.query(Settings).order_by(Settings.id).first()
    if setting is None:
        setting = Settings()
        session.add(setting)

    for field, value in data.model_dump().items():
        setattr(setting, field, value)
    session.commit()

    logger.info(f"Settings updated by {actor['id']}")
    return setting.to_dict()
