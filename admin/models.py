"""
SQLAlchemy models for the entities guarded by the admin API.

Tables:
  - settings: Single-row site configuration
  - customers: Customer records owned by a user
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from auth.models import Base


class Settings(Base):
    """Site-wide settings (first row wins)"""
    __tablename__ = "settings"
    __subject__ = "Settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_name = Column(String(255), nullable=False, default="My Application")
    site_description = Column(Text, nullable=True)
    theme = Column(String(20), nullable=False, default="system")  # light, dark, system
    email_notifications = Column(Boolean, nullable=False, default=True)
    maintenance_mode = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_name": self.site_name,
            "site_description": self.site_description,
            "theme": self.theme,
            "email_notifications": self.email_notifications,
            "maintenance_mode": self.maintenance_mode,
        }


class Customer(Base):
    """Customer records, scoped to their owner for non-admin roles"""
    __tablename__ = "customers"
    __subject__ = "Customer"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    company = Column(String(255), nullable=True)
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "address": self.address,
            "city": self.city,
            "country": self.country,
            "postal_code": self.postal_code,
            "notes": self.notes,
            "is_active": self.is_active,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
        }
