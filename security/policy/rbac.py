"""
Built-in roles.

Used when a role has no stored ability records to fall back on (tests,
bootstrap, operator scripts). Stored abilities are always preferred at
request time.

Roles:
  - user: Read-only access to users and settings
  - admin: Manages users, reads and updates settings
  - super_admin: Full system access

Any unrecognized role name is treated as `user`.
"""

from enum import Enum
from typing import Callable, Dict, Optional

from loguru import logger

from security.policy.abac import ALL, MANAGE, Ability, AbilityBuilder


class BuiltinRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def resolve(cls, name: Optional[str]) -> "BuiltinRole":
        """Map a role name onto the closed set, defaulting to USER."""
        for role in cls:
            if role.value == name:
                return role
        return cls.USER


def _define_super_admin(builder: AbilityBuilder) -> None:
    builder.can(MANAGE, ALL)


def _define_admin(builder: AbilityBuilder) -> None:
    builder.can(MANAGE, "User")
    builder.can("read", "Settings")
    builder.can("update", "Settings")


def _define_user(builder: AbilityBuilder) -> None:
    builder.can("read", "User")
    builder.can("read", "Settings")
    builder.cannot(["create", "update", "delete"], "User")
    builder.cannot("update", "Settings")


ROLE_DEFINITIONS: Dict[BuiltinRole, Callable[[AbilityBuilder], None]] = {
    BuiltinRole.SUPER_ADMIN: _define_super_admin,
    BuiltinRole.ADMIN: _define_admin,
    BuiltinRole.USER: _define_user,
}


def build_from_role(role: Optional[str]) -> Ability:
    """Build the hard-coded ability for a role name."""
    resolved = BuiltinRole.resolve(role)
    if resolved.value != role:
        logger.debug(f"[ABILITY] Unknown role '{role}', using '{resolved.value}' defaults")

    builder = AbilityBuilder()
    ROLE_DEFINITIONS[resolved](builder)
    return builder.build()


__all__ = ["BuiltinRole", "ROLE_DEFINITIONS", "build_from_role"]
