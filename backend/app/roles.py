# Overview: Closed role hierarchy used by every role-gated custody operation.

"""
Role hierarchy (lowest to highest):

    employee < manager < owner < super_admin

Roles are compared by rank only; there are no per-role permission grants.
Stored values are lowercase strings; parsing is case-insensitive so tokens
and CLI input never depend on casing.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    OWNER = "owner"
    SUPER_ADMIN = "super_admin"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown role: {value!r}")
        normalized = value.strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None


ROLE_RANK = {
    Role.EMPLOYEE: 0,
    Role.MANAGER: 1,
    Role.OWNER: 2,
    Role.SUPER_ADMIN: 3,
}

ROLE_CHOICES = [role.value for role in Role]


def has_min_role(actual: Role | str, required: Role | str) -> bool:
    """True when `actual` ranks at or above `required`."""
    return Role.parse(actual).rank >= Role.parse(required).rank
