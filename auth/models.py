"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. User and Principal are plain containers; the stores and
services do the work. Role is the exception: permission checks are exact set
membership, so they live on the Role itself rather than in a helper module.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    LOCKED = "LOCKED"
    PENDING = "PENDING"


@dataclass
class Role:
    """A named bundle of permissions.

    Permission strings are case-sensitive exact tokens (e.g. "USER_CREATE").
    Roles are never deleted; set active=False to retire one. An inactive role
    stays attached to its users but contributes no permissions.
    """

    name: str
    description: str = ""
    active: bool = True
    permissions: set[str] = field(default_factory=set)
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(p in self.permissions for p in permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        """True when every listed permission is held. Vacuously true for an empty list."""
        return all(p in self.permissions for p in permissions)

    def add_permission(self, permission: str) -> None:
        self.permissions.add(permission)

    def remove_permission(self, permission: str) -> None:
        self.permissions.discard(permission)


@dataclass
class User:
    """A local account.

    roles holds role names; the Role rows are fetched in one batch when a
    Principal is resolved. version is the optimistic-concurrency counter the
    store bumps on every write -- lockout updates are compare-and-swap on it.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    status: AccountStatus = AccountStatus.PENDING
    enabled: bool = False
    failed_login_attempts: int = 0
    locked_at: datetime | None = None
    last_login_at: datetime | None = None
    roles: set[str] = field(default_factory=set)
    created_at: str | None = None
    updated_at: str | None = None
    version: int = 0

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles


@dataclass(frozen=True)
class Principal:
    """The authenticated identity used for authorization decisions."""

    user_id: int
    username: str
    roles: tuple[Role, ...] = ()

    @property
    def role_names(self) -> list[str]:
        return sorted(r.name for r in self.roles)

    @property
    def permissions(self) -> frozenset[str]:
        """Union of permissions across all active roles."""
        granted: set[str] = set()
        for role in self.roles:
            if role.active:
                granted |= role.permissions
        return frozenset(granted)


@dataclass(frozen=True)
class TokenClaims:
    """Payload of a validated token. Timestamps are timezone-aware UTC."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    extra: dict[str, Any] = field(default_factory=dict)
