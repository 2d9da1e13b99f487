"""
auth/seed.py -- Startup provisioning of default roles and the first admin.

Both functions are idempotent: existing roles and users are left untouched,
so they are safe to run on every startup.
"""

from __future__ import annotations

import logging

from auth.models import AccountStatus, Role, User
from auth.service import AuthService
from auth.store import RoleStore

logger = logging.getLogger("keyward.auth.seed")

DEFAULT_ROLES: dict[str, tuple[str, frozenset[str]]] = {
    "ADMIN": (
        "System administrator",
        frozenset(
            {
                "USER_CREATE",
                "USER_READ",
                "USER_UPDATE",
                "USER_DELETE",
                "ROLE_CREATE",
                "ROLE_READ",
                "ROLE_UPDATE",
                "ROLE_DELETE",
                "PRODUCT_CREATE",
                "PRODUCT_READ",
                "PRODUCT_UPDATE",
                "PRODUCT_DELETE",
                "SYSTEM_MANAGE",
            }
        ),
    ),
    "USER": (
        "Standard user",
        frozenset({"PRODUCT_READ", "PROFILE_READ", "PROFILE_UPDATE"}),
    ),
    "MODERATOR": (
        "Moderator",
        frozenset(
            {
                "USER_READ",
                "USER_UPDATE",
                "PRODUCT_CREATE",
                "PRODUCT_READ",
                "PRODUCT_UPDATE",
                "CONTENT_MODERATE",
            }
        ),
    ),
}


def seed_default_roles(roles: RoleStore) -> list[Role]:
    """Create any missing default role. Returns the roles that were created."""
    created: list[Role] = []
    for name, (description, permissions) in DEFAULT_ROLES.items():
        if roles.exists_by_name(name):
            continue
        created.append(roles.save(Role(name=name, description=description, permissions=set(permissions))))
        logger.info("Role created: %s", name)
    return created


def create_admin_user(service: AuthService, username: str, email: str, password: str) -> User | None:
    """Create an ACTIVE admin account unless the username is already taken.

    Returns the new user, or None if it already existed.
    """
    if service.users.exists_by_username(username):
        logger.info("Admin user %r already exists", username)
        return None
    if not service.roles.exists_by_name("ADMIN"):
        seed_default_roles(service.roles)
    user = service.register(
        username,
        email,
        password,
        first_name="Admin",
        last_name="System",
        role_names=["ADMIN"],
        status=AccountStatus.ACTIVE,
    )
    logger.info("Admin user created: %s", username)
    return user
