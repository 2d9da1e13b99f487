"""
auth/service.py -- AuthService, the caller-facing authentication API.

Composes the pieces:
  login()             CredentialVerifier -> TokenService.issue
  resolve_principal() TokenService.validate -> UserStore reload -> RoleStore batch fetch
  authorize()         union of the principal's active-role permissions

A valid token alone does not prove current standing: resolve_principal()
reloads the account on every call, so disabling or locking a user takes
effect immediately rather than at token expiry.

Admin operations (unlock, role assignment, permission grants) live here too
so the transport layer never mutates store records directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth import lockout
from auth.errors import (
    AccountNoLongerValidError,
    DuplicateResourceError,
    InvalidInputError,
    LockoutConflictError,
    ResourceNotFoundError,
)
from auth.lockout import LockoutPolicy
from auth.models import AccountStatus, Principal, Role, User
from auth.passwords import DEFAULT_ROUNDS, hash_password
from auth.store import RoleStore, UserStore
from auth.tokens import SigningKey, TokenService
from auth.verifier import CredentialVerifier
from core.config import Settings

logger = logging.getLogger("keyward.auth")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
# bcrypt only reads the first 72 bytes of a password
PASSWORD_MAX_BYTES = 72

_MAX_UNLOCK_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Register, log in, resolve bearer tokens and authorize principals.

    Usage:
        service = AuthService(users, roles, verifier, tokens)
        service.register("alice", "alice@example.com", "secret123")
        token = service.login("alice", "secret123")
        principal = service.resolve_principal(token)
        service.authorize(principal, "PRODUCT_READ")
    """

    def __init__(
        self,
        users: UserStore,
        roles: RoleStore,
        verifier: CredentialVerifier,
        tokens: TokenService,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.roles = roles
        self.verifier = verifier
        self.tokens = tokens
        self._bcrypt_rounds = bcrypt_rounds
        self._clock = clock

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        role_names: Iterable[str] = (),
        status: AccountStatus = AccountStatus.PENDING,
    ) -> User:
        """Create an enabled account with a hashed password.

        Raises:
            InvalidInputError: username, email or password fails basic shape checks.
            DuplicateResourceError: username or email already in use.
            ResourceNotFoundError: a named role does not exist.
        """
        _check_registration(username, email, password)
        if self.users.exists_by_username(username):
            raise DuplicateResourceError("User", "username", username)
        if self.users.exists_by_email(email):
            raise DuplicateResourceError("User", "email", email)

        names = set(role_names)
        known = {r.name for r in self.roles.find_by_names(names)}
        missing = sorted(names - known)
        if missing:
            raise ResourceNotFoundError("Role", "name", missing[0])

        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password, rounds=self._bcrypt_rounds),
            first_name=first_name,
            last_name=last_name,
            status=status,
            enabled=True,
            roles=names,
        )
        try:
            saved = self.users.save(user)
        except IntegrityError as exc:
            # A concurrent registration won the race between the checks and the insert.
            if self.users.exists_by_username(username):
                raise DuplicateResourceError("User", "username", username) from exc
            raise DuplicateResourceError("User", "email", email) from exc
        logger.info("Registered user %r with roles %s", username, sorted(names))
        return saved

    def login(self, username: str, password: str) -> str:
        """Verify credentials and return a signed token. Failures propagate; no token is issued."""
        principal = self.verifier.verify(username, password)
        return self.tokens.issue(principal)

    def resolve_principal(self, token: str) -> Principal:
        """Turn a presented token into the current Principal.

        Raises:
            TokenTamperedError / TokenExpiredError: the token itself is bad.
            AccountNoLongerValidError: the account was deleted, disabled or
                locked after the token was issued.
        """
        claims = self.tokens.validate(token)
        user = self.users.find_by_username(claims.subject)
        if user is None or not user.enabled:
            raise AccountNoLongerValidError()
        if lockout.is_account_locked(user, self._clock(), self.verifier.policy):
            raise AccountNoLongerValidError()
        return Principal(
            user_id=user.id,
            username=user.username,
            roles=tuple(self.roles.find_by_names(user.roles)),
        )

    def authorize(self, principal: Principal, permission: str) -> bool:
        return permission in principal.permissions

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def get_user(self, user_id: int) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise ResourceNotFoundError("User", "id", user_id)
        return user

    def list_users(self) -> list[User]:
        return self.users.list_users()

    def unlock_account(self, username: str) -> User:
        """Manual reset: clear the counter and lock, demote LOCKED to ACTIVE."""
        for _ in range(_MAX_UNLOCK_ATTEMPTS):
            user = self._require_user(username)
            lockout.reset(user)
            if self.users.update_lockout(user):
                logger.info("Account %r unlocked by admin", username)
                return user
        raise LockoutConflictError()

    def assign_role(self, username: str, role_name: str) -> User:
        user = self._require_user(username)
        if not self.roles.exists_by_name(role_name):
            raise ResourceNotFoundError("Role", "name", role_name)
        if user.has_role(role_name):
            return user
        user.roles.add(role_name)
        logger.info("Role %r assigned to %r", role_name, username)
        return self.users.save(user)

    def revoke_role(self, username: str, role_name: str) -> User:
        user = self._require_user(username)
        if not user.has_role(role_name):
            return user
        user.roles.discard(role_name)
        logger.info("Role %r revoked from %r", role_name, username)
        return self.users.save(user)

    def create_role(self, name: str, description: str = "", permissions: Iterable[str] = ()) -> Role:
        if self.roles.exists_by_name(name):
            raise DuplicateResourceError("Role", "name", name)
        try:
            return self.roles.save(Role(name=name, description=description, permissions=set(permissions)))
        except IntegrityError as exc:
            raise DuplicateResourceError("Role", "name", name) from exc

    def grant_permissions(self, role_name: str, permissions: Iterable[str]) -> Role:
        role = self.roles.find_by_name(role_name)
        if role is None:
            raise ResourceNotFoundError("Role", "name", role_name)
        for permission in permissions:
            role.add_permission(permission)
        logger.info("Permissions on role %r now %s", role_name, sorted(role.permissions))
        return self.roles.save(role)

    def revoke_permissions(self, role_name: str, permissions: Iterable[str]) -> Role:
        role = self.roles.find_by_name(role_name)
        if role is None:
            raise ResourceNotFoundError("Role", "name", role_name)
        for permission in permissions:
            role.remove_permission(permission)
        return self.roles.save(role)

    def _require_user(self, username: str) -> User:
        user = self.users.find_by_username(username)
        if user is None:
            raise ResourceNotFoundError("User", "username", username)
        return user


def _check_registration(username: str, email: str, password: str) -> None:
    if not username or not username.strip():
        raise InvalidInputError("Username must not be blank.")
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise InvalidInputError(f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters.")
    if not email or "@" not in email:
        raise InvalidInputError("A valid email address is required.")
    if not password:
        raise InvalidInputError("Password must not be empty.")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise InvalidInputError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")


def build_auth_service(settings: Settings, engine: Engine) -> AuthService:
    """Wire stores, verifier and token service from configuration.

    The SigningKey is decoded here exactly once; every TokenService call for
    the life of the process reuses it.
    """
    users = UserStore(engine)
    roles = RoleStore(engine)
    policy = LockoutPolicy(
        max_failed_attempts=settings.max_failed_attempts,
        lockout_window=settings.lockout_window,
        auto_unlock=settings.lockout_auto_unlock,
    )
    verifier = CredentialVerifier(users, roles, policy)
    tokens = TokenService(SigningKey.from_base64(settings.jwt_secret), lifetime=settings.token_lifetime)
    return AuthService(users, roles, verifier, tokens, bcrypt_rounds=settings.bcrypt_rounds)
