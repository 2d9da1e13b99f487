"""
auth/verifier.py -- Username/password verification with lockout tracking.

CredentialVerifier is the only caller of the lockout failure/success
transitions. Every call that reaches the password comparison writes the
updated counters back, so verify() is NOT a read-only check -- do not call
it speculatively.

Anti-enumeration [C1]:
  Unknown username, disabled account and wrong password all raise the same
  InvalidCredentialsError with the same message. Every rejection path runs
  exactly one bcrypt comparison (against the real hash or a dummy one), so
  response time does not reveal which case occurred.

Concurrency:
  The outcome of the bcrypt comparison is computed once. Persisting it goes
  through UserStore.update_lockout(), a compare-and-swap on users.version.
  If another attempt for the same user committed in between, the user is
  reloaded and the same transition is re-applied to the fresh copy.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth import lockout
from auth.errors import AccountLockedError, InvalidCredentialsError, LockoutConflictError
from auth.lockout import LockoutPolicy
from auth.models import Principal, User
from auth.passwords import burn_verification, verify_password
from auth.store import RoleStore, UserStore

logger = logging.getLogger("keyward.auth.verifier")

_MAX_CAS_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialVerifier:
    def __init__(
        self,
        users: UserStore,
        roles: RoleStore,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._users = users
        self._roles = roles
        self._policy = policy or LockoutPolicy()
        self._clock = clock

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    def verify(self, username: str, password: str) -> Principal:
        """Check a username/password pair and return the authenticated Principal.

        Raises:
            InvalidCredentialsError: unknown user, disabled account, or wrong password.
            AccountLockedError: the account was locked before this attempt.
            LockoutConflictError: the counters could not be persisted after
                repeated concurrent-update collisions.
        """
        user = self._users.find_by_username(username)
        if user is None or not user.enabled:
            burn_verification(password)
            logger.warning("Login rejected for %r: unknown or disabled account", username)
            raise InvalidCredentialsError()

        now = self._clock()
        if lockout.release_if_expired(user, now, self._policy):
            user = self._persist(
                user,
                now,
                lambda u: lockout.release_if_expired(u, now, self._policy),
                reject_if_locked=False,
            )
        if lockout.is_account_locked(user, now, self._policy):
            burn_verification(password)
            logger.warning("Login rejected for %r: account locked", username)
            raise AccountLockedError()

        if verify_password(password, user.hashed_password):
            lockout.record_success(user, now)
            user = self._persist(user, now, lambda u: lockout.record_success(u, now))
            logger.info("Login succeeded for %r", username)
            return Principal(
                user_id=user.id,
                username=user.username,
                roles=tuple(self._roles.find_by_names(user.roles)),
            )

        lockout.record_failure(user, now, self._policy)
        user = self._persist(user, now, lambda u: lockout.record_failure(u, now, self._policy))
        logger.warning(
            "Login failed for %r (%d/%d attempts)",
            username,
            user.failed_login_attempts,
            self._policy.max_failed_attempts,
        )
        raise InvalidCredentialsError()

    def _persist(
        self,
        user: User,
        now: datetime,
        transition: Callable[[User], object],
        reject_if_locked: bool = True,
    ) -> User:
        """Write the lockout fields, re-applying transition on a fresh copy after a CAS miss.

        transition must already have been applied to user. With
        reject_if_locked, a reload that finds the account locked by a
        concurrent attempt ends this attempt with AccountLockedError.
        """
        for _ in range(_MAX_CAS_ATTEMPTS):
            if self._users.update_lockout(user):
                return user
            fresh = self._users.find_by_id(user.id)
            if fresh is None or not fresh.enabled:
                raise InvalidCredentialsError()
            if reject_if_locked and lockout.is_account_locked(fresh, now, self._policy):
                raise AccountLockedError()
            user = fresh
            transition(user)
        logger.error("Lockout update for %r kept colliding; giving up", user.username)
        raise LockoutConflictError()
