"""
auth/lockout.py -- Failed-login counter and timed account lock.

The state lives on the User record (failed_login_attempts, locked_at, status).
These functions only mutate the loaded copy; persisting it is the caller's
job, via UserStore.update_lockout() so concurrent attempts cannot skip or
double-count the threshold.

States:
  UNLOCKED(count)   count in [0, max_failed_attempts - 1]
  LOCKED(locked_at) status == LOCKED

Transitions:
  failure  -> count += 1; at the threshold, LOCKED with locked_at = now
  success  -> count = 0, locked_at cleared
  reset    -> count = 0, locked_at cleared, LOCKED demoted to ACTIVE

Only CredentialVerifier (failure/success) and the admin unlock (reset) call
into this module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth.models import AccountStatus, User

logger = logging.getLogger("keyward.auth.lockout")


@dataclass(frozen=True)
class LockoutPolicy:
    max_failed_attempts: int = 5
    lockout_window: timedelta = timedelta(minutes=30)
    auto_unlock: bool = True


def record_failure(user: User, now: datetime, policy: LockoutPolicy) -> bool:
    """Count one failed attempt. Returns True if this attempt locked the account.

    A LOCKED account is not counted further -- the threshold has already done
    its job and the counter stays at the value that tripped it.
    """
    if user.status == AccountStatus.LOCKED:
        return False
    user.failed_login_attempts += 1
    if user.failed_login_attempts >= policy.max_failed_attempts:
        user.status = AccountStatus.LOCKED
        user.locked_at = now
        logger.warning(
            "Account %r locked after %d failed attempts",
            user.username,
            user.failed_login_attempts,
        )
        return True
    return False


def record_success(user: User, now: datetime) -> None:
    user.failed_login_attempts = 0
    user.locked_at = None
    user.last_login_at = now


def is_account_locked(user: User, now: datetime, policy: LockoutPolicy) -> bool:
    """True if status is LOCKED, or a lock was set less than one window ago."""
    if user.status == AccountStatus.LOCKED:
        return True
    return user.locked_at is not None and now < user.locked_at + policy.lockout_window


def lock_window_elapsed(user: User, now: datetime, policy: LockoutPolicy) -> bool:
    """True once a full lockout window has passed since locked_at."""
    return user.locked_at is not None and now >= user.locked_at + policy.lockout_window


def reset(user: User) -> None:
    user.failed_login_attempts = 0
    user.locked_at = None
    if user.status == AccountStatus.LOCKED:
        user.status = AccountStatus.ACTIVE


def release_if_expired(user: User, now: datetime, policy: LockoutPolicy) -> bool:
    """Reset an account whose lockout window has passed, if the policy allows it.

    Accounts locked by an admin (status LOCKED, no locked_at) never qualify.
    """
    if not policy.auto_unlock or not lock_window_elapsed(user, now, policy):
        return False
    reset(user)
    logger.info("Account %r auto-unlocked after lockout window", user.username)
    return True
