"""
tests/test_verifier.py -- CredentialVerifier against a real in-memory store.

Covers:
  - Successful verification returns a Principal with batch-loaded roles
  - Unknown user, disabled account and wrong password are indistinguishable
  - Five failures lock the account; the correct password is then refused
    with AccountLockedError, not InvalidCredentialsError
  - Success resets the counter
  - Auto-unlock after the lockout window, and its absence when disabled
  - Compare-and-swap retry when another writer bumps the row version
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import AccountLockedError, InvalidCredentialsError, LockoutConflictError
from auth.lockout import LockoutPolicy
from auth.models import AccountStatus
from auth.store import UserStore
from auth.verifier import CredentialVerifier


def _fail(verifier: CredentialVerifier, username: str, times: int) -> None:
    for _ in range(times):
        with pytest.raises(InvalidCredentialsError):
            verifier.verify(username, "wrong")


# ---------------------------------------------------------------------------
# Happy path and anti-enumeration
# ---------------------------------------------------------------------------


def test_correct_password_returns_principal(verifier, alice):
    principal = verifier.verify("alice", "secret123")
    assert principal.username == "alice"
    assert principal.user_id == alice.id
    assert principal.role_names == ["USER"]
    assert "PRODUCT_READ" in principal.permissions


def test_success_stamps_last_login(verifier, users: UserStore, alice, clock):
    verifier.verify("alice", "secret123")
    assert users.find_by_username("alice").last_login_at == clock.now


def test_failures_are_indistinguishable(verifier, service, alice):
    service.register("ghost", "ghost@example.com", "secret123")
    disabled = service.users.find_by_username("ghost")
    disabled.enabled = False
    service.users.save(disabled)

    messages = []
    for username, password in [("alice", "wrong"), ("nobody", "secret123"), ("ghost", "secret123")]:
        with pytest.raises(InvalidCredentialsError) as excinfo:
            verifier.verify(username, password)
        messages.append((excinfo.value.code, excinfo.value.message))
    assert len(set(messages)) == 1


def test_unknown_user_does_not_create_state(verifier, users: UserStore):
    with pytest.raises(InvalidCredentialsError):
        verifier.verify("nobody", "x")
    assert users.has_users() is False


def test_disabled_account_counter_untouched(verifier, users: UserStore, alice):
    alice.enabled = False
    users.save(alice)
    with pytest.raises(InvalidCredentialsError):
        verifier.verify("alice", "secret123")
    assert users.find_by_username("alice").failed_login_attempts == 0


def test_pending_account_can_log_in(verifier, service):
    service.register("newbie", "newbie@example.com", "secret123")
    assert verifier.verify("newbie", "secret123").username == "newbie"


# ---------------------------------------------------------------------------
# Lockout
# ---------------------------------------------------------------------------


class TestLockout:
    def test_four_failures_count_but_do_not_lock(self, verifier, users: UserStore, alice):
        _fail(verifier, "alice", 4)
        stored = users.find_by_username("alice")
        assert stored.failed_login_attempts == 4
        assert stored.status == AccountStatus.ACTIVE

    def test_fifth_failure_locks(self, verifier, users: UserStore, alice, clock):
        _fail(verifier, "alice", 5)
        stored = users.find_by_username("alice")
        assert stored.failed_login_attempts == 5
        assert stored.status == AccountStatus.LOCKED
        assert stored.locked_at == clock.now

    def test_correct_password_refused_while_locked(self, verifier, alice):
        _fail(verifier, "alice", 5)
        with pytest.raises(AccountLockedError):
            verifier.verify("alice", "secret123")

    def test_attempts_while_locked_are_not_counted(self, verifier, users: UserStore, alice):
        _fail(verifier, "alice", 5)
        for _ in range(3):
            with pytest.raises(AccountLockedError):
                verifier.verify("alice", "wrong")
        assert users.find_by_username("alice").failed_login_attempts == 5

    def test_success_resets_counter(self, verifier, users: UserStore, alice):
        _fail(verifier, "alice", 3)
        verifier.verify("alice", "secret123")
        assert users.find_by_username("alice").failed_login_attempts == 0
        _fail(verifier, "alice", 4)
        assert users.find_by_username("alice").status == AccountStatus.ACTIVE

    def test_still_locked_inside_window(self, verifier, alice, clock):
        _fail(verifier, "alice", 5)
        clock.advance(minutes=29)
        with pytest.raises(AccountLockedError):
            verifier.verify("alice", "secret123")

    def test_auto_unlock_after_window(self, verifier, users: UserStore, alice, clock):
        _fail(verifier, "alice", 5)
        clock.advance(minutes=30)
        assert verifier.verify("alice", "secret123").username == "alice"
        stored = users.find_by_username("alice")
        assert stored.status == AccountStatus.ACTIVE
        assert stored.failed_login_attempts == 0
        assert stored.locked_at is None

    def test_wrong_password_after_window_starts_new_count(self, verifier, users: UserStore, alice, clock):
        _fail(verifier, "alice", 5)
        clock.advance(minutes=31)
        _fail(verifier, "alice", 1)
        stored = users.find_by_username("alice")
        assert stored.failed_login_attempts == 1
        assert stored.status == AccountStatus.ACTIVE

    def test_no_auto_unlock_when_disabled(self, users, roles, alice, clock):
        strict = CredentialVerifier(users, roles, LockoutPolicy(auto_unlock=False), clock=clock)
        _fail(strict, "alice", 5)
        clock.advance(days=1)
        with pytest.raises(AccountLockedError):
            strict.verify("alice", "secret123")


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class _StaleOnceStore(UserStore):
    """Simulates a concurrent writer: the first update_lockout call loses the race."""

    def __init__(self, engine, competing_failures: int = 1) -> None:
        super().__init__(engine)
        self._pending = competing_failures
        self.cas_misses = 0

    def update_lockout(self, user) -> bool:
        if self._pending:
            self._pending = 0
            # another attempt commits first, bumping the version
            rival = self.find_by_id(user.id)
            rival.failed_login_attempts += 1
            super().update_lockout(rival)
            self.cas_misses += 1
            return super().update_lockout(user)
        return super().update_lockout(user)


def test_concurrent_failure_is_not_lost(engine, roles, alice, clock):
    store = _StaleOnceStore(engine)
    verifier = CredentialVerifier(store, roles, clock=clock)
    with pytest.raises(InvalidCredentialsError):
        verifier.verify("alice", "wrong")
    assert store.cas_misses == 1
    # both the rival failure and ours are counted
    assert store.find_by_username("alice").failed_login_attempts == 2


class _RivalLocksFirst(UserStore):
    """A concurrent attempt reaches the threshold and commits the lock first."""

    def __init__(self, engine, clock) -> None:
        super().__init__(engine)
        self._clock = clock
        self._raced = False

    def update_lockout(self, user) -> bool:
        if not self._raced:
            self._raced = True
            rival = self.find_by_id(user.id)
            rival.failed_login_attempts = 5
            rival.status = AccountStatus.LOCKED
            rival.locked_at = self._clock()
            super().update_lockout(rival)
        return super().update_lockout(user)


def test_concurrent_lock_rejects_this_attempt(engine, roles, users: UserStore, alice, clock):
    alice.failed_login_attempts = 4
    assert users.update_lockout(alice)
    store = _RivalLocksFirst(engine, clock)
    verifier = CredentialVerifier(store, roles, clock=clock)
    with pytest.raises(AccountLockedError):
        verifier.verify("alice", "wrong")
    stored = users.find_by_username("alice")
    # threshold counted once, not twice
    assert stored.failed_login_attempts == 5
    assert stored.status == AccountStatus.LOCKED


def test_persistent_collisions_raise_conflict(engine, roles, alice, clock):
    class _AlwaysStale(UserStore):
        def update_lockout(self, user) -> bool:
            return False

    verifier = CredentialVerifier(_AlwaysStale(engine), roles, clock=clock)
    with pytest.raises(LockoutConflictError):
        verifier.verify("alice", "secret123")


def test_window_uses_policy(users, roles, alice, clock):
    short = CredentialVerifier(
        users, roles, LockoutPolicy(max_failed_attempts=2, lockout_window=timedelta(minutes=5)), clock=clock
    )
    _fail(short, "alice", 2)
    with pytest.raises(AccountLockedError):
        short.verify("alice", "secret123")
    clock.advance(minutes=5)
    assert short.verify("alice", "secret123").username == "alice"
