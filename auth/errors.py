"""
auth/errors.py -- Failure taxonomy for the authentication engine.

Every failure is terminal for the current request. The transport layer maps
each code to a response (see api/main.py); nothing here knows about HTTP.

InvalidCredentialsError deliberately carries one fixed message for unknown
users, disabled accounts and wrong passwords so that callers cannot tell the
three apart.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication and authorization failures."""

    code = "auth_error"
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0])


class InvalidCredentialsError(AuthError):
    code = "invalid_credentials"
    default_message = "Invalid username or password."


class AccountLockedError(AuthError):
    code = "account_locked"
    default_message = "Account is locked after too many failed login attempts."


class TokenError(AuthError):
    code = "token_error"
    default_message = "Invalid token."


class TokenTamperedError(TokenError):
    code = "token_invalid"
    default_message = "Token signature is invalid or the token is malformed."


class TokenExpiredError(TokenError):
    code = "token_expired"
    default_message = "Token has expired."


class AccountNoLongerValidError(AuthError):
    code = "account_invalid"
    default_message = "Account is no longer in good standing."


class DuplicateResourceError(AuthError):
    code = "conflict"

    def __init__(self, resource: str, field_name: str, value: object) -> None:
        self.resource = resource
        self.field_name = field_name
        super().__init__(f"{resource} with {field_name} '{value}' already exists.")


class ResourceNotFoundError(AuthError):
    code = "not_found"

    def __init__(self, resource: str, field_name: str, value: object) -> None:
        self.resource = resource
        self.field_name = field_name
        super().__init__(f"{resource} not found with {field_name} '{value}'.")


class LockoutConflictError(AuthError):
    code = "lockout_conflict"
    default_message = "Concurrent login attempts collided; try again."


class InvalidInputError(AuthError):
    """Registration input that fails a username, email or password shape check."""

    code = "invalid_input"
    default_message = "Input failed validation."
