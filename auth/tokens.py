"""
auth/tokens.py -- Signed, time-bounded bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only sub (username), iat and exp,
       plus any extra claims a caller asks for. Roles and permissions are NOT
       embedded -- they are re-read from the store on every request, so a
       role change or account lock takes effect before the token expires.

  Key: SigningKey is built once at startup from the base64 JWT_SECRET and
       passed into TokenService explicitly. It is frozen; there is no rotation.

  Expiry: checked here against the injected clock rather than by jose, so the
       "expired" and "tampered" outcomes are reported as distinct errors and
       tests can move time without sleeping.

  Revocation: none. Logout is a client-side discard.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from auth.errors import TokenExpiredError, TokenTamperedError
from auth.models import Principal, TokenClaims
from core.config import decode_secret

logger = logging.getLogger("keyward.auth.tokens")

_ALGORITHM = "HS256"
_RESERVED_CLAIMS = frozenset({"sub", "iat", "exp"})

DEFAULT_LIFETIME = timedelta(hours=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SigningKey:
    """Process-wide HMAC key material. Never mutated after construction."""

    material: bytes = field(repr=False)
    algorithm: str = _ALGORITHM

    @classmethod
    def from_base64(cls, secret: str) -> SigningKey:
        return cls(material=decode_secret(secret))


class TokenService:
    """Issues and validates HS256 JWTs.

    Usage:
        tokens = TokenService(SigningKey.from_base64(settings.jwt_secret))
        token = tokens.issue(principal)
        claims = tokens.validate(token)
    """

    def __init__(
        self,
        signing_key: SigningKey,
        lifetime: timedelta = DEFAULT_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._key = signing_key
        self._lifetime = lifetime
        self._clock = clock

    @property
    def lifetime(self) -> timedelta:
        return self._lifetime

    def issue(self, principal: Principal, extra_claims: dict[str, Any] | None = None) -> str:
        """Encode a signed token whose subject is the principal's username."""
        now = self._clock()
        payload: dict[str, Any] = {}
        if extra_claims:
            clash = _RESERVED_CLAIMS.intersection(extra_claims)
            if clash:
                raise ValueError(f"Extra claims may not override {sorted(clash)}")
            payload.update(extra_claims)
        payload["sub"] = principal.username
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + self._lifetime).timestamp())
        return jwt.encode(payload, self._key.material, algorithm=self._key.algorithm)

    def validate(self, token: str) -> TokenClaims:
        """Verify signature, then expiry. Returns the claims on success.

        Raises:
            TokenTamperedError: bad signature, wrong algorithm, unparseable
                token, or missing/ill-typed sub/iat/exp.
            TokenExpiredError: signature valid but the token is past exp.
        """
        if not isinstance(token, str) or not token:
            raise TokenTamperedError()
        _require_canonical_signature(token)
        try:
            payload = jwt.decode(
                token,
                self._key.material,
                algorithms=[self._key.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise TokenTamperedError() from exc

        subject = payload.get("sub")
        issued = payload.get("iat")
        expires = payload.get("exp")
        if not isinstance(subject, str) or not subject:
            raise TokenTamperedError("Token has no subject.")
        if not isinstance(issued, int) or not isinstance(expires, int):
            raise TokenTamperedError("Token is missing issued-at or expiry.")

        claims = TokenClaims(
            subject=subject,
            issued_at=datetime.fromtimestamp(issued, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
            extra={k: v for k, v in payload.items() if k not in _RESERVED_CLAIMS},
        )
        if self._clock() > claims.expires_at:
            raise TokenExpiredError()
        return claims

    def is_valid_for(self, token: str, expected_username: str) -> bool:
        """True only if the token validates and names expected_username."""
        try:
            claims = self.validate(token)
        except (TokenTamperedError, TokenExpiredError):
            return False
        return claims.subject == expected_username


def _require_canonical_signature(token: str) -> None:
    """Reject a signature segment that is not the canonical base64url form.

    A base64url string whose length is not a multiple of four has unused
    low-order bits in its last character. Decoders ignore them, so several
    spellings decode to the same bytes; only the one jose would emit is accepted.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return
    signature = parts[2]
    try:
        raw = base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))
    except (binascii.Error, ValueError) as exc:
        raise TokenTamperedError() from exc
    if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != signature:
        logger.debug("Token rejected: non-canonical signature encoding")
        raise TokenTamperedError()
