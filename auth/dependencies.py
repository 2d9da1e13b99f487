"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by the login endpoint.
  2. Authorization: Bearer <token> header -- API clients.

Both converge on AuthService.resolve_principal(), which validates the token
and reloads the account so that locked or disabled users are rejected even
while their token is still within its lifetime.

get_current_principal() raises HTTP 401 if unauthenticated.
require_permission(p) wraps it and raises HTTP 403 if p is not granted.

Layer rule: no imports from api/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.errors import AuthError
from auth.models import Principal
from auth.service import AuthService


def _extract_token(request: Request) -> str | None:
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    token = _extract_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    service: AuthService = request.app.state.auth_service
    try:
        return service.resolve_principal(token)
    except AuthError as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require_permission(permission: str) -> Callable[..., Principal]:
    """Build a dependency that requires the given permission.

    Use as a FastAPI dependency:
        @router.get("/users")
        async def route(principal: Principal = Depends(require_permission("USER_READ"))): ...
    """

    def _dependency(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        service: AuthService = request.app.state.auth_service
        if not service.authorize(principal, permission):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Permission {permission} required."},
            )
        return principal

    return _dependency
