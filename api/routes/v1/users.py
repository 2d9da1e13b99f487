"""
api/routes/v1/users.py -- User administration endpoints.

Routes:
  GET    /api/v1/users                     -- list accounts (USER_READ)
  GET    /api/v1/users/{id}                -- one account (USER_READ)
  POST   /api/v1/users/{id}/unlock         -- manual lockout reset (USER_UPDATE)
  POST   /api/v1/users/{id}/roles          -- assign a role (ROLE_UPDATE)
  DELETE /api/v1/users/{id}/roles/{role}   -- revoke a role (ROLE_UPDATE)

Missing users/roles raise ResourceNotFoundError, mapped to 404 in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import RoleAssign, UserResponse
from auth.dependencies import require_permission
from auth.models import Principal
from auth.service import AuthService

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    principal: Principal = Depends(require_permission("USER_READ")),
) -> list[UserResponse]:
    service: AuthService = request.app.state.auth_service
    return [UserResponse.from_user(u) for u in service.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_permission("USER_READ")),
) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    return UserResponse.from_user(service.get_user(user_id))


@router.post("/users/{user_id}/unlock", response_model=UserResponse)
def unlock_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_permission("USER_UPDATE")),
) -> UserResponse:
    """Reset the failed-attempt counter and lift a lockout."""
    service: AuthService = request.app.state.auth_service
    target = service.get_user(user_id)
    return UserResponse.from_user(service.unlock_account(target.username))


@router.post("/users/{user_id}/roles", response_model=UserResponse)
def assign_role(
    request: Request,
    user_id: int,
    body: RoleAssign,
    principal: Principal = Depends(require_permission("ROLE_UPDATE")),
) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    target = service.get_user(user_id)
    return UserResponse.from_user(service.assign_role(target.username, body.role))


@router.delete("/users/{user_id}/roles/{role_name}", response_model=UserResponse)
def revoke_role(
    request: Request,
    user_id: int,
    role_name: str,
    principal: Principal = Depends(require_permission("ROLE_UPDATE")),
) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    target = service.get_user(user_id)
    return UserResponse.from_user(service.revoke_role(target.username, role_name))
