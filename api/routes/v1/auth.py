"""
api/routes/v1/auth.py -- Authentication endpoints.

Routes:
  POST /api/v1/auth/register   -- self-registration (when enabled); 201
  POST /api/v1/auth/login      -- password login; returns token and sets JWT cookie
  POST /api/v1/auth/logout     -- clears cookie; 200
  GET  /api/v1/auth/me         -- current principal with roles and permissions

Security:
  [H2] POST /login is rate-limited per client address (LOGIN_RATE_LIMIT).
  [C1] Wrong username, wrong password and disabled account all return the
       same 401 "invalid_credentials" body.
  [M5] Cache-Control: no-store on login responses.

AuthError subclasses raised by AuthService propagate to the handler in
api/main.py, which maps each error code to a status.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, MeResponse, RegisterRequest, UserResponse
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.service import AuthService
from core.config import get_settings

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account with the default role.

    Returns 409 "conflict" if the username or email is already used.
    """
    settings = get_settings()
    if not settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    service: AuthService = request.app.state.auth_service
    role_names = [settings.default_role] if service.roles.exists_by_name(settings.default_role) else []
    user = service.register(
        body.username,
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role_names=role_names,
    )
    return UserResponse.from_user(user)


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return the token and set the JWT cookie."""
    service: AuthService = request.app.state.auth_service
    token = service.login(body.username, body.password)
    expires_in = int(service.tokens.lifetime.total_seconds())

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=expires_in,
            username=body.username,
        ).model_dump(),
    )
    resp.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=expires_in,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie. Tokens are not revoked server-side."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return identity, roles and effective permissions for the current principal."""
    return MeResponse(
        user_id=principal.user_id,
        username=principal.username,
        roles=principal.role_names,
        permissions=sorted(principal.permissions),
    )
