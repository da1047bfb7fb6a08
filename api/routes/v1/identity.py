"""
api/routes/v1/identity.py -- Identity REST endpoints.

Routes:
  POST /api/v1/identity/users/client     -- register a client; emails a code
  POST /api/v1/identity/users            -- register a standard user; emails a code
  POST /api/v1/identity/verify           -- submit a verification code; 204
  POST /api/v1/identity/login            -- password login; returns a bearer JWT
  PUT  /api/v1/identity/users/me         -- update own profile (requires auth)
  POST /api/v1/identity/users/{id}/block -- block a user (admin only)
  PUT  /api/v1/identity/users/{id}/role  -- change a user's role (admin only)

Each handler decodes the body, calls one IdentityService operation, and maps
the result. IdentityError subclasses are NOT caught here: the exception
handler in api/main.py maps ErrorKind to status uniformly.

Handlers are plain `def` so FastAPI runs them in its threadpool -- bcrypt is
CPU-bound and must not block the event loop.

Security:
  [H2] Public routes are rate-limited per IP (see api/limiter.py).
  [M5] Cache-Control: no-store on login responses.
  Updater authorization: PUT /users/me always passes the caller's own id as
  both target and updater, so a user can only edit themselves.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import identity_limit, limiter, login_limit
from api.models import (
    BlockUserRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    UpdateUserRequest,
    UpdateUserRoleRequest,
    UserResponse,
    VerifyRequest,
)
from auth.dependencies import get_current_user, require_admin
from identity.models import (
    BlockUserInput,
    LoginInput,
    RegisterUserInput,
    Role,
    UpdateUserInput,
    UpdateUserRoleInput,
    User,
    VerifyUserInput,
)
from identity.service import IdentityService

# Auth policy:
# - POST /identity/users/client, /identity/users, /identity/verify, /identity/login: public, rate-limited
# - PUT  /identity/users/me:            requires auth (get_current_user)
# - POST /identity/users/{id}/block:    requires admin (require_admin)
# - PUT  /identity/users/{id}/role:     requires admin (require_admin)
router = APIRouter()


def _service(request: Request) -> IdentityService:
    return request.app.state.identity_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


# @router must be outermost so FastAPI registers slowapi's wrapper; the
# middleware skips decorated routes and leaves the check to the wrapper.
@router.post("/identity/users/client", response_model=UserResponse, status_code=201)
@limiter.limit(identity_limit)
def register_client(request: Request, body: RegisterRequest) -> UserResponse:
    """Register a client account (role=client, status=pending_verification)."""
    user = _service(request).register_client(
        RegisterUserInput(email=body.email, password=body.password, full_name=body.full_name)
    )
    return UserResponse.from_user(user)


@router.post("/identity/users", response_model=UserResponse, status_code=201)
@limiter.limit(identity_limit)
def register_user(request: Request, body: RegisterRequest) -> UserResponse:
    """Register a standard user account (role=user, status=pending_verification)."""
    user = _service(request).register_standard_user(
        RegisterUserInput(email=body.email, password=body.password, full_name=body.full_name)
    )
    return UserResponse.from_user(user)


@router.post("/identity/verify", status_code=204)
@limiter.limit(identity_limit)
def verify_user(request: Request, body: VerifyRequest) -> Response:
    """Consume a verification code. Any rejection is the same 401 invalid_verification_code."""
    _service(request).verify_user(VerifyUserInput(user_id=body.user_id, code=body.code))
    return Response(status_code=204)


@router.post("/identity/login", response_model=LoginResponse)
@limiter.limit(login_limit)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer JWT.

    Unknown email, wrong password, blocked and unverified accounts all get the
    same 401 invalid_credentials body (raised by the service, mapped in
    api/main.py). Only the success path is shaped here.
    """
    token = _service(request).login(LoginInput(email=body.email, password=body.password))
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token.token,
            token_type=token.token_type,  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=token.expires_in,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.put("/identity/users/me", response_model=UserResponse)
def update_me(
    request: Request,
    body: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update the caller's own profile. Role changes go through PUT /users/{id}/role."""
    updated = _service(request).update_user(
        UpdateUserInput(user_id=current_user.id, updater_id=current_user.id, full_name=body.full_name or "")
    )
    return UserResponse.from_user(updated)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.post("/identity/users/{user_id}/block", status_code=204)
def block_user(
    request: Request,
    user_id: str,
    body: BlockUserRequest,
    current_user: User = Depends(require_admin),
) -> Response:
    """Block a user. Admins cannot block themselves (no recovery path without DB access)."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_block", "message": "You cannot block your own account."},
        )
    _service(request).block_user(BlockUserInput(admin_id=current_user.id, user_id=user_id, reason=body.reason))
    return Response(status_code=204)


@router.put("/identity/users/{user_id}/role", response_model=UserResponse)
def update_user_role(
    request: Request,
    user_id: str,
    body: UpdateUserRoleRequest,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Assign a role to a user. Admin only."""
    updated = _service(request).update_user_role(
        UpdateUserRoleInput(admin_id=current_user.id, user_id=user_id, role=Role(body.role.value))
    )
    return UserResponse.from_user(updated)
