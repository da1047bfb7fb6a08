"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

The token comes from the Authorization: Bearer <token> header and is checked
by the app's TokenIssuer (app.state.token_issuer). The user is then reloaded
from the store so a block takes effect immediately instead of when the
token expires.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

This is where the admin precondition of IdentityService.update_user_role()
and block_user() is enforced.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because it is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from identity.models import Role, User, UserStatus


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via its bearer token.

    Returns the authenticated, active User on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    token = _bearer_token(request)
    if not token:
        return None
    claims = request.app.state.token_issuer.validate(token)
    if claims is None:
        return None
    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None or user.status != UserStatus.ACTIVE:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.put("/identity/users/me")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin.

    The role is read from the stored record, not the token claim, so a
    demoted admin loses access before their token expires.
    """
    user = get_current_user(request)
    if user.role != Role.ADMIN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user
