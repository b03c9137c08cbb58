"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method exists: an Authorization: Bearer <token> header carrying
a token minted by AuthService.verify_otp(). get_current_user() hands the raw
header to AuthService.identify(), which raises AuthError / NotFoundError; the
exception handler in api/main.py turns those into 401 / 404.

Layer rule: no imports from core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import PublicProfile
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built in lifespan and stored on app.state."""
    return request.app.state.auth_service


def get_current_user(request: Request) -> PublicProfile:
    """Require a valid bearer token. Raises AuthError (401) or NotFoundError (404).

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicProfile = Depends(get_current_user)): ...
    """
    return get_auth_service(request).identify(request.headers.get("Authorization"))
