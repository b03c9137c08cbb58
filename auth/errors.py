"""
auth/errors.py -- Error taxonomy for the authentication flow.

Every failure the auth service reports is an AuthServiceError carrying the
HTTP status and machine-readable code the API boundary should use. Routes do
not translate errors themselves; api/main.py registers one exception handler
for the whole hierarchy.

  ValidationError    400  missing or malformed input
  ConflictError      400  email or username already registered
  AuthError          401  bad credentials, bad/expired OTP, bad/expired/missing token
  NotFoundError      404  identity does not resolve to a user
  InternalError      500  store or unexpected failures

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthServiceError(Exception):
    """Base class. message is safe to show to API clients."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthServiceError):
    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class ConflictError(AuthServiceError):
    status_code = 400
    code = "conflict"
    default_message = "Resource already exists."


class AuthError(AuthServiceError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class TokenInvalidError(AuthError):
    """Malformed token, bad signature, or missing claims."""

    code = "invalid_token"
    default_message = "Invalid token."


class TokenExpiredError(AuthError):
    code = "token_expired"
    default_message = "Token has expired."


class NotFoundError(AuthServiceError):
    status_code = 404
    code = "not_found"
    default_message = "User not found"


class InternalError(AuthServiceError):
    pass
