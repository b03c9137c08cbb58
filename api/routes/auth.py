"""
api/routes/auth.py -- OTP authentication REST endpoints.

Routes (mounted under /api by api/main.py):
  POST /api/auth-signup      -- validate signup, email a code; no account yet
  POST /api/auth-login       -- check credentials, email a code
  POST /api/auth-verify-otp  -- consume the code; create account on signup; return token
  GET  /api/auth-me          -- current user profile (requires Bearer token)

Handlers are plain `def`: bcrypt and the store block, and FastAPI runs sync
handlers in its thread pool so one slow request does not stall the others.

Errors are raised by AuthService as AuthServiceError subclasses and mapped to
status codes by the exception handler in api/main.py -- routes never build
error responses themselves.

Security:
  Cache-Control: no-store on every response that carries a token or profile.
  Login answers "Invalid credentials" for unknown user and wrong password alike.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import (
    LoginRequest,
    MeResponse,
    OtpChallengeResponse,
    SignupRequest,
    UserProfile,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.models import PublicProfile
from auth.service import AuthService

# Auth policy:
# - POST /api/auth-signup:      public
# - POST /api/auth-login:       public
# - POST /api/auth-verify-otp:  public -- possession of the emailed code is the credential
# - GET  /api/auth-me:          requires Bearer token (get_current_user)
router = APIRouter()


@router.post("/auth-signup", response_model=OtpChallengeResponse)
def signup(body: SignupRequest, service: AuthService = Depends(get_auth_service)) -> OtpChallengeResponse:
    """Start a signup. The account is created only by /auth-verify-otp."""
    challenge = service.request_signup(body.username, body.email, body.phone, body.password)
    return OtpChallengeResponse(email=challenge.email, otp_required=challenge.otp_required)


@router.post("/auth-login", response_model=OtpChallengeResponse)
def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> OtpChallengeResponse:
    """Check credentials; the code goes to the account's stored email, which is echoed back."""
    challenge = service.request_login(body.email_or_username, body.password)
    return OtpChallengeResponse(email=challenge.email, otp_required=challenge.otp_required)


@router.post("/auth-verify-otp", response_model=VerifyOtpResponse)
def verify_otp(
    body: VerifyOtpRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> VerifyOtpResponse:
    """Exchange a valid code for a token and the user's public profile."""
    draft = body.signup_data.to_draft() if body.signup_data is not None else None
    result = service.verify_otp(body.email, body.otp, body.is_signup, draft)
    response.headers["Cache-Control"] = "no-store"
    return VerifyOtpResponse(token=result.token, user=UserProfile.from_profile(result.user))


@router.get("/auth-me", response_model=MeResponse)
def me(response: Response, current_user: PublicProfile = Depends(get_current_user)) -> MeResponse:
    """Return the profile of the user the bearer token belongs to."""
    response.headers["Cache-Control"] = "no-store"
    return MeResponse(user=UserProfile.from_profile(current_user))
