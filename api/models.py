"""
API request and response models for FinFlex Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (emailOrUsername, isSignup, friendCode) to match the
mobile client; Python code uses snake_case field names via alias_generator.

Required-ness is enforced by the auth service, not here: request fields default
to "" so a missing field reaches AuthService and comes back as a 400
validation_error with a readable message, the same as an empty one.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import PublicProfile, SignupDraft

# Character cap only. The 72-byte bcrypt limit is enforced by AuthService,
# since a multi-byte password can pass this and still be too long.
_PASSWORD_MAX = 72

_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_RESPONSE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/auth-signup."""

    model_config = _REQUEST_CONFIG

    username: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=320)
    phone: str = Field(default="", max_length=32)
    password: str = Field(default="", max_length=_PASSWORD_MAX)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth-login. emailOrUsername is matched against email first."""

    model_config = _REQUEST_CONFIG

    email_or_username: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=_PASSWORD_MAX)


class SignupData(BaseModel):
    """The signup draft echoed back by the client with the OTP."""

    model_config = _REQUEST_CONFIG

    username: str = Field(default="", max_length=255)
    phone: str = Field(default="", max_length=32)
    password: str = Field(default="", max_length=_PASSWORD_MAX)

    def to_draft(self) -> SignupDraft:
        return SignupDraft(username=self.username, phone=self.phone, password=self.password)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /api/auth-verify-otp.

    Some clients send the code as a JSON number; it is accepted as its digits.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    email: str = Field(default="", max_length=320)
    otp: str = Field(default="", max_length=16)
    is_signup: bool = False
    signup_data: Optional[SignupData] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Public projection of a user. There is deliberately no password field."""

    model_config = _RESPONSE_CONFIG

    id: int
    username: str
    email: str
    phone: str
    friend_code: str
    friends: list[int]

    @classmethod
    def from_profile(cls, profile: PublicProfile) -> "UserProfile":
        """Factory Method -- the domain-to-wire mapping lives beside the wire model."""
        return cls(
            id=profile.id,
            username=profile.username,
            email=profile.email,
            phone=profile.phone,
            friend_code=profile.friend_code,
            friends=list(profile.friends),
        )


class OtpChallengeResponse(BaseModel):
    """Response for POST /api/auth-signup and POST /api/auth-login."""

    model_config = _RESPONSE_CONFIG

    success: bool = True
    otp_required: bool = True
    email: str
    message: str = "OTP sent to your email"


class VerifyOtpResponse(BaseModel):
    """Response for POST /api/auth-verify-otp."""

    model_config = _RESPONSE_CONFIG

    success: bool = True
    token: str
    user: UserProfile


class MeResponse(BaseModel):
    """Response for GET /api/auth-me."""

    model_config = _RESPONSE_CONFIG

    success: bool = True
    user: UserProfile


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
