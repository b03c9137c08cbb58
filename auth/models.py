"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, the auth service, and the routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A registered FinFlex account.

    hashed_password is bcrypt output and never leaves the auth layer -- API
    responses are built from PublicProfile, which has no password field.

    friend_code is the public, human-shareable handle other users enter to add
    this user as a friend. It is unique across all users.

    friends holds the ids of befriended users. The social endpoints that
    mutate it live outside this service; here it is only read and projected.
    """

    username: str
    email: str
    phone: str
    friend_code: str
    id: int | None = None
    hashed_password: str | None = field(default=None, repr=False)
    friends: list[int] = field(default_factory=list)
    created_at: str | None = None


@dataclass
class PendingOtp:
    """The single live one-time code for an email address.

    code_digest is HMAC-SHA256 of (email, code) -- the plaintext code is only
    ever held by the notifier. expires_at is a UTC epoch timestamp.
    """

    email: str
    code_digest: str
    expires_at: float
    created_at: str | None = None


@dataclass
class SignupDraft:
    """Signup fields carried by the client between request_signup and verify_otp.

    Nothing is persisted for a draft. The account only exists once the OTP for
    the draft's email has been confirmed.
    """

    username: str
    phone: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class PublicProfile:
    """The only user projection that crosses the service boundary."""

    id: int
    username: str
    email: str
    phone: str
    friend_code: str
    friends: list[int]


@dataclass(frozen=True)
class OtpChallenge:
    """Result of a successful signup or login request: a code was issued for email."""

    email: str
    otp_required: bool = True


@dataclass(frozen=True)
class AuthResult:
    """Result of a successful OTP verification."""

    token: str
    user: PublicProfile
