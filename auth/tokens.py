"""
auth/tokens.py -- JWT, password hashing, and OTP digest utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the user id as the subject claim,
       an issued-at and a 7-day expiry. TokenService is built once from
       Settings at startup and handed to the auth service -- no module reads
       the secret on its own. Verification raises TokenExpiredError or
       TokenInvalidError; both are AuthError subclasses, so the API layer
       answers 401 either way.

  Passwords: bcrypt directly, cost factor 10. The _DUMMY_HASH constant
       enables timing equalization in the login step so response time does
       not reveal whether an email or username exists.

  OTP digests: HMAC-SHA256(SECRET_KEY, "email:code"). Pending codes are
       short-lived and low-entropy, so bcrypt's cost buys nothing; the HMAC
       keeps a leaked pending_otps table from handing out live codes.

Layer rule: no imports from api/. From core/ only constants and the Settings type.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpiredError, TokenInvalidError
from core.config import MIN_SECRET_LENGTH

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("finflex.auth")

_ALGORITHM = "HS256"
DEFAULT_BCRYPT_ROUNDS = 10

# bcrypt refuses (or silently truncates, depending on version) input past 72 bytes.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Callers must reject passwords over PASSWORD_MAX_BYTES first (see
    password_too_long); current bcrypt releases raise ValueError on them.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def password_too_long(plain: str) -> bool:
    """True if plain encodes to more UTF-8 bytes than bcrypt accepts."""
    return len(plain.encode("utf-8")) > PASSWORD_MAX_BYTES


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash raises
    ValueError inside bcrypt; treat that as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("finflex_timing_dummy")


def verify_dummy_password(plain: str) -> None:
    """Burn one bcrypt comparison. Call when the login identifier did not resolve."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Issues and verifies signed identity tokens.

    Usage:
        tokens = TokenService.from_settings(get_settings())
        token = tokens.issue(42)
        tokens.verify(token)   # -> 42
    """

    def __init__(self, secret_key: str, expire_seconds: int) -> None:
        if not secret_key or len(secret_key) < MIN_SECRET_LENGTH:
            raise ValueError(f"Token secret must be at least {MIN_SECRET_LENGTH} characters.")
        if expire_seconds <= 0:
            raise ValueError("Token lifetime must be positive.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(settings.secret_key, settings.token_expire_seconds)

    def issue(self, user_id: int, now: datetime | None = None) -> str:
        """Encode a signed JWT for user_id expiring expire_seconds after now."""
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> int:
        """Return the user id embedded in a valid token.

        Raises TokenExpiredError if the signature is valid but exp has passed,
        TokenInvalidError for anything else (bad signature, garbage input,
        wrong algorithm, missing or non-numeric subject).
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise TokenInvalidError() from exc

        subject = payload.get("sub")
        if subject is None or "exp" not in payload:
            raise TokenInvalidError()
        try:
            return int(subject)
        except (TypeError, ValueError) as exc:
            raise TokenInvalidError() from exc

    def otp_digest(self, email: str, code: str) -> str:
        """Return HMAC-SHA256(secret, "email:code") as a hex string.

        Binding the email into the digest means a code issued for one address
        can never match the pending row of another.
        """
        message = f"{email}:{code.strip()}".encode("utf-8")
        return hmac.new(self._secret_key.encode("utf-8"), message, hashlib.sha256).hexdigest()
