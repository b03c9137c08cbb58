"""
auth/service.py -- The OTP-gated signup/login flow.

Every sign-in takes two requests:

  1. request_signup() / request_login() check the submitted credentials,
     issue a 6-digit code for the account's email, store its digest with an
     expiry, and hand the code to the notifier.
  2. verify_otp() consumes that code. For a signup it creates the account
     from the draft the client sends back; for a login it loads the existing
     account. Either way it returns a signed token and the public profile.

Per email the flow moves NoPendingAuth -> OTPIssued -> Consumed. The only
server-side state between the two requests is the pending code row; the
signup draft travels with the client, so an abandoned signup leaves no user
row behind.

Login failures for an unknown identifier and for a wrong password raise the
same AuthError and cost the same bcrypt work, so neither the message nor the
response time reveals whether an account exists.

There is no rate limiting of code requests or verification attempts here.

Layer rule: no imports from api/ or core/ (config arrives through the constructor).
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.codes import DEFAULT_MAX_ATTEMPTS, allocate_friend_code, generate_otp
from auth.errors import AuthError, ConflictError, NotFoundError, ValidationError
from auth.models import AuthResult, OtpChallenge, PublicProfile, SignupDraft, User
from auth.notifier import Notifier
from auth.store import UserStore
from auth.tokens import (
    DEFAULT_BCRYPT_ROUNDS,
    PASSWORD_MAX_BYTES,
    TokenService,
    hash_password,
    password_too_long,
    verify_dummy_password,
    verify_password,
)

logger = logging.getLogger("finflex.auth")

_BEARER_PREFIX = "Bearer "
_INVALID_CREDENTIALS = "Invalid credentials"
_INVALID_OTP = "Invalid or expired OTP"
_PASSWORD_TOO_LONG = f"Password must be at most {PASSWORD_MAX_BYTES} bytes"


def to_public_profile(user: User) -> PublicProfile:
    """Project a User onto the fields clients may see. The password hash is dropped here."""
    return PublicProfile(
        id=user.id,
        username=user.username,
        email=user.email,
        phone=user.phone,
        friend_code=user.friend_code,
        friends=list(user.friends),
    )


class AuthService:
    """Orchestrates code issuance, code verification, and token-based identification.

    Usage:
        service = AuthService(store, TokenService.from_settings(settings), build_notifier(settings))
        service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
        result = service.verify_otp("ann@x.com", "482913", True, SignupDraft("ann", "+1555", "pw123456"))
        service.identify(f"Bearer {result.token}")
    """

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        notifier: Notifier,
        otp_ttl_seconds: int = 300,
        friend_code_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.notifier = notifier
        self.otp_ttl_seconds = otp_ttl_seconds
        self.friend_code_max_attempts = friend_code_max_attempts
        self.bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Step 1: issue a code
    # ------------------------------------------------------------------

    def request_signup(self, username: str, email: str, phone: str, password: str) -> OtpChallenge:
        """Start a signup. Nothing but the pending code is persisted.

        Email uniqueness is checked before username uniqueness, so a request
        that collides on both reports the email.
        """
        if not (username and email and phone and password):
            raise ValidationError("All fields are required")
        if password_too_long(password):
            raise ValidationError(_PASSWORD_TOO_LONG)
        if self.store.find_by_email(email) is not None:
            raise ConflictError("Email already in use")
        if self.store.find_by_username(username) is not None:
            raise ConflictError("Username already taken")

        self._issue_code(email)
        logger.info("Signup code issued for %s", email)
        return OtpChallenge(email=email)

    def request_login(self, email_or_username: str, password: str) -> OtpChallenge:
        """Check credentials and issue a code to the account's stored email."""
        if not (email_or_username and password):
            raise ValidationError("Email/Username and password are required")

        user = self.store.find_by_email(email_or_username) or self.store.find_by_username(email_or_username)
        if user is None or not user.hashed_password:
            # Equalize timing -- do NOT return before running bcrypt
            verify_dummy_password(password)
            logger.info("Login rejected: unknown identifier")
            raise AuthError(_INVALID_CREDENTIALS)
        if not verify_password(password, user.hashed_password):
            logger.info("Login rejected: bad password for user_id=%s", user.id)
            raise AuthError(_INVALID_CREDENTIALS)

        self._issue_code(user.email)
        logger.info("Login code issued for user_id=%s", user.id)
        return OtpChallenge(email=user.email)

    def _issue_code(self, email: str) -> None:
        """Generate a code, persist its digest, then deliver it.

        Persisting first means a store failure aborts before the user is sent
        a code that could never verify. Delivery failures are logged only.
        """
        code = generate_otp()
        self.store.save_otp(email, self.tokens.otp_digest(email, code), self.otp_ttl_seconds)
        try:
            delivered = self.notifier.send(email, code)
        except Exception:
            logger.exception("Notifier raised while delivering code to %s", email)
            delivered = False
        if not delivered:
            logger.warning("Code delivery to %s failed; pending code kept", email)

    # ------------------------------------------------------------------
    # Step 2: consume the code
    # ------------------------------------------------------------------

    def verify_otp(
        self,
        email: str,
        code: str,
        is_signup: bool = False,
        draft: SignupDraft | None = None,
    ) -> AuthResult:
        """Consume the pending code for email and return a token plus profile.

        A wrong or expired code raises AuthError and leaves the pending code
        in place, so the user can retry until it expires. The draft is
        validated before the code is consumed, so a malformed draft never
        burns a valid code.
        """
        if not (email and code):
            raise ValidationError("OTP and email are required")
        creating = bool(is_signup and draft is not None)
        if creating and not (draft.username and draft.phone and draft.password):
            raise ValidationError("Signup data requires username, phone and password")
        if creating and password_too_long(draft.password):
            raise ValidationError(_PASSWORD_TOO_LONG)

        if not self.store.verify_otp(email, self.tokens.otp_digest(email, code)):
            logger.info("OTP rejected for %s", email)
            raise AuthError(_INVALID_OTP)

        if creating:
            user = self._create_account(email, draft)
        else:
            user = self.store.find_by_email(email)
        if user is None:
            raise NotFoundError("User not found")

        token = self.tokens.issue(user.id)
        logger.info("OTP verified for user_id=%s (signup=%s)", user.id, creating)
        return AuthResult(token=token, user=to_public_profile(user))

    def _create_account(self, email: str, draft: SignupDraft) -> User:
        """Create the user for a confirmed signup. The only place accounts are born."""
        new_user = User(
            username=draft.username,
            email=email,
            phone=draft.phone,
            hashed_password=hash_password(draft.password, rounds=self.bcrypt_rounds),
            friend_code=allocate_friend_code(self.store, self.friend_code_max_attempts),
            friends=[],
        )
        try:
            user = self.store.create_user(new_user)
        except IntegrityError as exc:
            # A concurrent signup claimed the email or username after request_signup checked it.
            logger.warning("Signup for %s lost a uniqueness race", email)
            raise ConflictError("Email or username already registered") from exc
        logger.info("Account created user_id=%s", user.id)
        return user

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    def identify(self, authorization: str | None) -> PublicProfile:
        """Resolve an Authorization header value to the caller's profile.

        Raises AuthError for a missing or non-Bearer header, TokenInvalidError
        / TokenExpiredError (both AuthError) for a bad token, NotFoundError if
        the token's user no longer exists.
        """
        if not authorization or not authorization.startswith(_BEARER_PREFIX):
            raise AuthError("Unauthorized")
        token = authorization[len(_BEARER_PREFIX) :].strip()
        if not token:
            raise AuthError("Unauthorized")

        user_id = self.tokens.verify(token)
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return to_public_profile(user)
