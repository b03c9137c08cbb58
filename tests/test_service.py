"""Unit tests for auth/service.py -- the OTP signup/login flow.

Runs AuthService against a real in-memory UserStore and a recording notifier,
so every assertion about "no user created" or "pending code untouched" is
checked against actual rows.

Covers:
- request_signup: validation, email-before-username conflicts, no user created
- request_login: email or username, generic failure for unknown/wrong password
- verify_otp: signup creates exactly one user, login resolves existing user,
  wrong/expired/replayed codes, malformed drafts, lost uniqueness races
- identify: header parsing, token failures, deleted users
- best-effort delivery: notifier failures never abort the flow
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import AuthError, ConflictError, NotFoundError, TokenExpiredError, TokenInvalidError, ValidationError
from auth.models import SignupDraft, User
from auth.service import AuthService
from auth.tokens import hash_password, verify_password

ANN_DRAFT = SignupDraft(username="ann", phone="+1555", password="pw123456")


def _signup_ann(service: AuthService, notifier) -> str:
    service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
    return notifier.last_code("ann@x.com")


def _register_ann(service: AuthService, notifier):
    code = _signup_ann(service, notifier)
    return service.verify_otp("ann@x.com", code, True, ANN_DRAFT)


# ---------------------------------------------------------------------------
# request_signup
# ---------------------------------------------------------------------------


class TestRequestSignup:
    def test_issues_code_without_creating_user(self, service, store, notifier):
        challenge = service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
        assert challenge.otp_required is True
        assert challenge.email == "ann@x.com"
        assert store.get_pending_otp("ann@x.com") is not None
        assert store.count_users() == 0
        assert len(notifier.sent) == 1

    def test_password_is_not_persisted(self, service, store):
        service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
        pending = store.get_pending_otp("ann@x.com")
        assert "pw123456" not in pending.code_digest
        assert store.find_by_email("ann@x.com") is None

    @pytest.mark.parametrize(
        "fields",
        [
            ("", "ann@x.com", "+1555", "pw"),
            ("ann", "", "+1555", "pw"),
            ("ann", "ann@x.com", "", "pw"),
            ("ann", "ann@x.com", "+1555", ""),
        ],
    )
    def test_empty_field_is_validation_error(self, service, notifier, fields):
        with pytest.raises(ValidationError):
            service.request_signup(*fields)
        assert notifier.sent == []

    def test_duplicate_email_conflicts_even_with_fresh_username(self, service, notifier):
        _register_ann(service, notifier)
        with pytest.raises(ConflictError, match="Email already in use"):
            service.request_signup("fresh", "ann@x.com", "+1555", "pw123456")

    def test_duplicate_username_conflicts_with_fresh_email(self, service, notifier):
        _register_ann(service, notifier)
        with pytest.raises(ConflictError, match="Username already taken"):
            service.request_signup("ann", "fresh@x.com", "+1555", "pw123456")

    def test_email_conflict_reported_before_username(self, service, notifier):
        _register_ann(service, notifier)
        with pytest.raises(ConflictError, match="Email"):
            service.request_signup("ann", "ann@x.com", "+1555", "pw123456")

    def test_repeat_request_supersedes_code(self, service, monkeypatch):
        codes = iter(["111111", "222222"])
        monkeypatch.setattr("auth.service.generate_otp", lambda: next(codes))
        service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
        service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
        with pytest.raises(AuthError):
            service.verify_otp("ann@x.com", "111111", True, ANN_DRAFT)
        assert service.verify_otp("ann@x.com", "222222", True, ANN_DRAFT).token


# ---------------------------------------------------------------------------
# request_login
# ---------------------------------------------------------------------------


class TestRequestLogin:
    @pytest.fixture(autouse=True)
    def _ann(self, service, notifier):
        _register_ann(service, notifier)

    def test_login_by_email(self, service, store):
        challenge = service.request_login("ann@x.com", "pw123456")
        assert challenge.email == "ann@x.com"
        assert store.get_pending_otp("ann@x.com") is not None

    def test_login_by_username_keys_code_to_account_email(self, service, notifier):
        challenge = service.request_login("ann", "pw123456")
        assert challenge.email == "ann@x.com"
        assert notifier.sent[-1][0] == "ann@x.com"

    def test_unknown_user_and_wrong_password_look_identical(self, service):
        with pytest.raises(AuthError) as unknown:
            service.request_login("nobody", "pw123456")
        with pytest.raises(AuthError) as wrong:
            service.request_login("ann", "wrong-password")
        assert unknown.value.message == wrong.value.message == "Invalid credentials"
        assert type(unknown.value) is type(wrong.value) is AuthError

    def test_failed_login_issues_no_code(self, service, notifier):
        sent_before = len(notifier.sent)
        with pytest.raises(AuthError):
            service.request_login("ann", "wrong-password")
        assert len(notifier.sent) == sent_before

    @pytest.mark.parametrize("fields", [("", "pw123456"), ("ann", "")])
    def test_missing_field_is_validation_error(self, service, fields):
        with pytest.raises(ValidationError):
            service.request_login(*fields)

    def test_login_code_yields_token_for_existing_user(self, service, notifier, store):
        service.request_login("ann", "pw123456")
        result = service.verify_otp("ann@x.com", notifier.last_code("ann@x.com"), False)
        assert result.user.username == "ann"
        assert store.count_users() == 1


# ---------------------------------------------------------------------------
# verify_otp
# ---------------------------------------------------------------------------


class TestVerifyOtp:
    def test_end_to_end_signup(self, service, store, monkeypatch):
        monkeypatch.setattr("auth.service.generate_otp", lambda: "482913")
        service.request_signup("ann", "ann@x.com", "+1555", "pw123456")

        result = service.verify_otp("ann@x.com", "482913", True, ANN_DRAFT)

        assert result.token
        assert result.user.username == "ann"
        assert result.user.email == "ann@x.com"
        assert result.user.phone == "+1555"
        assert result.user.friends == []
        assert len(result.user.friend_code) == 6
        assert not hasattr(result.user, "hashed_password")
        assert store.count_users() == 1
        assert service.identify(f"Bearer {result.token}") == result.user

    def test_created_user_has_bcrypt_password(self, service, store, notifier):
        _register_ann(service, notifier)
        user = store.find_by_email("ann@x.com")
        assert user.hashed_password != "pw123456"
        assert verify_password("pw123456", user.hashed_password)

    def test_wrong_code_changes_nothing(self, service, store, notifier):
        code = _signup_ann(service, notifier)
        before = store.get_pending_otp("ann@x.com")
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(AuthError, match="Invalid or expired OTP"):
            service.verify_otp("ann@x.com", wrong, True, ANN_DRAFT)

        assert store.get_pending_otp("ann@x.com") == before
        assert store.count_users() == 0
        # the real code still works after a failed attempt
        assert service.verify_otp("ann@x.com", code, True, ANN_DRAFT).token

    def test_code_cannot_be_replayed(self, service, notifier):
        code = _signup_ann(service, notifier)
        service.verify_otp("ann@x.com", code, True, ANN_DRAFT)
        with pytest.raises(AuthError):
            service.verify_otp("ann@x.com", code, False)

    def test_expired_code_rejected(self, service, store, tokens, notifier):
        code = _signup_ann(service, notifier)
        store.save_otp("ann@x.com", tokens.otp_digest("ann@x.com", code), ttl_seconds=-1)
        with pytest.raises(AuthError):
            service.verify_otp("ann@x.com", code, True, ANN_DRAFT)
        assert store.count_users() == 0

    def test_code_for_other_email_rejected(self, service, monkeypatch):
        codes = iter(["111111", "222222"])
        monkeypatch.setattr("auth.service.generate_otp", lambda: next(codes))
        service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
        service.request_signup("bob", "bob@x.com", "+1666", "pw123456")
        with pytest.raises(AuthError):
            service.verify_otp("bob@x.com", "111111", True, SignupDraft("bob", "+1666", "pw123456"))

    @pytest.mark.parametrize("fields", [("", "123456"), ("ann@x.com", "")])
    def test_missing_email_or_code_is_validation_error(self, service, fields):
        with pytest.raises(ValidationError):
            service.verify_otp(*fields)

    def test_incomplete_draft_does_not_burn_code(self, service, store, notifier):
        code = _signup_ann(service, notifier)
        with pytest.raises(ValidationError):
            service.verify_otp("ann@x.com", code, True, SignupDraft("ann", "+1555", ""))
        assert store.get_pending_otp("ann@x.com") is not None
        assert service.verify_otp("ann@x.com", code, True, ANN_DRAFT).token

    def test_login_verify_without_account_is_not_found(self, service, notifier):
        code = _signup_ann(service, notifier)
        with pytest.raises(NotFoundError):
            service.verify_otp("ann@x.com", code, False)

    def test_signup_flag_without_draft_falls_back_to_lookup(self, service, notifier):
        code = _signup_ann(service, notifier)
        with pytest.raises(NotFoundError):
            service.verify_otp("ann@x.com", code, True, None)

    def test_lost_uniqueness_race_is_conflict(self, service, store, tokens):
        store.create_user(
            User(
                username="ann",
                email="first@x.com",
                phone="+1555",
                friend_code="ABC234",
                hashed_password=hash_password("pw", rounds=4),
            )
        )
        # Code issued directly, as if request_signup ran before "ann" was claimed.
        store.save_otp("second@x.com", tokens.otp_digest("second@x.com", "482913"), ttl_seconds=300)
        with pytest.raises(ConflictError):
            service.verify_otp("second@x.com", "482913", True, ANN_DRAFT)
        assert store.count_users() == 1

    def test_friend_codes_unique_across_signups(self, service, store, notifier):
        codes = set()
        for i in range(5):
            email = f"user{i}@x.com"
            service.request_signup(f"user{i}", email, "+1555", "pw123456")
            result = service.verify_otp(email, notifier.last_code(email), True, SignupDraft(f"user{i}", "+1555", "pw"))
            codes.add(result.user.friend_code)
        assert len(codes) == 5


# ---------------------------------------------------------------------------
# identify
# ---------------------------------------------------------------------------


class TestIdentify:
    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer ", "Token abc", "bearer abc"])
    def test_missing_or_non_bearer_header(self, service, header):
        with pytest.raises(AuthError):
            service.identify(header)

    def test_garbage_token(self, service):
        with pytest.raises(TokenInvalidError):
            service.identify("Bearer not-a-jwt")

    def test_expired_token(self, service, tokens, notifier):
        result = _register_ann(service, notifier)
        stale = tokens.issue(result.user.id, now=datetime.now(timezone.utc) - timedelta(days=8))
        with pytest.raises(TokenExpiredError):
            service.identify(f"Bearer {stale}")

    def test_deleted_user_is_not_found(self, service, tokens):
        with pytest.raises(NotFoundError):
            service.identify(f"Bearer {tokens.issue(99999)}")


# ---------------------------------------------------------------------------
# Best-effort delivery
# ---------------------------------------------------------------------------


class _FailingNotifier:
    def send(self, email: str, code: str) -> bool:
        return False


class _RaisingNotifier:
    def send(self, email: str, code: str) -> bool:
        raise ConnectionError("smtp down")


@pytest.mark.parametrize("broken", [_FailingNotifier(), _RaisingNotifier()])
def test_delivery_failure_does_not_abort_signup(store, tokens, broken):
    service = AuthService(store, tokens, broken, bcrypt_rounds=4)
    challenge = service.request_signup("ann", "ann@x.com", "+1555", "pw123456")
    assert challenge.otp_required is True
    assert store.get_pending_otp("ann@x.com") is not None


# ---------------------------------------------------------------------------
# Multi-byte passwords against bcrypt's 72-byte limit
# ---------------------------------------------------------------------------


class TestPasswordByteLimit:
    # "é" is two bytes in UTF-8: 36 of them is exactly 72 bytes, 40 is 80.
    AT_LIMIT = "é" * 36
    OVER_LIMIT = "é" * 40

    def test_signup_rejects_password_over_72_bytes(self, service, store, notifier):
        with pytest.raises(ValidationError, match="72 bytes"):
            service.request_signup("ann", "ann@x.com", "+1555", self.OVER_LIMIT)
        assert notifier.sent == []
        assert store.get_pending_otp("ann@x.com") is None

    def test_oversized_draft_does_not_burn_code(self, service, store, notifier):
        code = _signup_ann(service, notifier)
        with pytest.raises(ValidationError, match="72 bytes"):
            service.verify_otp("ann@x.com", code, True, SignupDraft("ann", "+1555", self.OVER_LIMIT))
        assert store.get_pending_otp("ann@x.com") is not None
        assert store.count_users() == 0
        assert service.verify_otp("ann@x.com", code, True, ANN_DRAFT).token

    def test_password_at_limit_signs_up_and_logs_in(self, service, store, notifier):
        service.request_signup("ann", "ann@x.com", "+1555", self.AT_LIMIT)
        draft = SignupDraft("ann", "+1555", self.AT_LIMIT)
        service.verify_otp("ann@x.com", notifier.last_code("ann@x.com"), True, draft)
        assert store.count_users() == 1

        challenge = service.request_login("ann", self.AT_LIMIT)
        assert challenge.email == "ann@x.com"
