"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_pending_otp are the mappers.
The auth service never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  username, email and friend_code carry UNIQUE constraints. The service checks
  for duplicates before inserting, but two concurrent signups for the same
  email can both pass that check -- the constraint makes the second insert
  fail with IntegrityError instead of creating a duplicate account.

  Pending OTPs are stored as HMAC digests, never as plaintext codes.

Consumption:
  verify_otp() is a single DELETE ... WHERE email AND digest AND not expired.
  A matching row is removed in the same statement that checks it, so a code
  can be redeemed once. A non-matching submission deletes nothing, leaving the
  live code usable for a retry inside its window.

DB path: auth/finflex_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import PendingOtp, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("phone", String(32), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("friend_code", String(6), nullable=False, unique=True),
    Column("friends", Text, nullable=False, server_default="[]"),  # JSON array of user ids
    Column("created_at", String(32), nullable=False),
)

_pending_otps = Table(
    "pending_otps",
    _metadata,
    Column("email", String(320), primary_key=True),  # one live code per email
    Column("code_digest", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("expires_at", Float, nullable=False),  # UTC epoch seconds
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and PendingOtp entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(username="ann", email="ann@x.com", phone="+1555",
                                      friend_code="ABC234", hashed_password=hash_password("pw")))
        store.save_otp("ann@x.com", digest, ttl_seconds=300)
        store.verify_otp("ann@x.com", digest)   # True once, then False
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        return self._find_one(_users.c.email == email)

    def find_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        return self._find_one(_users.c.username == username)

    def find_by_id(self, user_id: int) -> User | None:
        return self._find_one(_users.c.id == user_id)

    def find_by_friend_code(self, friend_code: str) -> User | None:
        return self._find_one(_users.c.friend_code == friend_code)

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and created_at filled in.

        Raises sqlalchemy.exc.IntegrityError if the username, email or
        friend_code already exists. The auth service turns that into a
        ConflictError -- it signals a concurrent signup won the race.
        """
        created_at = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    phone=user.phone,
                    hashed_password=user.hashed_password,
                    friend_code=user.friend_code,
                    friends=json.dumps(list(user.friends)),
                    created_at=created_at,
                )
            )
            conn.commit()
            user_id = result.inserted_primary_key[0]
        return User(
            id=user_id,
            username=user.username,
            email=user.email,
            phone=user.phone,
            hashed_password=user.hashed_password,
            friend_code=user.friend_code,
            friends=list(user.friends),
            created_at=created_at,
        )

    def count_users(self) -> int:
        """Number of registered accounts. Inspection helper for tests and operators; the flow never needs it."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return result or 0

    def _find_one(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Pending OTPs
    # ------------------------------------------------------------------

    def save_otp(self, email: str, code_digest: str, ttl_seconds: int) -> None:
        """Store code_digest as the live code for email, superseding any earlier one.

        Delete + insert run in one transaction, so readers never observe two
        codes for the same email.
        """
        with self.engine.begin() as conn:
            conn.execute(_pending_otps.delete().where(_pending_otps.c.email == email))
            conn.execute(
                _pending_otps.insert().values(
                    email=email,
                    code_digest=code_digest,
                    expires_at=time.time() + ttl_seconds,
                    created_at=_now_iso(),
                )
            )

    def verify_otp(self, email: str, code_digest: str) -> bool:
        """Consume the live code for email if it matches and has not expired.

        Returns True exactly once per issued code. On mismatch or expiry the
        row is left untouched and False is returned.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _pending_otps.delete().where(
                    (_pending_otps.c.email == email)
                    & (_pending_otps.c.code_digest == code_digest)
                    & (_pending_otps.c.expires_at > time.time())
                )
            )
            conn.commit()
        return result.rowcount > 0

    def get_pending_otp(self, email: str) -> PendingOtp | None:
        """Return the stored (possibly expired) pending code for email, if any.

        Inspection helper for tests and operators. The flow itself only
        touches pending codes through save_otp and the atomic verify_otp.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_pending_otps.select().where(_pending_otps.c.email == email)).fetchone()
        return _row_to_pending_otp(row) if row is not None else None

    def purge_expired_otps(self) -> int:
        """Delete all pending codes past their expiry. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_pending_otps.delete().where(_pending_otps.c.expires_at <= time.time()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        phone=row.phone,
        hashed_password=row.hashed_password,
        friend_code=row.friend_code,
        friends=json.loads(row.friends or "[]"),
        created_at=row.created_at,
    )


def _row_to_pending_otp(row) -> PendingOtp:
    return PendingOtp(
        email=row.email,
        code_digest=row.code_digest,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
