"""
auth/codes.py -- One-time code and friend code generation.

Both generators draw from the secrets module (CSPRNG). A predictable OTP would
let an attacker who knows a victim's email finish the login step without
access to the mailbox.

Friend codes use a 32-character alphabet: A-Z and 2-9 with the visually
ambiguous I, O, 0 and 1 removed, so codes survive being read aloud or copied
by hand. 32**6 is about 10**9 codes, so allocate_friend_code() almost always
succeeds on the first draw; the attempt cap only exists so a broken store
(e.g. one that reports every code as taken) fails loudly instead of spinning.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from auth.errors import InternalError

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("finflex.auth")

OTP_LENGTH = 6
FRIEND_CODE_LENGTH = 6
FRIEND_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_MAX_ATTEMPTS = 50

_OTP_MIN = 10 ** (OTP_LENGTH - 1)  # 100000
_OTP_SPAN = 9 * _OTP_MIN  # 900000 values in [100000, 999999]


def generate_otp() -> str:
    """Return a 6-digit numeric code, uniform over [100000, 999999]."""
    return str(_OTP_MIN + secrets.randbelow(_OTP_SPAN))


def generate_friend_code() -> str:
    """Return a 6-character code from FRIEND_CODE_ALPHABET. Not checked for uniqueness."""
    return "".join(secrets.choice(FRIEND_CODE_ALPHABET) for _ in range(FRIEND_CODE_LENGTH))


def allocate_friend_code(store: UserStore, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> str:
    """Return a friend code no existing user holds.

    Raises InternalError after max_attempts consecutive collisions.
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_friend_code()
        if store.find_by_friend_code(code) is None:
            if attempt > 1:
                logger.info("Friend code allocated after %d attempts", attempt)
            return code
    logger.error("Friend code allocation gave up after %d attempts", max_attempts)
    raise InternalError("Could not allocate a friend code.")
