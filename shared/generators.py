"""
Random token and username generators.

Tokens use the ``secrets`` module. Username suffixes only need to be unlikely
to collide, and the store's unique index is the real guard.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from shared.validators import USERNAME_MAX_LENGTH

_NON_USERNAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token.

    Args:
        length: Number of random bytes (default 32). The hex encoding is
            twice as long.

    Returns:
        Lowercase hex string.
    """
    return secrets.token_hex(length)


def _email_local_part(email: str) -> str:
    local = email.split("@", 1)[0]
    local = _NON_USERNAME_CHARS.sub("_", local)
    return local or "user"


def _timestamp_digits(now: Optional[datetime], count: int) -> str:
    now = now or datetime.now(timezone.utc)
    return str(int(now.timestamp() * 1000))[-count:]


def generate_temp_username(email: str, now: Optional[datetime] = None) -> str:
    """Placeholder username for an account created at email verification.

    Shape: ``temp_<local part>_<8 timestamp digits>_<4 hex>``. Temporary
    names are replaced when the registration is completed, so the length
    limit of user-chosen names does not apply.
    """
    return (
        f"temp_{_email_local_part(email)}_"
        f"{_timestamp_digits(now, 8)}_{secrets.token_hex(2)}"
    )


def generate_oauth_username(email: str, now: Optional[datetime] = None) -> str:
    """Username for an account created from an external identity.

    Shape: ``<local part>_<6 timestamp digits><4 hex>``, truncated so the
    result satisfies the normal username length limit.
    """
    suffix = f"_{_timestamp_digits(now, 6)}{secrets.token_hex(2)}"
    local = _email_local_part(email)[: USERNAME_MAX_LENGTH - len(suffix)]
    return f"{local}{suffix}"
