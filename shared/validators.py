"""
Account input validators — framework-agnostic, pure functions.

All validators are stateless; uniqueness checks that need the database live
in the service layer.
"""

from __future__ import annotations

import re
from typing import List, Optional

import validators as _validators

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

FITNESS_LEVELS = ("beginner", "intermediate", "advanced", "expert")


def normalize_email(email: Optional[str]) -> str:
    """Trim and lowercase *email*. ``None`` becomes the empty string."""
    return (email or "").strip().lower()


def validate_email(email: str) -> bool:
    """Return True if *email* is a syntactically valid address."""
    return bool(_validators.email(email))


def looks_like_email(identifier: str) -> bool:
    """True when a login identifier should be treated as an email address."""
    return "@" in identifier and validate_email(identifier.strip())


def validate_username(username: str) -> List[str]:
    """Return the list of problems with *username* (empty when valid).

    Rules:
    - 3 to 30 characters
    - Letters, digits and underscores only
    """
    if not username:
        return ["Username is required"]

    problems = []
    if len(username) < USERNAME_MIN_LENGTH:
        problems.append(f"Username must be at least {USERNAME_MIN_LENGTH} characters")
    if len(username) > USERNAME_MAX_LENGTH:
        problems.append(f"Username cannot exceed {USERNAME_MAX_LENGTH} characters")
    if not USERNAME_PATTERN.match(username):
        problems.append("Username can only contain letters, numbers, and underscores")
    return problems


def validate_password(password: str) -> List[str]:
    """Return the list of unmet password requirements (empty when valid).

    Rules:
    - 8 to 128 characters
    - At least one uppercase letter, one lowercase letter, one digit
    - At least one special character
    """
    if not password:
        return ["Password is required"]

    missing = []
    if len(password) < PASSWORD_MIN_LENGTH:
        missing.append(f"At least {PASSWORD_MIN_LENGTH} characters")
    if len(password) > PASSWORD_MAX_LENGTH:
        missing.append(f"Maximum {PASSWORD_MAX_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        missing.append("At least one uppercase letter")
    if not re.search(r"[a-z]", password):
        missing.append("At least one lowercase letter")
    if not re.search(r"[0-9]", password):
        missing.append("At least one number")
    if not _SPECIAL_CHARS.search(password):
        missing.append("At least one special character")
    return missing


def get_password_requirements() -> List[str]:
    """Get list of all password requirements."""
    return [
        f"At least {PASSWORD_MIN_LENGTH} characters",
        f"Maximum {PASSWORD_MAX_LENGTH} characters",
        "At least one uppercase letter",
        "At least one lowercase letter",
        "At least one number",
        "At least one special character",
    ]
