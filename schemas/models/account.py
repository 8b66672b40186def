"""
Account document model.

Maps to the `users` MongoDB collection.

Three creation paths produce slightly different shapes:
- Registration (email verification step): inactive, temporary username,
  no password, verification token hash carried over from the pending record
- OAuth: active, no password, external_identity set
- Both credentials: only after an explicit link of one to the other

Token fields only ever hold SHA-256 digests. Fields that back sparse or
partial indexes are omitted from the stored document while None.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import BaseModel

from schemas.models.base import MongoBaseModel

PROVIDER_LOCAL = "local"

ROLE_USER = "user"


class ExternalIdentityRef(BaseModel):
    """Cached snapshot of the linked OAuth identity."""

    provider: str
    external_id: str
    email: Optional[str] = None
    picture: Optional[str] = None
    email_verified: bool = False
    linked_at: Optional[datetime] = None


class AccountProfile(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    height: Optional[float] = None  # cm
    weight: Optional[float] = None  # kg
    fitness_level: str = "beginner"
    bio: Optional[str] = None


class AccountDoc(MongoBaseModel):
    """
    Document model for the `users` collection.

    auth_provider values: "local", "<provider>", "<provider>+local"
    role values: "user", "premium", "admin"
    """

    _omit_when_none: ClassVar[tuple[str, ...]] = (
        "external_identity",
        "verification_token_hash",
        "reset_token_hash",
    )

    email: str
    username: Optional[str] = None
    username_lower: Optional[str] = None
    password_hash: Optional[str] = None
    external_identity: Optional[ExternalIdentityRef] = None
    auth_provider: str = PROVIDER_LOCAL
    active: bool = True
    email_verified: bool = False
    verification_token_hash: Optional[str] = None
    verification_expires_at: Optional[datetime] = None
    reset_token_hash: Optional[str] = None
    reset_expires_at: Optional[datetime] = None
    role: str = ROLE_USER
    profile: AccountProfile = AccountProfile()
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def username_key(username: str) -> str:
    """Case-insensitive uniqueness key stored in ``username_lower``."""
    return username.strip().lower()


def provider_tag(has_password: bool, provider: Optional[str]) -> str:
    """Derive the ``auth_provider`` tag from the credentials an account holds."""
    if provider and has_password:
        return f"{provider}+{PROVIDER_LOCAL}"
    if provider:
        return provider
    return PROVIDER_LOCAL


def display_name(account: AccountDoc) -> str:
    """Name used in email greetings: full name, then username, then email."""
    profile = account.profile
    if profile.first_name and profile.last_name:
        return f"{profile.first_name} {profile.last_name}"
    return account.username or account.email


def is_registration_bridge(account: AccountDoc) -> bool:
    """True for an account stranded between email verification and activation.

    Such an account is inactive, has a verified email and holds neither a
    password nor an external identity.
    """
    return (
        not account.active
        and account.email_verified
        and not account.password_hash
        and account.external_identity is None
    )
