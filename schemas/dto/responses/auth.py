"""
Response DTOs for authentication endpoints.

ExternalIdentityInfo  — linked OAuth identity inside AccountResponse
ProfileInfo           — profile block inside AccountResponse
AccountResponse       — public view of an account (never includes hashes)
SessionResponse       — login / create-user / reset-password / password change
MessageResponse       — endpoints that only acknowledge
LoggedInResponse      — GET /auth/is-logged-in
UsernameAvailabilityResponse — GET /auth/check-username/{username}
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.account import AccountDoc


class ExternalIdentityInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    email: Optional[str] = None
    linked_at: Optional[str] = None  # ISO 8601 string


class ProfileInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    fitness_level: str = "beginner"


class AccountResponse(BaseModel):
    """Public account shape used by every endpoint that returns a user."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    username: Optional[str] = None
    email_verified: bool
    active: bool
    role: str
    auth_provider: str
    password_set: bool
    external_identity: Optional[ExternalIdentityInfo] = None
    profile: ProfileInfo

    @classmethod
    def from_account(cls, account: AccountDoc) -> "AccountResponse":
        linked = account.external_identity
        return cls(
            id=str(account.id),
            email=account.email,
            username=account.username,
            email_verified=account.email_verified,
            active=account.active,
            role=account.role,
            auth_provider=account.auth_provider,
            password_set=bool(account.password_hash),
            external_identity=(
                ExternalIdentityInfo(
                    provider=linked.provider,
                    email=linked.email,
                    linked_at=linked.linked_at.isoformat() if linked.linked_at else None,
                )
                if linked
                else None
            ),
            profile=ProfileInfo(**account.profile.model_dump(exclude={"bio"})),
        )


class SessionResponse(BaseModel):
    """Response body for requests that start a session (200 / 201)."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    token: str
    expires_at: str
    user: AccountResponse


class MessageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    message: str


class LoggedInResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    logged_in: bool
    user: Optional[AccountResponse] = None


class UsernameAvailabilityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    available: bool
