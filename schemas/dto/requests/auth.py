"""
Request DTOs for authentication endpoints.

RegisterRequest               — POST /auth/register
CreateUserRequest             — POST /auth/create-user
ResendCreateUserEmailRequest  — POST /auth/resend-create-user-email
LoginRequest                  — POST /auth/login
ChangePasswordRequest         — PUT  /auth/password
UpdateProfileRequest          — PUT  /auth/profile
ForgotPasswordRequest         — POST /auth/forgot-password
ResetPasswordRequest          — POST /auth/reset-password/{token}
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(populate_by_name=True)

    email: str


class CreateUserRequest(BaseModel):
    """Request body for POST /auth/create-user.

    ``token`` is the raw registration token from the emailed link. Profile
    fields are optional and validated by the registration workflow.
    """

    model_config = ConfigDict(populate_by_name=True)

    token: str
    username: str
    password: str
    confirm_password: str = Field(
        validation_alias=AliasChoices("confirm_password", "passwordConfirm")
    )
    first_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("last_name", "lastName")
    )
    height: Optional[float] = None
    weight: Optional[float] = None
    fitness_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fitness_level", "fitnessLevel")
    )

    def profile_fields(self) -> dict:
        return self.model_dump(
            include={"first_name", "last_name", "height", "weight", "fitness_level"},
            exclude_none=True,
        )


class ResendCreateUserEmailRequest(BaseModel):
    """Request body for POST /auth/resend-create-user-email."""

    model_config = ConfigDict(populate_by_name=True)

    email: str


class LoginRequest(BaseModel):
    """Request body for POST /auth/login.

    ``identifier`` is an email address or a username; ``email`` and
    ``username`` are accepted as aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    identifier: str = Field(
        validation_alias=AliasChoices("identifier", "email", "username")
    )
    password: str


class ChangePasswordRequest(BaseModel):
    """Request body for PUT /auth/password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("current_password", "passwordCurrent"),
    )
    password: str
    confirm_password: str = Field(
        validation_alias=AliasChoices("confirm_password", "passwordConfirm")
    )


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /auth/forgot-password."""

    model_config = ConfigDict(populate_by_name=True)

    email: str


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password/{token}."""

    model_config = ConfigDict(populate_by_name=True)

    password: str
    confirm_password: str = Field(
        validation_alias=AliasChoices("confirm_password", "passwordConfirm")
    )


class ProfileFieldsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("last_name", "lastName")
    )
    height: Optional[float] = None
    weight: Optional[float] = None
    fitness_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("fitness_level", "fitnessLevel")
    )


class UpdateProfileRequest(BaseModel):
    """Request body for PUT /auth/profile.

    Only the supplied fields change. Avatar images are not accepted here.
    """

    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = None
    profile: Optional[ProfileFieldsRequest] = None

    def profile_fields(self) -> dict:
        if self.profile is None:
            return {}
        return self.profile.model_dump(exclude_none=True)
