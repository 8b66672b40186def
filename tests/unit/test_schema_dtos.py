"""Unit tests for request and response DTOs."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from schemas.dto.requests.auth import (
    ChangePasswordRequest,
    CreateUserRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from schemas.dto.responses.auth import (
    AccountResponse,
    LoggedInResponse,
    MessageResponse,
    SessionResponse,
)
from schemas.models.account import AccountDoc, AccountProfile, ExternalIdentityRef

LINKED_AT = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)


# ── Requests ──────────────────────────────────────────────────────────────────


class TestRegisterRequest:
    def test_requires_email(self):
        with pytest.raises(ValidationError):
            RegisterRequest.model_validate({})

    def test_accepts_raw_string(self):
        # normalisation and format checks happen in the workflow
        assert RegisterRequest(email=" A@B.com ").email == " A@B.com "


class TestCreateUserRequest:
    def test_snake_case(self):
        req = CreateUserRequest.model_validate(
            {
                "token": "t",
                "username": "runner",
                "password": "P4ss!word",
                "confirm_password": "P4ss!word",
                "height": 180,
            }
        )
        assert req.confirm_password == "P4ss!word"
        assert req.profile_fields() == {"height": 180.0}

    def test_camel_case_aliases(self):
        req = CreateUserRequest.model_validate(
            {
                "token": "t",
                "username": "runner",
                "password": "P4ss!word",
                "passwordConfirm": "P4ss!word",
                "firstName": "Rae",
                "lastName": "Runner",
                "fitnessLevel": "advanced",
            }
        )
        assert req.profile_fields() == {
            "first_name": "Rae",
            "last_name": "Runner",
            "fitness_level": "advanced",
        }

    def test_missing_confirmation(self):
        with pytest.raises(ValidationError):
            CreateUserRequest.model_validate(
                {"token": "t", "username": "runner", "password": "P4ss!word"}
            )

    def test_non_numeric_height(self):
        with pytest.raises(ValidationError):
            CreateUserRequest.model_validate(
                {
                    "token": "t",
                    "username": "runner",
                    "password": "p",
                    "confirm_password": "p",
                    "height": "tall",
                }
            )


class TestLoginRequest:
    @pytest.mark.parametrize("key", ["identifier", "email", "username"], ids=["identifier", "email", "username"])
    def test_identifier_aliases(self, key):
        req = LoginRequest.model_validate({key: "runner", "password": "x"})
        assert req.identifier == "runner"

    def test_requires_password(self):
        with pytest.raises(ValidationError):
            LoginRequest.model_validate({"email": "a@b.com"})


class TestPasswordRequests:
    def test_change_password_current_optional(self):
        req = ChangePasswordRequest.model_validate(
            {"password": "N3w!pass", "passwordConfirm": "N3w!pass"}
        )
        assert req.current_password is None

    def test_change_password_camel_current(self):
        req = ChangePasswordRequest.model_validate(
            {"passwordCurrent": "old", "password": "n", "confirm_password": "n"}
        )
        assert req.current_password == "old"

    def test_reset_requires_confirmation(self):
        with pytest.raises(ValidationError):
            ResetPasswordRequest.model_validate({"password": "n"})


class TestUpdateProfileRequest:
    def test_nested_camel_case_profile(self):
        req = UpdateProfileRequest.model_validate(
            {"profile": {"firstName": "Mo", "weight": 71.5, "fitnessLevel": "advanced"}}
        )
        assert req.username is None
        assert req.profile_fields() == {
            "first_name": "Mo",
            "weight": 71.5,
            "fitness_level": "advanced",
        }

    def test_username_only(self):
        req = UpdateProfileRequest.model_validate({"username": "Mo"})
        assert req.profile_fields() == {}

    def test_non_numeric_height(self):
        with pytest.raises(ValidationError):
            UpdateProfileRequest.model_validate({"profile": {"height": "tall"}})


# ── Responses ─────────────────────────────────────────────────────────────────


def _account(**overrides) -> AccountDoc:
    fields = dict(
        id=ObjectId(),
        email="rae@example.com",
        username="rae",
        password_hash="$argon2id$secret",
        email_verified=True,
        verification_token_hash="digest-v",
        reset_token_hash="digest-r",
        profile=AccountProfile(first_name="Rae", height=170.0, bio="private"),
    )
    fields.update(overrides)
    return AccountDoc(**fields)


class TestAccountResponse:
    def test_hides_secrets(self):
        dumped = AccountResponse.from_account(_account()).model_dump()
        flat = str(dumped)
        assert "argon2" not in flat
        assert "digest" not in flat
        assert dumped["password_set"] is True
        assert "bio" not in dumped["profile"]

    def test_id_is_string(self):
        account = _account()
        assert AccountResponse.from_account(account).id == str(account.id)

    def test_linked_identity(self):
        account = _account(
            password_hash=None,
            auth_provider="google",
            external_identity=ExternalIdentityRef(
                provider="google",
                external_id="secret-sub",
                email="rae@gmail.com",
                linked_at=LINKED_AT,
            ),
        )
        dumped = AccountResponse.from_account(account).model_dump(exclude_none=True)
        assert dumped["password_set"] is False
        assert dumped["external_identity"] == {
            "provider": "google",
            "email": "rae@gmail.com",
            "linked_at": LINKED_AT.isoformat(),
        }

    def test_no_identity_omitted(self):
        dumped = AccountResponse.from_account(_account()).model_dump(exclude_none=True)
        assert "external_identity" not in dumped


class TestEnvelopes:
    def test_session_response_defaults(self):
        body = SessionResponse(
            token="jwt",
            expires_at=LINKED_AT.isoformat(),
            user=AccountResponse.from_account(_account()),
        ).model_dump()
        assert body["status"] == "success"
        assert body["user"]["email"] == "rae@example.com"

    def test_message_response(self):
        assert MessageResponse(message="ok").model_dump() == {"status": "success", "message": "ok"}

    def test_logged_out_omits_user(self):
        assert LoggedInResponse(logged_in=False).model_dump(exclude_none=True) == {
            "logged_in": False
        }
