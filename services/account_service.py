"""
AccountService — self-service operations for a signed-in account.

- change_password: requires the current password when one is set
- update_profile: rename the account and merge profile fields
- is_username_available: case-insensitive availability check
- request_email_verification / confirm_email: verify the address of an
  account created without a verified email (typically via OAuth)
"""

from __future__ import annotations

from typing import Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from config import AppSettings
from errors import (
    ConflictError,
    DeliveryFailedError,
    InvalidCredentialsError,
    InvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)
from infrastructure.email.delivery import attempt_delivery
from infrastructure.email.protocol import EmailProvider
from repositories.account_repository import AccountRepository, duplicate_key_field
from schemas.models.account import AccountDoc, display_name, provider_tag
from services.registration_service import check_new_password, clean_profile_fields
from services.session_service import SessionGrant, SessionService
from services.token_codec import TokenCodec
from shared.crypto import hash_password, verify_password
from shared.datetime_utils import expires_in, utcnow
from shared.logging import get_logger
from shared.validators import validate_username

log = get_logger(__name__)


class AccountService:
    def __init__(
        self,
        accounts: AccountRepository,
        codec: TokenCodec,
        email_provider: EmailProvider,
        sessions: SessionService,
        settings: AppSettings,
    ) -> None:
        self._accounts = accounts
        self._codec = codec
        self._email = email_provider
        self._sessions = sessions
        self._verification_ttl = settings.tokens.registration_token_ttl_seconds

    async def _get(self, account_id: ObjectId) -> AccountDoc:
        account = await self._accounts.find_by_id(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    async def change_password(
        self,
        account_id: ObjectId,
        current_password: Optional[str],
        new_password: str,
        confirm_password: str,
    ) -> SessionGrant:
        """Replace the password and re-issue the session.

        An OAuth-only account has no current password to check; setting one
        makes it dual-credential.
        """
        account = await self._get(account_id)
        if account.password_hash and not verify_password(
            current_password or "", account.password_hash
        ):
            raise InvalidCredentialsError(
                "Your current password is wrong", field="current_password"
            )

        check_new_password(new_password, confirm_password)

        provider = account.external_identity.provider if account.external_identity else None
        updated = await self._accounts.update_password(
            account.id, hash_password(new_password), provider_tag(True, provider)
        )
        if updated is None:
            raise NotFoundError("Account not found")

        log.info("password_changed", user_id=str(account.id))
        return self._sessions.issue(updated)

    async def update_profile(
        self,
        account_id: ObjectId,
        *,
        username: Optional[str] = None,
        profile: Optional[dict] = None,
    ) -> AccountDoc:
        """Rename the account and merge the supplied profile fields.

        Fields left out of *profile* keep their stored values.
        """
        account = await self._get(account_id)

        new_username = None
        if username is not None and username.strip() != account.username:
            new_username = username.strip()
            problems = validate_username(new_username)
            if problems:
                raise ValidationError(
                    problems[0], field="username", details={"errors": problems}
                )
            if await self._accounts.username_exists(new_username, account.id):
                raise ConflictError(
                    "Username is already taken", reason="username_taken", field="username"
                )

        fields = clean_profile_fields(profile)
        if new_username is None and not fields:
            return account

        try:
            updated = await self._accounts.update_profile(
                account.id, username=new_username, profile_fields=fields
            )
        except DuplicateKeyError as e:
            if duplicate_key_field(e) != "username":
                raise
            raise ConflictError(
                "Username is already taken", reason="username_taken", field="username"
            )
        if updated is None:
            raise NotFoundError("Account not found")

        changed = sorted(fields) + (["username"] if new_username else [])
        log.info("profile_updated", user_id=str(account.id), fields=changed)
        return updated

    async def is_username_available(
        self, username: str, exclude_account_id: Optional[ObjectId] = None
    ) -> bool:
        username = (username or "").strip()
        problems = validate_username(username)
        if problems:
            raise ValidationError(problems[0], field="username", details={"errors": problems})
        return not await self._accounts.username_exists(username, exclude_account_id)

    async def request_email_verification(self, account_id: ObjectId) -> None:
        account = await self._get(account_id)
        if account.email_verified:
            raise ValidationError("Email is already verified", field="email")

        token = self._codec.new_opaque_token()
        token_hash = self._codec.hash(token)
        stored = await self._accounts.set_verification_token(
            account.id, token_hash, expires_in(self._verification_ttl), active=True
        )
        if not stored:
            raise NotFoundError("Account not found")

        sent = await attempt_delivery(
            self._email.send_verification_email(account.email, display_name(account), token),
            email_type="verification",
            to_email=account.email,
        )
        if not sent:
            await self._accounts.clear_verification_token(account.id, token_hash)
            raise DeliveryFailedError(
                "We could not send the verification email. Please try again."
            )

        log.info("email_verification_requested", user_id=str(account.id))

    async def confirm_email(self, raw_token: str) -> AccountDoc:
        account = await self._accounts.confirm_email(
            self._codec.hash(raw_token or ""), utcnow()
        )
        if account is None:
            raise InvalidOrExpiredError("Verification link is invalid or has expired")

        log.info("email_verified", user_id=str(account.id))
        return account
