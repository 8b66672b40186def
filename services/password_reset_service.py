"""
PasswordResetService — request a reset link, redeem it for a new password.

Requesting a reset for an unknown email is answered with NotFoundError. This
discloses whether an address is registered; see SECURITY.md.
"""

from __future__ import annotations

from config import AppSettings
from errors import (
    ConflictError,
    DeliveryFailedError,
    InvalidOrExpiredError,
    NotFoundError,
)
from infrastructure.email.delivery import attempt_delivery
from infrastructure.email.protocol import EmailProvider
from repositories.account_repository import AccountRepository
from schemas.models.account import display_name, is_registration_bridge, provider_tag
from services.registration_service import check_new_password
from services.session_service import SessionGrant, SessionService
from services.token_codec import TokenCodec
from shared.crypto import hash_password
from shared.datetime_utils import expires_in, utcnow
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)


class PasswordResetService:
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
        self._ttl = settings.tokens.reset_token_ttl_seconds

    async def request(self, email: str) -> None:
        email = normalize_email(email)
        account = await self._accounts.find_by_email(email)
        if account is None:
            raise NotFoundError("There is no user with that email address", field="email")
        if is_registration_bridge(account):
            raise ConflictError(
                "Registration for this email is not complete. "
                "Request a new link to finish it.",
                reason="resendable",
                field="email",
                details={"can_resend": True, "email": email},
            )

        token = self._codec.new_opaque_token()
        token_hash = self._codec.hash(token)
        await self._accounts.set_reset_token(account.id, token_hash, expires_in(self._ttl))

        sent = await attempt_delivery(
            self._email.send_password_reset_email(email, display_name(account), token),
            email_type="password_reset",
            to_email=email,
        )
        if not sent:
            await self._accounts.clear_reset_token(account.id, token_hash)
            raise DeliveryFailedError(
                "There was an error sending the email. Try again later!"
            )

        log.info("password_reset_requested", user_id=str(account.id))

    async def redeem(
        self, raw_token: str, password: str, confirm_password: str
    ) -> SessionGrant:
        """Set a new password using a reset link and start a session."""
        token_hash = self._codec.hash(raw_token or "")
        now = utcnow()
        account = await self._accounts.find_by_reset_token(token_hash, now)
        if account is None:
            raise InvalidOrExpiredError("Token is invalid or has expired")

        check_new_password(password, confirm_password)

        provider = account.external_identity.provider if account.external_identity else None
        updated = await self._accounts.redeem_reset_token(
            account.id,
            token_hash,
            now,
            password_hash=hash_password(password),
            auth_provider=provider_tag(True, provider),
        )
        if updated is None:
            raise InvalidOrExpiredError("Token is invalid or has expired")

        log.info("password_reset_completed", user_id=str(updated.id))
        return self._sessions.issue(updated)
