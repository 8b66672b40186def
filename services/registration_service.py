"""
RegistrationService — email claim, email verification, account completion.

    NoRecord --start--> Pending --confirm--> Inactive(email verified) --complete--> Active

start()    records a pending claim for an email and mails a one-time link.
confirm()  redeems that link: the pending record is consumed atomically and an
           inactive account with a temporary username is created. The account
           inherits the pending record's token digest and expiry, so the same
           raw token authorises the completion step.
complete() sets the chosen username and password and activates the account.
resend()   re-issues the completion link for an account stranded between
           confirm() and complete().

Every raw token is mailed and then forgotten; only its SHA-256 digest is stored.
"""

from __future__ import annotations

from typing import Any, Optional

from pymongo.errors import DuplicateKeyError

from config import AppSettings
from errors import (
    ConflictError,
    DeliveryFailedError,
    InternalError,
    InvalidOrExpiredError,
    MismatchError,
    NotFoundError,
    ValidationError,
)
from infrastructure.email.delivery import attempt_delivery
from infrastructure.email.protocol import EmailProvider
from repositories.account_repository import AccountRepository, duplicate_key_field
from repositories.pending_registration_repository import PendingRegistrationRepository
from schemas.models.account import (
    AccountDoc,
    PROVIDER_LOCAL,
    display_name,
    is_registration_bridge,
    provider_tag,
    username_key,
)
from schemas.models.pending_registration import PendingRegistrationDoc
from services.session_service import SessionGrant, SessionService
from services.token_codec import TokenCodec
from shared.crypto import hash_password
from shared.datetime_utils import expires_in, utcnow
from shared.generators import generate_temp_username
from shared.logging import get_logger
from shared.validators import (
    FITNESS_LEVELS,
    get_password_requirements,
    normalize_email,
    validate_email,
    validate_password,
    validate_username,
)

log = get_logger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "height", "weight", "fitness_level")


def check_new_password(password: str, confirm_password: str) -> None:
    """Raise MismatchError / ValidationError for an unacceptable new password."""
    if password != confirm_password:
        raise MismatchError("Passwords do not match", field="confirm_password")
    missing = validate_password(password)
    if missing:
        raise ValidationError(
            "Password does not meet requirements",
            field="password",
            details={
                "missing_requirements": missing,
                "requirements": get_password_requirements(),
            },
        )


def clean_profile_fields(profile: Optional[dict]) -> dict:
    """Keep the known profile fields that were supplied, validating each."""
    fields: dict[str, Any] = {}
    for key in PROFILE_FIELDS:
        value = (profile or {}).get(key)
        if value is None or value == "":
            continue
        if key in ("height", "weight"):
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a number", field=key)
            if value <= 0:
                raise ValidationError(f"{key} must be positive", field=key)
        elif key == "fitness_level":
            if value not in FITNESS_LEVELS:
                raise ValidationError(
                    "Invalid fitness level",
                    field=key,
                    details={"allowed": list(FITNESS_LEVELS)},
                )
        else:
            value = str(value).strip()
        fields[key] = value
    return fields


class RegistrationService:
    def __init__(
        self,
        accounts: AccountRepository,
        pending: PendingRegistrationRepository,
        codec: TokenCodec,
        email_provider: EmailProvider,
        sessions: SessionService,
        settings: AppSettings,
    ) -> None:
        self._accounts = accounts
        self._pending = pending
        self._codec = codec
        self._email = email_provider
        self._sessions = sessions
        self._ttl = settings.tokens.registration_token_ttl_seconds
        self._username_attempts = settings.tokens.username_max_attempts

    # ── Claim ────────────────────────────────────────────────────────────────

    async def start(self, email: str) -> None:
        """Record a pending claim for *email* and send the registration link."""
        email = normalize_email(email)
        if not validate_email(email):
            raise ValidationError("Please provide a valid email address", field="email")

        existing = await self._accounts.find_by_email(email)
        if existing is not None:
            if existing.active:
                raise ConflictError(
                    "An account with this email already exists. Please log in.",
                    reason="active",
                    field="email",
                )
            if is_registration_bridge(existing):
                raise ConflictError(
                    "Registration for this email is not complete. "
                    "Request a new link to finish it.",
                    reason="resendable",
                    field="email",
                    details={"can_resend": True, "email": email},
                )
            raise ConflictError(
                "This account has been deactivated",
                reason="deactivated",
                field="email",
            )

        # A newer claim supersedes any earlier one
        await self._pending.delete_by_email(email)

        token = self._codec.new_opaque_token()
        now = utcnow()
        record = PendingRegistrationDoc(
            email=email,
            token_hash=self._codec.hash(token),
            expires_at=expires_in(self._ttl, now),
            created_at=now,
        )
        try:
            pending_id = await self._pending.insert(record)
        except DuplicateKeyError:
            log.info("registration_claim_race_lost", email=email)
            raise ConflictError(
                "A registration for this email is already in progress",
                reason="pending",
                field="email",
            )

        sent = await attempt_delivery(
            self._email.send_registration_email(email, token),
            email_type="registration",
            to_email=email,
        )
        if not sent:
            await self._pending.delete_by_id(pending_id)
            raise DeliveryFailedError(
                "We could not send the registration email. Please try again."
            )

        log.info("registration_started", email=email)

    # ── Verify ───────────────────────────────────────────────────────────────

    async def confirm(self, raw_token: str) -> AccountDoc:
        """Redeem a registration link, creating the inactive account."""
        now = utcnow()
        record = await self._pending.consume(self._codec.hash(raw_token or ""), now)
        if record is None:
            raise InvalidOrExpiredError("Registration link is invalid or has expired")

        if await self._accounts.find_by_email(record.email) is not None:
            raise ConflictError(
                "An account with this email already exists",
                reason="exists",
                field="email",
            )

        try:
            account = await self._create_inactive_account(record, now)
        except ConflictError:
            raise
        except Exception as e:
            log.error(
                "registration_account_create_failed",
                email=record.email,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._restore_pending(record)
            raise

        log.info("registration_email_verified", email=record.email, user_id=str(account.id))
        return account

    async def _create_inactive_account(
        self, record: PendingRegistrationDoc, now
    ) -> AccountDoc:
        for attempt in range(1, self._username_attempts + 1):
            username = generate_temp_username(record.email, now)
            if await self._accounts.username_exists(username):
                log.debug("temp_username_taken", attempt=attempt)
                continue

            account = AccountDoc(
                email=record.email,
                username=username,
                username_lower=username_key(username),
                auth_provider=PROVIDER_LOCAL,
                active=False,
                email_verified=True,
                verification_token_hash=record.token_hash,
                verification_expires_at=record.expires_at,
                created_at=now,
                updated_at=now,
            )
            try:
                account.id = await self._accounts.insert(account)
            except DuplicateKeyError as e:
                if duplicate_key_field(e) == "username":
                    log.debug("temp_username_taken", attempt=attempt)
                    continue
                raise ConflictError(
                    "An account with this email already exists",
                    reason="exists",
                    field="email",
                )
            return account

        raise InternalError("Could not allocate a username. Please try again.")

    async def _restore_pending(self, record: PendingRegistrationDoc) -> None:
        try:
            await self._pending.insert(record)
        except DuplicateKeyError:
            # a fresh claim for the email was recorded in the meantime
            log.warning("pending_registration_restore_skipped", email=record.email)

    # ── Activate ─────────────────────────────────────────────────────────────

    async def complete(
        self,
        raw_token: str,
        username: str,
        password: str,
        confirm_password: str,
        profile: Optional[dict] = None,
    ) -> SessionGrant:
        """Choose username and password, activate the account, start a session."""
        token_hash = self._codec.hash(raw_token or "")
        now = utcnow()
        account = await self._accounts.find_by_verification_token(
            token_hash, now, email_verified=True
        )
        if account is None or not is_registration_bridge(account):
            raise InvalidOrExpiredError("Registration link is invalid or has expired")

        check_new_password(password, confirm_password)

        username = (username or "").strip()
        problems = validate_username(username)
        if problems:
            raise ValidationError(problems[0], field="username", details={"errors": problems})
        profile_fields = clean_profile_fields(profile)

        if await self._accounts.username_exists(username, exclude_id=account.id):
            raise ConflictError(
                "Username is already taken", reason="username_taken", field="username"
            )

        try:
            activated = await self._accounts.activate(
                account.id,
                token_hash,
                now,
                username=username,
                password_hash=hash_password(password),
                auth_provider=provider_tag(True, None),
                profile_fields=profile_fields,
            )
        except DuplicateKeyError:
            raise ConflictError(
                "Username is already taken", reason="username_taken", field="username"
            )
        if activated is None:
            raise InvalidOrExpiredError("Registration link is invalid or has expired")

        log.info("registration_completed", user_id=str(activated.id), username=username)

        await attempt_delivery(
            self._email.send_welcome_email(activated.email, display_name(activated)),
            email_type="welcome",
            to_email=activated.email,
        )
        return self._sessions.issue(activated)

    # ── Resend ───────────────────────────────────────────────────────────────

    async def resend(self, email: str) -> None:
        """Replace the completion link of a stranded registration and mail it."""
        email = normalize_email(email)
        account = await self._accounts.find_by_email(email)
        if account is None or not is_registration_bridge(account):
            raise NotFoundError("No incomplete registration found for this email")

        token = self._codec.new_opaque_token()
        token_hash = self._codec.hash(token)
        updated = await self._accounts.set_verification_token(
            account.id, token_hash, expires_in(self._ttl), active=False
        )
        if not updated:
            raise NotFoundError("No incomplete registration found for this email")

        sent = await attempt_delivery(
            self._email.send_resend_email(email, token),
            email_type="resend_registration",
            to_email=email,
        )
        if not sent:
            await self._accounts.clear_verification_token(account.id, token_hash)
            raise DeliveryFailedError(
                "We could not send the registration email. Please try again."
            )

        log.info("registration_link_resent", email=email, user_id=str(account.id))
