"""
SessionService — password login, session issuance, and cookie policy.

Sessions are stateless: a signed assertion carried in an HttpOnly cookie.
There is no server-side session store, so logout only instructs the client
to drop the cookie; see SECURITY.md.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId

from config import AppSettings
from errors import DeactivatedError, InvalidCredentialsError, InvalidSessionError
from repositories.account_repository import AccountRepository
from schemas.models.account import AccountDoc
from services.token_codec import TokenCodec
from shared.crypto import verify_password
from shared.datetime_utils import utcnow
from shared.logging import get_logger
from shared.validators import looks_like_email, normalize_email

log = get_logger(__name__)

LOGIN_FAILED_MESSAGE = "Incorrect email or password"


@dataclass(frozen=True)
class CookieDirective:
    """Transport-neutral description of a Set-Cookie header."""

    name: str
    value: str
    max_age: int
    http_only: bool
    secure: bool
    samesite: str
    path: str = "/"


@dataclass(frozen=True)
class SessionGrant:
    account: AccountDoc
    token: str
    cookie: CookieDirective
    expires_at: datetime


def cookie_policy(settings: AppSettings) -> tuple[str, bool]:
    """Return the ``(samesite, secure)`` pair for the session cookie."""
    if settings.jwt.cross_origin_cookies:
        samesite = "none"
    elif settings.is_production:
        samesite = "strict"
    else:
        samesite = "lax"
    # Browsers reject SameSite=None cookies without Secure
    secure = samesite == "none" or settings.is_production
    return samesite, secure


class SessionService:
    def __init__(
        self,
        accounts: AccountRepository,
        codec: TokenCodec,
        settings: AppSettings,
    ) -> None:
        self._accounts = accounts
        self._codec = codec
        self._settings = settings

    def _cookie(self, value: str, max_age: int) -> CookieDirective:
        samesite, secure = cookie_policy(self._settings)
        return CookieDirective(
            name=self._settings.jwt.cookie_name,
            value=value,
            max_age=max_age,
            http_only=True,
            secure=secure,
            samesite=samesite,
        )

    def issue(self, account: AccountDoc) -> SessionGrant:
        """Sign a session for *account* and describe the cookie carrying it."""
        if not account.active:
            raise DeactivatedError("Your account has been deactivated")

        ttl = self._codec.session_ttl
        now = utcnow()
        token = self._codec.sign_assertion(str(account.id), ttl=ttl, now=now)
        return SessionGrant(
            account=account,
            token=token,
            cookie=self._cookie(token, ttl),
            expires_at=now + timedelta(seconds=ttl),
        )

    async def login(self, identifier: str, password: str) -> SessionGrant:
        """Authenticate by email or username and password.

        Every credential failure raises the same InvalidCredentialsError, so
        the response does not reveal whether the account exists.
        """
        identifier = (identifier or "").strip()
        if not identifier or not password:
            raise InvalidCredentialsError(LOGIN_FAILED_MESSAGE)

        if looks_like_email(identifier):
            account = await self._accounts.find_by_email(normalize_email(identifier))
        else:
            account = await self._accounts.find_by_username(identifier)

        if account is None or not account.password_hash:
            log.info("login_failed", reason="unknown_or_passwordless")
            raise InvalidCredentialsError(LOGIN_FAILED_MESSAGE)
        if not verify_password(password, account.password_hash):
            log.info("login_failed", reason="wrong_password", user_id=str(account.id))
            raise InvalidCredentialsError(LOGIN_FAILED_MESSAGE)

        if not account.active:
            log.info("login_refused_deactivated", user_id=str(account.id))
            raise DeactivatedError("Your account has been deactivated")

        await self._accounts.record_login(account.id, utcnow())
        log.info("login_succeeded", user_id=str(account.id))
        return self.issue(account)

    def logout(self) -> CookieDirective:
        """Clear-cookie directive. The assertion itself stays valid until expiry."""
        return self._cookie("", 0)

    async def authenticate(self, token: Optional[str]) -> AccountDoc:
        """Resolve a session assertion to its active account."""
        account_id = self._codec.verify_assertion(token or "")
        try:
            oid = ObjectId(account_id)
        except (InvalidId, TypeError):
            raise InvalidSessionError("Invalid session")

        account = await self._accounts.find_by_id(oid)
        if account is None:
            raise InvalidSessionError("The account for this session no longer exists")
        if not account.active:
            raise DeactivatedError("Your account has been deactivated")
        return account
