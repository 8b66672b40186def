"""
FastAPI dependency providers.

Long-lived collaborators (Mongo database, TokenCodec, email provider, OAuth
providers, rate limiter) are created once in the app lifespan and stored on
app.state.
Repositories and services are cheap and built per request from them, so
tests can swap any layer with app.dependency_overrides.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Request

from config import AppSettings
from errors import InvalidSessionError
from infrastructure.email.protocol import EmailProvider
from infrastructure.rate_limiter import SCOPE_AUTH, SCOPE_LOGOUT, RateLimiter
from repositories.account_repository import AccountRepository
from repositories.pending_registration_repository import PendingRegistrationRepository
from schemas.models.account import AccountDoc
from services.account_service import AccountService
from services.identity_linker import IdentityLinker
from services.password_reset_service import PasswordResetService
from services.registration_service import RegistrationService
from services.session_service import SessionService
from services.token_codec import TokenCodec
from shared.ip_utils import get_client_ip


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


async def get_db(request: Request):
    """Return the async MongoDB database from app.state."""
    return request.app.state.db


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def get_email_provider(request: Request) -> EmailProvider:
    return request.app.state.email_provider


def get_identity_providers(request: Request) -> dict:
    return request.app.state.identity_providers


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


# ── Repositories ──────────────────────────────────────────────────────────────


async def get_account_repository(db=Depends(get_db)) -> AccountRepository:
    return AccountRepository(db)


async def get_pending_registration_repository(
    db=Depends(get_db),
) -> PendingRegistrationRepository:
    return PendingRegistrationRepository(db)


# ── Services ──────────────────────────────────────────────────────────────────


def get_session_service(
    accounts: AccountRepository = Depends(get_account_repository),
    codec: TokenCodec = Depends(get_token_codec),
    settings: AppSettings = Depends(get_settings),
) -> SessionService:
    return SessionService(accounts, codec, settings)


def get_registration_service(
    accounts: AccountRepository = Depends(get_account_repository),
    pending: PendingRegistrationRepository = Depends(get_pending_registration_repository),
    codec: TokenCodec = Depends(get_token_codec),
    email_provider: EmailProvider = Depends(get_email_provider),
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> RegistrationService:
    return RegistrationService(accounts, pending, codec, email_provider, sessions, settings)


def get_password_reset_service(
    accounts: AccountRepository = Depends(get_account_repository),
    codec: TokenCodec = Depends(get_token_codec),
    email_provider: EmailProvider = Depends(get_email_provider),
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> PasswordResetService:
    return PasswordResetService(accounts, codec, email_provider, sessions, settings)


def get_account_service(
    accounts: AccountRepository = Depends(get_account_repository),
    codec: TokenCodec = Depends(get_token_codec),
    email_provider: EmailProvider = Depends(get_email_provider),
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> AccountService:
    return AccountService(accounts, codec, email_provider, sessions, settings)


def get_identity_linker(
    accounts: AccountRepository = Depends(get_account_repository),
    codec: TokenCodec = Depends(get_token_codec),
    providers: dict = Depends(get_identity_providers),
    settings: AppSettings = Depends(get_settings),
) -> IdentityLinker:
    return IdentityLinker(accounts, codec, providers, settings)


# ── Rate limits ───────────────────────────────────────────────────────────────


def _rate_limit(scope: str):
    # sync def: runs in the threadpool, the storage backend may do network I/O
    def check(
        request: Request, limiter: RateLimiter = Depends(get_rate_limiter)
    ) -> None:
        limiter.hit(
            scope,
            get_client_ip(request, trust_proxy_headers=limiter.trust_proxy_headers),
        )

    return check


auth_rate_limit = _rate_limit(SCOPE_AUTH)
logout_rate_limit = _rate_limit(SCOPE_LOGOUT)


# ── Auth ──────────────────────────────────────────────────────────────────────


def session_token_from_request(request: Request, cookie_name: str) -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token
    return request.cookies.get(cookie_name) or None


async def get_current_account(
    request: Request,
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> AccountDoc:
    token = session_token_from_request(request, settings.jwt.cookie_name)
    if not token:
        raise InvalidSessionError("You are not logged in! Please log in to get access.")
    return await sessions.authenticate(token)


CurrentAccount = Annotated[AccountDoc, Depends(get_current_account)]
