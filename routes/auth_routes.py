"""
Authentication routes.

Each handler parses its DTO, calls one workflow, and translates the result
into a response. Sessions travel in the cookie described by the workflow's
CookieDirective; the token is also echoed in the body for non-browser clients.

Endpoints opened from an email or an OAuth redirect answer with a redirect
to the frontend, carrying the error code in the query string on failure.

Endpoints that accept credentials or send email share the "auth" rate-limit
budget per client IP; logout has its own, looser one.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from config import AppSettings
from dependencies import (
    CurrentAccount,
    auth_rate_limit,
    get_account_service,
    get_identity_linker,
    get_password_reset_service,
    get_registration_service,
    get_session_service,
    get_settings,
    logout_rate_limit,
    session_token_from_request,
)
from errors import (
    AppError,
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidOrExpiredError,
)
from schemas.dto.requests.auth import (
    ChangePasswordRequest,
    CreateUserRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResendCreateUserEmailRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from schemas.dto.responses.auth import (
    AccountResponse,
    LoggedInResponse,
    MessageResponse,
    SessionResponse,
    UsernameAvailabilityResponse,
)
from services.account_service import AccountService
from services.identity_linker import IdentityLinker
from services.password_reset_service import PasswordResetService
from services.registration_service import RegistrationService
from services.session_service import CookieDirective, SessionGrant, SessionService
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

AUTH_LIMITED = [Depends(auth_rate_limit)]


# ── Helpers ───────────────────────────────────────────────────────────────────


def apply_cookie(response: Response, directive: CookieDirective) -> None:
    """Write a CookieDirective onto *response* as a Set-Cookie header."""
    if directive.max_age <= 0:
        response.set_cookie(
            directive.name,
            value="",
            max_age=0,
            expires=0,
            path=directive.path,
            secure=directive.secure,
            httponly=directive.http_only,
            samesite=directive.samesite,
        )
        return
    response.set_cookie(
        directive.name,
        value=directive.value,
        max_age=directive.max_age,
        path=directive.path,
        secure=directive.secure,
        httponly=directive.http_only,
        samesite=directive.samesite,
    )


def _session_body(grant: SessionGrant) -> dict:
    return SessionResponse(
        token=grant.token,
        expires_at=grant.expires_at.isoformat(),
        user=AccountResponse.from_account(grant.account),
    ).model_dump(exclude_none=True)


def _frontend_redirect(
    settings: AppSettings, path: str, params: Optional[dict] = None
) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=303)


# Error codes the registration pages of the frontend understand
_REGISTRATION_LINK_ERRORS = {
    InvalidOrExpiredError.error_code: "invalid_token",
    ConflictError.error_code: "email_already_registered",
}


def _safe_next_path(next_path: Optional[str]) -> Optional[str]:
    # relative paths only; "//host" would be treated as another origin
    if next_path and next_path.startswith("/") and not next_path.startswith("//"):
        return next_path
    return None


# ── Registration ──────────────────────────────────────────────────────────────


@router.post("/register", status_code=201, dependencies=AUTH_LIMITED)
async def register(
    body: RegisterRequest,
    registration: RegistrationService = Depends(get_registration_service),
) -> dict:
    await registration.start(body.email)
    return MessageResponse(
        message="Check your email to continue creating your account"
    ).model_dump()


@router.get("/verify-token/{token}")
async def verify_registration_token(
    token: str,
    registration: RegistrationService = Depends(get_registration_service),
    settings: AppSettings = Depends(get_settings),
) -> RedirectResponse:
    try:
        await registration.confirm(token)
    except AppError as e:
        log.info("registration_link_rejected", code=e.error_code)
        error = _REGISTRATION_LINK_ERRORS.get(e.error_code, e.error_code)
        return _frontend_redirect(settings, "/register", {"error": error})
    return _frontend_redirect(settings, "/create-user", {"token": token})


@router.post("/create-user", status_code=201, dependencies=AUTH_LIMITED)
async def create_user(
    body: CreateUserRequest,
    response: Response,
    registration: RegistrationService = Depends(get_registration_service),
) -> dict:
    grant = await registration.complete(
        body.token,
        body.username,
        body.password,
        body.confirm_password,
        profile=body.profile_fields(),
    )
    apply_cookie(response, grant.cookie)
    return _session_body(grant)


@router.post("/resend-create-user-email", dependencies=AUTH_LIMITED)
async def resend_create_user_email(
    body: ResendCreateUserEmailRequest,
    registration: RegistrationService = Depends(get_registration_service),
) -> dict:
    await registration.resend(body.email)
    return MessageResponse(
        message="A new link to complete your registration has been sent"
    ).model_dump()


# ── Sessions ──────────────────────────────────────────────────────────────────


@router.post("/login", dependencies=AUTH_LIMITED)
async def login(
    body: LoginRequest,
    response: Response,
    sessions: SessionService = Depends(get_session_service),
) -> dict:
    grant = await sessions.login(body.identifier, body.password)
    apply_cookie(response, grant.cookie)
    return _session_body(grant)


@router.post("/logout", dependencies=[Depends(logout_rate_limit)])
async def logout(
    response: Response,
    sessions: SessionService = Depends(get_session_service),
) -> dict:
    apply_cookie(response, sessions.logout())
    return MessageResponse(message="Logged out").model_dump()


@router.get("/me")
async def me(account: CurrentAccount) -> dict:
    return AccountResponse.from_account(account).model_dump(exclude_none=True)


@router.get("/is-logged-in")
async def is_logged_in(
    request: Request,
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> dict:
    token = session_token_from_request(request, settings.jwt.cookie_name)
    if not token:
        return LoggedInResponse(logged_in=False).model_dump(exclude_none=True)
    try:
        account = await sessions.authenticate(token)
    except (AuthenticationError, ForbiddenError):
        return LoggedInResponse(logged_in=False).model_dump(exclude_none=True)
    return LoggedInResponse(
        logged_in=True, user=AccountResponse.from_account(account)
    ).model_dump(exclude_none=True)


# ── Account maintenance ───────────────────────────────────────────────────────


@router.get("/check-username/{username}")
async def check_username(
    username: str,
    accounts: AccountService = Depends(get_account_service),
) -> dict:
    available = await accounts.is_username_available(username)
    return UsernameAvailabilityResponse(
        username=username, available=available
    ).model_dump()


@router.put("/password")
async def change_password(
    body: ChangePasswordRequest,
    response: Response,
    account: CurrentAccount,
    accounts: AccountService = Depends(get_account_service),
) -> dict:
    grant = await accounts.change_password(
        account.id, body.current_password, body.password, body.confirm_password
    )
    apply_cookie(response, grant.cookie)
    return _session_body(grant)


@router.put("/profile")
async def update_profile(
    body: UpdateProfileRequest,
    account: CurrentAccount,
    accounts: AccountService = Depends(get_account_service),
) -> dict:
    updated = await accounts.update_profile(
        account.id, username=body.username, profile=body.profile_fields()
    )
    return AccountResponse.from_account(updated).model_dump(exclude_none=True)


@router.post("/forgot-password", dependencies=AUTH_LIMITED)
async def forgot_password(
    body: ForgotPasswordRequest,
    resets: PasswordResetService = Depends(get_password_reset_service),
) -> dict:
    await resets.request(body.email)
    return MessageResponse(message="Token sent to email!").model_dump()


@router.post("/reset-password/{token}", dependencies=AUTH_LIMITED)
async def reset_password(
    token: str,
    body: ResetPasswordRequest,
    response: Response,
    resets: PasswordResetService = Depends(get_password_reset_service),
) -> dict:
    grant = await resets.redeem(token, body.password, body.confirm_password)
    apply_cookie(response, grant.cookie)
    return _session_body(grant)


@router.post("/resend-verification")
async def resend_verification(
    account: CurrentAccount,
    accounts: AccountService = Depends(get_account_service),
) -> dict:
    await accounts.request_email_verification(account.id)
    return MessageResponse(message="Verification email sent").model_dump()


@router.get("/verify-email/{token}")
async def verify_email(
    token: str,
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
) -> RedirectResponse:
    try:
        await accounts.confirm_email(token)
    except AppError as e:
        log.info("email_verification_link_rejected", code=e.error_code)
        return _frontend_redirect(settings, "/profile", {"error": e.error_code})
    return _frontend_redirect(settings, "/profile", {"email_verified": "true"})


# ── OAuth ─────────────────────────────────────────────────────────────────────


@router.get("/google")
async def google_login(
    next_path: Optional[str] = Query(default=None, alias="next"),
    linker: IdentityLinker = Depends(get_identity_linker),
) -> RedirectResponse:
    url = linker.authorization_url("google", _safe_next_path(next_path))
    return RedirectResponse(url, status_code=302)


@router.get("/google/callback")
async def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    linker: IdentityLinker = Depends(get_identity_linker),
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> RedirectResponse:
    if error:
        log.info("oauth_denied_by_user", provider="google", error=error)
        return _frontend_redirect(settings, "/login", {"error": "external_auth_failed"})

    try:
        account, state_data = await linker.sign_in("google", code or "", state or "")
        grant = sessions.issue(account)
    except AppError as e:
        log.info("oauth_callback_failed", provider="google", code=e.error_code)
        return _frontend_redirect(settings, "/login", {"error": e.error_code})

    redirect = _frontend_redirect(
        settings, _safe_next_path(state_data.get("next")) or "/dashboard"
    )
    apply_cookie(redirect, grant.cookie)
    return redirect
