"""OAuth identity providers.

Each provider turns an authorization code into a verified ExternalIdentity.
The token exchange goes through Authlib's httpx OAuth2 client; the returned
OpenID Connect ID token is verified locally (signature against the provider's
JWKS, issuer, audience, expiry) with PyJWT before any claim is trusted.

Every upstream failure surfaces as ExternalAuthError so callers never touch
local state on a failed exchange.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Protocol

import httpx
import jwt
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from pydantic import BaseModel

from config import OAuthProviderSettings
from errors import ExternalAuthError
from infrastructure.http_client import HttpClient
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)

GOOGLE = "google"

_GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
_GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")
_JWKS_MAX_AGE_SECONDS = 3600


class ExternalIdentity(BaseModel):
    """Identity asserted by an OAuth provider after a successful exchange."""

    provider: str
    external_id: str
    email: str
    email_verified: bool = False
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None


class IdentityProvider(Protocol):
    name: str

    def authorization_url(self, state: str) -> str: ...

    async def exchange_code(self, code: str) -> ExternalIdentity: ...


def identity_from_google_claims(claims: Dict[str, Any]) -> ExternalIdentity:
    """Map verified Google ID-token claims onto an ExternalIdentity."""
    subject = claims.get("sub")
    email = normalize_email(claims.get("email"))
    if not subject or not email:
        raise ExternalAuthError("Google did not return an account id and email")
    return ExternalIdentity(
        provider=GOOGLE,
        external_id=str(subject),
        email=email,
        email_verified=claims.get("email_verified") in (True, "true"),
        given_name=claims.get("given_name") or None,
        family_name=claims.get("family_name") or None,
        picture=claims.get("picture") or None,
    )


class GoogleIdentityProvider:
    name = GOOGLE

    def __init__(self, settings: OAuthProviderSettings, http_client: HttpClient) -> None:
        self._client_id = settings.google_oauth_client_id
        self._client_secret = settings.google_oauth_client_secret
        self._redirect_uri = settings.google_oauth_redirect_uri
        self._http = http_client
        self._jwks: Optional[jwt.PyJWKSet] = None
        self._jwks_fetched_at = 0.0

    def _oauth_client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self._client_id,
            client_secret=self._client_secret,
            redirect_uri=self._redirect_uri,
            scope="openid email profile",
        )

    def authorization_url(self, state: str) -> str:
        uri, _ = self._oauth_client().create_authorization_url(
            _GOOGLE_AUTHORIZE_URL, state=state, prompt="select_account"
        )
        return uri

    async def _signing_keys(self, refresh: bool = False) -> jwt.PyJWKSet:
        stale = time.monotonic() - self._jwks_fetched_at > _JWKS_MAX_AGE_SECONDS
        if self._jwks is None or stale or refresh:
            self._jwks = jwt.PyJWKSet.from_dict(await self._http.get_json(_GOOGLE_JWKS_URL))
            self._jwks_fetched_at = time.monotonic()
        return self._jwks

    async def _signing_key(self, kid: Optional[str]) -> Any:
        keys = await self._signing_keys()
        for refresh in (False, True):
            if refresh:
                # key rotation: the cached set may predate the token
                keys = await self._signing_keys(refresh=True)
            for key in keys.keys:
                if key.key_id == kid:
                    return key.key
        raise ExternalAuthError("Google ID token signed with an unknown key")

    async def verify_id_token(self, id_token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(id_token)
            key = await self._signing_key(header.get("kid"))
            claims = jwt.decode(
                id_token,
                key,
                algorithms=["RS256"],
                audience=self._client_id,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as e:
            log.warning("oauth_id_token_rejected", provider=GOOGLE, error=str(e))
            raise ExternalAuthError("Google identity could not be verified")
        except (httpx.HTTPError, ValueError) as e:
            log.error(
                "oauth_jwks_fetch_failed",
                provider=GOOGLE,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalAuthError("Google identity could not be verified")

        if claims.get("iss") not in _GOOGLE_ISSUERS:
            log.warning("oauth_id_token_rejected", provider=GOOGLE, error="bad_issuer")
            raise ExternalAuthError("Google identity could not be verified")
        return claims

    async def exchange_code(self, code: str) -> ExternalIdentity:
        if not code:
            raise ExternalAuthError("Missing authorization code")

        try:
            async with self._oauth_client() as client:
                token = await client.fetch_token(_GOOGLE_TOKEN_URL, code=code)
        except (OAuthError, httpx.HTTPError, ValueError) as e:
            log.warning(
                "oauth_code_exchange_failed",
                provider=GOOGLE,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalAuthError("Google sign-in failed")

        id_token = token.get("id_token")
        if not id_token:
            raise ExternalAuthError("Google did not return an ID token")

        return identity_from_google_claims(await self.verify_id_token(id_token))


def build_identity_providers(
    settings: OAuthProviderSettings, http_client: HttpClient
) -> Dict[str, IdentityProvider]:
    """Instantiate every provider that has credentials configured."""
    providers: Dict[str, IdentityProvider] = {}

    if settings.google_oauth_client_id and settings.google_oauth_client_secret:
        providers[GOOGLE] = GoogleIdentityProvider(settings, http_client)
        log.info("oauth_provider_initialized", provider=GOOGLE)

    if not providers:
        log.warning("oauth_no_providers_configured")
    return providers
