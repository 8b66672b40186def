"""Unit tests for the infrastructure layer: HTTP client, email delivery, OAuth providers, rate limits."""

import json
import time
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from config import EmailSettings, OAuthProviderSettings, RateLimitSettings, TokenSettings
from errors import ExternalAuthError, RateLimitError
from infrastructure.email.delivery import attempt_delivery
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.oauth_clients import (
    GOOGLE,
    GoogleIdentityProvider,
    build_identity_providers,
    identity_from_google_claims,
)
from infrastructure.rate_limiter import SCOPE_AUTH, SCOPE_LOGOUT, RateLimiter
from tests.fakes import make_settings

CLIENT_ID = "client-id.apps.googleusercontent.com"


# ── Helpers ───────────────────────────────────────────────────────────────────


def _oauth_settings(**overrides) -> OAuthProviderSettings:
    fields = dict(
        google_oauth_client_id=CLIENT_ID,
        google_oauth_client_secret="client-secret",
        google_oauth_redirect_uri="https://api.example.com/auth/google/callback",
    )
    fields.update(overrides)
    return OAuthProviderSettings(**fields)


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(rsa_key) -> dict:
    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_key.public_key()))
    jwk.update({"kid": "key-1", "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


def _id_token(rsa_key, kid="key-1", **overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": "1098765",
        "email": "Runner@Example.com",
        "email_verified": True,
        "given_name": "Rae",
        "family_name": "Runner",
        "picture": "https://lh3.googleusercontent.com/a/rae",
        "iat": now,
        "exp": now + 600,
    }
    claims.update(overrides)
    return jwt.encode(claims, rsa_key, algorithm="RS256", headers={"kid": kid})


# ── HttpClient ────────────────────────────────────────────────────────────────


class TestHttpClient:
    async def test_post_delegates_to_httpx(self, mocker):
        client = HttpClient()
        fake_resp = MagicMock(status_code=200)
        mocker.patch.object(client._client, "post", return_value=fake_resp)
        resp = await client.post("http://example.com")
        assert resp.status_code == 200
        await client.aclose()

    async def test_post_propagates_exception(self, mocker):
        client = HttpClient()
        mocker.patch.object(client._client, "post", side_effect=httpx.ConnectTimeout("timeout"))
        with pytest.raises(httpx.ConnectTimeout):
            await client.post("http://example.com")
        await client.aclose()

    async def test_get_json_decodes_body(self, mocker):
        client = HttpClient()
        request = httpx.Request("GET", "http://example.com/keys")
        mocker.patch.object(
            client._client,
            "get",
            return_value=httpx.Response(200, json={"keys": []}, request=request),
        )
        assert await client.get_json("http://example.com/keys") == {"keys": []}
        await client.aclose()

    async def test_get_json_raises_on_error_status(self, mocker):
        client = HttpClient()
        request = httpx.Request("GET", "http://example.com/keys")
        mocker.patch.object(
            client._client, "get", return_value=httpx.Response(503, request=request)
        )
        with pytest.raises(httpx.HTTPStatusError):
            await client.get_json("http://example.com/keys")
        await client.aclose()

    async def test_sends_user_agent(self):
        client = HttpClient(user_agent="fitness-tests")
        assert client._client.headers["User-Agent"] == "fitness-tests"
        await client.aclose()


# ── attempt_delivery ──────────────────────────────────────────────────────────


class TestAttemptDelivery:
    async def test_success(self):
        send = AsyncMock(return_value=True)
        assert await attempt_delivery(send(), email_type="welcome", to_email="a@e.com") is True

    async def test_false_is_failure(self):
        send = AsyncMock(return_value=False)
        assert await attempt_delivery(send(), email_type="welcome", to_email="a@e.com") is False

    async def test_exception_is_failure(self):
        send = AsyncMock(side_effect=RuntimeError("smtp down"))
        assert await attempt_delivery(send(), email_type="welcome", to_email="a@e.com") is False


# ── ZeptoMailProvider ─────────────────────────────────────────────────────────


class TestZeptoMailProvider:
    def _make(self, token="test-token"):
        settings = EmailSettings(
            zepto_api_token=token,
            zepto_from_email="noreply@fitness.example",
            zepto_from_name="Fitness Tracker",
        )
        http = MagicMock()
        http.post = AsyncMock(return_value=MagicMock(status_code=200))
        provider = ZeptoMailProvider(
            settings=settings,
            http_client=http,
            app_url="https://api.fitness.example/",
            frontend_url="https://fitness.example",
            tokens=TokenSettings(),
        )
        return provider, http

    def _payload(self, http) -> dict:
        _, kwargs = http.post.call_args
        return kwargs["json"]

    async def test_registration_link_points_at_api(self):
        provider, http = self._make()
        assert await provider.send_registration_email("new@e.com", "tok123") is True
        payload = self._payload(http)
        link = "https://api.fitness.example/auth/verify-token/tok123"
        assert link in payload["htmlbody"]
        assert link in payload["textbody"]
        assert "24 hours" in payload["textbody"]
        assert payload["to"][0]["email_address"]["address"] == "new@e.com"
        assert payload["from"]["address"] == "noreply@fitness.example"

    async def test_resend_uses_same_redeem_endpoint(self):
        provider, http = self._make()
        await provider.send_resend_email("new@e.com", "tok456")
        assert "/auth/verify-token/tok456" in self._payload(http)["htmlbody"]

    async def test_reset_link_points_at_frontend(self):
        provider, http = self._make()
        await provider.send_password_reset_email("u@e.com", "Rae Runner", "r3set")
        payload = self._payload(http)
        assert "https://fitness.example/reset-password/r3set" in payload["htmlbody"]
        assert "60 minutes" in payload["textbody"]
        assert payload["to"][0]["email_address"]["name"] == "Rae Runner"

    async def test_verification_link_points_at_api(self):
        provider, http = self._make()
        await provider.send_verification_email("u@e.com", "rae", "v3rify")
        assert (
            "https://api.fitness.example/auth/verify-email/v3rify"
            in self._payload(http)["htmlbody"]
        )

    async def test_welcome_escapes_name(self):
        provider, http = self._make()
        await provider.send_welcome_email("u@e.com", "<script>x</script>")
        assert "<script>x</script>" not in self._payload(http)["htmlbody"]

    async def test_returns_false_when_token_empty(self):
        provider, http = self._make(token="")
        assert await provider.send_verification_email("u@e.com", None, "000000") is False
        http.post.assert_not_called()

    async def test_returns_false_on_non_2xx(self):
        provider, http = self._make()
        http.post = AsyncMock(return_value=MagicMock(status_code=422, text="Unprocessable"))
        assert await provider.send_registration_email("u@e.com", "t") is False

    async def test_returns_false_on_exception(self):
        provider, http = self._make()
        http.post = AsyncMock(side_effect=httpx.ConnectTimeout("timeout"))
        assert await provider.send_registration_email("u@e.com", "t") is False

    async def test_auth_header_prepends_prefix(self):
        provider, http = self._make(token="rawtoken")
        await provider.send_welcome_email("u@e.com", "Rae")
        _, kwargs = http.post.call_args
        assert kwargs["headers"]["Authorization"] == "Zoho-enczapikey rawtoken"

    async def test_auth_header_not_double_prefixed(self):
        provider, http = self._make(token="Zoho-enczapikey alreadyprefixed")
        await provider.send_password_reset_email("u@e.com", None, "654321")
        _, kwargs = http.post.call_args
        assert kwargs["headers"]["Authorization"].count("Zoho-enczapikey") == 1


# ── Google claims ─────────────────────────────────────────────────────────────


class TestIdentityFromGoogleClaims:
    def test_maps_and_normalizes(self):
        identity = identity_from_google_claims(
            {
                "sub": "123",
                "email": " Rae@Example.COM ",
                "email_verified": True,
                "given_name": "Rae",
                "family_name": "",
                "picture": "https://pic",
            }
        )
        assert identity.provider == GOOGLE
        assert identity.external_id == "123"
        assert identity.email == "rae@example.com"
        assert identity.email_verified is True
        assert identity.family_name is None

    @pytest.mark.parametrize("flag, expected", [(True, True), ("true", True), (False, False), (None, False)], ids=["bool", "string", "false", "missing"])
    def test_email_verified_flag(self, flag, expected):
        identity = identity_from_google_claims(
            {"sub": "1", "email": "a@e.com", "email_verified": flag}
        )
        assert identity.email_verified is expected

    @pytest.mark.parametrize("claims", [{"email": "a@e.com"}, {"sub": "1"}], ids=["no-sub", "no-email"])
    def test_incomplete_claims_rejected(self, claims):
        with pytest.raises(ExternalAuthError):
            identity_from_google_claims(claims)


# ── GoogleIdentityProvider ────────────────────────────────────────────────────


class TestGoogleIdentityProvider:
    def _make(self, jwks=None):
        http = MagicMock()
        http.get_json = AsyncMock(return_value=jwks or {"keys": []})
        return GoogleIdentityProvider(_oauth_settings(), http), http

    def test_authorization_url(self):
        provider, _ = self._make()
        url = provider.authorization_url("signed-state")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://accounts.google.com/")
        assert query["state"] == ["signed-state"]
        assert query["client_id"] == [CLIENT_ID]
        assert query["response_type"] == ["code"]
        assert "openid" in query["scope"][0]

    async def test_verify_id_token(self, rsa_key, jwks):
        provider, http = self._make(jwks)
        claims = await provider.verify_id_token(_id_token(rsa_key))
        assert claims["sub"] == "1098765"
        await provider.verify_id_token(_id_token(rsa_key))
        # key set is cached between verifications
        assert http.get_json.await_count == 1

    async def test_wrong_audience(self, rsa_key, jwks):
        provider, _ = self._make(jwks)
        with pytest.raises(ExternalAuthError):
            await provider.verify_id_token(_id_token(rsa_key, aud="someone-else"))

    async def test_wrong_issuer(self, rsa_key, jwks):
        provider, _ = self._make(jwks)
        with pytest.raises(ExternalAuthError):
            await provider.verify_id_token(_id_token(rsa_key, iss="https://evil.example"))

    async def test_expired(self, rsa_key, jwks):
        provider, _ = self._make(jwks)
        past = int(time.time()) - 3600
        with pytest.raises(ExternalAuthError):
            await provider.verify_id_token(_id_token(rsa_key, iat=past - 600, exp=past))

    async def test_unknown_key_refetches_then_fails(self, rsa_key, jwks):
        provider, http = self._make(jwks)
        with pytest.raises(ExternalAuthError):
            await provider.verify_id_token(_id_token(rsa_key, kid="rotated"))
        assert http.get_json.await_count == 2

    async def test_foreign_signature(self, jwks):
        provider, _ = self._make(jwks)
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(ExternalAuthError):
            await provider.verify_id_token(_id_token(other))

    async def test_jwks_unreachable(self, rsa_key):
        provider, http = self._make()
        http.get_json = AsyncMock(side_effect=httpx.ConnectError("down"))
        with pytest.raises(ExternalAuthError):
            await provider.verify_id_token(_id_token(rsa_key))

    async def test_exchange_code(self, mocker, rsa_key, jwks):
        provider, _ = self._make(jwks)
        mocker.patch(
            "infrastructure.oauth_clients.AsyncOAuth2Client.fetch_token",
            new=AsyncMock(return_value={"access_token": "at", "id_token": _id_token(rsa_key)}),
        )
        identity = await provider.exchange_code("auth-code")
        assert identity.external_id == "1098765"
        assert identity.email == "runner@example.com"
        assert identity.given_name == "Rae"

    async def test_exchange_without_id_token(self, mocker):
        provider, _ = self._make()
        mocker.patch(
            "infrastructure.oauth_clients.AsyncOAuth2Client.fetch_token",
            new=AsyncMock(return_value={"access_token": "at"}),
        )
        with pytest.raises(ExternalAuthError):
            await provider.exchange_code("auth-code")

    async def test_exchange_upstream_error(self, mocker):
        provider, _ = self._make()
        mocker.patch(
            "infrastructure.oauth_clients.AsyncOAuth2Client.fetch_token",
            new=AsyncMock(side_effect=httpx.ConnectError("down")),
        )
        with pytest.raises(ExternalAuthError):
            await provider.exchange_code("auth-code")

    async def test_missing_code(self):
        provider, _ = self._make()
        with pytest.raises(ExternalAuthError):
            await provider.exchange_code("")


class TestBuildIdentityProviders:
    def test_google_when_configured(self):
        providers = build_identity_providers(_oauth_settings(), MagicMock())
        assert list(providers) == [GOOGLE]

    def test_empty_without_credentials(self):
        providers = build_identity_providers(
            _oauth_settings(google_oauth_client_id="", google_oauth_client_secret=""),
            MagicMock(),
        )
        assert providers == {}


# ── RateLimiter ───────────────────────────────────────────────────────────────


def _limiter(env: str = "development", **overrides) -> RateLimiter:
    fields = dict(auth_rate_limit="2 per minute", logout_rate_limit="1 per minute")
    fields.update(overrides)
    return RateLimiter(make_settings(env=env, rate_limit=RateLimitSettings(**fields)))


class TestRateLimiter:
    def test_blocks_after_limit(self):
        limiter = _limiter()
        limiter.hit(SCOPE_AUTH, "1.2.3.4")
        limiter.hit(SCOPE_AUTH, "1.2.3.4")
        with pytest.raises(RateLimitError) as exc_info:
            limiter.hit(SCOPE_AUTH, "1.2.3.4")
        assert 1 <= exc_info.value.retry_after <= 60
        assert exc_info.value.to_dict()["code"] == "rate_limit_exceeded"

    def test_clients_counted_separately(self):
        limiter = _limiter()
        limiter.hit(SCOPE_AUTH, "1.2.3.4")
        limiter.hit(SCOPE_AUTH, "1.2.3.4")
        limiter.hit(SCOPE_AUTH, "5.6.7.8")

    def test_scopes_counted_separately(self):
        limiter = _limiter()
        limiter.hit(SCOPE_AUTH, "1.2.3.4")
        limiter.hit(SCOPE_AUTH, "1.2.3.4")
        limiter.hit(SCOPE_LOGOUT, "1.2.3.4")
        with pytest.raises(RateLimitError) as exc_info:
            limiter.hit(SCOPE_LOGOUT, "1.2.3.4")
        assert "logout" in exc_info.value.message

    def test_disabled_never_blocks(self):
        limiter = _limiter(rate_limit_enabled=False)
        for _ in range(5):
            limiter.hit(SCOPE_AUTH, "1.2.3.4")

    @pytest.mark.parametrize(
        "env, allowed",
        [("production", 5), ("development", 50)],
        ids=["production", "development"],
    )
    def test_default_auth_budget(self, env, allowed):
        limiter = _limiter(env=env, auth_rate_limit="")
        for _ in range(allowed):
            limiter.hit(SCOPE_AUTH, "1.2.3.4")
        with pytest.raises(RateLimitError):
            limiter.hit(SCOPE_AUTH, "1.2.3.4")

    def test_unparseable_limit_rejected_at_startup(self):
        with pytest.raises(ValueError):
            _limiter(auth_rate_limit="lots")
