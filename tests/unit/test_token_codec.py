"""Unit tests for TokenCodec: opaque tokens, session assertions, OAuth state."""

import re
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from config import JWTSettings
from errors import InvalidSessionError, SessionExpiredError
from services.token_codec import TokenCodec
from shared.crypto import hash_token


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(JWTSettings(jwt_secret="codec-test-secret-0123456789abcdef"))


# ── Opaque tokens ─────────────────────────────────────────────────────────────


class TestOpaqueTokens:
    def test_new_token_is_64_hex(self, codec):
        assert re.fullmatch(r"[0-9a-f]{64}", codec.new_opaque_token())

    def test_tokens_unique(self, codec):
        assert codec.new_opaque_token() != codec.new_opaque_token()

    def test_hash_is_sha256_of_token(self, codec):
        token = codec.new_opaque_token()
        assert codec.hash(token) == hash_token(token)
        assert codec.hash(token) != token


# ── Session assertions ────────────────────────────────────────────────────────


class TestSessionAssertion:
    def test_round_trip_returns_subject(self, codec):
        token = codec.sign_assertion("65f0c0ffee0000000000beef")
        assert codec.verify_assertion(token) == "65f0c0ffee0000000000beef"

    def test_default_ttl_from_settings(self, codec):
        token = codec.sign_assertion("abc")
        claims = jwt.decode(token, options={"verify_signature": False})
        assert claims["exp"] - claims["iat"] == 86400
        assert claims["typ"] == "session"

    def test_expired_assertion(self, codec):
        past = datetime.now(timezone.utc) - timedelta(days=2)
        token = codec.sign_assertion("abc", ttl=60, now=past)
        with pytest.raises(SessionExpiredError):
            codec.verify_assertion(token)

    def test_tampered_signature(self, codec):
        token = codec.sign_assertion("abc")
        head, body, sig = token.split(".")
        forged = f"{head}.{body}.{sig[:-2]}{'AA' if sig[-2:] != 'AA' else 'BB'}"
        with pytest.raises(InvalidSessionError):
            codec.verify_assertion(forged)

    def test_other_secret_rejected(self, codec):
        other = TokenCodec(JWTSettings(jwt_secret="a-completely-different-secret-xyz"))
        with pytest.raises(InvalidSessionError):
            codec.verify_assertion(other.sign_assertion("abc"))

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, codec, token):
        with pytest.raises(InvalidSessionError):
            codec.verify_assertion(token)

    def test_state_token_not_accepted_as_session(self, codec):
        state = codec.sign_state({"provider": "google"}, ttl=600)
        with pytest.raises(InvalidSessionError):
            codec.verify_assertion(state)

    def test_missing_subject(self, codec):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"typ": "session", "iat": int(now.timestamp()), "exp": int(now.timestamp()) + 60},
            "codec-test-secret-0123456789abcdef",
            algorithm="HS256",
        )
        with pytest.raises(InvalidSessionError):
            codec.verify_assertion(token)

    def test_issuer_and_audience_enforced(self):
        settings = JWTSettings(
            jwt_secret="codec-test-secret-0123456789abcdef",
            jwt_issuer="fitness-tracker",
            jwt_audience="fitness-tracker-web",
        )
        strict = TokenCodec(settings)
        token = strict.sign_assertion("abc")
        assert strict.verify_assertion(token) == "abc"

        loose = TokenCodec(JWTSettings(jwt_secret="codec-test-secret-0123456789abcdef"))
        with pytest.raises(InvalidSessionError):
            strict.verify_assertion(loose.sign_assertion("abc"))

    def test_missing_secret_refused(self):
        with pytest.raises(RuntimeError):
            TokenCodec(JWTSettings(jwt_secret=""))


# ── OAuth state ───────────────────────────────────────────────────────────────


class TestOAuthState:
    def test_round_trip(self, codec):
        state = codec.sign_state({"provider": "google", "next": "/goals"}, ttl=600)
        assert codec.verify_state(state) == {"provider": "google", "next": "/goals"}

    def test_states_are_unique(self, codec):
        data = {"provider": "google"}
        assert codec.sign_state(data, ttl=600) != codec.sign_state(data, ttl=600)

    def test_session_token_not_accepted_as_state(self, codec):
        with pytest.raises(InvalidSessionError):
            codec.verify_state(codec.sign_assertion("abc"))

    def test_expired_state(self, codec):
        state = codec.sign_state({"provider": "google"}, ttl=-10)
        with pytest.raises(SessionExpiredError):
            codec.verify_state(state)

    def test_empty_state(self, codec):
        with pytest.raises(InvalidSessionError):
            codec.verify_state("")
