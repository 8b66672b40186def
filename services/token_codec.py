"""
TokenCodec — opaque single-use tokens, their digests, and signed assertions.

Opaque tokens (registration, reset, email verification) are random hex
strings; only their SHA-256 digest is ever persisted. Session assertions and
OAuth state values are HS256 JWTs signed with the server secret and are
distinguished by their ``typ`` claim.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt

from config import JWTSettings
from errors import InvalidSessionError, SessionExpiredError
from shared.crypto import hash_token
from shared.generators import generate_secure_token
from shared.logging import get_logger

log = get_logger(__name__)

SESSION_TYPE = "session"
OAUTH_STATE_TYPE = "oauth_state"


class TokenCodec:
    def __init__(self, settings: JWTSettings) -> None:
        if not settings.jwt_secret:
            raise RuntimeError("JWT_SECRET must be set")
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._issuer = settings.jwt_issuer or None
        self._audience = settings.jwt_audience or None
        self.session_ttl = settings.session_ttl_seconds

    # ── Opaque tokens ────────────────────────────────────────────────────────

    def new_opaque_token(self) -> str:
        return generate_secure_token(32)

    def hash(self, token: str) -> str:
        return hash_token(token)

    # ── Signed JWTs ──────────────────────────────────────────────────────────

    def _encode(self, claims: dict, ttl: int, now: Optional[datetime]) -> str:
        now = now or datetime.now(timezone.utc)
        claims = dict(claims)
        claims["iat"] = int(now.timestamp())
        claims["exp"] = int((now + timedelta(seconds=ttl)).timestamp())
        if self._issuer:
            claims["iss"] = self._issuer
        if self._audience:
            claims["aud"] = self._audience
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def _decode(self, token: str, expected_type: str) -> dict:
        options: dict[str, Any] = {"require": ["exp", "iat"]}
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            raise SessionExpiredError("Session has expired")
        except jwt.InvalidTokenError as e:
            log.info("assertion_rejected", error_type=type(e).__name__)
            raise InvalidSessionError("Invalid session")

        if claims.get("typ") != expected_type:
            raise InvalidSessionError("Invalid session")
        return claims

    def sign_assertion(
        self,
        account_id: str,
        ttl: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Sign a session assertion for *account_id* (default TTL from config)."""
        return self._encode(
            {"sub": str(account_id), "typ": SESSION_TYPE},
            ttl if ttl is not None else self.session_ttl,
            now,
        )

    def verify_assertion(self, token: str) -> str:
        """Return the account id carried by a valid session assertion.

        Raises:
            SessionExpiredError: the assertion is past its ``exp``.
            InvalidSessionError: bad signature, malformed, wrong type or no subject.
        """
        if not token:
            raise InvalidSessionError("Invalid session")
        claims = self._decode(token, SESSION_TYPE)
        subject = claims.get("sub")
        if not subject:
            raise InvalidSessionError("Invalid session")
        return subject

    def sign_state(self, data: dict, ttl: int) -> str:
        """Sign an OAuth ``state`` value carrying *data*."""
        payload = {"typ": OAUTH_STATE_TYPE, "nonce": generate_secure_token(16)}
        payload["data"] = dict(data)
        return self._encode(payload, ttl, None)

    def verify_state(self, state: str) -> dict:
        """Return the data carried by a valid OAuth ``state`` value."""
        if not state:
            raise InvalidSessionError("Missing OAuth state")
        return self._decode(state, OAUTH_STATE_TYPE).get("data", {})
