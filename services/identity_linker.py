"""
IdentityLinker — map a verified external identity onto a local account.

Resolution order:
1. An account already linked to (provider, external_id): refresh the cached
   provider fields.
2. An account with the same email: attach the identity. The password, if
   any, is kept and the account becomes dual-credential.
3. Otherwise: create an active, password-less account.

The OAuth redirect round trip is also driven from here: the ``state`` value
is a short-lived signed token naming the provider, so a forged or replayed
callback is rejected before the code is exchanged.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from config import AppSettings
from errors import (
    AuthenticationError,
    ConflictError,
    ExternalAuthError,
    InternalError,
    NotFoundError,
)
from infrastructure.oauth_clients import ExternalIdentity, IdentityProvider
from repositories.account_repository import AccountRepository, duplicate_key_field
from schemas.models.account import (
    AccountDoc,
    AccountProfile,
    ExternalIdentityRef,
    is_registration_bridge,
    provider_tag,
    username_key,
)
from services.token_codec import TokenCodec
from shared.datetime_utils import utcnow
from shared.generators import generate_oauth_username
from shared.logging import get_logger

log = get_logger(__name__)


def _identity_ref(identity: ExternalIdentity, now: datetime) -> ExternalIdentityRef:
    return ExternalIdentityRef(
        provider=identity.provider,
        external_id=identity.external_id,
        email=identity.email,
        picture=identity.picture,
        email_verified=identity.email_verified,
        linked_at=now,
    )


def _profile_fill(account: AccountDoc, identity: ExternalIdentity) -> dict:
    """Profile fields the provider can fill in without overwriting anything."""
    fields = {}
    if identity.picture and not account.profile.avatar:
        fields["profile.avatar"] = identity.picture
    if identity.given_name and not account.profile.first_name:
        fields["profile.first_name"] = identity.given_name
    if identity.family_name and not account.profile.last_name:
        fields["profile.last_name"] = identity.family_name
    return fields


class IdentityLinker:
    def __init__(
        self,
        accounts: AccountRepository,
        codec: TokenCodec,
        providers: Dict[str, IdentityProvider],
        settings: AppSettings,
    ) -> None:
        self._accounts = accounts
        self._codec = codec
        self._providers = providers
        self._state_ttl = settings.tokens.oauth_state_ttl_seconds
        self._username_attempts = settings.tokens.username_max_attempts
        self._require_verified_email = settings.oauth.oauth_link_requires_verified_email

    def _provider(self, name: str) -> IdentityProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise NotFoundError(f"OAuth provider '{name}' is not configured")
        return provider

    # ── Redirect round trip ──────────────────────────────────────────────────

    def authorization_url(self, provider_name: str, next_path: Optional[str] = None) -> str:
        provider = self._provider(provider_name)
        state = self._codec.sign_state(
            {"provider": provider_name, "next": next_path}, self._state_ttl
        )
        return provider.authorization_url(state)

    async def sign_in(
        self, provider_name: str, code: str, state: str
    ) -> Tuple[AccountDoc, dict]:
        """Complete a callback: check state, exchange the code, resolve the account."""
        provider = self._provider(provider_name)
        try:
            state_data = self._codec.verify_state(state)
        except AuthenticationError:
            log.warning("oauth_state_rejected", provider=provider_name)
            raise ExternalAuthError("OAuth state is invalid or has expired")
        if state_data.get("provider") != provider_name:
            log.warning("oauth_state_rejected", provider=provider_name, reason="provider_mismatch")
            raise ExternalAuthError("OAuth state is invalid or has expired")

        identity = await provider.exchange_code(code)
        account = await self.resolve(identity)
        return account, state_data

    # ── Resolution ───────────────────────────────────────────────────────────

    async def resolve(self, identity: ExternalIdentity) -> AccountDoc:
        now = utcnow()
        account = await self._accounts.find_by_external_identity(
            identity.provider, identity.external_id
        )
        if account is not None:
            return await self._refresh(account, identity)

        account = await self._accounts.find_by_email(identity.email)
        if account is not None:
            return await self._link(account, identity, now)

        return await self._create(identity, now)

    async def _refresh(self, account: AccountDoc, identity: ExternalIdentity) -> AccountDoc:
        fields = {
            "external_identity.email": identity.email,
            "external_identity.email_verified": identity.email_verified,
            "external_identity.picture": identity.picture,
        }
        fields.update(_profile_fill(account, identity))

        if identity.email_verified and not account.email_verified:
            fields["email"] = identity.email
            fields["email_verified"] = True

        try:
            updated = await self._accounts.update_external_identity(
                account.id, fields, expect_external_id=identity.external_id
            )
        except DuplicateKeyError:
            # the provider's email belongs to another local account
            log.warning(
                "oauth_email_sync_skipped",
                user_id=str(account.id),
                provider=identity.provider,
            )
            fields.pop("email", None)
            fields.pop("email_verified", None)
            updated = await self._accounts.update_external_identity(
                account.id, fields, expect_external_id=identity.external_id
            )

        log.info("oauth_login", user_id=str(account.id), provider=identity.provider)
        return updated or account

    async def _link(
        self, account: AccountDoc, identity: ExternalIdentity, now: datetime
    ) -> AccountDoc:
        linked = account.external_identity
        if linked is not None:
            log.warning(
                "oauth_link_refused",
                user_id=str(account.id),
                provider=identity.provider,
                linked_provider=linked.provider,
            )
            raise ConflictError(
                "This account is already linked to a different "
                f"{linked.provider} account",
                reason="already_linked",
            )

        if self._require_verified_email and not identity.email_verified:
            log.warning(
                "oauth_link_refused",
                user_id=str(account.id),
                provider=identity.provider,
                reason="email_unverified",
            )
            raise ExternalAuthError(
                f"Your {identity.provider} email address is not verified"
            )

        bridge = is_registration_bridge(account)
        fields = {
            "external_identity": _identity_ref(identity, now).model_dump(),
            "auth_provider": provider_tag(bool(account.password_hash), identity.provider),
        }
        fields.update(_profile_fill(account, identity))
        if identity.email_verified and not account.email_verified:
            fields["email_verified"] = True
        if bridge:
            fields["active"] = True

        try:
            updated = await self._accounts.update_external_identity(
                account.id, fields, expect_unlinked=True, clear_verification=bridge
            )
        except DuplicateKeyError:
            updated = None

        if updated is None:
            # lost a race with another link of this account or identity
            winner = await self._accounts.find_by_external_identity(
                identity.provider, identity.external_id
            )
            if winner is not None:
                return winner
            raise ConflictError(
                "This account is already linked to a different account",
                reason="already_linked",
            )

        log.info(
            "oauth_account_linked",
            user_id=str(account.id),
            provider=identity.provider,
            activated=bridge,
        )
        return updated

    async def _create(self, identity: ExternalIdentity, now: datetime) -> AccountDoc:
        for attempt in range(1, self._username_attempts + 1):
            username = generate_oauth_username(identity.email, now)
            if await self._accounts.username_exists(username):
                continue

            account = AccountDoc(
                email=identity.email,
                username=username,
                username_lower=username_key(username),
                external_identity=_identity_ref(identity, now),
                auth_provider=provider_tag(False, identity.provider),
                active=True,
                email_verified=identity.email_verified,
                profile=AccountProfile(
                    first_name=identity.given_name,
                    last_name=identity.family_name,
                    avatar=identity.picture,
                ),
                last_login_at=now,
                created_at=now,
                updated_at=now,
            )
            try:
                account.id = await self._accounts.insert(account)
            except DuplicateKeyError as e:
                if duplicate_key_field(e) == "username":
                    log.debug("oauth_username_taken", attempt=attempt)
                    continue
                winner = await self._accounts.find_by_external_identity(
                    identity.provider, identity.external_id
                )
                if winner is not None:
                    return winner
                raise ConflictError(
                    "An account with this email already exists",
                    reason="exists",
                    field="email",
                )

            log.info(
                "oauth_account_created",
                user_id=str(account.id),
                provider=identity.provider,
            )
            return account

        raise InternalError("Could not allocate a username. Please try again.")
