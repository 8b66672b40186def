"""
Account repository — all reads and writes against the `users` collection.

Token redemption is never a read followed by an unconditional write: every
method that consumes a token digest is a single find_one_and_update whose
filter repeats the digest and the "expires in the future" condition, so a
concurrent second redemption matches nothing and returns None.

Duplicate-key violations (email, username_lower, external identity) are
raised as pymongo.errors.DuplicateKeyError for the service layer to map.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from schemas.models.account import AccountDoc, username_key
from shared.datetime_utils import utcnow

USERS_COLLECTION = "users"

_VERIFICATION_FIELDS = {"verification_token_hash": "", "verification_expires_at": ""}
_RESET_FIELDS = {"reset_token_hash": "", "reset_expires_at": ""}


def duplicate_key_field(exc: DuplicateKeyError) -> Optional[str]:
    """Name the unique key an insert or update collided on.

    Returns "email", "username", "external_identity", or None when the
    server did not say.
    """
    details = exc.details or {}
    fields = list((details.get("keyPattern") or {}).keys())
    if not fields:
        message = str(details.get("errmsg") or exc)
        fields = [
            name
            for name in ("username_lower", "external_identity", "email")
            if name in message
        ][:1]
    for name in fields:
        if name.startswith("external_identity"):
            return "external_identity"
        if name == "username_lower":
            return "username"
        if name == "email":
            return "email"
    return None


class AccountRepository:
    def __init__(self, db: AsyncDatabase) -> None:
        self._col = db[USERS_COLLECTION]

    # ── Lookups ──────────────────────────────────────────────────────────────

    async def find_by_id(self, account_id: ObjectId) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(await self._col.find_one({"_id": account_id}))

    async def find_by_email(self, email: str) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(await self._col.find_one({"email": email}))

    async def find_by_username(self, username: str) -> Optional[AccountDoc]:
        """Case-insensitive lookup through the ``username_lower`` key."""
        return AccountDoc.from_mongo(
            await self._col.find_one({"username_lower": username_key(username)})
        )

    async def find_by_external_identity(
        self, provider: str, external_id: str
    ) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(
            await self._col.find_one(
                {
                    "external_identity.provider": provider,
                    "external_identity.external_id": external_id,
                }
            )
        )

    async def find_by_verification_token(
        self, token_hash: str, now: datetime, *, email_verified: bool
    ) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(
            await self._col.find_one(
                {
                    "verification_token_hash": token_hash,
                    "verification_expires_at": {"$gt": now},
                    "email_verified": email_verified,
                }
            )
        )

    async def find_by_reset_token(
        self, token_hash: str, now: datetime
    ) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(
            await self._col.find_one(
                {"reset_token_hash": token_hash, "reset_expires_at": {"$gt": now}}
            )
        )

    async def username_exists(
        self, username: str, exclude_id: Optional[ObjectId] = None
    ) -> bool:
        query: dict[str, Any] = {"username_lower": username_key(username)}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return await self._col.find_one(query, {"_id": 1}) is not None

    # ── Writes ───────────────────────────────────────────────────────────────

    async def insert(self, account: AccountDoc) -> ObjectId:
        result = await self._col.insert_one(account.to_mongo())
        return result.inserted_id

    async def _update_one_returning(
        self, query: dict, update: dict
    ) -> Optional[AccountDoc]:
        update.setdefault("$set", {})["updated_at"] = utcnow()
        doc = await self._col.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return AccountDoc.from_mongo(doc)

    async def activate(
        self,
        account_id: ObjectId,
        token_hash: str,
        now: datetime,
        *,
        username: str,
        password_hash: str,
        auth_provider: str,
        profile_fields: Optional[dict] = None,
    ) -> Optional[AccountDoc]:
        """Consume the verification digest and turn the account active."""
        fields = {
            "username": username,
            "username_lower": username_key(username),
            "password_hash": password_hash,
            "auth_provider": auth_provider,
            "active": True,
        }
        for key, value in (profile_fields or {}).items():
            fields[f"profile.{key}"] = value
        return await self._update_one_returning(
            {
                "_id": account_id,
                "verification_token_hash": token_hash,
                "verification_expires_at": {"$gt": now},
                "email_verified": True,
                "active": False,
                "password_hash": None,
            },
            {"$set": fields, "$unset": dict(_VERIFICATION_FIELDS)},
        )

    async def set_verification_token(
        self,
        account_id: ObjectId,
        token_hash: str,
        expires_at: datetime,
        *,
        active: bool,
    ) -> bool:
        """Overwrite the verification digest; only while ``active`` matches."""
        doc = await self._update_one_returning(
            {"_id": account_id, "active": active},
            {
                "$set": {
                    "verification_token_hash": token_hash,
                    "verification_expires_at": expires_at,
                }
            },
        )
        return doc is not None

    async def clear_verification_token(
        self, account_id: ObjectId, token_hash: str
    ) -> bool:
        """Remove the verification digest if it is still *token_hash*."""
        doc = await self._update_one_returning(
            {"_id": account_id, "verification_token_hash": token_hash},
            {"$unset": dict(_VERIFICATION_FIELDS)},
        )
        return doc is not None

    async def confirm_email(
        self, token_hash: str, now: datetime
    ) -> Optional[AccountDoc]:
        """Consume a verification digest held by an active, unverified account."""
        return await self._update_one_returning(
            {
                "verification_token_hash": token_hash,
                "verification_expires_at": {"$gt": now},
                "active": True,
                "email_verified": False,
            },
            {"$set": {"email_verified": True}, "$unset": dict(_VERIFICATION_FIELDS)},
        )

    async def set_reset_token(
        self, account_id: ObjectId, token_hash: str, expires_at: datetime
    ) -> bool:
        doc = await self._update_one_returning(
            {"_id": account_id},
            {"$set": {"reset_token_hash": token_hash, "reset_expires_at": expires_at}},
        )
        return doc is not None

    async def clear_reset_token(self, account_id: ObjectId, token_hash: str) -> bool:
        doc = await self._update_one_returning(
            {"_id": account_id, "reset_token_hash": token_hash},
            {"$unset": dict(_RESET_FIELDS)},
        )
        return doc is not None

    async def redeem_reset_token(
        self,
        account_id: ObjectId,
        token_hash: str,
        now: datetime,
        *,
        password_hash: str,
        auth_provider: str,
    ) -> Optional[AccountDoc]:
        """Consume the reset digest and store the new password hash."""
        return await self._update_one_returning(
            {
                "_id": account_id,
                "reset_token_hash": token_hash,
                "reset_expires_at": {"$gt": now},
            },
            {
                "$set": {"password_hash": password_hash, "auth_provider": auth_provider},
                "$unset": dict(_RESET_FIELDS),
            },
        )

    async def update_password(
        self, account_id: ObjectId, password_hash: str, auth_provider: str
    ) -> Optional[AccountDoc]:
        return await self._update_one_returning(
            {"_id": account_id},
            {"$set": {"password_hash": password_hash, "auth_provider": auth_provider}},
        )

    async def update_profile(
        self,
        account_id: ObjectId,
        *,
        username: Optional[str] = None,
        profile_fields: Optional[dict] = None,
    ) -> Optional[AccountDoc]:
        """Rename an active account and merge *profile_fields* into its profile."""
        fields: dict[str, Any] = {}
        if username is not None:
            fields["username"] = username
            fields["username_lower"] = username_key(username)
        for key, value in (profile_fields or {}).items():
            fields[f"profile.{key}"] = value
        return await self._update_one_returning(
            {"_id": account_id, "active": True}, {"$set": fields}
        )

    async def record_login(self, account_id: ObjectId, now: datetime) -> None:
        await self._col.update_one(
            {"_id": account_id}, {"$set": {"last_login_at": now}}
        )

    async def update_external_identity(
        self,
        account_id: ObjectId,
        fields: dict,
        *,
        expect_external_id: Optional[str] = None,
        expect_unlinked: bool = False,
        clear_verification: bool = False,
    ) -> Optional[AccountDoc]:
        """Apply OAuth-derived *fields* to an account.

        ``expect_unlinked`` guards a first-time link against a concurrent
        link; ``expect_external_id`` guards a refresh against a concurrent
        relink. Returns None when the guard no longer holds.
        """
        query: dict[str, Any] = {"_id": account_id}
        if expect_unlinked:
            query["external_identity"] = {"$exists": False}
        if expect_external_id is not None:
            query["external_identity.external_id"] = expect_external_id
        update: dict[str, Any] = {"$set": dict(fields)}
        if clear_verification:
            update["$unset"] = dict(_VERIFICATION_FIELDS)
        return await self._update_one_returning(query, update)
