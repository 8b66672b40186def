"""
Pending registration repository — the `pending-registrations` collection.

consume() is the compare-and-delete used by email verification: the digest
and expiry are matched and the record removed in one find_one_and_delete,
so a raw token can be redeemed at most once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo.asynchronous.database import AsyncDatabase

from schemas.models.pending_registration import PendingRegistrationDoc

PENDING_REGISTRATIONS_COLLECTION = "pending-registrations"


class PendingRegistrationRepository:
    def __init__(self, db: AsyncDatabase) -> None:
        self._col = db[PENDING_REGISTRATIONS_COLLECTION]

    async def find_by_email(self, email: str) -> Optional[PendingRegistrationDoc]:
        return PendingRegistrationDoc.from_mongo(
            await self._col.find_one({"email": email})
        )

    async def insert(self, pending: PendingRegistrationDoc) -> ObjectId:
        """Insert *pending*; a second record for the same email raises DuplicateKeyError."""
        result = await self._col.insert_one(pending.to_mongo())
        return result.inserted_id

    async def delete_by_email(self, email: str) -> int:
        result = await self._col.delete_many({"email": email})
        return result.deleted_count

    async def delete_by_id(self, pending_id: ObjectId) -> bool:
        result = await self._col.delete_one({"_id": pending_id})
        return result.deleted_count > 0

    async def consume(
        self, token_hash: str, now: datetime
    ) -> Optional[PendingRegistrationDoc]:
        doc = await self._col.find_one_and_delete(
            {"token_hash": token_hash, "expires_at": {"$gt": now}}
        )
        return PendingRegistrationDoc.from_mongo(doc)
