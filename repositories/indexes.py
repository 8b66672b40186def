"""
Index definitions for the account collections.

Uniqueness of email, username and external identity is enforced here, by the
database, not only by checks in the services: two concurrent registrations
for one email must leave exactly one record behind.
"""

from __future__ import annotations

from pymongo import ASCENDING
from pymongo.asynchronous.database import AsyncDatabase

from repositories.account_repository import USERS_COLLECTION
from repositories.pending_registration_repository import (
    PENDING_REGISTRATIONS_COLLECTION,
)
from shared.logging import get_logger

log = get_logger(__name__)


async def ensure_indexes(db: AsyncDatabase) -> None:
    users = db[USERS_COLLECTION]
    pending = db[PENDING_REGISTRATIONS_COLLECTION]
    try:
        await users.create_index([("email", ASCENDING)], unique=True)
        await users.create_index(
            [("username_lower", ASCENDING)],
            unique=True,
            partialFilterExpression={"username_lower": {"$type": "string"}},
        )
        await users.create_index(
            [
                ("external_identity.provider", ASCENDING),
                ("external_identity.external_id", ASCENDING),
            ],
            unique=True,
            partialFilterExpression={
                "external_identity.external_id": {"$type": "string"}
            },
        )
        await users.create_index([("verification_token_hash", ASCENDING)], sparse=True)
        await users.create_index([("reset_token_hash", ASCENDING)], sparse=True)
        await users.create_index([("email", ASCENDING), ("active", ASCENDING)])

        await pending.create_index([("email", ASCENDING)], unique=True)
        await pending.create_index(
            [("token_hash", ASCENDING), ("expires_at", ASCENDING)]
        )
        # TTL monitor reaps expired claims; lookups re-check expiry regardless
        await pending.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
    except Exception as e:
        log.error("ensure_indexes_failed", error=str(e), error_type=type(e).__name__)
        raise

    log.info("indexes_ensured", collections=[USERS_COLLECTION, PENDING_REGISTRATIONS_COLLECTION])
