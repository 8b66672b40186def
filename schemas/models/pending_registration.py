"""
Pending registration document model.

Maps to the `pending-registrations` MongoDB collection.

One record per email claim that has not yet been confirmed. token_hash stores
SHA-256(raw_token); the raw token only ever travels in the registration email.
A TTL index on expires_at reaps stale records; lookups re-check expiry anyway.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from schemas.models.base import MongoBaseModel


class PendingRegistrationDoc(MongoBaseModel):
    """Document model for the `pending-registrations` collection."""

    email: str
    token_hash: str
    expires_at: datetime
    created_at: Optional[datetime] = None
