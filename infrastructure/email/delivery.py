"""Attempting an email send on behalf of a workflow.

Workflows roll back provisional state when a send fails, so a provider that
raises must look exactly like one that returns False.
"""

from typing import Awaitable

from shared.logging import get_logger

log = get_logger(__name__)


async def attempt_delivery(send: Awaitable[bool], *, email_type: str, to_email: str) -> bool:
    try:
        delivered = bool(await send)
    except Exception as e:
        log.error(
            "email_delivery_error",
            email_type=email_type,
            to_email=to_email,
            error=str(e),
            error_type=type(e).__name__,
        )
        return False

    if not delivered:
        log.warning("email_delivery_failed", email_type=email_type, to_email=to_email)
    return delivered
