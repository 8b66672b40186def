"""EmailProvider protocol — workflows depend on this, not the concrete implementation.

Every method returns True when the message was accepted for delivery. A
provider that raises is treated by the callers the same as one returning False.
"""

from typing import Optional, Protocol


class EmailProvider(Protocol):
    async def send_registration_email(self, email: str, token: str) -> bool: ...

    async def send_resend_email(self, email: str, token: str) -> bool: ...

    async def send_welcome_email(self, email: str, user_name: Optional[str]) -> bool: ...

    async def send_password_reset_email(
        self, email: str, user_name: Optional[str], token: str
    ) -> bool: ...

    async def send_verification_email(
        self, email: str, user_name: Optional[str], token: str
    ) -> bool: ...
