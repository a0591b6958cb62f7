"""EmailProvider protocol. Services depend on this, not the concrete implementation."""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class EmailProvider(Protocol):
    async def send_verification_email(
        self, email: str, user_name: Optional[str], otp_code: str
    ) -> bool: ...

    async def send_password_reset_email(
        self, email: str, user_name: Optional[str], otp_code: str
    ) -> bool: ...

    async def send_email_change_email(
        self, new_email: str, user_name: Optional[str], otp_code: str
    ) -> bool: ...

    async def send_email_change_notice(
        self, old_email: str, user_name: Optional[str], new_email: str
    ) -> bool: ...
