import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol
from urllib.parse import urlencode

from ...clock import Clock, utc_now

logger = logging.getLogger(__name__)

OUTBOX_KEY = "mail:outbox"
OUTBOX_MAX_ENTRIES = 1000


@dataclass
class MailMessage:
    to: str
    subject: str
    body: str
    kind: str
    sender: str = ""
    link: Optional[str] = None
    sent_at: Optional[str] = None


class Mailer(Protocol):
    """Transport for outbound mail - allows swappable implementations."""

    async def send(self, message: MailMessage) -> None:
        ...


class OutboxMailer:
    """
    Records mail in a capped Redis list instead of delivering it.

    Development deployments read the outbox to follow verification links.
    """

    def __init__(self, redis_client, clock: Clock = utc_now):
        self.redis = redis_client
        self.clock = clock

    async def send(self, message: MailMessage) -> None:
        message.sent_at = self.clock().isoformat()
        await self.redis.lpush(OUTBOX_KEY, json.dumps(asdict(message)))
        await self.redis.ltrim(OUTBOX_KEY, 0, OUTBOX_MAX_ENTRIES - 1)
        logger.info(f"Queued '{message.kind}' mail to {message.to}")


class MailService:
    """Builds the account mails and hands them to a Mailer."""

    def __init__(self, mailer: Mailer, frontend_url: str, sender: str):
        self.mailer = mailer
        self.frontend_url = frontend_url.rstrip("/")
        self.sender = sender

    def _link(self, path: str, token: str, account_id: int) -> str:
        return f"{self.frontend_url}/{path}?{urlencode({'token': token, 'userId': account_id})}"

    async def _send(self, to: str, subject: str, body: str, kind: str, **extra) -> MailMessage:
        message = MailMessage(to=to, subject=subject, body=body, kind=kind, sender=self.sender, **extra)
        await self.mailer.send(message)
        return message

    async def send_verification(self, to: str, username: str, token: str, account_id: int):
        link = self._link("verify-email", token, account_id)
        body = (
            f"Hello {username},\n\n"
            f"Thank you for registering with TravelTales. Verify your email address here:\n"
            f"{link}\n\nThis verification link will expire in 24 hours."
        )
        return await self._send(
            to, "Verify Your TravelTales Account", body, "email_verification", link=link
        )

    async def send_password_reset(self, to: str, username: str, token: str, account_id: int):
        link = self._link("reset-password", token, account_id)
        body = (
            f"Hello {username},\n\n"
            f"A password reset was requested for your account. Choose a new password here:\n"
            f"{link}\n\nThis link will expire in 1 hour. "
            f"If you did not request it, ignore this email."
        )
        return await self._send(
            to, "Reset Your TravelTales Password", body, "password_reset", link=link
        )

    async def send_password_change_verification(
        self, to: str, username: str, token: str, account_id: int
    ):
        link = self._link("verify-password-change", token, account_id)
        body = (
            f"Hello {username},\n\n"
            f"Confirm your password change here:\n{link}\n\n"
            f"Your password stays the same until you confirm. This link will expire in 1 hour."
        )
        return await self._send(
            to, "Verify Your TravelTales Password Change", body, "password_change", link=link
        )

    async def send_password_changed(self, to: str, username: str):
        body = (
            f"Hello {username},\n\n"
            f"Your TravelTales password has been changed and all sessions were signed out. "
            f"If you did not make this change, reset your password immediately."
        )
        return await self._send(
            to, "Your TravelTales Password Has Been Changed", body, "password_changed"
        )

    async def send_email_change_verification(
        self, to: str, username: str, token: str, account_id: int
    ):
        link = self._link("verify-email-change", token, account_id)
        body = (
            f"Hello {username},\n\n"
            f"Confirm this address as your new TravelTales email here:\n{link}\n\n"
            f"This link will expire in 1 hour."
        )
        return await self._send(
            to, "Verify Your New TravelTales Email Address", body, "email_change", link=link
        )

    async def send_email_changed(self, old_email: str, new_email: str):
        """Notify both addresses once an email change completes."""
        await self._send(
            old_email,
            "Your TravelTales Email Has Been Changed",
            f"Your TravelTales account email was changed from {old_email} to {new_email}. "
            f"If you did NOT make this change, contact us immediately.",
            "email_changed",
        )
        await self._send(
            new_email,
            "Your TravelTales Email Change is Complete",
            "Your TravelTales account email has been changed to this address.",
            "email_changed",
        )
