"""Transactional email delivery."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from esg_auth.config import settings

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    html: Optional[str] = None


@dataclass
class DeliveryResult:
    """Outcome of one send: ``ok``, ``skipped`` or ``error``."""

    status: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class EmailProvider:
    """Interface for email backends."""

    async def send(self, message: EmailMessage) -> DeliveryResult:
        raise NotImplementedError


class LoggingProvider(EmailProvider):
    """
    Development backend: logs the message instead of sending it.

    Sent messages are kept in ``outbox`` so tests can read the link back.
    """

    def __init__(self):
        self.outbox: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> DeliveryResult:
        self.outbox.append(message)
        logger.info(f"Email delivery skipped (no provider configured): to={message.to} "
                    f"subject={message.subject!r}")
        return DeliveryResult(status="skipped")


@dataclass
class SendGridProvider(EmailProvider):
    """Delivers through the SendGrid v3 API, retrying transient failures."""

    api_key: str
    from_email: str
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    timeout: float = 10.0
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    async def send(self, message: EmailMessage) -> DeliveryResult:
        content = [{"type": "text/plain", "value": message.text}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})
        payload = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self.from_email},
            "subject": message.subject,
            "content": content,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        last_error = "unknown"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    response = await client.post(SENDGRID_URL, json=payload, headers=headers)
                except httpx.HTTPError as e:
                    last_error = f"network error: {e}"
                else:
                    if response.status_code < 300:
                        return DeliveryResult(
                            status="ok",
                            message_id=response.headers.get("x-message-id"),
                        )
                    last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                    if response.status_code < 500 and response.status_code != 429:
                        # Permanent rejection (bad key, invalid recipient)
                        break

                logger.warning(
                    f"Email send attempt {attempt}/{self.max_attempts} to {message.to} "
                    f"failed: {last_error}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * 2 ** (attempt - 1))

        logger.error(f"Email delivery to {message.to} failed: {last_error}")
        return DeliveryResult(status="error", error=last_error)


_default_provider: Optional[EmailProvider] = None


def get_email_provider() -> EmailProvider:
    """FastAPI dependency returning the configured backend."""
    global _default_provider
    if _default_provider is None:
        if settings.sendgrid_api_key:
            _default_provider = SendGridProvider(
                api_key=settings.sendgrid_api_key,
                from_email=settings.email_from,
            )
        else:
            _default_provider = LoggingProvider()
    return _default_provider
