"""Passwordless sign-in through single-use email links."""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.errors import MagicLinkInvalid, MagicLinkRateLimited
from esg_auth.models.account import Account, normalize_email
from esg_auth.models.auth_session import AuthMethod
from esg_auth.models.magic_link_token import DeliveryStatus, MagicLinkToken
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.security.client_info import ClientInfo
from esg_auth.services.account_service import AccountService
from esg_auth.services.email import EmailMessage, EmailProvider, get_email_provider
from esg_auth.services.session_service import IssuedSession, SessionService

logger = logging.getLogger(__name__)

DELIVERY_STATUS = {
    "ok": DeliveryStatus.SENT,
    "skipped": DeliveryStatus.SKIPPED,
    "error": DeliveryStatus.FAILED,
}


def sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def sanitize_redirect(redirect_to: Optional[str]) -> str:
    """Only local, non-API paths are allowed as post-login targets."""
    if not redirect_to:
        return settings.magic_link_default_redirect
    target = redirect_to.strip()
    if not target.startswith("/") or target.startswith("//") or target.startswith("/\\"):
        return settings.magic_link_default_redirect
    if target.startswith("/api"):
        return settings.magic_link_default_redirect
    return target


def build_email(to: str, link: str, expires_minutes: int) -> EmailMessage:
    text = (
        f"Sign in to {settings.rp_name}. The link is valid for {expires_minutes} minutes "
        f"and can be used once: {link}\n\n"
        "If you did not request this, ignore this email."
    )
    html = (
        f"<p>Click the button below to sign in to {settings.rp_name}. "
        f"The link is valid for {expires_minutes} minutes and can be used once.</p>"
        f'<p><a href="{link}">Sign in</a></p>'
        "<p>If you did not request this, ignore this email.</p>"
    )
    return EmailMessage(to=to, subject=f"Sign in to {settings.rp_name}", text=text, html=html)


@dataclass
class MagicLinkRequestResult:
    token: str
    record: MagicLinkToken
    delivery_status: DeliveryStatus


@dataclass
class MagicLinkOutcome:
    account: Account
    redirect_to: str
    issued: IssuedSession


class MagicLinkService:
    """
    Service class for magic link operations.

    ``request_link`` and ``consume`` are independent entry points; the only
    thing connecting them is the emailed token, of which only a sha256 hash
    is stored.
    """

    def __init__(self, db: AsyncSession, provider: Optional[EmailProvider] = None):
        self.db = db
        self.provider = provider or get_email_provider()

    async def request_link(
        self,
        email: str,
        redirect_to: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> MagicLinkRequestResult:
        """
        Create a sign-in link and email it.

        Earlier unconsumed links for the same address stop working.

        Raises:
            MagicLinkRateLimited: Too many requests for the email or IP
        """
        email = normalize_email(email)
        email_hash = sha256(email)
        requested_ip = client.ip_address if client else None

        await self._enforce_rate_limits(email_hash, requested_ip)

        now = datetime.utcnow()
        await self.db.execute(
            update(MagicLinkToken)
            .where(MagicLinkToken.email_hash == email_hash, MagicLinkToken.consumed_at.is_(None))
            .values(
                consumed_at=now,
                delivery_status=DeliveryStatus.SKIPPED.value,
                delivery_error="superseded",
            )
        )

        token = secrets.token_urlsafe(32)
        record = MagicLinkToken(
            email=email,
            email_hash=email_hash,
            token_hash=sha256(token),
            redirect_to=sanitize_redirect(redirect_to),
            requested_ip=requested_ip,
            user_agent=client.user_agent if client else None,
            delivery_status=DeliveryStatus.PENDING.value,
            expires_at=now + timedelta(minutes=settings.magic_link_expires_minutes),
            created_at=now,
        )
        self.db.add(record)
        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.MAGIC_LINK_REQUESTED,
            description=f"Magic link requested: {email}",
            ip_address=requested_ip,
            user_agent=client.user_agent if client else None,
        ))
        await self.db.commit()

        link = f"{settings.app_base_url}/api/auth/magic-link/verify?token={token}"
        message = build_email(email, link, settings.magic_link_expires_minutes)
        result = await self.provider.send(message)

        status = DELIVERY_STATUS.get(result.status, DeliveryStatus.FAILED)
        record.delivery_status = status.value
        record.delivery_error = result.error if status is DeliveryStatus.FAILED else None
        await self.db.commit()

        logger.info(
            f"Magic link email processed: email_hash={email_hash[:12]} status={status.value}"
        )
        return MagicLinkRequestResult(token=token, record=record, delivery_status=status)

    async def consume(self, token: str, client: Optional[ClientInfo] = None) -> MagicLinkOutcome:
        """
        Redeem a sign-in link and open a session.

        The first request to mark the token consumed wins; any other request
        with the same token fails.

        Raises:
            MagicLinkInvalid: Unknown, used, superseded or expired token
        """
        if not token:
            raise MagicLinkInvalid("empty token", reason="missing_token")

        result = await self.db.execute(
            select(MagicLinkToken).where(MagicLinkToken.token_hash == sha256(token))
        )
        record = result.scalar_one_or_none()
        now = datetime.utcnow()
        if record is None:
            raise MagicLinkInvalid("unknown token", reason="not_found")
        if record.consumed_at is not None:
            raise MagicLinkInvalid(f"token {record.id} already used", reason="already_used")
        if record.expires_at <= now:
            raise MagicLinkInvalid(f"token {record.id} expired", reason="expired")

        marked = await self.db.execute(
            update(MagicLinkToken)
            .where(MagicLinkToken.id == record.id, MagicLinkToken.consumed_at.is_(None))
            .values(consumed_at=now, consumed_ip=client.ip_address if client else None)
        )
        await self.db.commit()
        if marked.rowcount != 1:
            raise MagicLinkInvalid(
                f"token {record.id} consumed concurrently", reason="already_used"
            )

        account = await AccountService(self.db).get_or_create_by_email(record.email)
        if not account.can_authenticate():
            raise MagicLinkInvalid(f"account {account.id} is inactive", reason="inactive")

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.MAGIC_LINK_CONSUMED,
            description=f"Magic link used: {account.email}",
            account_id=account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        ))
        issued = await SessionService(self.db).issue(account, AuthMethod.MAGIC_LINK, client)

        return MagicLinkOutcome(
            account=account,
            redirect_to=sanitize_redirect(record.redirect_to),
            issued=issued,
        )

    async def purge_expired(self) -> int:
        """Drop links that can no longer be used and are past the rate window."""
        cutoff = datetime.utcnow() - timedelta(minutes=settings.magic_link_rate_window_minutes)
        result = await self.db.execute(
            delete(MagicLinkToken).where(MagicLinkToken.expires_at <= cutoff)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def _enforce_rate_limits(self, email_hash: str, requested_ip: Optional[str]) -> None:
        since = datetime.utcnow() - timedelta(minutes=settings.magic_link_rate_window_minutes)

        result = await self.db.execute(
            select(func.count(MagicLinkToken.id)).where(
                MagicLinkToken.email_hash == email_hash,
                MagicLinkToken.created_at >= since,
            )
        )
        if result.scalar_one() >= settings.magic_link_max_email_requests:
            logger.warning(f"Magic link email limit hit: email_hash={email_hash[:12]}")
            raise MagicLinkRateLimited("rate_limit_email")

        if requested_ip:
            result = await self.db.execute(
                select(func.count(MagicLinkToken.id)).where(
                    MagicLinkToken.requested_ip == requested_ip,
                    MagicLinkToken.created_at >= since,
                )
            )
            if result.scalar_one() >= settings.magic_link_max_ip_requests:
                logger.warning(f"Magic link IP limit hit: ip={requested_ip}")
                raise MagicLinkRateLimited("rate_limit_ip")

        result = await self.db.execute(
            select(func.max(MagicLinkToken.created_at)).where(
                MagicLinkToken.email_hash == email_hash
            )
        )
        last_created = result.scalar_one_or_none()
        cooldown = timedelta(seconds=settings.magic_link_resend_cooldown_seconds)
        if last_created is not None and datetime.utcnow() - last_created < cooldown:
            raise MagicLinkRateLimited("cooldown")
