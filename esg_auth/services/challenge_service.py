"""Persistence of WebAuthn ceremony challenges."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.errors import ChallengeExpiredOrMissing
from esg_auth.models.webauthn_challenge import CeremonyType, WebAuthnChallenge
from esg_auth.security.client_info import ClientInfo

logger = logging.getLogger(__name__)


class ChallengeService:
    """
    Issues and consumes single-use challenges.

    A challenge is bound to one account and one ceremony type. ``consume``
    hands a given row to at most one caller: the row is removed with a
    ``DELETE ... WHERE id = ?`` and only the caller whose delete hit a row
    gets it back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(
        self,
        account_id: str,
        ceremony: CeremonyType,
        challenge: str,
        client: Optional[ClientInfo] = None,
    ) -> WebAuthnChallenge:
        """
        Persist a fresh challenge, replacing any outstanding one for the
        same account and ceremony.

        Args:
            account_id: Account the ceremony belongs to
            ceremony: Registration or authentication
            challenge: Base64url encoded challenge bytes

        Returns:
            WebAuthnChallenge: Stored challenge row
        """
        await self.db.execute(
            delete(WebAuthnChallenge).where(
                WebAuthnChallenge.account_id == account_id,
                WebAuthnChallenge.ceremony == ceremony.value,
            )
        )
        record = WebAuthnChallenge.create_challenge(
            challenge=challenge,
            account_id=account_id,
            ceremony=ceremony,
            ttl_seconds=settings.challenge_ttl_seconds,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        )
        self.db.add(record)
        await self.db.commit()
        return record

    async def consume(self, account_id: str, ceremony: CeremonyType) -> WebAuthnChallenge:
        """
        Take the newest unexpired challenge for the account.

        Raises:
            ChallengeExpiredOrMissing: No live challenge, or another request
                consumed it first
        """
        now = datetime.utcnow()
        stmt = (
            select(WebAuthnChallenge)
            .where(
                WebAuthnChallenge.account_id == account_id,
                WebAuthnChallenge.ceremony == ceremony.value,
                WebAuthnChallenge.expires_at > now,
            )
            .order_by(WebAuthnChallenge.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise ChallengeExpiredOrMissing(
                f"no live {ceremony.value} challenge for account {account_id}"
            )

        deleted = await self.db.execute(
            delete(WebAuthnChallenge).where(WebAuthnChallenge.id == record.id)
        )
        await self.db.commit()
        if deleted.rowcount != 1:
            logger.warning(
                f"Challenge {record.id} for account {account_id} was consumed concurrently"
            )
            raise ChallengeExpiredOrMissing(f"challenge {record.id} already consumed")

        return record

    async def purge_expired(self) -> int:
        """Delete expired challenges. Returns the number of rows removed."""
        result = await self.db.execute(
            delete(WebAuthnChallenge).where(
                WebAuthnChallenge.expires_at <= datetime.utcnow()
            )
        )
        await self.db.commit()
        return result.rowcount or 0
