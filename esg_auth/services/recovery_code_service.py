"""Recovery code generation and redemption."""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import bcrypt
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.errors import RecoveryCodeInvalid
from esg_auth.models.account import Account, normalize_email
from esg_auth.models.recovery_code import RecoveryCode
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.security.client_info import ClientInfo

logger = logging.getLogger(__name__)

# No 0/O, 1/I ambiguity when read from paper
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 10

LOW_CODES_WARNING = "Only {remaining} recovery code(s) left. Generate a new set."


def generate_code() -> str:
    raw = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    half = CODE_LENGTH // 2
    return f"{raw[:half]}-{raw[half:]}"


def normalize_code(code: str) -> str:
    return code.replace("-", "").replace(" ", "").strip().upper()


def hash_code(code: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.recovery_code_bcrypt_rounds)
    return bcrypt.hashpw(normalize_code(code).encode("utf-8"), salt).decode("utf-8")


def check_code(code: str, code_hash: str) -> bool:
    try:
        return bcrypt.checkpw(normalize_code(code).encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        logger.error("Malformed recovery code hash in storage")
        return False


@dataclass
class RecoveryOutcome:
    account: Account
    remaining: int
    warning: Optional[str] = None


@dataclass
class RecoverySummary:
    total: int
    used: int
    remaining: int

    @property
    def needs_regeneration(self) -> bool:
        return self.remaining <= settings.recovery_code_low_watermark


class RecoveryCodeService:
    """Service class for recovery code operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def generate_batch(self, account_id: str) -> List[str]:
        """
        Create a new batch of codes for the account.

        Only bcrypt hashes are stored. The plaintext codes are returned once
        and cannot be recovered afterwards.

        Returns:
            List[str]: Plaintext codes formatted ``XXXXX-XXXXX``
        """
        codes = [generate_code() for _ in range(settings.recovery_code_count)]
        # bcrypt is deliberately slow; keep it off the event loop
        hashes = await asyncio.gather(*(asyncio.to_thread(hash_code, c) for c in codes))

        for code_hash in hashes:
            self.db.add(RecoveryCode(account_id=account_id, code_hash=code_hash))

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.RECOVERY_CODES_GENERATED,
            description=f"{len(codes)} recovery codes generated",
            account_id=account_id,
        ))
        await self.db.commit()
        return codes

    async def ensure_batch(self, account_id: str) -> List[str]:
        """
        Generate codes only when the account has none left unused.

        Returns:
            List[str]: New plaintext codes, or an empty list if unused codes
            already exist
        """
        if await self.count_unused(account_id) > 0:
            return []
        return await self.generate_batch(account_id)

    async def regenerate(self, account_id: str) -> List[str]:
        """Invalidate every previous code and issue a fresh batch."""
        await self.db.execute(delete(RecoveryCode).where(RecoveryCode.account_id == account_id))
        return await self.generate_batch(account_id)

    async def count_unused(self, account_id: str) -> int:
        stmt = select(func.count(RecoveryCode.id)).where(
            RecoveryCode.account_id == account_id,
            RecoveryCode.used_at.is_(None),
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def summary(self, account_id: str) -> RecoverySummary:
        result = await self.db.execute(
            select(func.count(RecoveryCode.id)).where(RecoveryCode.account_id == account_id)
        )
        total = result.scalar_one()
        remaining = await self.count_unused(account_id)
        return RecoverySummary(total=total, used=total - remaining, remaining=remaining)

    async def consume(
        self,
        email: str,
        code: str,
        client: Optional[ClientInfo] = None,
        admin_only: bool = False,
    ) -> RecoveryOutcome:
        """
        Redeem a recovery code.

        Unknown email, inactive account, wrong code and already used code all
        raise the same error.

        Raises:
            RecoveryCodeInvalid: The code cannot be redeemed
        """
        email = normalize_email(email)
        result = await self.db.execute(select(Account).where(Account.email == email))
        account = result.scalar_one_or_none()
        permitted = account is not None and account.can_authenticate()
        if permitted and admin_only and not account.is_admin:
            permitted = False
        if not permitted:
            await self._log_failure(None, email, client, "unknown, inactive or not permitted")
            raise RecoveryCodeInvalid(f"no active account for {email}")

        result = await self.db.execute(
            select(RecoveryCode).where(
                RecoveryCode.account_id == account.id,
                RecoveryCode.used_at.is_(None),
            )
        )
        candidates = list(result.scalars().all())

        matched = None
        for candidate in candidates:
            if await asyncio.to_thread(check_code, code, candidate.code_hash):
                matched = candidate
                break

        if matched is None:
            await self._log_failure(account.id, email, client, "no matching unused code")
            raise RecoveryCodeInvalid(f"no matching unused code for account {account.id}")

        marked = await self.db.execute(
            update(RecoveryCode)
            .where(RecoveryCode.id == matched.id, RecoveryCode.used_at.is_(None))
            .values(used_at=datetime.utcnow())
        )
        if marked.rowcount != 1:
            await self.db.rollback()
            raise RecoveryCodeInvalid(f"code {matched.id} consumed concurrently")

        remaining = await self.count_unused(account.id)
        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.RECOVERY_CODE_USED,
            description=f"Recovery code used: {email}",
            account_id=account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"remaining": remaining},
            risk_level="medium",
        ))
        await self.db.commit()

        warning = None
        if remaining <= settings.recovery_code_low_watermark:
            warning = LOW_CODES_WARNING.format(remaining=remaining)
            logger.warning(f"Account {account.id} has {remaining} recovery code(s) left")

        return RecoveryOutcome(account=account, remaining=remaining, warning=warning)

    async def _log_failure(
        self,
        account_id: Optional[str],
        email: str,
        client: Optional[ClientInfo],
        reason: str,
    ) -> None:
        logger.info(f"Recovery code rejected for {email}: {reason}")
        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.RECOVERY_CODE_FAILED,
            description=f"Recovery code rejected: {email}",
            account_id=account_id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"reason": reason},
            risk_level="medium",
        ))
        await self.db.commit()
