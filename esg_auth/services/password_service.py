"""Admin panel passwords."""

import asyncio
import logging
import secrets
from datetime import datetime
from functools import lru_cache
from typing import Optional

import bcrypt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.errors import AccountNotFound, InvalidOperation, PasswordInvalid
from esg_auth.models.account import Account, normalize_email
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.security.client_info import ClientInfo

logger = logging.getLogger(__name__)

MAX_PASSWORD_BYTES = 72  # bcrypt ignores anything past this


@lru_cache(maxsize=1)
def dummy_hash() -> str:
    """Checked against when there is no real hash, so a miss costs the same time."""
    return hash_password(secrets.token_urlsafe(16))


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.password_bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
    except ValueError:
        logger.error("Malformed password hash in storage")
        return False


def _check_or_burn(password: str, password_hash: Optional[str]) -> bool:
    if password_hash is None:
        check_password(password, dummy_hash())
        return False
    return check_password(password, password_hash)


def validate_password(password: str) -> None:
    """
    Raises:
        InvalidOperation: Too short, or too long for bcrypt
    """
    if len(password) < settings.password_min_length:
        raise InvalidOperation(
            f"Password must be at least {settings.password_min_length} characters."
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InvalidOperation(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")


class PasswordService:
    """Password sign-in for admin accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def set_password(
        self,
        account_id: str,
        password: str,
        actor_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        """
        Store a new password for an admin account.

        Raises:
            InvalidOperation: Password rejected, or the account is not an admin
            AccountNotFound: Unknown account
        """
        validate_password(password)
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        account = result.scalar_one_or_none()
        if account is None:
            raise AccountNotFound(f"account {account_id} does not exist")
        if not account.is_admin:
            raise InvalidOperation("Passwords are only available for admin accounts.")

        account.password_hash = await asyncio.to_thread(hash_password, password)
        account.updated_at = datetime.utcnow()

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.PASSWORD_SET,
            description=f"Admin password set: {account.email}",
            account_id=actor_id or account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"target_account_id": account.id},
            risk_level="medium",
        ))
        await self.db.commit()
        logger.info(f"Password set for account {account.id}")
        return account

    async def change_password(
        self,
        account: Account,
        current_password: Optional[str],
        new_password: str,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        """
        Replace a signed-in admin's own password.

        The current password must be given whenever one is already set.

        Raises:
            PasswordInvalid: Current password missing or wrong
        """
        if account.password_hash is not None:
            matched = current_password is not None and await asyncio.to_thread(
                check_password, current_password, account.password_hash
            )
            if not matched:
                raise PasswordInvalid(f"current password mismatch for account {account.id}")
        return await self.set_password(account.id, new_password, client=client)

    async def authenticate(
        self,
        email: str,
        password: str,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        """
        Check an admin's email and password.

        Unknown email, non-admin or inactive account, no password set and a
        wrong password all raise the same error after the same bcrypt work.

        Raises:
            PasswordInvalid: The credentials do not sign anyone in
        """
        email = normalize_email(email)
        result = await self.db.execute(select(Account).where(Account.email == email))
        account = result.scalar_one_or_none()

        usable = (
            account is not None
            and account.can_authenticate()
            and account.is_admin
            and account.password_hash is not None
        )
        matched = await asyncio.to_thread(
            _check_or_burn, password, account.password_hash if usable else None
        )

        if not (usable and matched):
            reason = "wrong password" if usable else "unknown, inactive or no password"
            self.db.add(SecurityLog.create_log(
                event_type=SecurityEventType.PASSWORD_LOGIN_FAILED,
                description=f"Admin password sign-in failed: {email}",
                account_id=account.id if account is not None else None,
                ip_address=client.ip_address if client else None,
                user_agent=client.user_agent if client else None,
                metadata={"email": email, "reason": reason},
                risk_level="medium",
            ))
            await self.db.commit()
            raise PasswordInvalid(f"password sign-in refused for {email}: {reason}")

        return account
