"""Account service for end-user and admin account operations."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.errors import AccountNotFound, InvalidOperation
from esg_auth.models.account import Account, AccountRole, normalize_email
from esg_auth.models.auth_session import AuthSession
from esg_auth.models.magic_link_token import MagicLinkToken
from esg_auth.models.recovery_code import RecoveryCode
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.models.webauthn_challenge import WebAuthnChallenge
from esg_auth.models.webauthn_credential import WebAuthnCredential
from esg_auth.security.client_info import ClientInfo

logger = logging.getLogger(__name__)

ADMIN_ROLES = [role.value for role in AccountRole if role.is_admin]


class AccountService:
    """Service class for account-related operations."""

    def __init__(self, db: AsyncSession):
        """Initialize account service with database session."""
        self.db = db

    async def get_by_id(self, account_id: str) -> Optional[Account]:
        stmt = select(Account).where(Account.id == account_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Account]:
        """
        Get account by email address.

        Args:
            email: Email address in any case, surrounding spaces allowed

        Returns:
            Account: Account object or None if not found
        """
        stmt = select(Account).where(Account.email == normalize_email(email))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, account_id: str) -> Account:
        account = await self.get_by_id(account_id)
        if not account:
            raise AccountNotFound(f"account {account_id} does not exist")
        return account

    async def create_account(
        self,
        email: str,
        role: AccountRole = AccountRole.USER,
        display_name: Optional[str] = None,
        actor_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        """
        Create a new account.

        Raises:
            InvalidOperation: If the email is already taken
        """
        email = normalize_email(email)
        if await self.get_by_email(email):
            raise InvalidOperation("An account with this email already exists.")

        account = Account(
            email=email,
            role=role.value,
            display_name=display_name or email.split("@")[0],
        )
        self.db.add(account)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise InvalidOperation("An account with this email already exists.")

        if role.is_admin:
            self.db.add(SecurityLog.create_log(
                event_type=SecurityEventType.ADMIN_CREATED,
                description=f"Admin account created: {email} ({role.value})",
                account_id=actor_id or account.id,
                ip_address=client.ip_address if client else None,
                user_agent=client.user_agent if client else None,
                metadata={"target_account_id": account.id, "role": role.value},
                risk_level="medium",
            ))

        await self.db.commit()
        logger.info(f"Account created: {account.id} role={role.value}")
        return account

    async def get_or_create_by_email(
        self, email: str, display_name: Optional[str] = None
    ) -> Account:
        """Return the account for ``email``, creating a USER account if missing."""
        account = await self.get_by_email(email)
        if account:
            return account
        try:
            return await self.create_account(email, display_name=display_name)
        except InvalidOperation:
            # Lost a creation race to a concurrent request for the same email
            account = await self.get_by_email(email)
            if not account:
                raise
            return account

    async def list_admins(self) -> List[Account]:
        stmt = (
            select(Account)
            .where(Account.role.in_(ADMIN_ROLES))
            .order_by(Account.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_active_super_admins(self) -> int:
        stmt = select(func.count(Account.id)).where(
            Account.role == AccountRole.SUPER_ADMIN.value,
            Account.is_active.is_(True),
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def change_role(
        self,
        account_id: str,
        role: AccountRole,
        actor_id: str,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        if not role.is_admin:
            raise InvalidOperation("Role must be an admin role.")
        account = await self._require_other_admin(account_id, actor_id)
        if role is not AccountRole.SUPER_ADMIN:
            await self._ensure_not_last_super_admin(account)

        previous = account.role
        account.role = role.value
        account.updated_at = datetime.utcnow()
        # Sessions carry the role at issue time, so a role change forces re-login
        revoked = await self._delete_sessions(account.id)

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.ADMIN_MODIFIED,
            description=f"Admin role changed: {account.email} {previous} -> {role.value}",
            account_id=actor_id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={
                "target_account_id": account.id,
                "previous_role": previous,
                "role": role.value,
                "sessions_revoked": revoked,
            },
            risk_level="medium",
        ))
        await self.db.commit()
        return account

    async def deactivate(
        self,
        account_id: str,
        actor_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        """
        Deactivate an account and revoke every session it holds.

        Revocation happens in the same transaction, so once this returns no
        previously issued cookie validates.
        """
        if actor_id:
            account = await self._require_other_admin(account_id, actor_id)
        else:
            account = await self.require(account_id)

        await self._ensure_not_last_super_admin(account)
        account.is_active = False
        account.updated_at = datetime.utcnow()
        revoked = await self._delete_sessions(account.id)

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.ADMIN_MODIFIED,
            description=f"Account deactivated: {account.email}",
            account_id=actor_id or account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"target_account_id": account.id, "sessions_revoked": revoked},
            risk_level="medium",
        ))
        await self.db.commit()
        logger.info(f"Account {account.id} deactivated, {revoked} session(s) revoked")
        return account

    async def activate(
        self,
        account_id: str,
        actor_id: str,
        client: Optional[ClientInfo] = None,
    ) -> Account:
        account = await self._require_other_admin(account_id, actor_id)
        account.is_active = True
        account.updated_at = datetime.utcnow()

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.ADMIN_MODIFIED,
            description=f"Account activated: {account.email}",
            account_id=actor_id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"target_account_id": account.id},
        ))
        await self.db.commit()
        return account

    async def delete(
        self,
        account_id: str,
        actor_id: str,
        client: Optional[ClientInfo] = None,
    ) -> None:
        """
        Delete an admin account with everything that references it.

        Child rows are deleted explicitly; SQLite does not enforce
        ``ON DELETE CASCADE`` unless foreign keys are switched on.
        """
        account = await self._require_other_admin(account_id, actor_id)
        email = account.email
        await self._ensure_not_last_super_admin(account)

        for model in (AuthSession, RecoveryCode, WebAuthnChallenge, WebAuthnCredential):
            await self.db.execute(delete(model).where(model.account_id == account.id))
        await self.db.execute(
            delete(MagicLinkToken).where(MagicLinkToken.email == email)
        )
        await self.db.delete(account)

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.ADMIN_DELETED,
            description=f"Admin account deleted: {email}",
            account_id=actor_id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"target_account_id": account_id},
            risk_level="high",
        ))
        await self.db.commit()
        logger.warning(f"Admin account {account_id} deleted by {actor_id}")

    async def _require_other_admin(self, account_id: str, actor_id: str) -> Account:
        if account_id == actor_id:
            raise InvalidOperation("You cannot modify your own account.")
        account = await self.require(account_id)
        if not account.is_admin:
            raise AccountNotFound(f"account {account_id} is not an admin")
        return account

    async def _ensure_not_last_super_admin(self, account: Account) -> None:
        if account.account_role is not AccountRole.SUPER_ADMIN or not account.is_active:
            return
        if await self.count_active_super_admins() <= 1:
            raise InvalidOperation("This is the last active super admin.")

    async def _delete_sessions(self, account_id: str) -> int:
        result = await self.db.execute(
            delete(AuthSession).where(AuthSession.account_id == account_id)
        )
        return result.rowcount or 0
