"""Session issuance and validation."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.errors import SessionExpiredOrInvalid
from esg_auth.models.account import Account, AccountRole
from esg_auth.models.auth_session import AuthMethod, AuthSession
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.security.client_info import ClientInfo
from esg_auth.security.tokens import create_access_token, verify_token

logger = logging.getLogger(__name__)


@dataclass
class IssuedSession:
    token: str
    expires_at: datetime
    session: AuthSession

    @property
    def max_age(self) -> int:
        return max(0, int((self.expires_at - datetime.utcnow()).total_seconds()))


@dataclass
class SessionContext:
    """An authenticated caller: the account, its current role and the session row."""

    account: Account
    role: AccountRole
    session: AuthSession


def session_lifetime(role: AccountRole) -> timedelta:
    if role.is_admin:
        return timedelta(seconds=settings.admin_session_max_age_seconds)
    return timedelta(seconds=settings.session_max_age_seconds)


class SessionService:
    """
    Service class for session operations.

    A session is only valid while its row exists: the JWT signature proves the
    cookie was issued here, the row proves it has not been revoked.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(
        self,
        account: Account,
        method: AuthMethod,
        client: Optional[ClientInfo] = None,
    ) -> IssuedSession:
        """
        Issue a session after a successful ceremony.

        Args:
            account: Authenticated account
            method: Which ceremony produced the session
            client: Request metadata

        Returns:
            IssuedSession: Signed token, absolute expiry and the stored row
        """
        role = account.account_role
        expires_at = datetime.utcnow() + session_lifetime(role)
        jti = str(uuid.uuid4())

        session = AuthSession(
            account_id=account.id,
            token_jti=jti,
            role=role.value,
            method=method.value,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            expires_at=expires_at,
        )
        self.db.add(session)

        account.mark_login()

        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.LOGIN_SUCCESS,
            description=f"Session issued via {method.value}: {account.email}",
            account_id=account.id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
            metadata={"method": method.value, "role": role.value, "jti": jti},
        ))
        await self.db.commit()

        token = create_access_token({"sub": account.id, "role": role.value}, expires_at, jti=jti)
        return IssuedSession(token=token, expires_at=expires_at, session=session)

    async def validate(self, token: Optional[str]) -> SessionContext:
        """
        Resolve a session token to the caller.

        Raises:
            SessionExpiredOrInvalid: Missing or forged token, revoked or
                expired session, or deactivated account
        """
        if not token:
            raise SessionExpiredOrInvalid("no session token")

        token_data = verify_token(token)
        if token_data is None:
            raise SessionExpiredOrInvalid("token signature or claims invalid")

        result = await self.db.execute(
            select(AuthSession).where(AuthSession.token_jti == token_data.jti)
        )
        session = result.scalar_one_or_none()
        if session is None or session.account_id != token_data.sub:
            raise SessionExpiredOrInvalid(f"no session row for jti {token_data.jti}")

        if session.is_expired():
            await self.db.execute(delete(AuthSession).where(AuthSession.id == session.id))
            await self.db.commit()
            raise SessionExpiredOrInvalid(f"session {session.id} expired")

        result = await self.db.execute(select(Account).where(Account.id == session.account_id))
        account = result.scalar_one_or_none()
        if account is None or not account.can_authenticate():
            raise SessionExpiredOrInvalid(f"account {session.account_id} inactive")

        if account.role != session.role:
            # Role changed since issue; the caller has to sign in again
            raise SessionExpiredOrInvalid(f"role of account {account.id} changed")

        return SessionContext(account=account, role=account.account_role, session=session)

    async def revoke(self, jti: str, client: Optional[ClientInfo] = None) -> bool:
        """Delete one session (logout). Returns whether a row was removed."""
        result = await self.db.execute(
            select(AuthSession).where(AuthSession.token_jti == jti)
        )
        session = result.scalar_one_or_none()
        if session is None:
            return False

        await self.db.execute(delete(AuthSession).where(AuthSession.id == session.id))
        self.db.add(SecurityLog.create_log(
            event_type=SecurityEventType.LOGOUT,
            description="Session revoked by logout",
            account_id=session.account_id,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        ))
        await self.db.commit()
        return True

    async def revoke_all(self, account_id: str, reason: str = "revoked") -> int:
        result = await self.db.execute(
            delete(AuthSession).where(AuthSession.account_id == account_id)
        )
        count = result.rowcount or 0
        if count:
            self.db.add(SecurityLog.create_log(
                event_type=SecurityEventType.SESSIONS_REVOKED,
                description=f"{count} session(s) revoked: {reason}",
                account_id=account_id,
                risk_level="medium",
            ))
        await self.db.commit()
        return count

    async def list_active(self, account_id: str) -> List[AuthSession]:
        stmt = (
            select(AuthSession)
            .where(
                AuthSession.account_id == account_id,
                AuthSession.expires_at > datetime.utcnow(),
            )
            .order_by(AuthSession.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def purge_expired(self) -> int:
        result = await self.db.execute(
            delete(AuthSession).where(AuthSession.expires_at <= datetime.utcnow())
        )
        await self.db.commit()
        return result.rowcount or 0
