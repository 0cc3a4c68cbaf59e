"""Role-based access control for admin operations."""

import logging
from typing import Dict, FrozenSet, Iterable, Optional, Union

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.database import get_db
from esg_auth.errors import Forbidden, Unauthenticated
from esg_auth.models.account import AccountRole
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.security.auth import get_optional_admin_session
from esg_auth.security.client_info import ClientInfo
from esg_auth.services.session_service import SessionContext

logger = logging.getLogger(__name__)

# Role -> the role requirements it satisfies
ROLE_CAPABILITIES: Dict[AccountRole, FrozenSet[AccountRole]] = {
    AccountRole.USER: frozenset(),
    AccountRole.SUPPORT_ADMIN: frozenset({AccountRole.SUPPORT_ADMIN}),
    AccountRole.FINANCE_ADMIN: frozenset({AccountRole.FINANCE_ADMIN}),
    AccountRole.SYSTEM_ADMIN: frozenset({AccountRole.SYSTEM_ADMIN}),
    AccountRole.SUPER_ADMIN: frozenset({
        AccountRole.SUPPORT_ADMIN,
        AccountRole.FINANCE_ADMIN,
        AccountRole.SYSTEM_ADMIN,
        AccountRole.SUPER_ADMIN,
    }),
}

RoleRequirement = Union[AccountRole, Iterable[AccountRole]]


def satisfies(role: AccountRole, required: RoleRequirement) -> bool:
    """True when ``role`` meets any of the ``required`` roles."""
    if isinstance(required, AccountRole):
        required = {required}
    return bool(ROLE_CAPABILITIES[role] & set(required))


def authorize(context: Optional[SessionContext], required: RoleRequirement) -> SessionContext:
    """
    Gate an operation on the caller's role.

    Args:
        context: Validated session, or None for an anonymous caller
        required: One role or a set of roles, any of which suffices

    Returns:
        SessionContext: The same context, for chaining

    Raises:
        Unauthenticated: No session
        Forbidden: Session role does not satisfy the requirement
    """
    if context is None:
        raise Unauthenticated("no admin session")
    if not satisfies(context.role, required):
        raise Forbidden(f"role {context.role.value} denied")
    return context


def require_admin_role(*roles: AccountRole):
    """
    FastAPI dependency factory. With no arguments any admin role passes.

    Denials are written to the security log with the acting account id.
    """
    required = frozenset(roles) or frozenset(r for r in AccountRole if r.is_admin)

    async def dependency(
        request: Request,
        context: Optional[SessionContext] = Depends(get_optional_admin_session),
        db: AsyncSession = Depends(get_db),
    ) -> SessionContext:
        try:
            return authorize(context, required)
        except Forbidden:
            client = ClientInfo.from_request(request)
            logger.warning(
                f"Access denied: account {context.account.id} ({context.role.value}) "
                f"-> {request.method} {request.url.path}"
            )
            db.add(SecurityLog.create_log(
                event_type=SecurityEventType.ACCESS_DENIED,
                description=f"Access denied: {request.method} {request.url.path}",
                account_id=context.account.id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                metadata={
                    "role": context.role.value,
                    "required": sorted(r.value for r in required),
                },
                risk_level="medium",
            ))
            await db.commit()
            raise

    return dependency
