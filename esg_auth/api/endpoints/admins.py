"""Admin account management. Every operation requires SUPER_ADMIN."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.database import get_db
from esg_auth.errors import InvalidOperation
from esg_auth.models.account import AccountRole
from esg_auth.schemas.admin import (
    AdminAction,
    AdminCreate,
    AdminEnvelope,
    AdminList,
    AdminResponse,
    AdminUpdate,
)
from esg_auth.schemas.auth import OkResponse
from esg_auth.security.client_info import ClientInfo, get_client_info
from esg_auth.security.roles import require_admin_role
from esg_auth.services.account_service import AccountService
from esg_auth.services.password_service import PasswordService, validate_password
from esg_auth.services.session_service import SessionContext

logger = logging.getLogger(__name__)

router = APIRouter()

require_super_admin = require_admin_role(AccountRole.SUPER_ADMIN)


@router.get("", response_model=AdminList)
async def list_admins(
    context: SessionContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    admins = await AccountService(db).list_admins()
    return AdminList(
        admins=[AdminResponse.model_validate(a) for a in admins],
        total=len(admins),
        active=sum(1 for a in admins if a.is_active),
    )


@router.post("", response_model=AdminEnvelope, status_code=status.HTTP_201_CREATED)
async def create_admin(
    payload: AdminCreate,
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Create an admin account.

    The new admin first signs in at ``/api/admin/auth/login`` with the
    temporary password given here; without one, an operator sets it with
    ``esg-auth admin set-password``. Passkeys are then added through
    ``/api/admin/auth/passkey/register-begin``.
    """
    if payload.password is not None:
        validate_password(payload.password)

    account = await AccountService(db).create_account(
        payload.email,
        role=payload.role,
        display_name=payload.display_name,
        actor_id=context.account.id,
        client=client,
    )
    if payload.password is not None:
        account = await PasswordService(db).set_password(
            account.id, payload.password, actor_id=context.account.id, client=client
        )
    return AdminEnvelope(admin=AdminResponse.model_validate(account))


@router.patch("/{admin_id}", response_model=AdminEnvelope)
async def update_admin(
    admin_id: str,
    payload: AdminUpdate,
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    service = AccountService(db)
    actor_id = context.account.id

    if payload.action is AdminAction.CHANGE_ROLE:
        if payload.role is None:
            raise InvalidOperation("A role is required for change_role.")
        account = await service.change_role(admin_id, payload.role, actor_id, client)
    elif payload.action is AdminAction.DEACTIVATE:
        account = await service.deactivate(admin_id, actor_id, client)
    else:
        account = await service.activate(admin_id, actor_id, client)

    return AdminEnvelope(admin=AdminResponse.model_validate(account))


@router.delete("/{admin_id}", response_model=OkResponse)
async def delete_admin(
    admin_id: str,
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    await AccountService(db).delete(admin_id, context.account.id, client)
    return OkResponse()
