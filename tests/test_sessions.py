"""Session issue, validation and revocation."""

from datetime import datetime, timedelta

import pytest
from jose import jwt
from sqlalchemy import select, update

from esg_auth.config import settings
from esg_auth.errors import InvalidOperation, SessionExpiredOrInvalid
from esg_auth.models.account import AccountRole
from esg_auth.models.auth_session import AuthMethod, AuthSession
from esg_auth.security.tokens import create_access_token, verify_token
from esg_auth.services.account_service import AccountService
from esg_auth.services.session_service import SessionService, session_lifetime


@pytest.fixture
async def account(db):
    return await AccountService(db).create_account("dave@esg-lite.ru")


def test_admin_sessions_are_shorter():
    assert session_lifetime(AccountRole.USER) == timedelta(seconds=settings.session_max_age_seconds)
    assert session_lifetime(AccountRole.SUPPORT_ADMIN) == timedelta(
        seconds=settings.admin_session_max_age_seconds
    )
    assert session_lifetime(AccountRole.SUPER_ADMIN) < session_lifetime(AccountRole.USER)


def test_token_round_trip_carries_claims():
    expires_at = datetime.utcnow() + timedelta(minutes=5)
    token = create_access_token({"sub": "acc-1", "role": "USER"}, expires_at, jti="j-1")
    data = verify_token(token)
    assert (data.sub, data.role, data.jti) == ("acc-1", "USER", "j-1")


def test_expired_or_tampered_token_is_rejected():
    past = datetime.utcnow() - timedelta(minutes=1)
    assert verify_token(create_access_token({"sub": "acc-1"}, past)) is None

    forged = jwt.encode(
        {"sub": "acc-1", "jti": "j-2", "exp": datetime.utcnow() + timedelta(minutes=5)},
        "some-other-secret",
        algorithm=settings.algorithm,
    )
    assert verify_token(forged) is None
    assert verify_token("not-a-jwt") is None


async def test_issue_and_validate(db, account):
    issued = await SessionService(db).issue(account, AuthMethod.PASSKEY)

    assert 0 < issued.max_age <= settings.session_max_age_seconds
    context = await SessionService(db).validate(issued.token)
    assert context.account.id == account.id
    assert context.role is AccountRole.USER
    assert context.session.method == AuthMethod.PASSKEY.value
    assert account.last_login_at is not None
    assert account.email_verified_at is not None


async def test_missing_token(db):
    with pytest.raises(SessionExpiredOrInvalid):
        await SessionService(db).validate(None)


async def test_token_without_row_is_invalid(db, account):
    token = create_access_token(
        {"sub": account.id, "role": account.role}, datetime.utcnow() + timedelta(hours=1)
    )
    with pytest.raises(SessionExpiredOrInvalid):
        await SessionService(db).validate(token)


async def test_expired_row_is_deleted_on_sight(db, account):
    issued = await SessionService(db).issue(account, AuthMethod.MAGIC_LINK)
    await db.execute(
        update(AuthSession)
        .where(AuthSession.id == issued.session.id)
        .values(expires_at=datetime.utcnow() - timedelta(seconds=1))
    )
    await db.commit()

    with pytest.raises(SessionExpiredOrInvalid):
        await SessionService(db).validate(issued.token)
    assert (await db.execute(select(AuthSession))).scalars().all() == []


async def test_revoke_is_immediate(db, account):
    service = SessionService(db)
    issued = await service.issue(account, AuthMethod.PASSKEY)

    assert await service.revoke(issued.session.token_jti)
    assert not await service.revoke(issued.session.token_jti)
    with pytest.raises(SessionExpiredOrInvalid):
        await service.validate(issued.token)


async def test_deactivation_revokes_every_session(db, account):
    service = SessionService(db)
    first = await service.issue(account, AuthMethod.PASSKEY)
    second = await service.issue(account, AuthMethod.RECOVERY_CODE)
    assert len(await service.list_active(account.id)) == 2

    await AccountService(db).deactivate(account.id)

    for issued in (first, second):
        with pytest.raises(SessionExpiredOrInvalid):
            await service.validate(issued.token)
    assert await service.list_active(account.id) == []


async def test_role_change_invalidates_session(db):
    accounts = AccountService(db)
    actor = await accounts.create_account("root@esg-lite.ru", role=AccountRole.SUPER_ADMIN)
    target = await accounts.create_account("help@esg-lite.ru", role=AccountRole.SUPPORT_ADMIN)
    issued = await SessionService(db).issue(target, AuthMethod.RECOVERY_CODE)

    await accounts.change_role(target.id, AccountRole.FINANCE_ADMIN, actor.id)

    with pytest.raises(SessionExpiredOrInvalid):
        await SessionService(db).validate(issued.token)


async def test_last_super_admin_is_kept(db):
    accounts = AccountService(db)
    root = await accounts.create_account("root@esg-lite.ru", role=AccountRole.SUPER_ADMIN)
    other = await accounts.create_account("boss@esg-lite.ru", role=AccountRole.SUPER_ADMIN)
    assert await accounts.count_active_super_admins() == 2

    await accounts.change_role(other.id, AccountRole.SYSTEM_ADMIN, root.id)
    assert await accounts.count_active_super_admins() == 1

    with pytest.raises(InvalidOperation):
        await accounts.deactivate(root.id)
    with pytest.raises(InvalidOperation):
        await accounts.delete(root.id, other.id)

    await accounts.change_role(other.id, AccountRole.SUPER_ADMIN, root.id)
    await accounts.deactivate(root.id)
    assert await accounts.count_active_super_admins() == 1


async def test_revoke_all_and_purge(db, account):
    service = SessionService(db)
    live = await service.issue(account, AuthMethod.PASSKEY)
    stale = await service.issue(account, AuthMethod.PASSKEY)
    await db.execute(
        update(AuthSession)
        .where(AuthSession.id == stale.session.id)
        .values(expires_at=datetime.utcnow() - timedelta(days=1))
    )
    await db.commit()

    assert await service.purge_expired() == 1
    assert [s.id for s in await service.list_active(account.id)] == [live.session.id]
    assert await service.revoke_all(account.id, reason="test") == 1
