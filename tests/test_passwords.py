"""Admin password sign-in."""

import pytest
from sqlalchemy import select

from esg_auth.errors import InvalidOperation, PasswordInvalid
from esg_auth.models.account import AccountRole
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.services.account_service import AccountService
from esg_auth.services.password_service import (
    PasswordService,
    check_password,
    hash_password,
)

EMAIL = "olga@esg-lite.ru"
PASSWORD = "correct horse battery"


@pytest.fixture
async def admin(db):
    account = await AccountService(db).create_account(EMAIL, role=AccountRole.SUPPORT_ADMIN)
    return await PasswordService(db).set_password(account.id, PASSWORD)


def test_check_password_against_hash():
    password_hash = hash_password(PASSWORD)
    assert password_hash.startswith("$2")
    assert check_password(PASSWORD, password_hash)
    assert not check_password("wrong horse battery", password_hash)
    assert not check_password(PASSWORD, "not-a-bcrypt-hash")
    assert not check_password("x" * 100, password_hash)


async def test_only_hash_is_stored(admin):
    assert admin.password_hash != PASSWORD
    assert check_password(PASSWORD, admin.password_hash)


async def test_authenticate(db, admin):
    account = await PasswordService(db).authenticate(" OLGA@esg-lite.ru ", PASSWORD)
    assert account.id == admin.id


async def test_failures_are_indistinguishable(db, admin):
    service = PasswordService(db)
    accounts = AccountService(db)
    await accounts.create_account("user@esg-lite.ru")
    await accounts.create_account("blank@esg-lite.ru", role=AccountRole.SUPPORT_ADMIN)
    inactive = await accounts.create_account("gone@esg-lite.ru", role=AccountRole.SUPPORT_ADMIN)
    await service.set_password(inactive.id, PASSWORD)
    await accounts.deactivate(inactive.id)

    messages = set()
    for email, password in [
        (EMAIL, "wrong horse battery"),
        ("ghost@esg-lite.ru", PASSWORD),
        ("user@esg-lite.ru", PASSWORD),
        ("blank@esg-lite.ru", PASSWORD),
        ("gone@esg-lite.ru", PASSWORD),
    ]:
        with pytest.raises(PasswordInvalid) as excinfo:
            await service.authenticate(email, password)
        messages.add((excinfo.value.status_code, excinfo.value.public_message))

    assert messages == {(401, "Invalid email or password.")}

    logs = await db.execute(
        select(SecurityLog).where(
            SecurityLog.event_type == SecurityEventType.PASSWORD_LOGIN_FAILED.value
        )
    )
    assert len(logs.scalars().all()) == 5


@pytest.mark.parametrize("password", ["short", "x" * 73])
async def test_rejects_unusable_password(db, admin, password):
    with pytest.raises(InvalidOperation):
        await PasswordService(db).set_password(admin.id, password)


async def test_end_users_have_no_password(db):
    user = await AccountService(db).create_account("user@esg-lite.ru")
    with pytest.raises(InvalidOperation):
        await PasswordService(db).set_password(user.id, PASSWORD)


async def test_change_requires_current_password(db, admin):
    service = PasswordService(db)
    new_password = "a much longer passphrase"

    with pytest.raises(PasswordInvalid):
        await service.change_password(admin, None, new_password)
    with pytest.raises(PasswordInvalid):
        await service.change_password(admin, "wrong horse battery", new_password)

    await service.change_password(admin, PASSWORD, new_password)
    assert (await service.authenticate(EMAIL, new_password)).id == admin.id
    with pytest.raises(PasswordInvalid):
        await service.authenticate(EMAIL, PASSWORD)
