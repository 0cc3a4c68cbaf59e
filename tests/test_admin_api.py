"""Admin panel sign-in and admin account management."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from esg_auth.config import settings
from esg_auth.models.account import Account, AccountRole
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.services.account_service import AccountService

from tests.utils import admin_login, create_admin, register_passkey

ROOT = "root@esg-lite.ru"


@pytest.fixture
async def root(session_factory):
    return await create_admin(session_factory, ROOT, AccountRole.SUPER_ADMIN)


@pytest.fixture
async def other_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://testserver") as ac:
        yield ac


async def test_recovery_code_login_sets_admin_cookie(client, root):
    account, codes = root
    body = await admin_login(client, ROOT, codes[0])

    assert body["admin"]["id"] == account.id
    assert body["admin"]["role"] == "SUPER_ADMIN"
    assert body["remainingCodes"] == settings.recovery_code_count - 1
    assert settings.admin_session_cookie_name in client.cookies
    assert settings.session_cookie_name not in client.cookies


async def test_admin_session_lifetime(client, root):
    _, codes = root
    response = await client.post(
        "/api/admin/auth/recovery-code", json={"email": ROOT, "code": codes[0]}
    )
    (cookie,) = [
        h for h in response.headers.get_list("set-cookie")
        if h.startswith(f"{settings.admin_session_cookie_name}=")
    ]
    assert f"Max-Age={settings.admin_session_max_age_seconds}" in cookie or (
        f"Max-Age={settings.admin_session_max_age_seconds - 1}" in cookie
    )


async def test_end_user_cannot_use_admin_sign_in(client, session_factory, authenticator):
    async with session_factory() as session:
        user = await AccountService(session).create_account("user@esg-lite.ru")
        await register_passkey(session, authenticator, user)

    response = await client.post(
        "/api/admin/auth/passkey/login-begin", json={"email": "user@esg-lite.ru"}
    )
    assert response.status_code == 401
    assert response.json()["code"] == "verification_failed"


async def test_admin_passkey_enrolment_and_login(client, root, authenticator):
    _, codes = root
    await admin_login(client, ROOT, codes[0])

    response = await client.post("/api/admin/auth/passkey/register-begin")
    assert response.status_code == 200
    attestation = await authenticator.create(response.json()["options"])

    response = await client.post("/api/admin/auth/passkey/register-finish", json=attestation)
    assert response.status_code == 200
    # Codes issued at creation are still unused
    assert response.json()["recoveryCodes"] == []

    assert (await client.post("/api/admin/auth/logout")).status_code == 200
    assert (await client.get("/api/admin/auth/passkey/list")).status_code == 401

    response = await client.post("/api/admin/auth/passkey/login-begin", json={"email": ROOT})
    assert response.status_code == 200
    assertion = await authenticator.get(response.json()["options"])
    response = await client.post(
        "/api/admin/auth/passkey/login-finish",
        json={"email": ROOT, "authResponse": assertion},
    )
    assert response.status_code == 200
    assert response.json()["admin"]["email"] == ROOT
    assert "sessionExpiresAt" in response.json()

    passkeys = (await client.get("/api/admin/auth/passkey/list")).json()["passkeys"]
    assert len(passkeys) == 1

    response = await client.request(
        "DELETE", "/api/admin/auth/passkey/remove", json={"passkeyId": passkeys[0]["id"]}
    )
    assert response.status_code == 200


async def test_user_cookie_does_not_open_admin_routes(client, root):
    _, codes = root
    response = await client.post("/api/auth/recovery-code", json={"email": ROOT, "code": codes[0]})
    assert response.status_code == 200

    response = await client.get("/api/admin/admins")
    assert response.status_code == 401


async def test_create_and_list_admins(client, root):
    _, codes = root
    await admin_login(client, ROOT, codes[0])

    response = await client.post(
        "/api/admin/admins",
        json={"email": "Cash@ESG-Lite.ru", "role": "FINANCE_ADMIN", "displayName": "Cash"},
    )
    assert response.status_code == 201
    created = response.json()["admin"]
    assert created["email"] == "cash@esg-lite.ru"
    assert created["isActive"] is True

    duplicate = await client.post(
        "/api/admin/admins", json={"email": "cash@esg-lite.ru", "role": "SUPPORT_ADMIN"}
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "invalid_operation"

    not_admin = await client.post(
        "/api/admin/admins", json={"email": "joe@esg-lite.ru", "role": "USER"}
    )
    assert not_admin.status_code == 422

    listing = (await client.get("/api/admin/admins")).json()
    assert listing["total"] == 2
    assert listing["active"] == 2
    assert {a["email"] for a in listing["admins"]} == {ROOT, "cash@esg-lite.ru"}


async def test_role_change_signs_target_out(client, other_client, root, session_factory):
    _, root_codes = root
    target, target_codes = await create_admin(
        session_factory, "help@esg-lite.ru", AccountRole.SUPPORT_ADMIN
    )
    await admin_login(client, ROOT, root_codes[0])
    await admin_login(other_client, "help@esg-lite.ru", target_codes[0])
    assert (await other_client.get("/api/admin/auth/passkey/list")).status_code == 200

    response = await client.patch(
        f"/api/admin/admins/{target.id}", json={"action": "change_role", "role": "SYSTEM_ADMIN"}
    )
    assert response.status_code == 200
    assert response.json()["admin"]["role"] == "SYSTEM_ADMIN"
    assert (await other_client.get("/api/admin/auth/passkey/list")).status_code == 401


async def test_deactivate_and_activate(client, other_client, root, session_factory):
    _, root_codes = root
    target, target_codes = await create_admin(
        session_factory, "ops@esg-lite.ru", AccountRole.SYSTEM_ADMIN
    )
    await admin_login(client, ROOT, root_codes[0])
    await admin_login(other_client, "ops@esg-lite.ru", target_codes[0])

    response = await client.patch(f"/api/admin/admins/{target.id}", json={"action": "deactivate"})
    assert response.json()["admin"]["isActive"] is False
    assert (await other_client.get("/api/admin/auth/passkey/list")).status_code == 401

    response = await other_client.post(
        "/api/admin/auth/recovery-code", json={"email": "ops@esg-lite.ru", "code": target_codes[1]}
    )
    assert response.status_code == 401

    response = await client.patch(f"/api/admin/admins/{target.id}", json={"action": "activate"})
    assert response.json()["admin"]["isActive"] is True
    await admin_login(other_client, "ops@esg-lite.ru", target_codes[1])


async def test_change_role_requires_role(client, root, session_factory):
    _, codes = root
    target, _ = await create_admin(session_factory, "ops@esg-lite.ru", AccountRole.SYSTEM_ADMIN)
    await admin_login(client, ROOT, codes[0])

    response = await client.patch(f"/api/admin/admins/{target.id}", json={"action": "change_role"})
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_operation"


async def test_admin_cannot_modify_self(client, root):
    account, codes = root
    await admin_login(client, ROOT, codes[0])

    response = await client.patch(f"/api/admin/admins/{account.id}", json={"action": "deactivate"})
    assert response.status_code == 400
    assert response.json()["message"] == "You cannot modify your own account."

    response = await client.delete(f"/api/admin/admins/{account.id}")
    assert response.status_code == 400


async def test_delete_admin_removes_account(client, root, session_factory):
    _, codes = root
    target, _ = await create_admin(session_factory, "gone@esg-lite.ru", AccountRole.SUPPORT_ADMIN)
    await admin_login(client, ROOT, codes[0])

    assert (await client.delete(f"/api/admin/admins/{target.id}")).status_code == 200
    assert (await client.delete(f"/api/admin/admins/{target.id}")).status_code == 404

    async with session_factory() as session:
        assert (await session.execute(
            select(Account).where(Account.id == target.id)
        )).scalar_one_or_none() is None
        log = (await session.execute(
            select(SecurityLog).where(
                SecurityLog.event_type == SecurityEventType.ADMIN_DELETED.value
            )
        )).scalar_one()
    assert log.event_metadata["target_account_id"] == target.id


async def test_new_admin_signs_in_with_temporary_password(client, other_client, root):
    _, codes = root
    await admin_login(client, ROOT, codes[0])

    response = await client.post(
        "/api/admin/admins",
        json={"email": "nina@esg-lite.ru", "role": "SUPPORT_ADMIN", "password": "temporary pass 1"},
    )
    assert response.status_code == 201
    assert not {"password", "passwordHash"} & set(response.json()["admin"])

    response = await other_client.post(
        "/api/admin/auth/login", json={"email": "nina@esg-lite.ru", "password": "temporary pass 1"}
    )
    assert response.status_code == 200
    assert response.json()["admin"]["role"] == "SUPPORT_ADMIN"
    assert settings.admin_session_cookie_name in other_client.cookies
    assert settings.session_cookie_name not in other_client.cookies

    # The password session is enough to enrol a passkey
    response = await other_client.post("/api/admin/auth/passkey/register-begin")
    assert response.status_code == 200


async def test_password_login_failures_look_alike(client, root):
    without_password = await client.post(
        "/api/admin/auth/login", json={"email": ROOT, "password": "anything at all"}
    )
    unknown = await client.post(
        "/api/admin/auth/login", json={"email": "ghost@esg-lite.ru", "password": "anything at all"}
    )

    assert without_password.status_code == unknown.status_code == 401
    assert without_password.json() == unknown.json()
    assert unknown.json()["code"] == "invalid_credentials"
    assert settings.admin_session_cookie_name not in client.cookies


async def test_create_admin_rejects_short_password(client, root):
    _, codes = root
    await admin_login(client, ROOT, codes[0])

    response = await client.post(
        "/api/admin/admins",
        json={"email": "nina@esg-lite.ru", "role": "SUPPORT_ADMIN", "password": "short"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_operation"

    emails = [a["email"] for a in (await client.get("/api/admin/admins")).json()["admins"]]
    assert "nina@esg-lite.ru" not in emails


async def test_admin_sets_own_password(client, other_client, root):
    _, codes = root
    await admin_login(client, ROOT, codes[0])

    response = await client.post(
        "/api/admin/auth/password", json={"newPassword": "root passphrase 1"}
    )
    assert response.status_code == 200

    response = await other_client.post(
        "/api/admin/auth/login", json={"email": ROOT, "password": "root passphrase 1"}
    )
    assert response.status_code == 200

    response = await client.post(
        "/api/admin/auth/password", json={"newPassword": "root passphrase 2"}
    )
    assert response.status_code == 401
    assert response.json()["code"] == "invalid_credentials"

    assert (await client.post("/api/admin/auth/password", json={})).status_code == 422
