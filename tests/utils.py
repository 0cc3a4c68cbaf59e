"""Shared helpers for driving ceremonies in tests."""

from typing import List, Tuple

from httpx import AsyncClient

from esg_auth.client.authenticator import SoftwareAuthenticator
from esg_auth.models.account import Account, AccountRole
from esg_auth.services.account_service import AccountService
from esg_auth.services.recovery_code_service import RecoveryCodeService
from esg_auth.services.webauthn_service import RegistrationOutcome, WebAuthnService


async def register_passkey(
    db, authenticator: SoftwareAuthenticator, account: Account
) -> RegistrationOutcome:
    service = WebAuthnService(db)
    options = await service.begin_registration(account.id)
    attestation = await authenticator.create(options)
    return await service.finish_registration(account.id, attestation)


async def create_admin(
    session_factory, email: str, role: AccountRole
) -> Tuple[Account, List[str]]:
    """Create an admin account with a recovery code batch."""
    async with session_factory() as session:
        account = await AccountService(session).create_account(email, role=role)
        codes = await RecoveryCodeService(session).generate_batch(account.id)
    return account, codes


async def admin_login(client: AsyncClient, email: str, code: str) -> dict:
    response = await client.post(
        "/api/admin/auth/recovery-code", json={"email": email, "code": code}
    )
    assert response.status_code == 200, response.text
    return response.json()


async def api_register(client: AsyncClient, authenticator: SoftwareAuthenticator, email: str):
    response = await client.post("/api/auth/passkey/register/options", json={"email": email})
    assert response.status_code == 200, response.text
    attestation = await authenticator.create(response.json()["options"])
    return await client.post(
        "/api/auth/passkey/register/verify", json={"email": email, "response": attestation}
    )
